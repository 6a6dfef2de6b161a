# ABOUTME: Configuration management for the ArgoCD deployment status service
# ABOUTME: Handles environment variables for the controller, catalog, cache, and sync policy

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Every tunable of the service lives here:

1. WHERE the collaborators are (ArgoCD URL/token, catalog URL/token)
2. HOW fresh status must be (cache TTL, request and sync timeouts)
3. WHO may sync what (sync policy rules, read-only mode)
4. HOW we log (level, JSON output, audit log path)

All values are read from environment variables and validated once at
startup, so a typo in MCP_READ_ONLY fails fast instead of silently
enabling writes.

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

ArgoCD controller:
    ARGOCD_URL              -> Controller base URL (also used for UI/log links)
    ARGOCD_TOKEN            -> API bearer token
    ARGOCD_INSECURE         -> Skip TLS certificate verification

Entity catalog (CATALOG_ prefix):
    CATALOG_URL             -> Catalog base URL
    CATALOG_TOKEN           -> Catalog bearer token
    CATALOG_NAMESPACE       -> Default entity namespace (default: "default")

Status pipeline (DEPLOY_STATUS_ prefix):
    DEPLOY_STATUS_CACHE_TTL               -> Status cache TTL in seconds (default: 30)
    DEPLOY_STATUS_REQUEST_TIMEOUT         -> Per-environment lookup timeout (default: 5)
    DEPLOY_STATUS_SYNC_TIMEOUT            -> Sync trigger timeout (default: 5)
    DEPLOY_STATUS_ESTIMATED_SYNC_DURATION -> Reported sync estimate in seconds (default: 120)
    DEPLOY_STATUS_OPERATION_RETENTION     -> Sync operation retention in seconds (default: 86400)
    DEPLOY_STATUS_ANNOTATION              -> Catalog annotation key (default: argocd/app-name)

Security settings (MCP_ prefix):
    MCP_READ_ONLY           -> Block sync operations (default: true)
    MCP_AUDIT_LOG           -> Path to audit log file
    MCP_MASK_SECRETS        -> Mask sensitive data in controller responses
    MCP_RATE_LIMIT_CALLS    -> Max calls per window (default: 100)
    MCP_RATE_LIMIT_WINDOW   -> Rate limit window in seconds (default: 60)
    MCP_SYNC_POLICY         -> JSON list of {"application": glob, "identities": [...]}
    MCP_IDENTITY            -> Identity tool calls act as without an access token

Server (ARGOCD_STATUS_ prefix):
    ARGOCD_STATUS_LOG_LEVEL -> Logging level (default: INFO)
    ARGOCD_STATUS_JSON_LOGS -> Emit JSON logs instead of console output
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from argocd_status.models import Environment


def _normalize_url(value: str) -> str:
    """Default to https and strip trailing slashes so API paths join cleanly."""
    if value and not value.startswith(("http://", "https://")):
        value = f"https://{value}"
    return value.rstrip("/")


# =============================================================================
# COLLABORATOR CONNECTIONS
# =============================================================================


class ArgocdInstance(BaseModel):
    """
    Connection details for the ArgoCD controller.

    This is a BaseModel (not BaseSettings) because it is assembled from
    ServerSettings, which owns the ARGOCD_* environment variables.

        instance = ArgocdInstance(
            url="https://argocd.example.com",
            token=SecretStr("my-api-token"),
        )
    """

    model_config = {"extra": "ignore"}

    url: str = Field(description="ArgoCD server URL")
    token: SecretStr = Field(description="ArgoCD API token")
    name: str = Field(default="primary", description="Instance identifier used in logs")
    insecure: bool = Field(default=False, description="Skip TLS verification")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Ensure URL has a scheme and no trailing slash."""
        return _normalize_url(v)


class CatalogSettings(BaseSettings):
    """Entity catalog connection (Backstage-compatible REST API)."""

    model_config = SettingsConfigDict(env_prefix="CATALOG_", extra="ignore")

    url: str = Field(default="", description="Catalog base URL")
    token: SecretStr = Field(default=SecretStr(""), description="Catalog API token")
    namespace: str = Field(default="default", description="Default entity namespace")
    kind: str = Field(default="component", description="Entity kind of catalogued services")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Ensure URL has a scheme and no trailing slash."""
        return _normalize_url(v)


# =============================================================================
# SECURITY SETTINGS
# =============================================================================


class SyncPolicyRule(BaseModel):
    """
    One authorization rule for manual syncs.

    `application` is an fnmatch-style glob ("payments-*"), `identities` lists
    the users allowed to sync matching applications ("*" allows everyone).
    """

    model_config = {"extra": "ignore"}

    application: str = Field(description="Application name glob")
    identities: list[str] = Field(default_factory=list, description="Allowed identities")


class SecuritySettings(BaseSettings):
    """
    Security-related configuration.

    Safe defaults: the server starts read-only and with an empty sync policy,
    so nobody can trigger a sync until an operator opts in twice.
    """

    model_config = SettingsConfigDict(env_prefix="MCP_", extra="ignore")

    read_only: bool = Field(
        default=True,
        description="Block sync operations when true",
    )
    audit_log: Path | None = Field(
        default=None,
        description="Path to audit log file",
    )
    mask_secrets: bool = Field(
        default=True,
        description="Mask sensitive values in controller responses",
    )
    rate_limit_calls: int = Field(
        default=100,
        description="Maximum calls per rate limit window",
    )
    rate_limit_window: int = Field(
        default=60,
        description="Rate limit window in seconds",
    )
    sync_policy: list[SyncPolicyRule] = Field(
        default_factory=list,
        description="Rules deciding who may sync which applications",
    )
    identity: str = Field(
        default="",
        description="Identity tool calls act as when the transport carries no access token",
    )


# =============================================================================
# STATUS PIPELINE SETTINGS
# =============================================================================


class StatusSettings(BaseSettings):
    """
    Tunables for the status pipeline and the sync orchestrator.

    CACHE TTL
    ---------
    Portal pages poll deployment status every few seconds. A short TTL keeps
    staleness bounded while collapsing a polling burst into one controller
    call per application.

    TIMEOUTS
    --------
    Each per-environment lookup and each sync trigger is bounded separately.
    A timeout is reported as a retryable connection error instead of hanging
    the whole request.
    """

    model_config = SettingsConfigDict(env_prefix="DEPLOY_STATUS_", extra="ignore")

    cache_ttl: float = Field(default=30.0, gt=0, description="Status cache TTL in seconds")
    request_timeout: float = Field(
        default=5.0, gt=0, description="Per-environment status lookup timeout in seconds"
    )
    sync_timeout: float = Field(default=5.0, gt=0, description="Sync trigger timeout in seconds")
    estimated_sync_duration: int = Field(
        default=120, ge=0, description="Estimated sync duration reported to callers, in seconds"
    )
    operation_retention: int = Field(
        default=24 * 60 * 60,
        gt=0,
        description="How long finished sync operations stay queryable, in seconds",
    )
    annotation: str = Field(
        default="argocd/app-name",
        description="Catalog annotation naming the ArgoCD application",
    )
    environments: list[Environment] = Field(
        default_factory=lambda: list(Environment),
        description="Environments resolved for multi-environment status",
    )


# =============================================================================
# MAIN SERVER SETTINGS
# =============================================================================


class ServerSettings(BaseSettings):
    """
    Top-level configuration container.

        settings = load_settings()
        settings.argocd_instance      # ArgocdInstance | None
        settings.status.cache_ttl     # 30.0
        settings.security.read_only   # True
    """

    model_config = SettingsConfigDict(
        env_prefix="ARGOCD_STATUS_",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    argocd_url: str = Field(
        default="",
        validation_alias="ARGOCD_URL",
        description="ArgoCD server URL",
    )
    argocd_token: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="ARGOCD_TOKEN",
        description="ArgoCD API token",
    )
    argocd_insecure: bool = Field(
        default=False,
        validation_alias="ARGOCD_INSECURE",
        description="Skip TLS verification",
    )

    server_name: str = Field(default="argocd-status", description="MCP server name")
    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )
    json_logs: bool = Field(default=False, description="Emit JSON logs")

    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    status: StatusSettings = Field(default_factory=StatusSettings)

    @property
    def argocd_instance(self) -> ArgocdInstance | None:
        """ArgoCD connection built from ARGOCD_* variables, or None if ARGOCD_URL is unset."""
        if not self.argocd_url:
            return None
        return ArgocdInstance(
            url=self.argocd_url,
            token=self.argocd_token,
            insecure=self.argocd_insecure,
        )


def load_settings() -> ServerSettings:
    """
    Load settings from the environment.

    If ARGOCD_STATUS_ENV_FILE is set, variables are also read from that file,
    which is handy for local development.

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return ServerSettings(
        _env_file=os.environ.get("ARGOCD_STATUS_ENV_FILE"),
    )
