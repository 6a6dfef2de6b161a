# ABOUTME: FastMCP server initialization and main entry point
# ABOUTME: Exposes deployment status and manual sync tools backed by DeploymentStatusService

"""ArgoCD deployment status MCP server."""

from __future__ import annotations

import sys
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
from mcp.server.auth.middleware.auth_context import get_access_token
from mcp.server.fastmcp import Context, FastMCP
from pydantic import BaseModel, Field

from argocd_status.classifier import recovery_actions
from argocd_status.config import ServerSettings, load_settings
from argocd_status.models import Entity, HealthStatus, SyncOptions, SyncState
from argocd_status.permissions import PolicyPermissionGate
from argocd_status.service import DeploymentStatusService
from argocd_status.utils.catalog import CatalogClient
from argocd_status.utils.client import ArgocdClient
from argocd_status.utils.logging import AuditLogger, configure_logging, set_correlation_id
from argocd_status.utils.safety import SafetyGuard

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from argocd_status.models import DeploymentError, DeploymentStatus, SyncOperation

MCPContext = Context[Any, Any]
logger = structlog.get_logger(__name__)

# Global state (initialized in lifespan)
_settings: ServerSettings | None = None
_service: DeploymentStatusService | None = None
_catalog: CatalogClient | None = None
_safety_guard: SafetyGuard | None = None
_audit_logger: AuditLogger | None = None


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Manage server lifecycle: load config, connect clients, cleanup on shutdown."""
    global _settings, _service, _catalog, _safety_guard, _audit_logger

    logger.info("Starting ArgoCD deployment status server")

    _settings = load_settings()
    configure_logging(level=_settings.log_level, json_output=_settings.json_logs)
    _safety_guard = SafetyGuard(_settings.security)
    _audit_logger = AuditLogger(_settings.security.audit_log)

    instance = _settings.argocd_instance
    if instance is None:
        raise RuntimeError("ARGOCD_URL is not configured")

    async with AsyncExitStack() as stack:
        client = await stack.enter_async_context(
            ArgocdClient(
                instance=instance,
                timeout=_settings.status.request_timeout,
                mask_secrets=_settings.security.mask_secrets,
            )
        )
        logger.info("Connected to ArgoCD", url=instance.url)

        if _settings.catalog.url:
            _catalog = await stack.enter_async_context(CatalogClient(_settings.catalog))
            logger.info("Connected to entity catalog", url=_settings.catalog.url)

        _service = DeploymentStatusService(
            client,
            instance.url,
            PolicyPermissionGate(_settings.security.sync_policy),
            settings=_settings.status,
        )

        yield {"settings": _settings, "service": _service}

    _service = None
    _catalog = None
    logger.info("ArgoCD deployment status server stopped")


mcp = FastMCP("argocd-status", lifespan=lifespan)


def get_settings() -> ServerSettings:
    """Get server settings."""
    if not _settings:
        raise RuntimeError("Server not initialized")
    return _settings


def get_service() -> DeploymentStatusService:
    """Get the deployment status service."""
    if not _service:
        raise RuntimeError("Server not initialized")
    return _service


def get_safety_guard() -> SafetyGuard:
    """Get safety guard for permission checking."""
    if not _safety_guard:
        raise RuntimeError("Server not initialized")
    return _safety_guard


def get_audit_logger() -> AuditLogger:
    """Get audit logger for recording operations."""
    if not _audit_logger:
        raise RuntimeError("Server not initialized")
    return _audit_logger


def caller_identity() -> str:
    """
    Identity the current tool call acts as.

    The client id of the request's access token when the transport is
    authenticated, otherwise MCP_IDENTITY. Tool arguments never name the
    caller; an empty identity is denied every sync.
    """
    token = get_access_token()
    if token is not None and token.client_id:
        return token.client_id
    return get_settings().security.identity


async def resolve_entity(service_name: str) -> Entity | None:
    """
    Catalog entity for a service name.

    Without a catalog the service name itself is used as the ArgoCD
    annotation, which matches services following the naming convention.
    """
    if _catalog is not None:
        return await _catalog.get_entity(service_name)
    annotation = get_settings().status.annotation
    return Entity(name=service_name, annotations={annotation: service_name})


# =============================================================================
# OUTPUT FORMATTING
# =============================================================================


def _marker(status: DeploymentStatus) -> str:
    healthy = status.health == HealthStatus.HEALTHY and status.sync == SyncState.SYNCED
    return "[OK]" if healthy else "[!]"


def format_errors(errors: tuple[DeploymentError, ...] | list[DeploymentError]) -> list[str]:
    lines: list[str] = []
    for error in errors:
        retry = "recoverable" if error.recoverable else "needs action"
        lines.append(f"  [{error.severity}] {error.type}: {error.message} ({retry})")
        lines.extend(f"    - {action}" for action in error.suggested_actions)
    return lines


def format_status(status: DeploymentStatus) -> list[str]:
    last_sync = status.last_sync_time.isoformat() if status.last_sync_time else "never"
    lines = [
        f"{status.environment}: {status.application_name} {_marker(status)}",
        f"  Health: {status.health}",
        f"  Sync: {status.sync}",
        f"  Namespace: {status.namespace}",
        f"  Last sync: {last_sync}",
        f"  Can sync: {status.can_sync}",
    ]
    if status.log_url:
        lines.append(f"  Logs: {status.log_url}")
    if status.errors:
        lines.append("  Errors:")
        lines.extend(f"  {line}" for line in format_errors(status.errors))
    return lines


def format_operation(operation: SyncOperation) -> list[str]:
    opts = operation.options
    lines = [
        f"Sync {operation.sync_id}",
        f"  Application: {operation.application_name} ({operation.environment})",
        f"  Status: {operation.status}",
        f"  Triggered by: {operation.triggered_by} at {operation.triggered_at.isoformat()}",
        f"  Options: prune={opts.prune} dry_run={opts.dry_run} force={opts.force}",
    ]
    if operation.phase:
        lines.append(f"  Controller phase: {operation.phase}")
    if operation.message:
        lines.append(f"  Message: {operation.message}")
    if operation.finished_at:
        lines.append(f"  Finished: {operation.finished_at.isoformat()}")
    if operation.error:
        lines.extend(format_errors([operation.error]))
    return lines


# =============================================================================
# STATUS TOOLS
# =============================================================================


class GetDeploymentStatusParams(BaseModel):
    """Parameters for get_deployment_status tool."""

    service_name: str = Field(description="Catalogued service name")


@mcp.tool()
async def get_deployment_status(params: GetDeploymentStatusParams, ctx: MCPContext) -> str:
    """
    Get the ArgoCD deployment status of a catalogued service.

    Reads the application named by the service's argocd/app-name annotation
    and reports health, sync state, and any classified errors.
    """
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")

    blocked = get_safety_guard().check_read_operation("get_deployment_status")
    if blocked:
        get_audit_logger().log_blocked("get_deployment_status", params.service_name, blocked.reason)
        return blocked.format_message()

    try:
        entity = await resolve_entity(params.service_name)
        if entity is None:
            return f"Service '{params.service_name}' is not in the catalog."

        status = await get_service().get_deployment_status(entity, caller_identity())
        if status is None:
            return f"Service '{params.service_name}' has no ArgoCD application annotation."

        get_audit_logger().log_read("get_deployment_status", params.service_name)
        return "\n".join([f"Service: {params.service_name}", "", *format_status(status)])

    except Exception as e:
        get_audit_logger().log_error("get_deployment_status", params.service_name, str(e))
        return str(e)


class GetMultiEnvironmentStatusParams(BaseModel):
    """Parameters for get_multi_environment_status tool."""

    service_name: str = Field(description="Catalogued service name")


@mcp.tool()
async def get_multi_environment_status(
    params: GetMultiEnvironmentStatusParams, ctx: MCPContext
) -> str:
    """
    Get deployment status of a service across development, staging, and production.

    Environments are looked up concurrently. Overall health is Degraded if any
    environment is Degraded, Unknown if any is Unknown, otherwise Healthy.
    """
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")

    blocked = get_safety_guard().check_read_operation("get_multi_environment_status")
    if blocked:
        get_audit_logger().log_blocked(
            "get_multi_environment_status", params.service_name, blocked.reason
        )
        return blocked.format_message()

    try:
        entity = await resolve_entity(params.service_name)
        if entity is None:
            return f"Service '{params.service_name}' is not in the catalog."

        await ctx.report_progress(0, 1, f"Resolving environments for {params.service_name}")
        multi = await get_service().get_multi_environment_status(entity, caller_identity())
        await ctx.report_progress(1, 1, "Status collected")

        if multi is None:
            return f"Service '{params.service_name}' has no ArgoCD application annotation."

        get_audit_logger().log_read("get_multi_environment_status", params.service_name)

        lines = [
            f"Service: {multi.service_name}",
            f"Overall health: {multi.overall_health}",
            "",
        ]
        if not multi.environments:
            lines.append("No ArgoCD applications found for any environment.")
        for status in multi.environments.values():
            lines.extend(format_status(status))
            lines.append("")
        return "\n".join(lines).rstrip()

    except Exception as e:
        get_audit_logger().log_error("get_multi_environment_status", params.service_name, str(e))
        return str(e)


class GetErrorDetailsParams(BaseModel):
    """Parameters for get_error_details tool."""

    application_name: str = Field(description="ArgoCD application name")


@mcp.tool()
async def get_error_details(params: GetErrorDetailsParams, ctx: MCPContext) -> str:
    """
    Explain what is wrong with an application and how to recover.

    Lists classified errors with severity and suggested actions, followed by
    recovery actions and a link to the application's logs.
    """
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")

    blocked = get_safety_guard().check_read_operation("get_error_details")
    if blocked:
        get_audit_logger().log_blocked("get_error_details", params.application_name, blocked.reason)
        return blocked.format_message()

    try:
        service = get_service()
        errors = await service.get_error_details(params.application_name)
        get_audit_logger().log_read("get_error_details", params.application_name)

        if not errors:
            return (
                f"No errors reported for '{params.application_name}'.\n"
                f"Logs: {service.logs_url(params.application_name)}"
            )

        lines = [f"Errors for '{params.application_name}':", *format_errors(errors), ""]
        lines.append("Recovery actions:")
        seen: set[str] = set()
        for error in errors:
            for action in recovery_actions(error):
                if action.id in seen:
                    continue
                seen.add(action.id)
                mode = "automated" if action.automated else "manual"
                lines.append(
                    f"  - {action.title} ({mode}, risk={action.risk_level}, "
                    f"~{action.estimated_time}): {action.description}"
                )
        lines.extend(["", f"Logs: {service.logs_url(params.application_name)}"])
        return "\n".join(lines)

    except Exception as e:
        get_audit_logger().log_error("get_error_details", params.application_name, str(e))
        return str(e)


# =============================================================================
# SYNC TOOLS (require MCP_READ_ONLY=false)
# =============================================================================


class SyncApplicationParams(BaseModel):
    """Parameters for sync_application tool."""

    application_name: str = Field(description="ArgoCD application name")
    dry_run: bool = Field(
        default=True, description="Preview changes without applying (default: true)"
    )
    prune: bool = Field(default=False, description="Delete resources not in Git (destructive)")
    force: bool = Field(default=False, description="Override an in-flight sync")


@mcp.tool()
async def sync_application(params: SyncApplicationParams, ctx: MCPContext) -> str:
    """
    Trigger a manual sync of an ArgoCD application.

    Returns immediately with a sync ID; use get_sync_operation_status to
    follow progress. Runs as a dry run unless dry_run=false.
    """
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")

    blocked = get_safety_guard().check_write_operation("sync_application")
    if blocked:
        get_audit_logger().log_blocked("sync_application", params.application_name, blocked.reason)
        return blocked.format_message()

    options = SyncOptions(prune=params.prune, dry_run=params.dry_run, force=params.force)
    identity = caller_identity()
    audit_details = {"triggeredBy": identity, **options.to_dict()}

    try:
        mode = "[DRY-RUN] " if params.dry_run else ""
        await ctx.report_progress(0, 1, f"{mode}Triggering sync for {params.application_name}")

        result = await get_service().sync_application(params.application_name, options, identity)

        await ctx.report_progress(1, 1, "Sync requested")

        if not result.success:
            error = result.error
            reason = error.message if error else "sync failed"
            if error and error.type == "authorization_error":
                get_audit_logger().log_blocked("sync_application", params.application_name, reason)
            else:
                get_audit_logger().log_error("sync_application", params.application_name, reason)
            lines = [f"SYNC NOT STARTED: {params.application_name}"]
            if error:
                lines.extend(format_errors([error]))
            if result.sync_id:
                lines.append(f"Sync ID: {result.sync_id}")
            return "\n".join(lines)

        get_audit_logger().log_write(
            "sync_application",
            params.application_name,
            "dry_run" if params.dry_run else "initiated",
            {"syncId": result.sync_id, **audit_details},
        )
        estimate = int(result.estimated_duration.total_seconds()) if result.estimated_duration else 0
        return (
            f"{mode}Sync initiated for '{params.application_name}'\n"
            f"Sync ID: {result.sync_id}\n"
            f"Estimated duration: {estimate}s\n"
            f"Prune: {params.prune}\n\n"
            f"Use get_sync_operation_status to monitor progress."
        )

    except Exception as e:
        get_audit_logger().log_error("sync_application", params.application_name, str(e))
        return str(e)


class GetSyncOperationStatusParams(BaseModel):
    """Parameters for get_sync_operation_status tool."""

    sync_id: str = Field(description="Sync ID returned by sync_application")


@mcp.tool()
async def get_sync_operation_status(
    params: GetSyncOperationStatusParams, ctx: MCPContext
) -> str:
    """Get the current status of a sync started with sync_application."""
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")

    blocked = get_safety_guard().check_read_operation("get_sync_operation_status")
    if blocked:
        get_audit_logger().log_blocked("get_sync_operation_status", params.sync_id, blocked.reason)
        return blocked.format_message()

    try:
        operation = await get_service().get_sync_operation_status(params.sync_id)
        if operation is None:
            return f"Sync operation '{params.sync_id}' not found."

        get_audit_logger().log_read("get_sync_operation_status", params.sync_id)
        return "\n".join(format_operation(operation))

    except Exception as e:
        get_audit_logger().log_error("get_sync_operation_status", params.sync_id, str(e))
        return str(e)


class GetSyncHistoryParams(BaseModel):
    """Parameters for get_sync_history tool."""

    application_name: str = Field(description="ArgoCD application name")
    limit: int = Field(default=10, ge=1, le=100, description="Maximum operations to return")


@mcp.tool()
async def get_sync_history(params: GetSyncHistoryParams, ctx: MCPContext) -> str:
    """List manual syncs of an application triggered through this server, newest first."""
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")

    blocked = get_safety_guard().check_read_operation("get_sync_history")
    if blocked:
        get_audit_logger().log_blocked("get_sync_history", params.application_name, blocked.reason)
        return blocked.format_message()

    operations = get_service().get_sync_history(params.application_name, params.limit)
    get_audit_logger().log_read("get_sync_history", params.application_name)

    if not operations:
        return f"No sync operations recorded for '{params.application_name}'."

    lines = [f"Sync history for '{params.application_name}' ({len(operations)}):", ""]
    for operation in operations:
        lines.append(
            f"- {operation.sync_id} {operation.status} "
            f"by {operation.triggered_by} at {operation.triggered_at.isoformat()}"
        )
    return "\n".join(lines)


# =============================================================================
# RESOURCES
# =============================================================================


@mcp.resource("argocd://controller")
async def get_controller_resource() -> str:
    """Get ArgoCD controller connection and health."""
    settings = get_settings()
    health = await get_service().health_check()

    lines = [
        "ArgoCD Controller:",
        f"  URL: {settings.argocd_url}",
        f"  Status: {health['status']}",
    ]
    if "version" in health:
        lines.append(f"  Version: {health['version']}")
        lines.append(f"  Cached applications: {health['cachedApplications']}")
    if "error" in health:
        lines.append(f"  Error: {health['error']}")
    lines.append(f"  Catalog: {settings.catalog.url or 'not configured'}")
    return "\n".join(lines)


@mcp.resource("argocd://security")
async def get_security_resource() -> str:
    """Get current security settings."""
    settings = get_settings()
    sec = settings.security

    return (
        "Security Settings:\n"
        f"  Read-only mode: {sec.read_only}\n"
        f"  Secret masking: {sec.mask_secrets}\n"
        f"  Rate limit: {sec.rate_limit_calls} calls per {sec.rate_limit_window}s\n"
        f"  Identity: {sec.identity or 'not configured'}\n"
        f"  Sync policy rules: {len(sec.sync_policy)}"
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main() -> None:
    """Run the ArgoCD deployment status server."""
    configure_logging(level="INFO")
    logger.info("ArgoCD deployment status server starting")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
