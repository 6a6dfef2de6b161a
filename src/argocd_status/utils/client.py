# ABOUTME: ArgoCD API client wrapper with retry logic and error handling
# ABOUTME: Narrow async interface returning raw application records and sync acknowledgements

"""
ArgoCD API client with retry logic and structured error handling.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

The status service needs exactly three things from ArgoCD:

    GET  /api/v1/applications/{name}        - One application's raw record
    POST /api/v1/applications/{name}/sync   - Trigger a sync
    GET  /api/version                       - Liveness/version for health checks

This module binds those endpoints and nothing more. Interpreting the raw
record is the StatusNormalizer's job; explaining failures is the
ErrorClassifier's job.

=============================================================================
THE ControllerClient PROTOCOL
=============================================================================

Components depend on the ControllerClient protocol, not on ArgocdClient:

    class ControllerClient(Protocol):
        async def get_application(self, name: str) -> dict[str, Any]: ...
        async def sync_application(self, name: str, ...) -> dict[str, Any]: ...
        async def get_version(self) -> dict[str, Any]: ...

Tests hand in a deterministic fake satisfying the same protocol, so no test
needs a live controller to exercise the status pipeline or the orchestrator.

=============================================================================
ERRORS AND RETRIES
=============================================================================

- HTTP 4xx/5xx responses raise ArgocdError carrying the status code and
  ArgoCD's own message, which the classifier maps onto the error taxonomy.
- Timeouts and refused connections are retried with exponential backoff
  (tenacity) and re-raised as the original httpx exception when the retry
  budget is spent.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

if TYPE_CHECKING:
    from argocd_status.config import ArgocdInstance

logger = structlog.get_logger(__name__)


# =============================================================================
# SECRET MASKING
# =============================================================================

# Application records can embed Helm values and plugin env vars. These
# patterns scrub credential-looking values from free-text fields.
SECRET_PATTERNS = [
    (re.compile(r"(token[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(password[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(secret[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(api[_-]?key[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(bearer\s+)[^\s\"']+", re.I), r"\1***MASKED***"),
]

# Dictionary keys whose values are always replaced
SENSITIVE_KEYS = frozenset(
    [
        "token",
        "password",
        "secret",
        "api_key",
        "apikey",
        "api-key",
        "authorization",
        "auth",
        "credential",
        "credentials",
    ]
)


def mask_secrets(data: Any) -> Any:
    """Recursively mask sensitive values in strings, dicts, and lists."""
    if isinstance(data, str):
        for pattern, replacement in SECRET_PATTERNS:
            data = pattern.sub(replacement, data)
        return data
    if isinstance(data, dict):
        return {
            k: "***MASKED***" if str(k).lower() in SENSITIVE_KEYS else mask_secrets(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [mask_secrets(item) for item in data]
    return data


# =============================================================================
# ARGOCD ERROR
# =============================================================================


class ArgocdError(Exception):
    """
    HTTP error returned by the ArgoCD API.

    ArgoCD error bodies look like:
        {"message": "application 'foo' not found", "error": "...", "code": 5}

    The HTTP status code is kept so the classifier can tell a missing
    application (404) from a permission problem (403) or an outage (5xx).
    """

    def __init__(self, code: int, message: str, details: str | None = None) -> None:
        self.code = code
        self.message = message
        self.details = details
        super().__init__(str(self))

    def __str__(self) -> str:
        base = f"ArgoCD API error ({self.code}): {self.message}"
        if self.details:
            base += f" - {self.details}"
        return base


# =============================================================================
# CONTROLLER CLIENT PROTOCOL
# =============================================================================


@runtime_checkable
class ControllerClient(Protocol):
    """The narrow controller interface the status pipeline depends on."""

    async def get_application(self, name: str) -> dict[str, Any]:
        """Return the raw application record, raising on failure."""
        ...

    async def sync_application(
        self,
        name: str,
        dry_run: bool = False,
        prune: bool = False,
        force: bool = False,
        revision: str | None = None,
    ) -> dict[str, Any]:
        """Trigger a sync and return the controller's acknowledgement."""
        ...

    async def get_version(self) -> dict[str, Any]:
        """Return controller version information; used as a liveness probe."""
        ...


# =============================================================================
# ARGOCD CLIENT
# =============================================================================


class ArgocdClient:
    """
    Async ArgoCD API client implementing ControllerClient.

    Always use the context manager so the connection pool is released:

        async with ArgocdClient(instance) as client:
            record = await client.get_application("payments-api-prod")
    """

    def __init__(
        self,
        instance: ArgocdInstance,
        timeout: float = 30.0,
        mask_secrets: bool = True,
    ) -> None:
        """
        Initialize ArgoCD client.

        Args:
            instance: ArgoCD connection settings (URL, token, TLS).
            timeout: HTTP timeout in seconds for a single attempt.
            mask_secrets: Scrub credential-looking values from responses.
        """
        self._instance = instance
        self._timeout = timeout
        self._mask_secrets = mask_secrets
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        """ArgoCD server URL, also the root of UI and log links."""
        return self._instance.url

    async def __aenter__(self) -> ArgocdClient:
        self._client = httpx.AsyncClient(
            base_url=self._instance.url,
            headers={
                "Authorization": f"Bearer {self._instance.token.get_secret_value()}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
            verify=not self._instance.insecure,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _mask_response(self, data: Any) -> Any:
        if not self._mask_secrets:
            return data
        return mask_secrets(data)

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make an HTTP request to the ArgoCD API.

        Up to three attempts on timeouts and refused connections, waiting
        1s then 2s between them. Other failures are not retried.

        Raises:
            ArgocdError: On 4xx/5xx responses.
            httpx.TimeoutException / httpx.ConnectError: After retries.
            RuntimeError: If used outside `async with`.
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        log = logger.bind(method=method, path=path, instance=self._instance.name)
        log.debug("Making ArgoCD API request")

        response = await self._client.request(method, path, params=params, json=json_data)

        if response.status_code >= 400:
            error_body = response.text
            log.warning("ArgoCD API error", status=response.status_code, body=error_body[:200])

            message = f"HTTP {response.status_code}"
            details = None
            try:
                error_json = response.json()
                message = error_json.get("message", message)
                details = error_json.get("error")
            except ValueError:
                details = error_body[:200] if error_body else None

            raise ArgocdError(code=response.status_code, message=message, details=details)

        result = response.json() if response.content else {}
        masked = self._mask_response(result)
        return masked if isinstance(masked, dict) else {}

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get_application(self, name: str) -> dict[str, Any]:
        """
        Get the raw application record.

        ArgoCD API: GET /api/v1/applications/{name}

        Raises:
            ArgocdError: 404 if the application does not exist.
        """
        return await self._request("GET", f"/api/v1/applications/{name}")

    async def get_version(self) -> dict[str, Any]:
        """
        Get controller version information.

        ArgoCD API: GET /api/version -> {"Version": "v2.8.0+...", ...}
        """
        return await self._request("GET", "/api/version")

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def sync_application(
        self,
        name: str,
        dry_run: bool = False,
        prune: bool = False,
        force: bool = False,
        revision: str | None = None,
    ) -> dict[str, Any]:
        """
        Trigger an application sync.

        ArgoCD API: POST /api/v1/applications/{name}/sync

        The options are forwarded verbatim:
            dry_run: validate manifests without applying them
            prune:   delete live resources that are no longer in Git
            force:   replace resources instead of patching them

        Returns:
            The application record as acknowledged by the controller; its
            status.operationState tracks the new operation.
        """
        body: dict[str, Any] = {"dryRun": dry_run, "prune": prune}
        if revision:
            body["revision"] = revision
        if force:
            body["strategy"] = {"apply": {"force": True}}

        return await self._request("POST", f"/api/v1/applications/{name}/sync", json_data=body)
