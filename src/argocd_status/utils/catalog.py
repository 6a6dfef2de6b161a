# ABOUTME: Entity catalog client for looking up catalogued services
# ABOUTME: Async lookup by name returning None for services that are not registered

"""
Entity catalog client.

The catalog is a Backstage-compatible REST API:

    GET /api/catalog/entities/by-name/{kind}/{namespace}/{name}

A 404 means the service is not catalogued. That is a normal answer, so
`get_entity` returns None instead of raising. Other failures raise
CatalogError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from argocd_status.models import Entity

if TYPE_CHECKING:
    from argocd_status.config import CatalogSettings

logger = structlog.get_logger(__name__)


class CatalogError(Exception):
    """Catalog API failure other than 'not found'."""

    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"Catalog API error ({code}): {message}")


class CatalogClient:
    """
    Async catalog client.

        async with CatalogClient(settings.catalog) as catalog:
            entity = await catalog.get_entity("payments-api")
    """

    def __init__(self, settings: CatalogSettings, timeout: float = 10.0) -> None:
        self._settings = settings
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> CatalogClient:
        headers = {"Accept": "application/json"}
        token = self._settings.token.get_secret_value()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=f"{self._settings.url}/api/catalog",
            headers=headers,
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type(httpx.TimeoutException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _get(self, path: str) -> dict[str, Any] | None:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        response = await self._client.get(path)
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning("Catalog API error", status=response.status_code, path=path)
            raise CatalogError(response.status_code, response.text[:200] or "request failed")
        data = response.json()
        return data if isinstance(data, dict) else None

    async def get_entity(
        self,
        name: str,
        kind: str | None = None,
        namespace: str | None = None,
    ) -> Entity | None:
        """Look up an entity by name; None when it is not in the catalog."""
        kind = kind or self._settings.kind
        namespace = namespace or self._settings.namespace
        data = await self._get(f"/entities/by-name/{kind}/{namespace}/{name}")
        if data is None:
            logger.debug("Entity not found in catalog", name=name, kind=kind)
            return None
        return Entity.from_api_response(data)
