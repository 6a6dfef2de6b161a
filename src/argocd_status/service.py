# ABOUTME: DeploymentStatusService facade wiring resolver, cache, normalizer, and orchestrator
# ABOUTME: The produced API consumed by the MCP server and any other front end

"""
Deployment status service.

=============================================================================
HOW A STATUS READ FLOWS
=============================================================================

    entity ──> EnvironmentResolver ──> per environment, concurrently:
                                          StatusCache.get(name)
                                            hit  -> cached DeploymentStatus
                                            miss -> controller.get_application
                                                    -> StatusNormalizer
                                                    -> StatusCache.put
           ──> aggregate() ──> MultiEnvironmentStatus

Reads never raise for controller trouble. A failed lookup becomes an
Unknown/Unknown status carrying the classified error, so the caller can
still render every other environment. In the multi-environment view an
environment whose application does not exist is left out instead.

Only successful reads are cached; a controller hiccup is retried on the
next request instead of being remembered for a whole TTL.

=============================================================================
can_sync
=============================================================================

A cached status is shared by every caller, so it cannot depend on who is
asking. `can_sync` is stored as "the controller answered", and narrowed per
caller by the permission gate when an identity is supplied.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog

from argocd_status.aggregator import aggregate
from argocd_status.cache import StatusCache
from argocd_status.classifier import ErrorClassifier, translate_failure
from argocd_status.config import StatusSettings
from argocd_status.errors import ApplicationNotFoundError, ControllerConnectionError
from argocd_status.models import SyncOptions
from argocd_status.normalizer import StatusNormalizer
from argocd_status.orchestrator import SyncOrchestrator
from argocd_status.resolver import EnvironmentResolver, environment_from_name

if TYPE_CHECKING:
    from collections.abc import Callable

    from argocd_status.models import (
        DeploymentError,
        DeploymentStatus,
        Entity,
        Environment,
        MultiEnvironmentStatus,
        SyncOperation,
        SyncResult,
    )
    from argocd_status.permissions import PermissionGate
    from argocd_status.utils.client import ControllerClient

logger = structlog.get_logger(__name__)


class DeploymentStatusService:
    """
    Deployment status and sync operations for catalogued services.

        service = DeploymentStatusService(client, "https://argocd.example.com", gate)
        status = await service.get_multi_environment_status(entity)
        result = await service.sync_application("payments-api-prod", SyncOptions(), "alice")
    """

    def __init__(
        self,
        client: ControllerClient,
        base_url: str,
        gate: PermissionGate,
        settings: StatusSettings | None = None,
        cache: StatusCache | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """
        Args:
            client: Controller client, already connected.
            base_url: ArgoCD server URL used for UI and log links.
            gate: Permission gate consulted for syncs and `can_sync`.
            settings: Pipeline tunables; defaults when omitted.
            cache: Shared status cache; a new one is built from settings when omitted.
            clock: Monotonic clock for a newly built cache.
        """
        self._settings = settings or StatusSettings()
        self._client = client
        self._gate = gate
        self._classifier = ErrorClassifier(base_url)
        self._normalizer = StatusNormalizer(self._classifier)
        if cache is None:
            cache = StatusCache(self._settings.cache_ttl, clock or time.monotonic)
        self._cache = cache
        self._resolver = EnvironmentResolver(
            annotation=self._settings.annotation,
            environments=self._settings.environments,
            timeout=self._settings.request_timeout,
        )
        self._orchestrator = SyncOrchestrator(
            client,
            gate,
            self._cache,
            self._classifier,
            sync_timeout=self._settings.sync_timeout,
            estimated_duration=timedelta(seconds=self._settings.estimated_sync_duration),
            retention=timedelta(seconds=self._settings.operation_retention),
        )

    @property
    def cache(self) -> StatusCache:
        return self._cache

    @property
    def resolver(self) -> EnvironmentResolver:
        return self._resolver

    # =========================================================================
    # STATUS READS
    # =========================================================================

    async def get_deployment_status(
        self,
        entity: Entity,
        identity: str | None = None,
    ) -> DeploymentStatus | None:
        """
        Status of the application named by the entity's annotation.

        Returns None when the entity has no ArgoCD annotation. Controller
        failures yield an Unknown/Unknown status with the classified error.
        """
        application_name = entity.annotations.get(self._settings.annotation, "").strip()
        if not application_name:
            return None

        environment = environment_from_name(application_name)
        try:
            status = await asyncio.wait_for(
                self._fetch_status(application_name, environment),
                timeout=self._settings.request_timeout,
            )
        except TimeoutError:
            status = self._normalizer.unavailable(
                application_name,
                environment,
                ControllerConnectionError(
                    f"Timed out after {self._settings.request_timeout}s fetching status of "
                    f"'{application_name}'",
                    application_name,
                ),
            )
        except Exception as e:
            logger.warning("Status read failed", application=application_name, error=str(e))
            status = self._normalizer.unavailable(application_name, environment, e)
        return self._for_identity(status, identity)

    async def get_multi_environment_status(
        self,
        entity: Entity,
        identity: str | None = None,
    ) -> MultiEnvironmentStatus | None:
        """
        Statuses of every environment of the entity, folded into overall health.

        Returns None when the entity has no ArgoCD annotation. Environments
        whose application does not exist are omitted.
        """
        names = self._resolver.resolve(entity)
        if names is None:
            return None

        async def fetch(environment: Environment, application_name: str) -> DeploymentStatus:
            return await self._fetch_status(application_name, environment)

        outcomes = await self._resolver.lookup(entity, fetch)
        if outcomes is None:
            return None

        statuses: dict[Environment, DeploymentStatus] = {}
        for environment, outcome in outcomes.items():
            application_name = names[environment]
            if isinstance(outcome, Exception):
                if isinstance(translate_failure(outcome, application_name), ApplicationNotFoundError):
                    logger.info(
                        "Application not found, omitting environment",
                        application=application_name,
                        environment=str(environment),
                    )
                    continue
                logger.warning(
                    "Status read failed",
                    application=application_name,
                    environment=str(environment),
                    error=str(outcome) or type(outcome).__name__,
                )
                outcome = self._normalizer.unavailable(application_name, environment, outcome)
            statuses[environment] = self._for_identity(outcome, identity)

        return aggregate(entity.name, statuses)

    async def get_error_details(self, application_name: str) -> list[DeploymentError]:
        """Classified errors currently attached to one application."""
        environment = environment_from_name(application_name)
        try:
            status = await self._fetch_status(application_name, environment)
        except Exception as e:
            return [self._classifier.classify(e, application_name, environment)]
        return list(status.errors)

    # =========================================================================
    # SYNC OPERATIONS
    # =========================================================================

    async def sync_application(
        self,
        application_name: str,
        options: SyncOptions | None = None,
        requested_by: str = "",
    ) -> SyncResult:
        return await self._orchestrator.sync(
            application_name, options or SyncOptions(), requested_by
        )

    async def get_sync_operation_status(self, sync_id: str) -> SyncOperation | None:
        return await self._orchestrator.get_sync_operation_status(sync_id)

    def get_sync_history(self, application_name: str, limit: int = 10) -> list[SyncOperation]:
        return self._orchestrator.get_sync_history(application_name, limit)

    # =========================================================================
    # LINKS AND HEALTH
    # =========================================================================

    def application_url(self, application_name: str) -> str:
        return self._classifier.application_url(application_name)

    def logs_url(self, application_name: str) -> str:
        return self._classifier.log_url(application_name)

    async def health_check(self) -> dict[str, Any]:
        """Probe the controller; never raises."""
        try:
            version = await asyncio.wait_for(
                self._client.get_version(), timeout=self._settings.request_timeout
            )
        except Exception as e:
            error = self._classifier.classify(e)
            return {"status": "unhealthy", "error": error.message, "errorType": error.type}
        return {
            "status": "healthy",
            "version": version.get("Version", "unknown"),
            "cachedApplications": len(self._cache),
        }

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _fetch_status(
        self, application_name: str, environment: Environment
    ) -> DeploymentStatus:
        # Overrides may point two environments at one application
        cached = self._cache.get(application_name)
        if cached is not None and cached.environment == environment:
            return cached

        logger.debug("Fetching application status", application=application_name)
        record = await self._client.get_application(application_name)
        status = self._normalizer.normalize(record, environment)
        self._cache.put(application_name, status)
        return status

    def _for_identity(self, status: DeploymentStatus, identity: str | None) -> DeploymentStatus:
        if identity is None or not status.can_sync:
            return status
        if self._gate.can_sync(status.application_name, identity):
            return status
        return dataclasses.replace(status, can_sync=False)
