# ABOUTME: Sync orchestrator triggering manual ArgoCD syncs and tracking them to completion
# ABOUTME: Checks the permission gate, rejects local conflicts, records SyncOperations by id

"""
Sync orchestrator.

=============================================================================
WHAT HAPPENS ON sync()
=============================================================================

    1. Permission gate      denied -> SyncResult(success=False, AuthorizationError)
                            (the controller is never called, nothing is recorded)
    2. Local conflict       an in-flight operation on the same application and
                            no force -> SyncResult(success=False, SyncConflictError)
    3. Record               new SyncOperation, status pending
    4. Trigger              controller.sync_application under asyncio.timeout
         ok   -> in_progress, cache entry invalidated (unless dry run),
                 SyncResult(success=True, sync_id, operation, estimated_duration)
         fail -> failed, SyncResult(success=False, classified error)

sync() never waits for the deployment itself. Callers poll
get_sync_operation_status(sync_id), which asks the controller for the
application's operationState.phase while the operation is in flight:

    Running              -> stays in_progress
    Succeeded            -> completed
    Failed | Error       -> failed (message classified)

The same refresh runs for an in-flight operation before a new sync of its
application is judged a conflict, so a sync nobody polled stops blocking
once the controller reports it finished.

An operationState whose startedAt is earlier than the operation's
triggered_at belongs to a previous sync and is ignored. Refreshes of one
operation are serialized; a refresh that finds the operation already
terminal leaves it alone.

=============================================================================
OPERATION STORE
=============================================================================

Operations live in memory, keyed by sync id. Callers only ever receive
snapshots, so nothing outside this class can move an operation backwards.
Operations older than the retention window are dropped lazily each time a
new sync is recorded.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from argocd_status.errors import AuthorizationError, ControllerConnectionError, SyncConflictError
from argocd_status.models import SyncOperation, SyncOptions, SyncResult, SyncStatus
from argocd_status.normalizer import FAILED_PHASES, parse_time
from argocd_status.resolver import environment_from_name

if TYPE_CHECKING:
    from collections.abc import Callable

    from argocd_status.cache import StatusCache
    from argocd_status.classifier import ErrorClassifier
    from argocd_status.permissions import PermissionGate
    from argocd_status.utils.client import ControllerClient

logger = structlog.get_logger(__name__)

DEFAULT_ESTIMATED_DURATION = timedelta(seconds=120)
DEFAULT_RETENTION = timedelta(hours=24)
# ArgoCD reports startedAt at whole-second precision
STARTED_AT_TOLERANCE = timedelta(seconds=5)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_sync_id() -> str:
    return f"sync-{uuid.uuid4().hex}"


def _operation_state(record: dict[str, Any]) -> dict[str, Any]:
    return (record.get("status") or {}).get("operationState") or {}


def _belongs_to(state: dict[str, Any], operation: SyncOperation) -> bool:
    """False when the state was started before `operation` was triggered."""
    started_at = parse_time(state.get("startedAt"))
    if started_at is None or started_at.tzinfo is None:
        return True
    return started_at >= operation.triggered_at - STARTED_AT_TOLERANCE


class SyncOrchestrator:
    """Trigger and track manual syncs."""

    def __init__(
        self,
        client: ControllerClient,
        gate: PermissionGate,
        cache: StatusCache,
        classifier: ErrorClassifier,
        *,
        sync_timeout: float = 5.0,
        estimated_duration: timedelta = DEFAULT_ESTIMATED_DURATION,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_sync_id,
    ) -> None:
        self._client = client
        self._gate = gate
        self._cache = cache
        self._classifier = classifier
        self._sync_timeout = sync_timeout
        self._estimated_duration = estimated_duration
        self._retention = retention
        self._clock = clock
        self._id_factory = id_factory
        self._operations: dict[str, SyncOperation] = {}
        self._poll_locks: dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()

    async def sync(
        self,
        application_name: str,
        options: SyncOptions,
        requested_by: str,
    ) -> SyncResult:
        """
        Trigger a manual sync on behalf of `requested_by`.

        Returns as soon as the controller acknowledges (or rejects) the
        request. Failures are reported in the result, never raised.
        """
        environment = environment_from_name(application_name)
        log = logger.bind(application=application_name, requested_by=requested_by)

        if not self._gate.can_sync(application_name, requested_by):
            log.warning("Sync denied by permission gate")
            denied = AuthorizationError(
                f"'{requested_by}' is not allowed to sync '{application_name}'",
                application_name,
            )
            return SyncResult(
                success=False,
                error=self._classifier.classify(denied, application_name, environment),
            )

        async with self._lock:
            self.cleanup()
            for candidate in self._operations_on(application_name):
                await self._refresh(candidate)
            running = self._in_flight(application_name)
            if running is not None and not options.force:
                log.info("Sync rejected, operation already in flight", sync_id=running.sync_id)
                conflict = SyncConflictError(
                    f"Sync {running.sync_id} is already {running.status} for '{application_name}'",
                    application_name,
                )
                return SyncResult(
                    success=False,
                    error=self._classifier.classify(conflict, application_name, environment),
                )

            operation = SyncOperation(
                sync_id=self._id_factory(),
                application_name=application_name,
                environment=environment,
                triggered_by=requested_by,
                options=options,
                triggered_at=self._clock(),
                estimated_duration=self._estimated_duration,
            )
            self._operations[operation.sync_id] = operation

        log = log.bind(sync_id=operation.sync_id)
        log.info("Triggering sync", **options.to_dict())

        try:
            async with asyncio.timeout(self._sync_timeout):
                ack = await self._client.sync_application(
                    application_name,
                    dry_run=options.dry_run,
                    prune=options.prune,
                    force=options.force,
                )
        except TimeoutError:
            return self._fail(
                operation,
                ControllerConnectionError(
                    f"Timed out after {self._sync_timeout}s triggering sync of '{application_name}'",
                    application_name,
                ),
            )
        except Exception as e:
            return self._fail(operation, e)

        state = _operation_state(ack)
        if _belongs_to(state, operation):
            operation.phase = state.get("phase") or operation.phase
            operation.advance(SyncStatus.IN_PROGRESS, message=state.get("message"))
        else:
            operation.advance(SyncStatus.IN_PROGRESS)

        if not options.dry_run:
            self._cache.invalidate(application_name)

        log.info("Sync in progress", phase=operation.phase)
        return SyncResult(
            success=True,
            sync_id=operation.sync_id,
            operation=operation.snapshot(),
            estimated_duration=operation.estimated_duration,
        )

    async def get_sync_operation_status(self, sync_id: str) -> SyncOperation | None:
        """Current snapshot of an operation, refreshed from the controller while in flight."""
        operation = self._operations.get(sync_id)
        if operation is None:
            return None
        await self._refresh(operation)
        return operation.snapshot()

    def get_sync_history(self, application_name: str, limit: int = 10) -> list[SyncOperation]:
        """Operations on one application, newest first."""
        matching = [
            op for op in self._operations.values() if op.application_name == application_name
        ]
        matching.sort(key=lambda op: op.triggered_at, reverse=True)
        return [op.snapshot() for op in matching[: max(limit, 0)]]

    def cleanup(self, max_age: timedelta | None = None) -> int:
        """Drop operations triggered longer ago than `max_age` (default: retention)."""
        cutoff = self._clock() - (max_age if max_age is not None else self._retention)
        expired = [sid for sid, op in self._operations.items() if op.triggered_at < cutoff]
        for sync_id in expired:
            del self._operations[sync_id]
            self._poll_locks.pop(sync_id, None)
        if expired:
            logger.debug("Dropped expired sync operations", count=len(expired))
        return len(expired)

    def _operations_on(self, application_name: str) -> list[SyncOperation]:
        return [
            op
            for op in self._operations.values()
            if op.application_name == application_name and not op.status.is_terminal
        ]

    def _in_flight(self, application_name: str) -> SyncOperation | None:
        in_flight = self._operations_on(application_name)
        return in_flight[0] if in_flight else None

    async def _refresh(self, operation: SyncOperation) -> None:
        """Poll an in-progress operation, one poll at a time per operation."""
        lock = self._poll_locks.setdefault(operation.sync_id, asyncio.Lock())
        async with lock:
            if operation.status == SyncStatus.IN_PROGRESS:
                await self._poll(operation)

    def _fail(self, operation: SyncOperation, failure: BaseException) -> SyncResult:
        error = self._classifier.classify(
            failure, operation.application_name, operation.environment
        )
        operation.advance(SyncStatus.FAILED, message=error.message, error=error, at=self._clock())
        logger.warning(
            "Sync trigger failed",
            application=operation.application_name,
            sync_id=operation.sync_id,
            error_type=error.type,
            error=error.message,
        )
        return SyncResult(
            success=False,
            sync_id=operation.sync_id,
            operation=operation.snapshot(),
            error=error,
        )

    async def _poll(self, operation: SyncOperation) -> None:
        try:
            async with asyncio.timeout(self._sync_timeout):
                record = await self._client.get_application(operation.application_name)
        except Exception as e:
            # Operation stays as it was; the next poll tries again
            logger.warning(
                "Sync status poll failed",
                application=operation.application_name,
                sync_id=operation.sync_id,
                error=str(e) or type(e).__name__,
            )
            return

        if operation.status.is_terminal:
            return
        state = _operation_state(record)
        phase = state.get("phase")
        if not phase:
            return
        if not _belongs_to(state, operation):
            logger.debug(
                "Ignoring operation state from an earlier sync",
                sync_id=operation.sync_id,
                phase=phase,
                started_at=state.get("startedAt"),
            )
            return
        operation.phase = phase
        message = state.get("message")
        if message:
            operation.message = message

        if phase == "Succeeded":
            operation.advance(SyncStatus.COMPLETED, at=self._clock())
        elif phase in FAILED_PHASES:
            error = self._classifier.classify(
                message or f"Sync operation ended in phase {phase}",
                operation.application_name,
                operation.environment,
            )
            operation.advance(SyncStatus.FAILED, error=error, at=self._clock())
        logger.debug(
            "Polled sync operation",
            sync_id=operation.sync_id,
            phase=phase,
            status=str(operation.status),
        )
