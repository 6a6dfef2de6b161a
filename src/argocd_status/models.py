# ABOUTME: Data model for deployment status, errors, and sync operations
# ABOUTME: Closed enums and immutable dataclasses shared by every component

"""
Data model for deployment status and sync tracking.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

ArgoCD speaks in loosely typed JSON. Everything past the normalizer speaks in
the types defined here:

    DeploymentStatus         One application in one environment
    DeploymentError          A classified problem with suggested actions
    MultiEnvironmentStatus   All environments of one service + overall health
    SyncOperation            A manual sync tracked from trigger to outcome
    SyncResult               What a sync request returns immediately
    Entity                   A catalog entity carrying the ArgoCD annotation

=============================================================================
WHY FROZEN DATACLASSES?
=============================================================================

Statuses are cached and handed to many concurrent readers. A frozen
dataclass cannot be modified after construction, so a reader can never see
another reader's edits, and two reads of the same cache entry are equal by
construction. SyncOperation is the one mutable type: the orchestrator owns it
and advances it through its lifecycle, and callers only ever receive copies.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

# =============================================================================
# ENUMS
# =============================================================================


class Environment(StrEnum):
    """Deployment environments, in promotion order."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class HealthStatus(StrEnum):
    """ArgoCD application health."""

    HEALTHY = "Healthy"
    PROGRESSING = "Progressing"
    DEGRADED = "Degraded"
    SUSPENDED = "Suspended"
    MISSING = "Missing"
    UNKNOWN = "Unknown"


class SyncState(StrEnum):
    """Whether live cluster state matches the desired state in Git."""

    SYNCED = "Synced"
    OUT_OF_SYNC = "OutOfSync"
    UNKNOWN = "Unknown"


class OverallHealth(StrEnum):
    """Health of a service across all of its environments."""

    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    UNKNOWN = "Unknown"


class Severity(StrEnum):
    """Severity of a deployment error."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SyncStatus(StrEnum):
    """Lifecycle of a manual sync operation."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncStatus.COMPLETED, SyncStatus.FAILED)


# Allowed forward transitions. A trigger that fails before the controller
# acknowledges it moves straight from pending to failed.
_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.PENDING: frozenset({SyncStatus.IN_PROGRESS, SyncStatus.FAILED}),
    SyncStatus.IN_PROGRESS: frozenset({SyncStatus.COMPLETED, SyncStatus.FAILED}),
    SyncStatus.COMPLETED: frozenset(),
    SyncStatus.FAILED: frozenset(),
}


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# =============================================================================
# DEPLOYMENT STATUS
# =============================================================================


@dataclass(frozen=True)
class DeploymentError:
    """
    A classified deployment problem.

    Created by the ErrorClassifier. `suggested_actions` is never empty so a
    human always has a next step; `recoverable` is True only for transient
    conditions that a retry may fix.
    """

    message: str
    type: str
    severity: Severity
    recoverable: bool
    suggested_actions: tuple[str, ...]
    details: str | None = None
    application_name: str | None = None
    environment: Environment | None = None
    log_url: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if not self.suggested_actions:
            raise ValueError("DeploymentError requires at least one suggested action")

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "type": self.type,
            "severity": str(self.severity),
            "recoverable": self.recoverable,
            "suggestedActions": list(self.suggested_actions),
            "details": self.details,
            "applicationName": self.application_name,
            "environment": str(self.environment) if self.environment else None,
            "logUrl": self.log_url,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class DeploymentStatus:
    """
    Normalized status of one ArgoCD application.

    INVARIANT: a Degraded or OutOfSync status always carries at least one
    error or a log URL, so users can diagnose the problem themselves.
    """

    application_name: str
    environment: Environment
    health: HealthStatus
    sync: SyncState
    namespace: str
    can_sync: bool = False
    last_sync_time: datetime | None = None
    errors: tuple[DeploymentError, ...] = ()
    log_url: str | None = None

    def __post_init__(self) -> None:
        if self.needs_attention and not self.errors and not self.log_url:
            raise ValueError(
                f"Status for '{self.application_name}' is {self.health}/{self.sync} "
                "but carries neither errors nor a log URL"
            )

    @property
    def needs_attention(self) -> bool:
        return self.health == HealthStatus.DEGRADED or self.sync == SyncState.OUT_OF_SYNC

    def to_dict(self) -> dict[str, Any]:
        return {
            "applicationName": self.application_name,
            "environment": str(self.environment),
            "health": str(self.health),
            "sync": str(self.sync),
            "namespace": self.namespace,
            "lastSyncTime": _isoformat(self.last_sync_time),
            "canSync": self.can_sync,
            "errors": [e.to_dict() for e in self.errors],
            "logUrl": self.log_url,
        }


@dataclass(frozen=True)
class MultiEnvironmentStatus:
    """Statuses of one service across environments, with the folded overall health."""

    service_name: str
    environments: dict[Environment, DeploymentStatus]
    overall_health: OverallHealth

    def to_dict(self) -> dict[str, Any]:
        return {
            "serviceName": self.service_name,
            "environments": {str(env): s.to_dict() for env, s in self.environments.items()},
            "overallHealth": str(self.overall_health),
        }


@dataclass(frozen=True)
class CacheEntry:
    """A cached status and the clock reading after which it is stale."""

    status: DeploymentStatus
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


# =============================================================================
# SYNC OPERATIONS
# =============================================================================


@dataclass(frozen=True)
class SyncOptions:
    """
    Options passed verbatim to the controller and recorded for audit.

    prune:   remove resources that are no longer in Git
    dry_run: validate only, change nothing
    force:   bypass conflict checks
    """

    prune: bool = False
    dry_run: bool = False
    force: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {"prune": self.prune, "dryRun": self.dry_run, "force": self.force}


@dataclass
class SyncOperation:
    """
    A manual sync, owned by the SyncOrchestrator for its whole lifetime.

    Status only moves forward: pending -> in_progress -> completed | failed.
    """

    sync_id: str
    application_name: str
    environment: Environment
    triggered_by: str
    options: SyncOptions
    triggered_at: datetime
    estimated_duration: timedelta
    status: SyncStatus = SyncStatus.PENDING
    phase: str | None = None
    message: str | None = None
    finished_at: datetime | None = None
    error: DeploymentError | None = None

    def advance(
        self,
        status: SyncStatus,
        *,
        message: str | None = None,
        error: DeploymentError | None = None,
        at: datetime | None = None,
    ) -> None:
        """Move to `status`, rejecting backward or sideways transitions."""
        if status == self.status:
            return
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(
                f"Sync operation {self.sync_id} cannot move from {self.status} to {status}"
            )
        self.status = status
        if message is not None:
            self.message = message
        if error is not None:
            self.error = error
        if status.is_terminal:
            self.finished_at = at or datetime.now(UTC)

    def snapshot(self) -> SyncOperation:
        """Detached copy for callers; the orchestrator keeps the original."""
        return dataclasses.replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "syncId": self.sync_id,
            "applicationName": self.application_name,
            "environment": str(self.environment),
            "triggeredBy": self.triggered_by,
            "options": self.options.to_dict(),
            "status": str(self.status),
            "triggeredAt": self.triggered_at.isoformat(),
            "estimatedDuration": self.estimated_duration.total_seconds(),
            "phase": self.phase,
            "message": self.message,
            "finishedAt": _isoformat(self.finished_at),
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class SyncResult:
    """Immediate answer to a sync request; never blocks for deployment completion."""

    success: bool
    sync_id: str | None = None
    operation: SyncOperation | None = None
    estimated_duration: timedelta | None = None
    error: DeploymentError | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "syncId": self.sync_id,
            "operation": self.operation.to_dict() if self.operation else None,
            "estimatedDuration": (
                self.estimated_duration.total_seconds() if self.estimated_duration else None
            ),
            "error": self.error.to_dict() if self.error else None,
        }


# =============================================================================
# CATALOG ENTITY
# =============================================================================


@dataclass(frozen=True)
class Entity:
    """The parts of a catalog entity this service reads."""

    name: str
    kind: str = "Component"
    namespace: str = "default"
    annotations: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Entity:
        metadata = data.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            kind=data.get("kind", "Component"),
            namespace=metadata.get("namespace", "default"),
            annotations=dict(metadata.get("annotations") or {}),
        )
