# ABOUTME: Status normalizer mapping raw ArgoCD application records to DeploymentStatus
# ABOUTME: Unknown vocabulary becomes Unknown plus a classified state inconsistency error

"""
Status normalizer.

An ArgoCD application record, trimmed to the fields read here:

    {
      "metadata": {"name": "payments-api-prod"},
      "spec": {"destination": {"namespace": "payments"}},
      "status": {
        "health": {"status": "Degraded"},
        "sync": {"status": "OutOfSync"},
        "reconciledAt": "2024-01-15T10:30:00Z",
        "operationState": {"phase": "Failed", "message": "...",
                           "finishedAt": "2024-01-15T10:29:00Z"},
        "conditions": [{"type": "ComparisonError", "message": "..."}],
        "resources": [{"kind": "Deployment", "name": "api",
                       "health": {"status": "Degraded", "message": "..."}}]
      }
    }

Normalization is a pure function of the record: no I/O, no clock reads.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from argocd_status.errors import ApplicationNotFoundError, StateInconsistencyError
from argocd_status.models import DeploymentStatus, Environment, HealthStatus, SyncState
from argocd_status.resolver import environment_from_name

if TYPE_CHECKING:
    from argocd_status.classifier import ErrorClassifier
    from argocd_status.models import DeploymentError

logger = structlog.get_logger(__name__)

FAILED_PHASES = frozenset({"Failed", "Error"})


def parse_time(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def default_namespace(environment: Environment) -> str:
    return "prod" if environment == Environment.PRODUCTION else str(environment)


class StatusNormalizer:
    """Turn raw application records into DeploymentStatus values."""

    def __init__(self, classifier: ErrorClassifier) -> None:
        self._classifier = classifier

    def normalize(
        self,
        record: dict[str, Any],
        environment: Environment | None = None,
    ) -> DeploymentStatus:
        """
        Normalize one application record.

        Args:
            record: Raw record from GET /api/v1/applications/{name}.
            environment: Environment the caller resolved the name for; derived
                from the name suffix when omitted.

        Raises:
            ApplicationNotFoundError: If the record has no application name.
        """
        metadata = record.get("metadata") or {}
        name = metadata.get("name")
        if not name:
            raise ApplicationNotFoundError("Application record carries no name")

        environment = environment or environment_from_name(name)
        status = record.get("status") or {}
        destination = (record.get("spec") or {}).get("destination") or {}
        operation = status.get("operationState") or {}

        errors: list[DeploymentError] = []
        health = self._parse(
            HealthStatus, (status.get("health") or {}).get("status"), "health", name, environment, errors
        )
        sync = self._parse(
            SyncState, (status.get("sync") or {}).get("status"), "sync", name, environment, errors
        )

        if health == HealthStatus.DEGRADED or sync == SyncState.OUT_OF_SYNC:
            errors.extend(
                self._classifier.classify_all(
                    self._problem_messages(status, operation), name, environment
                )
            )

        return DeploymentStatus(
            application_name=name,
            environment=environment,
            health=health,
            sync=sync,
            namespace=destination.get("namespace") or default_namespace(environment),
            can_sync=True,
            last_sync_time=parse_time(operation.get("finishedAt"))
            or parse_time(status.get("reconciledAt")),
            errors=tuple(errors),
            log_url=self._classifier.log_url(name),
        )

    def unavailable(
        self,
        application_name: str,
        environment: Environment,
        failure: BaseException,
    ) -> DeploymentStatus:
        """Unknown/Unknown status standing in for an application that could not be read."""
        return DeploymentStatus(
            application_name=application_name,
            environment=environment,
            health=HealthStatus.UNKNOWN,
            sync=SyncState.UNKNOWN,
            namespace=default_namespace(environment),
            can_sync=False,
            errors=(self._classifier.classify(failure, application_name, environment),),
            log_url=self._classifier.log_url(application_name),
        )

    def _parse(
        self,
        enum: type[HealthStatus] | type[SyncState],
        raw: Any,
        field: str,
        name: str,
        environment: Environment,
        errors: list[DeploymentError],
    ) -> Any:
        if raw is None:
            return enum.UNKNOWN
        try:
            return enum(raw)
        except ValueError:
            logger.warning("Unrecognized controller state", application=name, field=field, value=raw)
            errors.append(
                self._classifier.classify(
                    StateInconsistencyError(
                        f"Controller reported unrecognized {field} status '{raw}'", name
                    ),
                    name,
                    environment,
                )
            )
            return enum.UNKNOWN

    @staticmethod
    def _problem_messages(status: dict[str, Any], operation: dict[str, Any]) -> list[str]:
        messages = [c.get("message", "") for c in status.get("conditions") or []]
        if operation.get("phase") in FAILED_PHASES and operation.get("message"):
            messages.append(operation["message"])
        for resource in status.get("resources") or []:
            resource_health = resource.get("health") or {}
            if resource_health.get("status") == HealthStatus.DEGRADED and resource_health.get(
                "message"
            ):
                messages.append(
                    f"{resource.get('kind', 'Resource')} {resource.get('name', '')}: "
                    f"{resource_health['message']}"
                )
        return messages
