# ABOUTME: Error classifier turning controller and application failures into DeploymentErrors
# ABOUTME: Assigns type, severity, recoverability, suggested actions, and a log link

"""
Error classifier.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Failures reach us in three shapes:

1. TAXONOMY EXCEPTIONS raised by our own components
   (ApplicationNotFoundError, SyncConflictError, ...)
2. TRANSPORT FAILURES from the controller client
   (ArgocdError with an HTTP status, httpx timeouts, asyncio timeouts)
3. MESSAGES reported by ArgoCD itself
   ("Pod CrashLoopBackOff: container failed to start", condition messages)

`ErrorClassifier.classify` accepts any of them and returns one
DeploymentError with a type tag, a severity, whether a retry can help, at
least one suggested action, and a link to the application's logs.

=============================================================================
RECOVERABLE VS NOT
=============================================================================

`recoverable` is True only for transient conditions: timeouts, refused
connections, a controller 5xx, a cluster temporarily out of capacity.
Everything that needs a human to change configuration, code, or permissions
is not recoverable, however likely a fix is.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
import structlog

from argocd_status.errors import (
    ApplicationNotFoundError,
    AuthorizationError,
    ControllerConnectionError,
    DeploymentStatusError,
    StateInconsistencyError,
    SyncConflictError,
)
from argocd_status.models import DeploymentError, Environment, Severity
from argocd_status.utils.client import ArgocdError

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = structlog.get_logger(__name__)

CONFLICT_MARKERS = ("another operation is already in progress", "already running")


@dataclass(frozen=True)
class _Rule:
    type: str
    severity: Severity
    recoverable: bool
    suggested_actions: tuple[str, ...]


# Rules for taxonomy exceptions, keyed by exception type tag
_TAXONOMY_RULES: dict[str, _Rule] = {
    ControllerConnectionError.type: _Rule(
        type=ControllerConnectionError.type,
        severity=Severity.MEDIUM,
        recoverable=True,
        suggested_actions=(
            "Retry the request once the ArgoCD server is reachable",
            "Check network connectivity to the ArgoCD server",
            "Check the ArgoCD server status page or pods",
        ),
    ),
    AuthorizationError.type: _Rule(
        type=AuthorizationError.type,
        severity=Severity.HIGH,
        recoverable=False,
        suggested_actions=(
            "Ask the service owners for sync permission on this application",
            "Review the sync policy rules for this application",
        ),
    ),
    ApplicationNotFoundError.type: _Rule(
        type=ApplicationNotFoundError.type,
        severity=Severity.HIGH,
        recoverable=False,
        suggested_actions=(
            "Verify the argocd/app-name annotation matches an existing ArgoCD application",
            "Check that the application exists in the expected ArgoCD project",
        ),
    ),
    SyncConflictError.type: _Rule(
        type=SyncConflictError.type,
        severity=Severity.MEDIUM,
        recoverable=False,
        suggested_actions=(
            "Wait for the running sync operation to finish",
            "Retry with force to override the running operation",
        ),
    ),
    StateInconsistencyError.type: _Rule(
        type=StateInconsistencyError.type,
        severity=Severity.HIGH,
        recoverable=False,
        suggested_actions=(
            "Inspect the application in the ArgoCD UI",
            "Check whether the ArgoCD version reports new health or sync states",
        ),
    ),
}

# Rules for controller-reported messages, checked in order
_MESSAGE_RULES: list[tuple[re.Pattern[str], _Rule]] = [
    (
        re.compile(r"CrashLoopBackOff", re.I),
        _Rule(
            type="resource_error",
            severity=Severity.HIGH,
            recoverable=False,
            suggested_actions=(
                "Check application logs for startup errors",
                "Verify resource limits and requests",
                "Check environment variables and configuration",
                "Review recent code changes",
            ),
        ),
    ),
    (
        re.compile(r"ImagePullBackOff|ErrImagePull", re.I),
        _Rule(
            type="resource_error",
            severity=Severity.HIGH,
            recoverable=False,
            suggested_actions=(
                "Verify container image exists and is accessible",
                "Check image registry credentials",
                "Verify image tag is correct",
            ),
        ),
    ),
    (
        re.compile(r"OOMKilled", re.I),
        _Rule(
            type="resource_error",
            severity=Severity.HIGH,
            recoverable=False,
            suggested_actions=(
                "Increase memory limits for the container",
                "Profile application memory usage",
            ),
        ),
    ),
    (
        re.compile(r"Insufficient\s+\w*\s*(resources|cpu|memory)", re.I),
        _Rule(
            type="resource_error",
            severity=Severity.MEDIUM,
            recoverable=True,
            suggested_actions=(
                "Check cluster resource availability",
                "Review resource requests and limits",
                "Request cluster capacity increase",
            ),
        ),
    ),
    (
        re.compile(r"sync.*failed|ComparisonError", re.I),
        _Rule(
            type="sync_failed",
            severity=Severity.MEDIUM,
            recoverable=False,
            suggested_actions=(
                "Check Git repository accessibility",
                "Verify manifest syntax and validity",
                "Review recent Git commits",
                "Try manual sync with force option",
            ),
        ),
    ),
    (
        re.compile(r"permission.*denied|Forbidden", re.I),
        _Rule(
            type="permission_error",
            severity=Severity.HIGH,
            recoverable=False,
            suggested_actions=(
                "Contact platform team for RBAC review",
                "Verify service account permissions",
                "Review ArgoCD project permissions",
            ),
        ),
    ),
    (
        re.compile(r"time[d\s-]*out|connection.*refused", re.I),
        _Rule(
            type="network_error",
            severity=Severity.MEDIUM,
            recoverable=True,
            suggested_actions=(
                "Check network connectivity",
                "Verify DNS resolution",
                "Retry operation after network recovery",
            ),
        ),
    ),
]

_DEFAULT_RULE = _Rule(
    type="health_check_failed",
    severity=Severity.MEDIUM,
    recoverable=False,
    suggested_actions=(
        "Check application logs for detailed error information",
        "Review recent deployments and changes",
        "Verify application configuration",
    ),
)


def translate_failure(
    failure: BaseException,
    application_name: str | None = None,
) -> DeploymentStatusError | None:
    """
    Map a transport-level exception onto the taxonomy.

    Returns the failure itself if it already belongs to the taxonomy, None if
    it cannot be mapped (the classifier then falls back to message rules).
    """
    if isinstance(failure, DeploymentStatusError):
        return failure

    if isinstance(failure, ArgocdError):
        text = f"{failure.message} {failure.details or ''}".lower()
        if failure.code == 404:
            return ApplicationNotFoundError(failure.message, application_name)
        if failure.code in (401, 403):
            return AuthorizationError(failure.message, application_name)
        if failure.code == 409 or any(marker in text for marker in CONFLICT_MARKERS):
            return SyncConflictError(failure.message, application_name)
        if failure.code >= 500:
            return ControllerConnectionError(str(failure), application_name)
        return None

    if isinstance(failure, (httpx.TimeoutException, asyncio.TimeoutError)):
        return ControllerConnectionError(
            f"Timed out waiting for the ArgoCD server: {failure}".rstrip(": "), application_name
        )
    if isinstance(failure, (httpx.TransportError, ConnectionError)):
        return ControllerConnectionError(
            f"Cannot reach the ArgoCD server: {failure}".rstrip(": "), application_name
        )
    return None


@dataclass(frozen=True)
class RecoveryAction:
    """A concrete remediation offered next to an error."""

    id: str
    title: str
    description: str
    automated: bool
    risk_level: str
    estimated_time: str
    prerequisites: tuple[str, ...] = ()


class ErrorClassifier:
    """Classify failures into DeploymentErrors with log links pointing at ArgoCD."""

    def __init__(self, base_url: str) -> None:
        self._base_url = base_url.rstrip("/")

    def application_url(self, application_name: str) -> str:
        return f"{self._base_url}/applications/{application_name}"

    def log_url(self, application_name: str) -> str:
        return f"{self.application_url(application_name)}/logs"

    def classify(
        self,
        failure: BaseException | str,
        application_name: str | None = None,
        environment: Environment | None = None,
    ) -> DeploymentError:
        """
        Classify one failure.

        Args:
            failure: An exception or a controller-reported message.
            application_name: Application the failure belongs to, for the log link.
            environment: Environment of the application; HIGH severity errors
                in production are escalated to CRITICAL.
        """
        details: str | None = None
        if isinstance(failure, str):
            message = failure
            rule = self._match_message(message)
        else:
            mapped = translate_failure(failure, application_name)
            if mapped is not None:
                message = mapped.message
                rule = _TAXONOMY_RULES[mapped.type]
                if isinstance(mapped, SyncConflictError) and mapped.retryable:
                    rule = _Rule(rule.type, rule.severity, True, rule.suggested_actions)
                application_name = application_name or mapped.application_name
                if mapped is not failure:
                    details = str(failure)
            else:
                message = str(failure) or type(failure).__name__
                rule = self._match_message(message)

        severity = rule.severity
        if severity == Severity.HIGH and environment == Environment.PRODUCTION:
            severity = Severity.CRITICAL
        logger.debug("Classified failure", type=rule.type, application=application_name)

        return DeploymentError(
            message=message,
            type=rule.type,
            severity=severity,
            recoverable=rule.recoverable,
            suggested_actions=rule.suggested_actions,
            details=details,
            application_name=application_name,
            environment=environment,
            log_url=self.log_url(application_name) if application_name else None,
        )

    def classify_all(
        self,
        messages: Sequence[str],
        application_name: str | None = None,
        environment: Environment | None = None,
    ) -> tuple[DeploymentError, ...]:
        return tuple(self.classify(m, application_name, environment) for m in messages if m)

    @staticmethod
    def _match_message(message: str) -> _Rule:
        for pattern, rule in _MESSAGE_RULES:
            if pattern.search(message):
                return rule
        return _DEFAULT_RULE


def recovery_actions(error: DeploymentError) -> list[RecoveryAction]:
    """Remediations to offer next to `error`: generic ones first, then type-specific."""
    actions = [
        RecoveryAction(
            id="manual-sync",
            title="Manual Sync",
            description="Trigger a manual sync to retry the deployment",
            automated=False,
            risk_level="low",
            estimated_time="2-5 minutes",
            prerequisites=("Sync permissions",),
        ),
        RecoveryAction(
            id="force-sync",
            title="Force Sync",
            description="Force sync to override any conflicts",
            automated=False,
            risk_level="medium",
            estimated_time="2-5 minutes",
            prerequisites=("Sync permissions", "Understanding of potential conflicts"),
        ),
        RecoveryAction(
            id="view-logs",
            title="View Application Logs",
            description="Check detailed application logs for more information",
            automated=True,
            risk_level="low",
            estimated_time="1 minute",
        ),
    ]

    if error.type == "resource_error":
        actions.append(
            RecoveryAction(
                id="scale-down",
                title="Scale Down Application",
                description="Temporarily scale down to reduce resource usage",
                automated=False,
                risk_level="medium",
                estimated_time="1-2 minutes",
                prerequisites=("Scaling permissions", "Impact assessment"),
            )
        )
    elif error.type == "sync_failed":
        actions.append(
            RecoveryAction(
                id="check-git",
                title="Check Git Repository",
                description="Verify Git repository accessibility and recent commits",
                automated=True,
                risk_level="low",
                estimated_time="2-3 minutes",
                prerequisites=("Git access",),
            )
        )
    elif error.type in ("permission_error", AuthorizationError.type):
        actions.append(
            RecoveryAction(
                id="contact-platform-team",
                title="Contact Platform Team",
                description="Request RBAC review and permission adjustment",
                automated=False,
                risk_level="low",
                estimated_time="15-30 minutes",
                prerequisites=("Platform team contact information",),
            )
        )

    return actions
