# ABOUTME: Exception taxonomy for deployment status and sync failures
# ABOUTME: Each error carries a type tag and whether retrying can help

"""Exception taxonomy for controller and application failures."""

from __future__ import annotations


class DeploymentStatusError(Exception):
    """Base class for failures the ErrorClassifier knows how to explain."""

    type = "deployment_error"
    retryable = False

    def __init__(self, message: str, application_name: str | None = None) -> None:
        self.message = message
        self.application_name = application_name
        super().__init__(message)


class ControllerConnectionError(DeploymentStatusError, ConnectionError):
    """Controller unreachable, timed out, or answered with a 5xx."""

    type = "connection_error"
    retryable = True


class AuthorizationError(DeploymentStatusError):
    """The requesting identity may not perform the operation."""

    type = "authorization_error"


class ApplicationNotFoundError(DeploymentStatusError):
    """The annotation points at an application the controller does not know."""

    type = "application_not_found"


class SyncConflictError(DeploymentStatusError):
    """Another sync is already running for the application."""

    type = "sync_conflict"

    def __init__(
        self, message: str, application_name: str | None = None, force: bool = False
    ) -> None:
        super().__init__(message, application_name)
        self.retryable = force


class StateInconsistencyError(DeploymentStatusError):
    """The controller reported a health/sync value outside the known vocabulary."""

    type = "state_inconsistency"
