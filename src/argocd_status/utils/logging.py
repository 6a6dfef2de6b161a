# ABOUTME: Structured logging with correlation IDs for the deployment status service
# ABOUTME: Implements audit logging for status reads and sync operations

"""
Structured logging with correlation IDs and audit trails.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

1. STRUCTURED LOGGING: every log line is a set of key/value pairs
   (JSON in production, colored text in development).

2. CORRELATION IDs: a short ID bound to the current request, so the status
   lookups fanned out for one service can be grepped together:

       {"correlation_id": "a1b2c3d4", "event": "Fetching application status",
        "application": "payments-api-staging"}
       {"correlation_id": "a1b2c3d4", "event": "Fetching application status",
        "application": "payments-api-prod"}

3. AUDIT LOGGING: who triggered which sync, with which options, and what
   came of it.

=============================================================================
WHY contextvars?
=============================================================================

Per-environment lookups run as concurrent asyncio tasks. A ContextVar is
copied into each task created by asyncio.gather, so every task logs with the
correlation ID of the request that spawned it, while concurrent requests
keep their own IDs.
"""

from __future__ import annotations

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path


# =============================================================================
# CORRELATION ID MANAGEMENT
# =============================================================================

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """
    Get the current correlation ID, generating one if none is set.

    Generated IDs are the first 8 characters of a UUID4: unique enough
    within a request window while keeping log lines short.
    """
    cid = correlation_id.get()
    if not cid:
        cid = str(uuid.uuid4())[:8]
        correlation_id.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """Set the correlation ID for the current context ("" regenerates on next read)."""
    correlation_id.set(cid)


def add_correlation_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Structlog processor adding `correlation_id` to every event."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structured logging. Call once at startup.

    Processor pipeline:
        merge_contextvars -> add_log_level -> TimeStamper -> add_correlation_id
        -> JSONRenderer | ConsoleRenderer

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        json_output: JSON lines for log aggregators instead of console text.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# AUDIT LOGGER
# =============================================================================


class AuditLogger:
    """
    Audit logger for status reads and sync operations.

    Each entry records:
        timestamp       UTC ISO 8601
        correlation_id  request identifier
        action          "get_deployment_status", "sync_application", ...
        target          service or application name
        result          "success", "initiated", "dry_run", "blocked", "denied", "error"
        details         optional context (sync options, sync ID, error text)

    Entries go to a JSON-lines file when a path is configured, otherwise
    through structlog under the "audit" logger.

        {"timestamp": "2024-01-15T10:30:05+00:00", "correlation_id": "def45678",
         "action": "sync_application", "target": "payments-api-prod",
         "result": "initiated",
         "details": {"syncId": "sync-...", "triggeredBy": "alice", "prune": true}}
    """

    def __init__(self, log_path: Path | None = None) -> None:
        """
        Args:
            log_path: Append-only JSON-lines file, or None to log via structlog.
        """
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record one auditable action."""
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }
        if details:
            entry["details"] = details

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=details,
            )

    def log_read(self, action: str, target: str) -> None:
        """Record a successful read."""
        self.log(action, target, "success")

    def log_write(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record a write such as a sync trigger ("initiated", "dry_run", ...)."""
        self.log(action, target, result, details)

    def log_blocked(self, action: str, target: str, reason: str) -> None:
        """Record an operation stopped by a safety check or a permission denial."""
        self.log(action, target, "blocked", {"reason": reason})

    def log_error(self, action: str, target: str, error: str) -> None:
        """Record an operation that failed with an error."""
        self.log(action, target, "error", {"error": error})
