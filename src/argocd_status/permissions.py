# ABOUTME: Permission gate deciding whether an identity may sync an application
# ABOUTME: Policy implementation matches fnmatch application globs against allowed identities

"""
Permission gate.

The orchestrator asks one question, "can `identity` sync `application`?",
through the PermissionGate protocol. PolicyPermissionGate answers it from
configured rules:

    MCP_SYNC_POLICY='[
      {"application": "payments-*", "identities": ["alice", "bob"]},
      {"application": "*-development", "identities": ["*"]}
    ]'

An identity may sync an application when any rule whose glob matches the
application lists the identity (or "*"). No rules means nobody may sync.
"""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterable

    from argocd_status.config import SyncPolicyRule

logger = structlog.get_logger(__name__)


@runtime_checkable
class PermissionGate(Protocol):
    def can_sync(self, application_name: str, identity: str) -> bool: ...


class PolicyPermissionGate:
    """PermissionGate backed by SyncPolicyRule globs. Deterministic, no caching."""

    def __init__(self, rules: Iterable[SyncPolicyRule]) -> None:
        self._rules = tuple(rules)

    def can_sync(self, application_name: str, identity: str) -> bool:
        if not identity:
            return False
        for rule in self._rules:
            if not fnmatchcase(application_name, rule.application):
                continue
            if "*" in rule.identities or identity in rule.identities:
                return True
        logger.debug("Sync permission denied", application=application_name, identity=identity)
        return False
