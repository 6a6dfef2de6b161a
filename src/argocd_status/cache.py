# ABOUTME: Short-lived status cache keyed by ArgoCD application name
# ABOUTME: Lazy expiry on read against an injected clock; entries swapped under a lock

"""
Status cache.

    cache = StatusCache(default_ttl=30.0)
    cache.put("payments-api-prod", status)
    cache.get("payments-api-prod")   # same object until the TTL elapses
    cache.invalidate("payments-api-prod")

Entries are immutable CacheEntry values. A write replaces the whole entry
under the lock, so a concurrent reader sees either the old entry or the new
one, never a mix.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

import structlog

from argocd_status.models import CacheEntry

if TYPE_CHECKING:
    from collections.abc import Callable

    from argocd_status.models import DeploymentStatus

logger = structlog.get_logger(__name__)

DEFAULT_TTL = 30.0


class StatusCache:
    """TTL cache of DeploymentStatus values."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("Cache TTL must be positive")
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, application_name: str) -> DeploymentStatus | None:
        """Cached status, or None when absent or expired (expired entries are dropped)."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(application_name)
            if entry is None:
                return None
            if not entry.is_fresh(now):
                del self._entries[application_name]
                logger.debug("Status cache entry expired", application=application_name)
                return None
            return entry.status

    def put(
        self,
        application_name: str,
        status: DeploymentStatus,
        ttl: float | None = None,
    ) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        entry = CacheEntry(status=status, expires_at=self._clock() + ttl)
        with self._lock:
            self._entries[application_name] = entry

    def invalidate(self, application_name: str) -> None:
        with self._lock:
            removed = self._entries.pop(application_name, None)
        if removed is not None:
            logger.debug("Status cache entry invalidated", application=application_name)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
