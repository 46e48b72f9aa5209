"""Version-stamped cache of resolved permission contexts.

Entries are keyed by ``(principal, tenant, school)`` and carry the version
token they were computed against. A read compares that token with the
principal's current one; a mismatch is a miss and drops the entry.
Invalidation therefore never scans: ``invalidate_version`` only writes a
new token through the identity store.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from .models import PermissionContext
from .stores.base import IdentityBackend

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, Optional[str]]


@dataclass(frozen=True)
class _Entry:
    context: PermissionContext
    stored_at: float


class PermissionCache:
    """Bounded LRU of :class:`PermissionContext` snapshots.

    Safe to share between concurrent requests: every operation holds the
    lock only for an O(1) dict update.

    Args:
        version_store: Identity store used to persist new version tokens.
        max_entries: Capacity before least-recently-used eviction.
        ttl_seconds: Max age of an entry; ``0`` disables the age check.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        version_store: IdentityBackend,
        max_entries: int = 10_000,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._version_store = version_store
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[CacheKey, _Entry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def key(principal_id: str, tenant_id: str, school_id: Optional[str] = None) -> CacheKey:
        return (principal_id, tenant_id, school_id)

    def get(
        self,
        principal_id: str,
        tenant_id: str,
        current_version: str,
        school_id: Optional[str] = None,
    ) -> Optional[PermissionContext]:
        """Return the cached context only if it was computed under ``current_version``."""
        key = self.key(principal_id, tenant_id, school_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.context.version_token != current_version:
                del self._entries[key]
                self._misses += 1
                logger.debug("Stale permission context for %s in %s", principal_id, tenant_id)
                return None
            if self._ttl and self._clock() - entry.stored_at > self._ttl:
                del self._entries[key]
                self._misses += 1
                logger.debug("Expired permission context for %s in %s", principal_id, tenant_id)
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.context

    def set(self, context: PermissionContext) -> None:
        """Store (or overwrite) a resolved context. Unresolved contexts are ignored."""
        if context.principal_id is None or context.version_token is None:
            return
        key = self.key(context.principal_id, context.tenant_id, context.school_id)
        with self._lock:
            self._entries[key] = _Entry(context, self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1

    async def invalidate_version(self, principal_id: str) -> str:
        """Rotate the principal's version token; every cached context becomes stale.

        Returns:
            The new token.
        """
        token = str(uuid.uuid4())
        await self._version_store.set_version_token(principal_id, token)
        logger.info("Permission version rotated for principal %s", principal_id)
        return token

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self._max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["PermissionCache"]
