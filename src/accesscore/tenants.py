"""Cached tenant alias and school slug resolution.

Inbound requests name a tenant by canonical id, subdomain or alias. UUIDs
pass through untouched; anything else is looked up once and cached.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable, Optional

from .exceptions import AccessCoreError, StorageError, TenantNotFoundError
from .stores.base import TenantBackend

logger = logging.getLogger(__name__)


def is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        return False
    return True


class TenantAliasResolver:
    """Normalizes tenant aliases and school slugs to canonical ids.

    Args:
        backend: Store answering alias and slug lookups.
        ttl_seconds: Max age of a cached mapping; ``0`` keeps entries until
            ``invalidate`` or ``clear``.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        backend: TenantBackend,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._ttl = ttl_seconds
        self._clock = clock
        self._tenants: dict[str, tuple[str, float]] = {}
        self._schools: dict[tuple[str, str], tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _fresh(self, stored_at: float) -> bool:
        return not self._ttl or self._clock() - stored_at <= self._ttl

    async def resolve_tenant(self, alias: str) -> str:
        """Canonical tenant id for an id, subdomain or alias.

        Raises:
            TenantNotFoundError: If the alias is unknown.
            StorageError: If the lookup fails.
        """
        alias = (alias or "").strip()
        if not alias:
            raise TenantNotFoundError(alias=alias)
        if is_uuid(alias):
            return alias

        with self._lock:
            cached = self._tenants.get(alias)
        if cached is not None and self._fresh(cached[1]):
            return cached[0]

        try:
            tenant_id = await self._backend.tenant_id_for_alias(alias)
        except AccessCoreError:
            raise
        except Exception as e:
            raise StorageError("tenant alias lookup failed", alias=alias) from e

        if tenant_id is None:
            logger.debug("Unknown tenant alias %r", alias)
            raise TenantNotFoundError(alias=alias)

        with self._lock:
            self._tenants[alias] = (tenant_id, self._clock())
        return tenant_id

    async def resolve_school(self, tenant_id: str, slug: Optional[str]) -> Optional[str]:
        """Canonical school id within a tenant, or None if absent or unknown."""
        slug = (slug or "").strip()
        if not slug:
            return None
        if is_uuid(slug):
            return slug

        key = (tenant_id, slug)
        with self._lock:
            cached = self._schools.get(key)
        if cached is not None and self._fresh(cached[1]):
            return cached[0]

        try:
            school_id = await self._backend.school_id_for_slug(tenant_id, slug)
        except AccessCoreError:
            raise
        except Exception as e:
            raise StorageError("school slug lookup failed", tenant_id=tenant_id, slug=slug) from e

        if school_id is None:
            logger.debug("Unknown school slug %r in tenant %s", slug, tenant_id)
            return None

        with self._lock:
            self._schools[key] = (school_id, self._clock())
        return school_id

    def invalidate(self, alias: str) -> None:
        """Forget one tenant alias and the school slugs cached under it."""
        with self._lock:
            tenant = self._tenants.pop(alias, None)
            if tenant is not None:
                for key in [k for k in self._schools if k[0] == tenant[0]]:
                    del self._schools[key]

    def clear(self) -> None:
        with self._lock:
            self._tenants.clear()
            self._schools.clear()


__all__ = [
    "TenantAliasResolver",
    "is_uuid",
]
