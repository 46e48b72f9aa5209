"""Permission resolver: composes identity, ownership, aggregators and cache.

Resolution of one ``(external id, tenant, school)`` scope:

1. resolve the principal and read its current version token (one read);
2. probe the cache under that version; a hit returns immediately;
3. on a miss, owners get ``{'*': {'*'}}``; everyone else gets the union of
   role, group and specific grants, loaded concurrently;
4. store the new context under the current version and return it.

A principal that is not provisioned resolves to an empty, uncached context.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from typing import Any, Optional, TypeVar, Union

from .aggregators import PermissionAggregator, aggregate_permissions
from .cache import PermissionCache
from .exceptions import AccessCoreError, MissingTenantError, StorageError
from .identity import IdentityResolver
from .models import PermissionContext, Principal
from .ownership import OwnershipRegistry
from .permissions.constants import Hierarchy
from .permissions.maps import PermissionMap
from .stores.base import RoleBackend

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


async def _guarded(source: str, awaitable: Awaitable[_T], **details: Any) -> _T:
    """Await a store call, surfacing driver failures as StorageError."""
    try:
        return await awaitable
    except AccessCoreError:
        raise
    except Exception as e:
        logger.error("%s lookup failed: %s", source, e)
        raise StorageError(f"{source} lookup failed", source=source, **details) from e


class PermissionResolver:
    """Resolves and caches :class:`PermissionContext` snapshots.

    Args:
        identity: External id → principal resolver.
        ownership: Tenant ownership lookups.
        roles: Role store, queried directly by ``has_role`` and
            ``highest_hierarchy`` (never cached).
        aggregators: Grant sources merged for non-owners.
        cache: Version-stamped context cache.
        default_hierarchy: Hierarchy reported when no role applies.
    """

    def __init__(
        self,
        identity: IdentityResolver,
        ownership: OwnershipRegistry,
        roles: RoleBackend,
        aggregators: Sequence[PermissionAggregator],
        cache: PermissionCache,
        default_hierarchy: int = Hierarchy.NONE,
    ) -> None:
        self._identity = identity
        self._ownership = ownership
        self._roles = roles
        self._aggregators = tuple(aggregators)
        self._cache = cache
        self._default_hierarchy = default_hierarchy

    @property
    def cache(self) -> PermissionCache:
        return self._cache

    async def _principal(self, external_id: str) -> Optional[Principal]:
        return await _guarded("identity", self._identity.resolve(external_id), external_id=external_id)

    async def _is_owner(self, principal_id: str, tenant_id: str) -> bool:
        return await _guarded(
            "ownership",
            self._ownership.is_owner(principal_id, tenant_id),
            principal_id=principal_id,
            tenant_id=tenant_id,
        )

    # ── Contexts ────────────────────────────────────────────────

    async def get_permission_context(
        self,
        external_id: str,
        tenant_id: str,
        school_id: Optional[str] = None,
    ) -> PermissionContext:
        """Resolve the effective permissions of a principal in one scope.

        Raises:
            MissingTenantError: If ``tenant_id`` is empty.
            StorageError: If any backing-store read fails.
        """
        if not tenant_id:
            raise MissingTenantError(external_id=external_id)

        principal = await self._principal(external_id)
        if principal is None:
            return PermissionContext.unresolved(external_id, tenant_id, school_id)

        cached = self._cache.get(principal.internal_id, tenant_id, principal.version_token, school_id)
        if cached is not None:
            logger.debug("Permission cache hit for %s in %s", principal.internal_id, tenant_id)
            return cached

        logger.debug("Permission cache miss for %s in %s", principal.internal_id, tenant_id)
        # Completes and populates the cache even if the caller goes away.
        return await asyncio.shield(self._compute(principal, tenant_id, school_id))

    async def _compute(self, principal: Principal, tenant_id: str, school_id: Optional[str]) -> PermissionContext:
        is_owner = await self._is_owner(principal.internal_id, tenant_id)
        if is_owner:
            permissions = PermissionMap.full_access()
        else:
            permissions = await aggregate_permissions(
                self._aggregators, principal.internal_id, tenant_id, school_id
            )

        context = PermissionContext(
            external_id=principal.external_id,
            tenant_id=tenant_id,
            school_id=school_id,
            principal_id=principal.internal_id,
            is_owner=is_owner,
            permissions=permissions,
            version_token=principal.version_token,
        )
        self._cache.set(context)
        return context

    async def check_permission(
        self,
        external_id: str,
        resource: str,
        action: str,
        *,
        context: Optional[PermissionContext] = None,
        tenant_id: Optional[str] = None,
        school_id: Optional[str] = None,
    ) -> bool:
        """Check one ``(resource, action)`` pair.

        Reuses ``context`` when given; otherwise resolves one for
        ``tenant_id`` / ``school_id``.
        """
        if context is None:
            if not tenant_id:
                raise MissingTenantError(external_id=external_id)
            context = await self.get_permission_context(external_id, tenant_id, school_id)
        return context.allows(resource, action)

    # ── Roles ───────────────────────────────────────────────────

    async def has_role(
        self,
        external_id: str,
        role_slug: str,
        tenant_id: str,
        school_id: Optional[str] = None,
    ) -> bool:
        """Fresh membership check, never served from the cache."""
        if not tenant_id:
            raise MissingTenantError(external_id=external_id)
        principal = await self._principal(external_id)
        if principal is None:
            return False
        return await _guarded(
            "roles",
            self._roles.has_role(principal.internal_id, role_slug, tenant_id, school_id),
            principal_id=principal.internal_id,
            tenant_id=tenant_id,
        )

    async def role_ids(self, principal_id: str, tenant_id: str, school_id: Optional[str] = None) -> list[str]:
        """Ids of roles assigned to an internal principal in scope."""
        return await _guarded(
            "roles",
            self._roles.role_ids(principal_id, tenant_id, school_id),
            principal_id=principal_id,
            tenant_id=tenant_id,
        )

    async def _min_level(self, principal_id: str, tenant_id: str, school_id: Optional[str]) -> int:
        level = await _guarded(
            "roles",
            self._roles.min_hierarchy_level(principal_id, tenant_id, school_id),
            principal_id=principal_id,
            tenant_id=tenant_id,
        )
        return self._default_hierarchy if level is None else level

    async def highest_hierarchy(
        self,
        external_id: str,
        tenant_id: str,
        school_id: Optional[str] = None,
    ) -> int:
        """Most senior hierarchy level in scope. Owners rank 0."""
        if not tenant_id:
            raise MissingTenantError(external_id=external_id)
        principal = await self._principal(external_id)
        if principal is None:
            return self._default_hierarchy
        if await self._is_owner(principal.internal_id, tenant_id):
            return Hierarchy.OWNER
        return await self._min_level(principal.internal_id, tenant_id, school_id)

    async def describe(
        self,
        external_id: str,
        tenant_id: str,
        school_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Permission summary for the current user: map, ownership and hierarchy."""
        context = await self.get_permission_context(external_id, tenant_id, school_id)
        if not context.is_resolved:
            hierarchy = self._default_hierarchy
        elif context.is_owner:
            hierarchy = Hierarchy.OWNER
        else:
            hierarchy = await self._min_level(context.principal_id, tenant_id, school_id)
        return {
            "permissions": context.permissions.to_dict(),
            "is_owner": context.is_owner,
            "hierarchy": hierarchy,
        }

    # ── Invalidation ────────────────────────────────────────────

    async def invalidate_version(self, principal: Union[str, Principal]) -> Optional[str]:
        """Rotate the version token of a principal given by external id or record.

        Returns:
            The new token, or None if the external id is unknown.
        """
        if not isinstance(principal, Principal):
            resolved = await self._principal(principal)
            if resolved is None:
                logger.debug("Nothing to invalidate for unknown principal %s", principal)
                return None
            principal = resolved
        return await self._cache.invalidate_version(principal.internal_id)


__all__ = ["PermissionResolver"]
