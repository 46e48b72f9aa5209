"""Access service: one object wiring every engine component over a backend.

Usage::

    from accesscore import AccessService, load_config_from_env
    from accesscore.stores import InMemoryStore

    service = AccessService.from_backend(InMemoryStore(), load_config_from_env())
    ctx = await service.get_permission_context("auth0|alice", tenant_id)
    caps = await service.check_resource_access("auth0|alice", agent_row, tenant_id, context=ctx)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Optional, Union

from .aggregators import GroupAggregator, RoleAggregator, SpecificGrantAggregator
from .cache import PermissionCache
from .config import AccessConfig
from .evaluator import CapabilitySet, ResourceAccessEvaluator
from .gate import AuthorizationGate
from .identity import IdentityResolver
from .models import PermissionContext, Principal, Resource, Restriction
from .ownership import OwnershipRegistry
from .resolver import PermissionResolver
from .restrictions import RestrictionStore
from .stores.base import AccessBackend
from .tenants import TenantAliasResolver

logger = logging.getLogger(__name__)

ResourceLike = Union[Resource, Mapping[str, Any]]


def _as_resource(resource: ResourceLike) -> Resource:
    if isinstance(resource, Resource):
        return resource
    return Resource.from_record(resource)


class AccessService:
    """Facade over resolver, evaluator, restrictions and gate.

    All components share one backend and one permission cache. Build it
    once per process and reuse it for every request.
    """

    def __init__(self, backend: AccessBackend, config: Optional[AccessConfig] = None) -> None:
        self.config = config or AccessConfig()
        self.backend = backend

        self.cache = PermissionCache(
            backend,
            max_entries=self.config.cache_max_entries,
            ttl_seconds=self.config.cache_ttl_seconds,
        )
        self.resolver = PermissionResolver(
            IdentityResolver(backend),
            OwnershipRegistry(backend),
            backend,
            [RoleAggregator(backend), GroupAggregator(backend), SpecificGrantAggregator(backend)],
            self.cache,
            default_hierarchy=self.config.default_hierarchy,
        )
        self.restrictions = RestrictionStore(backend)
        self.evaluator = ResourceAccessEvaluator(self.restrictions)
        self.tenants = TenantAliasResolver(backend, ttl_seconds=self.config.tenant_alias_ttl_seconds)
        self.gate = AuthorizationGate(self.resolver, self.tenants)

    @classmethod
    def from_backend(cls, backend: AccessBackend, config: Optional[AccessConfig] = None) -> AccessService:
        return cls(backend, config)

    @classmethod
    def from_url(cls, config: AccessConfig) -> AccessService:
        """Build a service over a :class:`~accesscore.stores.sql.SqlStore`.

        Raises:
            ConfigurationError: If ``config.database_url`` is not set.
        """
        from .exceptions import ConfigurationError
        from .stores.sql import SqlStore

        if not config.database_url:
            raise ConfigurationError("database_url is required for a SQL-backed service")
        return cls(SqlStore.from_url(config.database_url), config)

    # ── Permission resolution ───────────────────────────────────

    async def get_permission_context(
        self, external_id: str, tenant_id: str, school_id: Optional[str] = None
    ) -> PermissionContext:
        return await self.resolver.get_permission_context(external_id, tenant_id, school_id)

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
        return await self.resolver.check_permission(
            external_id, resource, action, context=context, tenant_id=tenant_id, school_id=school_id
        )

    async def has_role(
        self, external_id: str, role_slug: str, tenant_id: str, school_id: Optional[str] = None
    ) -> bool:
        return await self.resolver.has_role(external_id, role_slug, tenant_id, school_id)

    async def highest_hierarchy(self, external_id: str, tenant_id: str, school_id: Optional[str] = None) -> int:
        return await self.resolver.highest_hierarchy(external_id, tenant_id, school_id)

    async def describe(self, external_id: str, tenant_id: str, school_id: Optional[str] = None) -> dict[str, Any]:
        return await self.resolver.describe(external_id, tenant_id, school_id)

    async def invalidate_version(self, principal: Union[str, Principal]) -> Optional[str]:
        return await self.resolver.invalidate_version(principal)

    # ── Resource access ─────────────────────────────────────────

    async def _evaluation_inputs(
        self,
        external_id: str,
        tenant_id: str,
        school_id: Optional[str],
        context: Optional[PermissionContext],
    ) -> tuple[PermissionContext, list[str]]:
        if context is None:
            context = await self.resolver.get_permission_context(external_id, tenant_id, school_id)
        role_ids: list[str] = []
        if context.is_resolved and not context.is_owner:
            role_ids = await self.resolver.role_ids(context.principal_id, context.tenant_id, context.school_id)
        return context, role_ids

    async def batch_check_resource_access(
        self,
        external_id: str,
        resources: Sequence[ResourceLike],
        tenant_id: str,
        school_id: Optional[str] = None,
        *,
        context: Optional[PermissionContext] = None,
    ) -> dict[str, CapabilitySet]:
        """Capabilities per resource id, with at most two restriction reads."""
        context, role_ids = await self._evaluation_inputs(external_id, tenant_id, school_id, context)
        return await self.evaluator.batch_check(
            [_as_resource(r) for r in resources],
            context.principal_id,
            role_ids,
            is_tenant_owner=context.is_owner,
            permissions=context.permissions,
        )

    async def check_resource_access(
        self,
        external_id: str,
        resource: ResourceLike,
        tenant_id: str,
        school_id: Optional[str] = None,
        *,
        context: Optional[PermissionContext] = None,
    ) -> CapabilitySet:
        resource = _as_resource(resource)
        results = await self.batch_check_resource_access(
            external_id, [resource], tenant_id, school_id, context=context
        )
        return results[resource.id]

    async def filter_visible(
        self,
        external_id: str,
        resources: Sequence[ResourceLike],
        tenant_id: str,
        school_id: Optional[str] = None,
        *,
        context: Optional[PermissionContext] = None,
    ) -> list[Resource]:
        context, role_ids = await self._evaluation_inputs(external_id, tenant_id, school_id, context)
        return await self.evaluator.filter_visible(
            [_as_resource(r) for r in resources],
            context.principal_id,
            role_ids,
            is_tenant_owner=context.is_owner,
            permissions=context.permissions,
        )

    # ── Management ──────────────────────────────────────────────

    async def add_restriction(self, restriction: Restriction) -> Restriction:
        return await self.restrictions.add(restriction)

    async def remove_restriction(self, restriction_id: str) -> bool:
        return await self.restrictions.remove(restriction_id)

    async def list_restrictions(self, resource_id: str) -> list[Restriction]:
        return await self.restrictions.list_for(resource_id)

    async def grant_specific_permission(
        self,
        principal_id: str,
        tenant_id: str,
        resource: str,
        action: str,
        school_id: Optional[str] = None,
    ) -> str:
        """Grant one action to an internal principal and rotate its version.

        Returns:
            The principal's new version token.
        """
        await self.backend.add_specific_grant(principal_id, tenant_id, resource, action, school_id)
        logger.info("Granted %s:%s to %s in %s", resource, action, principal_id, tenant_id)
        return await self.cache.invalidate_version(principal_id)

    async def revoke_specific_permission(
        self,
        principal_id: str,
        tenant_id: str,
        resource: str,
        action: str,
        school_id: Optional[str] = None,
    ) -> bool:
        """Revoke one specific grant; rotates the version only if something was removed."""
        removed = await self.backend.remove_specific_grant(principal_id, tenant_id, resource, action, school_id)
        if removed:
            logger.info("Revoked %s:%s from %s in %s", resource, action, principal_id, tenant_id)
            await self.cache.invalidate_version(principal_id)
        return removed


__all__ = ["AccessService"]
