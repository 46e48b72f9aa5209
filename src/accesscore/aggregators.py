"""Grant aggregators: role defaults, permission groups and specific grants.

Each aggregator loads one partial permission map for a principal in a
(tenant, school) scope. ``aggregate_permissions`` runs them concurrently and
merges the results only after all of them complete. Any failure propagates
as :class:`~accesscore.exceptions.StorageError`: a partial merge is never
returned.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Optional

from .exceptions import AccessCoreError, StorageError
from .permissions.maps import PermissionMap
from .stores.base import GrantBackend, GroupBackend, RoleBackend

logger = logging.getLogger(__name__)


class PermissionAggregator:
    """Base class: loads one source of grants as a PermissionMap."""

    source: str = "aggregator"

    async def load(self, principal_id: str, tenant_id: str, school_id: Optional[str] = None) -> PermissionMap:
        try:
            return await self._load(principal_id, tenant_id, school_id)
        except AccessCoreError:
            raise
        except Exception as e:
            logger.error("%s aggregation failed for principal %s: %s", self.source, principal_id, e)
            raise StorageError(
                f"{self.source} aggregation failed",
                source=self.source,
                principal_id=principal_id,
                tenant_id=tenant_id,
            ) from e

    async def _load(self, principal_id: str, tenant_id: str, school_id: Optional[str]) -> PermissionMap:
        raise NotImplementedError


class RoleAggregator(PermissionAggregator):
    """Union of default permissions of every role assigned in scope."""

    source = "roles"

    def __init__(self, backend: RoleBackend) -> None:
        self._backend = backend

    async def _load(self, principal_id: str, tenant_id: str, school_id: Optional[str]) -> PermissionMap:
        maps = await self._backend.load_role_permissions(principal_id, tenant_id, school_id)
        return PermissionMap.merge(*maps)


class GroupAggregator(PermissionAggregator):
    """Union of permissions of every permission group joined in scope."""

    source = "groups"

    def __init__(self, backend: GroupBackend) -> None:
        self._backend = backend

    async def _load(self, principal_id: str, tenant_id: str, school_id: Optional[str]) -> PermissionMap:
        maps = await self._backend.load_group_permissions(principal_id, tenant_id, school_id)
        return PermissionMap.merge(*maps)


class SpecificGrantAggregator(PermissionAggregator):
    """Single-action grants issued directly to the principal."""

    source = "specific"

    def __init__(self, backend: GrantBackend) -> None:
        self._backend = backend

    async def _load(self, principal_id: str, tenant_id: str, school_id: Optional[str]) -> PermissionMap:
        rows = await self._backend.load_specific_grants(principal_id, tenant_id, school_id)
        return PermissionMap.from_grants(rows)


async def aggregate_permissions(
    aggregators: Sequence[PermissionAggregator],
    principal_id: str,
    tenant_id: str,
    school_id: Optional[str] = None,
) -> PermissionMap:
    """Run all aggregators concurrently and merge their maps.

    The first failure is re-raised once every aggregator has finished, so no
    load is left running detached.
    """
    results = await asyncio.gather(
        *(aggregator.load(principal_id, tenant_id, school_id) for aggregator in aggregators),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return PermissionMap.merge(*results)


__all__ = [
    "GroupAggregator",
    "PermissionAggregator",
    "RoleAggregator",
    "SpecificGrantAggregator",
    "aggregate_permissions",
]
