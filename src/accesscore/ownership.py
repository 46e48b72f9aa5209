"""Tenant ownership lookups."""

from __future__ import annotations

from typing import Optional

from .permissions.constants import OwnershipLevel
from .stores.base import OwnershipBackend


class OwnershipRegistry:
    """Answers whether a principal holds owner or co-owner status in a tenant.

    Both levels carry full tenant authority; the level is exposed for
    callers that display or audit it.
    """

    def __init__(self, backend: OwnershipBackend) -> None:
        self._backend = backend

    async def ownership_level(self, principal_id: str, tenant_id: str) -> Optional[OwnershipLevel]:
        return await self._backend.get_ownership_level(principal_id, tenant_id)

    async def is_owner(self, principal_id: str, tenant_id: str) -> bool:
        return await self.ownership_level(principal_id, tenant_id) is not None


__all__ = ["OwnershipRegistry"]
