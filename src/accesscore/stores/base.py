"""Backing-store contracts consumed by the engine.

Each protocol is the minimal read/write surface one component needs. A
concrete store (``InMemoryStore``, ``SqlStore``) implements all of them.

Scope rule shared by every grant query: with no school, only rows whose
school is null apply; with a school, rows for that school OR null apply.
Implementations raise :class:`~accesscore.exceptions.StorageError` on
backend failures instead of returning empty results.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Optional, Protocol, runtime_checkable

from ..models import Principal, Restriction
from ..permissions.constants import OwnershipLevel
from ..permissions.maps import PermissionMap


def in_scope(row_school_id: Optional[str], school_id: Optional[str]) -> bool:
    """Apply the school scope rule to one row."""
    if row_school_id is None:
        return True
    return school_id is not None and row_school_id == school_id


@runtime_checkable
class IdentityBackend(Protocol):
    async def get_by_external_id(self, external_id: str) -> Optional[Principal]: ...

    async def set_version_token(self, internal_id: str, token: str) -> None: ...


@runtime_checkable
class OwnershipBackend(Protocol):
    async def get_ownership_level(self, principal_id: str, tenant_id: str) -> Optional[OwnershipLevel]: ...


@runtime_checkable
class RoleBackend(Protocol):
    async def load_role_permissions(
        self, principal_id: str, tenant_id: str, school_id: Optional[str]
    ) -> list[PermissionMap]: ...

    async def has_role(
        self, principal_id: str, role_slug: str, tenant_id: str, school_id: Optional[str]
    ) -> bool: ...

    async def min_hierarchy_level(
        self, principal_id: str, tenant_id: str, school_id: Optional[str]
    ) -> Optional[int]: ...

    async def role_ids(self, principal_id: str, tenant_id: str, school_id: Optional[str]) -> list[str]: ...


@runtime_checkable
class GroupBackend(Protocol):
    async def load_group_permissions(
        self, principal_id: str, tenant_id: str, school_id: Optional[str]
    ) -> list[PermissionMap]: ...


@runtime_checkable
class GrantBackend(Protocol):
    async def load_specific_grants(
        self, principal_id: str, tenant_id: str, school_id: Optional[str]
    ) -> list[tuple[str, str]]: ...

    async def add_specific_grant(
        self, principal_id: str, tenant_id: str, resource: str, action: str, school_id: Optional[str]
    ) -> None: ...

    async def remove_specific_grant(
        self, principal_id: str, tenant_id: str, resource: str, action: str, school_id: Optional[str]
    ) -> bool: ...


@runtime_checkable
class RestrictionBackend(Protocol):
    async def restrictions_for_principal(
        self, resource_ids: Sequence[str], principal_id: str
    ) -> list[Restriction]: ...

    async def restrictions_for_roles(
        self, resource_ids: Sequence[str], role_ids: Sequence[str]
    ) -> list[Restriction]: ...

    async def add_restriction(self, restriction: Restriction) -> Restriction: ...

    async def remove_restriction(self, restriction_id: str) -> bool: ...

    async def list_restrictions(self, resource_id: str) -> list[Restriction]: ...


@runtime_checkable
class TenantBackend(Protocol):
    async def tenant_id_for_alias(self, alias: str) -> Optional[str]: ...

    async def school_id_for_slug(self, tenant_id: str, slug: str) -> Optional[str]: ...


@runtime_checkable
class AccessBackend(
    IdentityBackend,
    OwnershipBackend,
    RoleBackend,
    GroupBackend,
    GrantBackend,
    RestrictionBackend,
    TenantBackend,
    Protocol,
):
    """Everything the engine reads and writes, in one object."""


__all__ = [
    "AccessBackend",
    "GrantBackend",
    "GroupBackend",
    "IdentityBackend",
    "OwnershipBackend",
    "RestrictionBackend",
    "RoleBackend",
    "TenantBackend",
    "in_scope",
]
