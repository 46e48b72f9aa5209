"""In-process implementation of every backing-store contract.

Mirrors the relational schema with plain collections. Each public coroutine
counts as one round trip in ``calls`` so tests can assert query budgets.
Useful for local development and tests; not shared across processes.
"""

from __future__ import annotations

import uuid
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Optional

from ..models import PermissionGroup, Principal, Restriction, Role, SpecificGrant
from ..permissions.constants import OwnershipLevel
from ..permissions.maps import PermissionMap, RawPermissions
from .base import in_scope


@dataclass(frozen=True)
class _Membership:
    principal_id: str
    target_id: str
    tenant_id: str
    school_id: Optional[str]


class InMemoryStore:
    """Dict-backed store implementing :class:`~accesscore.stores.base.AccessBackend`.

    Example::

        store = InMemoryStore()
        alice = store.add_principal("auth0|alice")
        store.add_tenant("t-1", alias="escola-azul")
        teacher = store.add_role("teacher", 3, {"agents": ["read", "execute"]})
        store.assign_role(alice.internal_id, teacher.id, "t-1")
    """

    def __init__(self) -> None:
        self.calls: Counter[str] = Counter()
        self._principals: dict[str, Principal] = {}
        self._tenant_aliases: dict[str, str] = {}
        self._schools: dict[tuple[str, str], str] = {}
        self._roles: dict[str, Role] = {}
        self._groups: dict[str, PermissionGroup] = {}
        self._role_memberships: list[_Membership] = []
        self._group_memberships: list[_Membership] = []
        self._grants: list[SpecificGrant] = []
        self._owners: dict[tuple[str, str], OwnershipLevel] = {}
        self._restrictions: dict[str, Restriction] = {}

    # ── Seeding ─────────────────────────────────────────────────

    def add_principal(self, external_id: str, internal_id: str | None = None) -> Principal:
        principal = Principal(
            internal_id=internal_id or str(uuid.uuid4()),
            external_id=external_id,
            version_token=str(uuid.uuid4()),
        )
        self._principals[external_id] = principal
        return principal

    def add_tenant(self, tenant_id: str, alias: str | None = None) -> str:
        self._tenant_aliases[tenant_id] = tenant_id
        if alias:
            self._tenant_aliases[alias] = tenant_id
        return tenant_id

    def add_school(self, tenant_id: str, school_id: str, slug: str | None = None) -> str:
        self._schools[(tenant_id, school_id)] = school_id
        if slug:
            self._schools[(tenant_id, slug)] = school_id
        return school_id

    def add_role(
        self,
        slug: str,
        hierarchy_level: int,
        default_permissions: RawPermissions | None = None,
        tenant_id: str | None = None,
        role_id: str | None = None,
    ) -> Role:
        role = Role.create(role_id or str(uuid.uuid4()), slug, hierarchy_level, default_permissions, tenant_id)
        self._roles[role.id] = role
        return role

    def assign_role(self, principal_id: str, role_id: str, tenant_id: str, school_id: str | None = None) -> None:
        self._role_memberships.append(_Membership(principal_id, role_id, tenant_id, school_id))

    def add_group(self, name: str, permissions: RawPermissions | None = None, group_id: str | None = None) -> PermissionGroup:
        group = PermissionGroup(group_id or str(uuid.uuid4()), name, PermissionMap.from_raw(permissions))
        self._groups[group.id] = group
        return group

    def assign_group(self, principal_id: str, group_id: str, tenant_id: str, school_id: str | None = None) -> None:
        self._group_memberships.append(_Membership(principal_id, group_id, tenant_id, school_id))

    def add_owner(self, principal_id: str, tenant_id: str, level: OwnershipLevel = OwnershipLevel.OWNER) -> None:
        self._owners[(tenant_id, principal_id)] = level

    # ── IdentityBackend ─────────────────────────────────────────

    async def get_by_external_id(self, external_id: str) -> Optional[Principal]:
        self.calls["get_by_external_id"] += 1
        return self._principals.get(external_id)

    async def set_version_token(self, internal_id: str, token: str) -> None:
        self.calls["set_version_token"] += 1
        for external_id, principal in self._principals.items():
            if principal.internal_id == internal_id:
                self._principals[external_id] = replace(principal, version_token=token)
                return

    # ── OwnershipBackend ────────────────────────────────────────

    async def get_ownership_level(self, principal_id: str, tenant_id: str) -> Optional[OwnershipLevel]:
        self.calls["get_ownership_level"] += 1
        return self._owners.get((tenant_id, principal_id))

    # ── RoleBackend ─────────────────────────────────────────────

    def _roles_in_scope(self, principal_id: str, tenant_id: str, school_id: Optional[str]) -> list[Role]:
        roles = []
        for membership in self._role_memberships:
            if membership.principal_id != principal_id or membership.tenant_id != tenant_id:
                continue
            if not in_scope(membership.school_id, school_id):
                continue
            role = self._roles.get(membership.target_id)
            if role is not None and role.tenant_id in (None, tenant_id):
                roles.append(role)
        return roles

    async def load_role_permissions(
        self, principal_id: str, tenant_id: str, school_id: Optional[str]
    ) -> list[PermissionMap]:
        self.calls["load_role_permissions"] += 1
        return [role.default_permissions for role in self._roles_in_scope(principal_id, tenant_id, school_id)]

    async def has_role(self, principal_id: str, role_slug: str, tenant_id: str, school_id: Optional[str]) -> bool:
        self.calls["has_role"] += 1
        return any(role.slug == role_slug for role in self._roles_in_scope(principal_id, tenant_id, school_id))

    async def min_hierarchy_level(self, principal_id: str, tenant_id: str, school_id: Optional[str]) -> Optional[int]:
        self.calls["min_hierarchy_level"] += 1
        levels = [role.hierarchy_level for role in self._roles_in_scope(principal_id, tenant_id, school_id)]
        return min(levels) if levels else None

    async def role_ids(self, principal_id: str, tenant_id: str, school_id: Optional[str]) -> list[str]:
        self.calls["role_ids"] += 1
        return list(dict.fromkeys(role.id for role in self._roles_in_scope(principal_id, tenant_id, school_id)))

    # ── GroupBackend ────────────────────────────────────────────

    async def load_group_permissions(
        self, principal_id: str, tenant_id: str, school_id: Optional[str]
    ) -> list[PermissionMap]:
        self.calls["load_group_permissions"] += 1
        maps = []
        for membership in self._group_memberships:
            if membership.principal_id != principal_id or membership.tenant_id != tenant_id:
                continue
            if not in_scope(membership.school_id, school_id):
                continue
            group = self._groups.get(membership.target_id)
            if group is not None:
                maps.append(group.permissions)
        return maps

    # ── GrantBackend ────────────────────────────────────────────

    async def load_specific_grants(
        self, principal_id: str, tenant_id: str, school_id: Optional[str]
    ) -> list[tuple[str, str]]:
        self.calls["load_specific_grants"] += 1
        return [
            (grant.resource, grant.action)
            for grant in self._grants
            if grant.principal_id == principal_id
            and grant.tenant_id == tenant_id
            and in_scope(grant.school_id, school_id)
        ]

    async def add_specific_grant(
        self, principal_id: str, tenant_id: str, resource: str, action: str, school_id: Optional[str]
    ) -> None:
        self.calls["add_specific_grant"] += 1
        grant = SpecificGrant(principal_id, tenant_id, resource, action, school_id)
        if grant not in self._grants:
            self._grants.append(grant)

    async def remove_specific_grant(
        self, principal_id: str, tenant_id: str, resource: str, action: str, school_id: Optional[str]
    ) -> bool:
        self.calls["remove_specific_grant"] += 1
        grant = SpecificGrant(principal_id, tenant_id, resource, action, school_id)
        if grant in self._grants:
            self._grants.remove(grant)
            return True
        return False

    # ── RestrictionBackend ──────────────────────────────────────

    async def restrictions_for_principal(self, resource_ids: Sequence[str], principal_id: str) -> list[Restriction]:
        self.calls["restrictions_for_principal"] += 1
        wanted = set(resource_ids)
        return [
            r for r in self._restrictions.values() if r.resource_id in wanted and r.principal_id == principal_id
        ]

    async def restrictions_for_roles(self, resource_ids: Sequence[str], role_ids: Sequence[str]) -> list[Restriction]:
        self.calls["restrictions_for_roles"] += 1
        wanted = set(resource_ids)
        roles = set(role_ids)
        return [r for r in self._restrictions.values() if r.resource_id in wanted and r.role_id in roles]

    async def add_restriction(self, restriction: Restriction) -> Restriction:
        self.calls["add_restriction"] += 1
        stored = replace(restriction, id=restriction.id or str(uuid.uuid4()))
        self._restrictions[stored.id] = stored
        return stored

    async def remove_restriction(self, restriction_id: str) -> bool:
        self.calls["remove_restriction"] += 1
        return self._restrictions.pop(restriction_id, None) is not None

    async def list_restrictions(self, resource_id: str) -> list[Restriction]:
        self.calls["list_restrictions"] += 1
        return [r for r in self._restrictions.values() if r.resource_id == resource_id]

    # ── TenantBackend ───────────────────────────────────────────

    async def tenant_id_for_alias(self, alias: str) -> Optional[str]:
        self.calls["tenant_id_for_alias"] += 1
        return self._tenant_aliases.get(alias)

    async def school_id_for_slug(self, tenant_id: str, slug: str) -> Optional[str]:
        self.calls["school_id_for_slug"] += 1
        return self._schools.get((tenant_id, slug))


__all__ = ["InMemoryStore"]
