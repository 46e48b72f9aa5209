"""SQLAlchemy async Core implementation of the backing-store contracts.

Works with any async driver SQLAlchemy supports (``postgresql+asyncpg``,
``sqlite+aiosqlite`` ...). Every driver failure surfaces as
:class:`~accesscore.exceptions.StorageError`.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    and_,
    delete,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from ..exceptions import StorageError
from ..models import Principal, Restriction
from ..permissions.constants import OwnershipLevel
from ..permissions.maps import PermissionMap

logger = logging.getLogger(__name__)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("external_id", String(255), nullable=False, unique=True),
    Column("permissions_version", String(36), nullable=False),
)

tenants = Table(
    "tenants",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("subdomain", String(255), unique=True),
)

schools = Table(
    "schools",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("tenant_id", String(36), ForeignKey("tenants.id"), nullable=False),
    Column("slug", String(255)),
    UniqueConstraint("tenant_id", "slug"),
)

roles = Table(
    "roles",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("slug", String(100), nullable=False),
    Column("hierarchy_level", Integer, nullable=False),
    Column("default_permissions", JSON, nullable=False, default=dict),
    Column("tenant_id", String(36), ForeignKey("tenants.id"), nullable=True),
)

user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("role_id", String(36), ForeignKey("roles.id"), nullable=False),
    Column("tenant_id", String(36), ForeignKey("tenants.id"), nullable=False),
    Column("school_id", String(36), ForeignKey("schools.id"), nullable=True),
)

permission_groups = Table(
    "permission_groups",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("permissions", JSON, nullable=False, default=dict),
)

user_permission_groups = Table(
    "user_permission_groups",
    metadata,
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("group_id", String(36), ForeignKey("permission_groups.id"), nullable=False),
    Column("tenant_id", String(36), ForeignKey("tenants.id"), nullable=False),
    Column("school_id", String(36), ForeignKey("schools.id"), nullable=True),
)

user_permissions = Table(
    "user_permissions",
    metadata,
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("tenant_id", String(36), ForeignKey("tenants.id"), nullable=False),
    Column("school_id", String(36), ForeignKey("schools.id"), nullable=True),
    Column("resource", String(100), nullable=False),
    Column("action", String(50), nullable=False),
)

tenant_owners = Table(
    "tenant_owners",
    metadata,
    Column("tenant_id", String(36), ForeignKey("tenants.id"), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), primary_key=True),
    Column("level", String(20), nullable=False, default=OwnershipLevel.OWNER.value),
)

agent_restrictions = Table(
    "agent_restrictions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("agent_id", String(36), nullable=False, index=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=True),
    Column("role_id", String(36), ForeignKey("roles.id"), nullable=True),
    Column("block_view", Boolean, nullable=False, default=False),
    Column("block_execute", Boolean, nullable=False, default=False),
    Column("block_edit", Boolean, nullable=False, default=False),
    Column("reason", Text, nullable=True),
)


def _scope(column: Column, school_id: Optional[str]) -> Any:
    """School scope filter: null rows always, matching rows when a school is given."""
    if school_id is None:
        return column.is_(None)
    return or_(column.is_(None), column == school_id)


class SqlStore:
    """Relational store implementing :class:`~accesscore.stores.base.AccessBackend`.

    Example::

        store = SqlStore.from_url("postgresql+asyncpg://app@db/access")
        await store.create_all()
        service = AccessService.from_backend(store)
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @classmethod
    def from_url(cls, url: str, **engine_kwargs: Any) -> SqlStore:
        return cls(create_async_engine(url, **engine_kwargs))

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        async with self._connect("create_all", write=True) as conn:
            await conn.run_sync(metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _connect(self, operation: str, write: bool = False) -> AsyncIterator[AsyncConnection]:
        try:
            if write:
                async with self._engine.begin() as conn:
                    yield conn
            else:
                async with self._engine.connect() as conn:
                    yield conn
        except SQLAlchemyError as e:
            logger.error("SQL %s failed: %s", operation, e)
            raise StorageError(f"{operation} failed", operation=operation) from e

    # ── IdentityBackend ─────────────────────────────────────────

    async def get_by_external_id(self, external_id: str) -> Optional[Principal]:
        query = select(users.c.id, users.c.external_id, users.c.permissions_version).where(
            users.c.external_id == external_id
        )
        async with self._connect("get_by_external_id") as conn:
            row = (await conn.execute(query)).first()
        if row is None:
            return None
        return Principal(internal_id=row.id, external_id=row.external_id, version_token=row.permissions_version)

    async def set_version_token(self, internal_id: str, token: str) -> None:
        query = update(users).where(users.c.id == internal_id).values(permissions_version=token)
        async with self._connect("set_version_token", write=True) as conn:
            await conn.execute(query)

    # ── OwnershipBackend ────────────────────────────────────────

    async def get_ownership_level(self, principal_id: str, tenant_id: str) -> Optional[OwnershipLevel]:
        query = select(tenant_owners.c.level).where(
            tenant_owners.c.tenant_id == tenant_id,
            tenant_owners.c.user_id == principal_id,
        )
        async with self._connect("get_ownership_level") as conn:
            level = (await conn.execute(query)).scalar_one_or_none()
        return OwnershipLevel(level) if level is not None else None

    # ── RoleBackend ─────────────────────────────────────────────

    def _roles_in_scope(self, principal_id: str, tenant_id: str, school_id: Optional[str]) -> Any:
        return and_(
            user_roles.c.user_id == principal_id,
            user_roles.c.tenant_id == tenant_id,
            _scope(user_roles.c.school_id, school_id),
            or_(roles.c.tenant_id.is_(None), roles.c.tenant_id == tenant_id),
        )

    async def load_role_permissions(
        self, principal_id: str, tenant_id: str, school_id: Optional[str]
    ) -> list[PermissionMap]:
        query = (
            select(roles.c.default_permissions)
            .select_from(user_roles.join(roles, roles.c.id == user_roles.c.role_id))
            .where(self._roles_in_scope(principal_id, tenant_id, school_id))
        )
        async with self._connect("load_role_permissions") as conn:
            rows = (await conn.execute(query)).scalars().all()
        return [PermissionMap.from_raw(raw) for raw in rows]

    async def has_role(self, principal_id: str, role_slug: str, tenant_id: str, school_id: Optional[str]) -> bool:
        query = (
            select(roles.c.id)
            .select_from(user_roles.join(roles, roles.c.id == user_roles.c.role_id))
            .where(self._roles_in_scope(principal_id, tenant_id, school_id), roles.c.slug == role_slug)
            .limit(1)
        )
        async with self._connect("has_role") as conn:
            return (await conn.execute(query)).first() is not None

    async def min_hierarchy_level(self, principal_id: str, tenant_id: str, school_id: Optional[str]) -> Optional[int]:
        query = (
            select(func.min(roles.c.hierarchy_level))
            .select_from(user_roles.join(roles, roles.c.id == user_roles.c.role_id))
            .where(self._roles_in_scope(principal_id, tenant_id, school_id))
        )
        async with self._connect("min_hierarchy_level") as conn:
            return (await conn.execute(query)).scalar_one_or_none()

    async def role_ids(self, principal_id: str, tenant_id: str, school_id: Optional[str]) -> list[str]:
        query = (
            select(roles.c.id)
            .distinct()
            .select_from(user_roles.join(roles, roles.c.id == user_roles.c.role_id))
            .where(self._roles_in_scope(principal_id, tenant_id, school_id))
        )
        async with self._connect("role_ids") as conn:
            return list((await conn.execute(query)).scalars().all())

    # ── GroupBackend ────────────────────────────────────────────

    async def load_group_permissions(
        self, principal_id: str, tenant_id: str, school_id: Optional[str]
    ) -> list[PermissionMap]:
        query = (
            select(permission_groups.c.permissions)
            .select_from(
                user_permission_groups.join(
                    permission_groups, permission_groups.c.id == user_permission_groups.c.group_id
                )
            )
            .where(
                user_permission_groups.c.user_id == principal_id,
                user_permission_groups.c.tenant_id == tenant_id,
                _scope(user_permission_groups.c.school_id, school_id),
            )
        )
        async with self._connect("load_group_permissions") as conn:
            rows = (await conn.execute(query)).scalars().all()
        return [PermissionMap.from_raw(raw) for raw in rows]

    # ── GrantBackend ────────────────────────────────────────────

    def _grant_filter(
        self, principal_id: str, tenant_id: str, resource: str, action: str, school_id: Optional[str]
    ) -> Any:
        school = user_permissions.c.school_id.is_(None) if school_id is None else user_permissions.c.school_id == school_id
        return and_(
            user_permissions.c.user_id == principal_id,
            user_permissions.c.tenant_id == tenant_id,
            user_permissions.c.resource == resource,
            user_permissions.c.action == action,
            school,
        )

    async def load_specific_grants(
        self, principal_id: str, tenant_id: str, school_id: Optional[str]
    ) -> list[tuple[str, str]]:
        query = select(user_permissions.c.resource, user_permissions.c.action).where(
            user_permissions.c.user_id == principal_id,
            user_permissions.c.tenant_id == tenant_id,
            _scope(user_permissions.c.school_id, school_id),
        )
        async with self._connect("load_specific_grants") as conn:
            rows = (await conn.execute(query)).all()
        return [(row.resource, row.action) for row in rows]

    async def add_specific_grant(
        self, principal_id: str, tenant_id: str, resource: str, action: str, school_id: Optional[str]
    ) -> None:
        exists = select(user_permissions.c.user_id).where(
            self._grant_filter(principal_id, tenant_id, resource, action, school_id)
        )
        async with self._connect("add_specific_grant", write=True) as conn:
            if (await conn.execute(exists)).first() is not None:
                return
            await conn.execute(
                insert(user_permissions).values(
                    user_id=principal_id,
                    tenant_id=tenant_id,
                    school_id=school_id,
                    resource=resource,
                    action=action,
                )
            )

    async def remove_specific_grant(
        self, principal_id: str, tenant_id: str, resource: str, action: str, school_id: Optional[str]
    ) -> bool:
        query = delete(user_permissions).where(
            self._grant_filter(principal_id, tenant_id, resource, action, school_id)
        )
        async with self._connect("remove_specific_grant", write=True) as conn:
            result = await conn.execute(query)
            return result.rowcount > 0

    # ── RestrictionBackend ──────────────────────────────────────

    async def _restrictions(self, operation: str, *criteria: Any) -> list[Restriction]:
        async with self._connect(operation) as conn:
            rows = (await conn.execute(select(agent_restrictions).where(*criteria))).mappings().all()
        return [Restriction.from_record(row) for row in rows]

    async def restrictions_for_principal(self, resource_ids: Sequence[str], principal_id: str) -> list[Restriction]:
        return await self._restrictions(
            "restrictions_for_principal",
            agent_restrictions.c.agent_id.in_(list(resource_ids)),
            agent_restrictions.c.user_id == principal_id,
        )

    async def restrictions_for_roles(self, resource_ids: Sequence[str], role_ids: Sequence[str]) -> list[Restriction]:
        return await self._restrictions(
            "restrictions_for_roles",
            agent_restrictions.c.agent_id.in_(list(resource_ids)),
            agent_restrictions.c.role_id.in_(list(role_ids)),
        )

    async def add_restriction(self, restriction: Restriction) -> Restriction:
        restriction_id = restriction.id or str(uuid.uuid4())
        async with self._connect("add_restriction", write=True) as conn:
            await conn.execute(
                insert(agent_restrictions).values(
                    id=restriction_id,
                    agent_id=restriction.resource_id,
                    user_id=restriction.principal_id,
                    role_id=restriction.role_id,
                    block_view=restriction.block_view,
                    block_execute=restriction.block_execute,
                    block_edit=restriction.block_edit,
                    reason=restriction.reason,
                )
            )
        return Restriction(
            resource_id=restriction.resource_id,
            principal_id=restriction.principal_id,
            role_id=restriction.role_id,
            block_view=restriction.block_view,
            block_execute=restriction.block_execute,
            block_edit=restriction.block_edit,
            reason=restriction.reason,
            id=restriction_id,
        )

    async def remove_restriction(self, restriction_id: str) -> bool:
        async with self._connect("remove_restriction", write=True) as conn:
            result = await conn.execute(delete(agent_restrictions).where(agent_restrictions.c.id == restriction_id))
            return result.rowcount > 0

    async def list_restrictions(self, resource_id: str) -> list[Restriction]:
        return await self._restrictions("list_restrictions", agent_restrictions.c.agent_id == resource_id)

    # ── TenantBackend ───────────────────────────────────────────

    async def tenant_id_for_alias(self, alias: str) -> Optional[str]:
        query = select(tenants.c.id).where(or_(tenants.c.id == alias, tenants.c.subdomain == alias)).limit(1)
        async with self._connect("tenant_id_for_alias") as conn:
            return (await conn.execute(query)).scalar_one_or_none()

    async def school_id_for_slug(self, tenant_id: str, slug: str) -> Optional[str]:
        query = (
            select(schools.c.id)
            .where(schools.c.tenant_id == tenant_id, or_(schools.c.id == slug, schools.c.slug == slug))
            .limit(1)
        )
        async with self._connect("school_id_for_slug") as conn:
            return (await conn.execute(query)).scalar_one_or_none()


__all__ = [
    "SqlStore",
    "agent_restrictions",
    "metadata",
    "permission_groups",
    "roles",
    "schools",
    "tenant_owners",
    "tenants",
    "user_permission_groups",
    "user_permissions",
    "user_roles",
    "users",
]
