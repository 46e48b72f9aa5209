"""Tests for the permission resolver."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from accesscore import AccessService
from accesscore.exceptions import MissingTenantError, StorageError
from accesscore.models import Principal
from accesscore.permissions import PermissionMap
from accesscore.stores import InMemoryStore

TENANT = "tenant-1"
SCHOOL = "school-1"


def _aggregations(store: InMemoryStore) -> int:
    return store.calls["load_role_permissions"]


class TestGetPermissionContext:
    """Resolution, caching and invalidation."""

    @pytest.mark.asyncio
    async def test_owner_gets_full_access(self, service: AccessService, store: InMemoryStore) -> None:
        """Owners skip aggregation entirely."""
        context = await service.get_permission_context("auth0|owner", TENANT)

        assert context.is_owner
        assert context.permissions == PermissionMap.full_access()
        assert _aggregations(store) == 0

    @pytest.mark.asyncio
    async def test_non_owner_gets_merged_map(self, service: AccessService, store: InMemoryStore) -> None:
        """Role, group and specific grants are merged."""
        group = store.add_group("reviewers", {"reports": ["read"]})
        store.assign_group("u-teacher", group.id, TENANT)

        context = await service.get_permission_context("auth0|teacher", TENANT)

        assert not context.is_owner
        assert context.principal_id == "u-teacher"
        assert context.permissions.to_dict() == {"agents": ["execute", "read"], "reports": ["read"]}

    @pytest.mark.asyncio
    async def test_idempotent(self, service: AccessService) -> None:
        """Same scope and version give identical maps."""
        first = await service.get_permission_context("auth0|teacher", TENANT)
        service.cache.clear()
        second = await service.get_permission_context("auth0|teacher", TENANT)

        assert first is not second
        assert first.permissions.to_dict() == second.permissions.to_dict()
        assert first.version_token == second.version_token

    @pytest.mark.asyncio
    async def test_second_call_is_cache_hit(self, service: AccessService, store: InMemoryStore) -> None:
        """A hit costs only the identity read."""
        first = await service.get_permission_context("auth0|teacher", TENANT)
        second = await service.get_permission_context("auth0|teacher", TENANT)

        assert second is first
        assert _aggregations(store) == 1
        assert store.calls["get_ownership_level"] == 1
        assert store.calls["get_by_external_id"] == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_recompute(self, service: AccessService, store: InMemoryStore) -> None:
        """After invalidation the next read aggregates again, even immediately."""
        before = await service.get_permission_context("auth0|teacher", TENANT)
        store.assign_role("u-teacher", "role-editor", TENANT)

        token = await service.invalidate_version("auth0|teacher")
        after = await service.get_permission_context("auth0|teacher", TENANT)

        assert token and token != before.version_token
        assert after.version_token == token
        assert "update" in after.permissions["agents"]
        assert _aggregations(store) == 2

    @pytest.mark.asyncio
    async def test_rapid_reads_after_invalidation(self, service: AccessService, store: InMemoryStore) -> None:
        """Two immediate reads after invalidation never reuse the old context."""
        old = await service.get_permission_context("auth0|teacher", TENANT)
        await service.invalidate_version("auth0|teacher")

        first, second = await asyncio.gather(
            service.get_permission_context("auth0|teacher", TENANT),
            service.get_permission_context("auth0|teacher", TENANT),
        )

        assert first.version_token != old.version_token
        assert second.version_token != old.version_token
        assert _aggregations(store) == 3

    @pytest.mark.asyncio
    async def test_invalidate_by_record(self, service: AccessService, store: InMemoryStore) -> None:
        """A Principal record skips the identity read."""
        principal = Principal("u-teacher", "auth0|teacher", "irrelevant")
        token = await service.invalidate_version(principal)

        assert (await store.get_by_external_id("auth0|teacher")).version_token == token

    @pytest.mark.asyncio
    async def test_invalidate_unknown_principal(self, service: AccessService) -> None:
        """Unknown principals have nothing to invalidate."""
        assert await service.invalidate_version("auth0|ghost") is None

    @pytest.mark.asyncio
    async def test_unresolved_principal_is_empty(self, service: AccessService) -> None:
        """Unprovisioned principals get an empty, uncached context."""
        context = await service.get_permission_context("auth0|ghost", TENANT)

        assert not context.is_resolved
        assert len(context.permissions) == 0
        assert len(service.cache) == 0

    @pytest.mark.asyncio
    async def test_scopes_cached_separately(self, service: AccessService, store: InMemoryStore) -> None:
        """School-scoped and global contexts differ."""
        store.assign_role("u-teacher", "role-editor", TENANT, school_id=SCHOOL)

        global_ctx = await service.get_permission_context("auth0|teacher", TENANT)
        school_ctx = await service.get_permission_context("auth0|teacher", TENANT, SCHOOL)

        assert "update" not in global_ctx.permissions["agents"]
        assert "update" in school_ctx.permissions["agents"]

    @pytest.mark.asyncio
    async def test_missing_tenant(self, service: AccessService) -> None:
        """No tenant is a client error."""
        with pytest.raises(MissingTenantError):
            await service.get_permission_context("auth0|teacher", "")

    @pytest.mark.asyncio
    async def test_store_failure_fails_closed(self, service: AccessService, store: InMemoryStore) -> None:
        """Aggregation failures raise and cache nothing."""
        with patch.object(store, "load_specific_grants", AsyncMock(side_effect=ConnectionError("down"))):
            with pytest.raises(StorageError):
                await service.get_permission_context("auth0|teacher", TENANT)

        assert len(service.cache) == 0

    @pytest.mark.asyncio
    async def test_ownership_failure_fails_closed(self, service: AccessService, store: InMemoryStore) -> None:
        """Ownership lookup failures surface as StorageError."""
        with patch.object(store, "get_ownership_level", AsyncMock(side_effect=OSError())):
            with pytest.raises(StorageError):
                await service.get_permission_context("auth0|owner", TENANT)

    @pytest.mark.asyncio
    async def test_cancelled_caller_still_populates_cache(self, service: AccessService, store: InMemoryStore) -> None:
        """Cancelling the caller does not cancel the resolution."""
        release = asyncio.Event()
        original = store.load_role_permissions

        async def slow_roles(*args):
            await release.wait()
            return await original(*args)

        with patch.object(store, "load_role_permissions", slow_roles):
            task = asyncio.create_task(service.get_permission_context("auth0|teacher", TENANT))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            release.set()
            for _ in range(10):
                await asyncio.sleep(0.01)
                if len(service.cache):
                    break

        assert len(service.cache) == 1


class TestCheckPermission:
    """check_permission decision order."""

    @pytest.mark.asyncio
    async def test_owner_always_allowed(self, service: AccessService) -> None:
        """Owners pass any check."""
        assert await service.check_permission("auth0|owner", "billing", "delete", tenant_id=TENANT)

    @pytest.mark.asyncio
    async def test_role_grant(self, service: AccessService) -> None:
        """Granted and missing actions."""
        assert await service.check_permission("auth0|teacher", "agents", "execute", tenant_id=TENANT)
        assert not await service.check_permission("auth0|teacher", "agents", "update", tenant_id=TENANT)

    @pytest.mark.asyncio
    async def test_reuses_supplied_context(self, service: AccessService, store: InMemoryStore) -> None:
        """A supplied context avoids any store access."""
        context = await service.get_permission_context("auth0|teacher", TENANT)
        reads = sum(store.calls.values())

        assert await service.check_permission("auth0|teacher", "agents", "read", context=context)
        assert sum(store.calls.values()) == reads

    @pytest.mark.asyncio
    async def test_unresolved_principal_false(self, service: AccessService) -> None:
        """Unprovisioned principals are denied, not errors."""
        assert not await service.check_permission("auth0|ghost", "agents", "read", tenant_id=TENANT)

    @pytest.mark.asyncio
    async def test_requires_context_or_tenant(self, service: AccessService) -> None:
        """Neither context nor tenant is a client error."""
        with pytest.raises(MissingTenantError):
            await service.check_permission("auth0|teacher", "agents", "read")

    @pytest.mark.asyncio
    async def test_grant_and_revoke_specific(self, service: AccessService) -> None:
        """Specific grants apply immediately and revocations too."""
        assert not await service.check_permission("auth0|teacher", "reports", "read", tenant_id=TENANT)

        await service.grant_specific_permission("u-teacher", TENANT, "reports", "read")
        assert await service.check_permission("auth0|teacher", "reports", "read", tenant_id=TENANT)

        assert await service.revoke_specific_permission("u-teacher", TENANT, "reports", "read")
        assert not await service.check_permission("auth0|teacher", "reports", "read", tenant_id=TENANT)
        assert not await service.revoke_specific_permission("u-teacher", TENANT, "reports", "read")


class TestRolesAndHierarchy:
    """has_role, highest_hierarchy and describe."""

    @pytest.mark.asyncio
    async def test_has_role_bypasses_cache(self, service: AccessService, store: InMemoryStore) -> None:
        """Role membership is always checked fresh."""
        assert not await service.has_role("auth0|teacher", "editor", TENANT)
        store.assign_role("u-teacher", "role-editor", TENANT)
        assert await service.has_role("auth0|teacher", "editor", TENANT)

    @pytest.mark.asyncio
    async def test_has_role_school_scope(self, service: AccessService, store: InMemoryStore) -> None:
        """School-scoped roles apply only in that school."""
        store.assign_role("u-nobody", "role-student", TENANT, school_id=SCHOOL)
        assert not await service.has_role("auth0|nobody", "student", TENANT)
        assert await service.has_role("auth0|nobody", "student", TENANT, SCHOOL)

    @pytest.mark.asyncio
    async def test_has_role_unknown_principal(self, service: AccessService) -> None:
        """Unknown principals have no roles."""
        assert not await service.has_role("auth0|ghost", "teacher", TENANT)

    @pytest.mark.asyncio
    async def test_highest_hierarchy(self, service: AccessService, store: InMemoryStore) -> None:
        """Owner 0, otherwise the most senior role, else 999."""
        store.assign_role("u-teacher", "role-student", TENANT)

        assert await service.highest_hierarchy("auth0|owner", TENANT) == 0
        assert await service.highest_hierarchy("auth0|teacher", TENANT) == 3
        assert await service.highest_hierarchy("auth0|nobody", TENANT) == 999
        assert await service.highest_hierarchy("auth0|ghost", TENANT) == 999

    @pytest.mark.asyncio
    async def test_describe(self, service: AccessService) -> None:
        """Summary of map, ownership and hierarchy."""
        assert await service.describe("auth0|teacher", TENANT) == {
            "permissions": {"agents": ["execute", "read"]},
            "is_owner": False,
            "hierarchy": 3,
        }
        owner = await service.describe("auth0|owner", TENANT)
        assert owner["is_owner"] is True
        assert owner["hierarchy"] == 0
        assert owner["permissions"] == {"*": ["*"]}
