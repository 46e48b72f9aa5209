"""Tests for the resource access evaluator."""

from __future__ import annotations

import pytest

from accesscore import AccessService
from accesscore.evaluator import CapabilitySet, ResourceAccessEvaluator
from accesscore.models import Resource, ResourceStatus, Restriction, Visibility
from accesscore.permissions import PermissionMap
from accesscore.restrictions import RestrictionStore
from accesscore.stores import InMemoryStore

TENANT = "tenant-1"

NONE = {"view": False, "execute": False, "edit": False, "delete": False}


def _caps(capabilities: CapabilitySet) -> dict[str, bool]:
    data = capabilities.to_dict()
    data.pop("reason")
    return data


def _agent(
    agent_id: str = "agent-1",
    owner: str = "u-author",
    visibility: Visibility = Visibility.PUBLIC,
    status: ResourceStatus = ResourceStatus.PUBLISHED,
) -> Resource:
    return Resource(agent_id, owner, visibility, status)


def _evaluator(store: InMemoryStore | None = None) -> ResourceAccessEvaluator:
    return ResourceAccessEvaluator(RestrictionStore(store or InMemoryStore()))


READ_EXECUTE = PermissionMap.from_raw({"agents": ["read", "execute"]})
READ_EXECUTE_UPDATE = PermissionMap.from_raw({"agents": ["read", "execute", "update"]})


class TestEvaluate:
    """Rule order for a single resource."""

    def test_tenant_owner_full_on_others_private(self) -> None:
        """Tenant owners get everything on another principal's private resource."""
        caps = _evaluator().evaluate(
            _agent(owner="u2", visibility=Visibility.PRIVATE),
            "u1",
            is_tenant_owner=True,
            permissions=PermissionMap(),
        )
        assert caps == CapabilitySet.full()

    def test_tenant_owner_bypasses_draft(self) -> None:
        """Draft status does not apply to the tenant owner."""
        caps = _evaluator().evaluate(
            _agent(status=ResourceStatus.DRAFT),
            "u-owner",
            is_tenant_owner=True,
            permissions=PermissionMap(),
        )
        assert caps == CapabilitySet.full()

    def test_resource_owner_full(self) -> None:
        """Creators get everything, even on private drafts."""
        caps = _evaluator().evaluate(
            _agent(owner="u-author", visibility=Visibility.PRIVATE, status=ResourceStatus.DRAFT),
            "u-author",
            is_tenant_owner=False,
            permissions=PermissionMap(),
        )
        assert caps == CapabilitySet.full()

    def test_public_collaborative_with_update(self) -> None:
        """Collaborative resources grant edit from the base map, never delete."""
        caps = _evaluator().evaluate(
            _agent(visibility=Visibility.PUBLIC_COLLABORATIVE),
            "u3",
            is_tenant_owner=False,
            permissions=READ_EXECUTE_UPDATE,
        )
        assert _caps(caps) == {"view": True, "execute": True, "edit": True, "delete": False}

    def test_public_collaborative_without_update(self) -> None:
        """No base edit grant means no edit."""
        caps = _evaluator().evaluate(
            _agent(visibility=Visibility.PUBLIC_COLLABORATIVE),
            "u3",
            is_tenant_owner=False,
            permissions=READ_EXECUTE,
        )
        assert _caps(caps) == {"view": True, "execute": True, "edit": False, "delete": False}

    def test_public_never_edit(self) -> None:
        """Public resources are view and execute only."""
        caps = _evaluator().evaluate(
            _agent(visibility=Visibility.PUBLIC),
            "u3",
            is_tenant_owner=False,
            permissions=READ_EXECUTE_UPDATE,
        )
        assert _caps(caps) == {"view": True, "execute": True, "edit": False, "delete": False}

    def test_public_execute_follows_base_map(self) -> None:
        """Without execute in the base map, public is view-only."""
        caps = _evaluator().evaluate(
            _agent(),
            "u3",
            is_tenant_owner=False,
            permissions=PermissionMap.from_raw({"agents": ["view"]}),
        )
        assert _caps(caps) == {"view": True, "execute": False, "edit": False, "delete": False}

    def test_private_non_owner(self) -> None:
        """Private resources of others grant nothing."""
        caps = _evaluator().evaluate(
            _agent(visibility=Visibility.PRIVATE),
            "u3",
            is_tenant_owner=False,
            permissions=READ_EXECUTE_UPDATE,
        )
        assert _caps(caps) == NONE
        assert caps.reason == "private"

    @pytest.mark.parametrize("visibility", list(Visibility))
    def test_draft_isolation(self, visibility: Visibility) -> None:
        """Non-creators see nothing of a draft, whatever the grants."""
        caps = _evaluator().evaluate(
            _agent(owner="u5", visibility=visibility, status=ResourceStatus.DRAFT),
            "u4",
            is_tenant_owner=False,
            permissions=PermissionMap.full_access(),
        )
        assert _caps(caps) == NONE
        assert caps.reason == "draft"

    def test_no_base_view(self) -> None:
        """Without read or view on agents nothing is granted."""
        caps = _evaluator().evaluate(
            _agent(),
            "u3",
            is_tenant_owner=False,
            permissions=PermissionMap.from_raw({"agents": ["execute"]}),
        )
        assert caps.reason == "no_permission"
        assert not caps.can_view

    def test_blocked_restriction_negates_flags(self) -> None:
        """Blocked flags are negated; delete is never granted."""
        caps = _evaluator().evaluate(
            _agent(visibility=Visibility.PUBLIC_COLLABORATIVE),
            "u6",
            is_tenant_owner=False,
            permissions=READ_EXECUTE,
            restriction=Restriction("agent-1", principal_id="u6", block_execute=True, reason="exam"),
        )
        assert _caps(caps) == {"view": True, "execute": False, "edit": True, "delete": False}
        assert caps.reason == "exam"

    def test_blocked_restriction_replaces_visibility_rules(self) -> None:
        """Unblocked flags are granted even without base grants or on private resources."""
        caps = _evaluator().evaluate(
            _agent(visibility=Visibility.PRIVATE),
            "u6",
            is_tenant_owner=False,
            permissions=PermissionMap(),
            restriction=Restriction("agent-1", principal_id="u6", block_execute=True),
        )
        assert _caps(caps) == {"view": True, "execute": False, "edit": True, "delete": False}
        assert caps.reason == "restricted"

    def test_unblocked_restriction_ignored(self) -> None:
        """A restriction with no flag set changes nothing."""
        caps = _evaluator().evaluate(
            _agent(),
            "u6",
            is_tenant_owner=False,
            permissions=READ_EXECUTE,
            restriction=Restriction("agent-1", principal_id="u6"),
        )
        assert caps.can_execute
        assert caps.reason is None

    def test_legacy_record_normalized(self) -> None:
        """Legacy visibility values go through the canonical rules."""
        resource = Resource.from_record({"id": "a-9", "created_by": "u2", "type": "public_editable"})
        caps = _evaluator().evaluate(resource, "u3", is_tenant_owner=False, permissions=READ_EXECUTE_UPDATE)
        assert caps.can_edit


class TestBatchCheck:
    """Batched evaluation and restriction loading."""

    @pytest.mark.asyncio
    async def test_restriction_precedence(self) -> None:
        """A block on one resource leaves execute on the others."""
        store = InMemoryStore()
        await store.add_restriction(Restriction("agent-1", principal_id="u6", block_execute=True))
        agents = [_agent("agent-1"), _agent("agent-2")]

        results = await _evaluator(store).batch_check(
            agents, "u6", ["role-teacher"], is_tenant_owner=False, permissions=READ_EXECUTE
        )

        assert not results["agent-1"].can_execute
        assert results["agent-1"].can_view
        assert results["agent-2"].can_execute

    @pytest.mark.asyncio
    async def test_role_restriction_applies(self) -> None:
        """Role-level blocks apply to members of the role."""
        store = InMemoryStore()
        await store.add_restriction(Restriction("agent-1", role_id="role-student", block_view=True))

        caps = await _evaluator(store).check(
            _agent("agent-1"), "u6", ["role-student"], is_tenant_owner=False, permissions=READ_EXECUTE
        )

        assert not caps.can_view
        assert caps.reason == "restricted"

    @pytest.mark.asyncio
    async def test_batch_bound(self) -> None:
        """Many resources still cost at most two restriction reads."""
        store = InMemoryStore()
        agents = [_agent(f"agent-{i}") for i in range(100)]

        await _evaluator(store).batch_check(
            agents, "u6", ["r-1", "r-2"], is_tenant_owner=False, permissions=READ_EXECUTE
        )

        assert store.calls["restrictions_for_principal"] + store.calls["restrictions_for_roles"] <= 2

    @pytest.mark.asyncio
    async def test_tenant_owner_skips_restrictions(self) -> None:
        """Tenant owners never load restrictions."""
        store = InMemoryStore()
        await _evaluator(store).batch_check(
            [_agent()], "u1", ["r-1"], is_tenant_owner=True, permissions=PermissionMap.full_access()
        )
        assert store.calls["restrictions_for_principal"] == 0

    @pytest.mark.asyncio
    async def test_own_and_draft_resources_skip_restrictions(self) -> None:
        """Resources decided before rule 4 are not looked up."""
        store = InMemoryStore()
        agents = [_agent("mine", owner="u6"), _agent("draft", status=ResourceStatus.DRAFT)]

        await _evaluator(store).batch_check(agents, "u6", ["r-1"], is_tenant_owner=False, permissions=READ_EXECUTE)

        assert store.calls["restrictions_for_principal"] == 0

    @pytest.mark.asyncio
    async def test_filter_visible_keeps_order(self) -> None:
        """Only viewable resources remain, in input order."""
        agents = [
            _agent("a"),
            _agent("b", visibility=Visibility.PRIVATE),
            _agent("c", status=ResourceStatus.DRAFT),
            _agent("d", owner="u6", visibility=Visibility.PRIVATE),
            _agent("e", visibility=Visibility.PUBLIC_COLLABORATIVE),
        ]
        visible = await _evaluator().filter_visible(agents, "u6", is_tenant_owner=False, permissions=READ_EXECUTE)
        assert [a.id for a in visible] == ["a", "d", "e"]


class TestServiceScenarios:
    """End-to-end checks through the service."""

    @pytest.mark.asyncio
    async def test_tenant_owner_scenario(self, service: AccessService) -> None:
        """Owner on someone else's private published agent."""
        caps = await service.check_resource_access(
            "auth0|owner",
            {"id": "agent-1", "owner_id": "u-2", "visibility": "private", "status": "published"},
            TENANT,
        )
        assert _caps(caps) == {"view": True, "execute": True, "edit": True, "delete": True}

    @pytest.mark.asyncio
    async def test_collaborative_scenario(self, service: AccessService) -> None:
        """Editor on a collaborative agent."""
        caps = await service.check_resource_access(
            "auth0|editor",
            _agent(visibility=Visibility.PUBLIC_COLLABORATIVE),
            TENANT,
        )
        assert _caps(caps) == {"view": True, "execute": True, "edit": True, "delete": False}

    @pytest.mark.asyncio
    async def test_draft_scenario(self, service: AccessService) -> None:
        """Someone else's draft."""
        caps = await service.check_resource_access(
            "auth0|teacher",
            {"id": "agent-1", "owner_id": "u-5", "visibility": "public", "status": "draft"},
            TENANT,
        )
        assert _caps(caps) == NONE
        assert caps.reason == "draft"

    @pytest.mark.asyncio
    async def test_restricted_scenario(self, service: AccessService) -> None:
        """Role allows execute but a restriction blocks it on one agent."""
        await service.add_restriction(Restriction("agent-1", principal_id="u-teacher", block_execute=True))

        results = await service.batch_check_resource_access(
            "auth0|teacher", [_agent("agent-1"), _agent("agent-2")], TENANT
        )

        assert not results["agent-1"].can_execute
        assert results["agent-2"].can_execute
        assert await service.check_permission("auth0|teacher", "agents", "execute", tenant_id=TENANT)

    @pytest.mark.asyncio
    async def test_role_restriction_via_service(self, service: AccessService) -> None:
        """Role ids are looked up for the principal's scope."""
        await service.add_restriction(Restriction("agent-1", role_id="role-teacher", block_view=True))

        visible = await service.filter_visible("auth0|teacher", [_agent("agent-1"), _agent("agent-2")], TENANT)

        assert [a.id for a in visible] == ["agent-2"]

    @pytest.mark.asyncio
    async def test_unresolved_principal(self, service: AccessService) -> None:
        """Unprovisioned principals see nothing."""
        caps = await service.check_resource_access("auth0|ghost", _agent(), TENANT)
        assert _caps(caps) == NONE
