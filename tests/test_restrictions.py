"""Tests for the restriction store."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from accesscore.exceptions import RestrictionValidationError, StorageError
from accesscore.models import Restriction
from accesscore.restrictions import RestrictionStore, combine_restrictions
from accesscore.stores import InMemoryStore


def _round_trips(store: InMemoryStore) -> int:
    return store.calls["restrictions_for_principal"] + store.calls["restrictions_for_roles"]


class TestCombineRestrictions:
    """Folding several restrictions on one resource."""

    def test_empty(self) -> None:
        """No restrictions folds to None."""
        assert combine_restrictions([]) is None

    def test_flags_or_combined(self) -> None:
        """Flags are OR-ed, first reason kept."""
        combined = combine_restrictions(
            [
                Restriction("a-1", role_id="r-1", block_view=True),
                Restriction("a-1", role_id="r-2", block_execute=True, reason="exam week"),
            ]
        )
        assert combined.block_view and combined.block_execute
        assert not combined.block_edit
        assert combined.reason == "exam week"


class TestLoadBatch:
    """Batched lookups and their round-trip bound."""

    @pytest.mark.asyncio
    async def test_no_ids_no_round_trip(self) -> None:
        """Empty batches never reach the store."""
        store = InMemoryStore()
        assert await RestrictionStore(store).load_batch([], "u-1", ["r-1"]) == {}
        assert _round_trips(store) == 0

    @pytest.mark.asyncio
    async def test_at_most_two_round_trips(self) -> None:
        """N resources cost at most two lookups."""
        store = InMemoryStore()
        for i in range(50):
            await store.add_restriction(Restriction(f"a-{i}", role_id="r-1", block_execute=True))

        result = await RestrictionStore(store).load_batch([f"a-{i}" for i in range(200)], "u-1", ["r-1", "r-2"])

        assert len(result) == 50
        assert _round_trips(store) == 2

    @pytest.mark.asyncio
    async def test_no_roles_single_round_trip(self) -> None:
        """Without roles only the principal lookup runs."""
        store = InMemoryStore()
        await RestrictionStore(store).load_batch(["a-1", "a-2"], "u-1")
        assert _round_trips(store) == 1

    @pytest.mark.asyncio
    async def test_role_pass_only_for_unresolved_ids(self) -> None:
        """Ids blocked by a principal restriction are not looked up by role."""
        backend = AsyncMock()
        backend.restrictions_for_principal.return_value = [Restriction("a-1", principal_id="u-1", block_view=True)]
        backend.restrictions_for_roles.return_value = []

        await RestrictionStore(backend).load_batch(["a-1", "a-2", "a-3"], "u-1", ["r-1"])

        backend.restrictions_for_roles.assert_awaited_once_with(["a-2", "a-3"], ["r-1"])

    @pytest.mark.asyncio
    async def test_principal_restriction_wins(self) -> None:
        """Principal-level entries take precedence over role-level ones."""
        store = InMemoryStore()
        await store.add_restriction(Restriction("a-1", principal_id="u-1", block_edit=True, reason="personal"))
        await store.add_restriction(Restriction("a-1", role_id="r-1", block_view=True, reason="role"))

        result = await RestrictionStore(store).load_batch(["a-1"], "u-1", ["r-1"])

        assert result["a-1"].reason == "personal"
        assert result["a-1"].block_edit and not result["a-1"].block_view

    @pytest.mark.asyncio
    async def test_single_is_one_element_batch(self) -> None:
        """load() goes through the batch path."""
        store = InMemoryStore()
        await store.add_restriction(Restriction("a-1", role_id="r-1", block_execute=True))

        restriction = await RestrictionStore(store).load("a-1", "u-1", ["r-1"])

        assert restriction.block_execute
        assert await RestrictionStore(store).load("a-2", "u-1", ["r-1"]) is None

    @pytest.mark.asyncio
    async def test_backend_failure_is_not_no_restriction(self) -> None:
        """Lookup failures raise instead of returning no restriction."""
        backend = AsyncMock()
        backend.restrictions_for_principal.side_effect = TimeoutError()

        with pytest.raises(StorageError):
            await RestrictionStore(backend).load_batch(["a-1"], "u-1")

    @pytest.mark.asyncio
    async def test_role_failure_propagates(self) -> None:
        """A failing role pass fails the batch."""
        backend = AsyncMock()
        backend.restrictions_for_principal.return_value = []
        backend.restrictions_for_roles.side_effect = ConnectionError()

        with pytest.raises(StorageError):
            await RestrictionStore(backend).load_batch(["a-1"], "u-1", ["r-1"])


class TestManagement:
    """add / remove / list."""

    @pytest.mark.asyncio
    async def test_add_list_remove(self) -> None:
        """Restrictions round-trip through the store."""
        restrictions = RestrictionStore(InMemoryStore())
        stored = await restrictions.add(Restriction("a-1", principal_id="u-1", block_view=True))

        assert stored.id
        assert [r.id for r in await restrictions.list_for("a-1")] == [stored.id]
        assert await restrictions.remove(stored.id)
        assert not await restrictions.remove(stored.id)
        assert await restrictions.list_for("a-1") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "restriction",
        [
            Restriction("a-1", block_view=True),
            Restriction("a-1", principal_id="u-1", role_id="r-1", block_view=True),
        ],
    )
    async def test_add_requires_exactly_one_target(self, restriction: Restriction) -> None:
        """Neither or both targets are rejected."""
        with pytest.raises(RestrictionValidationError):
            await RestrictionStore(InMemoryStore()).add(restriction)
