"""Restriction store: explicit per-resource block-lists.

Lookups are always batched. For N resources the store issues at most two
backend round trips:

1. restrictions targeting the principal, across all resource ids;
2. restrictions targeting any of the principal's roles, only for resource
   ids the first pass left unblocked.

The single-resource lookup is a one-element batch.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Optional

from .exceptions import AccessCoreError, RestrictionValidationError, StorageError
from .models import Restriction
from .stores.base import RestrictionBackend

logger = logging.getLogger(__name__)


def combine_restrictions(restrictions: Iterable[Restriction]) -> Optional[Restriction]:
    """Fold several restrictions on one resource into the most restrictive one.

    Block flags are OR-ed; the first non-empty reason is kept.
    """
    combined: Optional[Restriction] = None
    for restriction in restrictions:
        if combined is None:
            combined = restriction
            continue
        combined = Restriction(
            resource_id=combined.resource_id,
            principal_id=combined.principal_id,
            role_id=combined.role_id,
            block_view=combined.block_view or restriction.block_view,
            block_execute=combined.block_execute or restriction.block_execute,
            block_edit=combined.block_edit or restriction.block_edit,
            reason=combined.reason or restriction.reason,
            id=combined.id,
        )
    return combined


def _group_by_resource(restrictions: Iterable[Restriction]) -> dict[str, list[Restriction]]:
    grouped: dict[str, list[Restriction]] = {}
    for restriction in restrictions:
        grouped.setdefault(restriction.resource_id, []).append(restriction)
    return grouped


class RestrictionStore:
    """Loads and manages restrictions through a :class:`RestrictionBackend`."""

    def __init__(self, backend: RestrictionBackend) -> None:
        self._backend = backend

    async def load_batch(
        self,
        resource_ids: Sequence[str],
        principal_id: str,
        role_ids: Sequence[str] = (),
    ) -> dict[str, Restriction]:
        """Resolve the applicable restriction per resource id.

        Principal-level restrictions take precedence; role-level ones are
        consulted only for resources without a blocking principal entry.

        Returns:
            Mapping of resource id → restriction, only for resources that
            have one. Missing ids carry no restriction.

        Raises:
            StorageError: If either lookup fails. Failures are never read as
                "no restriction".
        """
        ids = list(dict.fromkeys(resource_ids))
        if not ids:
            return {}

        try:
            by_principal = await self._backend.restrictions_for_principal(ids, principal_id)
        except AccessCoreError:
            raise
        except Exception as e:
            raise StorageError("restriction lookup failed", principal_id=principal_id) from e

        resolved: dict[str, Restriction] = {}
        for resource_id, entries in _group_by_resource(by_principal).items():
            combined = combine_restrictions(entries)
            if combined is not None:
                resolved[resource_id] = combined

        pending = [rid for rid in ids if rid not in resolved or not resolved[rid].is_blocked]
        roles = list(dict.fromkeys(role_ids))
        if pending and roles:
            try:
                by_role = await self._backend.restrictions_for_roles(pending, roles)
            except AccessCoreError:
                raise
            except Exception as e:
                raise StorageError("role restriction lookup failed", principal_id=principal_id) from e

            for resource_id, entries in _group_by_resource(by_role).items():
                combined = combine_restrictions(entries)
                if combined is not None and combined.is_blocked:
                    resolved[resource_id] = combined

        logger.debug(
            "Loaded restrictions for %d resources (%d restricted) for principal %s",
            len(ids),
            sum(1 for r in resolved.values() if r.is_blocked),
            principal_id,
        )
        return resolved

    async def load(self, resource_id: str, principal_id: str, role_ids: Sequence[str] = ()) -> Optional[Restriction]:
        """Restriction for one resource (a one-element batch)."""
        return (await self.load_batch([resource_id], principal_id, role_ids)).get(resource_id)

    # ── Management ──────────────────────────────────────────────

    async def add(self, restriction: Restriction) -> Restriction:
        """Persist a restriction targeting exactly one principal or one role."""
        if bool(restriction.principal_id) == bool(restriction.role_id):
            raise RestrictionValidationError(
                "restriction must target exactly one of principal_id or role_id",
                resource_id=restriction.resource_id,
            )
        stored = await self._backend.add_restriction(restriction)
        logger.info(
            "Restriction %s added on resource %s (principal=%s role=%s)",
            stored.id,
            stored.resource_id,
            stored.principal_id,
            stored.role_id,
        )
        return stored

    async def remove(self, restriction_id: str) -> bool:
        removed = await self._backend.remove_restriction(restriction_id)
        if removed:
            logger.info("Restriction %s removed", restriction_id)
        return removed

    async def list_for(self, resource_id: str) -> list[Restriction]:
        return await self._backend.list_restrictions(resource_id)


__all__ = [
    "RestrictionStore",
    "combine_restrictions",
]
