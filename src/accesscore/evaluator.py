"""Resource access evaluator for visibility-scoped resources (agents).

Second-stage decision on top of the resolved permission map. For one
resource and one principal, the first matching rule wins:

1. tenant owner: full capabilities;
2. resource owner: full capabilities;
3. draft: nothing (only the creator sees drafts);
4. blocked restriction: view/execute/edit are the negation of the block
   flags, delete is never granted;
5. no base view grant on the resource category: nothing;
6. visibility: ``public`` grants view and the base execute grant,
   ``public_collaborative`` additionally the base edit grant, ``private``
   grants nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Iterable, Optional

from .models import Resource, ResourceStatus, Restriction, Visibility
from .permissions.access import has_any_permission, has_permission
from .permissions.constants import Actions, DenialReason, Resources
from .restrictions import RestrictionStore

logger = logging.getLogger(__name__)

VIEW_ACTIONS = (Actions.READ, Actions.VIEW)
EDIT_ACTIONS = (Actions.UPDATE, Actions.MANAGE)


@dataclass(frozen=True)
class CapabilitySet:
    """What a principal may do with one resource instance."""

    can_view: bool = False
    can_execute: bool = False
    can_edit: bool = False
    can_delete: bool = False
    reason: Optional[str] = None

    @classmethod
    def full(cls) -> CapabilitySet:
        return cls(True, True, True, True)

    @classmethod
    def none(cls, reason: Optional[str] = None) -> CapabilitySet:
        return cls(reason=reason)

    def to_dict(self) -> dict[str, object]:
        return {
            "view": self.can_view,
            "execute": self.can_execute,
            "edit": self.can_edit,
            "delete": self.can_delete,
            "reason": self.reason,
        }


class ResourceAccessEvaluator:
    """Applies the per-resource rules, batching restriction lookups."""

    def __init__(self, restrictions: RestrictionStore, category: str = Resources.AGENTS) -> None:
        self._restrictions = restrictions
        self._category = category

    def evaluate(
        self,
        resource: Resource,
        principal_id: Optional[str],
        *,
        is_tenant_owner: bool,
        permissions: Mapping[str, Iterable[str]],
        restriction: Optional[Restriction] = None,
    ) -> CapabilitySet:
        """Decide capabilities for one resource. Performs no I/O."""
        if is_tenant_owner:
            return CapabilitySet.full()

        if principal_id is not None and resource.owner_id == principal_id:
            return CapabilitySet.full()

        if resource.status == ResourceStatus.DRAFT:
            return CapabilitySet.none(DenialReason.DRAFT)

        if restriction is not None and restriction.is_blocked:
            # Replaces the visibility and base-map rules: unblocked flags are granted.
            return CapabilitySet(
                can_view=not restriction.block_view,
                can_execute=not restriction.block_execute,
                can_edit=not restriction.block_edit,
                can_delete=False,
                reason=restriction.reason or DenialReason.RESTRICTED,
            )

        if not has_any_permission(permissions, self._category, VIEW_ACTIONS):
            return CapabilitySet.none(DenialReason.NO_PERMISSION)

        can_execute = has_permission(permissions, self._category, Actions.EXECUTE)
        if resource.visibility == Visibility.PUBLIC:
            return CapabilitySet(can_view=True, can_execute=can_execute)
        if resource.visibility == Visibility.PUBLIC_COLLABORATIVE:
            return CapabilitySet(
                can_view=True,
                can_execute=can_execute,
                can_edit=has_any_permission(permissions, self._category, EDIT_ACTIONS),
            )
        return CapabilitySet.none(DenialReason.PRIVATE)

    async def batch_check(
        self,
        resources: Sequence[Resource],
        principal_id: Optional[str],
        role_ids: Sequence[str] = (),
        *,
        is_tenant_owner: bool,
        permissions: Mapping[str, Iterable[str]],
    ) -> dict[str, CapabilitySet]:
        """Capabilities for many resources with at most two restriction reads.

        Restrictions are loaded only for resources whose outcome can depend
        on them: never for tenant owners, own resources or drafts.
        """
        restrictions: dict[str, Restriction] = {}
        if not is_tenant_owner and principal_id is not None:
            pending = [
                resource.id
                for resource in resources
                if resource.owner_id != principal_id and resource.status != ResourceStatus.DRAFT
            ]
            if pending:
                restrictions = await self._restrictions.load_batch(pending, principal_id, role_ids)

        results = {
            resource.id: self.evaluate(
                resource,
                principal_id,
                is_tenant_owner=is_tenant_owner,
                permissions=permissions,
                restriction=restrictions.get(resource.id),
            )
            for resource in resources
        }
        logger.debug(
            "Evaluated %d resources for principal %s (%d viewable)",
            len(results),
            principal_id,
            sum(1 for capabilities in results.values() if capabilities.can_view),
        )
        return results

    async def check(
        self,
        resource: Resource,
        principal_id: Optional[str],
        role_ids: Sequence[str] = (),
        *,
        is_tenant_owner: bool,
        permissions: Mapping[str, Iterable[str]],
    ) -> CapabilitySet:
        results = await self.batch_check(
            [resource],
            principal_id,
            role_ids,
            is_tenant_owner=is_tenant_owner,
            permissions=permissions,
        )
        return results[resource.id]

    async def filter_visible(
        self,
        resources: Sequence[Resource],
        principal_id: Optional[str],
        role_ids: Sequence[str] = (),
        *,
        is_tenant_owner: bool,
        permissions: Mapping[str, Iterable[str]],
    ) -> list[Resource]:
        """Resources the principal may view, in input order."""
        results = await self.batch_check(
            resources,
            principal_id,
            role_ids,
            is_tenant_owner=is_tenant_owner,
            permissions=permissions,
        )
        return [resource for resource in resources if results[resource.id].can_view]


__all__ = [
    "CapabilitySet",
    "ResourceAccessEvaluator",
]
