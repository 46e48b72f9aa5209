"""Per-request authorization gate.

Ties tenant alias normalization, context resolution and the role and
permission checks into one verdict. The verdict carries the resolved
:class:`PermissionContext` so the business logic behind the gate never has
to resolve it again.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .exceptions import (
    AccessDeniedError,
    AuthenticationError,
    MissingTenantError,
    StorageError,
    TenantNotFoundError,
)
from .logging import get_access_logger
from .models import PermissionContext
from .permissions.constants import DenialReason
from .resolver import PermissionResolver
from .tenants import TenantAliasResolver


@dataclass(frozen=True)
class Requirement:
    """What an action needs: ownership, a role slug and/or a ``(resource, action)`` pair.

    ``owner_only`` admits tenant owners and co-owners alone; no role or
    permission grant (not even ``*:*``) satisfies it.
    """

    resource: Optional[str] = None
    action: Optional[str] = None
    role: Optional[str] = None
    owner_only: bool = False

    def __post_init__(self) -> None:
        if (self.resource is None) != (self.action is None):
            raise ValueError("resource and action must be given together")


OWNER_ONLY = Requirement(owner_only=True)


@dataclass(frozen=True)
class GateDecision:
    """Outcome of one gate evaluation.

    ``reason`` is an internal code (see ``DenialReason``) and must not be
    returned to callers; ``raise_for_denial`` raises the generic error.
    """

    allowed: bool
    reason: Optional[str] = None
    context: Optional[PermissionContext] = None
    tenant_id: Optional[str] = None
    school_id: Optional[str] = None

    def raise_for_denial(self) -> GateDecision:
        if self.allowed:
            return self
        if self.reason == DenialReason.UNAUTHENTICATED:
            raise AuthenticationError()
        raise AccessDeniedError(reason=self.reason, tenant_id=self.tenant_id)


class AuthorizationGate:
    """Runs the gate pipeline for one inbound action."""

    def __init__(self, resolver: PermissionResolver, tenants: TenantAliasResolver) -> None:
        self._resolver = resolver
        self._tenants = tenants

    async def authorize(
        self,
        principal_id: Optional[str],
        tenant: Optional[str],
        school: Optional[str] = None,
        requirement: Optional[Requirement] = None,
    ) -> GateDecision:
        """Evaluate one request.

        Args:
            principal_id: External id of the authenticated caller.
            tenant: Tenant id, subdomain or alias as received.
            school: Optional school id or slug.
            requirement: Role and/or permission the action needs.

        Returns:
            GateDecision. Denials are returned, not raised.

        Raises:
            MissingTenantError: If no tenant was supplied.
        """
        log = get_access_logger(__name__, principal_id=principal_id, tenant_id=tenant, school_id=school)

        if not principal_id:
            log.warning("Access denied", extra={"decision_reason": DenialReason.UNAUTHENTICATED})
            return GateDecision(False, DenialReason.UNAUTHENTICATED)
        if not tenant:
            raise MissingTenantError(principal_id=principal_id)

        requirement = requirement or Requirement()
        tenant_id: Optional[str] = None
        school_id: Optional[str] = None
        try:
            tenant_id = await self._tenants.resolve_tenant(tenant)
            school_id = await self._tenants.resolve_school(tenant_id, school)
            log = get_access_logger(__name__, principal_id=principal_id, tenant_id=tenant_id, school_id=school_id)

            context = await self._resolver.get_permission_context(principal_id, tenant_id, school_id)
            if context.is_owner:
                log.debug("Access granted to tenant owner")
                return GateDecision(True, None, context, tenant_id, school_id)

            if requirement.owner_only:
                return self._deny(log, DenialReason.NOT_OWNER, requirement, context, tenant_id, school_id)

            if requirement.role and not await self._resolver.has_role(
                principal_id, requirement.role, tenant_id, school_id
            ):
                return self._deny(log, DenialReason.NO_ROLE, requirement, context, tenant_id, school_id)

            if requirement.resource and not await self._resolver.check_permission(
                principal_id, requirement.resource, requirement.action, context=context
            ):
                return self._deny(log, DenialReason.NO_PERMISSION, requirement, context, tenant_id, school_id)

        except TenantNotFoundError:
            return self._deny(log, DenialReason.TENANT_NOT_FOUND, requirement, None, None, None)
        except StorageError as e:
            log.error("Authorization failed closed: %s", e.message, extra={"error_details": e.details})
            return self._deny(log, DenialReason.STORE_UNAVAILABLE, requirement, None, tenant_id, school_id)

        return GateDecision(True, None, context, tenant_id, school_id)

    @staticmethod
    def _deny(
        log,
        reason: str,
        requirement: Requirement,
        context: Optional[PermissionContext],
        tenant_id: Optional[str],
        school_id: Optional[str],
    ) -> GateDecision:
        log.warning(
            "Access denied",
            extra={
                "decision_reason": reason,
                "required_role": requirement.role,
                "required_permission": (
                    f"{requirement.resource}:{requirement.action}" if requirement.resource else None
                ),
            },
        )
        return GateDecision(False, reason, context, tenant_id, school_id)


__all__ = [
    "OWNER_ONLY",
    "AuthorizationGate",
    "GateDecision",
    "Requirement",
]
