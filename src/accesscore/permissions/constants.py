"""Permission vocabulary for accesscore.

Provides:
- ``WILDCARD``: reserved token, valid both as resource key and as action.
- ``Actions``: action tokens stored in role/group/specific grants.
- ``Resources``: resource names used by the evaluators.
- ``OwnershipLevel``: tenant ownership levels.
- ``Hierarchy``: hierarchy sentinels (owner, no role).
- ``DenialReason``: internal reason codes, logged and never returned.
"""

from __future__ import annotations

from enum import Enum

WILDCARD = "*"


class Actions:
    """Canonical action tokens.

    Grants are stored as ``{resource: [action, ...]}``. ``manage`` is a
    sentinel: holding it on a resource implies every action on that
    resource.
    """

    READ = "read"
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    EXECUTE = "execute"
    MANAGE = "manage"
    ALL = WILDCARD

    # Tokens that satisfy any action on the resource they are granted on
    IMPLIES_ANY = frozenset({ALL, MANAGE})


class Resources:
    """Resource names with dedicated evaluation rules."""

    AGENTS = "agents"
    ALL = WILDCARD


class OwnershipLevel(str, Enum):
    """Tenant ownership level. Both levels carry full tenant authority."""

    OWNER = "owner"
    CO_OWNER = "co-owner"

    @classmethod
    def _missing_(cls, value: object) -> OwnershipLevel:
        # Ownership is an existence check: any stored level still means owner.
        if isinstance(value, str) and value.strip().lower().replace("_", "-") == cls.CO_OWNER.value:
            return cls.CO_OWNER
        return cls.OWNER


class Hierarchy:
    """Hierarchy sentinels. Lower is more senior."""

    OWNER = 0
    NONE = 999


class DenialReason:
    """Internal denial reason codes.

    Used for logging and metrics only. Callers always receive the generic
    "access denied" message.
    """

    UNAUTHENTICATED = "unauthenticated"
    TENANT_NOT_FOUND = "tenant_not_found"
    NOT_OWNER = "not_owner"
    NO_ROLE = "no_role"
    NO_PERMISSION = "no_permission"
    RESTRICTED = "restricted"
    DRAFT = "draft"
    PRIVATE = "private"
    STORE_UNAVAILABLE = "store_unavailable"


__all__ = [
    "WILDCARD",
    "Actions",
    "DenialReason",
    "Hierarchy",
    "OwnershipLevel",
    "Resources",
]
