"""Domain records shared by stores, resolver and evaluator.

Records are frozen dataclasses: a record read from a store is a snapshot
and never mutated in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from .permissions.access import has_permission
from .permissions.maps import PermissionMap, RawPermissions


@dataclass(frozen=True)
class Principal:
    """Internal identity of an authenticated user.

    ``version_token`` changes whenever any grant affecting the principal
    changes; cached permission contexts stamped with an older token are
    never served.
    """

    internal_id: str
    external_id: str
    version_token: str


@dataclass(frozen=True)
class Role:
    """Hierarchy-ranked bundle of default permissions.

    ``tenant_id`` is None for system-wide roles.
    """

    id: str
    slug: str
    hierarchy_level: int
    default_permissions: PermissionMap = field(default_factory=PermissionMap)
    tenant_id: Optional[str] = None

    @classmethod
    def create(
        cls,
        id: str,
        slug: str,
        hierarchy_level: int,
        default_permissions: RawPermissions | None = None,
        tenant_id: Optional[str] = None,
    ) -> Role:
        return cls(id, slug, hierarchy_level, PermissionMap.from_raw(default_permissions), tenant_id)


@dataclass(frozen=True)
class PermissionGroup:
    """Non-hierarchical bundle of permissions."""

    id: str
    name: str
    permissions: PermissionMap = field(default_factory=PermissionMap)


@dataclass(frozen=True)
class SpecificGrant:
    """Single-action grant issued directly to a principal."""

    principal_id: str
    tenant_id: str
    resource: str
    action: str
    school_id: Optional[str] = None


@dataclass(frozen=True)
class Restriction:
    """Explicit block on one resource instance for a principal or a role.

    Exactly one of ``principal_id`` / ``role_id`` is set. Deletion is never
    blocked here: deleting is reserved to owners by construction.
    """

    resource_id: str
    principal_id: Optional[str] = None
    role_id: Optional[str] = None
    block_view: bool = False
    block_execute: bool = False
    block_edit: bool = False
    reason: Optional[str] = None
    id: Optional[str] = None

    @property
    def is_blocked(self) -> bool:
        return self.block_view or self.block_execute or self.block_edit

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Restriction:
        """Build from a row shaped like the ``agent_restrictions`` table."""
        return cls(
            resource_id=str(record.get("resource_id") or record.get("agent_id")),
            principal_id=record.get("principal_id") or record.get("user_id"),
            role_id=record.get("role_id"),
            block_view=bool(record.get("block_view")),
            block_execute=bool(record.get("block_execute")),
            block_edit=bool(record.get("block_edit")),
            reason=record.get("reason"),
            id=record.get("id"),
        )


class Visibility(str, Enum):
    """Canonical visibility of an evaluator-scoped resource."""

    PUBLIC = "public"
    PUBLIC_COLLABORATIVE = "public_collaborative"
    PRIVATE = "private"


class ResourceStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


# Values written by earlier schema revisions, folded once at ingestion.
LEGACY_VISIBILITY: dict[str, Visibility] = {
    "public_school": Visibility.PUBLIC,
    "public_editable": Visibility.PUBLIC_COLLABORATIVE,
    "restricted": Visibility.PRIVATE,
}


def normalize_visibility(value: str | Visibility | None) -> Visibility:
    """Map a stored visibility (canonical or legacy) to :class:`Visibility`.

    Unknown or missing values normalize to ``PRIVATE`` so that bad data never
    widens access.
    """
    if isinstance(value, Visibility):
        return value
    if not value:
        return Visibility.PRIVATE
    raw = str(value).strip().lower()
    if raw in LEGACY_VISIBILITY:
        return LEGACY_VISIBILITY[raw]
    try:
        return Visibility(raw)
    except ValueError:
        return Visibility.PRIVATE


def normalize_status(value: str | ResourceStatus | None) -> ResourceStatus:
    """Anything other than an explicit ``published`` counts as draft."""
    if isinstance(value, ResourceStatus):
        return value
    if value and str(value).strip().lower() == ResourceStatus.PUBLISHED.value:
        return ResourceStatus.PUBLISHED
    return ResourceStatus.DRAFT


@dataclass(frozen=True)
class Resource:
    """Snapshot of an evaluator-scoped resource (an agent)."""

    id: str
    owner_id: Optional[str]
    visibility: Visibility = Visibility.PRIVATE
    status: ResourceStatus = ResourceStatus.DRAFT

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Resource:
        """Ingest a stored row, normalizing legacy visibility values.

        Older rows carry the visibility in ``type`` (``public_school``,
        ``public_editable``, ``restricted``); a ``type`` of ``private`` with a
        ``visibility`` of ``public`` means public.
        """
        legacy_type = record.get("type")
        visibility = record.get("visibility")
        if legacy_type and legacy_type != Visibility.PRIVATE.value:
            visibility = legacy_type
        return cls(
            id=str(record["id"]),
            owner_id=record.get("owner_id") or record.get("created_by"),
            visibility=normalize_visibility(visibility),
            status=normalize_status(record.get("status", ResourceStatus.PUBLISHED.value)),
        )


@dataclass(frozen=True)
class PermissionContext:
    """Effective permissions of one principal in one (tenant, school) scope.

    A context for a principal that is not provisioned has ``principal_id``
    set to None, an empty map and no version token; it is never cached.
    """

    external_id: str
    tenant_id: str
    school_id: Optional[str] = None
    principal_id: Optional[str] = None
    is_owner: bool = False
    permissions: PermissionMap = field(default_factory=PermissionMap)
    version_token: Optional[str] = None

    @classmethod
    def unresolved(cls, external_id: str, tenant_id: str, school_id: Optional[str] = None) -> PermissionContext:
        return cls(external_id=external_id, tenant_id=tenant_id, school_id=school_id)

    @property
    def is_resolved(self) -> bool:
        return self.principal_id is not None

    def allows(self, resource: str, action: str) -> bool:
        """Owner short-circuit, then the wildcard-aware map check."""
        if self.is_owner:
            return True
        return has_permission(self.permissions, resource, action)

    def to_dict(self) -> dict[str, Any]:
        return {
            "principal_id": self.principal_id,
            "external_id": self.external_id,
            "tenant_id": self.tenant_id,
            "school_id": self.school_id,
            "is_owner": self.is_owner,
            "permissions": self.permissions.to_dict(),
            "version_token": self.version_token,
        }


__all__ = [
    "LEGACY_VISIBILITY",
    "PermissionContext",
    "PermissionGroup",
    "Principal",
    "Resource",
    "ResourceStatus",
    "Restriction",
    "Role",
    "SpecificGrant",
    "Visibility",
    "normalize_status",
    "normalize_visibility",
]
