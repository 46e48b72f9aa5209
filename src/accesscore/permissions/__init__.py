"""Permission vocabulary, permission maps and map checks.

Defines:
- WILDCARD / Actions / Resources: tokens stored in grants
- OwnershipLevel / Hierarchy: ownership levels and hierarchy sentinels
- DenialReason: internal reason codes
- PermissionMap: immutable resource → actions map with union merge
- has_permission(): the single map decision rule
"""

from .access import has_any_permission, has_permission
from .constants import WILDCARD, Actions, DenialReason, Hierarchy, OwnershipLevel, Resources
from .maps import EMPTY_PERMISSIONS, PermissionMap, RawPermissions

__all__ = [
    "EMPTY_PERMISSIONS",
    "WILDCARD",
    "Actions",
    "DenialReason",
    "Hierarchy",
    "OwnershipLevel",
    "PermissionMap",
    "RawPermissions",
    "Resources",
    "has_any_permission",
    "has_permission",
]
