"""Access-check helpers over permission maps.

Provides the single decision rule used by the resolver, the gate and the
resource evaluator to test a ``(resource, action)`` pair against a merged
permission map.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from .constants import WILDCARD, Actions

PermissionLike = Mapping[str, Iterable[str]]


def has_permission(permissions: PermissionLike, resource: str, action: str) -> bool:
    """Check if a permission map grants ``action`` on ``resource``.

    Checks in order:
    1. ``{'*': ['*']}`` (full access)
    2. ``resource`` entry containing ``action``, ``*`` or ``manage``
    3. ``*`` entry containing exactly ``action``

    Ownership is not part of the map check; callers short-circuit owners
    before reaching this function.

    Args:
        permissions: Merged permission map.
        resource: Resource name (e.g. ``"agents"``).
        action: Action token (e.g. ``"execute"``).

    Returns:
        True if access is granted.

    Example::

        perms = {"agents": ["read", "execute"], "*": ["read"]}
        has_permission(perms, "agents", "execute")  # True
        has_permission(perms, "reports", "read")    # True  (via "*")
        has_permission(perms, "reports", "update")  # False
    """
    global_actions = set(permissions.get(WILDCARD, ()))
    if WILDCARD in global_actions:
        return True

    resource_actions = set(permissions.get(resource, ()))
    if action in resource_actions or resource_actions & Actions.IMPLIES_ANY:
        return True

    return action in global_actions


def has_any_permission(permissions: PermissionLike, resource: str, actions: Iterable[str]) -> bool:
    """True if any of ``actions`` is granted on ``resource``."""
    return any(has_permission(permissions, resource, action) for action in actions)


__all__ = [
    "has_any_permission",
    "has_permission",
]
