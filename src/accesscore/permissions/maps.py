"""Permission map model.

A permission map binds resource names (or ``*``) to sets of action tokens
(or ``*``). Every grant source (roles, groups, specific grants) produces one,
and the resolver merges them by per-key set union. Union is commutative,
associative and idempotent, so aggregation order never changes the result.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any, Union

from .constants import WILDCARD

RawPermissions = Mapping[str, Union[str, Iterable[str]]]


def _as_actions(value: Any) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset({value}) if value else frozenset()
    return frozenset(str(action) for action in value if action)


class PermissionMap(Mapping[str, frozenset[str]]):
    """Immutable ``resource -> frozenset(actions)`` mapping.

    Example::

        roles = PermissionMap.from_raw({"agents": ["read", "execute"]})
        groups = PermissionMap.from_raw({"agents": ["update"], "reports": "*"})
        merged = roles | groups
        merged["agents"]  # frozenset({"read", "execute", "update"})
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, frozenset[str]] | None = None) -> None:
        self._entries: dict[str, frozenset[str]] = {
            resource: frozenset(actions) for resource, actions in (entries or {}).items() if actions
        }

    @classmethod
    def from_raw(cls, raw: RawPermissions | None) -> PermissionMap:
        """Build a map from a loosely-typed store payload.

        Accepts list/tuple/set values or a bare string (``"*"``). Empty
        action lists are dropped.
        """
        if not raw:
            return cls()
        return cls({str(resource): _as_actions(actions) for resource, actions in raw.items()})

    @classmethod
    def from_grants(cls, grants: Iterable[tuple[str, str]]) -> PermissionMap:
        """Build a map from ``(resource, action)`` rows."""
        entries: dict[str, set[str]] = {}
        for resource, action in grants:
            entries.setdefault(resource, set()).add(action)
        return cls({resource: frozenset(actions) for resource, actions in entries.items()})

    @classmethod
    def merge(cls, *maps: Mapping[str, Iterable[str]]) -> PermissionMap:
        """Per-key set union of any number of maps."""
        entries: dict[str, set[str]] = {}
        for source in maps:
            for resource, actions in source.items():
                entries.setdefault(resource, set()).update(actions)
        return cls({resource: frozenset(actions) for resource, actions in entries.items()})

    @classmethod
    def full_access(cls) -> PermissionMap:
        """The ``{'*': {'*'}}`` map granted to tenant owners."""
        return cls({WILDCARD: frozenset({WILDCARD})})

    def __or__(self, other: Mapping[str, Iterable[str]]) -> PermissionMap:
        if not isinstance(other, Mapping):
            return NotImplemented
        return PermissionMap.merge(self, other)

    def __getitem__(self, resource: str) -> frozenset[str]:
        return self._entries[resource]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PermissionMap):
            return self._entries == other._entries
        return super().__eq__(other)

    def __hash__(self) -> int:
        return hash(frozenset(self._entries.items()))

    def actions_for(self, resource: str) -> frozenset[str]:
        return self._entries.get(resource, frozenset())

    @property
    def is_full_access(self) -> bool:
        return WILDCARD in self._entries.get(WILDCARD, frozenset())

    def to_dict(self) -> dict[str, list[str]]:
        """Plain, deterministically ordered representation (sorted keys and actions)."""
        return {resource: sorted(self._entries[resource]) for resource in sorted(self._entries)}

    def __repr__(self) -> str:
        return f"PermissionMap({self.to_dict()!r})"


EMPTY_PERMISSIONS = PermissionMap()


__all__ = [
    "EMPTY_PERMISSIONS",
    "PermissionMap",
    "RawPermissions",
]
