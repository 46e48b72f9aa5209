"""Backing stores for the authorization engine.

- ``base``: Protocol contracts the engine consumes
- ``InMemoryStore``: dict-backed store for tests and local development
- ``SqlStore``: SQLAlchemy async store over the relational schema
"""

from .base import (
    AccessBackend,
    GrantBackend,
    GroupBackend,
    IdentityBackend,
    OwnershipBackend,
    RestrictionBackend,
    RoleBackend,
    TenantBackend,
    in_scope,
)
from .memory import InMemoryStore
from .sql import SqlStore

__all__ = [
    "AccessBackend",
    "GrantBackend",
    "GroupBackend",
    "IdentityBackend",
    "InMemoryStore",
    "OwnershipBackend",
    "RestrictionBackend",
    "RoleBackend",
    "SqlStore",
    "TenantBackend",
    "in_scope",
]
