"""Shared fixtures: a seeded in-memory store and a service over it."""

from __future__ import annotations

import pytest

from accesscore import AccessConfig, AccessService
from accesscore.stores import InMemoryStore

TENANT = "tenant-1"
OTHER_TENANT = "tenant-2"
SCHOOL = "school-1"


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_tenant(TENANT, alias="escola-azul")
    store.add_tenant(OTHER_TENANT, alias="escola-verde")
    store.add_school(TENANT, SCHOOL, slug="centro")

    store.add_role("admin", 1, {"*": ["*"]}, role_id="role-admin")
    store.add_role("teacher", 3, {"agents": ["read", "execute"]}, role_id="role-teacher")
    store.add_role("editor", 2, {"agents": ["read", "execute", "update"]}, role_id="role-editor")
    store.add_role("student", 5, {"agents": ["read"]}, role_id="role-student")

    owner = store.add_principal("auth0|owner", internal_id="u-owner")
    store.add_owner(owner.internal_id, TENANT)

    teacher = store.add_principal("auth0|teacher", internal_id="u-teacher")
    store.assign_role(teacher.internal_id, "role-teacher", TENANT)

    editor = store.add_principal("auth0|editor", internal_id="u-editor")
    store.assign_role(editor.internal_id, "role-editor", TENANT)

    store.add_principal("auth0|nobody", internal_id="u-nobody")
    return store


@pytest.fixture
def config() -> AccessConfig:
    return AccessConfig(cache_max_entries=100, cache_ttl_seconds=0)


@pytest.fixture
def service(store: InMemoryStore, config: AccessConfig) -> AccessService:
    return AccessService.from_backend(store, config)
