"""
Tests for role and permission management.
"""

import pytest

from accessguard.core.auth.backends import MemoryPolicyStore
from accessguard.core.auth.catalog import WILDCARD, PermissionAction, Role
from accessguard.core.auth.events import MutationAction
from accessguard.core.auth.exceptions import (
    ConfigurationError,
    ManagementDenied,
    PermissionNotFound,
    PrincipalNotFound,
    StoreFailure,
)
from accessguard.core.auth.hierarchy import HierarchyGuard
from accessguard.core.auth.interfaces import AuditSink
from accessguard.services.rbac import RBACService


class WriteFailingStore(MemoryPolicyStore):
    async def upsert_role_assignment(self, principal_id, role, assigned_by, expires_at=None):
        raise RuntimeError("disk full")


class OfflineAuditSink(AuditSink):
    async def record_security_event(self, event):
        raise ConnectionError("audit database down")

    async def record_mutation(self, event):
        raise ConnectionError("audit database down")


@pytest.fixture
def rbac(store, guard, catalog, audit) -> RBACService:
    return RBACService(store, guard, catalog, audit)


@pytest.fixture
def people(store):
    store.add_principal("root", Role.SUPER_ADMIN)
    store.add_principal("admin", Role.ADMIN)
    store.add_principal("mod", Role.MODERATOR)
    store.add_principal("client", Role.CLIENT)
    return store


# ============ Role assignment ============


@pytest.mark.asyncio
async def test_assign_role_grants_capabilities(people, rbac, resolver, audit):
    assignment = await rbac.assign_role("admin", "client", Role.EDITOR)

    assert assignment.role == Role.EDITOR
    assert assignment.assigned_by == "admin"
    assert (await resolver.check("client", "news", PermissionAction.CREATE)).allowed

    assert len(audit.mutations) == 1
    event = audit.mutations[0]
    assert event.action == MutationAction.ROLE_ASSIGNED
    assert event.success is True
    assert event.details["role"] == "EDITOR"


@pytest.mark.asyncio
async def test_assign_role_survives_audit_failure(people, store, guard, catalog, resolver):
    rbac = RBACService(store, guard, catalog, OfflineAuditSink())

    assignment = await rbac.assign_role("admin", "client", Role.EDITOR)

    assert assignment.role == Role.EDITOR
    assert len(people.assignment_rows("client")) == 1
    assert (await resolver.check("client", "news", PermissionAction.CREATE)).allowed


@pytest.mark.asyncio
async def test_assign_role_is_idempotent(people, rbac):
    await rbac.assign_role("admin", "client", Role.EDITOR)
    await rbac.assign_role("admin", "client", Role.EDITOR)

    assert len(people.assignment_rows("client")) == 1


@pytest.mark.asyncio
async def test_reassign_refreshes_expiry(people, rbac, clock):
    await rbac.assign_role("admin", "client", Role.EDITOR, expires_at=clock.now.replace(hour=13))
    await rbac.assign_role("admin", "client", Role.EDITOR)

    [row] = people.assignment_rows("client")
    assert row.expires_at is None


@pytest.mark.asyncio
async def test_revoke_role_then_check_denies(people, rbac, resolver, audit):
    await rbac.assign_role("admin", "client", Role.EDITOR)

    assert await rbac.revoke_role("admin", "client", Role.EDITOR) is True
    assert not (await resolver.check("client", "news", PermissionAction.CREATE)).allowed

    [row] = people.assignment_rows("client")
    assert row.is_active is False
    assert [e.action for e in audit.mutations] == [MutationAction.ROLE_ASSIGNED, MutationAction.ROLE_REVOKED]


@pytest.mark.asyncio
async def test_revoke_missing_role(people, rbac):
    assert await rbac.revoke_role("admin", "client", Role.EDITOR) is False


@pytest.mark.asyncio
async def test_cannot_manage_peer(people, rbac, audit):
    people.add_principal("admin2", Role.ADMIN)

    with pytest.raises(ManagementDenied):
        await rbac.assign_role("admin", "admin2", Role.EDITOR)

    assert audit.mutations == []
    assert people.assignment_rows("admin2") == []


@pytest.mark.asyncio
async def test_cannot_assign_role_at_own_level(people, rbac):
    with pytest.raises(ManagementDenied):
        await rbac.assign_role("mod", "client", Role.MODERATOR)

    with pytest.raises(ManagementDenied):
        await rbac.assign_role("mod", "client", Role.ADMIN)


@pytest.mark.asyncio
async def test_assign_unknown_role(people, rbac):
    with pytest.raises(ConfigurationError):
        await rbac.assign_role("admin", "client", "WIZARD")


@pytest.mark.asyncio
async def test_assign_to_unknown_principal(people, rbac):
    with pytest.raises(PrincipalNotFound):
        await rbac.assign_role("admin", "ghost", Role.EDITOR)


@pytest.mark.asyncio
async def test_store_failure_is_audited(catalog, audit, clock):
    store = WriteFailingStore(clock=clock)
    store.add_principal("admin", Role.ADMIN)
    store.add_principal("client", Role.CLIENT)
    rbac = RBACService(store, HierarchyGuard(store, catalog), catalog, audit)

    with pytest.raises(StoreFailure):
        await rbac.assign_role("admin", "client", Role.EDITOR)

    [event] = audit.mutations
    assert event.success is False
    assert event.details["error"] == "disk full"


# ============ Direct permissions ============


@pytest.mark.asyncio
async def test_grant_and_revoke_permission(people, rbac, resolver, audit):
    permission = people.add_permission("admin", PermissionAction.READ)

    grant = await rbac.grant_permission("admin", "client", permission.id)

    assert grant.granted_by == "admin"
    assert (await resolver.check("client", "admin", PermissionAction.READ)).allowed

    assert await rbac.revoke_user_permission("admin", "client", permission.id) is True
    assert not (await resolver.check("client", "admin", PermissionAction.READ)).allowed
    assert [e.action for e in audit.mutations] == [
        MutationAction.PERMISSION_GRANTED,
        MutationAction.PERMISSION_REVOKED,
    ]


@pytest.mark.asyncio
async def test_grant_unknown_permission(people, rbac):
    with pytest.raises(PermissionNotFound):
        await rbac.grant_permission("admin", "client", "missing")


@pytest.mark.asyncio
async def test_grant_requires_hierarchy(people, rbac):
    permission = people.add_permission("admin", PermissionAction.READ)

    with pytest.raises(ManagementDenied):
        await rbac.grant_permission("client", "mod", permission.id)


# ============ Queries ============


@pytest.mark.asyncio
async def test_effective_permissions_union(people, rbac, catalog):
    permission = people.add_permission("admin", PermissionAction.READ)
    await rbac.grant_permission("admin", "client", permission.id)
    await rbac.assign_role("admin", "client", Role.VIEWER)

    effective = await rbac.effective_permissions("client")

    assert effective.role == Role.CLIENT
    assert effective.roles == [Role.CLIENT, Role.VIEWER]
    assert "admin.read" in effective.permissions
    assert "donations.read" in effective.permissions
    assert "forum.create" in effective.permissions
    assert effective.permissions == sorted(effective.permissions)
    assert not effective.has_full_access


@pytest.mark.asyncio
async def test_effective_permissions_include_role_overrides(people, rbac, resolver):
    people.add_role_override(Role.CLIENT, "admin", PermissionAction.READ)
    people.add_role_override(Role.CLIENT, "admin", PermissionAction.EXECUTE, granted=False)
    people.add_role_override(Role.EDITOR, "admin", PermissionAction.UPDATE)

    effective = await rbac.effective_permissions("client")

    assert "admin.read" in effective.permissions
    assert "admin.execute" not in effective.permissions
    assert "admin.update" not in effective.permissions
    assert (await resolver.check("client", "admin", PermissionAction.READ)).allowed


@pytest.mark.asyncio
async def test_effective_permissions_wildcard(people, rbac):
    effective = await rbac.effective_permissions("root")

    assert effective.permissions == [WILDCARD]
    assert effective.has_full_access


@pytest.mark.asyncio
async def test_effective_permissions_unknown(rbac):
    with pytest.raises(PrincipalNotFound):
        await rbac.effective_permissions("ghost")


def test_list_roles(rbac):
    levels = [profile.level for profile in rbac.list_roles()]

    assert levels == sorted(levels, reverse=True)
    assert len(levels) == len(Role)


# ============ Seeding ============


@pytest.mark.asyncio
async def test_initialize_default_permissions_is_idempotent(store, rbac, catalog):
    first = await rbac.initialize_default_permissions()
    second = await rbac.initialize_default_permissions()

    expected = len(catalog.resources) * len(PermissionAction)
    assert len(first) == expected
    assert [p.id for p in first] == [p.id for p in second]
    assert len(await store.list_permissions()) == expected

    grouped = await rbac.list_permissions()
    assert set(grouped) == set(catalog.resources)
    assert all(len(perms) == len(PermissionAction) for perms in grouped.values())
