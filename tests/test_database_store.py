"""
Tests for the SQLAlchemy policy store and database audit sink.
"""

from uuid import UUID, uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accessguard.core.auth.backends import DatabasePolicyStore
from accessguard.core.auth.catalog import PermissionAction, Role
from accessguard.core.auth.events import MutationAction, MutationEvent, SecurityEvent
from accessguard.core.auth.exceptions import PermissionNotFound, PrincipalNotFound
from accessguard.core.auth.interfaces import MatchSource, PolicyEffect
from accessguard.core.auth.resolver import PermissionResolver
from accessguard.models.audit_log import AuditLog, SecurityEventLog
from accessguard.models.rbac import Permission, ResourcePolicy, RoleAssignment, RolePermission, UserPermission
from accessguard.services.audit import DatabaseAuditSink


@pytest.fixture
def db_store(db, clock) -> DatabasePolicyStore:
    return DatabasePolicyStore(db, clock=clock)


@pytest.mark.asyncio
async def test_get_principal(db_store, user_factory):
    user = await user_factory.create(role=Role.EDITOR)

    principal = await db_store.get_principal(str(user.id))

    assert principal.id == str(user.id)
    assert principal.role == Role.EDITOR
    assert principal.is_active is True
    assert principal.direct_grants == []
    assert principal.role_assignments == []


@pytest.mark.asyncio
@pytest.mark.parametrize("principal_id", ["not-a-uuid", str(uuid4())])
async def test_unknown_principal(db_store, principal_id):
    assert await db_store.get_principal(principal_id) is None


@pytest.mark.asyncio
async def test_role_assignment_upsert_is_idempotent(db, db_store, user_factory):
    user = await user_factory.create()
    admin = await user_factory.create(role=Role.ADMIN)

    await db_store.upsert_role_assignment(str(user.id), Role.EDITOR, assigned_by=str(admin.id))
    await db_store.upsert_role_assignment(str(user.id), Role.EDITOR, assigned_by=str(admin.id))

    rows = (await db.execute(select(RoleAssignment).where(RoleAssignment.user_id == user.id))).scalars().all()
    assert len(rows) == 1
    assert rows[0].assigned_by == admin.id


@pytest.mark.asyncio
async def test_deactivated_assignment_is_kept_and_reactivated(db, db_store, user_factory):
    user = await user_factory.create()

    await db_store.upsert_role_assignment(str(user.id), Role.EDITOR, assigned_by="system")
    assert await db_store.deactivate_role_assignment(str(user.id), Role.EDITOR) is True

    principal = await db_store.get_principal(str(user.id))
    assert principal.role_assignments == []

    rows = (await db.execute(select(RoleAssignment))).scalars().all()
    assert len(rows) == 1
    assert rows[0].is_active is False

    await db_store.upsert_role_assignment(str(user.id), Role.EDITOR, assigned_by="system")
    principal = await db_store.get_principal(str(user.id))
    assert [a.role for a in principal.role_assignments] == [Role.EDITOR]


@pytest.mark.asyncio
async def test_deactivate_missing_assignment(db_store, user_factory):
    user = await user_factory.create()

    assert await db_store.deactivate_role_assignment(str(user.id), Role.EDITOR) is False


@pytest.mark.asyncio
async def test_expired_assignment_filtered(db_store, user_factory, clock):
    user = await user_factory.create()
    await db_store.upsert_role_assignment(
        str(user.id), Role.EDITOR, assigned_by="system", expires_at=clock.now.replace(hour=13)
    )

    assert len((await db_store.get_principal(str(user.id))).role_assignments) == 1

    clock.advance(hours=2)

    assert (await db_store.get_principal(str(user.id))).role_assignments == []


@pytest.mark.asyncio
async def test_permission_grant_upsert_and_revoke(db, db_store, user_factory):
    user = await user_factory.create()
    permission = await db_store.ensure_permission("admin", PermissionAction.EXECUTE)

    await db_store.upsert_permission_grant(str(user.id), permission.id, granted_by="system")
    grant = await db_store.upsert_permission_grant(str(user.id), permission.id, granted_by="system")

    assert grant.resource == "admin"
    assert grant.action == PermissionAction.EXECUTE
    assert len((await db.execute(select(UserPermission))).scalars().all()) == 1

    principal = await db_store.get_principal(str(user.id))
    assert [g.permission_id for g in principal.direct_grants] == [permission.id]

    assert await db_store.deactivate_permission_grant(str(user.id), permission.id) is True
    assert (await db_store.get_principal(str(user.id))).direct_grants == []


@pytest.mark.asyncio
async def test_grant_unknown_permission(db_store, user_factory):
    user = await user_factory.create()

    with pytest.raises(PermissionNotFound):
        await db_store.upsert_permission_grant(str(user.id), str(uuid4()), granted_by="system")

    with pytest.raises(PermissionNotFound):
        await db_store.upsert_permission_grant(str(user.id), "bogus", granted_by="system")


@pytest.mark.asyncio
async def test_mutation_for_malformed_principal(db_store):
    with pytest.raises(PrincipalNotFound):
        await db_store.upsert_role_assignment("bogus", Role.EDITOR, assigned_by="system")


@pytest.mark.asyncio
async def test_ensure_permission_is_idempotent(db, db_store):
    first = await db_store.ensure_permission("events", PermissionAction.READ, description="Read events")
    second = await db_store.ensure_permission("events", PermissionAction.READ)

    assert first.id == second.id
    assert first.name == "events.read"
    assert len((await db.execute(select(Permission))).scalars().all()) == 1
    assert await db_store.get_permission(first.id) == first
    assert await db_store.get_permission("bogus") is None


@pytest.mark.asyncio
async def test_role_override(db, db_store):
    permission = await db_store.ensure_permission("admin", PermissionAction.READ)
    db.add(RolePermission(role=Role.VIEWER, permission_id=UUID(permission.id)))
    await db.flush()

    override = await db_store.get_role_override(Role.VIEWER, "admin", PermissionAction.READ)

    assert override is not None
    assert override.role == Role.VIEWER
    assert await db_store.get_role_override(Role.CLIENT, "admin", PermissionAction.READ) is None

    overrides = await db_store.list_role_overrides([Role.VIEWER, Role.EDITOR])
    assert [(o.role, o.resource, o.action) for o in overrides] == [(Role.VIEWER, "admin", PermissionAction.READ)]
    assert await db_store.list_role_overrides([Role.CLIENT]) == []


@pytest.mark.asyncio
async def test_resource_policies_scoped_and_ordered(db, db_store):
    db.add_all([
        ResourcePolicy(resource="events", resource_id=None, effect=PolicyEffect.ALLOW, priority=1),
        ResourcePolicy(resource="events", resource_id="e1", effect=PolicyEffect.DENY, priority=5),
        ResourcePolicy(resource="events", resource_id="e2", effect=PolicyEffect.DENY, priority=9),
        ResourcePolicy(resource="events", resource_id="e1", effect=PolicyEffect.ALLOW, priority=50, is_active=False),
        ResourcePolicy(resource="news", resource_id="e1", effect=PolicyEffect.DENY, priority=7),
    ])
    await db.flush()

    policies = await db_store.find_resource_policies("events", "e1")

    assert [(p.resource_id, p.priority) for p in policies] == [("e1", 5), (None, 1)]


@pytest.mark.asyncio
async def test_resolver_over_database_store(db, db_store, catalog, audit, clock, user_factory):
    user = await user_factory.create(role=Role.CLIENT)
    db.add(ResourcePolicy(
        resource="events",
        resource_id="e1",
        effect=PolicyEffect.ALLOW,
        match_actions=["UPDATE"],
        match_users=[str(user.id)],
    ))
    await db.flush()
    resolver = PermissionResolver(db_store, catalog, audit=audit, clock=clock)

    allowed = await resolver.check(str(user.id), "events", PermissionAction.UPDATE, resource_id="e1")
    denied = await resolver.check(str(user.id), "events", PermissionAction.UPDATE, resource_id="e2")

    assert allowed.allowed and allowed.source == MatchSource.RESOURCE_POLICY
    assert not denied.allowed
    assert len(audit.security_events) == 1


@pytest.mark.asyncio
async def test_database_audit_sink(db_engine, db):
    sink = DatabaseAuditSink(async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False))

    await sink.record_security_event(SecurityEvent(
        principal_id="u1",
        resource="admin",
        action="EXECUTE",
        reason="access denied",
        ip="10.0.0.1",
        path="/api/admin",
    ))
    await sink.record_mutation(MutationEvent(
        MutationAction.ROLE_ASSIGNED,
        actor_id=str(uuid4()),
        target_id="u1",
        success=False,
        details={"role": "EDITOR"},
    ))

    event = (await db.execute(select(SecurityEventLog))).scalar_one()
    assert event.type == "UNAUTHORIZED_ACCESS"
    assert event.severity == "MEDIUM"
    assert event.ip == "10.0.0.1"

    log = (await db.execute(select(AuditLog))).scalar_one()
    assert log.action == "ROLE_ASSIGNED"
    assert log.success is False
    assert log.extra_data == {"role": "EDITOR"}


@pytest.mark.asyncio
async def test_deactivated_user_is_denied(db, db_store, catalog, clock, user_factory):
    user = await user_factory.create(role=Role.SUPER_ADMIN)
    resolver = PermissionResolver(db_store, catalog, clock=clock)

    assert (await resolver.check(str(user.id), "admin", PermissionAction.EXECUTE)).allowed

    user.is_active = False
    await db.flush()
    result = await resolver.check(str(user.id), "admin", PermissionAction.EXECUTE)

    assert not result.allowed
    assert result.source == MatchSource.INACTIVE
