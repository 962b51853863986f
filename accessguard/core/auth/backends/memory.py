"""
In-memory policy store and audit sink.

For development and testing. Data is lost on restart.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from uuid import uuid4

from accessguard.utils.timezone import utc_now

from ..catalog import PermissionAction, Role, capability
from ..events import MutationEvent, SecurityEvent
from ..exceptions import PermissionNotFound
from ..interfaces import (
    AuditSink,
    Clock,
    PermissionGrantRecord,
    PermissionRecord,
    PolicyStore,
    PrincipalRecord,
    ResourcePolicyRecord,
    RoleAssignmentRecord,
    RoleOverrideRecord,
)


@dataclass
class _StoredPrincipal:
    id: str
    role: Role
    is_active: bool = True


class MemoryPolicyStore(PolicyStore):
    """
    Dict-backed PolicyStore.

    Expiry is evaluated against the injected clock on every read, so
    tests can move time forward without touching stored records.

    Usage:
        store = MemoryPolicyStore(clock=fake_clock)
        store.add_principal("u1", Role.CLIENT)
        await store.upsert_role_assignment("u1", Role.EDITOR, assigned_by="admin")
    """

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self._principals: dict[str, _StoredPrincipal] = {}
        self._assignments: dict[tuple[str, Role], RoleAssignmentRecord] = {}
        self._grants: dict[tuple[str, str], PermissionGrantRecord] = {}
        self._permissions: dict[str, PermissionRecord] = {}
        self._overrides: dict[tuple[Role, str, PermissionAction], RoleOverrideRecord] = {}
        self._policies: list[ResourcePolicyRecord] = []

    # ============================================================
    # SEEDING
    # ============================================================

    def add_principal(self, principal_id: str, role: Role, is_active: bool = True) -> None:
        self._principals[str(principal_id)] = _StoredPrincipal(str(principal_id), Role(role), is_active)

    def set_active(self, principal_id: str, is_active: bool) -> None:
        self._principals[str(principal_id)].is_active = is_active

    def add_permission(
        self,
        resource: str,
        action: PermissionAction,
        description: str | None = None,
        permission_id: str | None = None,
    ) -> PermissionRecord:
        record = PermissionRecord(
            id=permission_id or str(uuid4()),
            name=capability(resource, action),
            resource=resource,
            action=PermissionAction(action),
            description=description,
        )
        self._permissions[record.id] = record
        return record

    def add_role_override(
        self,
        role: Role,
        resource: str,
        action: PermissionAction,
        granted: bool = True,
    ) -> None:
        key = (Role(role), resource, PermissionAction(action))
        self._overrides[key] = RoleOverrideRecord(*key, granted=granted)

    def add_policy(self, policy: ResourcePolicyRecord) -> None:
        self._policies.append(policy)

    # ============================================================
    # READS
    # ============================================================

    def _is_live(self, expires_at: datetime | None) -> bool:
        return expires_at is None or expires_at > self.clock()

    async def get_principal(self, principal_id: str) -> PrincipalRecord | None:
        stored = self._principals.get(str(principal_id))
        if stored is None:
            return None

        grants = [
            replace(grant)
            for (pid, _), grant in self._grants.items()
            if pid == stored.id and grant.granted and self._is_live(grant.expires_at)
        ]
        assignments = sorted(
            (
                replace(assignment)
                for (pid, _), assignment in self._assignments.items()
                if pid == stored.id and assignment.is_active and self._is_live(assignment.expires_at)
            ),
            key=lambda a: a.created_at,
        )

        return PrincipalRecord(
            id=stored.id,
            is_active=stored.is_active,
            role=stored.role,
            direct_grants=grants,
            role_assignments=assignments,
        )

    async def get_role_override(
        self,
        role: Role,
        resource: str,
        action: PermissionAction,
    ) -> RoleOverrideRecord | None:
        override = self._overrides.get((Role(role), resource, PermissionAction(action)))
        if override is None or not override.granted:
            return None
        return override

    async def list_role_overrides(self, roles: list[Role]) -> list[RoleOverrideRecord]:
        wanted = {Role(role) for role in roles}
        return [o for o in self._overrides.values() if o.granted and o.role in wanted]

    async def find_resource_policies(
        self,
        resource: str,
        resource_id: str | None,
    ) -> list[ResourcePolicyRecord]:
        matching = [
            policy
            for policy in self._policies
            if policy.resource == resource
            and (policy.resource_id is None or policy.resource_id == resource_id)
        ]
        return sorted(matching, key=lambda p: p.priority, reverse=True)

    async def get_permission(self, permission_id: str) -> PermissionRecord | None:
        return self._permissions.get(str(permission_id))

    async def list_permissions(self) -> list[PermissionRecord]:
        return sorted(self._permissions.values(), key=lambda p: (p.resource, p.action.value))

    # ============================================================
    # MUTATIONS
    # ============================================================

    async def upsert_role_assignment(
        self,
        principal_id: str,
        role: Role,
        assigned_by: str,
        expires_at: datetime | None = None,
    ) -> RoleAssignmentRecord:
        key = (str(principal_id), Role(role))
        existing = self._assignments.get(key)

        if existing:
            existing.is_active = True
            existing.assigned_by = str(assigned_by)
            existing.expires_at = expires_at
        else:
            existing = RoleAssignmentRecord(
                principal_id=key[0],
                role=key[1],
                is_active=True,
                assigned_by=str(assigned_by),
                expires_at=expires_at,
                created_at=self.clock(),
            )
            self._assignments[key] = existing

        return replace(existing)

    async def deactivate_role_assignment(self, principal_id: str, role: Role) -> bool:
        existing = self._assignments.get((str(principal_id), Role(role)))
        if existing is None:
            return False
        existing.is_active = False
        return True

    async def upsert_permission_grant(
        self,
        principal_id: str,
        permission_id: str,
        granted_by: str,
        expires_at: datetime | None = None,
    ) -> PermissionGrantRecord:
        permission = self._permissions.get(str(permission_id))
        if permission is None:
            raise PermissionNotFound(str(permission_id))

        key = (str(principal_id), permission.id)
        existing = self._grants.get(key)

        if existing:
            existing.granted = True
            existing.granted_by = str(granted_by)
            existing.expires_at = expires_at
        else:
            existing = PermissionGrantRecord(
                principal_id=key[0],
                permission_id=permission.id,
                resource=permission.resource,
                action=permission.action,
                granted=True,
                granted_by=str(granted_by),
                expires_at=expires_at,
            )
            self._grants[key] = existing

        return replace(existing)

    async def deactivate_permission_grant(self, principal_id: str, permission_id: str) -> bool:
        existing = self._grants.get((str(principal_id), str(permission_id)))
        if existing is None:
            return False
        existing.granted = False
        return True

    async def ensure_permission(
        self,
        resource: str,
        action: PermissionAction,
        description: str | None = None,
    ) -> PermissionRecord:
        for permission in self._permissions.values():
            if permission.resource == resource and permission.action == action:
                return permission
        return self.add_permission(resource, action, description)

    # ============================================================
    # INTROSPECTION (tests)
    # ============================================================

    def assignment_rows(self, principal_id: str) -> list[RoleAssignmentRecord]:
        """All assignment rows for a principal, active or not."""
        return [a for (pid, _), a in self._assignments.items() if pid == str(principal_id)]

    def grant_rows(self, principal_id: str) -> list[PermissionGrantRecord]:
        """All grant rows for a principal, granted or not."""
        return [g for (pid, _), g in self._grants.items() if pid == str(principal_id)]


class MemoryAuditSink(AuditSink):
    """Collects events in lists."""

    def __init__(self):
        self.security_events: list[SecurityEvent] = []
        self.mutations: list[MutationEvent] = []

    async def record_security_event(self, event: SecurityEvent) -> None:
        self.security_events.append(event)

    async def record_mutation(self, event: MutationEvent) -> None:
        self.mutations.append(event)

    def clear(self) -> None:
        self.security_events.clear()
        self.mutations.clear()
