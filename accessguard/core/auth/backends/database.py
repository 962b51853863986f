"""
Database policy store.

Reads filter activity and expiry in SQL. Mutations are select-then-
update-or-insert upserts keyed by the composite unique constraints and
flushed within the caller's session; committing belongs to the
request-scoped session dependency.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from accessguard.models.rbac import Permission, ResourcePolicy, RoleAssignment, RolePermission, UserPermission
from accessguard.models.user import User
from accessguard.utils.timezone import to_utc, utc_now

from ..catalog import PermissionAction, Role, capability
from ..exceptions import PermissionNotFound, PrincipalNotFound, StoreFailure
from ..interfaces import (
    Clock,
    PermissionGrantRecord,
    PermissionRecord,
    PolicyStore,
    PrincipalRecord,
    ResourcePolicyRecord,
    RoleAssignmentRecord,
    RoleOverrideRecord,
)


def _as_uuid(value: str | UUID) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _optional_utc(value: datetime | None) -> datetime | None:
    return to_utc(value) if value is not None else None


class DatabasePolicyStore(PolicyStore):
    """
    SQLAlchemy-backed PolicyStore.

    Every SQLAlchemyError is wrapped in StoreFailure.
    """

    def __init__(self, db: AsyncSession, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    # ============================================================
    # READS
    # ============================================================

    async def get_principal(self, principal_id: str) -> PrincipalRecord | None:
        user_id = _as_uuid(principal_id)
        if user_id is None:
            return None

        now = self.clock()
        try:
            user = await self.db.get(User, user_id)
            if user is None:
                return None

            grants_query = (
                select(UserPermission, Permission)
                .join(Permission, UserPermission.permission_id == Permission.id)
                .where(
                    UserPermission.user_id == user_id,
                    UserPermission.granted.is_(True),
                    or_(UserPermission.expires_at.is_(None), UserPermission.expires_at > now),
                )
            )
            grant_rows = (await self.db.execute(grants_query)).all()

            assignments_query = (
                select(RoleAssignment)
                .where(
                    RoleAssignment.user_id == user_id,
                    RoleAssignment.is_active.is_(True),
                    or_(RoleAssignment.expires_at.is_(None), RoleAssignment.expires_at > now),
                )
                .order_by(RoleAssignment.created_at, RoleAssignment.id)
            )
            assignments = (await self.db.execute(assignments_query)).scalars().all()
        except SQLAlchemyError as e:
            raise StoreFailure(f"Failed to load principal {principal_id}") from e

        return PrincipalRecord(
            id=str(user.id),
            is_active=user.is_active,
            role=user.role,
            direct_grants=[self._grant_to_record(grant, permission) for grant, permission in grant_rows],
            role_assignments=[self._assignment_to_record(a) for a in assignments],
        )

    async def get_role_override(
        self,
        role: Role,
        resource: str,
        action: PermissionAction,
    ) -> RoleOverrideRecord | None:
        query = (
            select(RolePermission)
            .join(Permission, RolePermission.permission_id == Permission.id)
            .where(
                RolePermission.role == Role(role),
                RolePermission.granted.is_(True),
                Permission.resource == resource,
                Permission.action == PermissionAction(action),
            )
        )
        try:
            model = (await self.db.execute(query)).scalars().first()
        except SQLAlchemyError as e:
            raise StoreFailure("Failed to load role override") from e

        if model is None:
            return None
        return RoleOverrideRecord(role=Role(role), resource=resource, action=PermissionAction(action))

    async def list_role_overrides(self, roles: list[Role]) -> list[RoleOverrideRecord]:
        query = (
            select(RolePermission.role, Permission.resource, Permission.action)
            .join(Permission, RolePermission.permission_id == Permission.id)
            .where(
                RolePermission.role.in_([Role(role) for role in roles]),
                RolePermission.granted.is_(True),
            )
        )
        try:
            rows = (await self.db.execute(query)).all()
        except SQLAlchemyError as e:
            raise StoreFailure("Failed to list role overrides") from e

        return [
            RoleOverrideRecord(role=Role(role), resource=resource, action=PermissionAction(action))
            for role, resource, action in rows
        ]

    async def find_resource_policies(
        self,
        resource: str,
        resource_id: str | None,
    ) -> list[ResourcePolicyRecord]:
        scope = ResourcePolicy.resource_id.is_(None)
        if resource_id is not None:
            scope = or_(scope, ResourcePolicy.resource_id == str(resource_id))

        query = (
            select(ResourcePolicy)
            .where(
                ResourcePolicy.resource == resource,
                ResourcePolicy.is_active.is_(True),
                scope,
            )
            .order_by(ResourcePolicy.priority.desc(), ResourcePolicy.created_at)
        )
        try:
            models = (await self.db.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            raise StoreFailure("Failed to load resource policies") from e

        return [
            ResourcePolicyRecord(
                id=str(m.id),
                resource=m.resource,
                effect=m.effect,
                priority=m.priority,
                resource_id=m.resource_id,
                match_actions=m.match_actions,
                match_roles=m.match_roles,
                match_users=m.match_users,
                conditions=m.conditions,
            )
            for m in models
        ]

    async def get_permission(self, permission_id: str) -> PermissionRecord | None:
        pid = _as_uuid(permission_id)
        if pid is None:
            return None
        try:
            model = await self.db.get(Permission, pid)
        except SQLAlchemyError as e:
            raise StoreFailure("Failed to load permission") from e
        return self._permission_to_record(model) if model else None

    async def list_permissions(self) -> list[PermissionRecord]:
        query = select(Permission).order_by(Permission.resource, Permission.action)
        try:
            models = (await self.db.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            raise StoreFailure("Failed to list permissions") from e
        return [self._permission_to_record(m) for m in models]

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
        user_id = self._require_uuid(principal_id)
        try:
            query = select(RoleAssignment).where(
                RoleAssignment.user_id == user_id,
                RoleAssignment.role == Role(role),
            )
            model = (await self.db.execute(query)).scalar_one_or_none()

            if model:
                model.is_active = True
                model.assigned_by = _as_uuid(assigned_by)
                model.expires_at = expires_at
            else:
                model = RoleAssignment(
                    user_id=user_id,
                    role=Role(role),
                    is_active=True,
                    assigned_by=_as_uuid(assigned_by),
                    expires_at=expires_at,
                    created_at=self.clock(),
                )
                self.db.add(model)

            await self.db.flush()
        except SQLAlchemyError as e:
            raise StoreFailure("Failed to upsert role assignment") from e

        return self._assignment_to_record(model)

    async def deactivate_role_assignment(self, principal_id: str, role: Role) -> bool:
        user_id = self._require_uuid(principal_id)
        try:
            query = select(RoleAssignment).where(
                RoleAssignment.user_id == user_id,
                RoleAssignment.role == Role(role),
            )
            model = (await self.db.execute(query)).scalar_one_or_none()
            if model is None:
                return False

            model.is_active = False
            await self.db.flush()
        except SQLAlchemyError as e:
            raise StoreFailure("Failed to deactivate role assignment") from e
        return True

    async def upsert_permission_grant(
        self,
        principal_id: str,
        permission_id: str,
        granted_by: str,
        expires_at: datetime | None = None,
    ) -> PermissionGrantRecord:
        user_id = self._require_uuid(principal_id)
        pid = _as_uuid(permission_id)
        if pid is None:
            raise PermissionNotFound(str(permission_id))

        try:
            permission = await self.db.get(Permission, pid)
            if permission is None:
                raise PermissionNotFound(str(permission_id))

            query = select(UserPermission).where(
                UserPermission.user_id == user_id,
                UserPermission.permission_id == pid,
            )
            model = (await self.db.execute(query)).scalar_one_or_none()

            if model:
                model.granted = True
                model.granted_by = _as_uuid(granted_by)
                model.expires_at = expires_at
            else:
                model = UserPermission(
                    user_id=user_id,
                    permission_id=pid,
                    granted=True,
                    granted_by=_as_uuid(granted_by),
                    expires_at=expires_at,
                )
                self.db.add(model)

            await self.db.flush()
        except SQLAlchemyError as e:
            raise StoreFailure("Failed to upsert permission grant") from e

        return self._grant_to_record(model, permission)

    async def deactivate_permission_grant(self, principal_id: str, permission_id: str) -> bool:
        user_id = self._require_uuid(principal_id)
        pid = _as_uuid(permission_id)
        if pid is None:
            return False

        try:
            query = select(UserPermission).where(
                UserPermission.user_id == user_id,
                UserPermission.permission_id == pid,
            )
            model = (await self.db.execute(query)).scalar_one_or_none()
            if model is None:
                return False

            model.granted = False
            await self.db.flush()
        except SQLAlchemyError as e:
            raise StoreFailure("Failed to revoke permission grant") from e
        return True

    async def ensure_permission(
        self,
        resource: str,
        action: PermissionAction,
        description: str | None = None,
    ) -> PermissionRecord:
        action = PermissionAction(action)
        try:
            query = select(Permission).where(
                Permission.resource == resource,
                Permission.action == action,
            )
            model = (await self.db.execute(query)).scalar_one_or_none()

            if model is None:
                model = Permission(
                    name=capability(resource, action),
                    resource=resource,
                    action=action,
                    description=description,
                )
                self.db.add(model)
                await self.db.flush()
        except SQLAlchemyError as e:
            raise StoreFailure(f"Failed to ensure permission {capability(resource, action)}") from e

        return self._permission_to_record(model)

    # ============================================================
    # HELPERS
    # ============================================================

    def _require_uuid(self, principal_id: str) -> UUID:
        user_id = _as_uuid(principal_id)
        if user_id is None:
            raise PrincipalNotFound(str(principal_id))
        return user_id

    def _permission_to_record(self, model: Permission) -> PermissionRecord:
        return PermissionRecord(
            id=str(model.id),
            name=model.name,
            resource=model.resource,
            action=model.action,
            description=model.description,
        )

    def _grant_to_record(self, model: UserPermission, permission: Permission) -> PermissionGrantRecord:
        return PermissionGrantRecord(
            principal_id=str(model.user_id),
            permission_id=str(permission.id),
            resource=permission.resource,
            action=permission.action,
            granted=model.granted,
            granted_by=str(model.granted_by) if model.granted_by else None,
            expires_at=_optional_utc(model.expires_at),
        )

    def _assignment_to_record(self, model: RoleAssignment) -> RoleAssignmentRecord:
        return RoleAssignmentRecord(
            principal_id=str(model.user_id),
            role=model.role,
            is_active=model.is_active,
            assigned_by=str(model.assigned_by) if model.assigned_by else None,
            expires_at=_optional_utc(model.expires_at),
            created_at=_optional_utc(model.created_at),
        )
