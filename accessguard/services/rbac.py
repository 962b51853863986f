"""
RBAC Service - manage role assignments and direct permission grants.

Usage:
    service = RBACService(store, guard, catalog, audit=sink)

    # Give a user an additional, time-boxed role
    await service.assign_role(actor_id, user_id, Role.EDITOR, expires_at=deadline)

    # Grant a single permission directly
    await service.grant_permission(actor_id, user_id, permission_id)

    # What can this user do?
    effective = await service.effective_permissions(user_id)

Every mutation requires the actor to strictly outrank the target and
is reported to the audit sink, successful or not.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from accessguard.core.auth.catalog import WILDCARD, PermissionAction, Role, RoleCatalog, RoleProfile, capability
from accessguard.core.auth.events import MutationAction, MutationEvent, publish
from accessguard.core.auth.exceptions import (
    ManagementDenied,
    PermissionNotFound,
    PrincipalNotFound,
    StoreFailure,
)
from accessguard.core.auth.hierarchy import HierarchyGuard
from accessguard.core.auth.interfaces import (
    AuditSink,
    PermissionGrantRecord,
    PermissionRecord,
    PolicyStore,
    PrincipalRecord,
    RoleAssignmentRecord,
)
from accessguard.utils.timezone import to_utc

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class EffectivePermissions:
    """Everything a principal can currently do, as capability strings."""
    principal_id: str
    role: Role
    roles: list[Role]
    permissions: list[str] = field(default_factory=list)

    @property
    def has_full_access(self) -> bool:
        return WILDCARD in self.permissions


class RBACService:
    """
    Management API over the policy store.
    """

    def __init__(
        self,
        store: PolicyStore,
        guard: HierarchyGuard,
        catalog: RoleCatalog,
        audit: AuditSink | None = None,
    ):
        self.store = store
        self.guard = guard
        self.catalog = catalog
        self.audit = audit

    # ============================================================
    # ROLE ASSIGNMENT
    # ============================================================

    async def assign_role(
        self,
        actor_id: str,
        target_id: str,
        role: Role | str,
        expires_at: datetime | None = None,
    ) -> RoleAssignmentRecord:
        """
        Assign an additional role (idempotent upsert on user + role).

        Re-assigning an inactive role reactivates it and refreshes
        assigned_by and expires_at.

        Raises:
            ConfigurationError: Unknown role
            PrincipalNotFound: Unknown target
            ManagementDenied: Actor does not outrank target, or the role
                is at or above the actor's own level
            StoreFailure: The store failed to write
        """
        profile = self.catalog.profile(role)
        await self._require_principal(target_id)
        await self._require_can_manage(actor_id, target_id)

        if not await self.guard.outranks_role(actor_id, profile.role):
            raise ManagementDenied(
                f"cannot assign role {profile.role.value}: it is at or above your own level"
            )

        expires_at = to_utc(expires_at) if expires_at else None
        return await self._mutate(
            MutationAction.ROLE_ASSIGNED,
            actor_id,
            target_id,
            {"role": profile.role.value, "expires_at": expires_at.isoformat() if expires_at else None},
            lambda: self.store.upsert_role_assignment(
                str(target_id), profile.role, assigned_by=str(actor_id), expires_at=expires_at
            ),
        )

    async def revoke_role(self, actor_id: str, target_id: str, role: Role | str) -> bool:
        """
        Deactivate an additional role. Rows are never deleted.

        Returns False when the target never held the role.
        """
        profile = self.catalog.profile(role)
        await self._require_principal(target_id)
        await self._require_can_manage(actor_id, target_id)

        return await self._mutate(
            MutationAction.ROLE_REVOKED,
            actor_id,
            target_id,
            {"role": profile.role.value},
            lambda: self.store.deactivate_role_assignment(str(target_id), profile.role),
        )

    # ============================================================
    # DIRECT PERMISSIONS
    # ============================================================

    async def grant_permission(
        self,
        actor_id: str,
        target_id: str,
        permission_id: str,
        expires_at: datetime | None = None,
    ) -> PermissionGrantRecord:
        """
        Grant a permission directly (idempotent upsert on user + permission).

        Raises:
            PermissionNotFound: Unknown permission
        """
        await self._require_principal(target_id)
        await self._require_can_manage(actor_id, target_id)

        permission = await self.store.get_permission(str(permission_id))
        if permission is None:
            raise PermissionNotFound(str(permission_id))

        expires_at = to_utc(expires_at) if expires_at else None
        return await self._mutate(
            MutationAction.PERMISSION_GRANTED,
            actor_id,
            target_id,
            {"permission_id": permission.id, "permission": permission.name},
            lambda: self.store.upsert_permission_grant(
                str(target_id), permission.id, granted_by=str(actor_id), expires_at=expires_at
            ),
        )

    async def revoke_user_permission(self, actor_id: str, target_id: str, permission_id: str) -> bool:
        """Withdraw a direct grant (granted=False)."""
        await self._require_principal(target_id)
        await self._require_can_manage(actor_id, target_id)

        return await self._mutate(
            MutationAction.PERMISSION_REVOKED,
            actor_id,
            target_id,
            {"permission_id": str(permission_id)},
            lambda: self.store.deactivate_permission_grant(str(target_id), str(permission_id)),
        )

    # ============================================================
    # QUERIES
    # ============================================================

    async def effective_permissions(self, principal_id: str) -> EffectivePermissions:
        """
        Union of direct grants, the capabilities of the primary role and
        active assignments, and the stored overrides for those roles,
        sorted.

        Raises:
            PrincipalNotFound: Unknown principal
        """
        principal = await self._require_principal(principal_id)

        roles = [principal.role]
        for assignment in principal.role_assignments:
            if assignment.role not in roles:
                roles.append(assignment.role)

        permissions: set[str] = {capability(g.resource, g.action) for g in principal.direct_grants}
        for role in roles:
            profile = self.catalog.get(role)
            if profile:
                permissions.update(profile.capabilities)
        for override in await self.store.list_role_overrides(roles):
            permissions.add(capability(override.resource, override.action))

        return EffectivePermissions(
            principal_id=principal.id,
            role=principal.role,
            roles=roles,
            permissions=sorted(permissions),
        )

    def list_roles(self) -> list[RoleProfile]:
        """Catalog profiles, highest level first."""
        return self.catalog.profiles()

    async def list_permissions(self) -> dict[str, list[PermissionRecord]]:
        """Stored permissions grouped by resource."""
        grouped: dict[str, list[PermissionRecord]] = {}
        for permission in await self.store.list_permissions():
            grouped.setdefault(permission.resource, []).append(permission)
        return grouped

    # ============================================================
    # SEEDING
    # ============================================================

    async def initialize_default_permissions(self) -> list[PermissionRecord]:
        """
        Ensure one permission per known resource and action.

        Safe to run repeatedly.
        """
        created: list[PermissionRecord] = []
        for resource in sorted(self.catalog.resources):
            for action in PermissionAction:
                created.append(
                    await self.store.ensure_permission(
                        resource,
                        action,
                        description=f"{action.value.capitalize()} {resource}",
                    )
                )

        logger.info("Default permissions initialized", count=len(created))
        return created

    # ============================================================
    # HELPERS
    # ============================================================

    async def _require_principal(self, principal_id: str) -> PrincipalRecord:
        principal = await self.store.get_principal(str(principal_id))
        if principal is None:
            raise PrincipalNotFound(str(principal_id))
        return principal

    async def _require_can_manage(self, actor_id: str, target_id: str) -> None:
        if not await self.guard.can_manage(str(actor_id), str(target_id)):
            logger.warning(
                "Management denied",
                actor_id=str(actor_id),
                target_id=str(target_id),
            )
            raise ManagementDenied("cannot manage a principal at or above your own level")

    async def _mutate(
        self,
        action: MutationAction,
        actor_id: str,
        target_id: str,
        details: dict[str, Any],
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            result = await operation()
        except (PermissionNotFound, PrincipalNotFound):
            raise
        except Exception as e:
            logger.error(
                "Access mutation failed",
                action=action.value,
                actor_id=str(actor_id),
                target_id=str(target_id),
                exc_info=True,
            )
            await publish(
                self.audit,
                MutationEvent(action, str(actor_id), str(target_id), success=False, details={**details, "error": str(e)}),
            )
            if isinstance(e, StoreFailure):
                raise
            raise StoreFailure(f"{action.value} failed") from e

        await publish(
            self.audit,
            MutationEvent(action, str(actor_id), str(target_id), success=True, details=details),
        )
        logger.info(
            "Access mutation applied",
            action=action.value,
            actor_id=str(actor_id),
            target_id=str(target_id),
            **details,
        )
        return result
