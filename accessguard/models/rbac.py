"""
Role-based access control models.

Rows are never hard-deleted by the management API: role assignments are
deactivated (is_active=False) and direct grants are withdrawn
(granted=False), so history stays available for audit.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from accessguard.core.auth.catalog import PermissionAction, Role
from accessguard.core.auth.interfaces import PolicyEffect

from .base import Base, JSONType, StandardMixin


class Permission(Base, StandardMixin):
    """Reference permission: one row per (resource, action)."""

    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("resource", "action", name="uq_permission_resource_action"),
    )

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    resource: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    action: Mapped[PermissionAction] = mapped_column(
        SQLEnum(PermissionAction, name="permission_action"),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<Permission {self.name}>"


class UserPermission(Base, StandardMixin):
    """Direct grant of a permission to a user."""

    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "permission_id", name="uq_user_permission"),
    )

    user_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    permission_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        nullable=False,
    )
    granted: Mapped[bool] = mapped_column(Boolean, default=True)
    granted_by: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    user: Mapped["User"] = relationship(back_populates="permissions", foreign_keys=[user_id])
    permission: Mapped[Permission] = relationship()


class RoleAssignment(Base, StandardMixin):
    """Additional, optionally time-boxed role held by a user."""

    __tablename__ = "role_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_role_assignment_user_role"),
    )

    user_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[Role] = mapped_column(
        SQLEnum(Role, name="user_role"),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    assigned_by: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    user: Mapped["User"] = relationship(back_populates="role_assignments", foreign_keys=[user_id])


class RolePermission(Base, StandardMixin):
    """Dynamic per-role permission layered on the static role catalog."""

    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role", "permission_id", name="uq_role_permission"),
    )

    role: Mapped[Role] = mapped_column(
        SQLEnum(Role, name="user_role"),
        nullable=False,
    )
    permission_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        nullable=False,
    )
    granted: Mapped[bool] = mapped_column(Boolean, default=True)

    permission: Mapped[Permission] = relationship()


class ResourcePolicy(Base, StandardMixin):
    """
    Instance- or type-scoped ALLOW/DENY rule.

    resource_id NULL applies to every instance of the resource type.
    match_* columns hold JSON lists; NULL means "no filter".
    conditions is a JSON object keyed by condition type.
    """

    __tablename__ = "resource_policies"

    resource: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    effect: Mapped[PolicyEffect] = mapped_column(
        SQLEnum(PolicyEffect, name="policy_effect"),
        nullable=False,
    )
    priority: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    match_actions: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    match_roles: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    match_users: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    conditions: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<ResourcePolicy {self.effect.value} {self.resource}:{self.resource_id or '*'}>"
