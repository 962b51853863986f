"""
User model.

A user is the principal the authorization engine decides about. Users
are deactivated, never deleted, by this service.
"""

from uuid import UUID, uuid4

from sqlalchemy import Boolean, Enum as SQLEnum, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from accessguard.core.auth.catalog import Role

from .base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """User account model."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Primary role
    role: Mapped[Role] = mapped_column(
        SQLEnum(Role, name="user_role"),
        default=Role.CLIENT,
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    role_assignments: Mapped[list["RoleAssignment"]] = relationship(
        back_populates="user",
        foreign_keys="RoleAssignment.user_id",
        cascade="all, delete-orphan",
    )
    permissions: Mapped[list["UserPermission"]] = relationship(
        back_populates="user",
        foreign_keys="UserPermission.user_id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value})>"
