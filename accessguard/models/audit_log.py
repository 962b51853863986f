"""Audit and security event models."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from accessguard.utils.timezone import utc_now

from .base import Base, JSONType, UUIDMixin


class AuditLog(Base, UUIDMixin):
    """
    Immutable record of a role or permission mutation.

    Written for successful and failed mutations alike.
    """

    __tablename__ = "audit_logs"

    actor_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    target_id: Mapped[str] = mapped_column(String(255))

    # ROLE_ASSIGNED, ROLE_REVOKED, PERMISSION_GRANTED, PERMISSION_REVOKED
    action: Mapped[str] = mapped_column(String(50), index=True)
    success: Mapped[bool] = mapped_column(Boolean, default=True)

    extra_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    request_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        index=True,
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.target_id}>"


class SecurityEventLog(Base, UUIDMixin):
    """Denied access attempt."""

    __tablename__ = "security_events"

    type: Mapped[str] = mapped_column(String(50), index=True)
    severity: Mapped[str] = mapped_column(String(20))

    # Not a foreign key: denials may concern ids that do not exist
    principal_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    resource: Mapped[str] = mapped_column(String(100))
    action: Mapped[str] = mapped_column(String(50))
    resource_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reason: Mapped[str] = mapped_column(Text)

    ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)  # IPv6 max length
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    extra_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        index=True,
    )

    def __repr__(self) -> str:
        return f"<SecurityEvent {self.type} {self.resource}/{self.action}>"
