"""
Database models.
"""

from .base import Base, TimestampMixin, UUIDMixin, StandardMixin
from .user import User
from .rbac import Permission, UserPermission, RoleAssignment, RolePermission, ResourcePolicy
from .audit_log import AuditLog, SecurityEventLog

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "StandardMixin",
    # Models
    "User",
    "Permission",
    "UserPermission",
    "RoleAssignment",
    "RolePermission",
    "ResourcePolicy",
    "AuditLog",
    "SecurityEventLog",
]
