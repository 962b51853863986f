"""
RBAC schemas.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from accessguard.core.auth.catalog import PermissionAction, Role


class RoleResponse(BaseModel):
    """Static role profile."""
    role: Role
    level: int
    description: str
    capabilities: list[str]


class PermissionResponse(BaseModel):
    """Stored permission."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    resource: str
    action: PermissionAction
    description: str | None = None


class PermissionListResponse(BaseModel):
    """Permissions grouped by resource."""
    permissions: dict[str, list[PermissionResponse]]
    total: int


class EffectivePermissionsResponse(BaseModel):
    """What a user can currently do."""
    model_config = ConfigDict(from_attributes=True)

    principal_id: str
    role: Role
    roles: list[Role]
    permissions: list[str]


class RoleAssignRequest(BaseModel):
    role: Role
    expires_at: datetime | None = None


class RoleAssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    principal_id: str
    role: Role
    is_active: bool
    assigned_by: str | None = None
    expires_at: datetime | None = None


class PermissionGrantRequest(BaseModel):
    permission_id: str = Field(..., min_length=1)
    expires_at: datetime | None = None


class PermissionGrantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    principal_id: str
    permission_id: str
    resource: str
    action: PermissionAction
    granted: bool
    granted_by: str | None = None
    expires_at: datetime | None = None


class RevokeResponse(BaseModel):
    revoked: bool


class PermissionCheckRequest(BaseModel):
    resource: str = Field(..., min_length=1, max_length=100)
    action: PermissionAction
    resource_id: str | None = None


class PermissionCheckResponse(BaseModel):
    """Result of a permission check. Internal error causes are not exposed."""
    allowed: bool
    reason: str
    source: str | None = None


class InitializePermissionsResponse(BaseModel):
    count: int
