"""
Role and permission management API routes.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from accessguard.core.auth.catalog import PermissionAction, Role
from accessguard.core.auth.dependencies import (
    RBAC,
    CurrentPrincipal,
    Resolver,
    require_authenticated,
    require_moderator_access,
    require_resource_ownership_or_permission,
    require_roles,
    require_user_management_permission,
)
from accessguard.core.auth.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ManagementDenied,
    PermissionNotFound,
    PrincipalNotFound,
    StoreFailure,
)
from accessguard.core.auth.interfaces import ErrorKind
from accessguard.schemas.rbac import (
    EffectivePermissionsResponse,
    InitializePermissionsResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionGrantRequest,
    PermissionGrantResponse,
    PermissionListResponse,
    PermissionResponse,
    RevokeResponse,
    RoleAssignmentResponse,
    RoleAssignRequest,
    RoleResponse,
)

router = APIRouter()


def _http_error(exc: AuthorizationError) -> HTTPException:
    """Map engine exceptions to HTTP statuses."""
    if isinstance(exc, ManagementDenied):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, (PrincipalNotFound, PermissionNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, StoreFailure):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authorization store unavailable",
        )
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permission denied")


# ============================================================
# SELF-SERVICE
# ============================================================

@router.get(
    "/my-permissions",
    response_model=EffectivePermissionsResponse,
    dependencies=[Depends(require_authenticated())],
)
async def get_my_permissions(
    principal: CurrentPrincipal,
    rbac: RBAC,
) -> EffectivePermissionsResponse:
    """Roles and effective capabilities of the caller."""
    try:
        effective = await rbac.effective_permissions(principal.id)
    except AuthorizationError as e:
        raise _http_error(e) from e
    return EffectivePermissionsResponse.model_validate(effective)


# ============================================================
# CATALOG
# ============================================================

@router.get(
    "/roles",
    response_model=list[RoleResponse],
    dependencies=[Depends(require_moderator_access)],
)
async def list_roles(rbac: RBAC) -> list[RoleResponse]:
    """Static role profiles, highest level first."""
    return [
        RoleResponse(
            role=profile.role,
            level=profile.level,
            description=profile.description,
            capabilities=sorted(profile.capabilities),
        )
        for profile in rbac.list_roles()
    ]


@router.get(
    "/permissions",
    response_model=PermissionListResponse,
    dependencies=[Depends(require_moderator_access)],
)
async def list_permissions(rbac: RBAC) -> PermissionListResponse:
    """Stored permissions grouped by resource."""
    try:
        grouped = await rbac.list_permissions()
    except AuthorizationError as e:
        raise _http_error(e) from e

    return PermissionListResponse(
        permissions={
            resource: [PermissionResponse.model_validate(p) for p in permissions]
            for resource, permissions in grouped.items()
        },
        total=sum(len(permissions) for permissions in grouped.values()),
    )


@router.post(
    "/initialize",
    response_model=InitializePermissionsResponse,
    dependencies=[Depends(require_roles(Role.SUPER_ADMIN))],
)
async def initialize_permissions(rbac: RBAC) -> InitializePermissionsResponse:
    """Create one permission per known resource and action. Idempotent."""
    try:
        permissions = await rbac.initialize_default_permissions()
    except AuthorizationError as e:
        raise _http_error(e) from e
    return InitializePermissionsResponse(count=len(permissions))


# ============================================================
# USER INSPECTION
# ============================================================

@router.get(
    "/users/{user_id}/permissions",
    response_model=EffectivePermissionsResponse,
    dependencies=[Depends(require_resource_ownership_or_permission("users", PermissionAction.READ, "user_id"))],
)
async def get_user_permissions(user_id: str, rbac: RBAC) -> EffectivePermissionsResponse:
    """Effective permissions of a user. Users may always read their own."""
    try:
        effective = await rbac.effective_permissions(user_id)
    except AuthorizationError as e:
        raise _http_error(e) from e
    return EffectivePermissionsResponse.model_validate(effective)


@router.post(
    "/users/{user_id}/check-permission",
    response_model=PermissionCheckResponse,
    dependencies=[Depends(require_moderator_access)],
)
async def check_user_permission(
    user_id: str,
    data: PermissionCheckRequest,
    resolver: Resolver,
) -> PermissionCheckResponse:
    """Run a permission check on behalf of another user."""
    result = await resolver.check(user_id, data.resource, data.action, resource_id=data.resource_id)

    if result.error == ErrorKind.PRINCIPAL_NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return PermissionCheckResponse(
        allowed=result.allowed,
        reason=result.reason,
        source=result.source.value if result.source else None,
    )


# ============================================================
# ROLE ASSIGNMENT
# ============================================================

@router.post(
    "/users/{user_id}/roles",
    response_model=RoleAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_user_management_permission())],
)
async def assign_role(
    user_id: str,
    data: RoleAssignRequest,
    principal: CurrentPrincipal,
    rbac: RBAC,
) -> RoleAssignmentResponse:
    """Assign an additional role. Only roles below the caller's own level."""
    try:
        assignment = await rbac.assign_role(principal.id, user_id, data.role, expires_at=data.expires_at)
    except AuthorizationError as e:
        raise _http_error(e) from e
    return RoleAssignmentResponse.model_validate(assignment)


@router.delete(
    "/users/{user_id}/roles/{role}",
    response_model=RevokeResponse,
    dependencies=[Depends(require_user_management_permission())],
)
async def revoke_role(
    user_id: str,
    role: Role,
    principal: CurrentPrincipal,
    rbac: RBAC,
) -> RevokeResponse:
    """Deactivate an additional role."""
    try:
        revoked = await rbac.revoke_role(principal.id, user_id, role)
    except AuthorizationError as e:
        raise _http_error(e) from e
    return RevokeResponse(revoked=revoked)


# ============================================================
# DIRECT PERMISSIONS
# ============================================================

@router.post(
    "/users/{user_id}/permissions",
    response_model=PermissionGrantResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_user_management_permission())],
)
async def grant_permission(
    user_id: str,
    data: PermissionGrantRequest,
    principal: CurrentPrincipal,
    rbac: RBAC,
) -> PermissionGrantResponse:
    """Grant a permission directly to a user."""
    try:
        grant = await rbac.grant_permission(principal.id, user_id, data.permission_id, expires_at=data.expires_at)
    except AuthorizationError as e:
        raise _http_error(e) from e
    return PermissionGrantResponse.model_validate(grant)


@router.delete(
    "/users/{user_id}/permissions/{permission_id}",
    response_model=RevokeResponse,
    dependencies=[Depends(require_user_management_permission())],
)
async def revoke_permission(
    user_id: str,
    permission_id: str,
    principal: CurrentPrincipal,
    rbac: RBAC,
) -> RevokeResponse:
    """Withdraw a direct grant."""
    try:
        revoked = await rbac.revoke_user_permission(principal.id, user_id, permission_id)
    except AuthorizationError as e:
        raise _http_error(e) from e
    return RevokeResponse(revoked=revoked)
