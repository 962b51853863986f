"""
FastAPI dependencies for authorization.

Adapts the framework-independent interceptors to FastAPI: builds a
RequestContext from the request and the bearer token, runs the
interceptor, and maps its outcome to an HTTP status.

Usage:
    from accessguard.core.auth.dependencies import CurrentPrincipal, require_permission

    @router.get("/events/{event_id}", dependencies=[Depends(require_permission(
        "events", PermissionAction.READ, resource_id=ResourceIdSource.path("event_id"),
    ))])
    async def get_event(event_id: str, principal: CurrentPrincipal):
        ...

    @router.delete("/admin/cache")
    async def clear_cache(_: PermissionContext = Depends(require_admin_access)):
        ...
"""

from functools import lru_cache
from typing import Annotated, Any, Callable, Iterable, Sequence

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from accessguard.api.dependencies.database import get_db
from accessguard.core.config import settings
from accessguard.models.database import async_session_factory
from accessguard.services.audit import DatabaseAuditSink, LoggingAuditSink
from accessguard.services.rbac import RBACService

# Register the "users" ownership predicate
from accessguard.services import user  # noqa: F401

from .backends import DatabasePolicyStore, MemoryPolicyStore
from .catalog import PermissionAction, Role, RoleCatalog
from .exceptions import StoreFailure
from .hierarchy import HierarchyGuard
from .interceptor import (
    Allowed,
    Authorization,
    AuthorizationInterceptor,
    AuthenticatedPrincipal,
    BadRequest,
    Forbidden,
    Outcome,
    PermissionContext,
    PermissionRule,
    RequestContext,
    ResourceIdSource,
    Unauthorized,
)
from .interfaces import AuditSink, PolicyStore
from .ownership import ownership_registry
from .resolver import PermissionResolver

logger = structlog.get_logger()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=settings.auth.token_url, auto_error=False)


# ============================================================
# COMPONENT FACTORIES
# ============================================================

@lru_cache
def get_role_catalog() -> RoleCatalog:
    """
    Role catalog built once from RBAC_RESOURCES.

    Raises:
        ConfigurationError: A role capability names an unknown resource or action
    """
    return RoleCatalog.default(resources=settings.rbac.resources)


@lru_cache
def get_memory_store() -> MemoryPolicyStore:
    """Process-wide store used when RBAC_STORE_BACKEND=memory."""
    return MemoryPolicyStore()


async def get_policy_store(db: AsyncSession = Depends(get_db)) -> PolicyStore:
    """
    Get configured policy store.

    Reads from RBAC_STORE_BACKEND. Default: "database".
    """
    if settings.rbac.store_backend == "memory":
        return get_memory_store()
    return DatabasePolicyStore(db)


@lru_cache
def _configured_audit_sink() -> AuditSink:
    if settings.rbac.audit_backend == "log":
        return LoggingAuditSink()
    return DatabaseAuditSink(async_session_factory)


def get_audit_sink() -> AuditSink:
    """
    Get configured audit sink.

    Reads from RBAC_AUDIT_BACKEND. The database sink writes through
    its own sessions, outside the request transaction.
    """
    return _configured_audit_sink()


async def get_hierarchy_guard(
    store: PolicyStore = Depends(get_policy_store),
) -> HierarchyGuard:
    return HierarchyGuard(store, get_role_catalog())


async def get_permission_resolver(
    store: PolicyStore = Depends(get_policy_store),
    audit: AuditSink = Depends(get_audit_sink),
) -> PermissionResolver:
    return PermissionResolver(store, get_role_catalog(), audit=audit)


async def get_authorization(
    resolver: PermissionResolver = Depends(get_permission_resolver),
    guard: HierarchyGuard = Depends(get_hierarchy_guard),
    audit: AuditSink = Depends(get_audit_sink),
) -> Authorization:
    return Authorization(resolver, guard, ownership_registry, audit)


async def get_rbac_service(
    store: PolicyStore = Depends(get_policy_store),
    guard: HierarchyGuard = Depends(get_hierarchy_guard),
    audit: AuditSink = Depends(get_audit_sink),
) -> RBACService:
    return RBACService(store, guard, get_role_catalog(), audit)


# ============================================================
# PRINCIPAL
# ============================================================

async def get_current_principal(
    token: str | None = Depends(oauth2_scheme),
    store: PolicyStore = Depends(get_policy_store),
) -> AuthenticatedPrincipal | None:
    """
    Principal named by the bearer token's "sub" claim, or None.

    Missing, invalid or unknown subjects all yield None; the
    interceptor turns that into Unauthorized. Inactive principals are
    returned so the interceptor can deny them explicitly. A store
    failure during the lookup is a 403 "resolution error", not a 401.
    """
    if not token:
        return None

    try:
        payload = jwt.decode(
            token,
            settings.auth.secret_key,
            algorithms=[settings.auth.algorithm],
        )
    except JWTError:
        logger.info("Invalid bearer token")
        return None

    subject = payload.get("sub")
    if not subject:
        return None

    try:
        record = await store.get_principal(str(subject))
    except StoreFailure:
        logger.error("Principal lookup failed", principal_id=str(subject), exc_info=True)
        raise_for_outcome(Forbidden("resolution error"))

    if record is None:
        return None

    return AuthenticatedPrincipal(id=record.id, role=record.role, is_active=record.is_active)


async def get_authenticated_principal(
    principal: AuthenticatedPrincipal | None = Depends(get_current_principal),
) -> AuthenticatedPrincipal:
    """
    Raises:
        HTTPException 401: If not authenticated
        HTTPException 403: If the principal is inactive
    """
    if principal is None:
        raise_for_outcome(Unauthorized())
    if not principal.is_active:
        raise_for_outcome(Forbidden("inactive principal"))
    return principal


# ============================================================
# OUTCOME MAPPING
# ============================================================

def raise_for_outcome(outcome: Outcome) -> None:
    """
    Raise the HTTPException matching a terminal outcome.

    Allowed returns without raising.
    """
    if isinstance(outcome, Allowed):
        return
    if isinstance(outcome, Unauthorized):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=outcome.reason,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(outcome, BadRequest):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=outcome.reason,
        )
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=outcome.reason or "Permission denied",
    )


async def build_request_context(
    request: Request,
    principal: AuthenticatedPrincipal | None,
) -> RequestContext:
    """Collect what the interceptors may inspect from a FastAPI request."""
    body: dict[str, Any] | None = None
    if request.method in ("POST", "PUT", "PATCH", "DELETE") and "json" in request.headers.get("content-type", ""):
        try:
            parsed = await request.json()
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            body = parsed

    return RequestContext(
        principal=principal,
        path_params=dict(request.path_params),
        query_params=dict(request.query_params),
        body=body,
        method=request.method,
        path=request.url.path,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


# ============================================================
# DEPENDENCY FACTORIES
# ============================================================

def authorize(build: Callable[[Authorization], AuthorizationInterceptor]):
    """
    Turn an interceptor builder into a FastAPI dependency.

    On success the PermissionContext is returned and also stored on
    request.state.permission_context.
    """

    async def dependency(
        request: Request,
        principal: AuthenticatedPrincipal | None = Depends(get_current_principal),
        authz: Authorization = Depends(get_authorization),
    ) -> PermissionContext:
        ctx = await build_request_context(request, principal)
        outcome = await build(authz)(ctx)
        raise_for_outcome(outcome)
        request.state.permission_context = ctx.permission_context
        return ctx.permission_context

    return dependency


def require_authenticated():
    return authorize(lambda authz: authz.require_authenticated())


def require_permission(
    resource: str,
    action: PermissionAction | str,
    resource_id: ResourceIdSource | None = None,
    allow_resource_owner: bool = False,
    custom_check: Callable[[RequestContext], Any] | None = None,
):
    return authorize(lambda authz: authz.require_permission(
        resource,
        action,
        resource_id=resource_id,
        allow_resource_owner=allow_resource_owner,
        custom_check=custom_check,
    ))


def require_roles(*roles: Role | str):
    return authorize(lambda authz: authz.require_roles(roles))


def require_min_role_level(min_level: int):
    return authorize(lambda authz: authz.require_min_role_level(min_level))


def require_resource_ownership_or_permission(
    resource: str,
    action: PermissionAction | str,
    resource_id_param: str,
):
    return authorize(lambda authz: authz.require_resource_ownership_or_permission(
        resource, action, resource_id_param
    ))


def require_user_management_permission(target_params: Sequence[str] = ("user_id", "id")):
    return authorize(lambda authz: authz.require_user_management_permission(target_params))


def conditional_permission(rules: Iterable[PermissionRule]):
    rules = list(rules)
    return authorize(lambda authz: authz.conditional_permission(rules))


# ============================================================
# PRESETS
# ============================================================

require_admin_access = authorize(lambda authz: authz.require_admin_access())
require_moderator_access = authorize(lambda authz: authz.require_moderator_access())
require_editor_access = authorize(lambda authz: authz.require_editor_access())


# ============================================================
# TYPE ALIASES FOR CLEAN SIGNATURES
# ============================================================

# Authenticated, active principal (required)
CurrentPrincipal = Annotated[AuthenticatedPrincipal, Depends(get_authenticated_principal)]

# Authenticated principal (optional, may be inactive)
OptionalPrincipal = Annotated[AuthenticatedPrincipal | None, Depends(get_current_principal)]

RBAC = Annotated[RBACService, Depends(get_rbac_service)]

Resolver = Annotated[PermissionResolver, Depends(get_permission_resolver)]
