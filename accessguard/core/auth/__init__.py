"""
Authorization decision engine.

Answers "may principal P perform action A on resource R (optionally
instance I)?" and enforces the answer at the request boundary.

Components:
===========

- RoleCatalog: static role -> {level, description, capabilities}
- PolicyStore: principals, grants, assignments, overrides, policies
  (MemoryPolicyStore, DatabasePolicyStore)
- PermissionResolver: ordered resolution pipeline, fail-safe deny
- HierarchyGuard: "manage only strictly lower levels"
- AuthorizationInterceptor / Authorization: request-boundary stages
- AuditSink: denial and mutation records
- OwnershipRegistry: per-resource isOwner predicates

Usage:
======

    catalog = RoleCatalog.default()
    resolver = PermissionResolver(store, catalog, audit=sink)
    result = await resolver.check(user_id, "events", PermissionAction.READ)

FastAPI routes use accessguard.core.auth.dependencies, which is not
imported here because it pulls in the database layer.

Extensibility:
==============

Add custom policy conditions:
    @AuthRegistry.condition("business_hours")
    class BusinessHoursCondition(ConditionEvaluator):
        ...

Register ownership for a resource type:
    @ownership_registry.owner("donations")
    async def owns_donation(principal_id: str, resource_id: str) -> bool:
        ...
"""

from .catalog import (
    WILDCARD,
    Role,
    PermissionAction,
    RoleProfile,
    RoleCatalog,
    capability,
)
from .exceptions import (
    AuthorizationError,
    PrincipalNotFound,
    PermissionNotFound,
    ManagementDenied,
    StoreFailure,
    ConfigurationError,
)
from .interfaces import (
    PolicyStore,
    AuditSink,
    ConditionEvaluator,
    PermissionCheckResult,
    MatchSource,
    ErrorKind,
    PolicyEffect,
    PrincipalRecord,
    PermissionRecord,
    PermissionGrantRecord,
    RoleAssignmentRecord,
    RoleOverrideRecord,
    ResourcePolicyRecord,
)
from .events import SecurityEvent, MutationEvent, MutationAction, Severity
from .registry import AuthRegistry
from .ownership import OwnershipRegistry, ownership_registry
from .resolver import PermissionResolver
from .hierarchy import HierarchyGuard
from .interceptor import (
    Authorization,
    AuthorizationInterceptor,
    AuthenticatedPrincipal,
    RequestContext,
    PermissionContext,
    ResourceIdSource,
    PermissionRule,
    Allowed,
    Unauthorized,
    Forbidden,
    BadRequest,
)

# Default implementations (auto-registered)
from .conditions import TimeRangeCondition

__all__ = [
    # Catalog
    "WILDCARD",
    "Role",
    "PermissionAction",
    "RoleProfile",
    "RoleCatalog",
    "capability",
    # Exceptions
    "AuthorizationError",
    "PrincipalNotFound",
    "PermissionNotFound",
    "ManagementDenied",
    "StoreFailure",
    "ConfigurationError",
    # Interfaces
    "PolicyStore",
    "AuditSink",
    "ConditionEvaluator",
    "PermissionCheckResult",
    "MatchSource",
    "ErrorKind",
    "PolicyEffect",
    "PrincipalRecord",
    "PermissionRecord",
    "PermissionGrantRecord",
    "RoleAssignmentRecord",
    "RoleOverrideRecord",
    "ResourcePolicyRecord",
    # Events
    "SecurityEvent",
    "MutationEvent",
    "MutationAction",
    "Severity",
    # Registries
    "AuthRegistry",
    "OwnershipRegistry",
    "ownership_registry",
    # Engine
    "PermissionResolver",
    "HierarchyGuard",
    "Authorization",
    "AuthorizationInterceptor",
    "AuthenticatedPrincipal",
    "RequestContext",
    "PermissionContext",
    "ResourceIdSource",
    "PermissionRule",
    "Allowed",
    "Unauthorized",
    "Forbidden",
    "BadRequest",
    # Default implementations
    "TimeRangeCondition",
]
