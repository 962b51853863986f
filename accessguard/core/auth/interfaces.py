"""
Authorization interfaces - Core abstractions.

These define the contracts between the decision engine and its
collaborators. The resolver, hierarchy guard and interceptor depend
ONLY on these interfaces, never on a particular store or sink.

- PolicyStore: durable repository of principals, grants, assignments,
  per-role overrides and resource policies. Read paths return only
  currently active, non-expired grants and assignments.
- AuditSink: receives security events (denials) and mutation records.
- ConditionEvaluator: one type of resource-policy condition.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from .catalog import PermissionAction, Role

if TYPE_CHECKING:
    from .events import MutationEvent, SecurityEvent


Clock = Callable[[], datetime]


# ============================================================
# STORE RECORDS
# ============================================================

@dataclass
class PermissionRecord:
    """Immutable reference permission."""
    id: str
    name: str
    resource: str
    action: PermissionAction
    description: str | None = None


@dataclass
class PermissionGrantRecord:
    """
    Direct, principal-specific permission.

    granted=False is equivalent to absence, never an explicit deny.
    """
    principal_id: str
    permission_id: str
    resource: str
    action: PermissionAction
    granted: bool = True
    granted_by: str | None = None
    expires_at: datetime | None = None


@dataclass
class RoleAssignmentRecord:
    """Additional (optionally time-boxed) role held by a principal."""
    principal_id: str
    role: Role
    is_active: bool = True
    assigned_by: str | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class PrincipalRecord:
    """
    Principal as seen by the engine.

    direct_grants and role_assignments hold only records that are
    currently active and not expired, in assignment order.
    """
    id: str
    is_active: bool
    role: Role
    direct_grants: list[PermissionGrantRecord] = field(default_factory=list)
    role_assignments: list[RoleAssignmentRecord] = field(default_factory=list)


@dataclass
class RoleOverrideRecord:
    """Dynamic per-role permission layered on top of the static catalog."""
    role: Role
    resource: str
    action: PermissionAction
    granted: bool = True


class PolicyEffect(str, Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"


@dataclass
class ResourcePolicyRecord:
    """
    Instance- or resource-type-scoped rule.

    resource_id None means the policy applies to every instance of the
    resource type. The match_* filters apply only when present.
    """
    id: str
    resource: str
    effect: PolicyEffect
    priority: int = 0
    resource_id: str | None = None
    match_actions: list[str] | None = None
    match_roles: list[str] | None = None
    match_users: list[str] | None = None
    conditions: dict[str, Any] | None = None


# ============================================================
# CHECK RESULT
# ============================================================

class MatchSource(str, Enum):
    """Pipeline stage that decided a check."""
    INACTIVE = "inactive principal"
    DIRECT_GRANT = "direct grant"
    WILDCARD = "wildcard"
    ROLE_CAPABILITY = "role capability"
    ROLE_OVERRIDE = "role override"
    RESOURCE_POLICY = "resource policy"
    NO_MATCH = "no match"
    ERROR = "resolution error"


class ErrorKind(str, Enum):
    """Internal failure causes; only visible through logs and audit."""
    UNAUTHENTICATED = "unauthenticated"
    INVALID_REQUEST = "invalid_request"
    PERMISSION_DENIED = "permission_denied"
    PRINCIPAL_NOT_FOUND = "principal_not_found"
    STORE_FAILURE = "store_failure"
    CONFIGURATION_ERROR = "configuration_error"


@dataclass
class PermissionCheckResult:
    """
    Result of a permission check.

    Attributes:
        allowed: Whether the action is permitted
        reason: Human-readable explanation
        source: Which pipeline stage decided
        error: Internal failure cause when the check could not complete
        matched_role: Role whose capability/override matched, if any
        matched_permission_id: Direct grant that matched, if any
        applied_policy_id: Resource policy that decided, if any
    """
    allowed: bool
    reason: str
    source: MatchSource | None = None
    error: ErrorKind | None = None
    matched_role: Role | None = None
    matched_permission_id: str | None = None
    applied_policy_id: str | None = None

    @classmethod
    def allow(cls, reason: str, source: MatchSource, **kwargs: Any) -> "PermissionCheckResult":
        return cls(allowed=True, reason=reason, source=source, **kwargs)

    @classmethod
    def deny(cls, reason: str, source: MatchSource | None = None, **kwargs: Any) -> "PermissionCheckResult":
        return cls(allowed=False, reason=reason, source=source, **kwargs)


# ============================================================
# POLICY STORE
# ============================================================

class PolicyStore(ABC):
    """
    Durable repository consumed by the engine.

    Implementations:
    - MemoryPolicyStore: dict-backed (tests, development)
    - DatabasePolicyStore: SQLAlchemy async session

    Mutations are idempotent upserts keyed by (principal, role) and
    (principal, permission). Atomicity of a single upsert is the
    store's responsibility.
    """

    @abstractmethod
    async def get_principal(self, principal_id: str) -> PrincipalRecord | None:
        """Principal with only active, non-expired grants and assignments."""
        pass

    @abstractmethod
    async def get_role_override(
        self,
        role: Role,
        resource: str,
        action: PermissionAction,
    ) -> RoleOverrideRecord | None:
        """Granted per-role override for resource/action, if any."""
        pass

    @abstractmethod
    async def list_role_overrides(self, roles: list[Role]) -> list[RoleOverrideRecord]:
        """Granted per-role overrides for any of the roles."""
        pass

    @abstractmethod
    async def find_resource_policies(
        self,
        resource: str,
        resource_id: str | None,
    ) -> list[ResourcePolicyRecord]:
        """Active policies for the resource and instance (or general), highest priority first."""
        pass

    @abstractmethod
    async def upsert_role_assignment(
        self,
        principal_id: str,
        role: Role,
        assigned_by: str,
        expires_at: datetime | None = None,
    ) -> RoleAssignmentRecord:
        pass

    @abstractmethod
    async def deactivate_role_assignment(self, principal_id: str, role: Role) -> bool:
        pass

    @abstractmethod
    async def upsert_permission_grant(
        self,
        principal_id: str,
        permission_id: str,
        granted_by: str,
        expires_at: datetime | None = None,
    ) -> PermissionGrantRecord:
        pass

    @abstractmethod
    async def deactivate_permission_grant(self, principal_id: str, permission_id: str) -> bool:
        pass

    @abstractmethod
    async def get_permission(self, permission_id: str) -> PermissionRecord | None:
        pass

    @abstractmethod
    async def list_permissions(self) -> list[PermissionRecord]:
        pass

    @abstractmethod
    async def ensure_permission(
        self,
        resource: str,
        action: PermissionAction,
        description: str | None = None,
    ) -> PermissionRecord:
        """Get or create the permission row for resource/action."""
        pass


# ============================================================
# AUDIT SINK
# ============================================================

class AuditSink(ABC):
    """
    Receives security events and mutation records.

    Writing is best-effort: callers go through events.publish(), which
    logs and swallows sink failures so an audit problem never changes
    the authorization outcome being described.
    """

    @abstractmethod
    async def record_security_event(self, event: "SecurityEvent") -> None:
        pass

    @abstractmethod
    async def record_mutation(self, event: "MutationEvent") -> None:
        pass


# ============================================================
# CONDITION EVALUATOR
# ============================================================

class ConditionEvaluator(ABC):
    """
    Evaluates a single type of resource-policy condition.

    Register evaluators with @AuthRegistry.condition("name").
    """

    @property
    @abstractmethod
    def condition_type(self) -> str:
        """Unique identifier for this condition type."""
        pass

    @abstractmethod
    def evaluate(
        self,
        expected: Any,
        principal: PrincipalRecord,
        now: datetime,
        context: dict[str, Any],
    ) -> bool:
        """
        Whether the condition holds.

        Args:
            expected: The configured value for this condition
            principal: The principal being checked
            now: Current instant from the resolver's clock
            context: Request context (ip, user agent, path)
        """
        pass

