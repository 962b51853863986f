"""
Request-boundary authorization, independent of any web framework.

An AuthorizationInterceptor is an ordered list of stages. Each stage
receives the RequestContext and returns a terminal Outcome or None to
pass control to the next stage. The first terminal outcome wins; if
no stage allows the request it is denied.

The Authorization factory builds interceptors for the common cases:

    authz = Authorization(resolver, guard, ownership_registry, audit)

    interceptor = authz.require_permission(
        "donations",
        PermissionAction.UPDATE,
        resource_id=ResourceIdSource.path("donation_id"),
        allow_resource_owner=True,
    )
    outcome = await interceptor(ctx)

Adapters (see dependencies.py) translate outcomes to HTTP statuses:
Unauthorized -> 401, Forbidden -> 403, BadRequest -> 400.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Sequence

import structlog

from .catalog import PermissionAction, Role
from .events import SecurityEvent, Severity, publish
from .hierarchy import HierarchyGuard
from .interfaces import AuditSink, PermissionCheckResult
from .ownership import OwnershipRegistry, ownership_registry
from .resolver import PermissionResolver

logger = structlog.get_logger()


# ============================================================
# REQUEST CONTEXT
# ============================================================

@dataclass
class AuthenticatedPrincipal:
    """Principal attached to a request by the authentication layer."""
    id: str
    role: Role
    is_active: bool = True


@dataclass
class PermissionContext:
    """
    Attached to the request when it is allowed.

    granted_by names the stage that let the request through
    ("owner", "custom check", "resolver", "role", "level", "hierarchy",
    "authenticated").
    """
    granted_by: str
    resource: str | None = None
    action: PermissionAction | None = None
    resource_id: str | None = None
    result: PermissionCheckResult | None = None


@dataclass
class RequestContext:
    """Everything an interceptor may look at for one request."""
    principal: AuthenticatedPrincipal | None
    path_params: dict[str, Any] = field(default_factory=dict)
    query_params: dict[str, Any] = field(default_factory=dict)
    body: dict[str, Any] | None = None
    method: str | None = None
    path: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    permission_context: PermissionContext | None = None

    def audit_context(self) -> dict[str, Any]:
        return {"ip": self.ip, "user_agent": self.user_agent, "path": self.path}


@dataclass(frozen=True)
class ResourceIdSource:
    """
    Where a route's resource id lives.

    Usage:
        ResourceIdSource.path("event_id")
        ResourceIdSource.body("donation_id", required=True)
    """
    location: str
    name: str
    required: bool = False

    @classmethod
    def path(cls, name: str, required: bool = False) -> "ResourceIdSource":
        return cls("path", name, required)

    @classmethod
    def body(cls, name: str, required: bool = False) -> "ResourceIdSource":
        return cls("body", name, required)

    def extract(self, ctx: RequestContext) -> str | None:
        if self.location == "path":
            value = ctx.path_params.get(self.name)
        else:
            value = (ctx.body or {}).get(self.name)

        if value is None or value == "":
            return None
        return str(value)


# ============================================================
# OUTCOMES
# ============================================================

@dataclass(frozen=True)
class Allowed:
    context: PermissionContext


@dataclass(frozen=True)
class Unauthorized:
    reason: str = "authentication required"


@dataclass(frozen=True)
class Forbidden:
    reason: str
    resource: str | None = None
    action: str | None = None
    resource_id: str | None = None


@dataclass(frozen=True)
class BadRequest:
    reason: str


Outcome = Allowed | Unauthorized | Forbidden | BadRequest

Stage = Callable[[RequestContext], Awaitable[Outcome | None]]

CustomCheck = Callable[[RequestContext], "bool | Awaitable[bool]"]


async def _call_predicate(predicate: CustomCheck, ctx: RequestContext) -> bool:
    result = predicate(ctx)
    if inspect.isawaitable(result):
        result = await result
    return bool(result)


# ============================================================
# INTERCEPTOR
# ============================================================

class AuthorizationInterceptor:
    """
    Ordered stages with early return on the first terminal outcome.

    A Forbidden outcome is reported to the audit sink as an
    UNAUTHORIZED_ACCESS event carrying ip, user agent and path. A stage
    that raises is converted to Forbidden.
    """

    def __init__(self, stages: Sequence[Stage], audit: AuditSink | None = None):
        self.stages = list(stages)
        self.audit = audit

    async def __call__(self, ctx: RequestContext) -> Outcome:
        outcome: Outcome | None = None

        for stage in self.stages:
            try:
                outcome = await stage(ctx)
            except Exception:
                logger.error(
                    "Authorization stage failed",
                    principal_id=ctx.principal.id if ctx.principal else None,
                    path=ctx.path,
                    exc_info=True,
                )
                outcome = Forbidden("authorization error")

            if outcome is not None:
                break

        if outcome is None:
            outcome = Forbidden("access denied")

        if isinstance(outcome, Allowed):
            ctx.permission_context = outcome.context
        elif isinstance(outcome, Forbidden):
            await self._report(ctx, outcome)

        return outcome

    async def _report(self, ctx: RequestContext, outcome: Forbidden) -> None:
        principal_id = ctx.principal.id if ctx.principal else None
        logger.warning(
            "Unauthorized access attempt",
            principal_id=principal_id,
            resource=outcome.resource,
            action=outcome.action,
            reason=outcome.reason,
            path=ctx.path,
            ip=ctx.ip,
        )
        await publish(
            self.audit,
            SecurityEvent(
                principal_id=principal_id,
                resource=outcome.resource or "request",
                action=outcome.action or (ctx.method or ""),
                resource_id=outcome.resource_id,
                reason=outcome.reason,
                severity=Severity.MEDIUM,
                ip=ctx.ip,
                user_agent=ctx.user_agent,
                path=ctx.path,
                metadata={"method": ctx.method},
            ),
        )


# ============================================================
# STAGE FACTORY
# ============================================================

class Authorization:
    """
    Builds interceptors around a resolver, a hierarchy guard and an
    ownership registry.

    Every interceptor starts with the authentication stage: no
    principal -> Unauthorized, inactive principal -> Forbidden.
    """

    def __init__(
        self,
        resolver: PermissionResolver,
        guard: HierarchyGuard,
        ownership: OwnershipRegistry = ownership_registry,
        audit: AuditSink | None = None,
    ):
        self.resolver = resolver
        self.guard = guard
        self.ownership = ownership
        self.audit = audit

    def build(self, *stages: Stage) -> AuthorizationInterceptor:
        return AuthorizationInterceptor([self._authenticated, *stages], audit=self.audit)

    # ============================================================
    # STAGES
    # ============================================================

    async def _authenticated(self, ctx: RequestContext) -> Outcome | None:
        if ctx.principal is None:
            return Unauthorized()
        if not ctx.principal.is_active:
            return Forbidden("inactive principal")
        return None

    async def _allow_authenticated(self, ctx: RequestContext) -> Outcome | None:
        return Allowed(PermissionContext(granted_by="authenticated"))

    async def _resolve(
        self,
        ctx: RequestContext,
        resource: str,
        action: PermissionAction,
        resource_id: str | None,
        message: str | None = None,
    ) -> Outcome:
        result = await self.resolver.check(
            ctx.principal.id,
            resource,
            action,
            resource_id=resource_id,
            context=ctx.audit_context(),
        )
        if not result.allowed:
            return Forbidden(
                message or result.reason,
                resource=resource,
                action=action.value,
                resource_id=resource_id,
            )
        return Allowed(PermissionContext(
            granted_by="resolver",
            resource=resource,
            action=action,
            resource_id=resource_id,
            result=result,
        ))

    # ============================================================
    # INTERCEPTOR BUILDERS
    # ============================================================

    def require_authenticated(self) -> AuthorizationInterceptor:
        """Any active, authenticated principal."""
        return self.build(self._allow_authenticated)

    def require_permission(
        self,
        resource: str,
        action: PermissionAction | str,
        resource_id: ResourceIdSource | None = None,
        allow_resource_owner: bool = False,
        custom_check: CustomCheck | None = None,
    ) -> AuthorizationInterceptor:
        """
        Resource/action permission with optional owner and custom bypasses.

        Args:
            resource: Resource type
            action: Action tag
            resource_id: Where to read the instance id from
            allow_resource_owner: Owners skip the resolver entirely
            custom_check: Predicate on the request; True skips the resolver
        """
        action = PermissionAction(action)

        async def stage(ctx: RequestContext) -> Outcome:
            rid = resource_id.extract(ctx) if resource_id else None
            if resource_id is not None and resource_id.required and rid is None:
                return BadRequest(f"resource id '{resource_id.name}' is required")

            if allow_resource_owner and rid is not None:
                if await self.ownership.is_owner(ctx.principal.id, resource, rid):
                    return Allowed(PermissionContext(
                        granted_by="owner",
                        resource=resource,
                        action=action,
                        resource_id=rid,
                    ))

            if custom_check is not None and await _call_predicate(custom_check, ctx):
                return Allowed(PermissionContext(
                    granted_by="custom check",
                    resource=resource,
                    action=action,
                    resource_id=rid,
                ))

            return await self._resolve(ctx, resource, action, rid)

        return self.build(stage)

    def require_roles(self, roles: Iterable[Role | str]) -> AuthorizationInterceptor:
        """Primary role or any active assignment must be in roles."""
        required = [Role(role) for role in roles]
        required_text = ", ".join(role.value for role in required)

        async def stage(ctx: RequestContext) -> Outcome:
            if ctx.principal.role in required:
                return Allowed(PermissionContext(granted_by="role"))

            held = await self.guard.roles(ctx.principal.id)
            if any(role in required for role in held):
                return Allowed(PermissionContext(granted_by="role"))

            return Forbidden(
                f"access denied: one of roles {required_text} required",
                resource="role_check",
            )

        return self.build(stage)

    def require_min_role_level(self, min_level: int) -> AuthorizationInterceptor:
        """HierarchyGuard.max_level(principal) must be >= min_level."""

        async def stage(ctx: RequestContext) -> Outcome:
            level = await self.guard.max_level(ctx.principal.id)
            if level >= min_level:
                return Allowed(PermissionContext(granted_by="level"))
            return Forbidden(
                f"insufficient role level: required {min_level}, current {level}",
                resource="level_check",
            )

        return self.build(stage)

    def require_resource_ownership_or_permission(
        self,
        resource: str,
        action: PermissionAction | str,
        resource_id_param: str,
    ) -> AuthorizationInterceptor:
        """Owner of the path-identified instance, else the resolver decides."""
        action = PermissionAction(action)
        source = ResourceIdSource.path(resource_id_param, required=True)

        async def stage(ctx: RequestContext) -> Outcome:
            rid = source.extract(ctx)
            if rid is None:
                return BadRequest(f"resource id '{resource_id_param}' is required")

            if await self.ownership.is_owner(ctx.principal.id, resource, rid):
                return Allowed(PermissionContext(
                    granted_by="owner",
                    resource=resource,
                    action=action,
                    resource_id=rid,
                ))

            return await self._resolve(
                ctx,
                resource,
                action,
                rid,
                message="only the owner or an authorized principal may perform this action",
            )

        return self.build(stage)

    def require_user_management_permission(
        self,
        target_params: Sequence[str] = ("user_id", "id"),
    ) -> AuthorizationInterceptor:
        """Actor must strictly outrank the target named in the path."""

        async def stage(ctx: RequestContext) -> Outcome:
            target_id = None
            for name in target_params:
                value = ctx.path_params.get(name)
                if value:
                    target_id = str(value)
                    break

            if target_id is None:
                return BadRequest("target user id is required")

            if await self.guard.can_manage(ctx.principal.id, target_id):
                return Allowed(PermissionContext(
                    granted_by="hierarchy",
                    resource="users",
                    action=PermissionAction.MANAGE,
                    resource_id=target_id,
                ))

            return Forbidden(
                "cannot manage a principal at or above your own level",
                resource="user_management",
                action=PermissionAction.MANAGE.value,
                resource_id=target_id,
            )

        return self.build(stage)

    def conditional_permission(self, rules: Sequence["PermissionRule"]) -> AuthorizationInterceptor:
        """
        Apply only the first rule whose predicate matches the request.

        No matching rule allows the request.
        """

        async def stage(ctx: RequestContext) -> Outcome:
            for rule in rules:
                if await _call_predicate(rule.predicate, ctx):
                    return await self._resolve(ctx, rule.resource, rule.action, None, message=rule.message)
            return Allowed(PermissionContext(granted_by="authenticated"))

        return self.build(stage)

    # ============================================================
    # PRESETS
    # ============================================================

    def require_admin_access(self) -> AuthorizationInterceptor:
        return self.require_roles([Role.SUPER_ADMIN, Role.ADMIN])

    def require_moderator_access(self) -> AuthorizationInterceptor:
        return self.require_roles([Role.SUPER_ADMIN, Role.ADMIN, Role.MODERATOR])

    def require_editor_access(self) -> AuthorizationInterceptor:
        return self.require_roles([Role.SUPER_ADMIN, Role.ADMIN, Role.MODERATOR, Role.EDITOR])


@dataclass(frozen=True)
class PermissionRule:
    """One rule for Authorization.conditional_permission."""
    predicate: CustomCheck
    resource: str
    action: PermissionAction | str
    message: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "action", PermissionAction(self.action))
