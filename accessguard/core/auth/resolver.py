"""
Permission resolver.

Answers "may principal P perform action A on resource R (optionally
instance I)?" by running an ordered pipeline that stops at the first
decisive stage:

1. Load principal (store returns only active, non-expired grants and
   assignments). Unknown principal -> deny.
2. Inactive principal -> deny. Unconditional, precedes everything.
3. Direct grant for (resource, action) -> allow.
4. Primary role: wildcard, then static capability, then dynamic
   per-role override -> allow.
5. Additional role assignments, in assignment order, same checks.
6. Resource policies (only with a resource_id), highest priority
   first; the first matching policy decides ALLOW or DENY.
7. Nothing matched -> deny.

Stage 7 and an explicit DENY policy emit an UNAUTHORIZED_ACCESS event.
Any exception raised while resolving becomes a deny; the resolver
never fails open.
"""

from typing import Any

import structlog

from accessguard.utils.timezone import utc_now

from .catalog import PermissionAction, Role, RoleCatalog, capability
from .events import SecurityEvent, Severity, publish
from .exceptions import PrincipalNotFound
from .interfaces import (
    AuditSink,
    Clock,
    ErrorKind,
    MatchSource,
    PermissionCheckResult,
    PolicyEffect,
    PolicyStore,
    PrincipalRecord,
    ResourcePolicyRecord,
)
from .registry import AuthRegistry

# Register built-in conditions
from . import conditions  # noqa: F401

logger = structlog.get_logger()


RESOLUTION_ERROR_REASON = "resolution error"


class PermissionResolver:
    """
    Stateless permission resolution service.

    Holds injected dependencies only; independent checks may run
    concurrently against the same instance.

    Usage:
        resolver = PermissionResolver(store, catalog, audit=sink)
        result = await resolver.check(user_id, "events", PermissionAction.READ)
        if result.allowed:
            ...
    """

    def __init__(
        self,
        store: PolicyStore,
        catalog: RoleCatalog,
        audit: AuditSink | None = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.catalog = catalog
        self.audit = audit
        self.clock = clock

    async def check(
        self,
        principal_id: str,
        resource: str,
        action: PermissionAction | str,
        resource_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> PermissionCheckResult:
        """
        Check whether principal may perform action on resource.

        Args:
            principal_id: Principal being checked
            resource: Resource type (e.g. "events")
            action: Action tag
            resource_id: Optional specific instance; enables resource policies
            context: Request context (ip, user_agent, path) for conditions/audit

        Returns:
            PermissionCheckResult (never raises for store problems)

        Raises:
            ValueError: If resource or action is empty
        """
        if not resource:
            raise ValueError("resource must be non-empty")
        if not action:
            raise ValueError("action must be non-empty")

        action = PermissionAction(action)
        context = context or {}

        try:
            return await self._resolve(str(principal_id), resource, action, resource_id, context)
        except PrincipalNotFound:
            logger.info(
                "Permission check for unknown principal",
                principal_id=str(principal_id),
                resource=resource,
                action=action.value,
            )
            return PermissionCheckResult.deny(
                "principal not found",
                MatchSource.NO_MATCH,
                error=ErrorKind.PRINCIPAL_NOT_FOUND,
            )
        except Exception:
            logger.error(
                "Permission resolution failed",
                principal_id=str(principal_id),
                resource=resource,
                action=action.value,
                resource_id=resource_id,
                exc_info=True,
            )
            return PermissionCheckResult.deny(
                RESOLUTION_ERROR_REASON,
                MatchSource.ERROR,
                error=ErrorKind.STORE_FAILURE,
            )

    async def _resolve(
        self,
        principal_id: str,
        resource: str,
        action: PermissionAction,
        resource_id: str | None,
        context: dict[str, Any],
    ) -> PermissionCheckResult:
        principal = await self.store.get_principal(principal_id)
        if principal is None:
            raise PrincipalNotFound(principal_id)

        if not principal.is_active:
            return PermissionCheckResult.deny("inactive principal", MatchSource.INACTIVE)

        for grant in principal.direct_grants:
            if grant.granted and grant.resource == resource and grant.action == action:
                return PermissionCheckResult.allow(
                    "direct grant",
                    MatchSource.DIRECT_GRANT,
                    matched_permission_id=grant.permission_id,
                )

        result = await self._check_role(principal.role, resource, action)
        if result is not None:
            return result

        for assignment in principal.role_assignments:
            result = await self._check_role(assignment.role, resource, action)
            if result is not None:
                return result

        if resource_id is not None:
            policies = await self.store.find_resource_policies(resource, resource_id)
            for policy in policies:
                if not self._policy_matches(policy, principal, action, context):
                    continue

                if policy.effect == PolicyEffect.ALLOW:
                    return PermissionCheckResult.allow(
                        "resource policy: ALLOW",
                        MatchSource.RESOURCE_POLICY,
                        applied_policy_id=policy.id,
                    )

                denied = PermissionCheckResult.deny(
                    "resource policy: DENY",
                    MatchSource.RESOURCE_POLICY,
                    error=ErrorKind.PERMISSION_DENIED,
                    applied_policy_id=policy.id,
                )
                await self._emit_denial(principal_id, resource, action, resource_id, denied.reason, context)
                return denied

        reason = f"access denied: no permission to {action.value} on {resource}"
        await self._emit_denial(principal_id, resource, action, resource_id, reason, context)
        return PermissionCheckResult.deny(
            reason,
            MatchSource.NO_MATCH,
            error=ErrorKind.PERMISSION_DENIED,
        )

    async def _check_role(
        self,
        role: Role,
        resource: str,
        action: PermissionAction,
    ) -> PermissionCheckResult | None:
        """Static capabilities first, then the dynamic override for the same role."""
        profile = self.catalog.get(role)
        if profile is None:
            return None

        if profile.is_wildcard:
            return PermissionCheckResult.allow(
                f"role {profile.role.value} has full access",
                MatchSource.WILDCARD,
                matched_role=profile.role,
            )

        required = capability(resource, action)
        if required in profile.capabilities:
            return PermissionCheckResult.allow(
                f"role {profile.role.value} has capability {required}",
                MatchSource.ROLE_CAPABILITY,
                matched_role=profile.role,
            )

        override = await self.store.get_role_override(profile.role, resource, action)
        if override is not None and override.granted:
            return PermissionCheckResult.allow(
                f"role {profile.role.value} has stored override for {required}",
                MatchSource.ROLE_OVERRIDE,
                matched_role=profile.role,
            )

        return None

    def _policy_matches(
        self,
        policy: ResourcePolicyRecord,
        principal: PrincipalRecord,
        action: PermissionAction,
        context: dict[str, Any],
    ) -> bool:
        """Every present filter must include the request's value; conditions must hold."""
        if policy.match_actions is not None and action.value not in policy.match_actions:
            return False
        if policy.match_roles is not None and principal.role.value not in policy.match_roles:
            return False
        if policy.match_users is not None and principal.id not in [str(u) for u in policy.match_users]:
            return False

        if policy.conditions:
            now = self.clock()
            for condition_type, expected in policy.conditions.items():
                if not AuthRegistry.has_condition(condition_type):
                    continue

                evaluator = AuthRegistry.get_condition_evaluator(condition_type)
                try:
                    if not evaluator.evaluate(expected, principal, now, context):
                        return False
                except (TypeError, ValueError):
                    logger.warning(
                        "Malformed policy condition",
                        policy_id=policy.id,
                        condition_type=condition_type,
                    )
                    return False

        return True

    async def _emit_denial(
        self,
        principal_id: str,
        resource: str,
        action: PermissionAction,
        resource_id: str | None,
        reason: str,
        context: dict[str, Any],
    ) -> None:
        logger.info(
            "Permission denied",
            principal_id=principal_id,
            resource=resource,
            action=action.value,
            resource_id=resource_id,
            reason=reason,
        )
        await publish(
            self.audit,
            SecurityEvent(
                principal_id=principal_id,
                resource=resource,
                action=action.value,
                resource_id=resource_id,
                reason=reason,
                severity=Severity.MEDIUM,
                ip=context.get("ip"),
                user_agent=context.get("user_agent"),
                path=context.get("path"),
            ),
        )
