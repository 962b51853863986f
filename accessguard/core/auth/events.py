"""
Audit and security event records.

Denials produce a SecurityEvent (UNAUTHORIZED_ACCESS); role and
permission mutations produce a MutationEvent. Both are handed to an
AuditSink through publish(), which never raises.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from .interfaces import AuditSink

logger = structlog.get_logger()


class SecurityEventType(str, Enum):
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"


class Severity(str, Enum):
    INFO = "INFO"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class MutationAction(str, Enum):
    ROLE_ASSIGNED = "ROLE_ASSIGNED"
    ROLE_REVOKED = "ROLE_REVOKED"
    PERMISSION_GRANTED = "PERMISSION_GRANTED"
    PERMISSION_REVOKED = "PERMISSION_REVOKED"


@dataclass
class SecurityEvent:
    """A denial as reported to the audit/security channel."""
    principal_id: str | None
    resource: str
    action: str
    reason: str
    type: SecurityEventType = SecurityEventType.UNAUTHORIZED_ACCESS
    severity: Severity = Severity.MEDIUM
    resource_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "principal_id": self.principal_id,
            "resource": self.resource,
            "action": self.action,
            "resource_id": self.resource_id,
            "reason": self.reason,
            "ip": self.ip,
            "user_agent": self.user_agent,
            "path": self.path,
        }


@dataclass
class MutationEvent:
    """A role/permission change performed through the management API."""
    action: MutationAction
    actor_id: str
    target_id: str
    success: bool
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "actor_id": self.actor_id,
            "target_id": self.target_id,
            "success": self.success,
            **self.details,
        }


async def publish(sink: "AuditSink | None", event: SecurityEvent | MutationEvent) -> None:
    """
    Hand an event to the sink, logging instead of raising on failure.

    An audit write failure never reverses or blocks the outcome it
    describes.
    """
    if sink is None:
        return

    try:
        if isinstance(event, SecurityEvent):
            await sink.record_security_event(event)
        else:
            await sink.record_mutation(event)
    except Exception:
        logger.warning(
            "Audit write failed",
            audit_event=event.to_dict(),
            exc_info=True,
        )
