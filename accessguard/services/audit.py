"""
Audit sinks.

DatabaseAuditSink writes through its own short-lived session and
commits immediately, so an audit row survives even when the request
transaction it describes rolls back, and an audit failure never
touches the request transaction.
"""

from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accessguard.api.middleware.request_id import get_request_id
from accessguard.core.auth.events import MutationEvent, SecurityEvent
from accessguard.core.auth.interfaces import AuditSink
from accessguard.models.audit_log import AuditLog, SecurityEventLog

logger = structlog.get_logger()


def _as_uuid(value: str | None) -> UUID | None:
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


class DatabaseAuditSink(AuditSink):
    """Persists security events and mutation records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record_security_event(self, event: SecurityEvent) -> None:
        entry = SecurityEventLog(
            type=event.type.value,
            severity=event.severity.value,
            principal_id=event.principal_id,
            resource=event.resource,
            action=event.action,
            resource_id=event.resource_id,
            reason=event.reason,
            ip=event.ip,
            user_agent=event.user_agent,
            path=event.path,
            extra_data=event.metadata or None,
            request_id=get_request_id() or None,
        )
        async with self.session_factory() as session:
            session.add(entry)
            await session.commit()

    async def record_mutation(self, event: MutationEvent) -> None:
        entry = AuditLog(
            actor_id=_as_uuid(event.actor_id),
            target_id=str(event.target_id),
            action=event.action.value,
            success=event.success,
            extra_data=event.details or None,
            request_id=get_request_id() or None,
        )
        async with self.session_factory() as session:
            session.add(entry)
            await session.commit()

        logger.info(
            "Audit log created",
            action=event.action.value,
            actor_id=event.actor_id,
            target_id=event.target_id,
            success=event.success,
        )


class LoggingAuditSink(AuditSink):
    """Writes events to the structured log only."""

    async def record_security_event(self, event: SecurityEvent) -> None:
        logger.warning("Security event", **event.to_dict())

    async def record_mutation(self, event: MutationEvent) -> None:
        logger.info("Access mutation", **event.to_dict())
