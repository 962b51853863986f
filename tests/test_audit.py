"""
Tests for audit event publishing and sinks.
"""

import pytest
from structlog.testing import capture_logs

from accessguard.core.auth.events import MutationAction, MutationEvent, SecurityEvent, publish
from accessguard.core.auth.interfaces import AuditSink
from accessguard.services.audit import LoggingAuditSink


class ExplodingSink(AuditSink):
    async def record_security_event(self, event):
        raise ConnectionError("sink offline")

    async def record_mutation(self, event):
        raise ConnectionError("sink offline")


def denial() -> SecurityEvent:
    return SecurityEvent(
        principal_id="u1",
        resource="admin",
        action="EXECUTE",
        reason="access denied: no permission to EXECUTE on admin",
        path="/api/admin",
    )


@pytest.mark.asyncio
async def test_publish_routes_by_event_type(audit):
    mutation = MutationEvent(MutationAction.ROLE_REVOKED, "admin", "u1", success=True)

    await publish(audit, denial())
    await publish(audit, mutation)

    assert len(audit.security_events) == 1
    assert audit.mutations == [mutation]


@pytest.mark.asyncio
async def test_publish_without_sink_is_noop():
    await publish(None, denial())


@pytest.mark.asyncio
async def test_publish_swallows_sink_errors():
    with capture_logs() as logs:
        await publish(ExplodingSink(), denial())

    [entry] = [log for log in logs if log["event"] == "Audit write failed"]
    assert entry["log_level"] == "warning"
    assert entry["event"] == "Audit write failed"
    assert entry["audit_event"]["resource"] == "admin"


@pytest.mark.asyncio
async def test_logging_sink():
    sink = LoggingAuditSink()

    with capture_logs() as logs:
        await sink.record_security_event(denial())
        await sink.record_mutation(
            MutationEvent(MutationAction.PERMISSION_GRANTED, "admin", "u1", success=True, details={"permission": "admin.read"})
        )

    security, mutation = logs
    assert security["event"] == "Security event"
    assert security["type"] == "UNAUTHORIZED_ACCESS"
    assert security["path"] == "/api/admin"
    assert mutation["event"] == "Access mutation"
    assert mutation["action"] == "PERMISSION_GRANTED"
    assert mutation["permission"] == "admin.read"
