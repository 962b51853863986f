"""
Built-in condition evaluators.

Conditions are attached to resource policies as a dict keyed by
condition type:

    ResourcePolicy(
        resource="events",
        effect=PolicyEffect.ALLOW,
        conditions={"time_range": {"start": "2026-01-01T00:00:00Z", "end": "2026-01-31T23:59:59Z"}},
    )

Add custom conditions by creating a class with @AuthRegistry.condition decorator.
"""

from datetime import datetime, timezone
from typing import Any

from ..interfaces import ConditionEvaluator, PrincipalRecord
from ..registry import AuthRegistry


def parse_instant(value: Any) -> datetime:
    """
    Parse an ISO-8601 string (or datetime) into an aware UTC datetime.

    Naive values are taken as UTC. Raises ValueError/TypeError on
    malformed input.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@AuthRegistry.condition("time_range")
@AuthRegistry.condition("timeRange")
class TimeRangeCondition(ConditionEvaluator):
    """
    Current instant must lie within [start, end], both inclusive.

    Usage:
        conditions={"time_range": {"start": "2026-01-01T00:00:00Z", "end": "2026-02-01T00:00:00Z"}}

    Either bound may be omitted for an open interval. Also registered
    as "timeRange", the key stored policies use.
    """

    condition_type = "time_range"

    def __init__(self, **kwargs: Any):
        pass

    def evaluate(
        self,
        expected: Any,
        principal: PrincipalRecord,
        now: datetime,
        context: dict[str, Any],
    ) -> bool:
        if not isinstance(expected, dict):
            raise ValueError("time_range condition must be an object with start/end")

        start = expected.get("start")
        end = expected.get("end")

        if start is not None and now < parse_instant(start):
            return False
        if end is not None and now > parse_instant(end):
            return False
        return True
