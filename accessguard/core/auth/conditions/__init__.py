"""
Built-in resource-policy conditions.

Importing this package registers them with AuthRegistry.
"""

from .builtin import TimeRangeCondition, parse_instant

__all__ = [
    "TimeRangeCondition",
    "parse_instant",
]
