"""Utility functions."""

from accessguard.utils.timezone import UTC, utc_now, to_utc

__all__ = [
    "UTC",
    "utc_now",
    "to_utc",
]
