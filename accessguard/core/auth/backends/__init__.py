"""
Policy store and audit sink implementations.
"""

from .database import DatabasePolicyStore
from .memory import MemoryAuditSink, MemoryPolicyStore

__all__ = [
    "DatabasePolicyStore",
    "MemoryPolicyStore",
    "MemoryAuditSink",
]
