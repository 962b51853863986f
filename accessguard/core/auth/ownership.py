"""
Resource ownership registry.

Each feature module that owns a resource type registers a predicate
telling whether a principal owns a given instance. The engine never
knows how ownership is stored.

Usage:
    @ownership_registry.owner("donations")
    async def owns_donation(principal_id: str, resource_id: str) -> bool:
        ...

    await ownership_registry.is_owner(principal_id, "donations", donation_id)
"""

from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger()

OwnershipPredicate = Callable[[str, str], Awaitable[bool]]


class OwnershipRegistry:
    """Ownership predicates keyed by resource type."""

    def __init__(self) -> None:
        self._predicates: dict[str, OwnershipPredicate] = {}

    def owner(self, resource: str) -> Callable[[OwnershipPredicate], OwnershipPredicate]:
        """Decorator registering the predicate for a resource type."""
        def decorator(predicate: OwnershipPredicate) -> OwnershipPredicate:
            self.register(resource, predicate)
            return predicate
        return decorator

    def register(self, resource: str, predicate: OwnershipPredicate) -> None:
        self._predicates[resource] = predicate

    def has_predicate(self, resource: str) -> bool:
        return resource in self._predicates

    def list_resources(self) -> list[str]:
        return list(self._predicates.keys())

    async def is_owner(self, principal_id: str, resource: str, resource_id: str) -> bool:
        """
        Whether principal owns resource_id.

        Resource types without a predicate are never owned. A predicate
        that raises counts as "not owner".
        """
        predicate = self._predicates.get(resource)
        if predicate is None:
            return False

        try:
            return bool(await predicate(principal_id, resource_id))
        except Exception:
            logger.warning(
                "Ownership check failed",
                principal_id=principal_id,
                resource=resource,
                resource_id=resource_id,
                exc_info=True,
            )
            return False


# Process-wide registry that feature modules register into
ownership_registry = OwnershipRegistry()
