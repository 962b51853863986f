"""
Role hierarchy guard.

Decides whether one principal may manage another by comparing their
effective (highest) role levels. Management requires a strictly higher
level, so peers can never alter each other.
"""

import structlog

from .catalog import Role, RoleCatalog
from .interfaces import PolicyStore

logger = structlog.get_logger()


class HierarchyGuard:
    """
    Level-based management checks.

    Usage:
        guard = HierarchyGuard(store, catalog)
        if await guard.can_manage(actor_id, target_id):
            ...
    """

    def __init__(self, store: PolicyStore, catalog: RoleCatalog):
        self.store = store
        self.catalog = catalog

    async def roles(self, principal_id: str) -> list[Role]:
        """
        Primary role followed by active assignment roles, deduplicated.

        Unknown principals hold no roles.
        """
        principal = await self.store.get_principal(str(principal_id))
        if principal is None:
            return []

        roles = [principal.role]
        for assignment in principal.role_assignments:
            if assignment.role not in roles:
                roles.append(assignment.role)
        return roles

    async def max_level(self, principal_id: str) -> int:
        """
        Highest level across primary role and active assignments.

        Unknown principals and store failures rank 0.
        """
        try:
            return await self._max_level(principal_id)
        except Exception:
            logger.error(
                "Failed to resolve role level",
                principal_id=str(principal_id),
                exc_info=True,
            )
            return 0

    async def can_manage(self, actor_id: str, target_id: str) -> bool:
        """
        Whether actor's level is strictly greater than target's.

        A store failure on either side denies.
        """
        try:
            actor_level = await self._max_level(actor_id)
            target_level = await self._max_level(target_id)
        except Exception:
            logger.error(
                "Management check failed",
                actor_id=str(actor_id),
                target_id=str(target_id),
                exc_info=True,
            )
            return False
        return actor_level > target_level

    async def outranks_role(self, actor_id: str, role: Role | str) -> bool:
        """Whether actor's level is strictly greater than the given role's level."""
        return await self.max_level(actor_id) > self.catalog.level(role)

    async def _max_level(self, principal_id: str) -> int:
        roles = await self.roles(principal_id)
        return max((self.catalog.level(role) for role in roles), default=0)
