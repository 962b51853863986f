"""
User ownership.

Registers the "users" ownership predicate: a principal owns its own
user record.
"""

from accessguard.core.auth.ownership import ownership_registry


@ownership_registry.owner("users")
async def owns_user(principal_id: str, resource_id: str) -> bool:
    return str(principal_id) == str(resource_id)
