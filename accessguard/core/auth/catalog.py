"""
Role catalog - static role profiles.

Each role tag maps to exactly one profile: a numeric level (higher =
more privileged), a description, and a set of "resource.action"
capabilities. The catalog is built once at startup and passed by
reference; nothing mutates it afterwards.

Usage:
    catalog = RoleCatalog.default()
    catalog.level(Role.ADMIN)                  # 90
    catalog.grants(Role.CLIENT, "events", PermissionAction.READ)  # True
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping

from .exceptions import ConfigurationError


WILDCARD = "*"


class Role(str, Enum):
    """Role tags."""
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"
    EDITOR = "EDITOR"
    EVENT_MANAGER = "EVENT_MANAGER"
    USER_MANAGER = "USER_MANAGER"
    VIEWER = "VIEWER"
    CLIENT = "CLIENT"
    GUEST = "GUEST"


class PermissionAction(str, Enum):
    """Action tags."""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    MANAGE = "MANAGE"
    MODERATE = "MODERATE"
    EXECUTE = "EXECUTE"


def capability(resource: str, action: PermissionAction | str) -> str:
    """Build the capability string for a resource/action pair."""
    action_value = action.value if isinstance(action, PermissionAction) else str(action)
    return f"{resource}.{action_value.lower()}"


@dataclass(frozen=True)
class RoleProfile:
    """Static definition of a role."""
    role: Role
    level: int
    description: str
    capabilities: frozenset[str]

    @property
    def is_wildcard(self) -> bool:
        return WILDCARD in self.capabilities


DEFAULT_RESOURCES: tuple[str, ...] = ("users", "events", "news", "forum", "donations", "admin")


DEFAULT_ROLE_PROFILES: tuple[RoleProfile, ...] = (
    RoleProfile(
        role=Role.SUPER_ADMIN,
        level=100,
        description="Full system access",
        capabilities=frozenset({WILDCARD}),
    ),
    RoleProfile(
        role=Role.ADMIN,
        level=90,
        description="General administrator with broad permissions",
        capabilities=frozenset({
            "users.read", "users.update", "users.delete", "users.manage",
            "events.read", "events.create", "events.update", "events.delete", "events.manage",
            "news.read", "news.create", "news.update", "news.delete", "news.moderate",
            "forum.read", "forum.moderate", "forum.manage",
            "donations.read", "donations.manage",
            "admin.read", "admin.execute",
        }),
    ),
    RoleProfile(
        role=Role.MODERATOR,
        level=70,
        description="Content moderator",
        capabilities=frozenset({
            "users.read",
            "events.read", "events.moderate",
            "news.read", "news.moderate",
            "forum.read", "forum.moderate",
            "donations.read",
        }),
    ),
    RoleProfile(
        role=Role.EDITOR,
        level=60,
        description="Content editor",
        capabilities=frozenset({
            "events.read", "events.create", "events.update",
            "news.read", "news.create", "news.update",
            "forum.read", "forum.create", "forum.update",
        }),
    ),
    RoleProfile(
        role=Role.EVENT_MANAGER,
        level=50,
        description="Event management specialist",
        capabilities=frozenset({
            "events.read", "events.create", "events.update", "events.manage",
            "news.read",
            "forum.read",
        }),
    ),
    RoleProfile(
        role=Role.USER_MANAGER,
        level=50,
        description="User management specialist",
        capabilities=frozenset({
            "users.read", "users.update", "users.manage",
            "events.read",
            "news.read",
            "forum.read", "forum.moderate",
        }),
    ),
    RoleProfile(
        role=Role.VIEWER,
        level=30,
        description="Extended read-only access",
        capabilities=frozenset({
            "events.read",
            "news.read",
            "forum.read",
            "donations.read",
        }),
    ),
    RoleProfile(
        role=Role.CLIENT,
        level=20,
        description="Standard user",
        capabilities=frozenset({
            "events.read",
            "news.read",
            "forum.read", "forum.create",
            "donations.create",
        }),
    ),
    RoleProfile(
        role=Role.GUEST,
        level=10,
        description="Guest with very limited access",
        capabilities=frozenset({
            "events.read",
            "news.read",
        }),
    ),
)


class RoleCatalog:
    """
    Read-only mapping of role tag to RoleProfile.

    Construct with RoleCatalog.default() or from explicit profiles.
    Construction validates every capability against the known
    resources and actions and raises ConfigurationError otherwise.
    """

    def __init__(
        self,
        profiles: Iterable[RoleProfile],
        resources: Iterable[str] = DEFAULT_RESOURCES,
    ):
        by_role: dict[Role, RoleProfile] = {}
        for profile in profiles:
            if profile.role in by_role:
                raise ConfigurationError(f"Duplicate role profile: {profile.role.value}")
            by_role[profile.role] = profile

        self._profiles: Mapping[Role, RoleProfile] = MappingProxyType(by_role)
        self._resources: frozenset[str] = frozenset(resources)
        self._validate()

    @classmethod
    def default(cls, resources: Iterable[str] = DEFAULT_RESOURCES) -> "RoleCatalog":
        return cls(DEFAULT_ROLE_PROFILES, resources)

    def _validate(self) -> None:
        actions = {action.value.lower() for action in PermissionAction}
        for profile in self._profiles.values():
            for cap in profile.capabilities:
                if cap == WILDCARD:
                    continue
                resource, _, action = cap.partition(".")
                if resource not in self._resources or action not in actions:
                    raise ConfigurationError(
                        f"Role {profile.role.value} references unknown capability '{cap}'"
                    )

    @property
    def resources(self) -> frozenset[str]:
        return self._resources

    def profiles(self) -> list[RoleProfile]:
        """All profiles, highest level first."""
        return sorted(self._profiles.values(), key=lambda p: p.level, reverse=True)

    def get(self, role: Role | str) -> RoleProfile | None:
        try:
            return self._profiles.get(Role(role))
        except ValueError:
            return None

    def profile(self, role: Role | str) -> RoleProfile:
        """Get a profile or raise ConfigurationError for an unknown role."""
        found = self.get(role)
        if found is None:
            raise ConfigurationError(f"Unknown role: {role}")
        return found

    def level(self, role: Role | str) -> int:
        """Level of a role; unknown roles rank 0."""
        found = self.get(role)
        return found.level if found else 0

    def grants(self, role: Role | str, resource: str, action: PermissionAction | str) -> bool:
        """Whether the static profile of a role covers resource/action."""
        found = self.get(role)
        if found is None:
            return False
        return found.is_wildcard or capability(resource, action) in found.capabilities

    def __contains__(self, role: object) -> bool:
        return self.get(role) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._profiles)
