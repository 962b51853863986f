"""Authorization exceptions."""


class AuthorizationError(Exception):
    """Base class for authorization engine errors."""


class PrincipalNotFound(AuthorizationError):
    """Principal id does not resolve to a stored principal."""

    def __init__(self, principal_id: str):
        self.principal_id = principal_id
        super().__init__(f"Principal not found: {principal_id}")


class PermissionNotFound(AuthorizationError):
    """Permission id does not resolve to a stored permission."""

    def __init__(self, permission_id: str):
        self.permission_id = permission_id
        super().__init__(f"Permission not found: {permission_id}")


class ManagementDenied(AuthorizationError):
    """Actor is not allowed to alter the target's access."""


class StoreFailure(AuthorizationError):
    """The policy store failed while reading or writing."""


class ConfigurationError(AuthorizationError):
    """Unknown role, resource or action referenced by configuration or seeding."""
