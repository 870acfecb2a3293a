from __future__ import annotations

from crm_client.security.permissions import describe_permission


class AuthorizationError(Exception):
    """Base authorization error for policy gate failures."""


class PermissionDenied(AuthorizationError):
    """Raised when the current principal lacks a permission. Never retried."""

    def __init__(self, permission: str, message: str | None = None) -> None:
        self.permission = permission
        self.message = message or describe_permission(permission)
        super().__init__(self.message)


class PermissionLookupError(PermissionDenied):
    """Raised when the remote authority could not answer; the gate fails closed."""


class RoleRequired(AuthorizationError):
    def __init__(self, role: str) -> None:
        self.role = role
        self.message = f"Role required: {role}"
        super().__init__(self.message)


class NotSignedIn(AuthorizationError):
    def __init__(self) -> None:
        self.message = "You must be signed in to perform this action"
        super().__init__(self.message)
