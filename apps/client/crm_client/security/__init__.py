from crm_client.security.cache import PermissionCache
from crm_client.security.errors import AuthorizationError, NotSignedIn, PermissionDenied, PermissionLookupError, RoleRequired
from crm_client.security.gate import DecisionSource, PermissionDecision, PolicyGate
from crm_client.security.permissions import PermissionAction, Resource, describe_permission, parse_permission_key, permission_key
from crm_client.security.principal import NO_ROLE, Principal, Role
from crm_client.security.session import AuthSession

__all__ = [
    "AuthSession",
    "AuthorizationError",
    "DecisionSource",
    "NO_ROLE",
    "NotSignedIn",
    "PermissionAction",
    "PermissionCache",
    "PermissionDecision",
    "PermissionDenied",
    "PermissionLookupError",
    "PolicyGate",
    "Principal",
    "Resource",
    "Role",
    "RoleRequired",
    "describe_permission",
    "parse_permission_key",
    "permission_key",
]
