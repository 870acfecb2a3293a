from __future__ import annotations

from enum import StrEnum


class Resource(StrEnum):
    LEADS = "leads"
    CUSTOMERS = "customers"
    JOBS = "jobs"
    ESTIMATES = "estimates"
    INVOICES = "invoices"
    TASKS = "tasks"
    AUDIT = "audit"


class PermissionAction(StrEnum):
    READ = "read"
    WRITE = "write"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"


def permission_key(resource: Resource | str, action: PermissionAction | str) -> str:
    return f"{resource}:{action}"


def parse_permission_key(permission: str) -> tuple[str, str] | None:
    resource, separator, action = permission.partition(":")
    if not separator or not resource or not action:
        return None
    return resource, action


def describe_permission(permission: str) -> str:
    parsed = parse_permission_key(permission)
    if parsed is None:
        return f"You don't have permission to access {permission}"
    resource, action = parsed
    return f"You don't have permission to {action} {resource}"


def is_wildcard_grant(grant: str) -> bool:
    return grant == "*" or grant.endswith(":*")


def grant_matches(grant: str, required: str) -> bool:
    """``*`` grants everything and ``<resource>:*`` grants every action on one resource."""
    if grant in {"*", required}:
        return True
    if grant.endswith(":*"):
        return required.startswith(grant[:-1])
    return False
