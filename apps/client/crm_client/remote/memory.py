from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone
from typing import Any

from crm_client.audit.schemas import AuditRecord
from crm_client.security.permissions import grant_matches
from crm_client.remote.errors import NotFoundError
from crm_client.security.principal import Role


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRemoteAuthority:
    """Process-local authority with role grants and wildcard support."""

    def __init__(
        self,
        role_permissions: dict[str, set[str]] | None = None,
        user_roles: dict[str, str] | None = None,
    ) -> None:
        self.role_permissions = role_permissions or {}
        self.user_roles = user_roles or {}
        self.records: dict[str, dict[str, dict[str, Any]]] = {}
        self.audit_log: list[AuditRecord] = []

    def assign_role(self, principal_id: str, role_name: str) -> None:
        self.user_roles[principal_id] = role_name

    async def check_permission(self, principal_id: str, permission: str) -> bool:
        role_name = self.user_roles.get(principal_id)
        if role_name is None:
            return False
        grants = self.role_permissions.get(role_name, set())
        return any(grant_matches(grant, permission) for grant in grants)

    async def fetch_role(self, principal_id: str) -> Role | None:
        role_name = self.user_roles.get(principal_id)
        if role_name is None:
            return None
        return Role(name=role_name, permissions=frozenset(self.role_permissions.get(role_name, set())))

    async def fetch_entities(self, entity_type: str, principal_id: str) -> list[dict[str, Any]]:
        rows = [
            row
            for row in self.records.get(entity_type, {}).values()
            if row.get("user_id") in {None, principal_id}
        ]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return [copy.deepcopy(row) for row in rows]

    async def create_entity(self, entity_type: str, payload: dict[str, Any], principal_id: str) -> dict[str, Any]:
        now = utcnow().isoformat()
        row = {key: value for key, value in copy.deepcopy(payload).items() if key != "id"}
        row.update({"id": str(uuid.uuid4()), "user_id": principal_id, "created_at": now, "updated_at": now})
        self.records.setdefault(entity_type, {})[row["id"]] = row
        return copy.deepcopy(row)

    async def update_entity(self, entity_type: str, entity_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        row = self.records.get(entity_type, {}).get(entity_id)
        if row is None:
            raise NotFoundError(entity_type, entity_id)
        protected = {"id", "user_id", "created_at"}
        row.update({key: value for key, value in copy.deepcopy(changes).items() if key not in protected})
        row["updated_at"] = utcnow().isoformat()
        return copy.deepcopy(row)

    async def delete_entity(self, entity_type: str, entity_id: str) -> None:
        rows = self.records.get(entity_type, {})
        if entity_id not in rows:
            raise NotFoundError(entity_type, entity_id)
        del rows[entity_id]

    async def append_audit_record(self, record: AuditRecord) -> None:
        self.audit_log.append(record)
