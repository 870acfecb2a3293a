from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from crm_client.security.principal import Role

if TYPE_CHECKING:
    from crm_client.audit.schemas import AuditRecord


class RemoteAuthority(Protocol):
    """The authoritative store behind the client. Transport, auth tokens and retries live behind it."""

    async def check_permission(self, principal_id: str, permission: str) -> bool: ...

    async def fetch_role(self, principal_id: str) -> Role | None: ...

    async def fetch_entities(self, entity_type: str, principal_id: str) -> list[dict[str, Any]]: ...

    async def create_entity(self, entity_type: str, payload: dict[str, Any], principal_id: str) -> dict[str, Any]: ...

    async def update_entity(self, entity_type: str, entity_id: str, changes: dict[str, Any]) -> dict[str, Any]: ...

    async def delete_entity(self, entity_type: str, entity_id: str) -> None: ...

    async def append_audit_record(self, record: AuditRecord) -> None: ...
