from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from crm_client.audit.recorder import AuditRecorder
from crm_client.audit.schemas import AuditAction
from crm_client.core.events import PRINCIPAL_CHANGED, InternalEvent
from crm_client.entities.collection import Entity, EntityCollection
from crm_client.mutations.errors import resolve_error_message
from crm_client.mutations.executor import OptimisticMutationExecutor, new_temp_id
from crm_client.mutations.notifier import NotificationKind, Notifier
from crm_client.remote.errors import NotFoundError, RemoteError
from crm_client.security.errors import AuthorizationError
from crm_client.security.gate import PolicyGate
from crm_client.security.permissions import PermissionAction, Resource, permission_key
from crm_client.security.principal import Principal
from crm_client.security.session import AuthSession

if TYPE_CHECKING:
    from crm_client.remote.authority import RemoteAuthority


logger = logging.getLogger("crm_client.entities")


class EntityHook:
    """Gated, optimistic, audited CRUD over one entity type.

    The hook owns its collection; the executor only ever sees the closures
    built here.
    """

    def __init__(
        self,
        resource: Resource | str,
        *,
        session: AuthSession,
        gate: PolicyGate,
        executor: OptimisticMutationExecutor,
        recorder: AuditRecorder,
        authority: RemoteAuthority,
        notifier: Notifier,
        label: str | None = None,
    ) -> None:
        self.entity_type = str(resource)
        self.label = label or self.entity_type.removesuffix("s").replace("_", " ").capitalize()
        self.session = session
        self.gate = gate
        self.executor = executor
        self.recorder = recorder
        self.authority = authority
        self.notifier = notifier
        self.collection = EntityCollection()
        session.event_bus.subscribe(PRINCIPAL_CHANGED, self._on_principal_changed)

    @property
    def items(self) -> list[Entity]:
        return list(self.collection)

    def get(self, entity_id: str) -> Entity | None:
        return self.collection.get(entity_id)

    async def fetch(self) -> list[Entity]:
        if self.session.principal is None:
            self.collection.clear()
            return []

        principal = await self._authorize(PermissionAction.READ)
        try:
            rows = await self.authority.fetch_entities(self.entity_type, principal.id)
        except RemoteError as exc:
            self.notifier.notify(
                NotificationKind.ERROR,
                f"Failed to fetch {self.entity_type}",
                description=resolve_error_message(exc),
                retry=self.fetch,
            )
            raise
        # A sign-out or sign-in may have happened while the request was in flight.
        if self.session.principal is principal:
            self.collection.reset(rows)
        logger.info("entities.fetched", extra={"entity_type": self.entity_type, "principal_id": principal.id})
        return self.items

    async def create(self, data: dict[str, Any]) -> Entity:
        principal = await self._authorize(PermissionAction.WRITE)
        temp_id = new_temp_id()
        speculative = {**data, "id": temp_id, "user_id": principal.id}

        async def perform() -> Entity:
            created = await self.authority.create_entity(self.entity_type, data, principal.id)
            self.collection.replace(temp_id, created)
            return created

        created = await self.executor.execute(
            lambda: self.collection.upsert(speculative),
            perform,
            lambda: self.collection.remove(temp_id),
            success_message=f"{self.label} created successfully",
            error_message=f"Failed to create {self.label.lower()}",
            entity_type=self.entity_type,
            temp_id=temp_id,
            speculative=speculative,
            retry=lambda: self.create(data),
        )
        await self.recorder.record(
            self.entity_type,
            str(created["id"]),
            AuditAction.CREATED,
            None,
            created,
            description=f"{self.label} created",
            principal=principal,
        )
        return created

    async def update(self, entity_id: str, changes: dict[str, Any]) -> Entity:
        principal = await self._authorize(PermissionAction.UPDATE)
        previous, index = self._require_local(entity_id)
        speculative = {**previous, **changes, "id": entity_id}

        async def perform() -> Entity:
            updated = await self.authority.update_entity(self.entity_type, entity_id, changes)
            self.collection.replace(entity_id, updated)
            return updated

        updated = await self.executor.execute(
            lambda: self.collection.upsert(speculative),
            perform,
            lambda: self.collection.insert(index, previous),
            success_message=f"{self.label} updated successfully",
            error_message=f"Failed to update {self.label.lower()}",
            entity_type=self.entity_type,
            temp_id=new_temp_id(),
            speculative=speculative,
            retry=lambda: self.update(entity_id, changes),
        )
        await self.recorder.record(
            self.entity_type,
            entity_id,
            AuditAction.UPDATED,
            previous,
            updated,
            description=f"{self.label} updated",
            principal=principal,
        )
        return updated

    async def delete(self, entity_id: str) -> None:
        principal = await self._authorize(PermissionAction.DELETE)
        previous, index = self._require_local(entity_id)

        async def perform() -> None:
            await self.authority.delete_entity(self.entity_type, entity_id)

        await self.executor.execute(
            lambda: self.collection.remove(entity_id),
            perform,
            lambda: self.collection.insert(index, previous),
            success_message=f"{self.label} deleted successfully",
            error_message=f"Failed to delete {self.label.lower()}",
            entity_type=self.entity_type,
            temp_id=new_temp_id(),
            retry=lambda: self.delete(entity_id),
        )
        await self.recorder.record(
            self.entity_type,
            entity_id,
            AuditAction.DELETED,
            previous,
            None,
            description=f"{self.label} deleted",
            principal=principal,
        )

    async def _authorize(self, action: PermissionAction) -> Principal:
        try:
            principal = self.session.require_principal()
            await self.gate.enforce_permission(permission_key(self.entity_type, action))
        except AuthorizationError as exc:
            self.notifier.notify(NotificationKind.ERROR, resolve_error_message(exc))
            raise
        return principal

    def _require_local(self, entity_id: str) -> tuple[Entity, int]:
        index = self.collection.index_of(entity_id)
        if index is None:
            self.notifier.notify(NotificationKind.ERROR, f"{self.label} not found")
            raise NotFoundError(self.entity_type, entity_id)
        return dict(self.collection.get(entity_id) or {}), index

    def _on_principal_changed(self, event: InternalEvent) -> None:
        self.collection.clear()


LEAD_CONVERSION_FIELDS = ("first_name", "last_name", "email", "phone", "address", "city", "state", "zip_code", "notes")


class LeadHook(EntityHook):
    def __init__(self, **kwargs: Any) -> None:
        super().__init__(Resource.LEADS, **kwargs)

    async def convert_to_customer(self, lead_id: str, customers: EntityHook) -> Entity:
        lead, _ = self._require_local(lead_id)
        principal = self.session.require_principal()

        customer = await customers.create(
            {
                **{name: lead.get(name) for name in LEAD_CONVERSION_FIELDS if name in lead},
                "lead_id": lead_id,
            }
        )
        await self.update(lead_id, {"status": "won"})

        full_name = " ".join(part for part in (lead.get("first_name"), lead.get("last_name")) if part)
        await self.recorder.record(
            self.entity_type,
            lead_id,
            AuditAction.CONVERTED,
            None,
            None,
            description=f"Lead converted to customer: {full_name}".rstrip(": "),
            principal=principal,
        )
        self.notifier.notify(NotificationKind.SUCCESS, "Lead converted to customer successfully")
        return customer
