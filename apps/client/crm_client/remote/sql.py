from __future__ import annotations

import asyncio
import uuid
from typing import Any

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from crm_client.audit.schemas import AuditRecord
from crm_client.context import get_correlation_id
from crm_client.security.permissions import grant_matches
from crm_client.remote.database import create_session_factory
from crm_client.remote.errors import AuditWriteError, NotFoundError, RemoteError
from crm_client.remote.models import AuditLog, CRMRecord, Permission, Role, RolePermission, UserRole, grant_key, utcnow
from crm_client.security.principal import Role as PrincipalRole


tracer = trace.get_tracer("crm_client.remote.sql")


class SqlRemoteAuthority:
    """Remote authority backed by a SQLAlchemy database.

    Blocking database work runs in a worker thread so the event loop stays
    free while a mutation is in flight.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory or create_session_factory()

    async def check_permission(self, principal_id: str, permission: str) -> bool:
        return await self._run("remote.check_permission", self._check_permission, principal_id, permission)

    async def fetch_role(self, principal_id: str) -> PrincipalRole | None:
        return await self._run("remote.fetch_role", self._fetch_role, principal_id)

    async def fetch_entities(self, entity_type: str, principal_id: str) -> list[dict[str, Any]]:
        return await self._run("remote.fetch_entities", self._fetch_entities, entity_type, principal_id)

    async def create_entity(self, entity_type: str, payload: dict[str, Any], principal_id: str) -> dict[str, Any]:
        return await self._run("remote.create_entity", self._create_entity, entity_type, payload, principal_id)

    async def update_entity(self, entity_type: str, entity_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        return await self._run("remote.update_entity", self._update_entity, entity_type, entity_id, changes)

    async def delete_entity(self, entity_type: str, entity_id: str) -> None:
        await self._run("remote.delete_entity", self._delete_entity, entity_type, entity_id)

    async def append_audit_record(self, record: AuditRecord) -> None:
        try:
            await self._run("remote.append_audit_record", self._append_audit_record, record)
        except RemoteError as exc:
            raise AuditWriteError(exc.message, status_code=exc.status_code) from exc

    async def _run(self, span_name: str, func: Any, *args: Any) -> Any:
        with tracer.start_as_current_span(span_name) as span:
            span.set_attribute("correlation_id", get_correlation_id() or "")
            try:
                return await asyncio.to_thread(func, *args)
            except SQLAlchemyError as exc:
                span.record_exception(exc)
                raise RemoteError("The server could not complete the request", status_code=500) from exc

    def _check_permission(self, principal_id: str, permission: str) -> bool:
        with self._session_factory() as session:
            rows = session.execute(
                select(Permission.resource, Permission.action)
                .select_from(UserRole)
                .join(RolePermission, RolePermission.role_id == UserRole.role_id)
                .join(Permission, Permission.id == RolePermission.permission_id)
                .where(UserRole.user_id == principal_id)
            ).all()
        grants = {grant_key(row.resource, row.action) for row in rows}
        return any(grant_matches(grant, permission) for grant in grants)

    def _fetch_role(self, principal_id: str) -> PrincipalRole | None:
        with self._session_factory() as session:
            role = session.scalar(
                select(Role).join(UserRole, UserRole.role_id == Role.id).where(UserRole.user_id == principal_id)
            )
            if role is None:
                return None
            keys = frozenset(mapping.permission.key for mapping in role.permissions)
            return PrincipalRole(name=role.name, permissions=keys, description=role.description)

    def _fetch_entities(self, entity_type: str, principal_id: str) -> list[dict[str, Any]]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(CRMRecord)
                .where(CRMRecord.entity_type == entity_type, CRMRecord.user_id == principal_id)
                .order_by(CRMRecord.created_at.desc())
            ).all()
            return [self._to_payload(row) for row in rows]

    def _create_entity(self, entity_type: str, payload: dict[str, Any], principal_id: str) -> dict[str, Any]:
        body = {key: value for key, value in payload.items() if key not in {"id", "user_id", "created_at", "updated_at"}}
        with self._session_factory() as session:
            row = CRMRecord(entity_type=entity_type, user_id=principal_id, payload=body)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_payload(row)

    def _update_entity(self, entity_type: str, entity_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        with self._session_factory() as session:
            row = self._get_row(session, entity_type, entity_id)
            body = dict(row.payload)
            body.update({key: value for key, value in changes.items() if key not in {"id", "user_id", "created_at", "updated_at"}})
            row.payload = body
            row.row_version += 1
            row.updated_at = utcnow()
            session.commit()
            session.refresh(row)
            return self._to_payload(row)

    def _delete_entity(self, entity_type: str, entity_id: str) -> None:
        with self._session_factory() as session:
            row = self._get_row(session, entity_type, entity_id)
            session.delete(row)
            session.commit()

    def _append_audit_record(self, record: AuditRecord) -> None:
        with self._session_factory() as session:
            session.add(
                AuditLog(
                    id=record.id,
                    principal_id=record.principal_id,
                    entity_type=record.entity_type,
                    entity_id=record.entity_id,
                    action=record.action,
                    changed_fields=list(record.changed_fields),
                    compliance_level=record.compliance_level,
                    risk_score=record.risk_score,
                    description=record.description,
                    retention_period=record.retention_period,
                    correlation_id=record.correlation_id,
                    created_at=record.created_at,
                )
            )
            session.commit()

    @staticmethod
    def _get_row(session: Session, entity_type: str, entity_id: str) -> CRMRecord:
        try:
            record_id = uuid.UUID(entity_id)
        except ValueError:
            raise NotFoundError(entity_type, entity_id) from None
        row = session.scalar(select(CRMRecord).where(CRMRecord.id == record_id, CRMRecord.entity_type == entity_type))
        if row is None:
            raise NotFoundError(entity_type, entity_id)
        return row

    @staticmethod
    def _to_payload(row: CRMRecord) -> dict[str, Any]:
        return {
            **row.payload,
            "id": str(row.id),
            "user_id": row.user_id,
            "created_at": row.created_at.isoformat(),
            "updated_at": row.updated_at.isoformat(),
        }
