from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from opentelemetry import trace

from crm_client.audit.classification import classify_compliance, compute_risk_score, diff_fields
from crm_client.audit.schemas import AuditFilters, AuditRecord
from crm_client.context import get_correlation_id
from crm_client.core.config import Settings, get_settings
from crm_client.metrics import observe_audit_record, observe_audit_write_failure
from crm_client.remote.timeouts import await_with_timeout
from crm_client.security.principal import Principal
from crm_client.security.session import AuthSession

if TYPE_CHECKING:
    from crm_client.remote.authority import RemoteAuthority


logger = logging.getLogger("crm_client.audit")
tracer = trace.get_tracer("crm_client.audit.recorder")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditRecorder:
    """Builds field-level audit records and persists them best-effort.

    Records are appended to the local trail before the remote write is
    attempted. A failed remote write is logged and counted, never raised.
    """

    def __init__(self, session: AuthSession, authority: RemoteAuthority, *, settings: Settings | None = None) -> None:
        self.session = session
        self.authority = authority
        self.settings = settings or get_settings()
        self._entries: list[AuditRecord] = []

    @property
    def entries(self) -> tuple[AuditRecord, ...]:
        return tuple(self._entries)

    async def record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
        description: str | None = None,
        *,
        principal: Principal | None = None,
    ) -> AuditRecord:
        attributed = principal or self.session.require_principal()
        changed = diff_fields(before, after)
        record = AuditRecord(
            principal_id=attributed.id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            changed_fields=frozenset(changed),
            compliance_level=classify_compliance(entity_type, action),
            risk_score=compute_risk_score(action, changed),
            description=description or f"{action} {entity_type}",
            retention_period=self.settings.audit_retention_period,
            correlation_id=get_correlation_id(),
            created_at=utcnow(),
        )
        self._entries.append(record)
        observe_audit_record(record.compliance_level.value)

        if self.settings.audit_enabled:
            await self._persist(record)
        return record

    def query(self, filters: AuditFilters | None = None, limit: int = 100) -> list[AuditRecord]:
        resolved = filters or AuditFilters()
        matched = [record for record in reversed(self._entries) if resolved.matches(record)]
        return matched[:limit]

    async def _persist(self, record: AuditRecord) -> None:
        with tracer.start_as_current_span("audit.append") as span:
            span.set_attribute("entity_type", record.entity_type)
            span.set_attribute("entity_id", record.entity_id)
            span.set_attribute("compliance_level", record.compliance_level.value)
            try:
                await await_with_timeout(
                    self.authority.append_audit_record(record),
                    self.settings.request_timeout_seconds,
                )
            except Exception as exc:
                span.record_exception(exc)
                observe_audit_write_failure(record.entity_type)
                logger.warning(
                    "audit.write_failed",
                    extra={
                        "entity_type": record.entity_type,
                        "entity_id": record.entity_id,
                        "action": record.action,
                        "error": str(exc) or exc.__class__.__name__,
                    },
                )
                return

        logger.info(
            "audit.recorded",
            extra={
                "entity_type": record.entity_type,
                "entity_id": record.entity_id,
                "action": record.action,
                "compliance_level": record.compliance_level.value,
                "risk_score": record.risk_score,
            },
        )
