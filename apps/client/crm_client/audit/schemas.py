from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class AuditAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    CONVERTED = "converted"
    EXPORTED = "exported"
    SHARED = "shared"


class ComplianceLevel(StrEnum):
    STANDARD = "standard"
    HIGH = "high"
    CRITICAL = "critical"


class AuditRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    principal_id: str
    entity_type: str
    entity_id: str
    action: str
    changed_fields: frozenset[str] = frozenset()
    compliance_level: ComplianceLevel
    risk_score: int = Field(ge=0, le=100)
    description: str | None = None
    retention_period: str = "7 years"
    correlation_id: str | None = None
    created_at: datetime


class AuditFilters(BaseModel):
    entity_type: str | None = None
    entity_id: str | None = None
    action: str | None = None
    compliance_level: ComplianceLevel | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None

    def matches(self, record: AuditRecord) -> bool:
        if self.entity_type is not None and record.entity_type != self.entity_type:
            return False
        if self.entity_id is not None and record.entity_id != self.entity_id:
            return False
        if self.action is not None and record.action != self.action:
            return False
        if self.compliance_level is not None and record.compliance_level != self.compliance_level:
            return False
        if self.date_from is not None and record.created_at < self.date_from:
            return False
        if self.date_to is not None and record.created_at > self.date_to:
            return False
        return True
