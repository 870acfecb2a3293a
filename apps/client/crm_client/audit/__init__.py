from crm_client.audit.classification import classify_compliance, compute_risk_score, diff_fields
from crm_client.audit.export import export_csv
from crm_client.audit.recorder import AuditRecorder
from crm_client.audit.schemas import AuditAction, AuditFilters, AuditRecord, ComplianceLevel

__all__ = [
    "AuditAction",
    "AuditFilters",
    "AuditRecord",
    "AuditRecorder",
    "ComplianceLevel",
    "classify_compliance",
    "compute_risk_score",
    "diff_fields",
    "export_csv",
]
