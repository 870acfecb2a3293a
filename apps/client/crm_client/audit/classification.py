from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from crm_client.audit.schemas import AuditAction, ComplianceLevel


CRITICAL_ENTITY_TYPES = frozenset({"customers", "invoices", "payments", "signed_documents"})
HIGH_RISK_ACTIONS = frozenset({AuditAction.DELETED, AuditAction.EXPORTED, AuditAction.SHARED})
HIGH_ENTITY_TYPES = frozenset({"estimates"})

BASE_RISK_BY_ACTION = {
    AuditAction.DELETED: 50,
    AuditAction.UPDATED: 10,
    AuditAction.CREATED: 5,
}
DEFAULT_BASE_RISK = 1
SENSITIVE_FIELD_TERMS = ("amount", "total", "email", "phone", "address", "status")
SENSITIVE_FIELD_WEIGHT = 10
MAX_RISK_SCORE = 100

_MISSING = object()


def _strictly_equal(left: Any, right: Any) -> bool:
    if left is right:
        return True
    if left is _MISSING or right is _MISSING:
        return False
    if isinstance(left, str) and isinstance(right, str):
        return str.__str__(left) == str.__str__(right)
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    return type(left) is type(right) and left == right


def diff_fields(before: Mapping[str, Any] | None, after: Mapping[str, Any] | None) -> set[str]:
    """Top-level keys whose values differ between two snapshots.

    A missing key and an explicit ``None`` are different values. Creation and
    deletion (either snapshot absent) produce no field-level diff.
    """
    if before is None or after is None:
        return set()

    changed: set[str] = set()
    for key in before.keys() | after.keys():
        if not _strictly_equal(before.get(key, _MISSING), after.get(key, _MISSING)):
            changed.add(key)
    return changed


def classify_compliance(entity_type: str, action: str) -> ComplianceLevel:
    if entity_type in CRITICAL_ENTITY_TYPES or action in HIGH_RISK_ACTIONS:
        return ComplianceLevel.CRITICAL
    if entity_type in HIGH_ENTITY_TYPES or action == AuditAction.UPDATED:
        return ComplianceLevel.HIGH
    return ComplianceLevel.STANDARD


def is_sensitive_field(field_name: str) -> bool:
    lowered = field_name.lower()
    return any(term in lowered for term in SENSITIVE_FIELD_TERMS)


def compute_risk_score(action: str, changed_fields: Iterable[str]) -> int:
    score = BASE_RISK_BY_ACTION.get(action, DEFAULT_BASE_RISK)
    score += SENSITIVE_FIELD_WEIGHT * sum(1 for field_name in changed_fields if is_sensitive_field(field_name))
    return min(score, MAX_RISK_SCORE)
