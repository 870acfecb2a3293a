from __future__ import annotations

from prometheus_client import Counter, Histogram, generate_latest


permission_cache_hit_total = Counter(
    "crm_permission_cache_hit_total",
    "Permission cache hits",
)

permission_cache_miss_total = Counter(
    "crm_permission_cache_miss_total",
    "Permission cache misses",
)

permission_decisions_total = Counter(
    "crm_permission_decisions_total",
    "Permission decisions by source and outcome",
    ["source", "outcome"],
)

permission_cache_invalidations_total = Counter(
    "crm_permission_cache_invalidations_total",
    "Permission cache invalidations",
)

mutations_total = Counter(
    "crm_mutations_total",
    "Optimistic mutations by entity type and terminal state",
    ["entity_type", "state"],
)

mutation_duration_seconds = Histogram(
    "crm_mutation_duration_seconds",
    "Remote round-trip duration of optimistic mutations in seconds",
    ["entity_type"],
)

mutation_rollbacks_total = Counter(
    "crm_mutation_rollbacks_total",
    "Optimistic mutations rolled back by entity type and error kind",
    ["entity_type", "error_kind"],
)

audit_records_total = Counter(
    "crm_audit_records_total",
    "Audit records created by compliance level",
    ["compliance_level"],
)

audit_write_failures_total = Counter(
    "crm_audit_write_failures_total",
    "Audit records that could not be persisted",
    ["entity_type"],
)


def observe_permission_cache_hit() -> None:
    permission_cache_hit_total.inc()


def observe_permission_cache_miss() -> None:
    permission_cache_miss_total.inc()


def observe_permission_decision(source: str, allowed: bool) -> None:
    outcome = "allow" if allowed else "deny"
    permission_decisions_total.labels(source=source, outcome=outcome).inc()


def observe_permission_cache_invalidation() -> None:
    permission_cache_invalidations_total.inc()


def observe_mutation(entity_type: str, state: str, duration: float) -> None:
    mutations_total.labels(entity_type=entity_type, state=state).inc()
    mutation_duration_seconds.labels(entity_type=entity_type).observe(duration)


def observe_mutation_rollback(entity_type: str, error_kind: str) -> None:
    mutation_rollbacks_total.labels(entity_type=entity_type, error_kind=error_kind).inc()


def observe_audit_record(compliance_level: str) -> None:
    audit_records_total.labels(compliance_level=compliance_level).inc()


def observe_audit_write_failure(entity_type: str) -> None:
    audit_write_failures_total.labels(entity_type=entity_type).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()
