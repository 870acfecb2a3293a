from __future__ import annotations

import asyncio

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from crm_client.client import CRMClient
from crm_client.context import reset_correlation_id, set_correlation_id
from crm_client.core.config import Settings
from crm_client.otel import setup_inmemory_otel
from crm_client.remote.errors import RemoteError
from crm_client.remote.memory import InMemoryRemoteAuthority
from crm_client.security.principal import Principal, Role


class SilentNotifier:
    def notify(self, kind, message, *, description=None, retry=None) -> None:
        return None


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel(Settings(break_glass_email=""))
    exporter.clear()
    return exporter


@pytest.fixture()
def client() -> CRMClient:
    authority = InMemoryRemoteAuthority(
        role_permissions={"staff": {"tasks:write", "tasks:update"}},
        user_roles={"user-1": "staff"},
    )
    crm = CRMClient(authority, notifier=SilentNotifier(), settings=Settings(break_glass_email=""))
    crm.sign_in(Principal(id="user-1", email="staff@example.com", role=Role(name="staff")))
    return crm


def test_create_emits_gate_mutation_and_audit_spans(client: CRMClient, span_exporter: InMemorySpanExporter) -> None:
    token = set_correlation_id("corr-otel-1")
    try:
        created = asyncio.run(client.tasks.create({"title": "Call back"}))
    finally:
        reset_correlation_id(token)

    spans = {span.name: span for span in span_exporter.get_finished_spans()}
    assert {"gate.check_permission", "mutation.execute", "audit.append"} <= set(spans)

    gate_span = spans["gate.check_permission"]
    assert gate_span.attributes is not None
    assert gate_span.attributes.get("permission") == "tasks:write"
    assert gate_span.attributes.get("allowed") is True

    mutation_span = spans["mutation.execute"]
    assert mutation_span.attributes is not None
    assert mutation_span.attributes.get("entity_type") == "tasks"
    assert mutation_span.attributes.get("state") == "reconciled"

    audit_span = spans["audit.append"]
    assert audit_span.attributes is not None
    assert audit_span.attributes.get("entity_id") == created["id"]


def test_failed_mutation_span_records_error(client: CRMClient, span_exporter: InMemorySpanExporter) -> None:
    created = asyncio.run(client.tasks.create({"title": "Call back"}))
    span_exporter.clear()

    async def broken_update(entity_type, entity_id, changes):
        raise RemoteError("Row is locked")

    client.authority.update_entity = broken_update  # type: ignore[method-assign]

    with pytest.raises(RemoteError):
        asyncio.run(client.tasks.update(created["id"], {"title": "Email instead"}))

    mutation_spans = [span for span in span_exporter.get_finished_spans() if span.name == "mutation.execute"]
    assert len(mutation_spans) == 1
    assert not mutation_spans[0].status.is_ok
    assert any(event.name == "exception" for event in mutation_spans[0].events)
