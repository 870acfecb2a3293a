from __future__ import annotations

from crm_client.core.events import PRINCIPAL_CHANGED, InternalEvent
from crm_client.security.cache import PermissionCache
from crm_client.security.principal import Principal, Role
from crm_client.security.session import AuthSession


def _principal(principal_id: str, *permissions: str, role: str = "staff") -> Principal:
    return Principal(id=principal_id, email=f"{principal_id}@example.com", role=Role(name=role, permissions=frozenset(permissions)))


def test_cache_miss_returns_none() -> None:
    cache = PermissionCache()

    assert cache.get("leads:read") is None


def test_set_overwrites_silently() -> None:
    cache = PermissionCache()

    cache.set("leads:delete", True)
    cache.set("leads:delete", False)

    assert cache.get("leads:delete") is False


def test_invalidate_all_forgets_every_answer_immediately() -> None:
    cache = PermissionCache()
    cache.set("leads:read", True)
    cache.set("leads:delete", False)

    cache.invalidate_all()

    assert cache.get("leads:read") is None
    assert cache.get("leads:delete") is None
    assert len(cache) == 0


def test_sign_in_scopes_cache_to_new_principal() -> None:
    session = AuthSession()
    session.sign_in(_principal("user-a", "leads:read"))
    session.cache.set("invoices:delete", True)

    session.sign_in(_principal("user-b"))

    assert session.cache.principal_id == "user-b"
    assert session.cache.get("invoices:delete") is None
    assert session.cache.get("leads:read") is None


def test_role_change_replaces_principal_and_clears_cache() -> None:
    session = AuthSession()
    original = _principal("user-a", "leads:read")
    session.sign_in(original)
    session.cache.set("jobs:delete", False)

    session.change_role(Role(name="admin", permissions=frozenset({"jobs:delete"})))

    assert session.principal is not original
    assert original.role.name == "staff"
    assert session.principal.role.name == "admin"
    assert session.cache.get("jobs:delete") is True
    assert session.cache.get("leads:read") is None


def test_sign_out_empties_cache_and_publishes_transition() -> None:
    session = AuthSession()
    events: list[InternalEvent] = []
    session.event_bus.subscribe(PRINCIPAL_CHANGED, events.append)
    session.sign_in(_principal("user-a", "leads:read"))

    session.sign_out()

    assert session.principal is None
    assert session.cache.principal_id is None
    assert len(session.cache) == 0
    assert [event.payload["reason"] for event in events] == ["sign_in", "sign_out"]
    assert events[-1].payload["previous_principal_id"] == "user-a"


def test_primed_wildcards_cover_matching_keys_only() -> None:
    cache = PermissionCache()
    cache.prime(["customers:*", "jobs:read"])
    cache.set("customers:delete", False)

    assert cache.get("customers:read") is True
    assert cache.get("customers:delete") is False
    assert cache.get("jobs:read") is True
    assert cache.get("jobs:delete") is None

    cache.invalidate_all("user-2")

    assert cache.get("customers:read") is None
    assert len(cache) == 0
