from __future__ import annotations

import asyncio

import pytest

from crm_client.remote.errors import RemoteError
from crm_client.remote.memory import InMemoryRemoteAuthority
from crm_client.security.errors import NotSignedIn, PermissionDenied, PermissionLookupError, RoleRequired
from crm_client.security.gate import DecisionSource, PolicyGate
from crm_client.security.principal import Principal, Role
from crm_client.security.session import AuthSession


BREAK_GLASS_EMAIL = "ops@example.com"


class FakeAuthority:
    def __init__(self, answers: dict[str, bool] | None = None, error: Exception | None = None) -> None:
        self.answers = answers or {}
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def check_permission(self, principal_id: str, permission: str) -> bool:
        self.calls.append((principal_id, permission))
        if self.error is not None:
            raise self.error
        return self.answers.get(permission, False)


def _principal(principal_id: str = "user-1", email: str = "staff@example.com", *permissions: str) -> Principal:
    return Principal(id=principal_id, email=email, role=Role(name="staff", permissions=frozenset(permissions)))


def _gate(authority: FakeAuthority, principal: Principal | None = None) -> PolicyGate:
    session = AuthSession()
    if principal is not None:
        session.sign_in(principal)
    return PolicyGate(session, authority, break_glass_email=BREAK_GLASS_EMAIL)


def test_break_glass_principal_bypasses_remote_and_cache() -> None:
    authority = FakeAuthority(answers={"leads:delete": False})
    gate = _gate(authority, _principal(email="Ops@Example.com"))

    assert asyncio.run(gate.check_permission("leads:delete")) is True
    assert authority.calls == []
    assert len(gate.session.cache) == 0


def test_break_glass_applies_to_sync_queries_and_role_guards() -> None:
    gate = _gate(FakeAuthority(), _principal(email=BREAK_GLASS_EMAIL))

    assert gate.has_permission("admin:users") is True
    assert gate.has_resource_action("invoices", "delete") is True
    assert gate.has_role("admin") is True
    gate.require_role("admin")
    gate.require_permission("admin:billing")


def test_no_break_glass_without_configuration() -> None:
    session = AuthSession()
    session.sign_in(_principal(email=BREAK_GLASS_EMAIL))
    gate = PolicyGate(session, FakeAuthority(), break_glass_email="")

    assert gate.is_break_glass() is False
    assert asyncio.run(gate.check_permission("leads:read")) is False


def test_remote_answer_is_cached_for_the_principal() -> None:
    authority = FakeAuthority(answers={"leads:write": True})
    gate = _gate(authority, _principal())

    assert asyncio.run(gate.check_permission("leads:write")) is True
    assert asyncio.run(gate.check_permission("leads:write")) is True

    assert authority.calls == [("user-1", "leads:write")]
    assert gate.session.cache.get("leads:write") is True


def test_denials_are_cached_too() -> None:
    authority = FakeAuthority()
    gate = _gate(authority, _principal())

    decision = asyncio.run(gate.decide("leads:delete"))
    again = asyncio.run(gate.decide("leads:delete"))

    assert decision.allowed is False
    assert decision.source is DecisionSource.REMOTE
    assert again.source is DecisionSource.CACHE
    assert len(authority.calls) == 1


def test_role_permissions_answer_without_remote_lookup() -> None:
    authority = FakeAuthority()
    gate = _gate(authority, _principal("user-1", "staff@example.com", "tasks:write"))

    assert asyncio.run(gate.check_permission("tasks:write")) is True
    assert gate.has_permission("tasks:write") is True
    assert gate.has_permission("tasks:delete") is False
    assert authority.calls == []


def test_remote_failure_fails_closed_and_is_not_cached() -> None:
    authority = FakeAuthority(error=RemoteError("network unreachable"))
    gate = _gate(authority, _principal())

    assert asyncio.run(gate.check_permission("leads:read")) is False
    assert gate.session.cache.get("leads:read") is None

    with pytest.raises(PermissionLookupError) as exc_info:
        asyncio.run(gate.enforce_permission("leads:read"))

    assert isinstance(exc_info.value, PermissionDenied)
    assert isinstance(exc_info.value.__cause__, RemoteError)
    assert len(authority.calls) == 2


def test_enforce_permission_carries_key_and_readable_message() -> None:
    gate = _gate(FakeAuthority(answers={"leads:delete": False}), _principal())

    with pytest.raises(PermissionDenied) as exc_info:
        asyncio.run(gate.enforce_permission("leads:delete"))

    assert type(exc_info.value) is PermissionDenied
    assert exc_info.value.permission == "leads:delete"
    assert exc_info.value.message == "You don't have permission to delete leads"


def test_enforce_policy_never_runs_operation_when_denied() -> None:
    gate = _gate(FakeAuthority(), _principal())
    ran: list[bool] = []

    with pytest.raises(PermissionDenied):
        asyncio.run(gate.enforce_policy("invoices:delete", lambda: ran.append(True)))

    assert ran == []


def test_enforce_policy_returns_sync_and_async_results() -> None:
    gate = _gate(FakeAuthority(answers={"jobs:write": True}), _principal())

    async def remote_operation() -> str:
        return "async-result"

    assert asyncio.run(gate.enforce_policy("jobs:write", lambda: "sync-result")) == "sync-result"
    assert asyncio.run(gate.enforce_policy("jobs:write", remote_operation)) == "async-result"


def test_anonymous_session_is_denied() -> None:
    authority = FakeAuthority(answers={"leads:read": True})
    gate = _gate(authority)

    assert asyncio.run(gate.check_permission("leads:read")) is False
    assert gate.has_permission("leads:read") is False
    assert authority.calls == []


def test_role_guard_rejects_other_roles() -> None:
    gate = _gate(FakeAuthority(), _principal())

    assert gate.has_role("staff") is True
    assert gate.has_role("admin", "owner") is False
    with pytest.raises(RoleRequired):
        gate.require_role("admin")


def test_lookup_result_is_not_cached_across_principal_change() -> None:
    release = asyncio.Event()

    class SlowAuthority(FakeAuthority):
        async def check_permission(self, principal_id: str, permission: str) -> bool:
            self.calls.append((principal_id, permission))
            await release.wait()
            return True

    authority = SlowAuthority()
    gate = _gate(authority, _principal("user-a"))

    async def scenario() -> bool:
        lookup = asyncio.create_task(gate.check_permission("customers:delete"))
        await asyncio.sleep(0)
        gate.session.sign_in(_principal("user-b", "other@example.com"))
        release.set()
        return await lookup

    assert asyncio.run(scenario()) is True
    assert gate.session.cache.principal_id == "user-b"
    assert gate.session.cache.get("customers:delete") is None


def test_require_principal_raises_when_signed_out() -> None:
    session = AuthSession()

    with pytest.raises(NotSignedIn):
        session.require_principal()


@pytest.mark.parametrize("grant", ["*", "leads:*"])
def test_wildcard_role_answers_sync_and_async_alike(grant: str) -> None:
    authority = InMemoryRemoteAuthority(role_permissions={"manager": {grant}}, user_roles={"user-1": "manager"})
    session = AuthSession()
    session.sign_in(_principal("user-1"))
    gate = PolicyGate(session, authority, break_glass_email="")

    role = asyncio.run(session.refresh_role(authority))

    assert role.permissions == frozenset({grant})
    assert gate.has_permission("leads:read") is True
    assert gate.has_resource_action("leads", "delete") is True
    gate.require_permission("leads:update")
    assert asyncio.run(gate.check_permission("leads:read")) is True
    assert asyncio.run(gate.decide("leads:read")).source is DecisionSource.CACHE
    if grant == "leads:*":
        assert gate.has_permission("invoices:read") is False
