from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, TypeVar

from opentelemetry import trace

from crm_client.core.config import get_settings
from crm_client.metrics import observe_permission_cache_hit, observe_permission_cache_miss, observe_permission_decision
from crm_client.security.errors import PermissionDenied, PermissionLookupError, RoleRequired
from crm_client.security.permissions import permission_key
from crm_client.security.principal import Principal
from crm_client.security.session import AuthSession

if TYPE_CHECKING:
    from crm_client.remote.authority import RemoteAuthority


T = TypeVar("T")

logger = logging.getLogger("crm_client.gate")
tracer = trace.get_tracer("crm_client.security.gate")


class DecisionSource(StrEnum):
    BREAK_GLASS = "break_glass"
    CACHE = "cache"
    REMOTE = "remote"
    LOOKUP_FAILED = "lookup_failed"
    ANONYMOUS = "anonymous"


@dataclass(slots=True)
class PermissionDecision:
    permission: str
    allowed: bool
    source: DecisionSource
    error: Exception | None = None


class PolicyGate:
    """Single choke-point for permission checks.

    Every public entry point asks ``is_break_glass`` before anything else, then
    the session's permission cache, then (async paths only) the remote
    authority. A failed remote lookup counts as a denial and is not cached.
    """

    def __init__(
        self,
        session: AuthSession,
        authority: RemoteAuthority,
        *,
        break_glass_email: str | None = None,
    ) -> None:
        self.session = session
        self.authority = authority
        if break_glass_email is None:
            break_glass_email = get_settings().break_glass_email
        self._break_glass_email = break_glass_email.strip().lower() if break_glass_email else None

    def is_break_glass(self, principal: Principal | None = None) -> bool:
        principal = principal if principal is not None else self.session.principal
        if principal is None or self._break_glass_email is None:
            return False
        return principal.email.strip().lower() == self._break_glass_email

    async def check_permission(self, permission: str) -> bool:
        decision = await self.decide(permission)
        return decision.allowed

    async def enforce_permission(self, permission: str) -> None:
        decision = await self.decide(permission)
        if decision.allowed:
            return
        if decision.error is not None:
            raise PermissionLookupError(permission) from decision.error
        raise PermissionDenied(permission)

    async def enforce_policy(self, permission: str, operation: Callable[[], T | Awaitable[T]]) -> T:
        await self.enforce_permission(permission)
        result = operation()
        if inspect.isawaitable(result):
            return await result
        return result

    async def decide(self, permission: str) -> PermissionDecision:
        principal = self.session.principal
        if self.is_break_glass(principal):
            return self._finish(PermissionDecision(permission, True, DecisionSource.BREAK_GLASS))
        if principal is None:
            return self._finish(PermissionDecision(permission, False, DecisionSource.ANONYMOUS))

        cache = self.session.cache
        cached = cache.get(permission)
        if cached is not None:
            observe_permission_cache_hit()
            return self._finish(PermissionDecision(permission, cached, DecisionSource.CACHE))

        observe_permission_cache_miss()
        with tracer.start_as_current_span("gate.check_permission") as span:
            span.set_attribute("permission", permission)
            span.set_attribute("principal_id", principal.id)
            try:
                allowed = bool(await self.authority.check_permission(principal.id, permission))
            except Exception as exc:
                span.record_exception(exc)
                logger.warning(
                    "gate.lookup_failed",
                    extra={"permission": permission, "principal_id": principal.id, "error": str(exc)},
                )
                return self._finish(PermissionDecision(permission, False, DecisionSource.LOOKUP_FAILED, error=exc))
            span.set_attribute("allowed", allowed)

        # The principal may have changed while the lookup was in flight.
        if cache.principal_id == principal.id and self.session.principal is principal:
            cache.set(permission, allowed)
        return self._finish(PermissionDecision(permission, allowed, DecisionSource.REMOTE))

    def has_permission(self, permission: str) -> bool:
        if self.is_break_glass():
            return True
        if self.session.principal is None:
            return False
        return self.session.cache.get(permission) is True

    def has_resource_action(self, resource: str, action: str) -> bool:
        return self.has_permission(permission_key(resource, action))

    def require_permission(self, permission: str) -> None:
        if not self.has_permission(permission):
            raise PermissionDenied(permission)

    def has_role(self, *roles: str) -> bool:
        if self.is_break_glass():
            return True
        principal = self.session.principal
        if principal is None:
            return False
        return principal.role.name in roles

    def require_role(self, role: str) -> None:
        if not self.has_role(role):
            raise RoleRequired(role)

    def _finish(self, decision: PermissionDecision) -> PermissionDecision:
        observe_permission_decision(decision.source.value, decision.allowed)
        if not decision.allowed:
            principal = self.session.principal
            logger.info(
                "gate.denied",
                extra={
                    "permission": decision.permission,
                    "principal_id": principal.id if principal is not None else None,
                    "source": decision.source.value,
                },
            )
        return decision