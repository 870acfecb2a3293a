from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from crm_client.core.events import PRINCIPAL_CHANGED, InProcessEventBus
from crm_client.security.cache import PermissionCache
from crm_client.security.errors import NotSignedIn
from crm_client.security.principal import NO_ROLE, Principal, Role

if TYPE_CHECKING:
    from crm_client.remote.authority import RemoteAuthority


logger = logging.getLogger("crm_client.session")


class AuthSession:
    """Holds the current principal and owns the permission cache scoped to it.

    Every principal transition clears the cache in the same synchronous step
    that swaps the principal, so no lookup can observe entries from the
    previous principal.
    """

    def __init__(self, cache: PermissionCache | None = None, event_bus: InProcessEventBus | None = None) -> None:
        self.cache = cache or PermissionCache()
        self.event_bus = event_bus or InProcessEventBus()
        self._principal: Principal | None = None

    @property
    def principal(self) -> Principal | None:
        return self._principal

    def require_principal(self) -> Principal:
        if self._principal is None:
            raise NotSignedIn()
        return self._principal

    def sign_in(self, principal: Principal) -> None:
        self._transition(principal, reason="sign_in")

    def sign_out(self) -> None:
        self._transition(None, reason="sign_out")

    def change_role(self, role: Role) -> None:
        principal = self.require_principal()
        self._transition(replace(principal, role=role), reason="role_change")

    async def refresh_role(self, authority: RemoteAuthority) -> Role:
        principal = self.require_principal()
        try:
            role = await authority.fetch_role(principal.id)
        except Exception:
            logger.warning("session.role_fetch_failed", exc_info=True, extra={"principal_id": principal.id})
            self.change_role(NO_ROLE)
            raise
        resolved = role or NO_ROLE
        self.change_role(resolved)
        return resolved

    def _transition(self, principal: Principal | None, *, reason: str) -> None:
        previous = self._principal
        self.cache.invalidate_all(principal.id if principal is not None else None)
        self._principal = principal
        if principal is not None:
            self.cache.prime(principal.role.permissions)

        logger.info(
            "session.principal_changed",
            extra={"principal_id": principal.id if principal is not None else None, "action": reason},
        )
        self.event_bus.publish(
            PRINCIPAL_CHANGED,
            {
                "reason": reason,
                "previous_principal_id": previous.id if previous is not None else None,
                "principal_id": principal.id if principal is not None else None,
            },
        )
