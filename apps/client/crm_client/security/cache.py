from __future__ import annotations

from collections.abc import Iterable

from crm_client.metrics import observe_permission_cache_invalidation
from crm_client.security.permissions import grant_matches, is_wildcard_grant


class PermissionCache:
    """Per-principal memo of permission answers.

    Entries are scoped to the principal passed to the last ``invalidate_all``
    call. The cache never consults the break-glass rule; that check happens in
    the policy gate before any lookup. Wildcard grants primed from a role
    (``*``, ``leads:*``) answer every key they cover, so the synchronous and
    asynchronous gate paths agree.
    """

    def __init__(self) -> None:
        self._entries: dict[str, bool] = {}
        self._wildcards: set[str] = set()
        self._principal_id: str | None = None

    @property
    def principal_id(self) -> str | None:
        return self._principal_id

    def get(self, permission: str) -> bool | None:
        cached = self._entries.get(permission)
        if cached is not None:
            return cached
        if any(grant_matches(grant, permission) for grant in self._wildcards):
            return True
        return None

    def set(self, permission: str, allowed: bool) -> None:
        self._entries[permission] = allowed

    def prime(self, permissions: Iterable[str]) -> None:
        for permission in permissions:
            if is_wildcard_grant(permission):
                self._wildcards.add(permission)
            else:
                self._entries[permission] = True

    def invalidate_all(self, principal_id: str | None = None) -> None:
        self._entries.clear()
        self._wildcards.clear()
        self._principal_id = principal_id
        observe_permission_cache_invalidation()

    def __len__(self) -> int:
        return len(self._entries) + len(self._wildcards)
