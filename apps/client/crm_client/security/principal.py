from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class Role:
    """Named bundle of permission keys, immutable once fetched."""

    name: str
    permissions: frozenset[str] = field(default_factory=frozenset)
    description: str | None = None


@dataclass(slots=True, frozen=True)
class Principal:
    """Identity of the current session. Replaced on every transition, never mutated."""

    id: str
    email: str
    role: Role


NO_ROLE = Role(name="none")
