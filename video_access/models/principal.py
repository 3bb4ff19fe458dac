from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    Passed explicitly into every access call; the core never looks up a
    "current user" on its own.

        user_id: subject from JWT
        roles: platform roles (admin, user)
    """

    user_id: str
    roles: frozenset[str] = frozenset()

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_platform_admin(self) -> bool:
        return "admin" in self.roles


@dataclass(frozen=True, slots=True)
class ClientInfo:
    """Network facts about the caller, recorded on every access log entry."""

    ip_address: str | None = None
    user_agent: str | None = None
