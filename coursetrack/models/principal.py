from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Identity supplied by the auth collaborator via a verified JWT.

    user_id: subject claim; for students this is the student id used as
             the enrollment key
    roles:   student | admin | commerce | live_session_provider
    """

    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str]) -> bool:
        return bool(self.roles & roles)
