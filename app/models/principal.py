from __future__ import annotations

from dataclasses import dataclass

INSTRUCTOR_ROLES = frozenset({"admin", "instructor"})


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller, built from a validated bearer token.

    user_id: token subject (the student id for students)
    roles: platform roles (admin, instructor, student)
    name: display name, used for gradebook rows
    """

    user_id: str
    roles: frozenset[str]
    name: str | None = None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str] | frozenset[str]) -> bool:
        return bool(self.roles & roles)

    def is_instructor(self) -> bool:
        return self.has_any_role(INSTRUCTOR_ROLES)

    @property
    def display_name(self) -> str:
        return self.name or self.user_id
