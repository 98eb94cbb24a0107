"""Caller identity and the single role predicate used across the app.

Every role comparison (meeting ownership checks, presence entries,
connection slots, signaling flags) goes through Role.parse() so that
"admin", "Admin" and "ADMIN" are never treated as different roles.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Account role. Trainers are ADMIN, clients are USER."""

    ADMIN = "ADMIN"
    USER = "USER"

    @classmethod
    def parse(cls, value: str | Role) -> Role:
        """Case-insensitive conversion from a raw role string.

        Raises:
            ValueError: If the value is not a known role.
        """
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}") from None

    @property
    def slot(self) -> str:
        """Lowercase key used for per-role slots (``admin`` / ``user``)."""
        return self.value.lower()


GUEST_ID = "guest"


@dataclass(frozen=True)
class Caller:
    """The authenticated principal behind a request."""

    id: str
    role: Role
    name: str | None = None
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_guest(self) -> bool:
        return self.id == GUEST_ID


def guest_caller() -> Caller:
    """Anonymous USER identity for the reserved guest credential."""
    return Caller(id=GUEST_ID, role=Role.USER, name="Guest User")


def can_manage(caller: Caller, owner_id: str | int) -> bool:
    """True if the caller owns the resource or holds the ADMIN role."""
    return caller.is_admin or caller.id == str(owner_id)
