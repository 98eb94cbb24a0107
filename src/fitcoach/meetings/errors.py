"""Scheduling errors with their HTTP mapping.

Only the scheduling store raises these. Presence, liveness and signaling
treat a missing entry as a valid default state and have no error path.
"""

from __future__ import annotations

from typing import Any


class MeetingError(Exception):
    """Base class for scheduling failures surfaced to API callers."""

    status_code: int = 500
    default_message: str = "Meeting operation failed"

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_detail(self) -> dict[str, Any]:
        return {"message": self.message, **self.extra}


class ValidationError(MeetingError):
    """Missing or malformed fields, or an unknown status value."""

    status_code = 400
    default_message = "Invalid meeting data"


class ConflictError(MeetingError):
    """The requested slot overlaps one or more existing meetings."""

    status_code = 400
    default_message = "Time slot is already taken by another meeting"

    def __init__(self, conflicts: int, message: str | None = None) -> None:
        self.conflicts = conflicts
        super().__init__(message, conflicts=conflicts)


class NotFoundError(MeetingError):
    status_code = 404
    default_message = "Meeting not found"


class AuthorizationError(MeetingError):
    status_code = 403
    default_message = "Not allowed to modify this meeting"


class DependencyError(MeetingError):
    """A collaborator (database, notification relay) failed.

    The message is returned to the caller; the underlying cause is only
    logged.
    """

    status_code = 500
    default_message = "A backing service failed"
