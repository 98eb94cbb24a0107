"""Pydantic v2 schemas for the meeting scheduling domain.

Defines the data contracts for persisted meetings, their owners, and the
request bodies accepted by the scheduling store. Live-room state
(presence, liveness, signaling) lives in src.fitcoach.meetings.rooms.schemas.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum

from pydantic import BaseModel, EmailStr, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingStatus(str, Enum):
    """Flat meeting status set. Any status may move to any other status."""

    PENDING = "pending"
    COMPLETE = "complete"
    CANCEL = "cancel"

    @classmethod
    def parse(cls, value: str | None) -> MeetingStatus:
        """Case-insensitive lookup; "COMPLETE", "Complete" and "complete" are equal.

        Raises:
            ValueError: If the value is empty or not a known status.
        """
        if not value or not isinstance(value, str):
            raise ValueError("Status is required")
        try:
            return cls(value.strip().lower())
        except ValueError:
            allowed = ", ".join(s.value for s in cls)
            raise ValueError(f"Invalid status. Must be one of: {allowed}") from None


# ── Meeting Models ───────────────────────────────────────────────────────────


class MeetingOwner(BaseModel):
    """Minimal owner identity joined onto meeting listings."""

    id: int
    first_name: str
    last_name: str
    email: str

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Meeting(BaseModel):
    """A scheduled meeting. Times are local "HH:MM" strings on ``date``."""

    id: int
    user_id: int
    title: str
    description: str = ""
    date: dt.date
    start_time: str
    end_time: str
    status: MeetingStatus = MeetingStatus.PENDING
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class MeetingWithOwner(Meeting):
    """Meeting plus the owner's identity, for admin-facing listings."""

    owner: MeetingOwner | None = None


# ── Request Models ───────────────────────────────────────────────────────────


class MeetingCreate(BaseModel):
    """Request body for scheduling a meeting.

    Required fields are declared optional so that missing values surface as
    a scheduling ValidationError (400) with a stable message rather than a
    framework-level 422.
    """

    title: str | None = None
    description: str | None = None
    date: str | None = Field(None, description="Calendar day, YYYY-MM-DD")
    start_time: str | None = Field(None, description="Local start, HH:MM")
    end_time: str | None = Field(None, description="Local end, HH:MM")


class MeetingUpdate(BaseModel):
    """Partial update. Only supplied fields change."""

    title: str | None = None
    description: str | None = None
    date: str | None = None
    start_time: str | None = None
    end_time: str | None = None

    def has_time_fields(self) -> bool:
        return any(v is not None for v in (self.date, self.start_time, self.end_time))


class MeetingStatusUpdate(BaseModel):
    status: str | None = None


class NotifyStartRequest(BaseModel):
    """Recipient for the meeting-start notification; defaults to the owner."""

    recipient_email: EmailStr | None = None
