"""Pydantic v2 schemas for live meeting rooms.

Stored shapes (RoomSnapshot, ConnectionStatus, SignalingEntry) round-trip
through RoomStateStore as plain JSON dicts. Timestamps are epoch
milliseconds. Session descriptions and ICE candidates are opaque JSON
values; nothing here inspects them.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field

from src.fitcoach.core.identity import Role

RoleValue = Annotated[Role, BeforeValidator(Role.parse)]


# ── Presence ─────────────────────────────────────────────────────────────────


class Participant(BaseModel):
    name: str
    role: RoleValue
    joined_at: int


class RoomSnapshot(BaseModel):
    """Who is currently viewing a meeting room."""

    meeting_id: str
    participants: list[Participant] = Field(default_factory=list)
    start_time: int
    status: str = "active"


class PresenceResult(BaseModel):
    """Participant count plus the room, or ``room=None`` once it is empty."""

    count: int = 0
    room: RoomSnapshot | None = None


# ── Connection Liveness ──────────────────────────────────────────────────────


class ConnectionSlot(BaseModel):
    connected: bool = False
    name: str | None = None
    last_seen: int = 0


class ConnectionStatus(BaseModel):
    """Heartbeat slots for the two sides of a meeting."""

    admin: ConnectionSlot = Field(default_factory=ConnectionSlot)
    user: ConnectionSlot = Field(default_factory=ConnectionSlot)

    def slot_for(self, role: Role) -> ConnectionSlot:
        return getattr(self, role.slot)


# ── Signaling ────────────────────────────────────────────────────────────────


class IceCandidate(BaseModel):
    candidate: Any
    role: RoleValue
    timestamp: int


class SignalingEntry(BaseModel):
    """Last offer, last answer and every ICE candidate posted for a meeting."""

    offer: Any = None
    answer: Any = None
    ice_candidates: list[IceCandidate] = Field(default_factory=list)
    admin_connected: bool = False
    user_connected: bool = False


# ── Request Models ───────────────────────────────────────────────────────────


class PresenceRequest(BaseModel):
    """Join/leave body. Missing fields fall back to the caller's identity."""

    name: str | None = Field(default=None, max_length=200)
    role: RoleValue | None = None


class ConnectionHeartbeat(BaseModel):
    role: RoleValue | None = None
    connected: bool = True
    name: str | None = Field(default=None, max_length=200)
    timestamp: int | None = None


class ConnectionClear(BaseModel):
    role: RoleValue | None = None


class OfferRequest(BaseModel):
    offer: Any
    role: RoleValue | None = None


class AnswerRequest(BaseModel):
    answer: Any
    role: RoleValue | None = None


class IceCandidateRequest(BaseModel):
    candidate: Any
    role: RoleValue | None = None
