"""REST endpoints for meeting scheduling and live meeting rooms.

Scheduling endpoints go through MeetingScheduler, which raises
MeetingError subclasses; each is converted to an HTTPException carrying
``{"message": ..., **extra}`` as detail (ConflictError adds
``conflicts``).

Room endpoints (join/leave/participants, connection heartbeats, WebRTC
signaling) never fail for unknown meetings: missing state reads back as
the default shape. They accept the guest credential so public join links
work without an account. A failing shared room-state backend (Redis) is
reported as a 500 with a stable ``{"message": ...}`` detail.

Services are read from app.state and return 503 when not initialized.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from redis.exceptions import RedisError

from src.fitcoach.api.deps import get_current_caller, get_registered_caller, require_auth
from src.fitcoach.core.identity import Caller, Role
from src.fitcoach.meetings.errors import MeetingError
from src.fitcoach.meetings.rooms.liveness import ConnectionLivenessTracker
from src.fitcoach.meetings.rooms.presence import PresenceRegistry
from src.fitcoach.meetings.rooms.schemas import (
    AnswerRequest,
    ConnectionClear,
    ConnectionHeartbeat,
    ConnectionStatus,
    IceCandidate,
    IceCandidateRequest,
    OfferRequest,
    PresenceRequest,
    PresenceResult,
)
from src.fitcoach.meetings.rooms.signaling import SignalingRelay
from src.fitcoach.meetings.scheduling import MeetingScheduler
from src.fitcoach.meetings.schemas import (
    Meeting,
    MeetingCreate,
    MeetingStatus,
    MeetingStatusUpdate,
    MeetingUpdate,
    MeetingWithOwner,
    NotifyStartRequest,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/meetings", tags=["meetings"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class PublicMeetingResponse(BaseModel):
    """What an unauthenticated join-link visitor may see."""

    id: int
    title: str
    description: str
    date: dt.date
    start_time: str
    end_time: str
    status: MeetingStatus
    join_link: str


class MessageResponse(BaseModel):
    message: str


class NotifyStartResponse(BaseModel):
    message: str
    recipient_email: str
    join_link: str


class OfferResponse(BaseModel):
    offer: Any = None


class AnswerResponse(BaseModel):
    answer: Any = None


class IceCandidatesResponse(BaseModel):
    candidates: list[IceCandidate]


class IcePostResponse(BaseModel):
    message: str
    count: int


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_scheduler(request: Request) -> MeetingScheduler:
    """Retrieve MeetingScheduler from app.state, 503 if not available."""
    scheduler = getattr(request.app.state, "meeting_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Meeting scheduler not initialized",
        )
    return scheduler


def _get_presence(request: Request) -> PresenceRegistry:
    """Retrieve PresenceRegistry from app.state, 503 if not available."""
    presence = getattr(request.app.state, "presence_registry", None)
    if presence is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Presence registry not initialized",
        )
    return presence


def _get_liveness(request: Request) -> ConnectionLivenessTracker:
    """Retrieve ConnectionLivenessTracker from app.state, 503 if not available."""
    tracker = getattr(request.app.state, "liveness_tracker", None)
    if tracker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Connection tracker not initialized",
        )
    return tracker


def _get_signaling(request: Request) -> SignalingRelay:
    """Retrieve SignalingRelay from app.state, 503 if not available."""
    relay = getattr(request.app.state, "signaling_relay", None)
    if relay is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Signaling relay not initialized",
        )
    return relay


def _get_notifier(request: Request) -> Any:
    """Retrieve MeetingNotifier from app.state, 503 if not configured."""
    notifier = getattr(request.app.state, "meeting_notifier", None)
    if notifier is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notifications not configured (NOTIFICATION_WEBHOOK_URL is empty)",
        )
    return notifier


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _to_http(exc: MeetingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def _participant_name(body: PresenceRequest | None, caller: Caller) -> str:
    if body is not None and body.name:
        return body.name
    return caller.name or caller.email or caller.id


def _role(requested: Role | None, caller: Caller) -> Role:
    return requested if requested is not None else caller.role


@asynccontextmanager
async def _room_state(operation: str, meeting_id: str) -> AsyncIterator[None]:
    try:
        yield
    except RedisError as exc:
        logger.error(
            "room.store_failed",
            operation=operation,
            meeting_id=meeting_id,
            error=str(exc),
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Room state is unavailable"},
        ) from exc


# ── Scheduling ───────────────────────────────────────────────────────────────


@router.post("", response_model=Meeting, status_code=201)
@router.post("/", response_model=Meeting, status_code=201, include_in_schema=False)
async def create_meeting(
    body: MeetingCreate,
    request: Request,
    caller: Caller = Depends(get_current_caller),
):
    """Schedule a meeting owned by the caller. 400 with ``conflicts`` if the slot is taken."""
    scheduler = _get_scheduler(request)
    try:
        return await scheduler.create(caller, body)
    except MeetingError as exc:
        raise _to_http(exc) from exc


@router.get("", response_model=list[Meeting])
@router.get("/", response_model=list[Meeting], include_in_schema=False)
async def list_my_meetings(
    request: Request,
    caller: Caller = Depends(get_registered_caller),
):
    """The caller's own meetings ordered by date and start time."""
    scheduler = _get_scheduler(request)
    try:
        return await scheduler.list_by_owner(int(caller.id))
    except MeetingError as exc:
        raise _to_http(exc) from exc


@router.get("/all", response_model=list[MeetingWithOwner])
async def list_all_meetings(request: Request, caller: Caller = require_auth):
    """Every meeting with its owner's identity, for the shared calendar view."""
    scheduler = _get_scheduler(request)
    try:
        return await scheduler.list_all()
    except MeetingError as exc:
        raise _to_http(exc) from exc


@router.get("/public/{meeting_id}", response_model=PublicMeetingResponse)
async def get_public_meeting(meeting_id: int, request: Request):
    """Unauthenticated meeting view behind a public join link."""
    scheduler = _get_scheduler(request)
    try:
        meeting = await scheduler.get_public(meeting_id)
    except MeetingError as exc:
        raise _to_http(exc) from exc
    return PublicMeetingResponse(
        id=meeting.id,
        title=meeting.title,
        description=meeting.description,
        date=meeting.date,
        start_time=meeting.start_time,
        end_time=meeting.end_time,
        status=meeting.status,
        join_link=scheduler.join_link(meeting.id),
    )


@router.get("/{meeting_id}", response_model=Meeting)
async def get_meeting(meeting_id: int, request: Request, caller: Caller = require_auth):
    scheduler = _get_scheduler(request)
    try:
        return await scheduler.get(caller, meeting_id)
    except MeetingError as exc:
        raise _to_http(exc) from exc


@router.put("/{meeting_id}", response_model=Meeting)
async def update_meeting(
    meeting_id: int,
    body: MeetingUpdate,
    request: Request,
    caller: Caller = require_auth,
):
    """Partial update. Time changes are re-checked for overlap."""
    scheduler = _get_scheduler(request)
    try:
        return await scheduler.update(caller, meeting_id, body)
    except MeetingError as exc:
        raise _to_http(exc) from exc


@router.delete("/{meeting_id}", response_model=MessageResponse)
async def delete_meeting(meeting_id: int, request: Request, caller: Caller = require_auth):
    scheduler = _get_scheduler(request)
    try:
        await scheduler.delete(caller, meeting_id)
    except MeetingError as exc:
        raise _to_http(exc) from exc
    return MessageResponse(message="Meeting deleted successfully")


@router.patch("/{meeting_id}/status", response_model=Meeting)
async def update_meeting_status(
    meeting_id: int,
    body: MeetingStatusUpdate,
    request: Request,
    caller: Caller = require_auth,
):
    """Set the status (pending, complete, cancel; any case)."""
    scheduler = _get_scheduler(request)
    try:
        return await scheduler.set_status(caller, meeting_id, body.status)
    except MeetingError as exc:
        raise _to_http(exc) from exc


@router.post("/{meeting_id}/notify-start", response_model=NotifyStartResponse)
async def notify_meeting_start(
    meeting_id: int,
    request: Request,
    body: NotifyStartRequest | None = None,
    caller: Caller = require_auth,
):
    """Send the "meeting is starting" notification with the public join link."""
    scheduler = _get_scheduler(request)
    notifier = _get_notifier(request)
    recipient = body.recipient_email if body is not None else None
    try:
        sent_to = await scheduler.notify_start(
            caller, meeting_id, notifier, recipient_email=recipient
        )
    except MeetingError as exc:
        raise _to_http(exc) from exc
    return NotifyStartResponse(
        message="Meeting start notification sent",
        recipient_email=sent_to,
        join_link=scheduler.join_link(meeting_id),
    )


# ── Presence ─────────────────────────────────────────────────────────────────


@router.post("/{meeting_id}/join", response_model=PresenceResult)
async def join_meeting(
    meeting_id: str,
    request: Request,
    body: PresenceRequest | None = None,
    caller: Caller = require_auth,
):
    presence = _get_presence(request)
    async with _room_state("join", meeting_id):
        return await presence.join(
            meeting_id,
            _participant_name(body, caller),
            _role(body.role if body else None, caller),
        )


@router.post("/{meeting_id}/leave", response_model=PresenceResult)
async def leave_meeting(
    meeting_id: str,
    request: Request,
    body: PresenceRequest | None = None,
    caller: Caller = require_auth,
):
    presence = _get_presence(request)
    async with _room_state("leave", meeting_id):
        return await presence.leave(
            meeting_id,
            _participant_name(body, caller),
            _role(body.role if body else None, caller),
        )


@router.get("/{meeting_id}/participants", response_model=PresenceResult)
async def get_participants(meeting_id: str, request: Request, caller: Caller = require_auth):
    """Current participants; count 0 and ``room: null`` for an empty room."""
    presence = _get_presence(request)
    async with _room_state("participants", meeting_id):
        return await presence.get_participants(meeting_id)


# ── Connection Liveness ──────────────────────────────────────────────────────


@router.post("/{meeting_id}/connection", response_model=ConnectionStatus)
async def post_connection_heartbeat(
    meeting_id: str,
    body: ConnectionHeartbeat,
    request: Request,
    caller: Caller = require_auth,
):
    """Record a heartbeat for the caller's side and return both sides."""
    tracker = _get_liveness(request)
    async with _room_state("connection_set", meeting_id):
        return await tracker.set_status(
            meeting_id,
            _role(body.role, caller),
            body.connected,
            name=body.name or caller.name,
            timestamp_ms=body.timestamp,
        )


@router.get("/{meeting_id}/connection", response_model=ConnectionStatus)
async def get_connection_status(meeting_id: str, request: Request, caller: Caller = require_auth):
    tracker = _get_liveness(request)
    async with _room_state("connection_get", meeting_id):
        return await tracker.get_status(meeting_id)


@router.delete("/{meeting_id}/connection", response_model=ConnectionStatus)
async def clear_connection_status(
    meeting_id: str,
    request: Request,
    body: ConnectionClear | None = None,
    caller: Caller = require_auth,
):
    """Mark one side disconnected immediately (tab closed, call ended)."""
    tracker = _get_liveness(request)
    async with _room_state("connection_clear", meeting_id):
        return await tracker.clear_status(meeting_id, _role(body.role if body else None, caller))


# ── WebRTC Signaling ─────────────────────────────────────────────────────────


@router.post("/{meeting_id}/webrtc/offer", response_model=MessageResponse)
async def post_offer(
    meeting_id: str,
    body: OfferRequest,
    request: Request,
    caller: Caller = require_auth,
):
    relay = _get_signaling(request)
    async with _room_state("offer_post", meeting_id):
        await relay.post_offer(meeting_id, body.offer, _role(body.role, caller))
    return MessageResponse(message="Offer stored")


@router.get("/{meeting_id}/webrtc/offer", response_model=OfferResponse)
async def get_offer(meeting_id: str, request: Request, caller: Caller = require_auth):
    """Latest offer, or ``{"offer": null}`` if none was posted yet."""
    relay = _get_signaling(request)
    async with _room_state("offer_get", meeting_id):
        return OfferResponse(offer=await relay.get_offer(meeting_id))


@router.post("/{meeting_id}/webrtc/answer", response_model=MessageResponse)
async def post_answer(
    meeting_id: str,
    body: AnswerRequest,
    request: Request,
    caller: Caller = require_auth,
):
    relay = _get_signaling(request)
    async with _room_state("answer_post", meeting_id):
        await relay.post_answer(meeting_id, body.answer, _role(body.role, caller))
    return MessageResponse(message="Answer stored")


@router.get("/{meeting_id}/webrtc/answer", response_model=AnswerResponse)
async def get_answer(meeting_id: str, request: Request, caller: Caller = require_auth):
    """Latest answer, or ``{"answer": null}`` if none was posted yet."""
    relay = _get_signaling(request)
    async with _room_state("answer_get", meeting_id):
        return AnswerResponse(answer=await relay.get_answer(meeting_id))


@router.post("/{meeting_id}/webrtc/ice", response_model=IcePostResponse)
async def post_ice_candidate(
    meeting_id: str,
    body: IceCandidateRequest,
    request: Request,
    caller: Caller = require_auth,
):
    relay = _get_signaling(request)
    async with _room_state("ice_post", meeting_id):
        count = await relay.post_ice_candidate(
            meeting_id, body.candidate, _role(body.role, caller)
        )
    return IcePostResponse(message="ICE candidate stored", count=count)


@router.get("/{meeting_id}/webrtc/ice", response_model=IceCandidatesResponse)
async def get_ice_candidates(meeting_id: str, request: Request, caller: Caller = require_auth):
    """Every candidate posted so far, oldest first."""
    relay = _get_signaling(request)
    async with _room_state("ice_get", meeting_id):
        return IceCandidatesResponse(candidates=await relay.get_ice_candidates(meeting_id))
