"""WebRTC signaling relay -- store-and-forward offer/answer/ICE exchange.

The two browsers negotiate a peer connection by polling this relay. The
server never parses session descriptions or candidates; it stores the
last offer and answer (last write wins) and an append-only list of ICE
candidates per meeting. Reading before the other side has posted returns
``None`` rather than an error.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from src.fitcoach.core.identity import Role
from src.fitcoach.core.monitoring import room_operations_total
from src.fitcoach.meetings.rooms.keys import signaling_key
from src.fitcoach.meetings.rooms.schemas import IceCandidate, SignalingEntry
from src.fitcoach.meetings.rooms.store import Clock, RoomStateStore, system_clock_ms

logger = structlog.get_logger(__name__)


class SignalingRelay:
    """Per-meeting signaling mailbox.

    Args:
        store: Backing RoomStateStore.
        clock: Epoch-millisecond clock used to timestamp ICE candidates.
    """

    def __init__(self, store: RoomStateStore, *, clock: Clock = system_clock_ms) -> None:
        self._store = store
        self._clock = clock

    async def _mutate(
        self,
        meeting_id: str | int,
        operation: str,
        change: Callable[[SignalingEntry], None],
    ) -> SignalingEntry:
        key = signaling_key(meeting_id)
        async with self._store.lock(key):
            raw = await self._store.get(key)
            entry = SignalingEntry.model_validate(raw) if raw else SignalingEntry()
            change(entry)
            await self._store.set(key, entry.model_dump(mode="json"))
        room_operations_total.labels(component="signaling", operation=operation).inc()
        return entry

    async def _read(self, meeting_id: str | int) -> SignalingEntry | None:
        raw = await self._store.get(signaling_key(meeting_id))
        return SignalingEntry.model_validate(raw) if raw else None

    @staticmethod
    def _mark_connected(entry: SignalingEntry, role: Role) -> None:
        if role is Role.ADMIN:
            entry.admin_connected = True
        else:
            entry.user_connected = True

    # ── Offer / Answer ──────────────────────────────────────────────────

    async def post_offer(
        self, meeting_id: str | int, offer: Any, role: Role | str
    ) -> SignalingEntry:
        """Replace the stored offer and mark the poster's side connected."""
        role = Role.parse(role)

        def change(entry: SignalingEntry) -> None:
            entry.offer = offer
            self._mark_connected(entry, role)

        entry = await self._mutate(meeting_id, "post_offer", change)
        logger.info("room.offer_posted", meeting_id=str(meeting_id), role=role.value)
        return entry

    async def get_offer(self, meeting_id: str | int) -> Any | None:
        entry = await self._read(meeting_id)
        return entry.offer if entry else None

    async def post_answer(
        self, meeting_id: str | int, answer: Any, role: Role | str
    ) -> SignalingEntry:
        """Replace the stored answer and mark the poster's side connected."""
        role = Role.parse(role)

        def change(entry: SignalingEntry) -> None:
            entry.answer = answer
            self._mark_connected(entry, role)

        entry = await self._mutate(meeting_id, "post_answer", change)
        logger.info("room.answer_posted", meeting_id=str(meeting_id), role=role.value)
        return entry

    async def get_answer(self, meeting_id: str | int) -> Any | None:
        entry = await self._read(meeting_id)
        return entry.answer if entry else None

    # ── ICE Candidates ──────────────────────────────────────────────────

    async def post_ice_candidate(
        self, meeting_id: str | int, candidate: Any, role: Role | str
    ) -> int:
        """Append a candidate; returns the number of candidates now stored."""
        role = Role.parse(role)
        timestamp = self._clock()

        def change(entry: SignalingEntry) -> None:
            entry.ice_candidates.append(
                IceCandidate(candidate=candidate, role=role, timestamp=timestamp)
            )

        entry = await self._mutate(meeting_id, "post_ice", change)
        logger.debug(
            "room.ice_candidate_posted",
            meeting_id=str(meeting_id),
            role=role.value,
            total=len(entry.ice_candidates),
        )
        return len(entry.ice_candidates)

    async def get_ice_candidates(self, meeting_id: str | int) -> list[IceCandidate]:
        """Every candidate posted so far, oldest first. Consumers de-duplicate."""
        entry = await self._read(meeting_id)
        return entry.ice_candidates if entry else []

    async def get_entry(self, meeting_id: str | int) -> SignalingEntry:
        return await self._read(meeting_id) or SignalingEntry()
