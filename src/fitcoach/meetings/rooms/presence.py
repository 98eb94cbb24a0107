"""Presence registry -- who is currently viewing each meeting room.

Presence is room-level, not network-level: a participant is present from
join until leave, whatever their media connection is doing. Rooms are
created lazily on first join and deleted as soon as the last participant
leaves. Unknown rooms are an ordinary state (count 0, no room), never an
error.
"""

from __future__ import annotations

import structlog

from src.fitcoach.core.identity import Role
from src.fitcoach.core.monitoring import room_operations_total
from src.fitcoach.meetings.rooms.keys import presence_key
from src.fitcoach.meetings.rooms.schemas import Participant, PresenceResult, RoomSnapshot
from src.fitcoach.meetings.rooms.store import Clock, RoomStateStore, system_clock_ms

logger = structlog.get_logger(__name__)


class PresenceRegistry:
    """Track room participants by (name, role).

    Args:
        store: Backing RoomStateStore.
        clock: Epoch-millisecond clock used for join and room start times.
    """

    def __init__(self, store: RoomStateStore, *, clock: Clock = system_clock_ms) -> None:
        self._store = store
        self._clock = clock

    async def join(self, meeting_id: str | int, name: str, role: Role | str) -> PresenceResult:
        """Add a participant; re-joining with the same name and role is a no-op."""
        role = Role.parse(role)
        meeting_id = str(meeting_id)
        key = presence_key(meeting_id)

        async with self._store.lock(key):
            raw = await self._store.get(key)
            now = self._clock()
            if raw is None:
                room = RoomSnapshot(meeting_id=meeting_id, start_time=now)
                changed = True
            else:
                room = RoomSnapshot.model_validate(raw)
                changed = False

            if not any(p.name == name and p.role is role for p in room.participants):
                room.participants.append(Participant(name=name, role=role, joined_at=now))
                changed = True

            if changed:
                await self._store.set(key, room.model_dump(mode="json"))

        room_operations_total.labels(component="presence", operation="join").inc()
        logger.info(
            "room.participant_joined",
            meeting_id=meeting_id,
            name=name,
            role=role.value,
            count=len(room.participants),
        )
        return PresenceResult(count=len(room.participants), room=room)

    async def leave(self, meeting_id: str | int, name: str, role: Role | str) -> PresenceResult:
        """Remove every entry matching name and role; drop the room if it empties."""
        role = Role.parse(role)
        meeting_id = str(meeting_id)
        key = presence_key(meeting_id)

        async with self._store.lock(key):
            raw = await self._store.get(key)
            if raw is None:
                return PresenceResult()

            room = RoomSnapshot.model_validate(raw)
            remaining = [
                p for p in room.participants if not (p.name == name and p.role is role)
            ]
            if not remaining:
                await self._store.delete(key)
                result = PresenceResult()
            else:
                if len(remaining) != len(room.participants):
                    room.participants = remaining
                    await self._store.set(key, room.model_dump(mode="json"))
                result = PresenceResult(count=len(remaining), room=room)

        room_operations_total.labels(component="presence", operation="leave").inc()
        logger.info(
            "room.participant_left",
            meeting_id=meeting_id,
            name=name,
            role=role.value,
            count=result.count,
        )
        return result

    async def get_participants(self, meeting_id: str | int) -> PresenceResult:
        raw = await self._store.get(presence_key(meeting_id))
        if raw is None:
            return PresenceResult()
        room = RoomSnapshot.model_validate(raw)
        return PresenceResult(count=len(room.participants), room=room)
