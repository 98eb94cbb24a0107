"""Connection liveness -- is the other side's meeting UI still open?

Each meeting has two heartbeat slots, one per role. Clients poll
``set_status`` while the meeting view is rendered; a slot whose last
heartbeat is older than the stale threshold reads as disconnected even if
the last value written was ``connected=True``. Staleness is derived when
the entry is touched. There is no background timer.

Writes sweep both slots and persist the result. Reads apply the same
sweep to the returned copy only.
"""

from __future__ import annotations

import structlog

from src.fitcoach.core.identity import Role
from src.fitcoach.core.monitoring import room_operations_total
from src.fitcoach.meetings.rooms.keys import connection_key
from src.fitcoach.meetings.rooms.schemas import ConnectionSlot, ConnectionStatus
from src.fitcoach.meetings.rooms.store import Clock, RoomStateStore, system_clock_ms

logger = structlog.get_logger(__name__)

DEFAULT_STALE_AFTER_MS = 15_000


class ConnectionLivenessTracker:
    """Per-meeting admin/user heartbeat slots with lazy staleness.

    Args:
        store: Backing RoomStateStore.
        clock: Epoch-millisecond clock.
        stale_after_ms: A slot not seen for longer than this is disconnected.
    """

    def __init__(
        self,
        store: RoomStateStore,
        *,
        clock: Clock = system_clock_ms,
        stale_after_ms: int = DEFAULT_STALE_AFTER_MS,
    ) -> None:
        self._store = store
        self._clock = clock
        self._stale_after_ms = stale_after_ms

    def _sweep(self, status: ConnectionStatus, now: int) -> ConnectionStatus:
        for slot in (status.admin, status.user):
            if now - slot.last_seen > self._stale_after_ms:
                slot.connected = False
        return status

    async def set_status(
        self,
        meeting_id: str | int,
        role: Role | str,
        connected: bool,
        name: str | None = None,
        timestamp_ms: int | None = None,
    ) -> ConnectionStatus:
        """Overwrite the caller's slot, then sweep both slots.

        Args:
            meeting_id: Meeting the heartbeat belongs to.
            role: Which slot to write (ADMIN or USER, any case).
            connected: Whether the client is rendering the meeting view.
            name: Display name of the client.
            timestamp_ms: Heartbeat time; defaults to now.

        Returns:
            The stored two-slot status after the sweep.
        """
        role = Role.parse(role)
        key = connection_key(meeting_id)

        async with self._store.lock(key):
            raw = await self._store.get(key)
            status = ConnectionStatus.model_validate(raw) if raw else ConnectionStatus()
            now = self._clock()
            setattr(
                status,
                role.slot,
                ConnectionSlot(
                    connected=connected,
                    name=name,
                    last_seen=timestamp_ms if timestamp_ms is not None else now,
                ),
            )
            self._sweep(status, now)
            await self._store.set(key, status.model_dump(mode="json"))

        room_operations_total.labels(component="liveness", operation="set").inc()
        logger.debug(
            "room.heartbeat",
            meeting_id=str(meeting_id),
            role=role.value,
            connected=status.slot_for(role).connected,
        )
        return status

    async def get_status(self, meeting_id: str | int) -> ConnectionStatus:
        """Swept status, or both slots disconnected if nothing was recorded."""
        raw = await self._store.get(connection_key(meeting_id))
        if raw is None:
            return ConnectionStatus()
        return self._sweep(ConnectionStatus.model_validate(raw), self._clock())

    async def clear_status(self, meeting_id: str | int, role: Role | str) -> ConnectionStatus:
        """Mark one side disconnected as of now; no-op for unknown meetings."""
        role = Role.parse(role)
        key = connection_key(meeting_id)

        async with self._store.lock(key):
            raw = await self._store.get(key)
            if raw is None:
                return ConnectionStatus()
            status = ConnectionStatus.model_validate(raw)
            slot = status.slot_for(role)
            slot.connected = False
            slot.last_seen = self._clock()
            await self._store.set(key, status.model_dump(mode="json"))

        room_operations_total.labels(component="liveness", operation="clear").inc()
        logger.info("room.connection_cleared", meeting_id=str(meeting_id), role=role.value)
        return status
