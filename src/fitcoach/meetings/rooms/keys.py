"""Room state key layout.

One entry per meeting id per component:

- ``room:presence:{meeting_id}``   -- participants currently viewing the room
- ``room:connection:{meeting_id}`` -- admin/user heartbeat slots
- ``room:signaling:{meeting_id}``  -- offer, answer and ICE candidates
"""

from __future__ import annotations

PRESENCE_KEY = "room:presence:{meeting_id}"
CONNECTION_KEY = "room:connection:{meeting_id}"
SIGNALING_KEY = "room:signaling:{meeting_id}"


def presence_key(meeting_id: str | int) -> str:
    return PRESENCE_KEY.format(meeting_id=meeting_id)


def connection_key(meeting_id: str | int) -> str:
    return CONNECTION_KEY.format(meeting_id=meeting_id)


def signaling_key(meeting_id: str | int) -> str:
    return SIGNALING_KEY.format(meeting_id=meeting_id)
