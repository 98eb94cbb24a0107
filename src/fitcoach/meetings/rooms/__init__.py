"""Live meeting rooms: presence, connection liveness and WebRTC signaling.

All three components keep best-effort coordination state in an injected
RoomStateStore (in-process or Redis). Missing entries are a normal state
and read back as default shapes.
"""
