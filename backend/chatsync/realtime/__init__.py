"""WebSocket gateway and the connection/room-channel registry."""
