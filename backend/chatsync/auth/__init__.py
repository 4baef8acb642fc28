"""Bearer-token identity resolution.

Tokens are issued elsewhere; this package only verifies them and exposes the
caller's identity to the REST and WebSocket layers.
"""
