"""Error taxonomy shared by the pull (REST) and push (WebSocket) paths.

Each error carries the HTTP status the REST layer renders it with. The live
path turns any of them into a ``message_error`` event for the originating
connection only.
"""


class ChatSyncError(Exception):
    """Base class for errors surfaced to callers."""

    status_code: int = 500

    def __init__(self, message: str = "Internal error") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ChatSyncError):
    """Malformed input: missing fields, invalid message type, empty content."""

    status_code = 400


class AuthenticationError(ChatSyncError):
    """Missing or invalid bearer credential."""

    status_code = 401


class PermissionDeniedError(ChatSyncError):
    """Authenticated, but not allowed to act on the target room."""

    status_code = 403


class NotFoundError(ChatSyncError):
    """Unresolved message or room id."""

    status_code = 404


class PersistenceError(ChatSyncError):
    """A storage operation failed. Nothing was committed."""

    status_code = 500
