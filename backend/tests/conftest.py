"""Shared test fixtures and configuration for backend tests."""
import jwt
import pytest
from fastapi.testclient import TestClient

from chatsync.config import ChatSyncConfig
from chatsync.container import build_services
from chatsync.database import Database
from chatsync.main import create_app
from chatsync.messages.receipts import ReadReceiptTracker
from chatsync.messages.service import ChatService
from chatsync.messages.store import MessageStore
from chatsync.messages.unread import UnreadAggregator
from chatsync.rooms.visibility import RoomVisibilityManager

TEST_SECRET = "test-secret"


def make_token(user_id, username: str, secret: str = TEST_SECRET, **claims) -> str:
    """Mint a token the way the external auth service would."""
    payload = {"id": user_id, "username": username, **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id, username: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, username)}"}


class FakeWebSocket:
    """Records what the gateway sends instead of writing to a socket."""

    def __init__(self, fail: bool = False, fail_on: str = None) -> None:
        self.sent = []
        self.fail = fail
        # Fail only the first send of this event, then behave normally.
        self.fail_on = fail_on
        self.closed_with = None

    async def send_json(self, data) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        if self.fail_on is not None and data["event"] == self.fail_on:
            self.fail_on = None
            raise RuntimeError("send failed")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def events(self, name=None):
        return [m for m in self.sent if name is None or m["event"] == name]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def config():
    """In-memory database, no leave debounce, no self-termination."""
    return ChatSyncConfig(
        server={"terminate_on_fault": False},
        database={"path": ":memory:"},
        realtime={"leave_debounce_seconds": 0},
        secrets={"auth": {"secret_key": TEST_SECRET}},
    )


@pytest.fixture
def db():
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def store(db):
    return MessageStore(db)


@pytest.fixture
def receipts(db):
    return ReadReceiptTracker(db)


@pytest.fixture
def rooms(db):
    return RoomVisibilityManager(db)


@pytest.fixture
def unread(receipts, rooms):
    return UnreadAggregator(receipts, rooms)


@pytest.fixture
def chat(store, receipts, rooms, unread):
    return ChatService(store, receipts, rooms, unread)


@pytest.fixture
def services(config):
    """Fully wired services without the HTTP layer (for gateway tests)."""
    built = build_services(config)
    yield built
    built.close()


@pytest.fixture
def api_client(config):
    """TestClient over an app with its own in-memory database.

    Entering the client runs the lifespan, so ``app.state.services`` exists.
    """
    app = create_app(config)
    with TestClient(app) as client:
        yield client
