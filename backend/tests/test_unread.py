"""Tests for unread-count annotation and the chat service composition."""
import random

import pytest

from chatsync.errors import PersistenceError, ValidationError
from chatsync.messages.schemas import SortOrder


@pytest.fixture
def room(rooms):
    for user_id in ("1", "2", "3", "4"):
        rooms.add_participant("room-1", user_id)
    return "room-1"


class TestAnnotate:

    def test_empty(self, unread):
        assert unread.annotate([]) == []

    def test_fresh_message_counts_everyone_but_sender(self, room, store, unread):
        message = store.append(room, "1", "text", "hello")

        [annotated] = unread.annotate([message])

        assert annotated.unread_count == 3
        assert message.unread_count is None  # original is untouched

    def test_receipts_reduce_count(self, room, store, receipts, unread):
        message = store.append(room, "1", "text", "hello")
        receipts.mark_read(message.id, "2")
        receipts.mark_read(message.id, "3")

        assert unread.annotate([message])[0].unread_count == 1

    def test_count_is_viewer_independent(self, room, store, receipts, unread):
        message = store.append(room, "1", "text", "hello")
        receipts.mark_read(message.id, "2")

        counts = {unread.annotate([message], viewer)[0].unread_count for viewer in (None, "1", "2", "9")}

        assert counts == {2}

    def test_reader_outside_participants_does_not_go_negative(self, rooms, store, receipts, unread):
        rooms.add_participant("small", "1")
        rooms.add_participant("small", "2")
        message = store.append("small", "1", "text", "hi")
        receipts.mark_read(message.id, "2")
        receipts.mark_read(message.id, "outsider")

        assert unread.annotate([message])[0].unread_count == 0

    def test_matches_definition_for_random_receipts(self, room, store, receipts, unread, rooms):
        rng = random.Random(7)
        users = sorted(rooms.participants(room))
        messages = [store.append(room, rng.choice(users), "text", f"m{i}") for i in range(20)]
        for message in messages:
            for user_id in users:
                if rng.random() < 0.5:
                    receipts.mark_read(message.id, user_id)

        annotated = unread.annotate(messages)
        readers = receipts.readers(m.id for m in messages)

        for message in annotated:
            others = set(users) - {message.sender_id}
            expected = len(others) - len(readers[message.id] & others)
            assert message.unread_count == expected
            assert 0 <= message.unread_count <= len(others)

    def test_multiple_rooms(self, rooms, store, unread):
        rooms.add_participant("a", "1")
        rooms.add_participant("a", "2")
        rooms.add_participant("b", "1")
        in_a = store.append("a", "1", "text", "x")
        in_b = store.append("b", "1", "text", "y")

        counts = [m.unread_count for m in unread.annotate([in_a, in_b])]

        assert counts == [1, 0]


class TestChatService:

    def test_send_returns_annotated_message(self, room, chat):
        message = chat.send_message(room, "1", "text", "hello")
        assert message.unread_count == 3

    def test_send_validation_error_propagates(self, room, chat):
        with pytest.raises(ValidationError):
            chat.send_message(room, "1", "gif", "hello")

    def test_unhide_failure_does_not_lose_message(self, room, chat, rooms, store, monkeypatch):
        def broken(*args, **kwargs):
            raise PersistenceError("Storage operation failed")

        monkeypatch.setattr(rooms, "unhide_for_all", broken)

        message = chat.send_message(room, "1", "text", "still stored")

        assert store.fetch_by_id(message.id).content == "still stored"

    def test_fetch_range_is_annotated(self, room, chat):
        chat.send_message(room, "1", "text", "a")
        chat.send_message(room, "2", "text", "b")

        messages = chat.fetch_range(room, SortOrder.ASC, viewer_id="3")

        assert [m.unread_count for m in messages] == [3, 3]

    def test_open_room_reads_everything(self, room, chat):
        chat.send_message(room, "1", "text", "a")
        chat.send_message(room, "1", "text", "b")
        chat.send_message(room, "2", "text", "own")

        assert chat.unread_count(room, "2") == 2
        assert chat.open_room(room, "2") == 2
        assert chat.unread_count(room, "2") == 0
        assert chat.open_room(room, "2") == 0

    def test_read_then_fetch_reflects_receipt(self, room, chat):
        message = chat.send_message(room, "1", "text", "hello")

        chat.mark_read(message.id, "2")

        assert chat.fetch_by_id(message.id).unread_count == 2
        assert chat.fetch_latest(room).unread_count == 2
