"""Tests for the read-receipt tracker."""
from concurrent.futures import ThreadPoolExecutor

import pytest

from chatsync.database import utcnow
from chatsync.errors import NotFoundError, PersistenceError


def _receipt_rows(db, message_id):
    return db.execute("SELECT user_id FROM message_reads WHERE message_id = ?", [message_id])


class TestMarkRead:

    def test_first_read_creates_receipt(self, store, receipts, db):
        message = store.append("room-1", "1", "text", "hello")

        result = receipts.mark_read(message.id, "2")

        assert result.created is True
        assert result.already_read is False
        assert _receipt_rows(db, message.id) == [("2",)]

    def test_repeated_read_is_idempotent(self, store, receipts, db):
        message = store.append("room-1", "1", "text", "hello")

        first = receipts.mark_read(message.id, "2")
        second = receipts.mark_read(message.id, "2")

        assert first.created is True
        assert second.created is False
        assert second.already_read is True
        assert len(_receipt_rows(db, message.id)) == 1

    def test_sender_never_gets_a_receipt(self, store, receipts, db):
        message = store.append("room-1", "1", "text", "hello")

        result = receipts.mark_read(message.id, "1")

        assert result.created is False
        assert _receipt_rows(db, message.id) == []

    def test_unknown_message(self, receipts):
        with pytest.raises(NotFoundError):
            receipts.mark_read(12345, "2")

    def test_concurrent_duplicates_store_one_row(self, store, receipts, db):
        """Parallel mark_read for the same pair: exactly one call creates."""
        message = store.append("room-1", "1", "text", "hello")

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: receipts.mark_read(message.id, "2"), range(32)))

        assert sum(1 for r in results if r.created) == 1
        assert len(_receipt_rows(db, message.id)) == 1

    def test_storage_rejects_duplicate_pair(self, store, receipts, db):
        message = store.append("room-1", "1", "text", "hello")
        receipts.mark_read(message.id, "2")

        with pytest.raises(PersistenceError):
            db.execute(
                "INSERT INTO message_reads (message_id, user_id, read_at) VALUES (?, ?, ?)",
                [message.id, "2", utcnow()],
            )


class TestMarkAllRead:

    def test_marks_only_other_senders_messages(self, store, receipts, db):
        own = store.append("room-1", "2", "text", "mine")
        theirs = [store.append("room-1", "1", "text", f"m{i}") for i in range(3)]

        affected = receipts.mark_all_read("room-1", "2")

        assert affected == 3
        assert _receipt_rows(db, own.id) == []
        for message in theirs:
            assert _receipt_rows(db, message.id) == [("2",)]

    def test_skips_already_read(self, store, receipts):
        first = store.append("room-1", "1", "text", "a")
        store.append("room-1", "1", "text", "b")
        receipts.mark_read(first.id, "2")

        assert receipts.mark_all_read("room-1", "2") == 1
        assert receipts.mark_all_read("room-1", "2") == 0

    def test_scoped_to_room(self, store, receipts):
        store.append("room-1", "1", "text", "a")
        other = store.append("room-2", "1", "text", "b")

        receipts.mark_all_read("room-1", "2")

        assert receipts.readers([other.id]) == {other.id: set()}

    def test_empty_room(self, receipts):
        assert receipts.mark_all_read("nowhere", "2") == 0


class TestUnreadCount:

    def test_counts_unread_messages_from_others(self, store, receipts):
        for i in range(3):
            store.append("room-1", "1", "text", f"m{i}")
        store.append("room-1", "2", "text", "own message")

        assert receipts.unread_count("room-1", "2") == 3

    def test_count_drops_as_messages_are_read(self, store, receipts):
        messages = [store.append("room-1", "1", "text", f"m{i}") for i in range(3)]

        receipts.mark_read(messages[0].id, "2")
        assert receipts.unread_count("room-1", "2") == 2

        receipts.mark_all_read("room-1", "2")
        assert receipts.unread_count("room-1", "2") == 0

    def test_new_message_after_read_all(self, store, receipts):
        store.append("room-1", "1", "text", "a")
        receipts.mark_all_read("room-1", "2")
        store.append("room-1", "1", "text", "b")

        assert receipts.unread_count("room-1", "2") == 1


class TestReaders:

    def test_empty_input(self, receipts):
        assert receipts.readers([]) == {}

    def test_groups_by_message(self, store, receipts):
        a = store.append("room-1", "1", "text", "a")
        b = store.append("room-1", "1", "text", "b")
        receipts.mark_read(a.id, "2")
        receipts.mark_read(a.id, "3")

        assert receipts.readers([a.id, b.id]) == {a.id: {"2", "3"}, b.id: set()}
