"""Tests for room visibility and the participant directory."""
import pytest

from chatsync.errors import NotFoundError


@pytest.fixture
def room(rooms):
    for user_id in ("1", "2", "3"):
        rooms.add_participant("room-1", user_id)
    return "room-1"


class TestParticipants:

    def test_add_participant_is_idempotent(self, rooms):
        assert rooms.add_participant("room-1", "1") is True
        assert rooms.add_participant("room-1", "1") is False
        assert rooms.participants("room-1") == {"1"}

    def test_membership_starts_shown(self, rooms):
        rooms.add_participant("room-1", "1")
        assert rooms.is_hidden("room-1", "1") is False

    def test_is_participant(self, room, rooms):
        assert rooms.is_participant(room, "1")
        assert not rooms.is_participant(room, "9")
        assert not rooms.is_participant("other", "1")

    def test_unknown_room_has_no_participants(self, rooms):
        assert rooms.participants("nowhere") == set()


class TestVisibility:

    def test_hide_then_show(self, room, rooms):
        rooms.hide(room, "2")
        assert rooms.is_hidden(room, "2") is True

        rooms.show(room, "2")
        assert rooms.is_hidden(room, "2") is False

    def test_hide_is_per_user(self, room, rooms):
        rooms.hide(room, "2")
        assert rooms.is_hidden(room, "1") is False
        assert rooms.is_hidden(room, "3") is False

    def test_hide_requires_membership(self, rooms):
        with pytest.raises(NotFoundError):
            rooms.hide("room-1", "9")

    def test_is_hidden_requires_membership(self, rooms):
        with pytest.raises(NotFoundError):
            rooms.is_hidden("room-1", "9")

    def test_show_for_non_member_is_noop(self, rooms):
        rooms.show("room-1", "9")
        assert rooms.participants("room-1") == set()

    def test_unhide_for_all_skips_sender(self, room, rooms):
        for user_id in ("1", "2", "3"):
            rooms.hide(room, user_id)

        changed = rooms.unhide_for_all(room, "1")

        assert changed == 2
        assert rooms.is_hidden(room, "1") is True
        assert rooms.is_hidden(room, "2") is False
        assert rooms.is_hidden(room, "3") is False

    def test_unhide_for_all_counts_only_changes(self, room, rooms):
        rooms.hide(room, "2")
        assert rooms.unhide_for_all(room, "1") == 1
        assert rooms.unhide_for_all(room, "1") == 0

    def test_sending_resurfaces_hidden_room(self, room, rooms, chat):
        rooms.hide(room, "2")
        rooms.hide(room, "1")

        chat.send_message(room, "1", "text", "ping")

        assert rooms.is_hidden(room, "2") is False
        # The sender's own hidden state is left alone.
        assert rooms.is_hidden(room, "1") is True

    def test_opening_room_shows_it(self, room, rooms, chat):
        rooms.hide(room, "2")
        chat.open_room(room, "2")
        assert rooms.is_hidden(room, "2") is False
