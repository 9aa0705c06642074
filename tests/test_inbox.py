import pytest

import messaging
import repository
from errors import PermissionDeniedError
from inbox import Inbox
from realtime import hub
from reconcile import ensure_chat_exists


def _chat(alice, bob, title):
    request_id = repository.create(alice.identity, {"title": title, "description": "..."})
    repository.set_volunteer(request_id, bob.email)
    return ensure_chat_exists(repository.get(request_id))


def _of_type(events, kind):
    return [e for e in events if e["type"] == kind]


def test_starts_without_room_until_list_arrives(alice):
    events = []
    inbox = Inbox("chats", alice.identity, emit=events.append)
    assert inbox.active_room is None
    with inbox:
        assert inbox.rooms == []
        assert inbox.active_room is None
        assert _of_type(events, "rooms") == [{"type": "rooms", "rooms": []}]


def test_first_room_is_auto_selected(alice, bob):
    first = _chat(alice, bob, "first")
    _chat(alice, bob, "second")
    events = []

    with Inbox("chats", alice.identity, emit=events.append) as inbox:
        assert inbox.active_room_id == first
        assert _of_type(events, "selected")[0]["room"]["request_title"] == "first"
        assert _of_type(events, "messages")[-1]["messages"] == []


def test_end_to_end_messages_and_unread(alice, bob):
    chat_id = _chat(alice, bob, "Need groceries")
    alice_events, bob_events = [], []

    with Inbox("chats", alice.identity, emit=alice_events.append) as alice_inbox, \
            Inbox("chats", bob.identity, emit=bob_events.append) as bob_inbox:
        bob_inbox.deselect()

        alice_inbox.send("Thanks for volunteering!")
        messaging.send_message("chats", chat_id, bob.identity, "Happy to help")

        assert [m["text"] for m in alice_inbox.messages] == ["Thanks for volunteering!", "Happy to help"]
        last = _of_type(alice_events, "messages")[-1]
        assert list(last["groups"]) == ["Today"]
        assert alice_inbox.unread.get(chat_id, 0) == 0

        assert bob_inbox.unread[chat_id] == 1
        notification = _of_type(bob_events, "notification")[-1]
        assert notification["title"] == "New message from alice@example.com"
        assert notification["body"] == "Thanks for volunteering!"

        bob_inbox.select_id(chat_id)
        assert bob_inbox.unread[chat_id] == 0
        assert _of_type(bob_events, "unread")[-1] == {"type": "unread", "counts": {chat_id: 0}, "total": 0}
        assert len(bob_inbox.messages) == 2


def test_unread_counts_background_room_only(alice, bob):
    first = _chat(alice, bob, "first")
    second = _chat(alice, bob, "second")
    events = []

    with Inbox("chats", alice.identity, emit=events.append) as inbox:
        messaging.send_message("chats", first, bob.identity, "in the open room")
        messaging.send_message("chats", second, bob.identity, "one")
        messaging.send_message("chats", second, bob.identity, "two")
        messaging.send_message("chats", second, alice.identity, "mine")

        assert inbox.unread == {first: 0, second: 2}
        assert _of_type(events, "unread")[-1]["total"] == 2
        assert [n["body"] for n in _of_type(events, "notification")] == ["one", "two"]

        inbox.select_id(second)
        assert inbox.unread == {first: 0, second: 0}
        assert [m["text"] for m in inbox.messages] == ["one", "two", "mine"]


def test_existing_history_is_not_unread(alice, bob):
    _chat(alice, bob, "first")
    second = _chat(alice, bob, "second")
    messaging.send_message("chats", second, bob.identity, "sent before opening")

    with Inbox("chats", alice.identity, emit=lambda e: None) as inbox:
        assert inbox.unread.get(second, 0) == 0


def test_blank_send_is_noop(alice, bob, store):
    _chat(alice, bob, "first")
    with Inbox("chats", alice.identity, emit=lambda e: None) as inbox:
        assert inbox.send("   ") is None
    assert store["chats.messages"].count_documents({}) == 0


def test_send_without_room_is_noop(alice, store):
    with Inbox("chats", alice.identity, emit=lambda e: None) as inbox:
        assert inbox.send("hello") is None
    assert store["chats.messages"].count_documents({}) == 0


def test_deselect_closes_message_subscription(alice, bob):
    chat_id = _chat(alice, bob, "first")
    with Inbox("chats", alice.identity, emit=lambda e: None) as inbox:
        open_subs = hub.subscription_count("chats.messages")
        inbox.deselect()
        assert hub.subscription_count("chats.messages") == open_subs - 1
        assert inbox.active_room is None

        messaging.send_message("chats", chat_id, bob.identity, "while away")
        assert inbox.messages == []
        assert inbox.unread[chat_id] == 1


def test_close_tears_down_every_subscription(alice, bob):
    _chat(alice, bob, "first")
    _chat(alice, bob, "second")
    before = hub.subscription_count()

    inbox = Inbox("chats", alice.identity, emit=lambda e: None).open()
    assert hub.subscription_count() > before
    inbox.close()
    inbox.close()

    assert hub.subscription_count() == before


def test_close_runs_on_error(alice, bob):
    _chat(alice, bob, "first")
    before = hub.subscription_count()

    with pytest.raises(RuntimeError):
        with Inbox("chats", alice.identity, emit=lambda e: None):
            raise RuntimeError("view crashed")

    assert hub.subscription_count() == before


def test_cannot_select_someone_elses_chat(alice, bob, carol):
    chat_id = _chat(alice, bob, "first")
    with Inbox("chats", carol.identity, emit=lambda e: None) as inbox:
        with pytest.raises(PermissionDeniedError):
            inbox.select_id(chat_id)


def test_create_board_selects_it_immediately(alice):
    messaging.create_board(alice.identity, "Existing board")
    events = []

    with Inbox("boards", alice.identity, emit=events.append) as inbox:
        board = inbox.create_board("Tool library", "Share drills")

        assert inbox.active_room_id == board["id"]
        assert inbox.active_room["title"] == "Tool library"
        assert any(e["type"] == "selected" and e["room"]["id"] == board["id"] for e in events)
        assert [r["title"] for r in inbox.rooms] == ["Existing board", "Tool library"]


def test_board_unread_follows_membership(alice, bob):
    first = messaging.create_board(alice.identity, "first")
    second = messaging.create_board(alice.identity, "second")

    with Inbox("boards", bob.identity, emit=lambda e: None) as inbox:
        assert inbox.active_room_id == first["id"]
        inbox.deselect()

        messaging.send_message("boards", second["id"], alice.identity, "before joining")
        assert inbox.unread.get(second["id"], 0) == 0

        inbox.join(second["id"])
        messaging.send_message("boards", second["id"], alice.identity, "after joining")
        assert inbox.unread[second["id"]] == 1


def test_dispatch_marshals_callbacks(alice, bob):
    chat_id = _chat(alice, bob, "first")
    queued = []

    inbox = Inbox("chats", alice.identity, emit=lambda e: None, dispatch=lambda fn, *args: queued.append((fn, args)))
    inbox.open()
    try:
        assert inbox.rooms == []
        while queued:
            fn, args = queued.pop(0)
            fn(*args)
        assert inbox.active_room_id == chat_id
    finally:
        inbox.close()
