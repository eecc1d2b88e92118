"""Connection hub, notifier fan-out and presence."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import pytest

from homeeasy.background import prune_presence
from homeeasy.events import ConnectionHub, Notifier, conversation_channel, user_channel
from homeeasy.presence import Presence
from homeeasy.state import build_state
from homeeasy.storage.memory import MemoryStore


def drain(conn) -> list[dict]:
    frames = []
    while not conn.queue.empty():
        event = conn.queue.get_nowait()
        if event is not None:
            frames.append(event.frame())
    return frames


@pytest.fixture
def notifier():
    presence = Presence()
    return Notifier(ConnectionHub(queue_size=4), presence)


def test_user_channel_reaches_every_connection(notifier):
    first = notifier.connect("us_a")
    second = notifier.connect("us_a")
    drain(first)
    drain(second)

    notifier.emit_to_user("us_a", "bid_accepted_notification", {"task_id": "tk_1"})
    assert drain(first) == [{"type": "bid_accepted_notification", "task_id": "tk_1"}]
    assert drain(second) == [{"type": "bid_accepted_notification", "task_id": "tk_1"}]


def test_emit_to_offline_user_is_noop(notifier):
    notifier.emit_to_user("us_nobody", "new_bid_notification", {"task_id": "tk_1"})


def test_conversation_room_excludes_sender_connection(notifier):
    a = notifier.connect("us_a")
    b = notifier.connect("us_b")
    room = conversation_channel("cv_1")
    notifier.hub.join(a.id, room)
    notifier.hub.join(b.id, room)
    drain(a)
    drain(b)

    notifier.emit_to_conversation("cv_1", "user_typing", {"user_id": "us_a"}, exclude=a.id)
    assert drain(a) == []
    assert drain(b) == [{"type": "user_typing", "user_id": "us_a"}]

    notifier.hub.leave(b.id, room)
    notifier.emit_to_conversation("cv_1", "new_message", {"id": "msg_1"})
    assert drain(b) == []
    assert drain(a) == [{"type": "new_message", "id": "msg_1"}]


def test_payloads_are_json_encoded(notifier):
    conn = notifier.connect("us_a")
    drain(conn)
    stamp = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
    notifier.emit_to_user("us_a", "review_received_notification", {"at": stamp})
    assert drain(conn) == [{"type": "review_received_notification", "at": stamp.isoformat()}]


def test_payload_cannot_rename_the_event(notifier):
    conn = notifier.connect("us_a")
    drain(conn)
    notifier.emit_to_user(
        "us_a", "task_cancelled_notification", {"type": "something_else", "task_id": "tk_1"}
    )
    assert drain(conn) == [{"type": "task_cancelled_notification", "task_id": "tk_1"}]


def test_full_queue_drops_events(notifier, caplog):
    conn = notifier.connect("us_a")
    drain(conn)
    with caplog.at_level(logging.WARNING, logger="homeeasy.events"):
        for i in range(6):
            notifier.emit_to_user("us_a", "message_notification", {"n": i})
    assert [f["n"] for f in drain(conn)] == [0, 1, 2, 3]
    assert "queue full" in caplog.text


def test_presence_follows_last_connection(notifier):
    watcher = notifier.connect("us_w")
    first = notifier.connect("us_a")
    second = notifier.connect("us_a")
    drain(watcher)
    assert notifier.presence.is_online("us_a")

    notifier.disconnect(first)
    assert notifier.presence.is_online("us_a")
    assert drain(watcher) == []

    notifier.disconnect(second)
    assert not notifier.presence.is_online("us_a")
    assert drain(watcher) == [{"type": "user_status", "user_id": "us_a", "status": "offline"}]
    assert notifier.presence.last_seen("us_a") is not None


def test_connect_announces_online_to_others(notifier):
    watcher = notifier.connect("us_w")
    drain(watcher)
    conn = notifier.connect("us_a")
    assert drain(watcher) == [{"type": "user_status", "user_id": "us_a", "status": "online"}]
    assert drain(conn) == []


def test_disconnect_wakes_sender(notifier):
    conn = notifier.connect("us_a")
    notifier.disconnect(conn)
    assert conn.queue.get_nowait() is None
    assert not notifier.hub.has_user("us_a")
    assert notifier.hub.members(user_channel("us_a")) == []


class ExplodingHub(ConnectionHub):
    def has_user(self, user_id: str) -> bool:
        return True

    def emit(self, channel, event, payload, exclude=None) -> int:
        raise RuntimeError("socket layer is down")


def test_notifier_never_raises(caplog):
    notifier = Notifier(ExplodingHub(), Presence())
    with caplog.at_level(logging.ERROR, logger="homeeasy.events"):
        notifier.emit_to_user("us_a", "new_bid_notification", {})
        notifier.emit_to_conversation("cv_1", "new_message", {})
    assert "Failed to emit new_bid_notification" in caplog.text
    assert "Failed to emit new_message" in caplog.text


def test_presence_status_and_prune():
    presence = Presence()
    presence.set_online("us_b")
    presence.set_online("us_a")
    presence.set_offline("us_c")
    assert presence.list_online() == ["us_a", "us_b"]
    assert presence.online_count() == 2

    statuses = presence.status_of(["us_a", "us_c", "us_x"])
    assert statuses["us_a"]["is_online"] is True
    assert statuses["us_c"]["is_online"] is False
    assert statuses["us_c"]["last_seen"] is not None
    assert statuses["us_x"] == {"is_online": False, "last_seen": None}

    presence._last_seen["us_c"] = datetime.now(UTC) - timedelta(days=3)
    presence._last_seen["us_a"] = datetime.now(UTC) - timedelta(days=3)
    assert presence.prune(timedelta(hours=24)) == 1
    assert presence.last_seen("us_c") is None
    assert presence.last_seen("us_a") is not None


def test_background_prune_uses_retention_window():
    services = build_state(MemoryStore())
    services.presence.set_offline("us_old")
    services.presence._last_seen["us_old"] = datetime.now(UTC) - timedelta(days=30)
    services.presence.set_offline("us_recent")
    assert prune_presence(services) == 1
    assert services.presence.last_seen("us_recent") is not None
