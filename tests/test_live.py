"""WebSocket notifications, chat rooms, typing indicators and presence."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from homeeasy.main import app
from homeeasy.state import build_state
from homeeasy.storage.memory import MemoryStore
from tests.conftest import TASK_BODY


@pytest.fixture
def live():
    services = build_state(MemoryStore())
    app.state.services = services
    with TestClient(app) as client:
        yield client, services
    app.state.services = None


def register(client: TestClient, email: str, role: str, first_name: str) -> dict:
    resp = client.post(
        "/v1/auth/register",
        json={"email": email, "password": "secret123", "first_name": first_name, "role": role},
    )
    assert resp.status_code == 201, resp.text
    data = resp.json()
    return {"id": data["user"]["id"], "token": data["token"]}


def hdr(token: str) -> dict:
    return {"Authorization": f"Bearer {token}", "Accept": "application/json"}


def ws_url(token: str) -> str:
    return f"/v1/ws?token={token}"


def test_rejects_bad_token(live):
    client, _ = live
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(ws_url("not-a-token")):
            pass
    assert exc.value.code == 4401


def test_ping_and_unknown_frames(live):
    client, _ = live
    user = register(client, "a@example.com", "tasker", "Alice")
    with client.websocket_connect(ws_url(user["token"])) as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        ws.send_text("{not json")
        assert ws.receive_json() == {"type": "error", "message": "Invalid JSON frame"}

        ws.send_json({"type": "dance"})
        frame = ws.receive_json()
        assert frame["type"] == "error"
        assert frame["status"] == 400


def test_bid_notifications_reach_the_owner_and_bidders(live):
    client, _ = live
    owner = register(client, "owner@example.com", "client", "Cora")
    alice = register(client, "alice@example.com", "tasker", "Alice")
    task = client.post("/v1/tasks", json=TASK_BODY, headers=hdr(owner["token"])).json()

    with client.websocket_connect(ws_url(owner["token"])) as owner_ws:
        with client.websocket_connect(ws_url(alice["token"])) as alice_ws:
            assert owner_ws.receive_json() == {
                "type": "user_status",
                "user_id": alice["id"],
                "status": "online",
            }

            bid = client.post(
                "/v1/bids",
                json={"task_id": task["id"], "amount": 30, "estimated_duration": 1},
                headers=hdr(alice["token"]),
            ).json()
            frame = owner_ws.receive_json()
            assert frame["type"] == "new_bid_notification"
            assert frame["bid_id"] == bid["id"]
            assert frame["bidder_name"] == "Alice"
            assert frame["amount"] == 30

            client.post(f"/v1/bids/{bid['id']}/accept", headers=hdr(owner["token"]))
            frame = alice_ws.receive_json()
            assert frame["type"] == "bid_accepted_notification"
            assert frame["task_id"] == task["id"]

            client.post(f"/v1/tasks/{task['id']}/start", headers=hdr(alice["token"]))
            frame = owner_ws.receive_json()
            assert frame["type"] == "task_started_notification"
            assert frame["tasker_name"] == "Alice"

            client.post(f"/v1/tasks/{task['id']}/cancel", headers=hdr(owner["token"]))
            frame = alice_ws.receive_json()
            assert frame["type"] == "task_cancelled_notification"
            assert frame["reason"] == "assigned_task_cancelled"
            assert frame["message"] == (
                "A task you were assigned to has been cancelled by the client."
            )


def test_chat_room_typing_and_messages(live):
    client, _ = live
    owner = register(client, "owner@example.com", "client", "Cora")
    alice = register(client, "alice@example.com", "tasker", "Alice")
    conv = client.post(
        "/v1/conversations", json={"participant_id": alice["id"]}, headers=hdr(owner["token"])
    ).json()

    with client.websocket_connect(ws_url(owner["token"])) as owner_ws:
        with client.websocket_connect(ws_url(alice["token"])) as alice_ws:
            assert owner_ws.receive_json()["type"] == "user_status"

            # Typing needs a joined room.
            alice_ws.send_json({"type": "typing_start", "conversation_id": conv["id"]})
            assert alice_ws.receive_json()["message"] == "Join the conversation first"

            for ws in (owner_ws, alice_ws):
                ws.send_json({"type": "join_conversation", "conversation_id": conv["id"]})
                assert ws.receive_json() == {
                    "type": "joined_conversation",
                    "conversation_id": conv["id"],
                }

            owner_ws.send_json({"type": "typing_start", "conversation_id": conv["id"]})
            assert alice_ws.receive_json() == {
                "type": "user_typing",
                "conversation_id": conv["id"],
                "user_id": owner["id"],
                "user_name": "Cora",
            }
            owner_ws.send_json({"type": "typing_stop", "conversation_id": conv["id"]})
            assert alice_ws.receive_json() == {
                "type": "user_stop_typing",
                "conversation_id": conv["id"],
                "user_id": owner["id"],
            }

            owner_ws.send_json(
                {"type": "send_message", "conversation_id": conv["id"], "content": "On my way"}
            )
            echoed = owner_ws.receive_json()
            assert echoed["type"] == "new_message"
            assert echoed["content"] == "On my way"

            received = alice_ws.receive_json()
            assert received["type"] == "new_message"
            assert received["id"] == echoed["id"]
            notification = alice_ws.receive_json()
            assert notification["type"] == "message_notification"
            assert notification["sender_name"] == "Cora"
            assert notification["message"]["id"] == echoed["id"]

            alice_ws.send_json({"type": "leave_conversation", "conversation_id": conv["id"]})
            assert alice_ws.receive_json()["type"] == "left_conversation"

            # HTTP posts reach the room too; Alice left, so she only gets the notification.
            client.post(
                f"/v1/conversations/{conv['id']}/messages",
                json={"content": "See you soon"},
                headers=hdr(owner["token"]),
            )
            assert owner_ws.receive_json()["content"] == "See you soon"
            frame = alice_ws.receive_json()
            assert frame["type"] == "message_notification"
            assert frame["message"]["content"] == "See you soon"


def test_outsider_cannot_join(live):
    client, _ = live
    owner = register(client, "owner@example.com", "client", "Cora")
    alice = register(client, "alice@example.com", "tasker", "Alice")
    bob = register(client, "bob@example.com", "tasker", "Bob")
    conv = client.post(
        "/v1/conversations", json={"participant_id": alice["id"]}, headers=hdr(owner["token"])
    ).json()

    with client.websocket_connect(ws_url(bob["token"])) as ws:
        ws.send_json({"type": "join_conversation", "conversation_id": conv["id"]})
        frame = ws.receive_json()
        assert frame == {
            "type": "error",
            "message": "You are not a participant in this conversation",
            "status": 403,
        }


def test_presence_over_http(live):
    client, _ = live
    watcher = register(client, "w@example.com", "client", "Wes")
    alice = register(client, "alice@example.com", "tasker", "Alice")

    with client.websocket_connect(ws_url(watcher["token"])) as watcher_ws:
        with client.websocket_connect(ws_url(alice["token"])):
            watcher_ws.receive_json()
            resp = client.get("/v1/users/online", headers=hdr(watcher["token"]))
            assert resp.json() == {
                "online": sorted([watcher["id"], alice["id"]]),
                "count": 2,
            }
            resp = client.get(f"/v1/users/{alice['id']}")
            assert resp.json()["is_online"] is True

        assert watcher_ws.receive_json() == {
            "type": "user_status",
            "user_id": alice["id"],
            "status": "offline",
        }
        resp = client.post(
            "/v1/users/status",
            json={"user_ids": [alice["id"], watcher["id"]]},
            headers=hdr(watcher["token"]),
        )
        statuses = resp.json()["statuses"]
        assert statuses[alice["id"]]["is_online"] is False
        assert statuses[alice["id"]]["last_seen"] is not None
        assert statuses[watcher["id"]]["is_online"] is True


def test_health(live):
    client, _ = live
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["store"] == "memory"
    assert data["online_users"] == 0
