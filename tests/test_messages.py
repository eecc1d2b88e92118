import pytest

from tests.conftest import auth_header, post_task, register_user


async def open_conversation(client, token: str, participant_id: str, task_id=None):
    body = {"participant_id": participant_id}
    if task_id:
        body["task_id"] = task_id
    return await client.post("/v1/conversations", json=body, headers=auth_header(token))


async def send(client, token: str, conversation_id: str, content: str = "", media=None):
    return await client.post(
        f"/v1/conversations/{conversation_id}/messages",
        json={"content": content, "media": media or []},
        headers=auth_header(token),
    )


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent(parties):
    c = parties["client"]
    owner, alice = parties["owner"], parties["alice"]

    resp = await open_conversation(c, owner["token"], alice["id"])
    assert resp.status_code == 201
    conv = resp.json()
    assert {p["id"] for p in conv["participants"]} == {owner["id"], alice["id"]}

    # Same pair from the other side finds the same conversation.
    resp = await open_conversation(c, alice["token"], owner["id"])
    assert resp.status_code == 200
    assert resp.json()["id"] == conv["id"]


@pytest.mark.asyncio
async def test_task_scoped_conversation_is_separate(parties):
    c = parties["client"]
    owner, alice = parties["owner"], parties["alice"]
    task = await post_task(c, owner["token"])

    direct = (await open_conversation(c, owner["token"], alice["id"])).json()
    scoped = await open_conversation(c, owner["token"], alice["id"], task["id"])
    assert scoped.status_code == 201
    assert scoped.json()["id"] != direct["id"]
    assert scoped.json()["task"]["id"] == task["id"]


@pytest.mark.asyncio
async def test_conversation_validation(parties):
    c = parties["client"]
    owner = parties["owner"]
    resp = await open_conversation(c, owner["token"], owner["id"])
    assert resp.status_code == 400
    resp = await open_conversation(c, owner["token"], "us_missing")
    assert resp.status_code == 404
    resp = await open_conversation(c, owner["token"], parties["alice"]["id"], "tk_missing")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_send_and_list_messages(parties):
    c = parties["client"]
    owner, alice = parties["owner"], parties["alice"]
    conv = (await open_conversation(c, owner["token"], alice["id"])).json()

    resp = await send(c, owner["token"], conv["id"], "  Hi Alice  ")
    assert resp.status_code == 201
    assert resp.json()["content"] == "Hi Alice"
    await send(c, alice["token"], conv["id"], "Hello!")
    await send(c, owner["token"], conv["id"], media=["https://img.example.com/tap.jpg"])

    resp = await c.get(
        f"/v1/conversations/{conv['id']}/messages", headers=auth_header(alice["token"])
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 3
    assert [m["content"] for m in data["messages"]] == ["Hi Alice", "Hello!", ""]
    assert data["messages"][2]["media"] == ["https://img.example.com/tap.jpg"]


@pytest.mark.asyncio
async def test_message_pages_are_in_reading_order(parties):
    c = parties["client"]
    owner, alice = parties["owner"], parties["alice"]
    conv = (await open_conversation(c, owner["token"], alice["id"])).json()
    for i in range(5):
        await send(c, owner["token"], conv["id"], f"msg {i}")

    resp = await c.get(
        f"/v1/conversations/{conv['id']}/messages",
        params={"limit": 2},
        headers=auth_header(owner["token"]),
    )
    assert [m["content"] for m in resp.json()["messages"]] == ["msg 3", "msg 4"]

    resp = await c.get(
        f"/v1/conversations/{conv['id']}/messages",
        params={"limit": 2, "page": 2},
        headers=auth_header(owner["token"]),
    )
    assert [m["content"] for m in resp.json()["messages"]] == ["msg 1", "msg 2"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content,media",
    [("", []), ("   ", []), ("x" * 1001, []), ("hi", [f"m{i}" for i in range(6)])],
)
async def test_invalid_messages(parties, content, media):
    c = parties["client"]
    owner = parties["owner"]
    conv = (await open_conversation(c, owner["token"], parties["alice"]["id"])).json()
    resp = await send(c, owner["token"], conv["id"], content, media)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_outsiders_cannot_read_or_post(parties):
    c = parties["client"]
    owner = parties["owner"]
    conv = (await open_conversation(c, owner["token"], parties["alice"]["id"])).json()
    bob = auth_header(parties["bob"]["token"])

    resp = await c.get(f"/v1/conversations/{conv['id']}/messages", headers=bob)
    assert resp.status_code == 403
    resp = await send(c, parties["bob"]["token"], conv["id"], "let me in")
    assert resp.status_code == 403
    resp = await c.get("/v1/conversations/cv_missing/messages", headers=bob)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_unread_counts_and_read_receipts(parties):
    c = parties["client"]
    owner, alice = parties["owner"], parties["alice"]
    conv = (await open_conversation(c, owner["token"], alice["id"])).json()
    await send(c, owner["token"], conv["id"], "one")
    await send(c, owner["token"], conv["id"], "two")
    await send(c, alice["token"], conv["id"], "reply")

    resp = await c.get("/v1/conversations/unread-count", headers=auth_header(alice["token"]))
    assert resp.json() == {"count": 2, "conversation_counts": {conv["id"]: 2}}

    resp = await c.get("/v1/conversations/unread-count", headers=auth_header(owner["token"]))
    assert resp.json()["count"] == 1

    resp = await c.post(
        f"/v1/conversations/{conv['id']}/read", headers=auth_header(alice["token"])
    )
    assert resp.json() == {"conversation_id": conv["id"], "marked": 2}

    resp = await c.post(
        f"/v1/conversations/{conv['id']}/read", headers=auth_header(alice["token"])
    )
    assert resp.json()["marked"] == 0

    resp = await c.get("/v1/conversations/unread-count", headers=auth_header(alice["token"]))
    assert resp.json() == {"count": 0, "conversation_counts": {}}

    resp = await c.get(
        f"/v1/conversations/{conv['id']}/messages", headers=auth_header(owner["token"])
    )
    read_by = {m["content"]: m["read_by"] for m in resp.json()["messages"]}
    assert read_by["one"] == [alice["id"]]
    assert read_by["reply"] == [owner["id"]]


@pytest.mark.asyncio
async def test_listing_messages_marks_them_read(parties):
    c = parties["client"]
    owner, alice = parties["owner"], parties["alice"]
    conv = (await open_conversation(c, owner["token"], alice["id"])).json()
    await send(c, owner["token"], conv["id"], "ping")

    await c.get(f"/v1/conversations/{conv['id']}/messages", headers=auth_header(alice["token"]))
    resp = await c.get("/v1/conversations/unread-count", headers=auth_header(alice["token"]))
    assert resp.json()["count"] == 0


@pytest.mark.asyncio
async def test_conversation_list_most_recent_first(parties):
    c = parties["client"]
    owner = parties["owner"]
    with_alice = (await open_conversation(c, owner["token"], parties["alice"]["id"])).json()
    with_bob = (await open_conversation(c, owner["token"], parties["bob"]["id"])).json()
    await send(c, owner["token"], with_alice["id"], "latest")

    resp = await c.get("/v1/conversations", headers=auth_header(owner["token"]))
    data = resp.json()
    assert data["total"] == 2
    assert [cv["id"] for cv in data["conversations"]] == [with_alice["id"], with_bob["id"]]
    assert data["conversations"][0]["last_message"]["content"] == "latest"
    assert data["conversations"][1]["last_message"] is None

    resp = await c.get("/v1/conversations", headers=auth_header(parties["alice"]["token"]))
    first = resp.json()["conversations"][0]
    assert first["unread_count"] == 1

    outsider = await register_user(c, "outsider@example.com")
    resp = await c.get("/v1/conversations", headers=auth_header(outsider["token"]))
    assert resp.json() == {"conversations": [], "total": 0}


@pytest.mark.asyncio
async def test_conversation_survives_task_deletion(parties):
    c = parties["client"]
    owner = parties["owner"]
    task = await post_task(c, owner["token"])
    conv = (await open_conversation(c, owner["token"], parties["alice"]["id"], task["id"])).json()
    resp = await c.delete(f"/v1/tasks/{task['id']}", headers=auth_header(owner["token"]))
    assert resp.status_code == 204

    resp = await send(c, owner["token"], conv["id"], "still here")
    assert resp.status_code == 201
    resp = await c.get("/v1/conversations", headers=auth_header(owner["token"]))
    listed = resp.json()["conversations"][0]
    assert listed["task_id"] == task["id"]
    assert listed["task"] is None
