"""Integration tests exercising API endpoints via FastAPI's TestClient."""

from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient


def register_user(client: TestClient, username: str, password: str = "password123") -> dict[str, Any]:
    response = client.post(
        "/api/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": password},
    )
    assert response.status_code == 201, response.text
    return response.json()


def login_user(client: TestClient, username: str, password: str = "password123") -> str:
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["access_token"]


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def signup(client: TestClient, username: str) -> tuple[dict[str, Any], dict[str, str]]:
    user = register_user(client, username)
    return user, auth_headers(login_user(client, username))


def test_register_and_login_flow(client: TestClient):
    """End-to-end flow for registering and logging in a user."""

    user = register_user(client, "alice")
    assert user["username"] == "alice"
    assert "hashed_password" not in user

    duplicate = client.post(
        "/api/auth/register",
        json={"username": "alice", "email": "other@example.com", "password": "password123"},
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "Username is already taken"

    response = client.post("/api/auth/login", json={"username": "alice", "password": "nope-nope"})
    assert response.status_code == 401

    token = login_user(client, "alice")
    me = client.get("/api/auth/me", headers=auth_headers(token))
    assert me.status_code == 200
    assert me.json()["email"] == "alice@example.com"


def test_protected_routes_require_authentication(client: TestClient):
    assert client.get("/api/conversations").status_code == 401
    assert client.get("/api/chat/rooms").status_code == 401
    assert client.get("/api/chat/rooms", headers=auth_headers("garbage")).status_code == 401


def test_direct_conversation_flow(client: TestClient):
    """Messages, reactions, themes and delete-for-me through the HTTP surface."""

    alice, alice_headers = signup(client, "alice")
    bob, bob_headers = signup(client, "bob")
    _, mallory_headers = signup(client, "mallory")

    response = client.get(f"/api/conversations/with/{bob['id']}", headers=alice_headers)
    assert response.status_code == 200, response.text
    conversation = response.json()
    assert conversation["other_user"]["username"] == "bob"
    conversation_id = conversation["id"]

    again = client.get(f"/api/conversations/with/{alice['id']}", headers=bob_headers)
    assert again.json()["id"] == conversation_id

    assert client.get(f"/api/conversations/with/{alice['id']}", headers=alice_headers).status_code == 400

    response = client.post(
        f"/api/conversations/{conversation_id}/messages",
        json={"content": "  hi bob  "},
        headers=alice_headers,
    )
    assert response.status_code == 201, response.text
    message = response.json()
    assert message["content"] == "hi bob"
    assert message["sender"]["username"] == "alice"

    blank = client.post(
        f"/api/conversations/{conversation_id}/messages", json={"content": "   "}, headers=alice_headers
    )
    assert blank.status_code == 400

    inbox = client.get("/api/conversations", headers=bob_headers).json()
    assert [item["id"] for item in inbox] == [conversation_id]
    assert inbox[0]["last_message"]["content"] == "hi bob"
    assert inbox[0]["last_activity_type"] == "message"

    outsider = client.get(f"/api/conversations/{conversation_id}/messages", headers=mallory_headers)
    assert outsider.status_code == 404

    react = client.put(
        f"/api/conversations/messages/{message['id']}/react", json={"emoji": "😀"}, headers=bob_headers
    )
    assert react.status_code == 200
    assert react.json()["reactions"] == [{"user_id": bob["id"], "emoji": "😀"}]
    react = client.put(
        f"/api/conversations/messages/{message['id']}/react", json={"emoji": "😀"}, headers=bob_headers
    )
    assert react.json()["reactions"] == []

    theme = client.patch(f"/api/conversations/{conversation_id}/theme", json={"theme": "sunset"}, headers=bob_headers)
    assert theme.status_code == 200
    assert theme.json()["chat_theme"] == "sunset"
    bad_theme = client.patch(f"/api/conversations/{conversation_id}/theme", json={"theme": "neon"}, headers=bob_headers)
    assert bad_theme.status_code == 400

    archive = client.patch(
        f"/api/conversations/{conversation_id}/archive", json={"is_archived": True}, headers=bob_headers
    )
    assert archive.status_code == 200
    assert client.get("/api/conversations", headers=bob_headers).json() == []
    archived = client.get("/api/conversations", params={"archived": True}, headers=bob_headers).json()
    assert [item["id"] for item in archived] == [conversation_id]

    delete = client.delete(f"/api/conversations/{conversation_id}", headers=bob_headers)
    assert delete.status_code == 204
    assert client.get(f"/api/conversations/{conversation_id}/messages", headers=bob_headers).json() == []
    assert len(client.get(f"/api/conversations/{conversation_id}/messages", headers=alice_headers).json()) == 1

    client.post(f"/api/conversations/{conversation_id}/messages", json={"content": "still there?"}, headers=alice_headers)
    history = client.get(f"/api/conversations/{conversation_id}/messages", headers=bob_headers).json()
    assert [item["content"] for item in history] == ["still there?"]
    assert [item["id"] for item in client.get("/api/conversations", headers=bob_headers).json()] == [conversation_id]


def test_room_membership_flow(client: TestClient):
    """Create, join, chat, kick, leave and delete rooms through the HTTP surface."""

    owner, owner_headers = signup(client, "owner")
    guest, guest_headers = signup(client, "guest")
    extra, extra_headers = signup(client, "extra")

    response = client.post(
        "/api/chat/rooms",
        json={"title": "Jazz", "category": "music", "tags": ["live", "vinyl"]},
        headers=owner_headers,
    )
    assert response.status_code == 201, response.text
    room = response.json()
    room_id = room["id"]
    assert room["member_count"] == 1
    assert room["is_creator"] is True

    assert client.get("/api/chat/rooms/joinable-count", headers=guest_headers).json() == {"count": 1}
    listing = client.get("/api/chat/rooms", params={"category": "music"}, headers=guest_headers).json()
    assert [item["id"] for item in listing] == [room_id]

    assert client.get(f"/api/chat/rooms/{room_id}/messages", headers=guest_headers).status_code == 403

    joined = client.post(f"/api/chat/rooms/{room_id}/join", headers=guest_headers)
    assert joined.status_code == 200, joined.text
    assert joined.json()["member_count"] == 2
    assert joined.json()["is_member"] is True
    assert client.post(f"/api/chat/rooms/{room_id}/join", headers=guest_headers).status_code == 400
    client.post(f"/api/chat/rooms/{room_id}/join", headers=extra_headers)

    response = client.post(
        f"/api/chat/rooms/{room_id}/messages", json={"content": "hello room"}, headers=owner_headers
    )
    assert response.status_code == 201, response.text
    message = response.json()

    history = client.get(f"/api/chat/rooms/{room_id}/messages", headers=guest_headers).json()
    assert [item["content"] for item in history] == ["guest joined the room", "extra joined the room", "hello room"]
    assert history[0]["type"] == "system"
    assert history[0]["user"] is None

    react = client.put(
        f"/api/chat/rooms/{room_id}/messages/{message['id']}/react", json={"emoji": "🎷"}, headers=guest_headers
    )
    assert react.json()["reactions"] == [{"user_id": guest["id"], "emoji": "🎷"}]

    forbidden = client.patch(f"/api/chat/rooms/{room_id}", json={"title": "Mine"}, headers=guest_headers)
    assert forbidden.status_code == 403
    updated = client.patch(f"/api/chat/rooms/{room_id}", json={"title": "Late jazz"}, headers=owner_headers)
    assert updated.json()["title"] == "Late jazz"

    kicked = client.post(f"/api/chat/rooms/{room_id}/kick/{extra['id']}", headers=owner_headers)
    assert kicked.status_code == 200, kicked.text
    assert kicked.json()["member_count"] == 2
    assert client.get(f"/api/chat/rooms/{room_id}/messages", headers=extra_headers).status_code == 403

    left = client.post(f"/api/chat/rooms/{room_id}/leave", headers=owner_headers)
    assert left.status_code == 200
    assert left.json()["new_creator_id"] == guest["id"]

    detail = client.get(f"/api/chat/rooms/{room_id}", headers=guest_headers).json()
    assert detail["is_creator"] is True
    assert [member["user"]["id"] for member in detail["members"]] == [guest["id"]]

    my_rooms = client.get("/api/chat/rooms/my", headers=guest_headers).json()
    assert [item["id"] for item in my_rooms] == [room_id]
    assert my_rooms[0]["is_creator"] is True

    assert client.delete(f"/api/chat/rooms/{room_id}", headers=owner_headers).status_code == 403
    assert client.delete(f"/api/chat/rooms/{room_id}", headers=guest_headers).status_code == 204
    assert client.get(f"/api/chat/rooms/{room_id}", headers=guest_headers).status_code == 404
    assert owner["id"] != guest["id"]


def test_room_archive_and_clear(client: TestClient):
    _, owner_headers = signup(client, "owner")
    _, guest_headers = signup(client, "guest")
    room_id = client.post(
        "/api/chat/rooms", json={"title": "Books", "category": "reading"}, headers=owner_headers
    ).json()["id"]
    client.post(f"/api/chat/rooms/{room_id}/join", headers=guest_headers)
    client.post(f"/api/chat/rooms/{room_id}/messages", json={"content": "chapter one"}, headers=owner_headers)

    response = client.put(f"/api/chat/rooms/{room_id}/archive", json={"is_archived": True}, headers=guest_headers)
    assert response.json() == {"room_id": room_id, "is_archived": True}
    assert client.get("/api/chat/rooms/my", headers=guest_headers).json() == []

    response = client.post(f"/api/chat/rooms/{room_id}/clear", headers=guest_headers)
    assert response.status_code == 200
    assert client.get(f"/api/chat/rooms/{room_id}/messages", headers=guest_headers).json() == []

    client.post(f"/api/chat/rooms/{room_id}/messages", json={"content": "chapter two"}, headers=owner_headers)
    history = client.get(f"/api/chat/rooms/{room_id}/messages", headers=guest_headers).json()
    assert [item["content"] for item in history] == ["chapter two"]
    assert [item["id"] for item in client.get("/api/chat/rooms/my", headers=guest_headers).json()] == [room_id]

    message_id = history[0]["id"]
    assert client.delete(f"/api/chat/rooms/{room_id}/messages/{message_id}", headers=guest_headers).status_code == 204
    assert client.get(f"/api/chat/rooms/{room_id}/messages", headers=guest_headers).json() == []

    theme = client.put(f"/api/chat/rooms/{room_id}/theme", json={"theme": "midnight"}, headers=guest_headers)
    assert theme.json()["chat_theme"] == "midnight"


def test_history_pages_beyond_the_end_are_empty(client: TestClient):
    _, alice_headers = signup(client, "alice")
    bob, bob_headers = signup(client, "bob")
    conversation_id = client.get(f"/api/conversations/with/{bob['id']}", headers=alice_headers).json()["id"]
    for index in range(3):
        client.post(
            f"/api/conversations/{conversation_id}/messages", json={"content": f"note {index}"}, headers=alice_headers
        )

    url = f"/api/conversations/{conversation_id}/messages"
    page = client.get(url, params={"limit": 2, "offset": 2}, headers=bob_headers)
    assert [item["content"] for item in page.json()] == ["note 2"]
    past_end = client.get(url, params={"offset": 13}, headers=bob_headers)
    assert past_end.status_code == 200
    assert past_end.json() == []

    room_id = client.post(
        "/api/chat/rooms", json={"title": "Quiet", "category": "general"}, headers=alice_headers
    ).json()["id"]
    rooms_past_end = client.get(f"/api/chat/rooms/{room_id}/messages", params={"offset": 50}, headers=alice_headers)
    assert rooms_past_end.status_code == 200
    assert rooms_past_end.json() == []


def test_metrics_endpoint_reports_chat_traffic(client: TestClient):
    _, headers = signup(client, "counter")
    client.post("/api/chat/rooms", json={"title": "Stats", "category": "general"}, headers=headers)

    body = client.get("/metrics").text
    assert "# TYPE chat_messages_total counter" in body
    assert 'chat_messages_total{channel="room",type="system"}' in body
