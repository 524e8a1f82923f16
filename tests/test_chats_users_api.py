"""Users, chats and messages share the same collection pattern as scans."""


# ─── users ───────────────────────────────────────────────────────────────────

def test_users_list_is_seeded(client):
    r = client.get("/api/users")
    assert r.status_code == 200
    items = r.json()["data"]["items"]
    assert items == [{"id": "u1", "name": "User A"}, {"id": "u2", "name": "User B"}]


def test_users_list_paginates(client):
    first = client.get("/api/users", params={"limit": 1}).json()["data"]
    assert [user["id"] for user in first["items"]] == ["u1"]
    second = client.get(
        "/api/users", params={"limit": 1, "cursor": first["nextCursor"]}
    ).json()["data"]
    assert [user["id"] for user in second["items"]] == ["u2"]
    assert "nextCursor" not in second


def test_create_user_trims_name(client):
    r = client.post("/api/users", json={"name": "  Ada  "})
    assert r.status_code == 200
    user = r.json()["data"]
    assert user["name"] == "Ada"
    assert user["id"]


def test_create_user_requires_name(client):
    for payload in ({}, {"name": "   "}):
        r = client.post("/api/users", json=payload)
        assert r.status_code == 400
        assert r.json() == {"success": False, "error": "name required"}


def test_delete_user_and_delete_many(client):
    client.get("/api/users")
    assert client.delete("/api/users/u1").json()["data"] == {"id": "u1", "deleted": True}
    assert client.delete("/api/users/u1").json()["data"]["deleted"] is False

    r = client.post("/api/users/deleteMany", json={"ids": ["u1", "u2", 7, "zz"]})
    assert r.status_code == 200
    assert r.json()["data"] == {"deletedCount": 1, "ids": ["u1", "u2", "zz"]}


def test_delete_many_requires_ids(client):
    r = client.post("/api/users/deleteMany", json={"ids": [1, 2]})
    assert r.status_code == 400
    assert r.json()["error"] == "ids required"


# ─── chats & messages ────────────────────────────────────────────────────────

def test_chats_list_is_seeded_with_messages(client):
    items = client.get("/api/chats").json()["data"]["items"]
    assert [chat["id"] for chat in items] == ["c1"]
    assert items[0]["title"] == "General"
    assert items[0]["messages"][0]["text"] == "Hello"


def test_create_chat_returns_id_and_title(client):
    r = client.post("/api/chats", json={"title": " Ops "})
    assert r.status_code == 200
    data = r.json()["data"]
    assert set(data) == {"id", "title"}
    assert data["title"] == "Ops"

    messages = client.get(f"/api/chats/{data['id']}/messages")
    assert messages.json() == {"success": True, "data": []}


def test_create_chat_requires_title(client):
    r = client.post("/api/chats", json={"title": ""})
    assert r.status_code == 400
    assert r.json()["error"] == "title required"


def test_send_and_list_messages(client):
    client.get("/api/chats")
    r = client.post("/api/chats/c1/messages", json={"userId": "u2", "text": " Hi there "})
    assert r.status_code == 200
    message = r.json()["data"]
    assert message["chatId"] == "c1"
    assert message["userId"] == "u2"
    assert message["text"] == "Hi there"

    texts = [m["text"] for m in client.get("/api/chats/c1/messages").json()["data"]]
    assert texts == ["Hello", "Hi there"]


def test_messages_on_unknown_chat_return_404(client):
    assert client.get("/api/chats/nope/messages").status_code == 404
    r = client.post("/api/chats/nope/messages", json={"userId": "u1", "text": "hi"})
    assert r.status_code == 404
    assert r.json() == {"success": False, "error": "chat not found"}


def test_send_message_requires_user_and_text(client):
    client.get("/api/chats")
    r = client.post("/api/chats/c1/messages", json={"userId": "u1", "text": "  "})
    assert r.status_code == 400
    assert r.json()["error"] == "userId and text required"


def test_delete_chats(client):
    client.get("/api/chats")
    created = client.post("/api/chats", json={"title": "Temp"}).json()["data"]
    r = client.post("/api/chats/deleteMany", json={"ids": ["c1", created["id"], "gone"]})
    assert r.json()["data"]["deletedCount"] == 2
    assert client.delete("/api/chats/c1").json()["data"]["deleted"] is False


def test_malformed_json_body_uses_error_envelope(client):
    r = client.post(
        "/api/users", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert r.status_code == 400
    assert r.json()["success"] is False
