"""Tests for direct messages."""

from __future__ import annotations


def _send(client, username="bob", content="Hey, want to review chapter 3?", **extra):
    return client.post(f"/api/chat/{username}/messages", json={"content": content, **extra})


class TestSend:
    def test_send_creates_conversation(self, auth_client, other_client):
        resp = _send(auth_client)
        assert resp.status_code == 201
        message = resp.get_json()["message"]
        assert message["sender_id"] == 1
        assert message["recipient_id"] == 2
        assert message["message_type"] == "text"

        conversations = other_client.get("/api/chat/conversations").get_json()["conversations"]
        assert len(conversations) == 1
        assert conversations[0]["other_user"]["username"] == "alice"
        assert conversations[0]["unread_count"] == 1
        assert conversations[0]["last_message"]["content"] == "Hey, want to review chapter 3?"

    def test_recipient_notified_and_grouped(self, auth_client, other_client):
        first = _send(auth_client).get_json()["message"]
        _send(auth_client, content="Also chapter 4")
        inbox = other_client.get("/api/notifications?type=message").get_json()
        assert inbox["total"] == 1
        notif = inbox["notifications"][0]
        assert notif["groupKey"] == f"chat-{first['conversation_id']}"
        assert notif["message"] == "Also chapter 4"
        assert notif["metadata"]["groupCount"] == 2

    def test_sender_gets_social_starter(self, auth_client):
        _send(auth_client)
        achievements = auth_client.get("/api/gamification?action=achievements").get_json()["achievements"]
        assert any(a["name"] == "social_starter" and a["unlocked"] for a in achievements)

    def test_validation(self, auth_client):
        assert _send(auth_client, username="ghost").status_code == 404
        assert _send(auth_client, username="alice").status_code == 400
        assert _send(auth_client, content="   ").status_code == 400
        assert _send(auth_client, content="x" * 2001).status_code == 400
        assert _send(auth_client, messageType="video").status_code == 400

    def test_blocked_either_way(self, auth_client, other_client):
        other_client.post("/api/peer", json={"action": "block", "targetUserId": 1})
        resp = _send(auth_client)
        assert resp.status_code == 403
        assert _send(other_client, username="alice").status_code == 403

    def test_requires_login(self, client):
        assert _send(client).status_code == 401


class TestHistory:
    def test_no_conversation_yet(self, auth_client):
        data = auth_client.get("/api/chat/bob/messages").get_json()
        assert data == {"conversation": None, "messages": []}

    def test_messages_oldest_first_with_paging(self, auth_client, other_client):
        ids = [_send(auth_client, content=f"msg {i}").get_json()["message"]["id"] for i in range(4)]
        data = other_client.get("/api/chat/alice/messages?limit=2").get_json()
        assert [m["content"] for m in data["messages"]] == ["msg 2", "msg 3"]
        older = other_client.get(f"/api/chat/alice/messages?limit=2&before={ids[2]}").get_json()
        assert [m["content"] for m in older["messages"]] == ["msg 0", "msg 1"]

    def test_unknown_user(self, auth_client):
        assert auth_client.get("/api/chat/ghost/messages").status_code == 404


class TestReadReceipts:
    def test_recipient_marks_read(self, auth_client, other_client):
        message_id = _send(auth_client).get_json()["message"]["id"]
        resp = other_client.post(f"/api/chat/messages/{message_id}/read")
        assert resp.status_code == 200
        message = resp.get_json()["message"]
        assert message["is_read"] == 1
        assert message["read_at"]
        conversations = other_client.get("/api/chat/conversations").get_json()["conversations"]
        assert conversations[0]["unread_count"] == 0

    def test_sender_cannot_mark_read(self, auth_client):
        message_id = _send(auth_client).get_json()["message"]["id"]
        assert auth_client.post(f"/api/chat/messages/{message_id}/read").status_code == 404
