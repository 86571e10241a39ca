"""Tests for study video rooms."""

from __future__ import annotations

import pytest


def _room(client, **overrides):
    body = {"title": "Exam cram", "subject": "History", "roomType": "group", "maxParticipants": 6}
    body.update(overrides)
    return client.post("/api/video/rooms", json=body)


@pytest.fixture
def third_client(app):
    client = app.test_client()
    resp = client.post("/api/auth/register", json={
        "email": "carol@example.com", "password": "Str0ngPass", "username": "carol",
    })
    assert resp.status_code == 201
    return client


class TestRooms:
    def test_create(self, auth_client):
        resp = _room(auth_client)
        assert resp.status_code == 201
        room = resp.get_json()["room"]
        assert room["room_id"].startswith("room-")
        assert room["status"] == "waiting"
        assert room["max_participants"] == 6
        assert room["host"]["username"] == "alice"
        assert room["participant_count"] == 0

    def test_capacity_capped_by_type(self, auth_client):
        room = _room(auth_client, roomType="peer_to_peer", maxParticipants=10).get_json()["room"]
        assert room["max_participants"] == 2

    def test_validation(self, auth_client):
        assert _room(auth_client, title="").status_code == 400
        assert _room(auth_client, maxParticipants=1).status_code == 400
        assert _room(auth_client, maxParticipants=51).status_code == 400
        assert _room(auth_client, roomType="broadcast").status_code == 400

    def test_list_public_open_rooms(self, auth_client, other_client):
        _room(auth_client)
        _room(auth_client, title="Private", isPublic=False)
        ended = _room(auth_client, title="Old").get_json()["room"]["room_id"]
        auth_client.post(f"/api/video/rooms/{ended}/end")

        rooms = other_client.get("/api/video/rooms").get_json()["rooms"]
        assert [r["title"] for r in rooms] == ["Exam cram"]
        assert [r["title"] for r in other_client.get("/api/video/rooms?status=ended").get_json()["rooms"]] == ["Old"]
        assert other_client.get("/api/video/rooms?status=paused").status_code == 400

    def test_private_room_detail(self, auth_client, other_client):
        room_id = _room(auth_client, isPublic=False).get_json()["room"]["room_id"]
        assert other_client.get(f"/api/video/rooms/{room_id}").status_code == 404
        detail = auth_client.get(f"/api/video/rooms/{room_id}").get_json()["room"]
        assert detail["participants"][0]["is_host"] is True

    def test_host_only_management(self, auth_client, other_client):
        room_id = _room(auth_client).get_json()["room"]["room_id"]
        assert other_client.put(f"/api/video/rooms/{room_id}", json={"title": "Mine"}).status_code == 403
        assert other_client.delete(f"/api/video/rooms/{room_id}").status_code == 403
        assert other_client.post(f"/api/video/rooms/{room_id}/end").status_code == 403

        resp = auth_client.put(f"/api/video/rooms/{room_id}", json={"title": "Final cram", "roomType": "tutor_session"})
        room = resp.get_json()["room"]
        assert room["title"] == "Final cram"
        assert room["room_type"] == "group"

        assert auth_client.delete(f"/api/video/rooms/{room_id}").status_code == 200
        assert auth_client.get(f"/api/video/rooms/{room_id}").status_code == 404

    def test_feature_flag(self, app, auth_client):
        app.config["FEATURE_FLAGS"] = {**app.config["FEATURE_FLAGS"], "video_rooms": False}
        assert auth_client.get("/api/video/rooms").status_code == 404


class TestJoinLeave:
    def test_join_activates_room(self, auth_client, other_client):
        room_id = _room(auth_client).get_json()["room"]["room_id"]
        auth_client.post(f"/api/video/rooms/{room_id}/join")
        resp = other_client.post(f"/api/video/rooms/{room_id}/join")
        data = resp.get_json()
        assert data["room"]["status"] == "active"
        assert data["room"]["started_at"]
        assert {p["username"] for p in data["participants"]} == {"alice", "bob"}

    def test_room_full(self, auth_client, other_client, third_client):
        room_id = _room(auth_client, roomType="peer_to_peer").get_json()["room"]["room_id"]
        auth_client.post(f"/api/video/rooms/{room_id}/join")
        other_client.post(f"/api/video/rooms/{room_id}/join")
        resp = third_client.post(f"/api/video/rooms/{room_id}/join")
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "Room is full"
        # rejoining does not count against the cap
        assert other_client.post(f"/api/video/rooms/{room_id}/join").status_code == 200

    def test_join_ended_room(self, auth_client, other_client):
        room_id = _room(auth_client).get_json()["room"]["room_id"]
        auth_client.post(f"/api/video/rooms/{room_id}/end")
        assert other_client.post(f"/api/video/rooms/{room_id}/join").status_code == 410

    def test_join_unknown_room(self, auth_client):
        assert auth_client.post("/api/video/rooms/room-nope/join").status_code == 404

    def test_guest_leaving_keeps_room(self, auth_client, other_client):
        room_id = _room(auth_client).get_json()["room"]["room_id"]
        auth_client.post(f"/api/video/rooms/{room_id}/join")
        other_client.post(f"/api/video/rooms/{room_id}/join")
        data = other_client.post("/api/video/leave-room", json={"room_id": room_id}).get_json()
        assert data == {"success": True, "roomEnded": False, "remaining": 1}

    def test_host_leaving_ends_room(self, auth_client, other_client):
        room_id = _room(auth_client).get_json()["room"]["room_id"]
        auth_client.post(f"/api/video/rooms/{room_id}/join")
        other_client.post(f"/api/video/rooms/{room_id}/join")
        data = auth_client.post("/api/video/leave-room", json={"room_id": room_id}).get_json()
        assert data["roomEnded"] is True
        assert auth_client.get(f"/api/video/rooms/{room_id}").get_json()["room"]["status"] == "ended"

    def test_last_participant_leaving_ends_room(self, auth_client, other_client):
        room_id = _room(auth_client).get_json()["room"]["room_id"]
        other_client.post(f"/api/video/rooms/{room_id}/join")
        data = other_client.post("/api/video/leave-room", json={"room_id": room_id}).get_json()
        assert data == {"success": True, "roomEnded": True, "remaining": 0}

    def test_leave_errors(self, auth_client, other_client):
        room_id = _room(auth_client).get_json()["room"]["room_id"]
        assert other_client.post("/api/video/leave-room", json={}).status_code == 400
        assert other_client.post("/api/video/leave-room", json={"room_id": room_id}).status_code == 404
        assert other_client.post("/api/video/leave-room", json={"room_id": "room-nope"}).status_code == 404
