"""Tests for the notification inbox, grouping, caps and preferences."""

from __future__ import annotations

from datetime import datetime, timezone

from db_stores import in_quiet_hours


def _send(client, **overrides):
    body = {"type": "system", "title": "Heads up", "message": "Maintenance tonight"}
    body.update(overrides)
    return client.post("/api/notifications", json=body)


def _clear(client):
    client.delete("/api/notifications?all=true")


class TestInbox:
    def test_create_and_list(self, auth_client):
        _clear(auth_client)
        resp = _send(auth_client, priority="high", link="/status", metadata={"k": "v"})
        assert resp.status_code == 201
        notif = resp.get_json()["notification"]
        assert notif["priority"] == "high"
        assert notif["metadata"] == {"k": "v"}
        assert notif["silent"] is False

        data = auth_client.get("/api/notifications").get_json()
        assert data["total"] == 1
        assert data["unreadCount"] == 1
        assert data["notifications"][0]["link"] == "/status"

    def test_validation(self, auth_client):
        assert _send(auth_client, title="").status_code == 400
        assert _send(auth_client, expiresHours="soon").status_code == 400
        assert _send(auth_client, priority="critical").status_code == 400

    def test_filters_and_pagination(self, auth_client):
        _clear(auth_client)
        _send(auth_client, type="study_reminder")
        _send(auth_client)
        _send(auth_client)
        assert auth_client.get("/api/notifications?type=study_reminder").get_json()["total"] == 1
        page = auth_client.get("/api/notifications?limit=2&offset=2").get_json()
        assert len(page["notifications"]) == 1
        assert page["total"] == 3

    def test_mark_read(self, auth_client):
        _clear(auth_client)
        first = _send(auth_client).get_json()["notification"]["id"]
        _send(auth_client)
        resp = auth_client.patch("/api/notifications", json={"notificationIds": [first]})
        assert resp.get_json()["affectedCount"] == 1
        assert auth_client.get("/api/notifications?unread=true").get_json()["total"] == 1
        resp = auth_client.patch("/api/notifications", json={"markAllAsRead": True})
        assert resp.get_json()["affectedCount"] == 1
        assert auth_client.get("/api/notifications").get_json()["unreadCount"] == 0
        assert auth_client.patch("/api/notifications", json={}).status_code == 400

    def test_delete(self, auth_client, other_client):
        notif_id = _send(auth_client).get_json()["notification"]["id"]
        # other users cannot delete it
        assert other_client.delete(f"/api/notifications?id={notif_id}").get_json()["affectedCount"] == 0
        assert auth_client.delete(f"/api/notifications?id={notif_id}").get_json()["affectedCount"] == 1
        assert auth_client.delete("/api/notifications").status_code == 400

    def test_expired_notifications_hidden(self, auth_client):
        _clear(auth_client)
        _send(auth_client, expiresHours=-1)
        assert auth_client.get("/api/notifications").get_json()["total"] == 0


class TestDeliveryRules:
    def test_grouping_merges_unread(self, auth_client):
        _clear(auth_client)
        first = _send(auth_client, type="like", groupKey="note-like-7").get_json()["notification"]
        second = _send(auth_client, type="like", groupKey="note-like-7", message="Another like")
        merged = second.get_json()["notification"]
        assert merged["id"] == first["id"]
        assert merged["metadata"]["groupCount"] == 2
        assert merged["message"] == "Another like"
        assert auth_client.get("/api/notifications").get_json()["total"] == 1

    def test_disabled_type_is_skipped(self, auth_client):
        auth_client.put("/api/notifications/settings", json={"enableSystemNotifications": False})
        resp = _send(auth_client)
        assert resp.status_code == 200
        assert resp.get_json() == {"success": True, "skipped": True, "notification": None}

    def test_hourly_cap_spares_urgent(self, auth_client):
        _clear(auth_client)
        auth_client.put("/api/notifications/settings", json={"maxNotificationsPerHour": 2})
        assert _send(auth_client).status_code == 201
        assert _send(auth_client).status_code == 201
        assert _send(auth_client).get_json()["skipped"] is True
        assert _send(auth_client, priority="urgent").status_code == 201

    def test_sound_off_marks_silent(self, auth_client):
        auth_client.put("/api/notifications/settings", json={"notificationSound": False})
        assert _send(auth_client).get_json()["notification"]["silent"] is True


class TestSettings:
    def test_defaults(self, auth_client):
        settings = auth_client.get("/api/notifications/settings").get_json()["settings"]
        assert settings["enableMessageNotifications"] is True
        assert settings["quietHours"] == {"enabled": False, "startTime": "22:00", "endTime": "08:00"}
        assert settings["maxNotificationsPerHour"] == 10

    def test_update(self, auth_client):
        resp = auth_client.put("/api/notifications/settings", json={
            "enableEmailNotifications": False,
            "quietHours": {"enabled": True, "startTime": "23:30", "endTime": "06:00"},
        })
        settings = resp.get_json()["settings"]
        assert settings["enableEmailNotifications"] is False
        assert settings["quietHours"]["startTime"] == "23:30"

    def test_invalid_values(self, auth_client):
        resp = auth_client.put("/api/notifications/settings", json={"quietHours": {"startTime": "25:00"}})
        assert resp.status_code == 400
        resp = auth_client.put("/api/notifications/settings", json={"maxNotificationsPerHour": 0})
        assert resp.status_code == 400


class TestQuietHours:
    def _at(self, hhmm):
        hour, minute = map(int, hhmm.split(":"))
        return datetime(2026, 5, 1, hour, minute, tzinfo=timezone.utc)

    def test_wraps_midnight(self):
        assert in_quiet_hours("22:00", "08:00", self._at("23:15"))
        assert in_quiet_hours("22:00", "08:00", self._at("07:59"))
        assert not in_quiet_hours("22:00", "08:00", self._at("08:00"))
        assert not in_quiet_hours("22:00", "08:00", self._at("12:00"))

    def test_same_day_window(self):
        assert in_quiet_hours("13:00", "14:00", self._at("13:30"))
        assert not in_quiet_hours("13:00", "14:00", self._at("14:30"))
