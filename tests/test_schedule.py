"""Tests for the weekly timetable API."""

from __future__ import annotations


def _entry(**overrides):
    body = {
        "subject": "Organic Chemistry",
        "day": "monday",
        "startTime": "09:00",
        "endTime": "10:30",
        "type": "class",
        "location": "Lab 2",
    }
    body.update(overrides)
    return body


def _create(client, **overrides):
    return client.post("/api/schedule", json=_entry(**overrides))


class TestEntries:
    def test_create_normalizes(self, auth_client):
        resp = _create(auth_client, startTime="9:00")
        assert resp.status_code == 201
        entry = resp.get_json()["entry"]
        assert entry["day"] == "Monday"
        assert entry["startTime"] == "09:00"
        assert entry["type"] == "class"
        assert entry["isRecurring"] is True

    def test_validation(self, auth_client):
        assert _create(auth_client, day="Funday").status_code == 400
        assert _create(auth_client, startTime="25:00").status_code == 400
        assert _create(auth_client, endTime="08:00").status_code == 400
        assert _create(auth_client, type="party").status_code == 400
        assert _create(auth_client, subject="").status_code == 400

    def test_list_sorted_and_filtered(self, auth_client):
        _create(auth_client, day="Wednesday", subject="Physics")
        _create(auth_client, day="Monday", startTime="13:00", endTime="14:00", type="study")
        _create(auth_client)
        data = auth_client.get("/api/schedule").get_json()
        assert data["total"] == 3
        assert [(e["day"], e["startTime"]) for e in data["schedule"]] == [
            ("Monday", "09:00"), ("Monday", "13:00"), ("Wednesday", "09:00"),
        ]
        assert auth_client.get("/api/schedule?type=study").get_json()["total"] == 1
        assert auth_client.get("/api/schedule?subject=phys").get_json()["total"] == 1
        assert auth_client.get("/api/schedule?day=wednesday").get_json()["total"] == 1

    def test_day_view(self, auth_client):
        _create(auth_client)
        data = auth_client.get("/api/schedule/day/MONDAY").get_json()
        assert data["day"] == "Monday"
        assert len(data["schedule"]) == 1

    def test_entries_are_per_user(self, auth_client, other_client):
        entry_id = _create(auth_client).get_json()["entry"]["id"]
        assert other_client.get("/api/schedule").get_json()["total"] == 0
        assert other_client.delete(f"/api/schedule/{entry_id}").status_code == 404


class TestConflicts:
    def test_overlap_rejected(self, auth_client):
        _create(auth_client)
        resp = _create(auth_client, subject="Calculus", startTime="10:00", endTime="11:00")
        assert resp.status_code == 409
        data = resp.get_json()
        assert data["error"] == "Schedule conflict detected"
        assert data["conflict"]["subject"] == "Organic Chemistry"

    def test_touching_entries_allowed(self, auth_client):
        _create(auth_client)
        assert _create(auth_client, startTime="10:30", endTime="11:30").status_code == 201

    def test_force_overrides(self, auth_client):
        _create(auth_client)
        assert _create(auth_client, startTime="10:00", endTime="11:00", force=True).status_code == 201

    def test_update_ignores_itself(self, auth_client):
        entry_id = _create(auth_client).get_json()["entry"]["id"]
        resp = auth_client.put(f"/api/schedule/{entry_id}", json={"endTime": "11:00"})
        assert resp.status_code == 200
        assert resp.get_json()["entry"]["endTime"] == "11:00"

    def test_update_into_conflict(self, auth_client):
        _create(auth_client)
        other = _create(auth_client, startTime="12:00", endTime="13:00").get_json()["entry"]["id"]
        resp = auth_client.put(f"/api/schedule/{other}", json={"startTime": "10:00"})
        assert resp.status_code == 409

    def test_update_checks_against_stored_times(self, auth_client):
        entry_id = _create(auth_client).get_json()["entry"]["id"]
        resp = auth_client.put(f"/api/schedule/{entry_id}", json={"startTime": "11:00"})
        assert resp.status_code == 400


class TestEntryManagement:
    def test_update_missing_and_empty(self, auth_client):
        assert auth_client.put("/api/schedule/999", json={"subject": "X"}).status_code == 404
        entry_id = _create(auth_client).get_json()["entry"]["id"]
        assert auth_client.put(f"/api/schedule/{entry_id}", json={}).status_code == 400

    def test_duplicate(self, auth_client):
        entry_id = _create(auth_client).get_json()["entry"]["id"]
        resp = auth_client.post(f"/api/schedule/{entry_id}/duplicate")
        assert resp.status_code == 201
        assert resp.get_json()["entry"]["subject"] == "Organic Chemistry (Copy)"
        assert auth_client.get("/api/schedule").get_json()["total"] == 2

    def test_delete_and_clear(self, auth_client):
        entry_id = _create(auth_client).get_json()["entry"]["id"]
        _create(auth_client, day="Friday")
        assert auth_client.delete(f"/api/schedule/{entry_id}").status_code == 200
        assert auth_client.delete(f"/api/schedule/{entry_id}").status_code == 404
        assert auth_client.delete("/api/schedule").get_json() == {"success": True, "deleted": 1}


class TestSettings:
    def test_defaults(self, auth_client):
        settings = auth_client.get("/api/schedule/settings").get_json()["settings"]
        assert settings == {
            "timeFormat": "12h", "startHour": 7, "endHour": 22,
            "showWeekends": True, "colorScheme": "default",
        }

    def test_update(self, auth_client):
        resp = auth_client.put("/api/schedule/settings", json={"timeFormat": "24h", "showWeekends": False})
        settings = resp.get_json()["settings"]
        assert settings["timeFormat"] == "24h"
        assert settings["showWeekends"] is False
        assert settings["startHour"] == 7

    def test_invalid(self, auth_client):
        assert auth_client.put("/api/schedule/settings", json={"timeFormat": "36h"}).status_code == 400
        assert auth_client.put("/api/schedule/settings", json={"endHour": 30}).status_code == 400


class TestExportImport:
    def test_round_trip_to_another_user(self, auth_client, other_client):
        _create(auth_client)
        _create(auth_client, day="Tuesday", subject="Essay writing", type="study")
        auth_client.put("/api/schedule/settings", json={"timeFormat": "24h"})
        export = auth_client.get("/api/schedule/export").get_json()
        assert len(export["schedule"]) == 2

        resp = other_client.post("/api/schedule/import", json={
            "schedule": export["schedule"], "settings": export["settings"],
        })
        assert resp.get_json() == {"success": True, "imported": 2, "skipped": 0}
        assert other_client.get("/api/schedule").get_json()["total"] == 2
        assert other_client.get("/api/schedule/settings").get_json()["settings"]["timeFormat"] == "24h"

    def test_conflicts_skipped_unless_forced(self, auth_client):
        _create(auth_client)
        payload = {"schedule": [_entry(subject="Clash", startTime="10:00", endTime="11:00"),
                                _entry(day="Friday")]}
        assert auth_client.post("/api/schedule/import", json=payload).get_json()["skipped"] == 1
        forced = auth_client.post("/api/schedule/import", json={**payload, "force": True}).get_json()
        assert forced["imported"] == 2

    def test_replace(self, auth_client):
        _create(auth_client)
        resp = auth_client.post("/api/schedule/import", json={"schedule": [_entry(day="Sunday")], "replace": True})
        assert resp.get_json()["imported"] == 1
        assert [e["day"] for e in auth_client.get("/api/schedule").get_json()["schedule"]] == ["Sunday"]

    def test_invalid_entry_aborts_whole_import(self, auth_client):
        payload = {"schedule": [_entry(), _entry(day="Someday")]}
        assert auth_client.post("/api/schedule/import", json=payload).status_code == 400
        assert auth_client.get("/api/schedule").get_json()["total"] == 0

    def test_requires_list(self, auth_client):
        assert auth_client.post("/api/schedule/import", json={"schedule": "nope"}).status_code == 400
