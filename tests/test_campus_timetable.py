"""Tests for the university timetable lookup and its schedule route."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from campus_timetable import parse_time_range, parse_timetable_html, to_schedule_entry

RESULT_HTML = """
<html><body>
<table class="result">
  <tr><th>Code</th><th>Course</th><th>Group</th><th>Day</th><th>Time</th><th>Venue</th><th>Lecturer</th><th>Credit</th></tr>
  <tr><td>CSC508</td><td>Data Structures</td><td>CS2404A</td><td>MONDAY</td>
      <td>08:00 AM - 10:00 AM</td><td>BK 1&amp;2</td><td><b>Dr. Aina</b></td><td>3</td></tr>
  <tr><td>CSC508</td><td>Data Structures</td><td>CS2404A</td><td>Thursday</td>
      <td>14.00-16.00</td><td>Makmal 3</td><td>Dr. Aina</td><td>3</td></tr>
  <tr><td>CSC508</td><td>Data Structures</td><td>CS2404B</td><td>TBA</td>
      <td>TBA</td><td>-</td><td>-</td></tr>
  <tr><td></td><td>Missing code</td><td>x</td><td>Monday</td><td>09:00-10:00</td><td>v</td><td>l</td></tr>
  <tr><td>short</td><td>row</td></tr>
</table>
</body></html>
"""


def _upstream(text="", status_error=None):
    response = MagicMock()
    response.text = text
    if status_error:
        response.raise_for_status.side_effect = status_error
    return response


class TestParsing:
    def test_rows_extracted(self):
        rows = parse_timetable_html(RESULT_HTML)
        assert len(rows) == 3
        first = rows[0]
        assert first["courseCode"] == "CSC508"
        assert first["venue"] == "BK 1&2"
        assert first["lecturer"] == "Dr. Aina"
        assert first["creditHours"] == 3
        assert rows[2]["creditHours"] == 0

    def test_no_records(self):
        assert parse_timetable_html("<p>No Record Found</p>") == []
        assert parse_timetable_html("") == []

    @pytest.mark.parametrize("text,expected", [
        ("08:00 AM - 10:00 AM", ("08:00", "10:00")),
        ("2:00 PM-4:00 PM", ("14:00", "16:00")),
        ("14.00-16.00", ("14:00", "16:00")),
        ("10:00-12:00 PM", ("10:00", "12:00")),
        ("11:00-1:00 PM", ("11:00", "13:00")),
        ("12:00 AM-1:00 AM", ("00:00", "01:00")),
    ])
    def test_time_ranges(self, text, expected):
        assert parse_time_range(text) == expected

    def test_unparseable_time(self):
        assert parse_time_range("TBA") is None

    def test_schedule_entry(self):
        row = parse_timetable_html(RESULT_HTML)[0]
        assert to_schedule_entry(row) == {
            "subject": "CSC508 - Data Structures",
            "day": "Monday",
            "startTime": "08:00",
            "endTime": "10:00",
            "location": "BK 1&2",
            "instructor": "Dr. Aina",
            "type": "class",
            "isRecurring": True,
            "description": "Section CS2404A",
            "credits": 3,
        }

    def test_unusable_rows_skipped(self):
        assert to_schedule_entry(parse_timetable_html(RESULT_HTML)[2]) is None


class TestCampusTimetableRoute:
    url = "/api/schedule/campus-timetable"

    @patch("campus_timetable.requests.post")
    def test_lookup(self, mock_post, auth_client):
        mock_post.return_value = _upstream(RESULT_HTML)
        resp = auth_client.post(self.url, data={"cam_name": "B", "subj_code": "csc508"})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert len(data["data"]) == 3
        assert [e["day"] for e in data["entries"]] == ["Monday", "Thursday"]

        form = mock_post.call_args.kwargs["data"]
        assert form == {"cam_name": "B", "subj_code": "CSC508", "semester": "20254"}

    @patch("campus_timetable.requests.post")
    def test_faculty_and_semester_forwarded(self, mock_post, auth_client):
        mock_post.return_value = _upstream("<p>No Record Found</p>")
        resp = auth_client.post(self.url, json={
            "cam_name": "A", "subj_code": "MAT112", "fac_name": "CS", "semester": "20252",
        })
        assert resp.get_json() == {"success": True, "data": [], "entries": []}
        form = mock_post.call_args.kwargs["data"]
        assert form["fac_name"] == "CS"
        assert form["semester"] == "20252"

    @patch("campus_timetable.requests.post")
    def test_entries_import_into_schedule(self, mock_post, auth_client):
        mock_post.return_value = _upstream(RESULT_HTML)
        entries = auth_client.post(self.url, data={"cam_name": "B", "subj_code": "CSC508"}).get_json()["entries"]
        resp = auth_client.post("/api/schedule/import", json={"schedule": entries})
        assert resp.get_json()["imported"] == 2
        schedule = auth_client.get("/api/schedule").get_json()["schedule"]
        assert [s["startTime"] for s in schedule] == ["08:00", "14:00"]

    def test_missing_fields(self, auth_client):
        resp = auth_client.post(self.url, data={"cam_name": "B"})
        assert resp.status_code == 400

    @patch("campus_timetable.requests.post")
    def test_upstream_failure(self, mock_post, auth_client):
        mock_post.side_effect = requests.exceptions.ConnectionError("refused")
        resp = auth_client.post(self.url, data={"cam_name": "B", "subj_code": "CSC508"})
        assert resp.status_code == 502
        data = resp.get_json()
        assert data["success"] is False
        assert data["error"] == "Failed to fetch data from the timetable service"

    @patch("campus_timetable.requests.post")
    def test_upstream_error_status(self, mock_post, auth_client):
        mock_post.return_value = _upstream(status_error=requests.exceptions.HTTPError("503"))
        resp = auth_client.post(self.url, data={"cam_name": "B", "subj_code": "CSC508"})
        assert resp.status_code == 502

    def test_login_required(self, client):
        assert client.post(self.url, data={"cam_name": "B", "subj_code": "CSC508"}).status_code == 401

    def test_get_describes_usage(self, client):
        resp = client.get(self.url)
        assert resp.status_code == 405
        assert resp.get_json()["requiredFields"] == ["cam_name", "subj_code"]
