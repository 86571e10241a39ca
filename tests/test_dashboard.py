"""Tests for dashboard statistics and user feedback."""

from __future__ import annotations

from conftest import create_text_note


def _feedback(**overrides):
    body = {
        "feedbackType": "bug",
        "subject": "Upload button",
        "description": "The upload button does nothing on Safari.",
        "priority": "high",
        "pageUrl": "/notes/new",
    }
    body.update(overrides)
    return body


class TestNotesStats:
    def test_empty(self, client):
        data = client.get("/api/dashboard/notes-stats").get_json()
        assert data == {"total_notes": 0, "total_downloads": 0, "total_subjects": 0, "active_users": 2}

    def test_counts_published_notes(self, auth_client, client):
        create_text_note(auth_client, subject="Biology")
        create_text_note(auth_client, subject="Chemistry")
        draft_id = create_text_note(auth_client, subject="Physics").get_json()["note"]["id"]
        auth_client.put(f"/api/notes/{draft_id}", json={"status": "draft"})

        data = client.get("/api/dashboard/notes-stats").get_json()
        assert data["total_notes"] == 2
        assert data["total_subjects"] == 2


class TestTopContributors:
    def test_scores(self, auth_client, other_client, client):
        note_id = create_text_note(auth_client).get_json()["note"]["id"]
        create_text_note(auth_client, title="Second")
        create_text_note(other_client)
        other_client.post(f"/api/notes/{note_id}/actions", json={"action": "like"})

        contributors = client.get("/api/dashboard/top-contributors").get_json()["contributors"]
        assert [c["username"] for c in contributors] == ["alice", "bob"]
        assert contributors[0]["notes_count"] == 2
        assert contributors[0]["score"] == 22.0

    def test_limit(self, auth_client, other_client, client):
        create_text_note(auth_client)
        create_text_note(other_client)
        assert len(client.get("/api/dashboard/top-contributors?limit=1").get_json()["contributors"]) == 1

    def test_private_notes_ignored(self, auth_client, client):
        create_text_note(auth_client, visibility="Private")
        assert client.get("/api/dashboard/top-contributors").get_json()["contributors"] == []


class TestFeedback:
    def test_submit_and_list(self, auth_client):
        resp = auth_client.post("/api/feedback", json=_feedback())
        assert resp.status_code == 201
        feedback = resp.get_json()["feedback"]
        assert feedback["feedback_type"] == "bug"
        assert feedback["page_url"] == "/notes/new"
        listed = auth_client.get("/api/feedback").get_json()["feedback"]
        assert [f["id"] for f in listed] == [feedback["id"]]

    def test_validation(self, auth_client):
        assert auth_client.post("/api/feedback", json=_feedback(feedbackType="rant")).status_code == 400
        assert auth_client.post("/api/feedback", json=_feedback(subject="Hi")).status_code == 400
        assert auth_client.post("/api/feedback", json=_feedback(description="short")).status_code == 400
        assert auth_client.post("/api/feedback", json=_feedback(priority="urgent")).status_code == 400

    def test_feedback_is_private(self, auth_client, other_client):
        auth_client.post("/api/feedback", json=_feedback())
        assert other_client.get("/api/feedback").get_json()["feedback"] == []

    def test_requires_login(self, client):
        assert client.post("/api/feedback", json=_feedback()).status_code == 401
