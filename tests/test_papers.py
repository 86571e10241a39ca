"""Tests for past exam papers."""

from __future__ import annotations

import io

PDF_BYTES = b"%PDF-1.7\n%%EOF"


def upload_paper(client, with_solution=False, **overrides):
    data = {
        "title": "Calculus Final 2024",
        "subject": "Mathematics",
        "academicLevel": "University",
        "year": "2024",
        "paperType": "Final Exam",
        "institution": "State University",
        "tags": "calculus,integrals",
        "questionFile": (io.BytesIO(PDF_BYTES), "final.pdf", "application/pdf"),
    }
    if with_solution:
        data["solutionFile"] = (io.BytesIO(PDF_BYTES), "final-solutions.pdf", "application/pdf")
    data.update(overrides)
    return client.post("/api/papers", data=data, content_type="multipart/form-data")


class TestUpload:
    def test_upload_with_solution(self, auth_client):
        resp = upload_paper(auth_client, with_solution=True)
        assert resp.status_code == 201
        paper = resp.get_json()["paper"]
        assert paper["has_solution"] is True
        assert paper["paper_type"] == "final-exam"
        assert paper["academic_level"] == "university"
        assert paper["year"] == 2024
        assert paper["tags"] == ["calculus", "integrals"]

        history = auth_client.get("/api/gamification?action=point-history").get_json()["history"]
        assert any(h["source"] == "paper_upload" and h["points"] == 20 for h in history)

    def test_upload_without_solution(self, auth_client):
        paper = upload_paper(auth_client).get_json()["paper"]
        assert paper["has_solution"] is False
        assert paper["solution_file_path"] in ("", None)

    def test_missing_fields(self, auth_client):
        assert upload_paper(auth_client, year="").status_code == 400
        assert upload_paper(auth_client, title="").status_code == 400

    def test_rejects_non_pdf(self, auth_client):
        resp = upload_paper(auth_client, questionFile=(io.BytesIO(b"GIF89a"), "x.pdf", "application/pdf"))
        assert resp.status_code == 400

    def test_requires_login(self, client):
        assert upload_paper(client).status_code == 401


class TestBrowse:
    def test_list_filters(self, auth_client, client):
        upload_paper(auth_client, with_solution=True)
        upload_paper(auth_client, title="Physics Midterm", subject="Physics", year="2023")
        upload_paper(auth_client, title="Hidden", visibility="private")

        data = client.get("/api/papers").get_json()
        assert data["pagination"]["total"] == 2
        titles = {p["title"] for p in client.get("/api/papers?year=2023").get_json()["papers"]}
        assert titles == {"Physics Midterm"}
        with_solution = client.get("/api/papers?hasSolution=true").get_json()["papers"]
        assert [p["title"] for p in with_solution] == ["Calculus Final 2024"]

    def test_sort_by_year_ascending(self, auth_client, client):
        upload_paper(auth_client, year="2024")
        upload_paper(auth_client, year="2019")
        papers = client.get("/api/papers?sortBy=year&sortOrder=asc").get_json()["papers"]
        assert [p["year"] for p in papers] == [2019, 2024]

    def test_detail_counts_views(self, auth_client, client):
        paper_id = upload_paper(auth_client).get_json()["paper"]["id"]
        client.get(f"/api/papers/{paper_id}")
        paper = client.get(f"/api/papers/{paper_id}").get_json()["paper"]
        assert paper["view_count"] == 2
        assert paper["isOwner"] is False

    def test_private_paper_hidden(self, auth_client, other_client):
        paper_id = upload_paper(auth_client, visibility="private").get_json()["paper"]["id"]
        assert other_client.get(f"/api/papers/{paper_id}").status_code == 404
        assert auth_client.get(f"/api/papers/{paper_id}").status_code == 200


class TestInteractions:
    def test_like_toggle(self, auth_client, other_client):
        paper_id = upload_paper(auth_client).get_json()["paper"]["id"]
        assert other_client.post(f"/api/papers/{paper_id}/like").get_json() == {"liked": True, "likeCount": 1}
        assert other_client.get(f"/api/papers/{paper_id}/like").get_json()["liked"] is True
        assert other_client.post(f"/api/papers/{paper_id}/like").get_json() == {"liked": False, "likeCount": 0}

    def test_download_question_and_solution(self, auth_client, client):
        paper_id = upload_paper(auth_client, with_solution=True).get_json()["paper"]["id"]
        resp = client.post(f"/api/papers/{paper_id}/download", json={"fileType": "solution"})
        assert resp.get_json()["downloadUrl"] == f"/api/papers/{paper_id}/file?type=solution"
        file_resp = client.get(f"/api/papers/{paper_id}/file?type=solution")
        assert file_resp.status_code == 200
        assert file_resp.mimetype == "application/pdf"
        assert client.get(f"/api/papers/{paper_id}").get_json()["paper"]["download_count"] == 1

    def test_download_missing_solution(self, auth_client, client):
        paper_id = upload_paper(auth_client).get_json()["paper"]["id"]
        resp = client.post(f"/api/papers/{paper_id}/download", json={"fileType": "solution"})
        assert resp.status_code == 404

    def test_download_bad_file_type(self, auth_client, client):
        paper_id = upload_paper(auth_client).get_json()["paper"]["id"]
        resp = client.post(f"/api/papers/{paper_id}/download", json={"fileType": "answers"})
        assert resp.status_code == 400

    def test_comments(self, auth_client, other_client):
        paper_id = upload_paper(auth_client).get_json()["paper"]["id"]
        resp = other_client.post(f"/api/papers/{paper_id}/comments", json={"content": "Question 4 is tough"})
        assert resp.status_code == 201
        assert resp.get_json()["comment"]["profile"]["username"] == "bob"
        data = other_client.get(f"/api/papers/{paper_id}/comments").get_json()
        assert data["total"] == 1
        assert other_client.post(f"/api/papers/{paper_id}/comments", json={"content": ""}).status_code == 400


class TestOwnership:
    def test_owner_update(self, auth_client):
        paper_id = upload_paper(auth_client).get_json()["paper"]["id"]
        resp = auth_client.put(f"/api/papers/{paper_id}", json={"title": "Renamed", "year": "2022"})
        paper = resp.get_json()["paper"]
        assert paper["title"] == "Renamed"
        assert paper["year"] == 2022
        assert auth_client.put(f"/api/papers/{paper_id}", json={"year": "soon"}).status_code == 400

    def test_non_owner_forbidden(self, auth_client, other_client):
        paper_id = upload_paper(auth_client).get_json()["paper"]["id"]
        assert other_client.put(f"/api/papers/{paper_id}", json={"title": "X"}).status_code == 403
        assert other_client.delete(f"/api/papers/{paper_id}").status_code == 403

    def test_delete_removes_files(self, app, auth_client):
        paper = upload_paper(auth_client).get_json()["paper"]
        assert auth_client.delete(f"/api/papers/{paper['id']}").status_code == 200
        with app.app_context():
            import storage
            assert storage.resolve(paper["question_file_path"]) is None
        assert auth_client.get(f"/api/papers/{paper['id']}").status_code == 404
