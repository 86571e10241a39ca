"""Tests for registration, login lockout, device sessions and account deletion."""

from __future__ import annotations

from conftest import PASSWORD

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
)


class TestRegister:
    def test_register_creates_user_and_profile(self, client):
        resp = client.post("/api/auth/register", json={
            "email": "Carol@Example.com",
            "password": "Str0ngPass",
            "username": "carol_c",
            "fullName": "Carol C",
        })
        assert resp.status_code == 201
        user = resp.get_json()["user"]
        assert user["email"] == "carol@example.com"
        assert user["username"] == "carol_c"
        assert user["level"] == 1

        me = client.get("/api/auth/me")
        assert me.status_code == 200
        assert me.get_json()["user"]["username"] == "carol_c"

    def test_register_requires_fields(self, client):
        resp = client.post("/api/auth/register", json={"email": "x@example.com"})
        assert resp.status_code == 400

    def test_register_rejects_weak_password(self, client):
        resp = client.post("/api/auth/register", json={
            "email": "weak@example.com", "password": "short", "username": "weakling",
        })
        assert resp.status_code == 400
        assert "8 characters" in resp.get_json()["error"]

    def test_register_rejects_bad_username(self, client):
        resp = client.post("/api/auth/register", json={
            "email": "u@example.com", "password": "Str0ngPass", "username": "no spaces!",
        })
        assert resp.status_code == 400

    def test_register_duplicate_email(self, client):
        resp = client.post("/api/auth/register", json={
            "email": "alice@example.com", "password": "Str0ngPass", "username": "alice2",
        })
        assert resp.status_code == 400

    def test_register_duplicate_username_case_insensitive(self, client):
        resp = client.post("/api/auth/register", json={
            "email": "new@example.com", "password": "Str0ngPass", "username": "ALICE",
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Username is already taken"


class TestLogin:
    def test_login_success(self, client):
        resp = client.post("/api/auth/login", json={"email": "alice@example.com", "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.get_json()["user"]["id"] == 1

    def test_login_accepts_form_post(self, client):
        resp = client.post("/api/auth/login", data={"email": "alice@example.com", "password": PASSWORD})
        assert resp.status_code == 200

    def test_wrong_password(self, client):
        resp = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "Nope12345"})
        assert resp.status_code == 401

    def test_unknown_email(self, client):
        resp = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
        assert resp.status_code == 401

    def test_lockout_after_five_failures(self, client):
        for _ in range(5):
            client.post("/api/auth/login", json={"email": "bob@example.com", "password": "Wrong1234"})
        resp = client.post("/api/auth/login", json={"email": "bob@example.com", "password": PASSWORD})
        assert resp.status_code == 401
        assert "temporarily locked" in resp.get_json()["error"]

    def test_success_resets_attempts(self, client, app):
        for _ in range(3):
            client.post("/api/auth/login", json={"email": "bob@example.com", "password": "Wrong1234"})
        client.post("/api/auth/login", json={"email": "bob@example.com", "password": PASSWORD})
        with app.app_context():
            from database import get_db
            row = get_db().execute("SELECT login_attempts FROM users WHERE id = 2").fetchone()
        assert row["login_attempts"] == 0

    def test_first_login_unlocks_achievement(self, auth_client):
        data = auth_client.get("/api/gamification?action=achievements").get_json()
        unlocked = {a["name"] for a in data["achievements"] if a["unlocked"]}
        assert "first_login" in unlocked

    def test_clients_keep_separate_sessions(self, auth_client, other_client):
        assert auth_client.get("/api/auth/me").get_json()["user"]["username"] == "alice"
        assert other_client.get("/api/auth/me").get_json()["user"]["username"] == "bob"
        assert auth_client.get("/api/auth/me").get_json()["user"]["username"] == "alice"

    def test_protected_route_requires_login(self, client):
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Unauthorized"

    def test_logout(self, auth_client):
        assert auth_client.post("/api/auth/logout").status_code == 200
        assert auth_client.get("/api/auth/me").status_code == 401


class TestSessions:
    def test_login_records_current_device(self, app):
        client = app.test_client()
        client.post("/api/auth/login", json={"email": "alice@example.com", "password": PASSWORD},
                    headers={"User-Agent": CHROME_UA})
        sessions = client.get("/api/auth/sessions").get_json()["sessions"]
        assert len(sessions) == 1
        assert sessions[0]["is_current"] is True
        assert sessions[0]["browser"] == "Chrome 126"
        assert sessions[0]["os"] == "Windows 10/11"
        assert sessions[0]["device_type"] == "desktop"

    def test_create_session_parses_mobile_agent(self, auth_client):
        resp = auth_client.post("/api/auth/sessions/create", json={"userAgent": IPHONE_UA})
        assert resp.status_code == 201
        session = resp.get_json()["session"]
        assert session["device_type"] == "mobile"
        assert session["os"] == "iOS 17.4"
        assert session["browser"] == "Safari 17"

    def test_revoke_session(self, auth_client):
        sessions = auth_client.get("/api/auth/sessions").get_json()["sessions"]
        resp = auth_client.delete(f"/api/auth/sessions?id={sessions[0]['id']}")
        assert resp.status_code == 200
        assert auth_client.get("/api/auth/sessions").get_json()["sessions"] == []

    def test_revoke_requires_id(self, auth_client):
        assert auth_client.delete("/api/auth/sessions").status_code == 400

    def test_cannot_revoke_other_users_session(self, auth_client, other_client):
        bob_sessions = other_client.get("/api/auth/sessions").get_json()["sessions"]
        resp = auth_client.delete(f"/api/auth/sessions?id={bob_sessions[0]['id']}")
        assert resp.status_code == 404


class TestAccount:
    def test_delete_account_requires_correct_password(self, auth_client):
        resp = auth_client.post("/api/auth/delete-account", json={"password": "WrongPass1"})
        assert resp.status_code == 403

    def test_delete_account_removes_profile(self, auth_client, app):
        resp = auth_client.post("/api/auth/delete-account", json={"password": PASSWORD})
        assert resp.status_code == 200
        with app.app_context():
            from database import get_db
            db = get_db()
            assert db.execute("SELECT 1 FROM users WHERE id = 1").fetchone() is None
            assert db.execute("SELECT 1 FROM profiles WHERE id = 1").fetchone() is None
        assert auth_client.get("/api/auth/me").status_code == 401

    def test_export_contains_profile(self, auth_client):
        resp = auth_client.get("/api/account/export")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["profile"]["username"] == "alice"
