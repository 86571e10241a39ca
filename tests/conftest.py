"""
Test fixtures for StudyPair.

Provides app, client, auth_client, other_client and db fixtures backed by a
file-based SQLite database and a temporary upload folder. Two users are
seeded: alice (id 1) and bob (id 2).
"""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

PASSWORD = "TestPass123"

USERS = [
    (1, "alice@example.com", "alice", "Alice Student"),
    (2, "bob@example.com", "bob", "Bob Learner"),
]


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app

    app = create_app({
        "TESTING": True,
        "DATABASE": str(tmp_path / "test.db"),
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "SECRET_KEY": "test-secret-key",
    })

    with app.app_context():
        from werkzeug.security import generate_password_hash

        from cache_backend import get_cache
        from database import get_db, init_db, run_migrations, seed_catalog
        from db_stores import ProfileStoreDB

        init_db()
        run_migrations()
        seed_catalog()

        db = get_db()
        pw_hash = generate_password_hash(PASSWORD)
        for uid, email, username, full_name in USERS:
            db.execute(
                "INSERT INTO users (id, email, password_hash, created_at) VALUES (?, ?, ?, '2026-01-01')",
                (uid, email, pw_hash),
            )
            db.commit()
            ProfileStoreDB.create(uid, email, username, full_name)

        get_cache().clear()

        from realtime import signaling
        signaling.clear()

    yield app


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


def _login(app, email):
    client = app.test_client()
    resp = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def auth_client(app):
    """Authenticated test client (logged in as alice, user 1)."""
    return _login(app, "alice@example.com")


@pytest.fixture
def other_client(app):
    """Authenticated test client (logged in as bob, user 2)."""
    return _login(app, "bob@example.com")


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()


@pytest.fixture
def fake_redis():
    """Dict-backed stand-in for a redis.Redis client."""
    data: dict[str, bytes] = {}
    client = MagicMock()
    client.get.side_effect = lambda key: data.get(key)
    client.setex.side_effect = lambda key, ttl, value: data.__setitem__(key, value.encode())
    client.delete.side_effect = lambda *keys: [data.pop(k, None) for k in keys]
    client.scan_iter.side_effect = lambda pattern: [k for k in list(data) if k.startswith(pattern.rstrip("*"))]
    return client


@pytest.fixture
def quiz_payload():
    return {
        "title": "Cell Biology Basics",
        "description": "Organelles and their functions",
        "subject": "Biology",
        "gradeLevel": "university",
        "visibility": "public",
        "questions": [
            {
                "text": "Which organelle produces ATP?",
                "options": ["Nucleus", "Mitochondrion", "Ribosome", "Golgi body"],
                "correct": 1,
                "explanation": "Mitochondria carry out cellular respiration.",
            },
            {
                "text": "Which of these contain DNA?",
                "kind": "multiple",
                "options": ["Nucleus", "Mitochondrion", "Lysosome"],
                "correct": [0, 1],
            },
        ],
    }


def create_text_note(client, **overrides):
    data = {
        "title": "Photosynthesis summary",
        "subject": "Biology",
        "academicLevel": "University",
        "contentType": "text",
        "noteType": "Lecture Notes",
        "textContent": "Light reactions happen in the thylakoid membranes. " * 10,
        "visibility": "Public",
        "tags": "plants,energy",
    }
    data.update(overrides)
    return client.post("/api/notes", data=data, content_type="multipart/form-data")
