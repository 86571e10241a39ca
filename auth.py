"""
User authentication: Flask-Login blueprint.

JSON register, login and logout routes, signed-in device sessions, and the
account data export / deletion endpoints. Uses werkzeug.security for
password hashing.
"""

from __future__ import annotations

import math
import secrets
from datetime import datetime, timedelta, timezone

from flask import Blueprint, jsonify, request, session
from flask_login import LoginManager, UserMixin, current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

import storage
from audit import log_event
from database import get_db
from db_stores import GamificationStoreDB, ProfileStoreDB, SessionStoreDB, export_user_data
from extensions import limiter
from helpers import client_ip, form_or_json, json_body, parse_int, utcnow

LOCKOUT_THRESHOLD = 5
LOCKOUT_MINUTES = 15
SESSION_TOKEN_KEY = "session_token"

auth_bp = Blueprint("auth", __name__)
login_manager = LoginManager()


class User(UserMixin):
    """Wraps a DB user row for Flask-Login."""

    def __init__(self, id: int, email: str, username: str = ""):
        self.id = id
        self.email = email
        self.username = username

    @staticmethod
    def get(user_id: int):
        db = get_db()
        row = db.execute(
            "SELECT u.id, u.email, p.username FROM users u "
            "LEFT JOIN profiles p ON p.id = u.id WHERE u.id = ?",
            (user_id,),
        ).fetchone()
        if row:
            return User(row["id"], row["email"], row["username"] or "")
        return None

    @staticmethod
    def get_by_email(email: str):
        db = get_db()
        return db.execute(
            "SELECT id, email, password_hash, login_attempts, locked_until FROM users WHERE email = ?",
            (email,),
        ).fetchone()


@login_manager.user_loader
def load_user(user_id):
    return User.get(int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Unauthorized"}), 401


def _validate_password(password: str) -> str | None:
    """Return an error message if password is too weak, else None."""
    if len(password) < 8:
        return "Password must be at least 8 characters."
    if not any(c.isupper() for c in password):
        return "Password must contain at least one uppercase letter."
    if not any(c.islower() for c in password):
        return "Password must contain at least one lowercase letter."
    if not any(c.isdigit() for c in password):
        return "Password must contain at least one digit."
    return None


def _user_payload(user_id: int) -> dict:
    profile = ProfileStoreDB.get(user_id) or {}
    return {
        "id": user_id,
        "email": profile.get("email", ""),
        "username": profile.get("username", ""),
        "fullName": profile.get("full_name", ""),
        "avatarUrl": profile.get("avatar_url", ""),
        "totalPoints": profile.get("total_points", 0),
        "level": profile.get("level", 1),
    }


def _start_session(user: User) -> dict:
    """Log the user in and record the device they signed in from."""
    login_user(user, remember=True)
    SessionStoreDB.purge_stale(user.id)
    token = secrets.token_urlsafe(32)
    session[SESSION_TOKEN_KEY] = token
    device = SessionStoreDB.create(
        user.id, token, request.headers.get("User-Agent", ""), client_ip()
    )
    ProfileStoreDB.touch_last_seen(user.id)
    store = GamificationStoreDB(user.id)
    store.unlock("first_login")
    store.log_activity("login")
    return device


def _session_view(row: dict, current_token: str | None) -> dict:
    return {
        "id": row["id"],
        "device_type": row["device_type"],
        "browser": row["browser"],
        "os": row["os"],
        "ip_address": row["ip_address"],
        "location": row["location"],
        "last_active": row["last_active"],
        "created_at": row["created_at"],
        "is_current": row["session_token"] == current_token,
    }


@auth_bp.route("/api/auth/register", methods=["POST"])
@limiter.limit("5 per hour")
def register():
    data = json_body()
    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", ""))
    username = str(data.get("username", "")).strip()
    full_name = str(data.get("fullName") or data.get("full_name") or "").strip()

    if not email or not password or not username:
        return jsonify({"error": "Email, password, and username are required"}), 400

    pw_error = _validate_password(password)
    if pw_error:
        return jsonify({"error": pw_error}), 400

    username_error = ProfileStoreDB.username_error(username)
    if username_error:
        return jsonify({"error": username_error}), 400

    if User.get_by_email(email):
        return jsonify({"error": "An account with this email already exists."}), 400
    if ProfileStoreDB.username_taken(username):
        return jsonify({"error": "Username is already taken"}), 400

    db = get_db()
    cur = db.execute(
        "INSERT INTO users (email, password_hash, created_at) VALUES (?, ?, ?)",
        (email, generate_password_hash(password), utcnow()),
    )
    user_id = cur.lastrowid
    db.commit()
    ProfileStoreDB.create(user_id, email, username, full_name)

    log_event("register", user_id, f"email={email}")
    _start_session(User(user_id, email, username))
    return jsonify({"success": True, "user": _user_payload(user_id)}), 201


@auth_bp.route("/api/auth/login", methods=["POST"])
@limiter.limit("5 per 15 minutes")
def login():
    data = form_or_json()
    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", ""))

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    row = User.get_by_email(email)
    if not row:
        return jsonify({"error": "Invalid email or password."}), 401

    # Check account lockout
    if row["locked_until"]:
        try:
            lock_time = datetime.fromisoformat(row["locked_until"])
        except ValueError:
            lock_time = None
        if lock_time is not None:
            remaining = (lock_time - datetime.now(timezone.utc)).total_seconds()
            if remaining > 0:
                mins = math.ceil(remaining / 60)
                log_event("login_locked", row["id"], f"email={email}")
                return jsonify({
                    "error": f"Account temporarily locked. Try again in {mins} minute(s).",
                }), 401

    db = get_db()
    if not row["password_hash"] or not check_password_hash(row["password_hash"], password):
        attempts = row["login_attempts"] + 1
        if attempts >= LOCKOUT_THRESHOLD:
            locked_until = (datetime.now(timezone.utc) + timedelta(minutes=LOCKOUT_MINUTES)).isoformat()
            db.execute(
                "UPDATE users SET login_attempts = ?, locked_until = ? WHERE id = ?",
                (attempts, locked_until, row["id"]),
            )
        else:
            db.execute("UPDATE users SET login_attempts = ? WHERE id = ?", (attempts, row["id"]))
        db.commit()
        log_event("login_failed", row["id"], f"email={email} attempts={attempts}")
        return jsonify({"error": "Invalid email or password."}), 401

    # Success: reset lockout fields
    db.execute("UPDATE users SET login_attempts = 0, locked_until = '' WHERE id = ?", (row["id"],))
    db.commit()

    user = User.get(row["id"])
    _start_session(user)
    log_event("login_success", row["id"])
    return jsonify({"success": True, "user": _user_payload(row["id"])})


@auth_bp.route("/api/auth/logout", methods=["POST"])
def logout():
    uid = current_user.id if current_user.is_authenticated else None
    token = session.pop(SESSION_TOKEN_KEY, None)
    if token:
        SessionStoreDB.delete_token(token)
    log_event("logout", uid)
    logout_user()
    return jsonify({"success": True})


@auth_bp.route("/api/auth/me")
@login_required
def me():
    token = session.get(SESSION_TOKEN_KEY)
    if token:
        SessionStoreDB.touch(token)
    return jsonify({"user": _user_payload(current_user.id)})


@auth_bp.route("/api/auth/sessions")
@login_required
def list_sessions():
    token = session.get(SESSION_TOKEN_KEY)
    rows = SessionStoreDB.list(current_user.id)
    return jsonify({"sessions": [_session_view(r, token) for r in rows]})


@auth_bp.route("/api/auth/sessions/create", methods=["POST"])
@login_required
def create_session():
    data = json_body()
    token = secrets.token_urlsafe(32)
    session[SESSION_TOKEN_KEY] = token
    row = SessionStoreDB.create(
        current_user.id,
        token,
        data.get("userAgent") or request.headers.get("User-Agent", ""),
        client_ip(),
        str(data.get("location") or ""),
    )
    return jsonify({"success": True, "session": _session_view(row, token)}), 201


@auth_bp.route("/api/auth/sessions", methods=["DELETE"])
@login_required
def delete_session():
    session_id = parse_int(request.args.get("id"))
    if session_id is None:
        return jsonify({"error": "Session id is required"}), 400
    if not SessionStoreDB.delete(current_user.id, session_id):
        return jsonify({"error": "Session not found"}), 404
    log_event("session_revoked", current_user.id, f"session_id={session_id}")
    return jsonify({"success": True})


@auth_bp.route("/api/auth/delete-account", methods=["POST"])
@login_required
def account_delete():
    """Delete the account and everything it owns after password confirmation."""
    uid = current_user.id
    password = str(form_or_json().get("password", ""))

    if not password:
        return jsonify({"error": "Password is required to confirm account deletion."}), 400

    db = get_db()
    row = db.execute("SELECT password_hash FROM users WHERE id = ?", (uid,)).fetchone()
    if not row or not check_password_hash(row["password_hash"], password):
        return jsonify({"error": "Incorrect password."}), 403

    log_event("account_delete", uid)
    db.execute("DELETE FROM users WHERE id = ?", (uid,))
    db.commit()
    storage.delete_user_files(uid)
    session.pop(SESSION_TOKEN_KEY, None)
    logout_user()
    return jsonify({"success": True, "message": "Account deleted."})


@auth_bp.route("/api/account/export")
@login_required
def account_export():
    """Export all of the caller's data as JSON."""
    data = export_user_data(current_user.id)
    log_event("data_export", current_user.id, "type=account_export")
    return jsonify(data)
