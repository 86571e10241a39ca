"""Profile routes: the caller's own profile, username checks, public pages."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from db_stores import ProfileStoreDB
from helpers import current_user_id, json_body

bp = Blueprint("profiles", __name__)


@bp.route("/api/user/profile")
@login_required
def api_profile():
    profile = ProfileStoreDB.get(current_user_id())
    if not profile:
        return jsonify({"error": "Profile not found"}), 404
    return jsonify({"profile": profile})


@bp.route("/api/user/profile", methods=["PUT"])
@login_required
def api_profile_update():
    data = json_body()
    for required in ("full_name", "username", "email"):
        if not str(data.get(required) or "").strip():
            return jsonify({"error": "Full name, username, and email are required"}), 400
    fields = {k: (v.strip() if isinstance(v, str) else v) for k, v in data.items()}
    profile = ProfileStoreDB.update(current_user_id(), fields)
    return jsonify({"success": True, "profile": profile})


@bp.route("/api/user/username")
@login_required
def api_username_check():
    username = request.args.get("username", "").strip()
    error = ProfileStoreDB.username_error(username)
    if error:
        return jsonify({"available": False, "message": error})
    if ProfileStoreDB.username_taken(username, exclude_user_id=current_user_id()):
        return jsonify({"available": False, "message": "Username is already taken"})
    return jsonify({"available": True, "message": "Username is available"})


@bp.route("/api/profile/<username>")
def api_public_profile(username):
    view = ProfileStoreDB.public_view(username)
    if view is None:
        return jsonify({"error": "Profile not found"}), 404
    return jsonify(view)
