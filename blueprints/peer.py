"""Peer connections: search, requests, accept/decline, blocking."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from db_stores import ConnectionStoreDB
from helpers import current_user_id, json_body, parse_bool, parse_int

bp = Blueprint("peer", __name__)

CONNECTION_STATUSES = ("accepted", "pending", "blocked")


@bp.route("/api/peer")
@login_required
def api_peer():
    uid = current_user_id()
    action = request.args.get("action", "connections")

    if action == "search":
        limit = min(50, max(1, parse_int(request.args.get("limit"), 20)))
        users = ConnectionStoreDB.search(
            uid,
            request.args.get("q", "").strip(),
            discover=parse_bool(request.args.get("discover")),
            limit=limit,
        )
        return jsonify({"users": users})
    if action == "connections":
        status = request.args.get("status", "accepted")
        if status not in CONNECTION_STATUSES:
            return jsonify({"error": "Invalid status"}), 400
        return jsonify({"connections": ConnectionStoreDB.connections(uid, status)})
    if action == "requests":
        return jsonify({"requests": ConnectionStoreDB.requests(uid)})
    if action == "sent":
        return jsonify({"sent": ConnectionStoreDB.sent(uid)})
    if action == "blocked":
        return jsonify({"blocked": ConnectionStoreDB.blocked(uid)})
    return jsonify({"error": "Invalid action"}), 400


@bp.route("/api/peer", methods=["POST"])
@login_required
def api_peer_action():
    uid = current_user_id()
    data = json_body()
    action = data.get("action", "")
    target = parse_int(data.get("targetUserId"))
    if not action or target is None:
        return jsonify({"error": "action and targetUserId are required"}), 400

    if action == "connect":
        conn = ConnectionStoreDB.connect(uid, target, str(data.get("message") or ""))
        return jsonify({"success": True, "connection": conn}), 201
    if action in ("accept", "decline"):
        conn = ConnectionStoreDB.respond(target, uid, accept=action == "accept")
        return jsonify({"success": True, "connection": conn})
    if action == "block":
        return jsonify({"success": True, "connection": ConnectionStoreDB.block(uid, target)})
    if action == "unblock":
        if not ConnectionStoreDB.unblock(uid, target):
            return jsonify({"error": "User is not blocked"}), 404
        return jsonify({"success": True})
    return jsonify({"error": "Invalid action"}), 400


@bp.route("/api/peer", methods=["DELETE"])
@login_required
def api_peer_remove():
    target = parse_int(request.args.get("targetUserId"))
    if target is None:
        return jsonify({"error": "targetUserId is required"}), 400
    removed = ConnectionStoreDB.remove(current_user_id(), target)
    if not removed:
        return jsonify({"error": "Connection not found"}), 404
    return jsonify({"success": True})
