"""Study video rooms. The server tracks rooms and participants; media is peer to peer."""

from __future__ import annotations

import logging
from functools import wraps

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from db_stores import VideoRoomStoreDB
from helpers import current_user_id, json_body, parse_bool, parse_int

logger = logging.getLogger(__name__)

bp = Blueprint("video", __name__)

MIN_PARTICIPANTS, MAX_PARTICIPANTS = 2, 50
ROOM_STATUSES = ("waiting", "active", "ended")


def video_enabled(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not current_app.config.get("FEATURE_FLAGS", {}).get("video_rooms", True):
            return jsonify({"error": "Video rooms are disabled"}), 404
        return f(*args, **kwargs)
    return decorated


def _room_fields(data: dict, partial: bool = False) -> dict:
    fields = {}
    for src, col in (("title", "title"), ("description", "description"), ("subject", "subject"),
                     ("scheduledStart", "scheduled_start")):
        if src in data:
            fields[col] = str(data[src] or "").strip()
    if not partial or "roomType" in data:
        fields["room_type"] = data.get("roomType") or "group"
    if not partial or "maxParticipants" in data:
        fields["max_participants"] = parse_int(data.get("maxParticipants"), 10)
    if not partial or "isPublic" in data:
        fields["is_public"] = parse_bool(data.get("isPublic"), True)
    return fields


def _participants_error(fields: dict):
    count = fields.get("max_participants")
    if count is not None and not MIN_PARTICIPANTS <= count <= MAX_PARTICIPANTS:
        return jsonify({
            "error": f"maxParticipants must be between {MIN_PARTICIPANTS} and {MAX_PARTICIPANTS}"
        }), 400
    return None


def _hosted_room(room_id: str):
    room = VideoRoomStoreDB.get(room_id)
    if not room:
        return None, (jsonify({"error": "Room not found"}), 404)
    if room["host_user_id"] != current_user_id():
        return None, (jsonify({"error": "Only the host can manage this room"}), 403)
    return room, None


@bp.route("/api/video/rooms", methods=["POST"])
@login_required
@video_enabled
def api_room_create():
    fields = _room_fields(json_body())
    if not fields.get("title"):
        return jsonify({"error": "Title is required"}), 400
    error = _participants_error(fields)
    if error:
        return error
    room = VideoRoomStoreDB.create(current_user_id(), fields)
    return jsonify({"success": True, "room": room}), 201


@bp.route("/api/video/rooms")
@login_required
@video_enabled
def api_rooms_list():
    status = request.args.get("status", "")
    if status and status not in ROOM_STATUSES:
        return jsonify({"error": "Invalid status"}), 400
    rooms = VideoRoomStoreDB.list(
        status=status,
        subject=request.args.get("subject", ""),
        search=request.args.get("search", "").strip(),
    )
    return jsonify({"rooms": rooms})


@bp.route("/api/video/rooms/<room_id>")
@login_required
@video_enabled
def api_room_detail(room_id):
    room = VideoRoomStoreDB.get(room_id)
    uid = current_user_id()
    if not room or (
        not room["is_public"]
        and room["host_user_id"] != uid
        and not VideoRoomStoreDB.is_participant(room_id, uid)
    ):
        return jsonify({"error": "Room not found"}), 404
    room["participants"] = VideoRoomStoreDB.participants(room_id)
    return jsonify({"room": room})


@bp.route("/api/video/rooms/<room_id>", methods=["PUT"])
@login_required
@video_enabled
def api_room_update(room_id):
    _, error = _hosted_room(room_id)
    if error:
        return error
    fields = _room_fields(json_body(), partial=True)
    fields.pop("room_type", None)
    if "title" in fields and not fields["title"]:
        return jsonify({"error": "Title is required"}), 400
    error = _participants_error(fields)
    if error:
        return error
    return jsonify({"success": True, "room": VideoRoomStoreDB.update(room_id, fields)})


@bp.route("/api/video/rooms/<room_id>", methods=["DELETE"])
@login_required
@video_enabled
def api_room_delete(room_id):
    _, error = _hosted_room(room_id)
    if error:
        return error
    VideoRoomStoreDB.delete(room_id)
    logger.info("User %s deleted video room %s", current_user_id(), room_id)
    return jsonify({"success": True})


@bp.route("/api/video/rooms/<room_id>/join", methods=["POST"])
@login_required
@video_enabled
def api_room_join(room_id):
    room = VideoRoomStoreDB.join(room_id, current_user_id())
    return jsonify({
        "success": True,
        "room": room,
        "participants": VideoRoomStoreDB.participants(room_id, connected_only=True),
    })


@bp.route("/api/video/leave-room", methods=["POST"])
@login_required
@video_enabled
def api_room_leave():
    data = json_body()
    room_id = str(data.get("room_id") or "")
    if not room_id:
        return jsonify({"error": "room_id is required"}), 400
    result = VideoRoomStoreDB.leave(
        room_id, current_user_id(),
        left_at=str(data.get("left_at") or ""),
        connection_status=str(data.get("connection_status") or "disconnected"),
    )
    return jsonify({"success": True, "roomEnded": result["room_ended"], "remaining": result["remaining"]})


@bp.route("/api/video/rooms/<room_id>/end", methods=["POST"])
@login_required
@video_enabled
def api_room_end(room_id):
    _, error = _hosted_room(room_id)
    if error:
        return error
    return jsonify({"success": True, "room": VideoRoomStoreDB.end(room_id)})
