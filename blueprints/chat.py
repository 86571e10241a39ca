"""Direct messages between users, delivered live over Socket.IO."""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required

from db_stores import (
    MAX_MESSAGE_LENGTH,
    ChatStoreDB,
    ConnectionStoreDB,
    GamificationStoreDB,
    ProfileStoreDB,
    notify,
)
from extensions import limiter, socketio
from helpers import current_user_id, json_body, parse_int
from realtime import conversation_room

logger = logging.getLogger(__name__)

bp = Blueprint("chat", __name__)

MESSAGE_TYPES = ("text", "image", "file")


@bp.route("/api/chat/conversations")
@login_required
def api_conversations():
    return jsonify({"conversations": ChatStoreDB.conversations(current_user_id())})


@bp.route("/api/chat/<username>/messages")
@login_required
def api_chat_messages(username):
    other = ProfileStoreDB.get_by_username(username)
    if not other:
        return jsonify({"error": "User not found"}), 404
    uid = current_user_id()
    conv = ChatStoreDB.conversation_between(uid, other["id"])
    if not conv:
        return jsonify({"conversation": None, "messages": []})
    limit = min(100, max(1, parse_int(request.args.get("limit"), 50)))
    messages = ChatStoreDB.messages(conv["id"], limit=limit, before=parse_int(request.args.get("before")))
    return jsonify({"conversation": conv, "messages": messages})


@bp.route("/api/chat/<username>/messages", methods=["POST"])
@login_required
@limiter.limit("60 per minute")
def api_chat_send(username):
    other = ProfileStoreDB.get_by_username(username)
    if not other:
        return jsonify({"error": "User not found"}), 404
    uid = current_user_id()
    if other["id"] == uid:
        return jsonify({"error": "You cannot message yourself"}), 400
    data = json_body()
    content = str(data.get("content") or "").strip()
    if not content:
        return jsonify({"error": "Message content is required"}), 400
    if len(content) > MAX_MESSAGE_LENGTH:
        return jsonify({"error": f"Message must be {MAX_MESSAGE_LENGTH} characters or less"}), 400
    message_type = data.get("messageType") or "text"
    if message_type not in MESSAGE_TYPES:
        return jsonify({"error": "Invalid message type"}), 400
    if ConnectionStoreDB.is_blocked(uid, other["id"]):
        return jsonify({"error": "You cannot message this user"}), 403

    message = ChatStoreDB.send(uid, other["id"], content, message_type)
    socketio.emit("new_message", message, to=conversation_room(message["conversation_id"]))

    sender = ProfileStoreDB.get(uid)
    notify(
        other["id"], "message", f"New message from {sender['full_name'] or sender['username']}",
        content[:100], link=f"/chat/{sender['username']}", avatar=sender["avatar_url"],
        group_key=f"chat-{message['conversation_id']}",
        metadata={"conversationId": message["conversation_id"], "senderId": uid},
    )
    gam = GamificationStoreDB(uid)
    gam.log_activity("message", {"recipientId": other["id"]})
    gam.unlock("social_starter")
    return jsonify({"success": True, "message": message}), 201


@bp.route("/api/chat/messages/<int:message_id>/read", methods=["POST"])
@login_required
def api_chat_mark_read(message_id):
    message = ChatStoreDB.get_message(message_id)
    if not message or message["recipient_id"] != current_user_id():
        return jsonify({"error": "Message not found"}), 404
    message = ChatStoreDB.mark_read(message_id)
    socketio.emit(
        "message_read",
        {"messageId": message_id, "readAt": message["read_at"]},
        to=conversation_room(message["conversation_id"]),
    )
    return jsonify({"success": True, "message": message})
