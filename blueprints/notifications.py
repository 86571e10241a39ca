"""Notification inbox and delivery preferences."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from db_stores import NotificationStoreDB
from helpers import current_user_id, json_body, parse_bool, parse_int

bp = Blueprint("notifications", __name__)


@bp.route("/api/notifications")
@login_required
def api_notifications():
    store = NotificationStoreDB(current_user_id())
    limit = min(100, max(1, parse_int(request.args.get("limit"), 20)))
    offset = max(0, parse_int(request.args.get("offset"), 0))
    notifications, total = store.list(
        limit=limit,
        offset=offset,
        type=request.args.get("type") or None,
        unread_only=parse_bool(request.args.get("unread")),
    )
    return jsonify({
        "notifications": notifications,
        "unreadCount": store.unread_count(),
        "total": total,
    })


@bp.route("/api/notifications", methods=["POST"])
@login_required
def api_notifications_create():
    data = json_body()
    notif_type = str(data.get("type") or "").strip()
    title = str(data.get("title") or "").strip()
    message = str(data.get("message") or "").strip()
    if not notif_type or not title or not message:
        return jsonify({"error": "Type, title, and message are required"}), 400

    expires = data.get("expiresHours")
    try:
        expires_hours = float(expires) if expires not in (None, "") else None
    except (TypeError, ValueError):
        return jsonify({"error": "expiresHours must be a number"}), 400

    view = NotificationStoreDB(current_user_id()).add(
        notif_type, title, message,
        priority=data.get("priority") or "medium",
        actionable=parse_bool(data.get("actionable")),
        link=str(data.get("link") or ""),
        avatar=str(data.get("avatar") or ""),
        metadata=data.get("metadata") if isinstance(data.get("metadata"), dict) else None,
        group_key=str(data.get("groupKey") or ""),
        expires_hours=expires_hours,
    )
    if view is None:
        return jsonify({"success": True, "skipped": True, "notification": None})
    return jsonify({"success": True, "skipped": False, "notification": view}), 201


@bp.route("/api/notifications", methods=["PATCH"])
@login_required
def api_notifications_mark():
    data = json_body()
    store = NotificationStoreDB(current_user_id())
    if parse_bool(data.get("markAllAsRead")):
        return jsonify({"success": True, "affectedCount": store.mark_all_read()})
    ids = data.get("notificationIds")
    if not isinstance(ids, list) or not ids:
        return jsonify({"error": "notificationIds or markAllAsRead is required"}), 400
    clean = [i for i in (parse_int(v) for v in ids) if i is not None]
    return jsonify({"success": True, "affectedCount": store.mark_read(clean)})


@bp.route("/api/notifications", methods=["DELETE"])
@login_required
def api_notifications_delete():
    store = NotificationStoreDB(current_user_id())
    if parse_bool(request.args.get("all")):
        return jsonify({"success": True, "affectedCount": store.delete_all()})
    notif_id = parse_int(request.args.get("id"))
    if notif_id is None:
        return jsonify({"error": "Notification id or all=true is required"}), 400
    return jsonify({"success": True, "affectedCount": store.delete(notif_id)})


@bp.route("/api/notifications/settings")
@login_required
def api_notification_settings():
    return jsonify({"settings": NotificationStoreDB(current_user_id()).settings()})


@bp.route("/api/notifications/settings", methods=["PUT"])
@login_required
def api_notification_settings_update():
    settings = NotificationStoreDB(current_user_id()).update_settings(json_body())
    return jsonify({"success": True, "settings": settings})
