"""
Socket.IO event handlers.

Per-user rooms (``user:{id}``) carry notifications, conversation rooms
(``conversation:{id}``) carry chat messages and typing indicators, and video
rooms (``video:{roomId}``) relay WebRTC signaling between browsers. Media
itself never passes through the server.
"""

from __future__ import annotations

import logging
import threading

from flask import request
from flask_login import current_user
from flask_socketio import emit, join_room, leave_room

from db_stores import ChatStoreDB
from extensions import socketio
from helpers import parse_int, utcnow

logger = logging.getLogger(__name__)


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def conversation_room(conversation_id: int) -> str:
    return f"conversation:{conversation_id}"


def video_room(room_id: str) -> str:
    return f"video:{room_id}"


class SignalingState:
    """Who is in which video room, keyed by socket id.

    Lives in process memory; a multi-worker deployment pins sockets with
    sticky sessions and fans events out through the Redis message queue.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._rooms: dict[str, dict[str, dict]] = {}

    def join(self, room_id: str, sid: str, name: str, user_id: int | None) -> None:
        with self._lock:
            self._rooms.setdefault(room_id, {})[sid] = {
                "socketId": sid,
                "name": name,
                "userId": user_id,
                "state": {},
                "joinedAt": utcnow(),
            }

    def update_state(self, room_id: str, sid: str, state: dict) -> dict | None:
        with self._lock:
            member = self._rooms.get(room_id, {}).get(sid)
            if member is None:
                return None
            member["state"] = {**member["state"], **state}
            return dict(member["state"])

    def member(self, room_id: str, sid: str) -> dict | None:
        with self._lock:
            member = self._rooms.get(room_id, {}).get(sid)
            return dict(member) if member else None

    def leave(self, room_id: str, sid: str) -> bool:
        with self._lock:
            members = self._rooms.get(room_id)
            if not members or sid not in members:
                return False
            del members[sid]
            if not members:
                del self._rooms[room_id]
            return True

    def rooms_of(self, sid: str) -> list[str]:
        with self._lock:
            return [room_id for room_id, members in self._rooms.items() if sid in members]

    def participants(self, room_id: str) -> list[dict]:
        with self._lock:
            return [
                {**m, "state": dict(m["state"])}
                for m in self._rooms.get(room_id, {}).values()
            ]

    def clear(self) -> None:
        with self._lock:
            self._rooms.clear()


signaling = SignalingState()


def _uid() -> int | None:
    return current_user.id if current_user.is_authenticated else None


# ── Connection ───────────────────────────────────────────────────────


@socketio.on("connect")
def on_connect(auth=None):
    uid = _uid()
    if uid is not None:
        join_room(user_room(uid))
    logger.debug("Socket %s connected (user %s)", request.sid, uid)


@socketio.on("disconnect")
def on_disconnect(*args):
    for room_id in signaling.rooms_of(request.sid):
        _leave_video(room_id, request.sid)
    logger.debug("Socket %s disconnected", request.sid)


# ── Chat ─────────────────────────────────────────────────────────────


@socketio.on("join_conversation")
def on_join_conversation(data):
    uid = _uid()
    conversation_id = parse_int((data or {}).get("conversationId"))
    if uid is None or conversation_id is None:
        emit("error", {"error": "Unauthorized"})
        return
    if not ChatStoreDB.is_participant(conversation_id, uid):
        emit("error", {"error": "Conversation not found"})
        return
    join_room(conversation_room(conversation_id))
    ChatStoreDB.mark_conversation_read(conversation_id, uid)
    emit("joined_conversation", {"conversationId": conversation_id})


@socketio.on("typing")
def on_typing(data):
    uid = _uid()
    conversation_id = parse_int((data or {}).get("conversationId"))
    if uid is None or conversation_id is None:
        return
    if not ChatStoreDB.is_participant(conversation_id, uid):
        return
    emit(
        "typing",
        {
            "conversationId": conversation_id,
            "userId": uid,
            "username": current_user.username,
            "isTyping": bool((data or {}).get("isTyping", True)),
        },
        to=conversation_room(conversation_id),
        include_self=False,
    )


# ── Video signaling ──────────────────────────────────────────────────


@socketio.on("join-room")
def on_join_room(data):
    data = data or {}
    room_id = str(data.get("roomId") or "")
    if not room_id:
        emit("error", {"error": "roomId is required"})
        return
    name = str(data.get("name") or (current_user.username if current_user.is_authenticated else "Guest"))
    signaling.join(room_id, request.sid, name, _uid())
    join_room(video_room(room_id))
    emit("user-joined", {"socketId": request.sid, "name": name}, to=video_room(room_id), include_self=False)
    emit("participants", signaling.participants(room_id), to=video_room(room_id))


@socketio.on("state-update")
def on_state_update(data):
    data = data or {}
    room_id = str(data.get("roomId") or "")
    rooms = [room_id] if room_id else signaling.rooms_of(request.sid)
    for rid in rooms:
        state = signaling.update_state(rid, request.sid, data.get("state") or {})
        if state is None:
            continue
        emit("state-update", {"socketId": request.sid, "state": state}, to=video_room(rid), include_self=False)


@socketio.on("signal")
def on_signal(data):
    data = data or {}
    target = data.get("to")
    if not target:
        return
    if not set(signaling.rooms_of(request.sid)) & set(signaling.rooms_of(target)):
        logger.warning("Dropped signal from %s to %s: no shared room", request.sid, target)
        return
    emit("signal", {"fromSocketId": request.sid, "data": data.get("data")}, to=target)


@socketio.on("chat")
def on_room_chat(data):
    data = data or {}
    room_id = str(data.get("roomId") or "")
    member = signaling.member(room_id, request.sid)
    if member is None:
        return
    emit(
        "chat",
        {
            "socketId": request.sid,
            "name": member["name"],
            "message": str(data.get("message") or ""),
            "sentAt": utcnow(),
        },
        to=video_room(room_id),
    )


@socketio.on("leave-room")
def on_leave_room(data=None):
    room_id = str((data or {}).get("roomId") or "")
    rooms = [room_id] if room_id else signaling.rooms_of(request.sid)
    for rid in rooms:
        _leave_video(rid, request.sid)


def _leave_video(room_id: str, sid: str) -> None:
    if not signaling.leave(room_id, sid):
        return
    leave_room(video_room(room_id), sid=sid)
    socketio.emit("user-left", {"socketId": sid}, to=video_room(room_id))
    socketio.emit("participants", signaling.participants(room_id), to=video_room(room_id))
