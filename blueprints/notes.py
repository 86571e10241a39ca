"""Study notes: upload, browse, visibility, likes, downloads and threaded comments."""

from __future__ import annotations

import logging
import math

from flask import Blueprint, jsonify, request, send_file
from flask_login import current_user, login_required

import storage
from catalog import POINT_AWARDS
from db_stores import (
    ConnectionStoreDB,
    GamificationStoreDB,
    NoteCommentStoreDB,
    NoteStoreDB,
    ProfileStoreDB,
    notify,
)
from errors import StudyPairError
from extensions import limiter
from helpers import (
    client_ip,
    current_user_id,
    json_body,
    paginate_args,
    parse_bool,
    parse_int,
    parse_list,
    slug_option,
)

logger = logging.getLogger(__name__)

bp = Blueprint("notes", __name__)

CONTENT_TYPES = ("pdf", "text")
MAX_COMMENT_LENGTH = 1000
VISIBILITY_OPTIONS = {"Public": "public", "Friends Only": "friends-only"}
WORDS_PER_MINUTE = 200


def _visibility(value: str) -> str:
    if value in VISIBILITY_OPTIONS.values():
        return value
    return VISIBILITY_OPTIONS.get(value, "private")


def _read_time(text: str) -> int:
    words = len(text.split())
    return math.ceil(words / WORDS_PER_MINUTE) if words else 0


def _access_error(note: dict | None, uid: int | None):
    """Return an error response if the caller may not read the note, else None."""
    if note is None:
        return jsonify({"error": "Note not found"}), 404
    if uid == note["user_id"]:
        return None
    if note["status"] != "published":
        return jsonify({"error": "Note not found"}), 404
    if note["visibility"] == "public":
        return None
    if note["visibility"] == "friends-only" and uid and ConnectionStoreDB.are_connected(uid, note["user_id"]):
        return None
    return jsonify({"error": "You don't have permission to view this note"}), 403


def _list_response(notes: list[dict], total: int, page: int, limit: int):
    return jsonify({
        "notes": notes,
        "total": total,
        "page": page,
        "limit": limit,
        "hasMore": page * limit < total,
    })


@bp.route("/api/notes")
def api_notes_list():
    page, limit = paginate_args(default_limit=20, max_limit=100)
    notes, total = NoteStoreDB.search(
        search=request.args.get("search", "").strip(),
        subject=request.args.get("subject", ""),
        academic_level=request.args.get("academicLevel", ""),
        note_type=request.args.get("noteType", ""),
        language=request.args.get("language", ""),
        difficulty=request.args.get("difficulty", ""),
        sort_by=request.args.get("sortBy", "created_at"),
        sort_direction=request.args.get("sortDirection", "desc"),
        page=page,
        limit=limit,
    )
    return _list_response(notes, total, page, limit)


@bp.route("/api/notes", methods=["POST"])
@login_required
@limiter.limit("20 per hour")
def api_notes_create():
    uid = current_user_id()
    form = request.form
    title = form.get("title", "").strip()
    subject = form.get("subject", "").strip()
    academic_level = form.get("academicLevel", "").strip()
    content_type = form.get("contentType", "").strip()
    note_type = form.get("noteType", "").strip()

    if not title or not subject or not academic_level or not content_type or not note_type:
        return jsonify({"error": "Title, subject, academic level, content type, and note type are required"}), 400
    if content_type not in CONTENT_TYPES:
        return jsonify({"error": "Content type must be 'pdf' or 'text'"}), 400

    text_content = form.get("textContent", "")
    fields = {
        "title": title,
        "description": form.get("description", "").strip(),
        "subject": subject,
        "academic_level": slug_option(academic_level),
        "note_type": slug_option(note_type),
        "language": slug_option(form.get("language", "")) or "english",
        "difficulty_level": form.get("difficultyLevel", "").strip() or "beginner",
        "visibility": _visibility(form.get("visibility", "Public")),
        "content_type": content_type,
        "tags": parse_list(form.get("tags")),
        "target_audience": parse_list(form.get("targetAudience")),
        "prerequisites": parse_list(form.get("prerequisites")),
        "source_type": form.get("sourceType", "").strip() or "original",
        "source_reference": form.get("sourceReference", "").strip(),
        "allow_download": parse_bool(form.get("allowDownload"), True),
        "allow_comments": parse_bool(form.get("allowComments"), True),
        "status": "published",
    }

    stored: list[str] = []
    if content_type == "pdf":
        file = request.files.get("file")
        size = storage.validate_pdf(file)
        key = storage.save(file, storage.build_key("notes", uid, file.filename))
        stored.append(key)
        fields.update(file_path=key, file_name=file.filename, file_size=size)
    else:
        if not text_content.strip():
            return jsonify({"error": "Text content is required for text notes"}), 400
        fields["text_content"] = text_content
        fields["estimated_read_time"] = _read_time(text_content)

    thumbnail = request.files.get("thumbnail")
    if thumbnail and thumbnail.filename:
        try:
            storage.validate_image(thumbnail)
            key = storage.save(thumbnail, storage.build_key("notes", uid, thumbnail.filename, "thumbnails"))
            stored.append(key)
            fields["thumbnail_path"] = key
        except (StudyPairError, OSError):
            logger.warning("Thumbnail upload failed for user %s; continuing without it", uid, exc_info=True)

    try:
        note = NoteStoreDB.create(uid, fields)
    except Exception:
        storage.delete(*stored)
        raise

    gam = GamificationStoreDB(uid)
    gam.add_points(POINT_AWARDS["note_upload"], "note_upload", note["id"], f"Uploaded note: {title}")
    gam.log_activity("note_upload", {"noteId": note["id"], "title": title})
    if NoteStoreDB.count_by_user(uid) == 1:
        gam.unlock("first_note_upload")

    logger.info("User %s uploaded note %s (%s)", uid, note["id"], content_type)
    return jsonify({"success": True, "note": NoteStoreDB.get(note["id"])}), 201


@bp.route("/api/notes/my-notes")
@login_required
def api_my_notes():
    page, limit = paginate_args(default_limit=20, max_limit=100)
    status = request.args.get("status") or None
    notes, total = NoteStoreDB.by_user(current_user_id(), status=status, page=page, limit=limit)
    return _list_response(notes, total, page, limit)


@bp.route("/api/notes/user/<username>")
def api_user_notes(username):
    profile = ProfileStoreDB.get_by_username(username)
    if not profile:
        return jsonify({"error": "User not found"}), 404
    page, limit = paginate_args(default_limit=20, max_limit=100)
    notes, total = NoteStoreDB.by_user(profile["id"], public_only=True, page=page, limit=limit)
    return _list_response(notes, total, page, limit)


@bp.route("/api/notes/<int:note_id>")
def api_note_detail(note_id):
    uid = current_user_id()
    note = NoteStoreDB.get(note_id)
    error = _access_error(note, uid)
    if error:
        return error

    NoteStoreDB.increment_view(note_id)
    if uid and uid != note["user_id"]:
        GamificationStoreDB(uid).log_activity("note_view", {"noteId": note_id})
    note = NoteStoreDB.get(note_id)
    note["isLiked"] = NoteStoreDB.is_liked(note_id, uid)
    note["isOwner"] = uid == note["user_id"]
    return jsonify({"note": note})


@bp.route("/api/notes/<int:note_id>", methods=["PUT"])
@login_required
def api_note_update(note_id):
    note = NoteStoreDB.get(note_id)
    if not note:
        return jsonify({"error": "Note not found"}), 404
    if note["user_id"] != current_user_id():
        return jsonify({"error": "You can only edit your own notes"}), 403

    data = json_body()
    mapping = {
        "title": "title",
        "description": "description",
        "subject": "subject",
        "visibility": "visibility",
        "difficulty": "difficulty_level",
        "difficultyLevel": "difficulty_level",
        "language": "language",
        "textContent": "text_content",
        "status": "status",
    }
    fields = {}
    for src, col in mapping.items():
        if src in data:
            fields[col] = data[src]
    if "visibility" in fields:
        fields["visibility"] = _visibility(fields["visibility"])
    if "tags" in data:
        fields["tags"] = parse_list(data["tags"])
    for src, col in (("allowDownload", "allow_download"), ("allowComments", "allow_comments")):
        if src in data:
            fields[col] = parse_bool(data[src], True)
    if "title" in fields and not str(fields["title"]).strip():
        return jsonify({"error": "Title cannot be empty"}), 400

    updated = NoteStoreDB.update(note_id, fields)
    return jsonify({"success": True, "note": updated})


@bp.route("/api/notes/<int:note_id>", methods=["DELETE"])
@login_required
def api_note_delete(note_id):
    note = NoteStoreDB.get(note_id)
    if not note:
        return jsonify({"error": "Note not found"}), 404
    if note["user_id"] != current_user_id():
        return jsonify({"error": "You can only delete your own notes"}), 403
    NoteStoreDB.delete(note_id)
    storage.delete(note["file_path"], note["thumbnail_path"])
    logger.info("User %s deleted note %s", current_user_id(), note_id)
    return jsonify({"success": True})


@bp.route("/api/notes/<int:note_id>/actions", methods=["POST"])
def api_note_action(note_id):
    uid = current_user_id()
    action = json_body().get("action", "")
    note = NoteStoreDB.get(note_id)
    if not note:
        return jsonify({"error": "Note not found"}), 404

    if action == "like":
        if uid is None:
            return jsonify({"error": "Unauthorized"}), 401
        error = _access_error(note, uid)
        if error:
            return error
        liked, count = NoteStoreDB.toggle_like(note_id, uid)
        if liked and note["user_id"] != uid:
            notify(
                note["user_id"], "like", "New like",
                f"{current_user.username} liked your note \"{note['title']}\"",
                link=f"/notes/{note_id}", group_key=f"note-like-{note_id}",
                metadata={"noteId": note_id},
            )
        return jsonify({"liked": liked, "likeCount": count})

    if action == "download":
        error = _access_error(note, uid)
        if error:
            return error
        if not note["allow_download"] and note["user_id"] != uid:
            return jsonify({"error": "Downloads are not allowed for this note"}), 403
        if not note["file_path"] or storage.resolve(note["file_path"]) is None:
            return jsonify({"error": "No file available for download"}), 404
        NoteStoreDB.record_download(note_id, uid, client_ip(), request.headers.get("User-Agent", ""))
        return jsonify({"download_url": f"/api/notes/{note_id}/file"})

    return jsonify({"error": "Invalid action"}), 400


@bp.route("/api/notes/<int:note_id>/file")
def api_note_file(note_id):
    uid = current_user_id()
    note = NoteStoreDB.get(note_id)
    error = _access_error(note, uid)
    if error:
        return error
    if not note["allow_download"] and note["user_id"] != uid:
        return jsonify({"error": "Downloads are not allowed for this note"}), 403
    path = storage.resolve(note["file_path"])
    if path is None:
        return jsonify({"error": "File not found"}), 404
    return send_file(path, mimetype=storage.PDF_MIME, download_name=note["file_name"] or path.name)


# ── Comments ─────────────────────────────────────────────────────────


@bp.route("/api/notes/<int:note_id>/comments")
def api_note_comments(note_id):
    note = NoteStoreDB.get(note_id)
    error = _access_error(note, current_user_id())
    if error:
        return error
    comments, total = NoteCommentStoreDB.thread(note_id)
    return jsonify({"comments": comments, "total": total})


@bp.route("/api/notes/<int:note_id>/comments", methods=["POST"])
@login_required
def api_note_comment_create(note_id):
    uid = current_user_id()
    data = json_body()
    content = str(data.get("content") or "").strip()
    if not content:
        return jsonify({"error": "Comment content is required"}), 400
    if len(content) > MAX_COMMENT_LENGTH:
        return jsonify({"error": f"Comment must be {MAX_COMMENT_LENGTH} characters or less"}), 400

    note = NoteStoreDB.get(note_id)
    if not note:
        return jsonify({"error": "Note not found"}), 404
    if not note["allow_comments"] or note["status"] != "published":
        return jsonify({"error": "Comments are not allowed on this note"}), 403
    error = _access_error(note, uid)
    if error:
        return error

    parent_id = parse_int(data.get("parentId"))
    parent = None
    if parent_id is not None:
        parent = NoteCommentStoreDB.get(parent_id)
        if not parent or parent["note_id"] != note_id or parent["status"] != "active":
            return jsonify({"error": "Parent comment not found"}), 404

    comment = NoteCommentStoreDB.add(note_id, uid, content, parent_id)
    GamificationStoreDB(uid).log_activity("comment", {"noteId": note_id, "commentId": comment["id"]})

    recipient = parent["user_id"] if parent else note["user_id"]
    if recipient != uid:
        what = "replied to your comment" if parent else f"commented on \"{note['title']}\""
        notify(
            recipient, "comment", "New comment", f"{current_user.username} {what}",
            link=f"/notes/{note_id}", metadata={"noteId": note_id, "commentId": comment["id"]},
        )
    return jsonify({"success": True, "comment": comment}), 201


def _own_active_comment(note_id: int, comment_id: int) -> dict | None:
    comment = NoteCommentStoreDB.get(comment_id)
    if (
        not comment
        or comment["note_id"] != note_id
        or comment["user_id"] != current_user_id()
        or comment["status"] != "active"
    ):
        return None
    return comment


@bp.route("/api/notes/<int:note_id>/comments/<int:comment_id>", methods=["PATCH"])
@login_required
def api_note_comment_update(note_id, comment_id):
    content = str(json_body().get("content") or "").strip()
    if not content:
        return jsonify({"error": "Comment content is required"}), 400
    if len(content) > MAX_COMMENT_LENGTH:
        return jsonify({"error": f"Comment must be {MAX_COMMENT_LENGTH} characters or less"}), 400
    if _own_active_comment(note_id, comment_id) is None:
        return jsonify({"error": "Comment not found or access denied"}), 404
    return jsonify({"success": True, "comment": NoteCommentStoreDB.update(comment_id, content)})


@bp.route("/api/notes/<int:note_id>/comments/<int:comment_id>", methods=["DELETE"])
@login_required
def api_note_comment_delete(note_id, comment_id):
    if _own_active_comment(note_id, comment_id) is None:
        return jsonify({"error": "Comment not found or access denied"}), 404
    mode = NoteCommentStoreDB.delete(comment_id)
    return jsonify({"success": True, "deleted": mode})
