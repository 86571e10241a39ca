"""Past exam papers: browse, upload, likes, downloads and comments."""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request, send_file
from flask_login import login_required

import storage
from catalog import POINT_AWARDS
from db_stores import GamificationStoreDB, PaperStoreDB
from extensions import limiter
from helpers import (
    client_ip,
    current_user_id,
    json_body,
    paginate_args,
    paginated_response,
    parse_bool,
    parse_int,
    parse_list,
    slug_option,
)

logger = logging.getLogger(__name__)

bp = Blueprint("papers", __name__)

FILE_TYPES = {"question": "question_file_path", "solution": "solution_file_path"}
MAX_COMMENT_LENGTH = 1000


def _visible_paper(paper_id: int):
    """(paper, None) when the caller may see it, else (None, error response)."""
    paper = PaperStoreDB.get(paper_id)
    if not paper:
        return None, (jsonify({"error": "Paper not found"}), 404)
    if paper["visibility"] != "public" and paper["user_id"] != current_user_id():
        return None, (jsonify({"error": "Paper not found"}), 404)
    return paper, None


@bp.route("/api/papers")
def api_papers_list():
    page, limit = paginate_args(default_limit=12, max_limit=100)
    has_solution = request.args.get("hasSolution")
    papers, total = PaperStoreDB.search(
        subject=request.args.get("subject", ""),
        year=parse_int(request.args.get("year")),
        academic_level=request.args.get("academicLevel", ""),
        paper_type=request.args.get("paperType", ""),
        search=request.args.get("search", "").strip(),
        has_solution=parse_bool(has_solution) if has_solution not in (None, "") else None,
        sort_by=request.args.get("sortBy", "created_at"),
        sort_order=request.args.get("sortOrder", "desc"),
        page=page,
        limit=limit,
    )
    envelope = paginated_response(papers, total, page, limit)
    return jsonify({"papers": envelope["items"], "pagination": envelope["pagination"]})


@bp.route("/api/papers", methods=["POST"])
@login_required
@limiter.limit("20 per hour")
def api_papers_create():
    uid = current_user_id()
    form = request.form
    title = form.get("title", "").strip()
    subject = form.get("subject", "").strip()
    academic_level = form.get("academicLevel", "").strip()
    year = parse_int(form.get("year"))
    paper_type = form.get("paperType", "").strip()
    if not title or not subject or not academic_level or year is None or not paper_type:
        return jsonify({"error": "Title, subject, academic level, year, and paper type are required"}), 400

    fields = {
        "title": title,
        "description": form.get("description", "").strip(),
        "subject": subject,
        "academic_level": slug_option(academic_level),
        "year": year,
        "paper_type": slug_option(paper_type),
        "exam_board": form.get("examBoard", "").strip(),
        "institution": form.get("institution", "").strip(),
        "visibility": "private" if form.get("visibility") == "private" else "public",
        "tags": parse_list(form.get("tags")),
    }

    uploads = []
    for field, prefix in (("questionFile", "question"), ("solutionFile", "solution")):
        file = request.files.get(field)
        if file and file.filename:
            storage.validate_pdf(file, label=field)
            uploads.append((file, prefix))
    stored = []
    for file, prefix in uploads:
        key = storage.save(file, storage.build_key("papers", uid, file.filename))
        stored.append(key)
        fields[f"{prefix}_file_path"] = key
        fields[f"{prefix}_file_name"] = file.filename

    try:
        paper = PaperStoreDB.create(uid, fields)
    except Exception:
        storage.delete(*stored)
        raise

    gam = GamificationStoreDB(uid)
    gam.add_points(POINT_AWARDS["paper_upload"], "paper_upload", paper["id"], f"Uploaded paper: {title}")
    gam.log_activity("paper_upload", {"paperId": paper["id"]})
    logger.info("User %s uploaded paper %s", uid, paper["id"])
    return jsonify({"success": True, "paper": paper}), 201


@bp.route("/api/papers/<int:paper_id>")
def api_paper_detail(paper_id):
    paper, error = _visible_paper(paper_id)
    if error:
        return error
    PaperStoreDB.record_view(paper_id, current_user_id())
    paper = PaperStoreDB.get(paper_id)
    paper["isLiked"], _ = PaperStoreDB.like_state(paper_id, current_user_id())
    paper["isOwner"] = paper["user_id"] == current_user_id()
    return jsonify({"paper": paper})


@bp.route("/api/papers/<int:paper_id>", methods=["PUT"])
@login_required
def api_paper_update(paper_id):
    paper = PaperStoreDB.get(paper_id)
    if not paper:
        return jsonify({"error": "Paper not found"}), 404
    if paper["user_id"] != current_user_id():
        return jsonify({"error": "You can only edit your own papers"}), 403
    data = json_body()
    mapping = {
        "title": "title",
        "description": "description",
        "subject": "subject",
        "academicLevel": "academic_level",
        "paperType": "paper_type",
        "examBoard": "exam_board",
        "institution": "institution",
        "visibility": "visibility",
    }
    fields = {col: data[src] for src, col in mapping.items() if src in data}
    if "year" in data:
        year = parse_int(data["year"])
        if year is None:
            return jsonify({"error": "Year must be a number"}), 400
        fields["year"] = year
    if "tags" in data:
        fields["tags"] = parse_list(data["tags"])
    return jsonify({"success": True, "paper": PaperStoreDB.update(paper_id, fields)})


@bp.route("/api/papers/<int:paper_id>", methods=["DELETE"])
@login_required
def api_paper_delete(paper_id):
    paper = PaperStoreDB.get(paper_id)
    if not paper:
        return jsonify({"error": "Paper not found"}), 404
    if paper["user_id"] != current_user_id():
        return jsonify({"error": "You can only delete your own papers"}), 403
    PaperStoreDB.delete(paper_id)
    storage.delete(paper["question_file_path"], paper["solution_file_path"])
    return jsonify({"success": True})


@bp.route("/api/papers/<int:paper_id>/like")
def api_paper_like_state(paper_id):
    _, error = _visible_paper(paper_id)
    if error:
        return error
    liked, count = PaperStoreDB.like_state(paper_id, current_user_id())
    return jsonify({"liked": liked, "likeCount": count})


@bp.route("/api/papers/<int:paper_id>/like", methods=["POST"])
@login_required
def api_paper_like_toggle(paper_id):
    _, error = _visible_paper(paper_id)
    if error:
        return error
    liked, count = PaperStoreDB.toggle_like(paper_id, current_user_id())
    return jsonify({"liked": liked, "likeCount": count})


@bp.route("/api/papers/<int:paper_id>/download", methods=["POST"])
def api_paper_download(paper_id):
    paper, error = _visible_paper(paper_id)
    if error:
        return error
    file_type = json_body().get("fileType", "question")
    if file_type not in FILE_TYPES:
        return jsonify({"error": "fileType must be 'question' or 'solution'"}), 400
    key = paper[FILE_TYPES[file_type]]
    if not key or storage.resolve(key) is None:
        return jsonify({"error": "File not found"}), 404
    PaperStoreDB.record_download(
        paper_id, current_user_id(), file_type, client_ip(), request.headers.get("User-Agent", "")
    )
    return jsonify({"downloadUrl": f"/api/papers/{paper_id}/file?type={file_type}"})


@bp.route("/api/papers/<int:paper_id>/file")
def api_paper_file(paper_id):
    paper, error = _visible_paper(paper_id)
    if error:
        return error
    file_type = request.args.get("type", "question")
    if file_type not in FILE_TYPES:
        return jsonify({"error": "Invalid file type"}), 400
    path = storage.resolve(paper[FILE_TYPES[file_type]])
    if path is None:
        return jsonify({"error": "File not found"}), 404
    name = paper[f"{file_type}_file_name"] or path.name
    return send_file(path, mimetype=storage.PDF_MIME, download_name=name)


@bp.route("/api/papers/<int:paper_id>/comments")
def api_paper_comments(paper_id):
    _, error = _visible_paper(paper_id)
    if error:
        return error
    comments = PaperStoreDB.comments(paper_id)
    return jsonify({"comments": comments, "total": len(comments)})


@bp.route("/api/papers/<int:paper_id>/comments", methods=["POST"])
@login_required
def api_paper_comment_create(paper_id):
    content = str(json_body().get("content") or "").strip()
    if not content:
        return jsonify({"error": "Comment content is required"}), 400
    if len(content) > MAX_COMMENT_LENGTH:
        return jsonify({"error": f"Comment must be {MAX_COMMENT_LENGTH} characters or less"}), 400
    _, error = _visible_paper(paper_id)
    if error:
        return error
    comment = PaperStoreDB.add_comment(paper_id, current_user_id(), content)
    GamificationStoreDB(current_user_id()).log_activity("comment", {"paperId": paper_id})
    return jsonify({"success": True, "comment": comment}), 201
