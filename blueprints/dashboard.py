"""Community dashboard figures and user feedback."""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required

from db_stores import DashboardStatsDB, FeedbackStoreDB
from extensions import limiter
from helpers import current_user_id, json_body, parse_int

logger = logging.getLogger(__name__)

bp = Blueprint("dashboard", __name__)

FEEDBACK_TYPES = ("bug", "feature", "improvement", "other")
FEEDBACK_PRIORITIES = ("low", "medium", "high")


@bp.route("/api/dashboard/notes-stats")
def api_notes_stats():
    return jsonify(DashboardStatsDB.notes_stats())


@bp.route("/api/dashboard/top-contributors")
def api_top_contributors():
    limit = min(50, max(1, parse_int(request.args.get("limit"), 5)))
    return jsonify({"contributors": DashboardStatsDB.top_contributors(limit)})


def _feedback_error(data: dict) -> str | None:
    if data.get("feedbackType") not in FEEDBACK_TYPES:
        return "Feedback type must be one of: " + ", ".join(FEEDBACK_TYPES)
    subject = str(data.get("subject") or "").strip()
    if not 5 <= len(subject) <= 100:
        return "Subject must be between 5 and 100 characters"
    description = str(data.get("description") or "").strip()
    if not 10 <= len(description) <= 2000:
        return "Description must be between 10 and 2000 characters"
    if data.get("priority", "medium") not in FEEDBACK_PRIORITIES:
        return "Priority must be low, medium, or high"
    return None


@bp.route("/api/feedback", methods=["POST"])
@login_required
@limiter.limit("10 per hour")
def api_feedback_create():
    data = json_body()
    error = _feedback_error(data)
    if error:
        return jsonify({"error": error}), 400
    feedback = FeedbackStoreDB.create(current_user_id(), {
        "feedback_type": data["feedbackType"],
        "subject": str(data["subject"]).strip(),
        "description": str(data["description"]).strip(),
        "priority": data.get("priority", "medium"),
        "user_agent": request.headers.get("User-Agent", ""),
        "page_url": str(data.get("pageUrl") or request.referrer or ""),
    })
    logger.info("Feedback %s (%s) from user %s", feedback["id"], feedback["feedback_type"], current_user_id())
    return jsonify({"success": True, "feedback": feedback}), 201


@bp.route("/api/feedback")
@login_required
def api_feedback_list():
    return jsonify({"feedback": FeedbackStoreDB.for_user(current_user_id())})
