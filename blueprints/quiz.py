"""Quiz routes: authoring, server-side scoring, attempts and AI performance summaries."""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from ai_summary import generate_summary, needs_regeneration
from catalog import POINT_AWARDS, QUIZ_ATTEMPT_ACHIEVEMENTS
from db_stores import GamificationStoreDB, QuizAttemptStoreDB, QuizStoreDB, QuizSummaryStoreDB
from errors import AIUnavailableError, ValidationError
from extensions import limiter
from helpers import (
    camel_dict,
    current_user_id,
    json_body,
    paginate_args,
    paginated_response,
    parse_bool,
    parse_int,
    parse_list,
)
from quiz_scoring import calculate_quiz_points, score_submission, validate_questions

logger = logging.getLogger(__name__)

bp = Blueprint("quiz", __name__)

VISIBILITIES = ("public", "private")


def _question_view(q: dict) -> dict:
    correct = q["correct"]
    return {
        "id": q["id"],
        "text": q["text"],
        "kind": q["kind"],
        "options": q["options"],
        "correct": correct[0] if q["kind"] == "single" and correct else correct,
        "explanation": q["explanation"],
        "tags": q["tags"],
        "timeLimitSeconds": q["time_limit_seconds"],
        "orderIndex": q["order_index"],
    }


def _quiz_view(quiz: dict) -> dict:
    view = camel_dict({k: v for k, v in quiz.items() if k not in ("questions", "author")})
    view["author"] = camel_dict(quiz.get("author") or {})
    if "questions" in quiz:
        view["questions"] = [_question_view(q) for q in quiz["questions"]]
    return view


def _quiz_meta(data: dict, partial: bool = False) -> dict:
    """Quiz-level fields from a camelCase payload."""
    meta = {}
    for src, col in (("title", "title"), ("description", "description"),
                     ("subject", "subject"), ("gradeLevel", "grade_level")):
        if src in data:
            meta[col] = str(data[src] or "").strip()
    if not partial or "visibility" in data:
        visibility = data.get("visibility") or "public"
        if visibility not in VISIBILITIES:
            raise ValidationError("Visibility must be 'public' or 'private'")
        meta["visibility"] = visibility
    if "timeLimitMinutes" in data:
        meta["time_limit_minutes"] = parse_int(data["timeLimitMinutes"]) or None
    if "shuffle" in data:
        meta["shuffle"] = parse_bool(data["shuffle"])
    if "tags" in data:
        meta["tags"] = parse_list(data["tags"])
    return meta


def _visible_quiz(quiz_id: int) -> dict | None:
    """The quiz when it exists and the caller may see it."""
    quiz = QuizStoreDB.get(quiz_id)
    if not quiz:
        return None
    if quiz["visibility"] != "public" and quiz["user_id"] != current_user_id():
        return None
    return quiz


def _owned_quiz(quiz_id: int):
    quiz = QuizStoreDB.get(quiz_id)
    if not quiz:
        return None, (jsonify({"error": "Quiz not found"}), 404)
    if quiz["user_id"] != current_user_id():
        return None, (jsonify({"error": "You can only modify your own quizzes"}), 403)
    return quiz, None


def _award_attempt(quiz: dict, attempt: dict) -> int:
    """Points, activity and achievements for a finished attempt."""
    uid = attempt["user_id"]
    points = calculate_quiz_points(
        attempt["total_questions"], attempt["percentage"], attempt["time_taken"],
        quiz.get("time_limit_minutes"),
    )
    gam = GamificationStoreDB(uid)
    gam.add_points(points, "quiz_completion", quiz["id"], f"Completed quiz: {quiz['title']}")
    QuizAttemptStoreDB.set_points(attempt["id"], points)
    gam.log_activity("quiz", {"quizId": quiz["id"], "percentage": attempt["percentage"], "pointsEarned": points})

    total_attempts = QuizAttemptStoreDB.count_for_user(uid)
    for threshold, achievement in sorted(QUIZ_ATTEMPT_ACHIEVEMENTS.items()):
        if total_attempts >= threshold:
            gam.unlock(achievement)
    QuizStoreDB.increment_play(quiz["id"])
    return points


@bp.route("/api/quiz")
def api_quiz_list():
    page, limit = paginate_args(default_limit=10, max_limit=100)
    quizzes, total = QuizStoreDB.list(
        current_user_id(),
        subject=request.args.get("subject", ""),
        grade_level=request.args.get("gradeLevel", ""),
        search=request.args.get("search", "").strip(),
        created_by=parse_int(request.args.get("createdBy")),
        page=page,
        limit=limit,
    )
    envelope = paginated_response([_quiz_view(q) for q in quizzes], total, page, limit)
    return jsonify({"success": True, "data": envelope["items"], "pagination": envelope["pagination"]})


@bp.route("/api/quiz", methods=["POST"])
@login_required
def api_quiz_create():
    uid = current_user_id()
    data = json_body()
    meta = _quiz_meta(data)
    if not meta.get("title") or not meta.get("subject"):
        return jsonify({"error": "Title, subject, and at least one question are required"}), 400
    questions = validate_questions(data.get("questions"))

    quiz_id = QuizStoreDB.create(uid, meta, questions)
    gam = GamificationStoreDB(uid)
    gam.add_points(POINT_AWARDS["quiz_creation"], "quiz_creation", quiz_id, f"Created quiz: {meta['title']}")
    gam.log_activity("quiz_creation", {"quizId": quiz_id})
    if QuizStoreDB.count_by_user(uid) == 1:
        gam.unlock("quiz_creator")

    logger.info("User %s created quiz %s with %d questions", uid, quiz_id, len(questions))
    return jsonify({"success": True, "data": _quiz_view(QuizStoreDB.get(quiz_id))}), 201


@bp.route("/api/quiz/<int:quiz_id>")
def api_quiz_detail(quiz_id):
    quiz = _visible_quiz(quiz_id)
    if not quiz:
        return jsonify({"error": "Quiz not found"}), 404
    view = _quiz_view(quiz)
    uid = current_user_id()
    view["isOwner"] = quiz["user_id"] == uid
    if uid is not None:
        view.update(QuizAttemptStoreDB.summary(quiz_id, uid))
    else:
        view.update({"attemptsCount": 0, "bestScore": None})
    return jsonify({"success": True, "data": view})


@bp.route("/api/quiz/<int:quiz_id>", methods=["PUT"])
@login_required
def api_quiz_update(quiz_id):
    _, error = _owned_quiz(quiz_id)
    if error:
        return error
    data = json_body()
    meta = _quiz_meta(data, partial=True)
    for required in ("title", "subject"):
        if required in meta and not meta[required]:
            return jsonify({"error": "Title, subject, and at least one question are required"}), 400
    questions = validate_questions(data["questions"]) if "questions" in data else None
    quiz = QuizStoreDB.update(quiz_id, meta, questions)
    return jsonify({"success": True, "data": _quiz_view(quiz)})


@bp.route("/api/quiz/<int:quiz_id>", methods=["DELETE"])
@login_required
def api_quiz_delete(quiz_id):
    _, error = _owned_quiz(quiz_id)
    if error:
        return error
    QuizStoreDB.delete(quiz_id)
    logger.info("User %s deleted quiz %s", current_user_id(), quiz_id)
    return jsonify({"success": True})


@bp.route("/api/quiz/<int:quiz_id>/submit", methods=["POST"])
@login_required
def api_quiz_submit(quiz_id):
    quiz = _visible_quiz(quiz_id)
    if not quiz:
        return jsonify({"error": "Quiz not found"}), 404
    data = json_body()
    result = score_submission(quiz["questions"], data.get("userAnswers"))
    time_taken = max(0, parse_int(data.get("timeTaken"), 0))

    attempt = QuizAttemptStoreDB.add(
        quiz_id, current_user_id(), result["score"], result["total"], result["percentage"],
        time_taken, result["results"], data.get("startedAt") or "", data.get("completedAt") or "",
    )
    points = _award_attempt(quiz, attempt)
    return jsonify({
        "success": True,
        "attemptId": attempt["id"],
        "score": result["score"],
        "total": result["total"],
        "percentage": result["percentage"],
        "timeTaken": time_taken,
        "results": result["results"],
        "pointsAwarded": points,
    })


@bp.route("/api/quiz/<int:quiz_id>/attempts")
@login_required
def api_quiz_attempts(quiz_id):
    if not _visible_quiz(quiz_id):
        return jsonify({"error": "Quiz not found"}), 404
    attempts = QuizAttemptStoreDB.for_user(quiz_id, current_user_id())
    return jsonify({
        "success": True,
        "attempts": attempts,
        "best_attempt": attempts[0] if attempts else None,
        "total_attempts": len(attempts),
    })


@bp.route("/api/quiz/<int:quiz_id>/attempts", methods=["POST"])
@login_required
def api_quiz_attempt_create(quiz_id):
    quiz = _visible_quiz(quiz_id)
    if not quiz:
        return jsonify({"error": "Quiz not found"}), 404
    data = json_body()
    score = parse_int(data.get("score"))
    total = parse_int(data.get("totalQuestions"))
    try:
        percentage = float(data.get("percentage"))
    except (TypeError, ValueError):
        percentage = None
    if score is None or total is None or percentage is None:
        return jsonify({"error": "score, totalQuestions, and percentage are required"}), 400
    if total < 0 or score < 0 or score > total or not 0 <= percentage <= 100:
        return jsonify({"error": "Invalid attempt values"}), 400

    attempt = QuizAttemptStoreDB.add(
        quiz_id, current_user_id(), score, total, percentage,
        max(0, parse_int(data.get("timeTaken"), 0)), data.get("answers"),
        data.get("startedAt") or "", data.get("completedAt") or "",
    )
    points = _award_attempt(quiz, attempt)
    return jsonify({
        "success": True,
        "attempt": QuizAttemptStoreDB.get(attempt["id"]),
        "pointsAwarded": points,
    }), 201


@bp.route("/api/quiz/<int:quiz_id>/attempts/<int:attempt_id>")
@login_required
def api_quiz_attempt_detail(quiz_id, attempt_id):
    attempt = QuizAttemptStoreDB.get(attempt_id)
    if not attempt or attempt["quiz_id"] != quiz_id or attempt["user_id"] != current_user_id():
        return jsonify({"error": "Attempt not found"}), 404
    return jsonify({"success": True, "attempt": attempt})


# ── AI performance summaries ─────────────────────────────────────────


@bp.route("/api/quiz/<int:quiz_id>/ai-summary")
@login_required
def api_quiz_summary(quiz_id):
    summary = QuizSummaryStoreDB.get(quiz_id, current_user_id())
    if not summary:
        return jsonify({"error": "No summary found"}), 404
    return jsonify({"summary": summary})


@bp.route("/api/quiz/<int:quiz_id>/ai-summary", methods=["POST"])
@login_required
@limiter.limit("10 per hour")
def api_quiz_summary_generate(quiz_id):
    if not current_app.config.get("FEATURE_FLAGS", {}).get("ai_summaries", True):
        raise AIUnavailableError("AI summaries are disabled")
    if not current_app.config.get("DEEPSEEK_API_KEY"):
        raise AIUnavailableError("AI service is not configured")

    uid = current_user_id()
    quiz = _visible_quiz(quiz_id)
    if not quiz:
        return jsonify({"error": "Quiz not found"}), 404
    attempts = QuizAttemptStoreDB.chronological(quiz_id, uid)
    if not attempts:
        return jsonify({"error": "No attempts found"}), 404

    existing = QuizSummaryStoreDB.get(quiz_id, uid)
    force = parse_bool(json_body().get("force"))
    if existing and not force and not needs_regeneration(len(attempts), existing["attempts_analyzed"]):
        return jsonify({"summary": existing, "cached": True})

    analysis, model = generate_summary(quiz, attempts)
    saved = QuizSummaryStoreDB.save(quiz_id, uid, analysis, len(attempts), model)
    logger.info("Generated AI summary for quiz %s user %s over %d attempts", quiz_id, uid, len(attempts))
    return jsonify({"summary": saved, "cached": False})
