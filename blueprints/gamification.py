"""Gamification routes: stats, leaderboard, achievements, challenges and the daily claim."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from catalog import POINT_AWARDS
from db_stores import GamificationStoreDB, ProfileStoreDB
from helpers import current_user_id, json_body, parse_int, today_utc

bp = Blueprint("gamification", __name__)


@bp.route("/api/gamification")
@login_required
def api_gamification():
    action = request.args.get("action", "stats")
    uid = parse_int(request.args.get("userId")) or current_user_id()
    gam = GamificationStoreDB(uid)

    if action == "stats":
        return jsonify(gam.stats())
    if action == "leaderboard":
        limit = min(100, max(1, parse_int(request.args.get("limit"), 10)))
        return jsonify({"leaderboard": GamificationStoreDB.leaderboard(limit)})
    if action == "achievements":
        return jsonify({"achievements": gam.achievements()})
    if action == "daily-challenges":
        return jsonify({"challenges": gam.daily_challenges()})
    if action == "point-history":
        limit = min(100, max(1, parse_int(request.args.get("limit"), 20)))
        return jsonify({"history": gam.point_history(limit)})
    return jsonify({"error": "Invalid action"}), 400


@bp.route("/api/gamification", methods=["POST"])
@login_required
def api_gamification_action():
    data = json_body()
    action = data.get("action", "")
    gam = GamificationStoreDB(current_user_id())

    if action == "log-activity":
        activity_type = str(data.get("activityType") or "").strip()
        if not activity_type:
            return jsonify({"error": "activityType is required"}), 400
        result = gam.log_activity(
            activity_type, data.get("activityData") or {}, max(0, parse_int(data.get("pointsEarned"), 0))
        )
        return jsonify({"success": True, **result})

    if action == "complete-challenge":
        challenge_id = parse_int(data.get("challengeId"))
        if challenge_id is None:
            return jsonify({"error": "challengeId is required"}), 400
        state = gam.complete_challenge(challenge_id)
        message = "Challenge completed!" if state["completed"] else "Challenge progress updated"
        return jsonify({"success": True, "completed": state["completed"],
                        "progress": state["progress"], "message": message})

    if action == "add-points":
        points = parse_int(data.get("points"))
        source = str(data.get("source") or "").strip()
        if not points or not source:
            return jsonify({"error": "points and source are required"}), 400
        result = gam.add_points(points, source, data.get("sourceId"), data.get("description"))
        return jsonify({"success": True, **result})

    return jsonify({"error": "Invalid action"}), 400


@bp.route("/api/daily-claim")
@login_required
def api_daily_claim_status():
    return jsonify({"claimed": GamificationStoreDB(current_user_id()).has_claimed_today()})


@bp.route("/api/daily-claim", methods=["POST"])
@login_required
def api_daily_claim():
    if not current_app.config.get("FEATURE_FLAGS", {}).get("daily_claim", True):
        return jsonify({"error": "Daily claims are disabled"}), 404
    points = POINT_AWARDS["daily_claim"]
    result = GamificationStoreDB(current_user_id()).claim_daily(points)
    return jsonify({"success": True, "points": points, "totalPoints": result["total_points"]})


@bp.route("/api/debug/gamification")
@login_required
def api_debug_gamification():
    """Diagnostic snapshot of the caller's gamification state (development only)."""
    if not (current_app.debug or current_app.testing):
        return jsonify({"error": "Not found"}), 404
    uid = current_user_id()
    gam = GamificationStoreDB(uid)
    return jsonify({
        "userId": uid,
        "today": today_utc(),
        "profileExists": ProfileStoreDB.get(uid) is not None,
        "stats": gam.stats(),
        "claimedToday": gam.has_claimed_today(),
        "dailyChallenges": gam.daily_challenges(),
        "recentPoints": gam.point_history(10),
    })
