"""Generic study assistant completion backed by DeepSeek."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import login_required

from ai_summary import assistant_reply
from extensions import limiter
from helpers import json_body

bp = Blueprint("ai", __name__)

MAX_PROMPT_LENGTH = 8000


@bp.route("/api/ai/deepseek", methods=["POST"])
@login_required
@limiter.limit("30 per hour")
def api_deepseek():
    data = json_body()
    prompt = str(data.get("prompt") or "").strip()
    if not prompt:
        return jsonify({"error": "Prompt is required"}), 400
    if len(prompt) > MAX_PROMPT_LENGTH:
        return jsonify({"error": f"Prompt must be {MAX_PROMPT_LENGTH} characters or less"}), 400
    reply = assistant_reply(prompt, str(data.get("system") or ""))
    return jsonify({"success": True, **reply})
