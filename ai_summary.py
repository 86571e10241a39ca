"""
AI quiz performance summaries.

Builds a performance prompt from a user's attempts on one quiz, asks
DeepSeek for a JSON analysis through ai_resilience, and normalizes whatever
comes back into a stable shape. Malformed model output degrades to a
deterministic summary computed from the scores.
"""

from __future__ import annotations

import json
import logging
import re

from flask import current_app

from ai_resilience import CircuitOpenError, resilient_llm_call
from errors import AIUnavailableError

logger = logging.getLogger(__name__)

PROVIDER = "deepseek"
REGENERATE_AFTER = 2
CONFIDENCE_LEVELS = ("high", "medium", "low")

SYSTEM_PROMPT = (
    "You are an encouraging but honest study coach. You analyse a student's quiz "
    "attempts and reply with a single JSON object with exactly these keys: "
    "overall_performance (2-3 sentences), trend_analysis (improving, declining or "
    "consistent, with a short explanation), strengths (array of strings), "
    "weaknesses (array of strings), recommendations (array of specific, actionable "
    "strings), confidence_level (one of \"high\", \"medium\", \"low\")."
)

_JSON_OBJECT = re.compile(r"\{.*\}", re.S)


def format_duration(seconds: int) -> str:
    """'3m 5s', or '42s' under a minute."""
    seconds = int(seconds or 0)
    minutes, secs = divmod(seconds, 60)
    return f"{minutes}m {secs}s" if minutes > 0 else f"{secs}s"


def needs_regeneration(total_attempts: int, attempts_analyzed: int) -> bool:
    return total_attempts - attempts_analyzed >= REGENERATE_AFTER


def _day(timestamp: str) -> str:
    return (timestamp or "")[:10] or "unknown date"


def build_prompt(quiz: dict, attempts: list[dict]) -> str:
    """Attempts must be in chronological order."""
    scores = [a["percentage"] for a in attempts]
    first, latest = attempts[0], attempts[-1]
    lines = [
        "Analyze the student's performance on the following quiz:",
        "",
        "Quiz Information:",
        f"- Title: {quiz['title']}",
        f"- Subject: {quiz['subject']}",
        f"- Academic Level: {quiz.get('grade_level') or 'Not specified'}",
        f"- Total Questions: {len(quiz.get('questions') or []) or first['total_questions']}",
        f"- Description: {quiz.get('description') or 'No description provided'}",
        "",
        "Performance Data:",
        f"- Total Attempts: {len(attempts)}",
        f"- Average Score: {sum(scores) / len(scores):.1f}%",
        f"- Best Score: {max(scores):.1f}%",
        f"- Worst Score: {min(scores):.1f}%",
        f"- First Attempt: {first['percentage']:.1f}% ({_day(first['completed_at'])})",
        f"- Latest Attempt: {latest['percentage']:.1f}% ({_day(latest['completed_at'])})",
        "",
        "Detailed Attempts:",
    ]
    for i, a in enumerate(attempts, 1):
        lines.append(
            f"Attempt {i}: {a['percentage']:.1f}% ({a['score']}/{a['total_questions']}) - "
            f"Time: {format_duration(a['time_taken'])} - Date: {_day(a['completed_at'])}"
        )
    lines += [
        "",
        "Please provide a comprehensive analysis of this student's performance, focusing on:",
        "1. Overall performance assessment",
        "2. Learning trend (improvement, decline, or consistency)",
        "3. Identified strengths",
        "4. Areas needing improvement",
        "5. Specific, actionable recommendations for better performance",
        "",
        "Be encouraging but honest, and provide practical advice that can help the student improve.",
    ]
    return "\n".join(lines)


def extract_json(text: str) -> dict | None:
    """Parse a JSON object from model output, tolerating code fences and chatter."""
    if not text:
        return None
    cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", text.strip(), flags=re.I)
    for candidate in (cleaned, *_JSON_OBJECT.findall(cleaned)):
        try:
            value = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(value, dict):
            return value
    return None


def _trend(attempts: list[dict]) -> str:
    first, latest = attempts[0]["percentage"], attempts[-1]["percentage"]
    if latest > first:
        return "improving"
    if latest < first:
        return "declining"
    return "consistent"


def fallback_summary(attempts: list[dict]) -> dict:
    """Score-only summary used when the model reply cannot be parsed."""
    scores = [a["percentage"] for a in attempts]
    average = sum(scores) / len(scores)
    trend = _trend(attempts)
    strengths = []
    weaknesses = []
    if max(scores) >= 80:
        strengths.append(f"Reached a best score of {max(scores):.1f}%")
    if trend == "improving":
        strengths.append("Scores are improving with practice")
    if average < 60:
        weaknesses.append("Average score is below 60%")
    if trend == "declining":
        weaknesses.append("Recent attempts scored lower than the first")
    return {
        "overall_performance": (
            f"Across {len(attempts)} attempt(s) you averaged {average:.1f}%, "
            f"with a best of {max(scores):.1f}% and a latest score of {scores[-1]:.1f}%."
        ),
        "trend_analysis": f"Performance is {trend} ({scores[0]:.1f}% first, {scores[-1]:.1f}% latest).",
        "strengths": strengths,
        "weaknesses": weaknesses,
        "recommendations": [
            "Review the explanations for questions you missed",
            "Retake the quiz after a short break to reinforce recall",
        ],
        "confidence_level": "low",
    }


def normalize_analysis(raw: dict | None, attempts: list[dict]) -> dict:
    if not raw or not raw.get("overall_performance"):
        return fallback_summary(attempts)

    def as_list(value) -> list[str]:
        if isinstance(value, list):
            return [str(v).strip() for v in value if str(v).strip()]
        if isinstance(value, str) and value.strip():
            return [value.strip()]
        return []

    confidence = str(raw.get("confidence_level", "medium")).lower()
    return {
        "overall_performance": str(raw["overall_performance"]).strip(),
        "trend_analysis": str(raw.get("trend_analysis") or f"Performance is {_trend(attempts)}.").strip(),
        "strengths": as_list(raw.get("strengths")),
        "weaknesses": as_list(raw.get("weaknesses")),
        "recommendations": as_list(raw.get("recommendations")),
        "confidence_level": confidence if confidence in CONFIDENCE_LEVELS else "medium",
    }


def _llm_settings() -> tuple[str, str, str]:
    api_key = current_app.config.get("DEEPSEEK_API_KEY", "")
    if not api_key:
        raise AIUnavailableError("AI service is not configured")
    return (
        api_key,
        current_app.config.get("DEEPSEEK_MODEL", "deepseek-chat"),
        current_app.config.get("DEEPSEEK_BASE_URL", "https://api.deepseek.com"),
    )


def generate_summary(quiz: dict, attempts: list[dict]) -> tuple[dict, str]:
    """Return (normalized analysis, model name). Attempts in chronological order."""
    api_key, model, base_url = _llm_settings()
    prompt = build_prompt(quiz, attempts)
    try:
        text, metrics = resilient_llm_call(
            PROVIDER, model, prompt, api_key,
            system=SYSTEM_PROMPT, temperature=0.3, max_tokens=1500,
            json_mode=True, base_url=base_url,
        )
    except CircuitOpenError as e:
        raise AIUnavailableError("AI service is temporarily unavailable") from e
    except Exception as e:
        logger.exception("Quiz summary generation failed for quiz %s", quiz.get("id"))
        raise AIUnavailableError("Failed to generate AI summary") from e

    parsed = extract_json(text)
    if parsed is None:
        logger.warning("Unparseable AI summary for quiz %s; using score summary", quiz.get("id"))
    logger.info("AI summary for quiz %s cost~$%s", quiz.get("id"), metrics.get("cost_estimate_usd"))
    return normalize_analysis(parsed, attempts), model


def assistant_reply(prompt: str, system: str = "") -> dict:
    """Free-form study assistant completion."""
    api_key, model, base_url = _llm_settings()
    try:
        text, metrics = resilient_llm_call(
            PROVIDER, model, prompt, api_key,
            system=system or "You are StudyPair's helpful study assistant.",
            temperature=0.7, max_tokens=2000, base_url=base_url, cache_ttl=3600,
        )
    except CircuitOpenError as e:
        raise AIUnavailableError("AI service is temporarily unavailable") from e
    except Exception as e:
        logger.exception("Assistant completion failed")
        raise AIUnavailableError("Failed to generate a response") from e
    return {"text": text, "model": model, "cached": metrics.get("cache_hit", False)}
