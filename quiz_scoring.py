"""Quiz validation, server-side scoring, and completion points."""

from __future__ import annotations

import math
from typing import Any

from errors import ValidationError

QUESTION_KINDS = ("single", "multiple")


def normalize_correct(value: Any) -> list[int]:
    """Correct answer(s) as a sorted list of option indexes."""
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        items = value
    else:
        items = [value]
    result = []
    for v in items:
        try:
            result.append(int(v))
        except (TypeError, ValueError):
            continue
    return sorted(set(result))


def validate_questions(questions: Any) -> list[dict]:
    """Validate and normalize submitted questions.

    Raises ValidationError naming the first offending question (1-based).
    """
    if not isinstance(questions, list) or not questions:
        raise ValidationError("Title, subject, and at least one question are required")

    normalized = []
    for i, q in enumerate(questions):
        n = i + 1
        if not isinstance(q, dict):
            raise ValidationError(f"Question {n} is malformed")
        text = str(q.get("text") or "").strip()
        if not text:
            raise ValidationError(f"Question {n} text is required")
        options = q.get("options") or []
        if not isinstance(options, list) or len(options) < 2:
            raise ValidationError(f"Question {n} must have at least 2 options")
        options = [str(o) for o in options]

        kind = q.get("kind") or "single"
        if kind not in QUESTION_KINDS:
            raise ValidationError(f"Question {n} has an invalid kind")
        correct = normalize_correct(q.get("correct"))
        if not correct:
            raise ValidationError(f"Question {n} must have a correct answer")
        if any(c < 0 or c >= len(options) for c in correct):
            raise ValidationError(f"Question {n} correct answer is out of range")
        if kind == "single" and len(correct) != 1:
            raise ValidationError(f"Question {n} must have exactly one correct answer")

        time_limit = q.get("timeLimitSeconds")
        normalized.append({
            "text": text,
            "kind": kind,
            "options": options,
            "correct": correct,
            "explanation": str(q.get("explanation") or ""),
            "tags": [str(t) for t in (q.get("tags") or [])],
            "time_limit_seconds": int(time_limit) if time_limit not in (None, "") else None,
            "order_index": n,
        })
    return normalized


def _selected(answer: Any) -> list[int]:
    if isinstance(answer, dict):
        answer = answer.get("selected", answer.get("answer"))
    return normalize_correct(answer)


def score_submission(questions: list[dict], user_answers: Any) -> dict:
    """Grade answers against stored questions.

    ``user_answers`` may be a list aligned with question order or a mapping
    of question id to the selected index (single) or indexes (multiple).
    """
    results = []
    score = 0
    for pos, q in enumerate(questions):
        if isinstance(user_answers, dict):
            raw = user_answers.get(str(q["id"]), user_answers.get(q["id"]))
        elif isinstance(user_answers, list) and pos < len(user_answers):
            raw = user_answers[pos]
        else:
            raw = None
        selected = _selected(raw)
        is_correct = bool(selected) and selected == sorted(q["correct"])
        if is_correct:
            score += 1
        results.append({
            "questionId": q["id"],
            "selected": selected,
            "correct": q["correct"],
            "isCorrect": is_correct,
        })
    total = len(questions)
    percentage = round(score / total * 100, 2) if total else 0.0
    return {"score": score, "total": total, "percentage": percentage, "results": results}


def calculate_quiz_points(
    total_questions: int,
    percentage: float,
    time_taken: int,
    time_limit_minutes: int | None = None,
) -> int:
    """Points for a finished quiz.

    Two points per question, one per full 10% scored, and up to five for
    finishing early on timed quizzes; never less than max(5, n // 2).
    """
    length_points = total_questions * 2
    performance_points = math.floor(percentage / 10)
    time_bonus = 0
    if time_limit_minutes:
        limit_seconds = time_limit_minutes * 60
        time_bonus = math.floor(max(0, (limit_seconds - time_taken) / limit_seconds) * 5)
    minimum = max(5, total_questions // 2)
    return max(minimum, length_points + performance_points + time_bonus)
