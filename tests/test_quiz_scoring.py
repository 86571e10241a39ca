"""Unit tests for quiz validation, scoring and completion points."""

from __future__ import annotations

import pytest

from errors import ValidationError
from quiz_scoring import calculate_quiz_points, normalize_correct, score_submission, validate_questions


QUESTIONS = [
    {"id": 10, "correct": [2]},
    {"id": 11, "correct": [0, 3]},
    {"id": 12, "correct": [1]},
]


class TestNormalizeCorrect:
    def test_scalar_and_list(self):
        assert normalize_correct(2) == [2]
        assert normalize_correct("1") == [1]
        assert normalize_correct([3, 1, 3]) == [1, 3]

    def test_empty_and_garbage(self):
        assert normalize_correct(None) == []
        assert normalize_correct("") == []
        assert normalize_correct(["x", 2]) == [2]


class TestValidateQuestions:
    def test_normalizes(self):
        result = validate_questions([
            {"text": "  Q?  ", "options": ["a", "b"], "correct": "1", "timeLimitSeconds": "30"},
        ])
        assert result == [{
            "text": "Q?",
            "kind": "single",
            "options": ["a", "b"],
            "correct": [1],
            "explanation": "",
            "tags": [],
            "time_limit_seconds": 30,
            "order_index": 1,
        }]

    @pytest.mark.parametrize("questions,message", [
        (None, "at least one question"),
        ([{"text": "", "options": ["a", "b"], "correct": 0}], "Question 1 text"),
        ([{"text": "Q", "options": ["a"], "correct": 0}], "at least 2 options"),
        ([{"text": "Q", "options": ["a", "b"], "correct": 5}], "out of range"),
        ([{"text": "Q", "options": ["a", "b"], "correct": [0, 1]}], "exactly one"),
        ([{"text": "Q", "options": ["a", "b"], "kind": "essay", "correct": 0}], "invalid kind"),
        ([{"text": "Q", "options": ["a", "b"]}], "must have a correct answer"),
    ])
    def test_rejections(self, questions, message):
        with pytest.raises(ValidationError, match=message):
            validate_questions(questions)

    def test_error_names_offending_question(self):
        good = {"text": "Q", "options": ["a", "b"], "correct": 0}
        with pytest.raises(ValidationError, match="Question 2"):
            validate_questions([good, {"text": "Q", "options": []}])


class TestScoreSubmission:
    def test_positional_answers(self):
        result = score_submission(QUESTIONS, [2, [3, 0], 0])
        assert result["score"] == 2
        assert result["total"] == 3
        assert result["percentage"] == 66.67
        assert [r["isCorrect"] for r in result["results"]] == [True, True, False]

    def test_mapping_answers(self):
        result = score_submission(QUESTIONS, {"10": 2, "12": {"selected": 1}})
        assert result["score"] == 2
        assert result["results"][1]["selected"] == []

    def test_missing_answers_score_zero(self):
        result = score_submission(QUESTIONS, None)
        assert result["score"] == 0
        assert result["percentage"] == 0.0

    def test_no_questions(self):
        assert score_submission([], [])["percentage"] == 0.0


class TestQuizPoints:
    def test_base_points(self):
        # 10 questions, 80% -> 20 + 8
        assert calculate_quiz_points(10, 80.0, 300) == 28

    def test_time_bonus(self):
        # half the limit used -> floor(0.5 * 5) = 2
        assert calculate_quiz_points(10, 80.0, 300, time_limit_minutes=10) == 30

    def test_overtime_gets_no_bonus(self):
        assert calculate_quiz_points(10, 80.0, 900, time_limit_minutes=10) == 28

    def test_minimum(self):
        assert calculate_quiz_points(1, 0.0, 10) == 5
        assert calculate_quiz_points(0, 0.0, 0) == 5
