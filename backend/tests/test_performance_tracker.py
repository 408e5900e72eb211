"""
Tests for the rolling performance window and its recommendations.
Pure functions only — all tests run fully offline.
"""
import sys
import os

# Ensure the backend/ directory is on the path when running from project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from app.models.progress import AnswerRecord
from app.services.performance_tracker import (
    DEFAULT_WINDOW,
    WINDOW_SIZE,
    compute_window,
    recommend,
)


def _answer(correct: bool, seconds: float = 10.0, region: str = "western-europe") -> AnswerRecord:
    return AnswerRecord(correct=correct, elapsed_seconds=seconds, region=region)


class TestDefaultWindow:
    def test_empty_input_returns_default(self):
        window = compute_window([])
        assert window.recent_accuracy == 0.7
        assert window.average_response_seconds == 20
        assert window.current_streak == 0
        assert window.sample_size == 0
        assert window.is_default

    def test_default_is_neutral(self):
        """The default window marks no topic as strong or struggling."""
        assert DEFAULT_WINDOW.strong_topics == set()
        assert DEFAULT_WINDOW.struggling_topics == set()


class TestAccuracyAndTime:
    def test_accuracy_is_fraction_correct(self):
        window = compute_window([_answer(True), _answer(False), _answer(True), _answer(True)])
        assert window.recent_accuracy == pytest.approx(0.75)
        assert window.sample_size == 4

    def test_elapsed_time_floored_at_five_seconds(self):
        window = compute_window([_answer(True, 1.0), _answer(True, 15.0)])
        assert window.average_response_seconds == pytest.approx(10.0)

    def test_only_newest_limit_answers_used(self):
        answers = [_answer(True)] * WINDOW_SIZE + [_answer(False)] * 5
        window = compute_window(answers)
        assert window.sample_size == WINDOW_SIZE
        assert window.recent_accuracy == 1.0

    def test_custom_limit(self):
        window = compute_window([_answer(False), _answer(True), _answer(True)], limit=1)
        assert window.sample_size == 1
        assert window.recent_accuracy == 0.0


class TestStreak:
    def test_streak_counts_from_newest(self):
        answers = [_answer(True), _answer(True), _answer(False), _answer(True)]
        assert compute_window(answers).current_streak == 2

    def test_streak_zero_when_newest_wrong(self):
        answers = [_answer(False), _answer(True), _answer(True)]
        assert compute_window(answers).current_streak == 0


class TestTopics:
    def test_strong_topic_needs_three_samples(self):
        answers = [_answer(True, region="africa")] * 2
        window = compute_window(answers)
        assert "africa" not in window.strong_topics

    def test_strong_and_struggling_classification(self):
        answers = (
            [_answer(True, region="africa")] * 3
            + [_answer(False, region="oceania")] * 2
            + [_answer(True, region="oceania")]
        )
        window = compute_window(answers)
        assert window.strong_topics == {"africa"}
        assert window.struggling_topics == {"oceania"}

    def test_middling_topic_in_neither_set(self):
        answers = [_answer(True, region="east-asia")] * 2 + [_answer(False, region="east-asia")]
        window = compute_window(answers)
        assert "east-asia" not in window.strong_topics
        assert "east-asia" not in window.struggling_topics


class TestRecommend:
    def test_high_accuracy_suggests_hard(self):
        window = compute_window([_answer(True)] * 5)
        assert recommend(window)["suggested_difficulty"] == "hard"

    def test_low_accuracy_suggests_easy(self):
        window = compute_window([_answer(False)] * 3 + [_answer(True)])
        assert recommend(window)["suggested_difficulty"] == "easy"

    def test_default_suggests_medium(self):
        rec = recommend(DEFAULT_WINDOW)
        assert rec == {"suggested_difficulty": "medium", "focus_areas": [], "strong_areas": []}
