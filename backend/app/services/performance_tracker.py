"""
Performance Tracker — rolling performance window over recent answers.

compute_window() is a pure transformation: it never reads a store. Callers
fetch the most recent answers (newest first) and pass them in.

  accuracy   fraction correct over the window
  avg time   mean elapsed seconds, each sample floored at 5 s
  streak     consecutive correct answers counted from the newest
  topics     regions with ≥ 3 samples: strong if accuracy ≥ 0.8,
             struggling if accuracy < 0.5; thinner evidence is ignored

An empty input yields the neutral default window (accuracy 0.7, 20 s,
streak 0). The default is never read as mastery or struggle.
"""
from __future__ import annotations

from typing import Sequence

from app.models.progress import AnswerRecord, PerformanceWindow

WINDOW_SIZE = 10
MIN_ELAPSED_SECONDS = 5.0
MIN_TOPIC_SAMPLES = 3
STRONG_TOPIC_ACCURACY = 0.8
STRUGGLING_TOPIC_ACCURACY = 0.5

DEFAULT_WINDOW = PerformanceWindow()


def _topic_performance(answers: Sequence[AnswerRecord]) -> tuple[set[str], set[str]]:
    counts: dict[str, list[int]] = {}
    for a in answers:
        bucket = counts.setdefault(a.region or "unknown", [0, 0])
        bucket[1] += 1
        if a.correct:
            bucket[0] += 1

    strong: set[str] = set()
    struggling: set[str] = set()
    for region, (correct, total) in counts.items():
        if total < MIN_TOPIC_SAMPLES:
            continue
        ratio = correct / total
        if ratio >= STRONG_TOPIC_ACCURACY:
            strong.add(region)
        elif ratio < STRUGGLING_TOPIC_ACCURACY:
            struggling.add(region)
    return strong, struggling


def compute_window(
    recent_answers: Sequence[AnswerRecord],
    limit: int = WINDOW_SIZE,
) -> PerformanceWindow:
    """
    Summarise the newest ``limit`` answers.

    ``recent_answers`` must be ordered newest first.
    """
    answers = list(recent_answers)[:limit]
    if not answers:
        return DEFAULT_WINDOW

    correct = sum(1 for a in answers if a.correct)
    accuracy = correct / len(answers)
    avg_time = sum(max(a.elapsed_seconds, MIN_ELAPSED_SECONDS) for a in answers) / len(answers)

    streak = 0
    for a in answers:
        if not a.correct:
            break
        streak += 1

    strong, struggling = _topic_performance(answers)

    return PerformanceWindow(
        recent_accuracy=accuracy,
        average_response_seconds=avg_time,
        current_streak=streak,
        sample_size=len(answers),
        strong_topics=strong,
        struggling_topics=struggling,
    )


def recommend(window: PerformanceWindow) -> dict:
    """Coarse next-step suggestion shown alongside the window."""
    if window.recent_accuracy > 0.8:
        suggested = "hard"
    elif window.recent_accuracy < 0.5:
        suggested = "easy"
    else:
        suggested = "medium"
    return {
        "suggested_difficulty": suggested,
        "focus_areas": sorted(window.struggling_topics),
        "strong_areas": sorted(window.strong_topics),
    }
