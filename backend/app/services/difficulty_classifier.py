"""
Difficulty Classifier — performance window + age → DifficultyDecision.

Pure and deterministic. The resolved tier is the requested tier, clamped
down to the age ceiling when an age is known. The adjustment directive is
guidance for the generator only and never moves the tier.
"""
from __future__ import annotations

import logging
from typing import Optional

from app.models.progress import TIER_ORDER, DifficultyDecision, PerformanceWindow

logger = logging.getLogger(__name__)

# (max age inclusive, ceiling); first match wins, older players get "expert"
_AGE_BREAKPOINTS: list[tuple[int, str]] = [
    (10, "beginner"),
    (12, "easy"),
    (14, "medium"),
    (16, "hard"),
]


def age_ceiling(age_years: Optional[int]) -> Optional[str]:
    if age_years is None:
        return None
    for max_age, tier in _AGE_BREAKPOINTS:
        if age_years <= max_age:
            return tier
    return "expert"


def clamp_tier(requested_tier: str, ceiling: Optional[str]) -> str:
    """Clamp downward only. Unknown tiers resolve to "medium"."""
    if requested_tier not in TIER_ORDER:
        logger.warning("[difficulty_classifier] Unknown tier %r; using medium", requested_tier)
        requested_tier = "medium"
    if ceiling is None:
        return requested_tier
    if TIER_ORDER.index(requested_tier) > TIER_ORDER.index(ceiling):
        return ceiling
    return requested_tier


def adjustment_for(window: PerformanceWindow) -> str:
    acc = window.recent_accuracy
    avg = window.average_response_seconds
    if acc > 0.85 and avg < 15 and window.current_streak > 3:
        return "too_easy"
    if acc > 0.75 and avg < 20:
        return "slightly_easy"
    if acc < 0.4 or avg > 35:
        return "too_hard"
    if acc < 0.6:
        return "slightly_hard"
    return "perfect"


def _reasoning(window: PerformanceWindow) -> str:
    acc = window.recent_accuracy
    avg = window.average_response_seconds
    if acc > 0.85 and avg < 15 and window.current_streak > 3:
        return "Player showing mastery - increasing challenge to maintain engagement"
    if acc < 0.4:
        return "Player struggling - reducing difficulty to build confidence"
    if avg > 35:
        return "Player taking long to respond - simplifying to improve flow"
    return "Player performance optimal - maintaining current difficulty"


def classify(
    window: PerformanceWindow,
    age_years: Optional[int],
    requested_tier: str,
) -> DifficultyDecision:
    ceiling = age_ceiling(age_years)
    requested = requested_tier if requested_tier in TIER_ORDER else "medium"
    tier = clamp_tier(requested, ceiling)
    return DifficultyDecision(
        tier=tier,
        adjustment=adjustment_for(window),
        age_ceiling=ceiling,
        requested_tier=requested,
        reasoning=_reasoning(window),
    )
