"""
Prompt Builder — grounded prompt construction for question generation.

Public functions:

  build_player_profile(request) -> str
    Compact plain-text summary of the player's rank and rolling performance.

  build_age_guidance(ceiling) -> str
    Age-appropriateness directive for the age ceiling (empty when unknown).

  build_question_prompt(request) -> str
    Full user prompt for a GenerationRequest: region, category focus,
    resolved tier, adjustment directive, age guidance, player profile and
    the JSON response format.
"""
from __future__ import annotations

from typing import Optional

from app.models.progress import GenerationRequest
from app.prompts.question_generation import QUESTION_GENERATION_PROMPT
from app.services.regions import category_guidance, region_display_name

# ---------------------------------------------------------------------------
# Adjustment directives
# ---------------------------------------------------------------------------

_ADJUSTMENT_DIRECTIVES: dict[str, str] = {
    "too_easy": "Make this significantly more challenging with deeper analysis required",
    "slightly_easy": "Increase complexity slightly with additional details",
    "perfect": "Maintain current difficulty level",
    "slightly_hard": "Simplify slightly while maintaining educational value",
    "too_hard": "Make more accessible with clearer context and hints",
}

# ---------------------------------------------------------------------------
# Age guidance, keyed by age ceiling
# ---------------------------------------------------------------------------

_AGE_DIRECTIVES: dict[str, str] = {
    "beginner": (
        "AGE GUIDANCE: The player is 10 or younger. Use short sentences and everyday "
        "words, avoid violence or frightening themes, and keep the spy framing playful."
    ),
    "easy": (
        "AGE GUIDANCE: The player is 11-12. Use clear vocabulary, explain any "
        "unusual term in the question, and keep the mission tone light."
    ),
    "medium": (
        "AGE GUIDANCE: The player is 13-14. Middle-school vocabulary is fine; "
        "keep content free of graphic detail."
    ),
    "hard": (
        "AGE GUIDANCE: The player is 15-16. High-school level content and "
        "moderately complex reasoning are appropriate."
    ),
    "expert": (
        "AGE GUIDANCE: Adult player. Full complexity and nuanced historical or "
        "geopolitical context are appropriate."
    ),
}


def build_age_guidance(ceiling: Optional[str]) -> str:
    if ceiling is None:
        return "AGE GUIDANCE: Age not specified; keep content suitable for all ages."
    return _AGE_DIRECTIVES.get(ceiling, _AGE_DIRECTIVES["medium"])


def build_player_profile(request: GenerationRequest) -> str:
    """
    Example output:
        Recent Performance: 80% accuracy
        Average Response Time: 12 seconds
        Current Streak: 4 correct answers
        Agent Level: Field Agent
        Regions Completed: 1
        Strong Areas: western-europe
        Areas for Improvement: None identified
    """
    window = request.performance_window
    profile = request.player_profile
    strong = ", ".join(sorted(window.strong_topics)) or "General Knowledge"
    struggling = ", ".join(sorted(window.struggling_topics)) or "None identified"
    return "\n".join([
        f"Recent Performance: {round(window.recent_accuracy * 100)}% accuracy",
        f"Average Response Time: {round(window.average_response_seconds)} seconds",
        f"Current Streak: {window.current_streak} correct answers",
        f"Agent Level: {profile.agent_level}",
        f"Regions Completed: {len(profile.completed_regions)}",
        f"Strong Areas: {strong}",
        f"Areas for Improvement: {struggling}",
    ])


def build_question_prompt(request: GenerationRequest) -> str:
    decision = request.difficulty
    return QUESTION_GENERATION_PROMPT.format(
        region=request.region,
        region_name=region_display_name(request.region),
        category=request.category,
        tier=decision.tier,
        adjustment_guidance=_ADJUSTMENT_DIRECTIVES.get(decision.adjustment, ""),
        category_guidance=category_guidance(request.category, decision.tier),
        age_guidance=build_age_guidance(decision.age_ceiling),
        player_profile=build_player_profile(request),
    )
