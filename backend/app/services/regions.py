"""
Region catalog and quiz categories.

Every region has a fixed region tier; mission sequencing groups regions by
these tiers (beginner → intermediate → advanced → expert). Question-level
difficulty uses the five-step DifficultyTier scale instead, so each region
tier also maps to a default requested question tier.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

REGION_TIER_ORDER: list[str] = ["beginner", "intermediate", "advanced", "expert"]

# Region tier → question tier requested when the caller does not supply one
_DEFAULT_QUESTION_TIER: dict[str, str] = {
    "beginner": "easy",
    "intermediate": "medium",
    "advanced": "hard",
    "expert": "expert",
}


class Region(BaseModel):
    id: str
    name: str
    continent: str
    tier: str
    primary_city: str


REGIONS: dict[str, Region] = {
    r.id: r
    for r in [
        Region(id="western-europe", name="Western Europe", continent="Europe",
               tier="beginner", primary_city="Paris"),
        Region(id="eastern-europe", name="Eastern Europe", continent="Europe",
               tier="beginner", primary_city="Prague"),
        Region(id="north-america", name="North America", continent="North America",
               tier="intermediate", primary_city="New York"),
        Region(id="south-america", name="South America", continent="South America",
               tier="intermediate", primary_city="São Paulo"),
        Region(id="east-asia", name="East Asia", continent="Asia",
               tier="advanced", primary_city="Tokyo"),
        Region(id="southeast-asia", name="Southeast Asia", continent="Asia",
               tier="advanced", primary_city="Singapore"),
        Region(id="south-asia", name="South Asia", continent="Asia",
               tier="advanced", primary_city="Mumbai"),
        Region(id="central-west-asia", name="Central & West Asia", continent="Asia",
               tier="expert", primary_city="Istanbul"),
        Region(id="africa", name="Africa", continent="Africa",
               tier="expert", primary_city="Cairo"),
        Region(id="oceania", name="Oceania", continent="Oceania",
               tier="expert", primary_city="Sydney"),
    ]
}

ALL_REGION_IDS: list[str] = list(REGIONS)


# ---------------------------------------------------------------------------
# Quiz categories: focus guidance per coarse difficulty band
# ---------------------------------------------------------------------------

CATEGORY_GUIDANCE: dict[str, dict[str, str]] = {
    "Geography & Environment": {
        "easy": "Basic physical features, capitals, major landmarks",
        "medium": "Climate patterns, natural resources, ecosystems",
        "hard": "Complex geographical relationships, environmental challenges",
    },
    "History & Civilizations": {
        "easy": "Major historical figures, important dates, basic events",
        "medium": "Historical movements, cultural developments, empire connections",
        "hard": "Complex historical analysis, cause-and-effect relationships",
    },
    "Culture & Philosophy": {
        "easy": "Basic cultural practices, famous artworks, religious basics",
        "medium": "Philosophical concepts, cultural significance, artistic movements",
        "hard": "Deep cultural analysis, philosophical debates, cultural synthesis",
    },
    "Modern Context": {
        "easy": "Current leaders, basic politics, major cities",
        "medium": "Economic systems, political structures, social issues",
        "hard": "Complex geopolitical analysis, economic relationships, global challenges",
    },
    "Challenge Puzzles": {
        "easy": "Simple connections between concepts",
        "medium": "Multi-step reasoning, pattern recognition",
        "hard": "Complex synthesis, strategic thinking, multiple variable analysis",
    },
}

VALID_CATEGORIES: list[str] = list(CATEGORY_GUIDANCE)
DEFAULT_CATEGORY = "Geography & Environment"

# Question tier → guidance band
_TIER_BAND: dict[str, str] = {
    "beginner": "easy",
    "easy": "easy",
    "medium": "medium",
    "hard": "hard",
    "expert": "hard",
}


def get_region(region_id: str) -> Optional[Region]:
    return REGIONS.get(region_id)


def region_display_name(region_id: str) -> str:
    """Human-readable name; unknown ids are prettified ("far-north" → "Far North")."""
    region = REGIONS.get(region_id)
    if region:
        return region.name
    return region_id.replace("-", " ").replace("_", " ").title()


def default_question_tier(region_id: str) -> str:
    region = REGIONS.get(region_id)
    if not region:
        return "medium"
    return _DEFAULT_QUESTION_TIER[region.tier]


def category_guidance(category: str, tier: str) -> str:
    band = _TIER_BAND.get(tier, "medium")
    return CATEGORY_GUIDANCE.get(category, {}).get(band, "General knowledge")


def regions_by_tier() -> dict[str, list[str]]:
    """Region ids grouped by region tier, in catalog order."""
    grouped: dict[str, list[str]] = {tier: [] for tier in REGION_TIER_ORDER}
    for region in REGIONS.values():
        grouped[region.tier].append(region.id)
    return grouped
