"""
Mission narrative generation.

Asks the generative service for a spy storyline spanning the session's
mission sequence. Like question generation it never raises: any failure,
or a response missing the expected sections, yields a deterministic
template narrative that still covers every region in the sequence.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from app.core.errors import MalformedResponseError, TransientGenerationError
from app.prompts.question_generation import NARRATIVE_PROMPT, NARRATIVE_SYSTEM_PROMPT
from app.services.content_pipeline import extract_json_text
from app.services.difficulty_classifier import age_ceiling
from app.services.prompt_builder import build_age_guidance
from app.services.regions import get_region, region_display_name

logger = logging.getLogger("atlas.narrative")

NARRATIVE_COST_ESTIMATE_USD = 0.004

_THREAT_LEVELS = ["LOW", "MODERATE", "HIGH", "CRITICAL", "MAXIMUM", "ULTIMATE"]


def template_narrative(agent_name: str, mission_sequence: list[str]) -> dict:
    """Deterministic storyline; threat level escalates along the sequence."""
    regional: dict[str, dict] = {}
    total = max(len(mission_sequence), 1)
    for i, region_id in enumerate(mission_sequence):
        name = region_display_name(region_id)
        region = get_region(region_id)
        city = region.primary_city if region else name
        level = _THREAT_LEVELS[min(len(_THREAT_LEVELS) - 1, i * len(_THREAT_LEVELS) // total)]
        regional[region_id] = {
            "operation_name": f"Operation: {name.split()[0]} Watch",
            "threat_level": level,
            "local_plot": f"Shadow Directorate couriers have been sighted moving through {city}.",
            "connection_to_overall": f"Intelligence from {name} narrows down the Directorate's next move.",
            "local_contacts": [f"Handler ({city})"],
            "intelligence_target": f"Identify the Directorate's contact network in {name}",
        }
    return {
        "overall_narrative": {
            "title": "Operation: Silent Atlas",
            "threat_description": (
                "A shadow network is stealing knowledge of the world's regions to "
                "rewrite history in its favour."
            ),
            "antagonist_organization": "The Shadow Directorate, collectors of forbidden maps",
            "victory_condition": f"Agent {agent_name} must secure intelligence from every region",
        },
        "regional_narratives": regional,
        "story_progression": "Each region's intelligence reveals the next link in the Directorate's chain.",
    }


def _validate_narrative(data: dict, mission_sequence: list[str]) -> dict:
    if not isinstance(data.get("overall_narrative"), dict):
        raise MalformedResponseError("missing 'overall_narrative'")
    regional = data.get("regional_narratives")
    if not isinstance(regional, dict):
        raise MalformedResponseError("missing 'regional_narratives'")

    # Fill regions the model skipped so every mission has a storyline entry
    template = template_narrative("", mission_sequence)["regional_narratives"]
    for region_id in mission_sequence:
        if not isinstance(regional.get(region_id), dict):
            regional[region_id] = template[region_id]
    data["regional_narratives"] = regional
    data.setdefault("story_progression", "")
    return data


class NarrativeGenerator:
    def __init__(self, ai_service, timeout_seconds: float = 10.0):
        self.ai_service = ai_service
        self.timeout_seconds = timeout_seconds

    async def generate(
        self,
        agent_name: str,
        starting_region: Optional[str],
        mission_sequence: list[str],
        age_years: Optional[int] = None,
    ) -> dict:
        prompt = NARRATIVE_PROMPT.format(
            agent_name=agent_name,
            starting_region=region_display_name(starting_region) if starting_region else "Not specified",
            mission_sequence=" → ".join(mission_sequence),
            age=age_years if age_years is not None else "Not specified",
            age_guidance=build_age_guidance(age_ceiling(age_years)),
        )

        source = "ai"
        try:
            try:
                raw = await asyncio.wait_for(
                    asyncio.to_thread(
                        self.ai_service.generate_completion,
                        prompt,
                        NARRATIVE_SYSTEM_PROMPT,
                        0.8,
                        2000,
                    ),
                    timeout=self.timeout_seconds,
                )
            except Exception as exc:
                raise TransientGenerationError(f"{type(exc).__name__}: {exc}") from exc
            try:
                data = json.loads(extract_json_text(raw))
            except (json.JSONDecodeError, TypeError) as exc:
                raise MalformedResponseError("narrative response is not JSON") from exc
            if not isinstance(data, dict):
                raise MalformedResponseError("narrative response is not an object")
            narrative = _validate_narrative(data, mission_sequence)
        except (TransientGenerationError, MalformedResponseError) as exc:
            logger.warning("[narrative] %s: %s; using template narrative", type(exc).__name__, exc)
            narrative = template_narrative(agent_name, mission_sequence)
            source = "template"

        return {
            "source": source,
            "agent_name": agent_name,
            "narrative": narrative,
            "generation_cost": NARRATIVE_COST_ESTIMATE_USD if source == "ai" else 0.0,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
