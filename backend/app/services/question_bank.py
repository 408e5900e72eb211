"""
Curated fallback question bank (first fallback tier).

Loaded once from app/data/fallback_questions.json and then read-only, so a
single instance is shared safely by concurrent generation requests.

Selection order for (region, tier):
  1. region pool, same difficulty
  2. region pool, any difficulty
  3. default pool, same difficulty
  4. default pool, any difficulty

A bank whose default pool is empty cannot guarantee step 4 and is rejected
with ConfigurationError when it is built (i.e. at application startup).
"""
from __future__ import annotations

import json
import logging
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from app.core.errors import ConfigurationError
from app.models.question import FallbackQuestion

logger = logging.getLogger(__name__)

BANK_PATH = Path(__file__).parent.parent / "data" / "fallback_questions.json"

_DEFAULT_POOL_REGION = "global"


def _build_entry(raw: dict, region: str) -> FallbackQuestion:
    return FallbackQuestion(
        text=raw["text"],
        options=list(raw["options"]),
        correct_index=int(raw["correct_index"]),
        hint=raw.get("hint", ""),
        explanation=raw.get("explanation", ""),
        region=region,
        category=raw.get("category", "Geography & Environment"),
        difficulty=raw.get("difficulty", "easy"),
    )


def _build_pool(rows: list, region: str) -> list[FallbackQuestion]:
    pool: list[FallbackQuestion] = []
    for i, raw in enumerate(rows):
        try:
            pool.append(_build_entry(raw, region))
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise ConfigurationError(
                f"Invalid fallback bank entry {region}[{i}]: {exc}"
            ) from exc
    return pool


class QuestionBank:
    def __init__(
        self,
        regions: dict[str, list[FallbackQuestion]],
        default: list[FallbackQuestion],
        rng: Optional[random.Random] = None,
    ):
        if not default:
            raise ConfigurationError("Fallback bank has no default (region-agnostic) questions")
        self._regions = {k: list(v) for k, v in regions.items() if v}
        self._default = list(default)
        self._rng = rng or random.Random()

    @classmethod
    def from_dict(cls, data: dict, rng: Optional[random.Random] = None) -> "QuestionBank":
        if not isinstance(data, dict):
            raise ConfigurationError("Fallback bank payload must be a JSON object")
        default = _build_pool(data.get("default") or [], _DEFAULT_POOL_REGION)
        regions = {
            region: _build_pool(rows or [], region)
            for region, rows in (data.get("regions") or {}).items()
        }
        return cls(regions=regions, default=default, rng=rng)

    @classmethod
    def from_file(cls, path: Path = BANK_PATH, rng: Optional[random.Random] = None) -> "QuestionBank":
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Fallback bank unreadable at {path}: {exc}") from exc
        bank = cls.from_dict(data, rng=rng)
        logger.info(
            "[question_bank] Loaded %d region pool(s), %d question(s) total from %s",
            len(bank._regions), bank.size, path,
        )
        return bank

    @property
    def size(self) -> int:
        return len(self._default) + sum(len(v) for v in self._regions.values())

    def region_ids(self) -> list[str]:
        return list(self._regions)

    def select(self, region: str, tier: str) -> FallbackQuestion:
        """Pick a curated question; always returns when the bank was built."""
        pool_name = "region"
        pool = self._regions.get(region) or []
        if not pool:
            pool_name = "default"
            pool = self._default

        matching = [q for q in pool if q.difficulty == tier]
        candidates = matching or pool
        chosen = self._rng.choice(candidates)

        return chosen.model_copy(update={
            "region": region,
            "metadata": {
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "pool": pool_name,
                "tier_match": bool(matching),
                "requested_tier": tier,
                "is_fallback": True,
            },
        })
