"""
Content Generation Pipeline — one GenerationRequest in, one Question out.

State path per request:

  requested → generating ─┬─ validating → success            (source "ai")
                          └─ fallback_bank                   (source "bank")
                               └─ fallback_hardcoded         (source "hardcoded")

  generating  builds the prompt and calls the generative service under a
              deadline. Timeout, network error or non-2xx → fallback_bank.
  validating  parses JSON. Unparseable body, or missing "question" /
              "options" → fallback_bank. Fields that are present but
              malformed are repaired deterministically and the question
              stays "ai":
                correctAnswer missing / not a number / outside [0, 3] → 0
                options longer than 4 → truncated
                options shorter than 4 → padded with "Option N"
  fallback_bank       curated bank pick; always succeeds on a built bank.
  fallback_hardcoded  only when no bank is wired or the bank pick fails.

generate() never raises. Each run is recorded through GenerationRecorder,
and a recording failure cannot affect the returned question.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from app.core.errors import (
    MalformedResponseError,
    QuestionValidationError,
    TransientGenerationError,
)
from app.models.progress import GenerationRequest
from app.models.question import (
    OPTION_COUNT,
    GeneratedQuestion,
    GenerationResult,
    HardcodedQuestion,
    Question,
)
from app.prompts.question_generation import QUESTION_GENERATION_SYSTEM_PROMPT
from app.services.prompt_builder import build_question_prompt
from app.services.question_bank import QuestionBank
from app.services.regions import region_display_name
from app.services.telemetry import GenerationRecorder

logger = logging.getLogger("atlas.pipeline")

# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

REQUESTED = "requested"
GENERATING = "generating"
VALIDATING = "validating"
SUCCESS = "success"
FALLBACK_BANK = "fallback_bank"
FALLBACK_HARDCODED = "fallback_hardcoded"

AI_COST_ESTIMATE_USD = 0.002

_DEFAULT_HINT = "Consider the geographical and cultural context"
_DEFAULT_EXPLANATION = "This question tests knowledge of regional characteristics"
_DEFAULT_SPY_CONTEXT = "Intelligence gathering mission context"
_DEFAULT_EDUCATIONAL_VALUE = "Builds global awareness and cultural understanding"


# ---------------------------------------------------------------------------
# Validation helpers (pure, no I/O)
# ---------------------------------------------------------------------------

def extract_json_text(raw: str) -> str:
    """
    Pull a JSON object out of model output:
    - raw JSON
    - JSON wrapped in ```json ... ``` fences
    - JSON surrounded by extra prose (first "{" to last "}")
    """
    s = (raw or "").strip()
    if s.startswith("```"):
        s = s.strip("`").strip()
        if s.lower().startswith("json"):
            s = s.split("\n", 1)[-1].strip()

    if s.startswith("{") and s.endswith("}"):
        return s

    first = s.find("{")
    last = s.rfind("}")
    if first != -1 and last > first:
        return s[first : last + 1]
    return s


def parse_response(raw: str) -> dict:
    """Decode the response body; raise MalformedResponseError when unusable."""
    try:
        data = json.loads(extract_json_text(raw))
    except (json.JSONDecodeError, TypeError) as exc:
        raise MalformedResponseError(f"response is not JSON: {str(raw)[:200]!r}") from exc

    if not isinstance(data, dict):
        raise MalformedResponseError(f"expected a JSON object, got {type(data).__name__}")

    question = data.get("question")
    if not isinstance(question, str) or not question.strip():
        raise MalformedResponseError("missing required field 'question'")
    if not isinstance(data.get("options"), list):
        raise MalformedResponseError("missing required field 'options'")
    return data


def _coerce_index(value: Any) -> Optional[int]:
    """Integer index from an int, an integral float or a numeric string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def find_field_problems(data: dict) -> list[QuestionValidationError]:
    """List the repairable problems in a structurally present response."""
    problems: list[QuestionValidationError] = []
    options = data.get("options") or []
    if len(options) > OPTION_COUNT:
        problems.append(QuestionValidationError(f"options_truncated:{len(options)}"))
    elif len(options) < OPTION_COUNT:
        problems.append(QuestionValidationError(f"options_padded:{len(options)}"))

    if "correctAnswer" not in data or data.get("correctAnswer") is None:
        problems.append(QuestionValidationError("correct_answer_missing"))
    else:
        idx = _coerce_index(data.get("correctAnswer"))
        if idx is None:
            problems.append(QuestionValidationError("correct_answer_not_a_number"))
        elif not 0 <= idx < OPTION_COUNT:
            problems.append(QuestionValidationError(f"correct_answer_out_of_range:{idx}"))
    return problems


def repair_payload(data: dict) -> tuple[dict, list[str]]:
    """
    Deterministically repair malformed-but-present fields.

    Returns (repaired copy, list of repair codes). Never raises on a dict
    that passed parse_response().
    """
    repairs = [str(p) for p in find_field_problems(data)]
    fixed = dict(data)

    options = [str(o).strip() for o in (data.get("options") or [])][:OPTION_COUNT]
    while len(options) < OPTION_COUNT:
        options.append(f"Option {len(options) + 1}")
    fixed["options"] = options

    idx = _coerce_index(data.get("correctAnswer"))
    if idx is None or not 0 <= idx < OPTION_COUNT:
        idx = 0
    fixed["correctAnswer"] = idx

    return fixed, repairs


def _text(data: dict, key: str, default: str) -> str:
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def build_generated_question(
    data: dict,
    request: GenerationRequest,
    repairs: list[str],
    model_name: str,
) -> GeneratedQuestion:
    decision = request.difficulty
    window = request.performance_window
    return GeneratedQuestion(
        text=data["question"].strip(),
        options=data["options"],
        correct_index=data["correctAnswer"],
        hint=_text(data, "hint", _DEFAULT_HINT),
        explanation=_text(data, "explanation", _DEFAULT_EXPLANATION),
        region=request.region,
        category=request.category,
        difficulty=decision.tier,
        spy_context=_text(data, "spy_context", _DEFAULT_SPY_CONTEXT),
        educational_value=_text(data, "educational_value", _DEFAULT_EDUCATIONAL_VALUE),
        metadata={
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "ai_model": model_name,
            "adaptive_difficulty": decision.tier,
            "base_difficulty": decision.requested_tier,
            "adjustment": decision.adjustment,
            "age_ceiling": decision.age_ceiling,
            "performance_context": {
                "recent_accuracy": window.recent_accuracy,
                "average_response_seconds": window.average_response_seconds,
                "current_streak": window.current_streak,
                "sample_size": window.sample_size,
            },
            "repairs": repairs,
            "generation_cost_estimate": AI_COST_ESTIMATE_USD,
        },
    )


def hardcoded_question(region: str, category: str, tier: str) -> HardcodedQuestion:
    """Last-resort question; valid for any input."""
    region_name = region_display_name(region)
    return HardcodedQuestion(
        text=(
            f"As an agent investigating {region_name}, what key intelligence should you "
            f"gather about this region's {category.lower()}?"
        ),
        options=[
            "Basic overview information",
            "Detailed strategic analysis",
            "Historical context only",
            "Modern developments only",
        ],
        correct_index=1,
        hint="Agents need comprehensive intelligence for successful missions",
        explanation="Strategic analysis provides the depth needed for intelligence operations",
        region=region,
        category=category,
        difficulty=tier,
        spy_context="Intelligence gathering requires thorough regional analysis",
        educational_value="Understanding regional complexity and strategic thinking",
        metadata={
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "ai_model": "fallback",
            "is_fallback": True,
        },
    )


# ---------------------------------------------------------------------------
# ContentGenerationPipeline
# ---------------------------------------------------------------------------

class ContentGenerationPipeline:
    """
    Drives the generative service for one request at a time.

    Holds no per-request state, so one instance serves concurrent
    requests (the bank is read-only).
    """

    def __init__(
        self,
        ai_service,
        bank: Optional[QuestionBank],
        recorder: Optional[GenerationRecorder] = None,
        timeout_seconds: float = 10.0,
    ):
        self.ai_service = ai_service
        self.bank = bank
        self.recorder = recorder or GenerationRecorder()
        self.timeout_seconds = timeout_seconds

    @property
    def model_name(self) -> str:
        return getattr(self.ai_service, "model", "unknown")

    async def generate(self, request: GenerationRequest) -> Question:
        t0 = time.monotonic()
        stages: list[str] = [REQUESTED]
        repairs: list[str] = []
        error_type: Optional[str] = None
        question: Optional[Question] = None

        try:
            stages.append(GENERATING)
            raw = await self._invoke(request)

            stages.append(VALIDATING)
            data = parse_response(raw)
            data, repairs = repair_payload(data)
            if repairs:
                logger.info(
                    "[content_pipeline] Repaired response for region=%s: %s",
                    request.region, ", ".join(repairs),
                )
            question = build_generated_question(data, request, repairs, self.model_name)
            stages.append(SUCCESS)
        except (TransientGenerationError, MalformedResponseError) as exc:
            error_type = type(exc).__name__
            logger.warning(
                "[content_pipeline] %s for region=%s category=%r: %s",
                error_type, request.region, request.category, exc,
            )
        except Exception as exc:
            error_type = type(exc).__name__
            logger.error(
                "[content_pipeline] Unexpected %s for region=%s: %s",
                error_type, request.region, exc, exc_info=True,
            )

        if question is None:
            question = self._fallback(request, stages)

        self._record(request, question, stages, repairs, error_type, t0)
        return question

    async def _invoke(self, request: GenerationRequest) -> str:
        prompt = build_question_prompt(request)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    self.ai_service.generate_completion,
                    prompt,
                    QUESTION_GENERATION_SYSTEM_PROMPT,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise TransientGenerationError(
                f"generation timed out after {self.timeout_seconds}s"
            ) from exc
        except Exception as exc:
            raise TransientGenerationError(f"{type(exc).__name__}: {exc}") from exc

    def _fallback(self, request: GenerationRequest, stages: list[str]) -> Question:
        tier = request.difficulty.tier
        stages.append(FALLBACK_BANK)
        if self.bank is not None:
            try:
                return self.bank.select(request.region, tier)
            except Exception as exc:
                logger.error(
                    "[content_pipeline] Fallback bank failed for region=%s: %s",
                    request.region, exc, exc_info=True,
                )
        else:
            logger.error("[content_pipeline] No fallback bank configured; using hardcoded question")

        stages.append(FALLBACK_HARDCODED)
        return hardcoded_question(request.region, request.category, tier)

    def _record(
        self,
        request: GenerationRequest,
        question: Question,
        stages: list[str],
        repairs: list[str],
        error_type: Optional[str],
        t0: float,
    ) -> None:
        try:
            self.recorder.record(GenerationResult(
                source=question.source,
                region=request.region,
                category=request.category,
                tier=request.difficulty.tier,
                stages=list(stages),
                repairs=repairs,
                cost_estimate=AI_COST_ESTIMATE_USD if question.source == "ai" else 0.0,
                latency_ms=int((time.monotonic() - t0) * 1000),
                error_type=error_type,
            ))
        except Exception as exc:
            logger.error("[content_pipeline] Failed to record generation result: %s", exc)
