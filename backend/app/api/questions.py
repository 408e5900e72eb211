import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from app.core.config import Settings, get_settings
from app.core.deps import get_engine, get_optional_user_id
from app.core.errors import PersistenceError, SessionNotFoundError
from app.models.progress import TIER_ORDER
from app.services.regions import DEFAULT_CATEGORY, VALID_CATEGORIES
from app.services.telemetry import instrument

logger = logging.getLogger("atlas.api.questions")
router = APIRouter(prefix="/api/ai", tags=["ai"])


# ──────────────────────────────────────────────
# Caller-boundary validation
# ──────────────────────────────────────────────

def check_age(age: Optional[int], settings: Settings) -> None:
    if age is None:
        return
    if not settings.min_age <= age <= settings.max_age:
        raise HTTPException(
            status_code=400,
            detail=f"age must be between {settings.min_age} and {settings.max_age}",
        )


def check_category(category: str) -> None:
    if category not in VALID_CATEGORIES:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown category '{category}'. Valid: {', '.join(VALID_CATEGORIES)}",
        )


def check_tier(tier: Optional[str]) -> None:
    if tier is not None and tier not in TIER_ORDER:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown difficulty '{tier}'. Valid: {', '.join(TIER_ORDER)}",
        )


# ──────────────────────────────────────────────
# Request models
# ──────────────────────────────────────────────

class QuestionRequest(BaseModel):
    region: str
    category: str = DEFAULT_CATEGORY
    session_id: Optional[str] = None
    difficulty: Optional[str] = None
    age: Optional[int] = None


class BatchRequest(BaseModel):
    regions: list[str]
    categories: list[str] = []
    difficulties: list[str] = []
    count: int = 5
    max_concurrent: Optional[int] = None
    session_id: Optional[str] = None
    age: Optional[int] = None


class NarrativeRequest(BaseModel):
    agent_name: str
    starting_region: Optional[str] = None
    mission_sequence: list[str] = []
    session_id: Optional[str] = None
    age: Optional[int] = None


# ──────────────────────────────────────────────
# Endpoints
# ──────────────────────────────────────────────

@router.post("/generate-question")
@instrument(route="/api/ai/generate-question", version="v1")
async def generate_question(
    request: QuestionRequest,
    engine=Depends(get_engine),
    settings: Settings = Depends(get_settings),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    check_age(request.age, settings)
    check_category(request.category)
    check_tier(request.difficulty)

    try:
        question = await engine.request_question(
            request.region,
            request.category,
            session_id=request.session_id,
            user_id=user_id,
            requested_tier=request.difficulty,
            age_years=request.age,
        )
        return {"success": True, "question": question.model_dump(mode="json")}
    except HTTPException:
        raise
    except Exception as e:
        logger.error("[generate_question] %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to generate question: {str(e)}")


@router.post("/generate-batch")
@instrument(route="/api/ai/generate-batch", version="v1")
async def generate_batch(
    request: BatchRequest,
    engine=Depends(get_engine),
    settings: Settings = Depends(get_settings),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    check_age(request.age, settings)
    if not request.regions:
        raise HTTPException(status_code=400, detail="regions must not be empty")
    if not 1 <= request.count <= settings.max_batch_size:
        raise HTTPException(
            status_code=400, detail=f"count must be between 1 and {settings.max_batch_size}",
        )
    max_concurrent = request.max_concurrent or settings.batch_max_concurrent
    if not 1 <= max_concurrent <= settings.batch_concurrency_cap:
        raise HTTPException(
            status_code=400,
            detail=f"max_concurrent must be between 1 and {settings.batch_concurrency_cap}",
        )
    for category in request.categories:
        check_category(category)
    for tier in request.difficulties:
        check_tier(tier)

    try:
        specs = engine.build_batch_specs(
            request.regions,
            request.categories,
            request.difficulties,
            request.count,
            session_id=request.session_id,
            user_id=user_id,
            age_years=request.age,
        )
        result = await engine.request_batch(specs, max_concurrent)
        return {
            "success": True,
            "questions": [q.model_dump(mode="json") for q in result["questions"]],
            "count": result["count"],
            "estimated_cost": result["estimated_cost"],
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error("[generate_batch] %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to generate batch: {str(e)}")


@router.get("/performance/{session_id}")
@instrument(route="/api/ai/performance", version="v1")
async def get_performance(
    session_id: str,
    engine=Depends(get_engine),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    try:
        return {"success": True, **engine.get_performance(session_id, user_id)}
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("[get_performance] %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to load performance: {str(e)}")


@router.post("/generate-mission-narrative")
@instrument(route="/api/ai/generate-mission-narrative", version="v1")
async def generate_mission_narrative(
    request: NarrativeRequest,
    engine=Depends(get_engine),
    settings: Settings = Depends(get_settings),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    check_age(request.age, settings)
    if not request.mission_sequence and not request.session_id:
        raise HTTPException(status_code=400, detail="mission_sequence or session_id is required")

    try:
        narrative = await engine.generate_narrative(
            request.agent_name,
            request.starting_region,
            request.mission_sequence,
            request.age,
            session_id=request.session_id,
            user_id=user_id,
        )
        return {"success": True, **narrative}
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("[generate_mission_narrative] %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to generate narrative: {str(e)}")
