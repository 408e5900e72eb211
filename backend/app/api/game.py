import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.core.deps import get_engine, get_optional_user_id
from app.core.errors import PersistenceError, RegionLockedError, SessionNotFoundError
from app.models.progress import Session
from app.services.regions import REGIONS, VALID_CATEGORIES, regions_by_tier
from app.services.telemetry import instrument

logger = logging.getLogger("atlas.api.game")
router = APIRouter(prefix="/api/game", tags=["game"])


class StartSessionRequest(BaseModel):
    agent_name: str = Field(min_length=1, max_length=50)
    starting_region: Optional[str] = None


class AnswerRequest(BaseModel):
    correct: bool
    elapsed_seconds: float = Field(ge=0)
    region: str
    question_ref: Optional[str] = None
    selected_index: Optional[int] = Field(None, ge=0, le=3)
    points: int = Field(0, ge=0)


class MissionRequest(BaseModel):
    region: str
    questions_answered: int = Field(ge=0)
    correct_answers: int = Field(ge=0)
    points: int = Field(0, ge=0)


class CompleteSessionRequest(BaseModel):
    score: Optional[int] = Field(None, ge=0)
    completed_regions: list[str] = []
    unlocked_regions: list[str] = []


def _session_out(session: Session) -> dict:
    data = session.model_dump(mode="json", exclude={"answers"})
    data["answers_recorded"] = len(session.answers)
    return data


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise HTTPException(status_code=401, detail="Sign in required")
    return user_id


@router.get("/regions")
async def list_regions():
    return {
        "regions": [r.model_dump() for r in REGIONS.values()],
        "tiers": regions_by_tier(),
        "categories": VALID_CATEGORIES,
    }


@router.post("/sessions")
@instrument(route="/api/game/sessions", version="v1")
async def start_session(
    request: StartSessionRequest,
    engine=Depends(get_engine),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    try:
        result = engine.start_session(request.agent_name, request.starting_region, user_id)
        return {
            "success": True,
            "session": _session_out(result["session"]),
            "warning": result["warning"],
        }
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("[start_session] %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to start session: {str(e)}")


@router.get("/sessions/{session_id}")
async def get_session(
    session_id: str,
    engine=Depends(get_engine),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    try:
        return {"success": True, "session": _session_out(engine.get_session(session_id, user_id))}
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/sessions/{session_id}/answers")
async def record_answer(
    session_id: str,
    request: AnswerRequest,
    engine=Depends(get_engine),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    try:
        result = engine.record_answer(session_id, user_id=user_id, **request.model_dump())
        return {
            "success": True,
            "answers_recorded": len(result["session"].answers),
            "warning": result["warning"],
        }
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("[record_answer] %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to record answer: {str(e)}")


@router.post("/sessions/{session_id}/missions")
@instrument(route="/api/game/missions", version="v1")
async def complete_mission(
    session_id: str,
    request: MissionRequest,
    engine=Depends(get_engine),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    if request.correct_answers > request.questions_answered:
        raise HTTPException(status_code=400, detail="correct_answers cannot exceed questions_answered")

    try:
        result = engine.complete_mission(
            session_id,
            request.region,
            request.questions_answered,
            request.correct_answers,
            request.points,
            user_id=user_id,
        )
        return {
            "success": True,
            "mission": result["mission"],
            "session": _session_out(result["session"]),
            "progress_saved": result["progress_saved"],
            "warning": result["warning"],
        }
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RegionLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("[complete_mission] %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to complete mission: {str(e)}")


@router.post("/sessions/{session_id}/promote")
async def promote_session(
    session_id: str,
    engine=Depends(get_engine),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    user_id = _require_user(user_id)
    try:
        result = engine.promote_session(session_id, user_id)
        return {
            "success": True,
            "session": _session_out(result["session"]),
            "warning": result["warning"],
        }
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/sessions/{session_id}/complete")
@instrument(route="/api/game/complete", version="v1")
async def complete_session(
    session_id: str,
    request: CompleteSessionRequest,
    engine=Depends(get_engine),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    try:
        result = engine.complete_session(
            session_id,
            score=request.score,
            completed_regions=request.completed_regions,
            unlocked_regions=request.unlocked_regions,
            user_id=user_id,
        )
        return {
            "success": True,
            "progress": result["progress"].model_dump(mode="json", exclude={"processed_session_ids"}),
            "progress_saved": result["progress_saved"],
            "warning": result["warning"],
        }
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("[complete_session] %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to complete session: {str(e)}")


@router.get("/progress")
async def get_progress(
    engine=Depends(get_engine),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    user_id = _require_user(user_id)
    try:
        progress = engine.store.get_progress(user_id)
        return {"success": True, "progress": progress.model_dump(mode="json", exclude={"processed_session_ids"})}
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
