from fastapi import APIRouter, Request

from app.core.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    settings = get_settings()
    engine = getattr(request.app.state, "engine", None)
    return {
        "status": "healthy",
        "llm_provider": settings.llm_provider,
        "progress_store": type(engine.store).__name__ if engine else None,
        "fallback_bank_size": engine.pipeline.bank.size if engine and engine.pipeline.bank else 0,
    }
