import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import game, health, questions
from app.core.config import get_settings
from app.services.engine import AdaptiveEngine
from app.services.question_bank import QuestionBank

logger = logging.getLogger("atlas.main")

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ConfigurationError from the bank aborts startup
    bank = QuestionBank.from_file()
    app.state.engine = AdaptiveEngine.from_settings(settings, bank)
    logger.info(
        "[main] Engine ready: provider=%s model=%s store=%s",
        settings.llm_provider, settings.llm_model, type(app.state.engine.store).__name__,
    )
    yield


app = FastAPI(
    title=settings.app_name,
    description="Adaptive question generation and mission progression for Atlas Agent",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:5173",  # Vite dev server
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router)
app.include_router(questions.router)
app.include_router(game.router)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "docs": "/docs",
        "health": "/health",
    }
