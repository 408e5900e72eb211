"""
AdaptiveEngine — request-scoped entry point for the API routers.

Owns one instance of each service (pipeline, orchestrator, narrative
generator, state machine, progress store). main.py builds it once in the
lifespan hook and stores it on ``app.state``; nothing here is a module
global.

Ephemeral sessions live in an in-process registry. Persisted sessions and
cumulative progress live in the progress store. Store failures never block
play: they come back as ``progress_saved=False`` plus a warning.
"""
from __future__ import annotations

import logging
import random
import threading
from typing import Optional, Sequence

from app.core.config import Settings
from app.core.errors import PersistenceError, SessionNotFoundError
from app.models.progress import (
    AnswerRecord,
    GenerationRequest,
    PerformanceWindow,
    PlayerProfile,
    Session,
    UserProgress,
)
from app.models.question import Question
from app.services.ai import AIService
from app.services.batch_orchestrator import BatchOrchestrator
from app.services.content_pipeline import AI_COST_ESTIMATE_USD, ContentGenerationPipeline
from app.services.difficulty_classifier import classify
from app.services.narrative import NarrativeGenerator
from app.services.performance_tracker import WINDOW_SIZE, compute_window, recommend
from app.services.progress_store import ProgressStore, get_progress_store
from app.services.progression import (
    ProgressionStateMachine,
    merge_progress,
    session_delta,
)
from app.services.question_bank import QuestionBank
from app.services.regions import DEFAULT_CATEGORY, default_question_tier
from app.services.telemetry import GenerationRecorder

logger = logging.getLogger("atlas.engine")

_PROGRESS_NOT_SAVED = "Progress could not be saved; continuing in offline mode"


class AdaptiveEngine:
    def __init__(
        self,
        pipeline: ContentGenerationPipeline,
        orchestrator: BatchOrchestrator,
        narrative: NarrativeGenerator,
        store: ProgressStore,
        progression: Optional[ProgressionStateMachine] = None,
        default_max_concurrent: int = 3,
    ):
        self.pipeline = pipeline
        self.orchestrator = orchestrator
        self.narrative = narrative
        self.store = store
        self.progression = progression or ProgressionStateMachine()
        self.default_max_concurrent = default_max_concurrent
        self._ephemeral: dict[str, Session] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        bank: QuestionBank,
        ai_service: Optional[AIService] = None,
        store: Optional[ProgressStore] = None,
        rng: Optional[random.Random] = None,
    ) -> "AdaptiveEngine":
        ai_service = ai_service or AIService(settings=settings)
        recorder = GenerationRecorder(persist=settings.enable_generation_telemetry_db)
        pipeline = ContentGenerationPipeline(
            ai_service, bank, recorder, timeout_seconds=settings.generation_timeout_seconds,
        )
        return cls(
            pipeline=pipeline,
            orchestrator=BatchOrchestrator(pipeline, settings.batch_chunk_delay_seconds),
            narrative=NarrativeGenerator(ai_service, settings.generation_timeout_seconds),
            store=store or get_progress_store(settings),
            progression=ProgressionStateMachine(rng=rng),
            default_max_concurrent=settings.batch_max_concurrent,
        )

    # ── session lookup ───────────────────────────────────────────────────

    def _find_session(self, session_id: str, user_id: Optional[str] = None) -> Optional[Session]:
        """Ephemeral registry first, then the store.

        Raises PersistenceError if the store is unreachable.
        """
        with self._lock:
            session = self._ephemeral.get(session_id)
        if session is None:
            session = self.store.get_session(session_id)
        if session is not None and session.user_id and session.user_id != user_id:
            # Persisted sessions are visible to their owner only
            return None
        return session

    def get_session(self, session_id: str, user_id: Optional[str] = None) -> Session:
        session = self._find_session(session_id, user_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    def _save(self, session: Session) -> Optional[str]:
        """Persist a mutated session; returns a warning instead of raising."""
        if session.kind == "ephemeral":
            with self._lock:
                self._ephemeral[session.id] = session
            return None
        try:
            self.store.save_session(session)
        except PersistenceError as e:
            # Held in the registry until a later save lands; lookups see it first
            logger.warning("[engine] Could not save session %s: %s", session.id, e)
            with self._lock:
                self._ephemeral[session.id] = session
            return _PROGRESS_NOT_SAVED
        with self._lock:
            self._ephemeral.pop(session.id, None)
        return None

    # ── performance ──────────────────────────────────────────────────────

    def _recent_answers(self, session_id: Optional[str], user_id: Optional[str]) -> list[AnswerRecord]:
        if user_id:
            try:
                answers = self.store.recent_answers(user_id, WINDOW_SIZE)
                if answers:
                    return answers
            except PersistenceError as e:
                logger.warning("[engine] Answer history unavailable for user %s: %s", user_id, e)
        if session_id:
            try:
                session = self._find_session(session_id, user_id)
            except PersistenceError as e:
                logger.warning("[engine] Session %s unavailable: %s", session_id, e)
                session = None
            if session is not None:
                return list(reversed(session.answers))[:WINDOW_SIZE]
        return []

    def performance_window(self, session_id: Optional[str], user_id: Optional[str] = None) -> PerformanceWindow:
        return compute_window(self._recent_answers(session_id, user_id))

    def get_performance(self, session_id: str, user_id: Optional[str] = None) -> dict:
        if not user_id:
            self.get_session(session_id)
        window = self.performance_window(session_id, user_id)
        return {
            "session_id": session_id,
            "performance": window.model_dump(mode="json"),
            "recommendations": recommend(window),
        }

    # ── generation ───────────────────────────────────────────────────────

    def _player_profile(self, session_id: Optional[str], user_id: Optional[str]) -> PlayerProfile:
        session = None
        if session_id:
            try:
                session = self._find_session(session_id, user_id)
            except PersistenceError:
                session = None
        if session is None:
            return PlayerProfile()
        return PlayerProfile(
            agent_level=session.agent_level,
            completed_regions=list(session.completed_regions),
            total_score=session.score,
        )

    def build_request(
        self,
        region: str,
        category: str = DEFAULT_CATEGORY,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        requested_tier: Optional[str] = None,
        age_years: Optional[int] = None,
        window: Optional[PerformanceWindow] = None,
        profile: Optional[PlayerProfile] = None,
    ) -> GenerationRequest:
        window = window or self.performance_window(session_id, user_id)
        decision = classify(window, age_years, requested_tier or default_question_tier(region))
        logger.info(
            "[engine] Difficulty for region=%s: %s (%s) %s",
            region, decision.tier, decision.adjustment, decision.reasoning,
        )
        return GenerationRequest(
            region=region,
            category=category,
            difficulty=decision,
            player_profile=profile or self._player_profile(session_id, user_id),
            performance_window=window,
            age_years=age_years,
        )

    async def request_question(
        self,
        region: str,
        category: str = DEFAULT_CATEGORY,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        requested_tier: Optional[str] = None,
        age_years: Optional[int] = None,
    ) -> Question:
        request = self.build_request(region, category, session_id, user_id, requested_tier, age_years)
        return await self.pipeline.generate(request)

    def build_batch_specs(
        self,
        regions: Sequence[str],
        categories: Sequence[str],
        difficulties: Sequence[Optional[str]],
        count: int,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        age_years: Optional[int] = None,
    ) -> list[GenerationRequest]:
        """Round-robin over the lists; all specs share one window and profile."""
        if not regions:
            raise ValueError("regions must not be empty")
        categories = list(categories) or [DEFAULT_CATEGORY]
        difficulties = list(difficulties) or [None]
        window = self.performance_window(session_id, user_id)
        profile = self._player_profile(session_id, user_id)
        return [
            self.build_request(
                regions[i % len(regions)],
                categories[i % len(categories)],
                requested_tier=difficulties[i % len(difficulties)],
                age_years=age_years,
                window=window,
                profile=profile,
            )
            for i in range(count)
        ]

    async def request_batch(
        self,
        specs: Sequence[GenerationRequest],
        max_concurrent: Optional[int] = None,
    ) -> dict:
        questions = await self.orchestrator.generate_batch(
            specs, max_concurrent or self.default_max_concurrent,
        )
        return {
            "questions": questions,
            "count": len(questions),
            "estimated_cost": round(
                sum(AI_COST_ESTIMATE_USD for q in questions if q.source == "ai"), 6,
            ),
        }

    async def generate_narrative(
        self,
        agent_name: str,
        starting_region: Optional[str] = None,
        mission_sequence: Optional[list[str]] = None,
        age_years: Optional[int] = None,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> dict:
        if not mission_sequence and session_id:
            mission_sequence = self.get_session(session_id, user_id).mission_sequence
        return await self.narrative.generate(
            agent_name, starting_region, list(mission_sequence or []), age_years,
        )

    # ── session lifecycle ────────────────────────────────────────────────

    def start_session(
        self,
        agent_name: str,
        starting_region: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> dict:
        session = self.progression.start_session(agent_name, starting_region, user_id)
        warning = None
        if session.kind == "persisted":
            try:
                self.store.create_session(session)
            except PersistenceError as e:
                logger.warning("[engine] Session store unavailable, starting ephemeral: %s", e)
                session = session.model_copy(update={"kind": "ephemeral"})
                warning = _PROGRESS_NOT_SAVED
        if session.kind == "ephemeral":
            with self._lock:
                self._ephemeral[session.id] = session
        return {"session": session, "warning": warning}

    def promote_session(self, session_id: str, user_id: str) -> dict:
        session = self.get_session(session_id, user_id)
        if session.kind == "persisted":
            return {"session": session, "warning": None}

        promoted = self.progression.promote(session, user_id)
        try:
            self.store.create_session(promoted)
        except PersistenceError as e:
            logger.warning("[engine] Promotion of %s failed: %s", session_id, e)
            return {"session": session, "warning": _PROGRESS_NOT_SAVED}

        with self._lock:
            self._ephemeral.pop(session_id, None)
        return {"session": promoted, "warning": None}

    def record_answer(
        self,
        session_id: str,
        correct: bool,
        elapsed_seconds: float,
        region: str,
        question_ref: Optional[str] = None,
        selected_index: Optional[int] = None,
        points: int = 0,
        user_id: Optional[str] = None,
    ) -> dict:
        session = self.get_session(session_id, user_id)
        answer = AnswerRecord(
            correct=correct,
            elapsed_seconds=elapsed_seconds,
            region=region,
            question_ref=question_ref,
            selected_index=selected_index,
            points=points,
        )
        self.progression.record_answer(session, answer)
        warning = self._save(session)
        if session.kind == "persisted" and session.user_id and warning is None:
            try:
                self.store.record_answer(session.user_id, session.id, answer)
            except PersistenceError as e:
                logger.warning("[engine] Could not record answer for %s: %s", session_id, e)
                warning = _PROGRESS_NOT_SAVED
        return {"session": session, "warning": warning}

    def complete_mission(
        self,
        session_id: str,
        region: str,
        questions_answered: int,
        correct_answers: int,
        points: int,
        user_id: Optional[str] = None,
    ) -> dict:
        session = self.get_session(session_id, user_id)
        outcome = self.progression.complete_mission(
            session, region, questions_answered, correct_answers, points,
        )
        warning = self._save(session)
        if session.kind == "persisted" and session.user_id and warning is None:
            try:
                self.store.checkpoint(session.user_id, session.completed_regions, session.unlocked_regions)
            except PersistenceError as e:
                logger.warning("[engine] Checkpoint failed for %s: %s", session_id, e)
                warning = _PROGRESS_NOT_SAVED
        return {
            "session": session,
            "mission": outcome,
            "progress_saved": warning is None,
            "warning": warning,
        }

    def complete_session(
        self,
        session_id: str,
        score: Optional[int] = None,
        completed_regions: Optional[list[str]] = None,
        unlocked_regions: Optional[list[str]] = None,
        user_id: Optional[str] = None,
    ) -> dict:
        """
        Merge a finished session into cumulative progress.

        Caller-supplied score replaces the session score; caller-supplied
        region lists are unioned with the session's. Ephemeral sessions get
        their merged progress computed but not stored.
        """
        session = self.get_session(session_id, user_id)
        delta = session_delta(session)
        update: dict = {}
        if score is not None:
            update["score_gained"] = max(score, 0)
        if completed_regions:
            update["completed_regions"] = [*delta.completed_regions, *completed_regions]
        if unlocked_regions:
            update["unlocked_regions"] = [*delta.unlocked_regions, *unlocked_regions]
        if update:
            delta = delta.model_copy(update=update)

        if session.kind == "ephemeral" or not session.user_id:
            progress = merge_progress(UserProgress(user_id="anonymous"), session.id, delta)
            return {
                "progress": progress,
                "progress_saved": False,
                "warning": "Sign in to save your progress",
            }

        try:
            progress = self.store.merge_progress(session.user_id, session.id, delta)
        except PersistenceError as e:
            logger.warning("[engine] Merge failed for session %s: %s", session_id, e)
            progress = merge_progress(UserProgress(user_id=session.user_id), session.id, delta)
            return {"progress": progress, "progress_saved": False, "warning": _PROGRESS_NOT_SAVED}
        return {"progress": progress, "progress_saved": True, "warning": None}
