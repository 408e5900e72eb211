"""
Progression state machine — session lifecycle, region unlocks and the
cumulative progress merge.

Session lifecycle:

  ephemeral ──(promote on auth)──▶ persisted

Promotion keeps the session id and copies every field; promoting an
already persisted session is a no-op.

Mission sequence: regions are grouped by region tier, each tier is shuffled
independently and the tiers are concatenated easiest first. A requested
starting region is pulled out of its tier before shuffling and prepended.

Unlocks: completing mission ``seq[i]`` with a score of at least 70 % unlocks
``seq[i + 1]``. Unlocked and completed regions only ever grow.

Merge: counters (score, questions, correct answers, games played) are added
exactly once per session id; region lists are unioned on every call. The
merge functions here are pure; stores decide how to make them atomic.
"""
from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from app.core.errors import RegionLockedError
from app.models.progress import AnswerRecord, Session, SessionDelta, UserProgress
from app.services.regions import REGION_TIER_ORDER, regions_by_tier

logger = logging.getLogger("atlas.progression")

SUCCESS_THRESHOLD_PERCENT = 70


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def _union(*groups: Iterable[str]) -> list[str]:
    """Ordered set union: first occurrence wins, insertion order kept."""
    out: list[str] = []
    seen: set[str] = set()
    for group in groups:
        for item in group:
            if item not in seen:
                seen.add(item)
                out.append(item)
    return out


def build_mission_sequence(
    grouped: Optional[dict[str, list[str]]] = None,
    starting_region: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> list[str]:
    """
    Randomised, tier-grouped permutation of every region.

    ``grouped`` maps region tier → region ids (defaults to the catalog).
    Raises ValueError if ``starting_region`` is not one of the regions.
    """
    rng = rng or random.Random()
    grouped = grouped if grouped is not None else regions_by_tier()

    all_ids = [rid for tier in REGION_TIER_ORDER for rid in grouped.get(tier, [])]
    if starting_region is not None and starting_region not in all_ids:
        raise ValueError(f"Unknown starting region: {starting_region}")

    sequence: list[str] = []
    for tier in REGION_TIER_ORDER:
        pool = [rid for rid in grouped.get(tier, []) if rid != starting_region]
        rng.shuffle(pool)
        sequence.extend(pool)

    if starting_region is not None:
        sequence.insert(0, starting_region)
    return sequence


def mission_score_percent(questions_answered: int, correct_answers: int) -> int:
    if questions_answered <= 0:
        return 0
    return round(correct_answers / questions_answered * 100)


def next_region(mission_sequence: list[str], region: str) -> Optional[str]:
    try:
        idx = mission_sequence.index(region)
    except ValueError:
        return None
    if idx + 1 < len(mission_sequence):
        return mission_sequence[idx + 1]
    return None


def session_delta(session: Session) -> SessionDelta:
    return SessionDelta(
        questions_answered=session.questions_answered,
        correct_answers=min(session.correct_answers, session.questions_answered),
        score_gained=session.score,
        completed_regions=list(session.completed_regions),
        unlocked_regions=list(session.unlocked_regions),
    )


def checkpoint_progress(
    progress: UserProgress,
    completed_regions: Iterable[str],
    unlocked_regions: Iterable[str],
) -> UserProgress:
    """Region-only merge; counters are left untouched."""
    completed = _union(progress.completed_regions, completed_regions)
    unlocked = _union(progress.unlocked_regions, unlocked_regions, completed)
    return progress.model_copy(update={
        "completed_regions": completed,
        "unlocked_regions": unlocked,
    })


def merge_progress(progress: UserProgress, session_id: str, delta: SessionDelta) -> UserProgress:
    """
    Fold one session's results into cumulative progress.

    Applying the same (session_id, delta) twice gives the same result as
    applying it once.
    """
    merged = checkpoint_progress(progress, delta.completed_regions, delta.unlocked_regions)
    if session_id in progress.processed_session_ids:
        logger.info("[progression] Session %s already merged for user %s; counters unchanged",
                    session_id, progress.user_id)
        return merged

    return UserProgress.model_validate({
        "user_id": progress.user_id,
        "total_score": progress.total_score + delta.score_gained,
        "total_questions": progress.total_questions + delta.questions_answered,
        "correct_answers": progress.correct_answers + delta.correct_answers,
        "completed_regions": merged.completed_regions,
        "unlocked_regions": merged.unlocked_regions,
        "games_played": progress.games_played + 1,
        "processed_session_ids": [*progress.processed_session_ids, session_id],
    })


# ---------------------------------------------------------------------------
# ProgressionStateMachine
# ---------------------------------------------------------------------------

class ProgressionStateMachine:
    """Applies lifecycle transitions to Session objects in place."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        success_threshold: int = SUCCESS_THRESHOLD_PERCENT,
    ):
        self.rng = rng or random.Random()
        self.success_threshold = success_threshold

    def start_session(
        self,
        agent_name: str,
        starting_region: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Session:
        sequence = build_mission_sequence(starting_region=starting_region, rng=self.rng)
        session = Session(
            id=str(uuid.uuid4()),
            kind="persisted" if user_id else "ephemeral",
            agent_name=agent_name,
            user_id=user_id,
            mission_sequence=sequence,
            unlocked_regions=sequence[:1],
        )
        logger.info("[progression] Started %s session %s, first region %s",
                    session.kind, session.id, sequence[0] if sequence else None)
        return session

    def promote(self, session: Session, user_id: str) -> Session:
        if session.kind == "persisted":
            return session
        promoted = session.model_copy(update={
            "kind": "persisted",
            "user_id": user_id,
            "last_activity": datetime.now(timezone.utc),
        }, deep=True)
        logger.info("[progression] Promoted session %s for user %s", session.id, user_id)
        return promoted

    def record_answer(self, session: Session, answer: AnswerRecord) -> Session:
        session.answers.append(answer)
        session.last_activity = answer.answered_at
        return session

    def complete_mission(
        self,
        session: Session,
        region: str,
        questions_answered: int,
        correct_answers: int,
        points: int,
    ) -> dict:
        """
        Apply one mission result to ``session``.

        Raises RegionLockedError if ``region`` is not unlocked yet.
        """
        if region not in session.unlocked_regions:
            raise RegionLockedError(f"Region {region!r} is not unlocked for session {session.id}")
        if correct_answers > questions_answered:
            raise ValueError("correct_answers cannot exceed questions_answered")

        score_percent = mission_score_percent(questions_answered, correct_answers)
        success = score_percent >= self.success_threshold
        unlocked = None

        session.questions_answered += questions_answered
        session.correct_answers += correct_answers
        session.score += max(points, 0)

        if success:
            session.completed_regions = _union(session.completed_regions, [region])
            candidate = next_region(session.mission_sequence, region)
            if candidate and candidate not in session.unlocked_regions:
                session.unlocked_regions = [*session.unlocked_regions, candidate]
                unlocked = candidate
        session.last_activity = datetime.now(timezone.utc)

        logger.info(
            "[progression] Session %s mission %s: %d%% (%s), unlocked=%s",
            session.id, region, score_percent, "success" if success else "failed", unlocked,
        )
        return {
            "region": region,
            "score_percent": score_percent,
            "success": success,
            "unlocked_region": unlocked,
            "agent_level": session.agent_level,
        }
