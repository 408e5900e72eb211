import logging
import threading
from collections import defaultdict
from typing import Optional

from supabase import create_client

from app.core.errors import PersistenceError
from app.models.progress import AnswerRecord, Session, SessionDelta, UserProgress
from app.services.progression import checkpoint_progress, merge_progress

logger = logging.getLogger("atlas.progress_store")

ANSWER_HISTORY_LIMIT = 50


class ProgressStore:
    """Persistence contract for persisted sessions and cumulative progress.

    Every method raises PersistenceError when the backing store is
    unreachable. merge_progress must be idempotent per session id.
    """

    def create_session(self, session: Session) -> Session:
        raise NotImplementedError

    def get_session(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    def save_session(self, session: Session) -> Session:
        raise NotImplementedError

    def get_progress(self, user_id: str) -> UserProgress:
        raise NotImplementedError

    def merge_progress(self, user_id: str, session_id: str, delta: SessionDelta) -> UserProgress:
        raise NotImplementedError

    def checkpoint(self, user_id: str, completed_regions: list[str],
                   unlocked_regions: list[str]) -> UserProgress:
        raise NotImplementedError

    def record_answer(self, user_id: str, session_id: str, answer: AnswerRecord) -> None:
        raise NotImplementedError

    def recent_answers(self, user_id: str, limit: int = 10) -> list[AnswerRecord]:
        raise NotImplementedError


class InMemoryProgressStore(ProgressStore):
    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._progress: dict[str, UserProgress] = {}
        self._answers: dict[str, list[AnswerRecord]] = defaultdict(list)
        self._guard = threading.Lock()
        self._user_locks: dict[str, threading.Lock] = {}

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._guard:
            return self._user_locks.setdefault(user_id, threading.Lock())

    def create_session(self, session):
        return self.save_session(session)

    def get_session(self, session_id):
        stored = self._sessions.get(session_id)
        return stored.model_copy(deep=True) if stored else None

    def save_session(self, session):
        self._sessions[session.id] = session.model_copy(deep=True)
        return session

    def get_progress(self, user_id):
        stored = self._progress.get(user_id)
        return stored.model_copy(deep=True) if stored else UserProgress(user_id=user_id)

    def merge_progress(self, user_id, session_id, delta):
        with self._lock_for(user_id):
            merged = merge_progress(self.get_progress(user_id), session_id, delta)
            self._progress[user_id] = merged
            return merged.model_copy(deep=True)

    def checkpoint(self, user_id, completed_regions, unlocked_regions):
        with self._lock_for(user_id):
            merged = checkpoint_progress(self.get_progress(user_id), completed_regions, unlocked_regions)
            self._progress[user_id] = merged
            return merged.model_copy(deep=True)

    def record_answer(self, user_id, session_id, answer):
        with self._lock_for(user_id):
            history = self._answers[user_id]
            history.insert(0, answer)
            del history[ANSWER_HISTORY_LIMIT:]

    def recent_answers(self, user_id, limit=10):
        return list(self._answers.get(user_id, [])[:limit])


class SupabaseProgressStore(ProgressStore):
    """Tables: game_sessions, user_progress, processed_sessions, answer_records.

    processed_sessions has session_id as primary key; inserting it with
    ignore_duplicates is the compare-and-swap that admits a session's
    counters exactly once.
    """

    def __init__(self, supabase_client):
        self.sb = supabase_client

    def _fail(self, op: str, exc: Exception):
        logger.error("[progress_store.%s] %s", op, exc, exc_info=True)
        raise PersistenceError(f"{op} failed: {exc}") from exc

    @staticmethod
    def _session_row(session: Session) -> dict:
        return {
            "id": session.id,
            "user_id": session.user_id,
            "kind": session.kind,
            "agent_name": session.agent_name,
            "state": session.model_dump(mode="json", exclude={"agent_level"}),
            "last_activity": session.last_activity.isoformat(),
        }

    def create_session(self, session):
        return self.save_session(session)

    def get_session(self, session_id):
        try:
            r = (
                self.sb.table("game_sessions")
                .select("*")
                .eq("id", session_id)
                .maybe_single()
                .execute()
            )
        except Exception as e:
            self._fail("get_session", e)
        data = getattr(r, "data", None)
        if not data:
            return None
        return Session.model_validate(data["state"])

    def save_session(self, session):
        try:
            self.sb.table("game_sessions").upsert(self._session_row(session), on_conflict="id").execute()
        except Exception as e:
            self._fail("save_session", e)
        return session

    def get_progress(self, user_id):
        try:
            r = (
                self.sb.table("user_progress")
                .select("*")
                .eq("user_id", user_id)
                .maybe_single()
                .execute()
            )
        except Exception as e:
            self._fail("get_progress", e)
        data = getattr(r, "data", None)
        if not data:
            return UserProgress(user_id=user_id)
        return UserProgress(
            user_id=user_id,
            total_score=int(data.get("total_score") or 0),
            total_questions=int(data.get("total_questions") or 0),
            correct_answers=int(data.get("correct_answers") or 0),
            completed_regions=list(data.get("completed_regions") or []),
            unlocked_regions=list(data.get("unlocked_regions") or []),
            games_played=int(data.get("games_played") or 0),
        )

    def _write_progress(self, progress: UserProgress) -> None:
        payload = {
            "user_id": progress.user_id,
            "total_score": progress.total_score,
            "total_questions": progress.total_questions,
            "correct_answers": progress.correct_answers,
            "completed_regions": progress.completed_regions,
            "unlocked_regions": progress.unlocked_regions,
            "games_played": progress.games_played,
            "agent_level": progress.agent_level,
        }
        self.sb.table("user_progress").upsert(payload, on_conflict="user_id").execute()

    def _claim_session(self, user_id: str, session_id: str) -> bool:
        r = (
            self.sb.table("processed_sessions")
            .upsert({"session_id": session_id, "user_id": user_id},
                    on_conflict="session_id", ignore_duplicates=True)
            .execute()
        )
        return bool(getattr(r, "data", None))

    def _release_session(self, session_id: str) -> None:
        try:
            self.sb.table("processed_sessions").delete().eq("session_id", session_id).execute()
        except Exception as e:
            logger.error("[progress_store] Could not release claim on %s: %s", session_id, e, exc_info=True)

    def merge_progress(self, user_id, session_id, delta):
        claimed = False
        try:
            claimed = self._claim_session(user_id, session_id)
            current = self.get_progress(user_id)
            if claimed:
                merged = merge_progress(current, session_id, delta)
            else:
                logger.info("[progress_store] Session %s already merged; regions only", session_id)
                merged = checkpoint_progress(current, delta.completed_regions, delta.unlocked_regions)
            self._write_progress(merged)
        except Exception as e:
            # The claim stands only once the counters are written
            if claimed:
                self._release_session(session_id)
            if isinstance(e, PersistenceError):
                raise
            self._fail("merge_progress", e)
        return merged

    def checkpoint(self, user_id, completed_regions, unlocked_regions):
        try:
            merged = checkpoint_progress(self.get_progress(user_id), completed_regions, unlocked_regions)
            self._write_progress(merged)
        except PersistenceError:
            raise
        except Exception as e:
            self._fail("checkpoint", e)
        return merged

    def record_answer(self, user_id, session_id, answer):
        payload = {
            "user_id": user_id,
            "session_id": session_id,
            **answer.model_dump(mode="json"),
        }
        try:
            self.sb.table("answer_records").insert(payload).execute()
        except Exception as e:
            self._fail("record_answer", e)

    def recent_answers(self, user_id, limit=10):
        try:
            r = (
                self.sb.table("answer_records")
                .select("*")
                .eq("user_id", user_id)
                .order("answered_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            self._fail("recent_answers", e)
        rows = getattr(r, "data", None) or []
        return [AnswerRecord.model_validate(row) for row in rows]


def get_progress_store(settings) -> ProgressStore:
    if (settings.progress_store or "memory").lower() != "supabase":
        return InMemoryProgressStore()

    if not settings.supabase_url or not settings.supabase_service_key:
        logger.warning("[progress_store] Supabase settings missing; using in-memory store")
        return InMemoryProgressStore()

    try:
        return SupabaseProgressStore(create_client(settings.supabase_url, settings.supabase_service_key))
    except Exception as e:
        logger.warning("[progress_store] Supabase store unavailable (%s); using in-memory store", e)
        return InMemoryProgressStore()
