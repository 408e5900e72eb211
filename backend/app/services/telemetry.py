import time
import json
import logging
import asyncio
from typing import Callable, Optional
from functools import wraps

from app.models.question import GenerationResult

logger = logging.getLogger("atlas.telemetry")


def emit_event(event: str, *, route: str, version: str, session_id: Optional[str] = None,
               region: Optional[str] = None, error_type: Optional[str] = None,
               latency_ms: Optional[int] = None, ok: Optional[bool] = None):
    payload = {
        "event": event,
        "route": route,
        "version": version,
        "session_id": session_id,
        "region": region,
        "error_type": error_type,
        "latency_ms": latency_ms,
        "ok": ok,
        "ts": time.time(),
    }
    # log as single-line JSON for easy parsing in prod
    logger.info("telemetry=%s", json.dumps(payload, separators=(",", ":")))


def _call_context(kwargs: dict) -> dict:
    """session_id and region from a route's path params or request body."""
    body = kwargs.get("request")
    session_id = kwargs.get("session_id") or getattr(body, "session_id", None)
    region = getattr(body, "region", None) or getattr(body, "starting_region", None)
    return {
        "session_id": session_id if isinstance(session_id, str) else None,
        "region": region if isinstance(region, str) else None,
    }


def instrument(route: str, version: str):
    def deco(fn):
        if asyncio.iscoroutinefunction(fn):
            @wraps(fn)
            async def wrapped_async(*args, **kwargs):
                t0 = time.time()
                ok = True
                err = None
                try:
                    out = await fn(*args, **kwargs)
                    return out
                except Exception as e:
                    ok = False
                    err = str(e.__class__.__name__)
                    raise
                finally:
                    dt = int((time.time() - t0) * 1000)
                    emit_event("api_call", route=route, version=version, latency_ms=dt, ok=ok,
                               **_call_context(kwargs),
                               error_type=err)
            return wrapped_async
        else:
            @wraps(fn)
            def wrapped(*args, **kwargs):
                t0 = time.time()
                ok = True
                err = None
                try:
                    out = fn(*args, **kwargs)
                    return out
                except Exception as e:
                    ok = False
                    err = str(e.__class__.__name__)
                    raise
                finally:
                    dt = int((time.time() - t0) * 1000)
                    emit_event("api_call", route=route, version=version, latency_ms=dt, ok=ok,
                               **_call_context(kwargs),
                               error_type=err)
            return wrapped
    return deco


class GenerationRecorder:
    """
    Records one GenerationResult per pipeline run.

    Best-effort: never raises. The JSON log line is written inline; the
    optional Supabase insert is handed to the default executor and not
    awaited, so a slow or failing table never delays the question.
    """

    def __init__(self, persist: bool = False, supabase_factory: Optional[Callable] = None):
        self.persist = persist
        self._supabase_factory = supabase_factory

    def record(self, result: GenerationResult) -> None:
        try:
            payload = result.model_dump(mode="json")
            logger.info("generation=%s", json.dumps(payload, separators=(",", ":")))
            if not self.persist:
                return
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self._persist(payload)
                return
            loop.run_in_executor(None, self._persist, payload)
        except Exception as e:
            logger.error(f"[telemetry.record] {e}", exc_info=True)

    def _persist(self, payload: dict) -> None:
        try:
            if self._supabase_factory is None:
                from app.core.deps import get_supabase_client
                sb = get_supabase_client()
            else:
                sb = self._supabase_factory()
            sb.table("generation_events").insert(payload).execute()
        except Exception as e:
            logger.error(f"[telemetry._persist] {e}", exc_info=True)
