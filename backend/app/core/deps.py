import logging
import os
from functools import lru_cache

from fastapi import Header, HTTPException, Request
from openai import OpenAI
from supabase import Client, create_client

from app.core.config import Settings, get_settings

_prompt_logger = logging.getLogger("atlas.llm_prompts")


@lru_cache
def get_supabase_client() -> Client:
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_service_key:
        raise RuntimeError("Supabase settings missing (SUPABASE_URL / SUPABASE_SERVICE_KEY)")
    return create_client(settings.supabase_url, settings.supabase_service_key)


# ── Gemini adapter: mimics the OpenAI client interface ──────────────────────
# The generation pipeline calls client.chat.completions.create(...); this
# adapter routes those calls to Gemini so the pipeline is provider-agnostic.

class _FakeMessage:
    def __init__(self, content: str):
        self.content = content


class _FakeChoice:
    def __init__(self, content: str):
        self.message = _FakeMessage(content)


class _FakeResponse:
    def __init__(self, text: str):
        self.choices = [_FakeChoice(text)]


class _FakeCompletions:
    def __init__(self, api_key: str, model: str, timeout: float):
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    def create(
        self,
        model=None,
        messages=None,
        temperature=0.7,
        max_tokens=None,
        **kwargs,
    ):
        from google import genai
        from google.genai import types

        system_parts = [
            m["content"] for m in (messages or []) if m.get("role") == "system"
        ]
        user_parts = [
            m["content"] for m in (messages or []) if m.get("role") != "system"
        ]

        system_instruction = "\n\n".join(system_parts) or None
        user_prompt = "\n\n".join(user_parts)

        if os.environ.get("DEBUG_LLM_PROMPTS", "").lower() in ("1", "true"):
            _prompt_logger.warning(
                "\n\n%s\n"
                "── SYSTEM ──────────────────────────────────────────────\n%s\n"
                "── USER ────────────────────────────────────────────────\n%s\n"
                "── CONFIG ──────────────────────────────────────────────\n"
                "  model=%s  temp=%s  max_tokens=%s\n"
                "%s",
                "=" * 60,
                system_instruction or "(none)",
                user_prompt,
                self._model,
                temperature,
                max_tokens or 2048,
                "=" * 60,
            )

        client = genai.Client(
            api_key=self._api_key,
            http_options=types.HttpOptions(timeout=int(self._timeout * 1000)),
        )

        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=temperature,
            max_output_tokens=max_tokens or 2048,
            response_mime_type="application/json",
            # Disable thinking; prevents preamble text before JSON output
            thinking_config=types.ThinkingConfig(thinking_budget=0),
        )
        response = client.models.generate_content(
            model=self._model,
            contents=user_prompt,
            config=config,
        )
        return _FakeResponse(response.text or "")


class _FakeChat:
    def __init__(self, completions: _FakeCompletions):
        self.completions = completions


class GeminiClientAdapter:
    def __init__(self, api_key: str, model: str = "gemini-2.5-flash", timeout: float = 10.0):
        self.chat = _FakeChat(_FakeCompletions(api_key, model, timeout))


def get_llm_client(settings: Settings | None = None):
    """Return the active LLM client based on llm_provider setting."""
    if settings is None:
        settings = get_settings()
    if settings.llm_provider == "gemini":
        model = settings.llm_model if settings.llm_model.startswith("gemini") else "gemini-2.5-flash"
        return GeminiClientAdapter(
            api_key=settings.gemini_api_key,
            model=model,
            timeout=settings.generation_timeout_seconds,
        )
    # Retries would multiply latency past the generation timeout; the
    # fallback chain handles failures instead.
    return OpenAI(
        api_key=settings.openai_api_key or "missing-key",
        timeout=settings.generation_timeout_seconds,
        max_retries=0,
    )


# ── Request-scoped dependencies ──────────────────────────────────────────────

def get_engine(request: Request):
    """The AdaptiveEngine built at startup (see app.main lifespan)."""
    return request.app.state.engine


def get_optional_user_id(authorization: str = Header(None)) -> str | None:
    """Resolve the caller's user id from a Supabase bearer token, if present.

    No header → anonymous (ephemeral play). A header that fails
    verification is rejected rather than silently downgraded.
    """
    if not authorization:
        return None
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")

    token = authorization.replace("Bearer ", "")
    try:
        user_response = get_supabase_client().auth.get_user(token)
        if not user_response or not user_response.user:
            raise HTTPException(status_code=401, detail="Invalid token")
        return user_response.user.id
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=401, detail=f"Authentication failed: {str(e)}")
