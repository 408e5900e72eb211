from app.core.config import Settings, get_settings
from app.core.deps import get_llm_client


class AIService:
    """Thin wrapper over an OpenAI-shaped chat client.

    Blocking; callers that need a deadline run it in a worker thread.
    """

    def __init__(self, client=None, settings: Settings | None = None):
        settings = settings or get_settings()
        self.client = client if client is not None else get_llm_client(settings)
        self.model = settings.llm_model
        self.temperature = settings.llm_temperature
        self.max_tokens = settings.llm_max_tokens

    def generate_completion(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = True,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature if temperature is None else temperature,
            max_tokens=max_tokens or self.max_tokens,
            **kwargs,
        )

        return response.choices[0].message.content or ""
