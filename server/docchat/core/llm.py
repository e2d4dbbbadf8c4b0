from functools import lru_cache
from typing import Any, Protocol

from openai import OpenAI

from docchat.config import settings


class ChatCompletionClient(Protocol):
    def invoke(self, messages: list[dict[str, str]]) -> Any: ...


@lru_cache(maxsize=1)
def _client() -> OpenAI:
    if not settings.OPENAI_API_KEY:
        raise ValueError("OPENAI_API_KEY is not configured")
    return OpenAI(api_key=settings.OPENAI_API_KEY, timeout=float(settings.LLM_TIMEOUT_SECONDS))


class OpenAIChatClient:
    def __init__(self, model: str | None = None) -> None:
        self.model = model or settings.LLM_MODEL

    def invoke(self, messages: list[dict[str, str]]) -> Any:
        return _client().chat.completions.create(
            model=self.model,
            max_tokens=settings.LLM_MAX_OUTPUT_TOKENS,
            messages=messages,
        )


def completion_text(response: Any) -> str | None:
    choices = getattr(response, "choices", None)
    if not choices:
        return None
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    return content if isinstance(content, str) else None
