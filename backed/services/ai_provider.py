"""AI Provider abstraction layer.

Chat completions go through Google Gemini behind a small interface. An
unconfigured provider (no API key) is an expected state: callers receive
``None`` from :func:`get_configured_provider` and use their deterministic
fallbacks.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from backed.core.config import settings

# Substrings that mark a credential / permission problem. Such errors are
# never retried.
NON_RETRYABLE_MARKERS = ("api key", "invalid", "permission")


@dataclass
class ChatMessage:
    """A single message in a conversation."""

    role: str  # 'system', 'user', 'assistant'
    content: str


@dataclass
class ChatResponse:
    """Response from an AI provider."""

    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model: str


class AIProviderError(Exception):
    """Provider returned an unusable response."""

    pass


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> ChatResponse:
        """Send a chat completion request."""
        pass

    async def complete(self, prompt: str, *, temperature: float = 0.7, max_tokens: int = 2000) -> str:
        """Single-prompt completion returning the response text."""
        response = await self.chat(
            [ChatMessage(role="user", content=prompt)],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.content


# =============================================================================
# Gemini
# =============================================================================

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_DEFAULT_MODEL = "gemini-2.0-flash"


def build_gemini_request(
    messages: list[ChatMessage], temperature: float, max_tokens: int
) -> dict[str, Any]:
    """Map a conversation onto a ``generateContent`` body.

    Gemini has no system role: the last system message becomes the
    ``systemInstruction`` and assistant turns are sent as ``model``.
    """
    system_text = None
    turns = []
    for message in messages:
        if message.role == "system":
            system_text = message.content
            continue
        speaker = "model" if message.role == "assistant" else "user"
        turns.append({"role": speaker, "parts": [{"text": message.content}]})

    body: dict[str, Any] = {
        "contents": turns,
        "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
    }
    if system_text:
        body["systemInstruction"] = {"parts": [{"text": system_text}]}
    return body


def parse_gemini_reply(data: dict[str, Any], model: str) -> ChatResponse:
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        raise AIProviderError(f"Unexpected Gemini response shape: {exc}") from exc

    usage = data.get("usageMetadata") or {}
    prompt_tokens = usage.get("promptTokenCount", 0)
    completion_tokens = usage.get("candidatesTokenCount", 0)
    return ChatResponse(
        content=text,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        model=model,
    )


class GeminiProvider(AIProvider):
    """Google Gemini ``generateContent`` over httpx."""

    def __init__(
        self,
        api_key: str,
        default_model: str = GEMINI_DEFAULT_MODEL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.timeout = timeout
        self.transport = transport

    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> ChatResponse:
        model = model or self.default_model
        body = build_gemini_request(messages, temperature, max_tokens)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                f"{GEMINI_BASE_URL}/models/{model}:generateContent",
                params={"key": self.api_key},
                json=body,
            )
            response.raise_for_status()

        return parse_gemini_reply(response.json(), model)


def get_configured_provider() -> AIProvider | None:
    """Get the platform's AI provider.

    Returns None if no API key is configured.
    """
    if not settings.ai_configured:
        return None
    return GeminiProvider(
        settings.AI_API_KEY.strip(),
        default_model=settings.AI_MODEL or GEMINI_DEFAULT_MODEL,
        timeout=settings.AI_TIMEOUT_SECONDS,
    )


def is_retryable_ai_error(exc: Exception) -> bool:
    """Auth and permission failures are permanent; everything else may be transient."""
    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code in (401, 403):
            return False
    message = str(exc).lower()
    return not any(marker in message for marker in NON_RETRYABLE_MARKERS)
