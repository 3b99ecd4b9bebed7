"""Chat completion providers (OpenAI, Gemini) and their error classifier."""

from abc import ABC, abstractmethod
from enum import StrEnum

import httpx
import openai
import structlog
from openai import AsyncOpenAI

from speaksmart.errors import GenerationFormatError, QuotaOrRateLimitError

logger = structlog.get_logger()

ChatMessage = dict[str, str]  # {"role": "system"|"user"|"assistant", "content": "..."}

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
GEMINI_STABLE_MODEL = "gemini-1.5-flash"
GEMINI_STABLE_API_VERSION = "v1"


class ProviderErrorKind(StrEnum):
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


def classify_provider_error(exc: BaseException) -> ProviderErrorKind:
    """Decide whether a provider error should hand over to the next provider.

    Only rate-limit and quota signals (HTTP 429, ``insufficient_quota``,
    ``RESOURCE_EXHAUSTED``) count as rate limited.
    """
    if isinstance(exc, QuotaOrRateLimitError | openai.RateLimitError):
        return ProviderErrorKind.RATE_LIMITED
    if getattr(exc, "code", None) == "insufficient_quota":
        return ProviderErrorKind.RATE_LIMITED
    if isinstance(exc, openai.APIStatusError) and exc.status_code == 429:
        return ProviderErrorKind.RATE_LIMITED
    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code == 429:
            return ProviderErrorKind.RATE_LIMITED
        if "RESOURCE_EXHAUSTED" in exc.response.text:
            return ProviderErrorKind.RATE_LIMITED
    return ProviderErrorKind.FAILED


class ChatProvider(ABC):
    name: str = "provider"

    @abstractmethod
    async def complete(self, messages: list[ChatMessage], temperature: float = 0.7) -> str:
        """Return the assistant reply for ``messages``."""

    async def aclose(self) -> None:
        return None


class OpenAIChatProvider(ChatProvider):
    """OpenAI chat completions.

    Args:
        api_key: OpenAI API key.
        model: Chat model name.
        client: Pre-built client, used by tests.
    """

    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", client: AsyncOpenAI | None = None):
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.model = model

    async def complete(self, messages: list[ChatMessage], temperature: float = 0.7) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
        )
        content = (response.choices[0].message.content or "").strip()
        logger.debug("openai_completion", model=self.model, chars=len(content))
        return content

    async def aclose(self) -> None:
        await self.client.close()


class GeminiChatProvider(ChatProvider):
    """Gemini ``generateContent`` over REST.

    Gemini has no system role: the system prompt is sent as the first user
    turn and assistant turns use the ``model`` role. A 404 (unknown model or
    API version) is retried once against the stable model.
    """

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = GEMINI_STABLE_MODEL,
        api_version: str = GEMINI_STABLE_API_VERSION,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_version = api_version
        self._client = client or httpx.AsyncClient(timeout=30)

    @staticmethod
    def to_contents(messages: list[ChatMessage]) -> list[dict]:
        contents = []
        for message in messages:
            role = "model" if message["role"] == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": message["content"]}]})
        return contents

    def _endpoint(self, model: str, api_version: str) -> str:
        return f"{GEMINI_BASE_URL}/{api_version}/models/{model}:generateContent"

    async def _post(self, model: str, api_version: str, payload: dict) -> httpx.Response:
        return await self._client.post(
            self._endpoint(model, api_version),
            params={"key": self.api_key},
            json=payload,
        )

    async def complete(self, messages: list[ChatMessage], temperature: float = 0.7) -> str:
        payload = {
            "contents": self.to_contents(messages),
            "generationConfig": {
                "temperature": temperature,
                "topK": 40,
                "topP": 0.95,
                "maxOutputTokens": 1024,
            },
        }
        response = await self._post(self.model, self.api_version, payload)
        if response.status_code == 404:
            logger.warning(
                "gemini_model_not_found",
                model=self.model,
                api_version=self.api_version,
                retry_model=GEMINI_STABLE_MODEL,
            )
            response = await self._post(GEMINI_STABLE_MODEL, GEMINI_STABLE_API_VERSION, payload)
        response.raise_for_status()

        data = response.json()
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error("gemini_invalid_response", body=data)
            raise GenerationFormatError("Invalid response from Gemini") from e

    async def aclose(self) -> None:
        await self._client.aclose()
