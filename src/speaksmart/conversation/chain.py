"""Ordered provider fallback."""

import structlog

from speaksmart.conversation.providers import (
    ChatMessage,
    ChatProvider,
    ProviderErrorKind,
    classify_provider_error,
)
from speaksmart.errors import GenerationFailed, QuotaOrRateLimitError

logger = structlog.get_logger()


class ProviderChain:
    """Tries providers in order.

    A provider is skipped only when it signals rate limiting or quota
    exhaustion; any other failure is raised as ``GenerationFailed``. When
    every provider is rate limited, ``QuotaOrRateLimitError`` is raised.
    """

    def __init__(self, providers: list[ChatProvider]):
        self.providers = providers

    async def complete(self, messages: list[ChatMessage], temperature: float = 0.7) -> str:
        if not self.providers:
            raise GenerationFailed("No AI provider is configured")

        last_error: BaseException | None = None
        for provider in self.providers:
            try:
                return await provider.complete(messages, temperature=temperature)
            except GenerationFailed:
                raise
            except Exception as e:
                if classify_provider_error(e) is ProviderErrorKind.RATE_LIMITED:
                    logger.warning("provider_rate_limited", provider=provider.name, error=str(e))
                    last_error = e
                    continue
                logger.exception("provider_failed", provider=provider.name)
                raise GenerationFailed(f"{provider.name} failed: {e}") from e

        raise QuotaOrRateLimitError("All AI providers are rate limited") from last_error

    async def aclose(self) -> None:
        for provider in self.providers:
            await provider.aclose()
