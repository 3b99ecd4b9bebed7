"""Tests for chat providers, error classification and the fallback chain."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from speaksmart.conversation.chain import ProviderChain
from speaksmart.conversation.providers import (
    GEMINI_STABLE_MODEL,
    GeminiChatProvider,
    OpenAIChatProvider,
    ProviderErrorKind,
    classify_provider_error,
)
from speaksmart.errors import GenerationFailed, GenerationFormatError, QuotaOrRateLimitError

MESSAGES = [
    {"role": "system", "content": "You are a tutor."},
    {"role": "user", "content": "Hello"},
    {"role": "assistant", "content": "Hi!"},
    {"role": "user", "content": "How are you?"},
]


def _response(status, body=None, text=None):
    request = httpx.Request("POST", "https://example.test")
    if body is not None:
        return httpx.Response(status, json=body, request=request)
    return httpx.Response(status, text=text or "", request=request)


def _gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _provider(name, reply=None, error=None):
    provider = MagicMock()
    provider.name = name
    provider.complete = AsyncMock(return_value=reply, side_effect=error)
    provider.aclose = AsyncMock()
    return provider


class TestClassifyProviderError:
    def test_openai_rate_limit(self):
        exc = openai.RateLimitError("slow down", response=_response(429), body=None)
        assert classify_provider_error(exc) is ProviderErrorKind.RATE_LIMITED

    def test_insufficient_quota_code(self):
        exc = RuntimeError("billing")
        exc.code = "insufficient_quota"
        assert classify_provider_error(exc) is ProviderErrorKind.RATE_LIMITED

    def test_http_429(self):
        response = _response(429)
        exc = httpx.HTTPStatusError("429", request=response.request, response=response)
        assert classify_provider_error(exc) is ProviderErrorKind.RATE_LIMITED

    def test_resource_exhausted(self):
        response = _response(400, body={"error": {"status": "RESOURCE_EXHAUSTED"}})
        exc = httpx.HTTPStatusError("400", request=response.request, response=response)
        assert classify_provider_error(exc) is ProviderErrorKind.RATE_LIMITED

    def test_quota_error(self):
        assert classify_provider_error(QuotaOrRateLimitError()) is ProviderErrorKind.RATE_LIMITED

    def test_other_errors_fail(self):
        response = _response(500)
        exc = httpx.HTTPStatusError("500", request=response.request, response=response)
        assert classify_provider_error(exc) is ProviderErrorKind.FAILED
        assert classify_provider_error(ValueError("nope")) is ProviderErrorKind.FAILED


class TestOpenAIChatProvider:
    async def test_complete(self):
        client = MagicMock()
        choice = MagicMock()
        choice.message.content = "  Great question!  "
        client.chat.completions.create = AsyncMock(return_value=MagicMock(choices=[choice]))
        provider = OpenAIChatProvider("key", model="gpt-4o-mini", client=client)

        assert await provider.complete(MESSAGES, temperature=0.7) == "Great question!"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == MESSAGES
        assert kwargs["temperature"] == 0.7


class TestGeminiChatProvider:
    def test_roles(self):
        contents = GeminiChatProvider.to_contents(MESSAGES)
        assert [c["role"] for c in contents] == ["user", "user", "model", "user"]
        assert contents[0]["parts"] == [{"text": "You are a tutor."}]

    async def test_complete(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=_gemini_body("Hello there"))

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = GeminiChatProvider("key", model="gemini-pro", api_version="v1beta", client=client)

        assert await provider.complete(MESSAGES, temperature=0.8) == "Hello there"
        assert seen[0].url.path == "/v1beta/models/gemini-pro:generateContent"
        assert seen[0].url.params["key"] == "key"
        payload = json.loads(seen[0].content)
        assert payload["generationConfig"] == {
            "temperature": 0.8, "topK": 40, "topP": 0.95, "maxOutputTokens": 1024,
        }

    async def test_retries_stable_model_on_404(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            if len(paths) == 1:
                return httpx.Response(404, json={"error": {"message": "not found"}})
            return httpx.Response(200, json=_gemini_body("Recovered"))

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = GeminiChatProvider("key", model="gemini-x", api_version="v1beta", client=client)

        assert await provider.complete(MESSAGES) == "Recovered"
        assert paths == [
            "/v1beta/models/gemini-x:generateContent",
            f"/v1/models/{GEMINI_STABLE_MODEL}:generateContent",
        ]

    async def test_http_error_raises(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda request: httpx.Response(429, json={"error": {"status": "RESOURCE_EXHAUSTED"}})
        ))
        provider = GeminiChatProvider("key", client=client)
        with pytest.raises(httpx.HTTPStatusError) as excinfo:
            await provider.complete(MESSAGES)
        assert classify_provider_error(excinfo.value) is ProviderErrorKind.RATE_LIMITED

    async def test_bad_shape(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"candidates": []})
        ))
        provider = GeminiChatProvider("key", client=client)
        with pytest.raises(GenerationFormatError):
            await provider.complete(MESSAGES)


class TestProviderChain:
    async def test_first_provider_answers(self):
        first, second = _provider("openai", reply="one"), _provider("gemini", reply="two")
        assert await ProviderChain([first, second]).complete(MESSAGES) == "one"
        second.complete.assert_not_called()

    async def test_falls_back_on_rate_limit(self):
        first = _provider("openai", error=QuotaOrRateLimitError("quota"))
        second = _provider("gemini", reply="two")
        assert await ProviderChain([first, second]).complete(MESSAGES, temperature=0.8) == "two"
        assert second.complete.call_args.kwargs["temperature"] == 0.8

    async def test_other_failure_does_not_fall_back(self):
        first = _provider("openai", error=ValueError("bad request"))
        second = _provider("gemini", reply="two")
        with pytest.raises(GenerationFailed):
            await ProviderChain([first, second]).complete(MESSAGES)
        second.complete.assert_not_called()

    async def test_all_rate_limited(self):
        chain = ProviderChain([
            _provider("openai", error=QuotaOrRateLimitError("quota")),
            _provider("gemini", error=QuotaOrRateLimitError("quota")),
        ])
        with pytest.raises(QuotaOrRateLimitError):
            await chain.complete(MESSAGES)

    async def test_format_error_propagates(self):
        chain = ProviderChain([_provider("gemini", error=GenerationFormatError("shape"))])
        with pytest.raises(GenerationFormatError):
            await chain.complete(MESSAGES)

    async def test_empty_chain(self):
        with pytest.raises(GenerationFailed):
            await ProviderChain([]).complete(MESSAGES)

    async def test_aclose(self):
        first, second = _provider("openai"), _provider("gemini")
        await ProviderChain([first, second]).aclose()
        first.aclose.assert_awaited_once()
        second.aclose.assert_awaited_once()
