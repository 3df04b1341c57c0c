from __future__ import annotations

import json

import httpx
import pytest

from deep_research.backends.llm import GeminiProvider, OpenAIProvider
from deep_research.errors import ProviderHTTPError, ProviderResponseError, ProviderTimeout


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_gemini_generate_sends_json_mode_and_reads_candidate_text():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["x-goog-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "candidates": [{"content": {"parts": [{"text": '{"a": '}, {"text": "1}"}]}}]
        })

    provider = GeminiProvider("k", "gemini-2.0-flash", client=_client(handler))
    response = await provider.generate("hello", schema_hint={"a": 0})

    assert response.content == '{"a": 1}'
    assert response.provider == "gemini"
    assert seen["url"].endswith("/models/gemini-2.0-flash:generateContent")
    assert seen["key"] == "k"
    assert seen["body"]["generationConfig"]["responseMimeType"] == "application/json"
    assert '"a": 0' in seen["body"]["systemInstruction"]["parts"][0]["text"]


@pytest.mark.asyncio
async def test_gemini_http_error_is_classified():
    provider = GeminiProvider("k", "m", client=_client(lambda r: httpx.Response(503, text="overloaded")))

    with pytest.raises(ProviderHTTPError) as exc_info:
        await provider.generate("hello")
    assert exc_info.value.status == 503


@pytest.mark.asyncio
async def test_gemini_without_candidates_is_a_response_error():
    provider = GeminiProvider("k", "m", client=_client(lambda r: httpx.Response(200, json={"candidates": []})))

    with pytest.raises(ProviderResponseError):
        await provider.generate("hello")


@pytest.mark.asyncio
async def test_gemini_timeout_is_classified():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    provider = GeminiProvider("k", "m", client=_client(handler))
    with pytest.raises(ProviderTimeout):
        await provider.generate("hello")


@pytest.mark.asyncio
async def test_gemini_grounded_returns_web_chunks():
    payload = {
        "candidates": [{
            "content": {"parts": [{"text": "some text"}]},
            "groundingMetadata": {"groundingChunks": [
                {"web": {"uri": "https://arxiv.org/pdf/1.pdf", "title": "One"}},
                {"retrievedContext": {}},
            ]},
        }]
    }
    provider = GeminiProvider("k", "m", client=_client(lambda r: httpx.Response(200, json=payload)))

    response = await provider.generate_grounded("find papers")

    assert response.grounding == [{"uri": "https://arxiv.org/pdf/1.pdf", "title": "One"}]
    assert response.content == "some text"


@pytest.mark.asyncio
async def test_openai_generate_uses_json_object_format():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"ok": true}'}}]})

    provider = OpenAIProvider("sk-test", "gpt-4o-mini", client=_client(handler))
    response = await provider.generate("hello")

    assert response.content == '{"ok": true}'
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert seen["body"]["model"] == "gpt-4o-mini"


def test_provider_requires_api_key():
    with pytest.raises(ValueError):
        OpenAIProvider("", "gpt-4o-mini")
