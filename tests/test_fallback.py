from __future__ import annotations

import pytest

from deep_research.errors import (
    NoProviderConfigured,
    ProviderHTTPError,
    ProviderResponseError,
    ProviderTimeout,
)
from deep_research.fallback import ProviderFallbackClient, parse_json_content

from fakes import FakeProvider


def test_parse_json_content_strips_markdown_fences():
    assert parse_json_content('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_content('  {"b": [1, 2]}  ') == {"b": [1, 2]}


def test_parse_json_content_raises_classified_error():
    with pytest.raises(ProviderResponseError):
        parse_json_content("not json at all")


@pytest.mark.asyncio
async def test_primary_answer_is_used_and_secondary_untouched():
    primary = FakeProvider("gemini", reply={"ok": True})
    secondary = FakeProvider("openai", reply={"ok": False})
    client = ProviderFallbackClient(primary, secondary)

    assert await client.call("prompt", timeout=1) == {"ok": True}
    assert secondary.prompts == []


@pytest.mark.asyncio
async def test_primary_error_switches_to_secondary_with_same_prompt():
    primary = FakeProvider("gemini", error=ProviderHTTPError(500))
    secondary = FakeProvider("openai", reply={"notes": []})
    client = ProviderFallbackClient(primary, secondary)

    assert await client.call("the prompt", timeout=1) == {"notes": []}
    assert primary.prompts == ["the prompt"]
    assert secondary.prompts == ["the prompt"]


@pytest.mark.asyncio
async def test_primary_timeout_switches_to_secondary():
    primary = FakeProvider("gemini", reply={"x": 1}, delay=1.0)
    secondary = FakeProvider("openai", reply={"x": 2})
    client = ProviderFallbackClient(primary, secondary)

    assert await client.call("prompt", timeout=0.05) == {"x": 2}


@pytest.mark.asyncio
async def test_unparsable_primary_reply_switches_to_secondary():
    primary = FakeProvider("gemini", reply="<html>oops</html>")
    secondary = FakeProvider("openai", reply={"x": 2})
    client = ProviderFallbackClient(primary, secondary)

    assert await client.call("prompt", timeout=1) == {"x": 2}


@pytest.mark.asyncio
async def test_both_failing_raises_last_classified_error():
    primary = FakeProvider("gemini", error=ProviderHTTPError(503))
    secondary = FakeProvider("openai", reply={}, delay=1.0)
    client = ProviderFallbackClient(primary, secondary)

    with pytest.raises(ProviderTimeout):
        await client.call("prompt", timeout=0.05)


@pytest.mark.asyncio
async def test_primary_only_failure_surfaces_status():
    client = ProviderFallbackClient(FakeProvider("gemini", error=ProviderHTTPError(429)))

    with pytest.raises(ProviderHTTPError) as exc_info:
        await client.call("prompt", timeout=1)
    assert exc_info.value.status == 429


@pytest.mark.asyncio
async def test_no_provider_configured():
    client = ProviderFallbackClient()
    assert not client.configured
    with pytest.raises(NoProviderConfigured):
        await client.call("prompt", timeout=1)
