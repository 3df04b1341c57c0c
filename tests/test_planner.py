from __future__ import annotations

import pytest

from deep_research.errors import ProviderHTTPError
from deep_research.fallback import ProviderFallbackClient
from deep_research.models import StructuredKeywords
from deep_research.planner import QueryPlanner, fallback_keywords, repair_keywords

from fakes import FakeProvider


@pytest.mark.asyncio
async def test_plan_without_model_uses_deterministic_fallback():
    planner = QueryPlanner(llm=None)

    keywords = await planner.plan(["climate change"], ["effect on coral reefs"])

    assert keywords.primary == "climate change"
    assert keywords.combinations == ["climate change"]
    assert keywords.secondary == ["effect on coral reefs"]


def test_fallback_uses_questions_when_no_topics():
    keywords = fallback_keywords([], ["q1", "q2", "q3", "q4", "q5"])

    assert keywords.primary == "q1"
    assert keywords.secondary == ["q2", "q3", "q4"]
    assert keywords.combinations == ["q1", "q2", "q3", "q4", "q5"]


def test_structured_keywords_synthesizes_single_combination():
    keywords = StructuredKeywords(primary="graphene", secondary=["a", "b", "c", "d"], combinations=[])

    assert keywords.combinations == ["graphene"]
    assert keywords.secondary == ["a", "b", "c"]


def test_repair_fills_bad_fields_individually():
    fallback = fallback_keywords(["world war 1"], ["food supply"])
    data = {"primary_keyword": "World War 1", "secondary_keywords": "food", "query_combinations": None}

    keywords = repair_keywords(data, fallback)

    assert keywords.primary == "World War 1"
    assert keywords.secondary == fallback.secondary
    assert keywords.combinations == fallback.combinations


def test_repair_flattens_nested_combinations_one_level():
    fallback = fallback_keywords(["x"], [])
    data = {
        "primary_keyword": "CRISPR",
        "secondary_keywords": ["editing", 7, ""],
        "query_combinations": [["CRISPR AND editing", "CRISPR"], "CRISPR AND plants", 3],
    }

    keywords = repair_keywords(data, fallback)

    assert keywords.secondary == ["editing"]
    assert keywords.combinations == ["CRISPR AND editing", "CRISPR", "CRISPR AND plants"]


def test_repair_rejects_non_object_reply():
    fallback = fallback_keywords(["x"], [])
    assert repair_keywords(["not", "an", "object"], fallback) == fallback


@pytest.mark.asyncio
async def test_plan_uses_model_reply():
    reply = {
        "primary_keyword": "coral reefs",
        "secondary_keywords": ["bleaching", "warming"],
        "query_combinations": ["coral reefs AND bleaching AND warming", "coral reefs"],
    }
    provider = FakeProvider(reply=reply)
    planner = QueryPlanner(ProviderFallbackClient(provider))

    keywords = await planner.plan(["coral reefs"], ["how does warming cause bleaching?"])

    assert keywords.primary == "coral reefs"
    assert keywords.combinations[0] == "coral reefs AND bleaching AND warming"
    assert '"coral reefs"' in provider.prompts[0]


@pytest.mark.asyncio
async def test_plan_falls_back_when_all_providers_fail():
    client = ProviderFallbackClient(
        FakeProvider("gemini", error=ProviderHTTPError(500)),
        FakeProvider("openai", error=ProviderHTTPError(401)),
    )
    planner = QueryPlanner(client)

    keywords = await planner.plan(["climate change"], ["effect on coral reefs"])

    assert keywords == fallback_keywords(["climate change"], ["effect on coral reefs"])
