from __future__ import annotations

import json

import httpx
import pytest

from deep_research.backends.embeddings import (
    RETRIEVAL_DOCUMENT,
    RETRIEVAL_QUERY,
    GeminiEmbeddings,
    backoff_delay,
    cosine_similarity,
)
from deep_research.cache import EmbeddingCache, cache_key


def test_cache_key_scheme_normalizes_whitespace():
    assert cache_key("  hello world \n", "RETRIEVAL_QUERY") == "RETRIEVAL_QUERY:hello world"


def test_cache_miss_is_not_an_error_and_hits_are_counted():
    cache = EmbeddingCache()
    assert cache.get("text", RETRIEVAL_QUERY) is None
    cache.put("text", RETRIEVAL_QUERY, [1.0])
    assert cache.get(" text ", RETRIEVAL_QUERY) == [1.0]
    assert cache.get("text", RETRIEVAL_DOCUMENT) is None
    assert (cache.hits, cache.misses) == (1, 2)


def test_cache_skips_empty_vectors():
    cache = EmbeddingCache()
    cache.put("text", RETRIEVAL_QUERY, [])
    assert len(cache) == 0


def test_cache_lru_bound_evicts_least_recently_used():
    cache = EmbeddingCache(max_entries=2)
    cache.put("a", "T", [1.0])
    cache.put("b", "T", [2.0])
    cache.get("a", "T")
    cache.put("c", "T", [3.0])

    assert "T:a" in cache
    assert "T:b" not in cache
    assert "T:c" in cache


def test_cosine_similarity_edge_cases():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([], [1.0]) == 0.0
    assert cosine_similarity([0, 0], [1, 1]) == 0.0
    assert cosine_similarity([1, 2, 3], [1, 2]) == 0.0


def test_backoff_delay_grows_exponentially_with_jitter():
    for attempt in range(3):
        delay = backoff_delay(attempt, base=2.0)
        assert 2.0 * 2 ** attempt <= delay <= 2.0 * 2 ** attempt + 1.0


class _Sleeps:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_embed_uses_cache_after_first_call():
    calls = []

    def handler(request):
        calls.append(json.loads(request.content))
        return httpx.Response(200, json={"embedding": {"values": [0.1, 0.2]}})

    embeddings = GeminiEmbeddings("k", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    assert await embeddings.embed("query", RETRIEVAL_QUERY) == [0.1, 0.2]
    assert await embeddings.embed("query ", RETRIEVAL_QUERY) == [0.1, 0.2]
    assert len(calls) == 1
    assert calls[0]["taskType"] == RETRIEVAL_QUERY


@pytest.mark.asyncio
async def test_embed_retries_rate_limit_then_gives_up_with_empty_vector():
    sleeps = _Sleeps()
    embeddings = GeminiEmbeddings(
        "k",
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(429))),
        sleep=sleeps,
    )

    assert await embeddings.embed("query") == []
    assert len(sleeps.delays) == GeminiEmbeddings.SINGLE_ATTEMPTS - 1


@pytest.mark.asyncio
async def test_embed_batch_chunks_by_fifty_and_keeps_alignment():
    sizes = []

    def handler(request):
        body = json.loads(request.content)
        sizes.append(len(body["requests"]))
        return httpx.Response(200, json={"embeddings": [
            {"values": [float(len(r["content"]["parts"][0]["text"]))]} for r in body["requests"]
        ]})

    cache = EmbeddingCache()
    cache.put("x", RETRIEVAL_DOCUMENT, [99.0])
    embeddings = GeminiEmbeddings("k", cache=cache, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    texts = ["x"] + ["t" * (i + 1) for i in range(120)]

    vectors = await embeddings.embed_batch(texts, RETRIEVAL_DOCUMENT)

    assert sorted(sizes) == [20, 50, 50]
    assert vectors[0] == [99.0]
    assert vectors[1] == [1.0]
    assert vectors[120] == [120.0]
    assert len(cache) == 121


@pytest.mark.asyncio
async def test_embed_batch_backs_off_on_rate_limit_and_recovers():
    responses = iter([httpx.Response(429), httpx.Response(503),
                      httpx.Response(200, json={"embeddings": [{"values": [1.0]}]})])
    sleeps = _Sleeps()
    embeddings = GeminiEmbeddings(
        "k",
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: next(responses))),
        sleep=sleeps,
    )

    assert await embeddings.embed_batch(["only"]) == [[1.0]]
    assert len(sleeps.delays) == 2
    assert sleeps.delays[1] > sleeps.delays[0] - 1.0


@pytest.mark.asyncio
async def test_embed_batch_exhausted_returns_empty_vectors():
    sleeps = _Sleeps()
    embeddings = GeminiEmbeddings(
        "k",
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(429))),
        sleep=sleeps,
    )

    assert await embeddings.embed_batch(["a", "b"]) == [[], []]
    assert len(sleeps.delays) == GeminiEmbeddings.BATCH_ATTEMPTS - 1
