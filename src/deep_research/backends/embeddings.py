"""
Gemini embedding client.

Two calls:
- embed: one text, via /embedContent
- embed_batch: many texts, via /batchEmbedContents in chunks of 50 with up to
  3 chunks in flight

Both consult the EmbeddingCache first and back off exponentially (2s base,
jittered) when the API signals rate limiting. A failed embedding comes back as
an empty list, never as an exception.
"""

import asyncio
import logging
import math
import random
from typing import List, Optional, Sequence

import httpx

from deep_research.cache import EmbeddingCache
from deep_research.cancel import CancelToken
from deep_research.pool import run_pool

logger = logging.getLogger(__name__)

RETRIEVAL_QUERY = "RETRIEVAL_QUERY"
RETRIEVAL_DOCUMENT = "RETRIEVAL_DOCUMENT"

RATE_LIMIT_STATUSES = (429, 503)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 for empty, mismatched or zero-length vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    mag_a = math.sqrt(sum(x * x for x in a))
    mag_b = math.sqrt(sum(y * y for y in b))
    if mag_a == 0 or mag_b == 0:
        return 0.0
    return dot / (mag_a * mag_b)


def backoff_delay(attempt: int, base: float = 2.0) -> float:
    """base * 2^attempt seconds plus up to one second of jitter."""
    return base * (2 ** attempt) + random.random()


class RateLimited(Exception):
    pass


class GeminiEmbeddings:
    """Embedding service backed by gemini-embedding-001."""

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
    BATCH_SIZE = 50
    BATCH_CONCURRENCY = 3
    SINGLE_ATTEMPTS = 3
    BATCH_ATTEMPTS = 4

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-embedding-001",
        cache: Optional[EmbeddingCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        base_delay: float = 2.0,
        sleep=asyncio.sleep,
    ):
        self.api_key = api_key
        self.model = model
        self.cache = cache if cache is not None else EmbeddingCache()
        self.client = client or httpx.AsyncClient(timeout=60.0)
        self.base_delay = base_delay
        self._sleep = sleep

    def _headers(self) -> dict:
        return {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

    async def embed(self, text: str, task_type: str = RETRIEVAL_DOCUMENT) -> List[float]:
        cached = self.cache.get(text, task_type)
        if cached is not None:
            return cached

        url = f"{self.BASE_URL}/{self.model}:embedContent"
        payload = {"content": {"parts": [{"text": text}]}, "taskType": task_type}

        for attempt in range(self.SINGLE_ATTEMPTS):
            try:
                r = await self.client.post(url, json=payload, headers=self._headers())
                if r.status_code in RATE_LIMIT_STATUSES:
                    raise RateLimited(r.status_code)
                r.raise_for_status()
                vector = (r.json().get("embedding") or {}).get("values") or []
                self.cache.put(text, task_type, vector)
                return vector
            except RateLimited:
                if attempt < self.SINGLE_ATTEMPTS - 1:
                    delay = backoff_delay(attempt, self.base_delay)
                    logger.info(f"Embedding rate limited, retrying in {delay:.1f}s")
                    await self._sleep(delay)
                    continue
                logger.warning("Embedding rate limited, giving up")
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Embedding failed: {e}")
                break
        return []

    async def embed_batch(
        self,
        texts: List[str],
        task_type: str = RETRIEVAL_DOCUMENT,
        cancel: Optional[CancelToken] = None,
    ) -> List[List[float]]:
        """Embed many texts; the result is index-aligned with `texts`."""
        results: List[List[float]] = [[] for _ in texts]
        uncached: List[int] = []
        for i, text in enumerate(texts):
            cached = self.cache.get(text, task_type)
            if cached is not None:
                results[i] = cached
            else:
                uncached.append(i)

        if not uncached:
            return results

        chunks = [uncached[i:i + self.BATCH_SIZE] for i in range(0, len(uncached), self.BATCH_SIZE)]
        logger.info(f"Embedding {len(uncached)} texts in {len(chunks)} batches ({len(texts) - len(uncached)} cached)")

        async def embed_chunk(indices: List[int]) -> None:
            vectors = await self._embed_chunk([texts[i] for i in indices], task_type)
            for i, vector in zip(indices, vectors):
                self.cache.put(texts[i], task_type, vector)
                results[i] = vector

        await run_pool(chunks, self.BATCH_CONCURRENCY, embed_chunk, cancel=cancel, label="embed_batch")
        return results

    async def _embed_chunk(self, texts: List[str], task_type: str) -> List[List[float]]:
        url = f"{self.BASE_URL}/{self.model}:batchEmbedContents"
        payload = {
            "requests": [
                {"model": f"models/{self.model}", "content": {"parts": [{"text": t}]}, "taskType": task_type}
                for t in texts
            ]
        }

        for attempt in range(self.BATCH_ATTEMPTS):
            try:
                r = await self.client.post(url, json=payload, headers=self._headers())
                if r.status_code in RATE_LIMIT_STATUSES:
                    raise RateLimited(r.status_code)
                r.raise_for_status()
                embeddings = r.json().get("embeddings") or []
                return [(e or {}).get("values") or [] for e in embeddings]
            except (RateLimited, httpx.HTTPError, ValueError) as e:
                if attempt < self.BATCH_ATTEMPTS - 1:
                    delay = backoff_delay(attempt, self.base_delay)
                    logger.info(f"Batch embedding failed ({e!r}), retry {attempt + 1} in {delay:.1f}s")
                    await self._sleep(delay)
                else:
                    logger.warning(f"Batch embedding of {len(texts)} texts failed after {self.BATCH_ATTEMPTS} attempts")
        return [[] for _ in texts]

    async def close(self):
        await self.client.aclose()
