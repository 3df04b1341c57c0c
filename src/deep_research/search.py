"""
Search aggregation: fan the structured query out to every source adapter.

For each adapter we:
1. Build the query string in that source's grammar
2. Run the search under the adapter's own timeout
3. Normalize raw results into CandidateDocument (dropping items without a PDF URI)

Adapters run concurrently and fail independently: an exception or timeout
yields zero results for that adapter only. Results are merged in a fixed
priority order and deduplicated by lower-cased document URI, first seen wins.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from deep_research.backends.base import SearchAdapter
from deep_research.cancel import CancelToken, guarded
from deep_research.errors import OperationCancelled
from deep_research.models import CandidateDocument, StructuredKeywords

logger = logging.getLogger(__name__)

ADAPTER_PRIORITY = ("arxiv", "openalex", "google_cse", "grounding")


def _priority(name: str) -> int:
    try:
        return ADAPTER_PRIORITY.index(name)
    except ValueError:
        return len(ADAPTER_PRIORITY)


def merge_results(per_adapter: Sequence[Tuple[str, List[CandidateDocument]]]) -> List[CandidateDocument]:
    """
    Deduplicate candidates by lower-cased document URI.

    Adapter outputs are visited in priority order (not arrival order), so on a
    conflict the metadata of the higher-priority adapter is kept.
    """
    ordered = sorted(per_adapter, key=lambda pair: _priority(pair[0]))
    seen: Dict[str, CandidateDocument] = {}
    for _, docs in ordered:
        for doc in docs:
            key = doc.dedup_key
            if key and key not in seen:
                seen[key] = doc
    return list(seen.values())


class SearchAggregator:
    """Runs every configured adapter and merges their candidates."""

    def __init__(self, adapters: Sequence[SearchAdapter]):
        # stable sort keeps caller order among adapters of equal priority
        self.adapters = sorted(adapters, key=lambda a: _priority(a.name))

    async def _run_adapter(
        self,
        adapter: SearchAdapter,
        keywords: StructuredKeywords,
        topics: List[str],
        questions: List[str],
    ) -> List[CandidateDocument]:
        try:
            query = adapter.build_query(keywords, topics, questions)
            if not query:
                logger.info(f"[{adapter.name}] no query to run")
                return []
            raw_results = await asyncio.wait_for(adapter.search(query), timeout=adapter.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{adapter.name}] timed out after {adapter.timeout:.0f}s")
            return []
        except Exception as e:
            logger.warning(f"[{adapter.name}] search failed: {e!r}")
            return []

        docs = []
        rejected = 0
        for raw in raw_results:
            try:
                doc = adapter.normalize(raw, query)
            except Exception as e:
                logger.debug(f"[{adapter.name}] could not normalize result: {e!r}")
                doc = None
            if doc is None:
                rejected += 1
            else:
                docs.append(doc)

        logger.info(f"[{adapter.name}] {len(docs)} candidates ({rejected} without a document URI)")
        return docs

    async def search(
        self,
        keywords: StructuredKeywords,
        topics: List[str],
        questions: List[str],
        cancel: Optional[CancelToken] = None,
    ) -> List[CandidateDocument]:
        if not self.adapters:
            logger.warning("No search adapters configured")
            return []
        if cancel is not None and cancel.cancelled:
            return []

        outcomes = await asyncio.gather(
            *(guarded(self._run_adapter(a, keywords, topics, questions), cancel) for a in self.adapters),
            return_exceptions=True,
        )

        per_adapter = []
        for adapter, outcome in zip(self.adapters, outcomes):
            if isinstance(outcome, OperationCancelled):
                logger.info(f"[{adapter.name}] cancelled")
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            per_adapter.append((adapter.name, outcome))

        candidates = merge_results(per_adapter)
        total = sum(len(docs) for _, docs in per_adapter)
        logger.info(
            f"Aggregated {total} results into {len(candidates)} unique candidates "
            f"(deduped {total - len(candidates)} duplicates)"
        )
        return candidates
