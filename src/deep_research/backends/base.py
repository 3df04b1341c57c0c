"""
Search adapter interface.

Each adapter owns one external source and its query grammar:
- build_query: StructuredKeywords -> the query string that source searches best with
- search: query string -> raw result dicts (may raise; the aggregator isolates it)
- normalize: raw dict -> CandidateDocument, or None when no document URI resolves
"""

import re
from typing import List, Optional

import httpx

from deep_research.models import CandidateDocument, StructuredKeywords

AND_SPLIT = re.compile(r"\s+AND\s+")


def clean_term(term: str) -> str:
    return re.sub(r'[\\"]', "", term).strip()


def split_combination(combination: str) -> List[str]:
    """'world war 1 AND food' -> ['world war 1', 'food']"""
    return [t for t in (clean_term(p) for p in AND_SPLIT.split(combination)) if t]


class SearchAdapter:
    name = "base"
    timeout = 20.0  # seconds for one whole search() call

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.client = client or httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)

    def build_query(self, keywords: StructuredKeywords, topics: List[str], questions: List[str]) -> str:
        raise NotImplementedError

    async def search(self, query: str) -> List[dict]:
        raise NotImplementedError

    def normalize(self, raw: dict, query: str) -> Optional[CandidateDocument]:
        raise NotImplementedError

    async def close(self):
        await self.client.aclose()


def boolean_and_query(keywords: StructuredKeywords, topics: List[str]) -> str:
    """Plain boolean AND string: most specific combination, else primary AND secondary."""
    if keywords.combinations:
        return " AND ".join(split_combination(keywords.combinations[0]))
    terms = keywords.display_terms() or [clean_term(t) for t in topics if clean_term(t)]
    return " AND ".join(terms)
