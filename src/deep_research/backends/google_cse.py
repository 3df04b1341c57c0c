"""
Google Custom Search JSON API, restricted to PDF results.

Fetches up to 5 pages of 10 results. A failed page (quota, 5xx) is dropped on
its own without discarding the pages that succeeded.
"""

import asyncio
import logging
from typing import List, Optional

import httpx

from deep_research.backends.base import SearchAdapter, boolean_and_query
from deep_research.models import CandidateDocument, StructuredKeywords

logger = logging.getLogger(__name__)


class GoogleCSEAdapter(SearchAdapter):
    name = "google_cse"
    timeout = 15.0

    API_URL = "https://www.googleapis.com/customsearch/v1"
    PAGE_STARTS = (1, 11, 21, 31, 41)

    def __init__(self, api_key: str, cx: str, client: Optional[httpx.AsyncClient] = None):
        super().__init__(client)
        self.api_key = api_key
        self.cx = cx

    def build_query(self, keywords: StructuredKeywords, topics: List[str], questions: List[str]) -> str:
        return boolean_and_query(keywords, topics)

    async def _fetch_page(self, query: str, start: int) -> List[dict]:
        params = {
            "key": self.api_key,
            "cx": self.cx,
            "q": query,
            "num": 10,
            "start": start,
            "fileType": "pdf",
        }
        try:
            resp = await self.client.get(self.API_URL, params=params)
        except httpx.HTTPError as e:
            logger.warning(f"Google CSE page {start} failed: {e!r}")
            return []
        if resp.status_code != 200:
            if resp.status_code == 429:
                logger.warning(f"Google CSE quota exceeded on page {start}")
            else:
                logger.warning(f"Google CSE page {start} returned {resp.status_code}")
            return []
        try:
            return resp.json().get("items", []) or []
        except ValueError:
            return []

    async def search(self, query: str) -> List[dict]:
        logger.info(f"Google CSE search: {query!r}")
        pages = await asyncio.gather(*(self._fetch_page(query, start) for start in self.PAGE_STARTS))
        return [item for page in pages for item in page]

    def normalize(self, raw: dict, query: str) -> Optional[CandidateDocument]:
        link = raw.get("link") or ""
        if not link or "pdf" not in link.lower():
            return None
        return CandidateDocument(
            id=link,
            title=raw.get("title") or "Untitled PDF",
            summary=raw.get("snippet") or "",
            authors=[],
            document_uri=link,
            source_query=query,
            source_api=self.name,
        )
