"""
OpenAlex works search.

Free, no API key. A mailto parameter puts requests in the "polite pool".
Only works with an open-access PDF location are kept.
"""

import logging
from typing import List, Optional

import httpx

from deep_research.backends.base import SearchAdapter, boolean_and_query
from deep_research.models import CandidateDocument, StructuredKeywords

logger = logging.getLogger(__name__)


def rebuild_abstract(inverted_index: Optional[dict]) -> str:
    """OpenAlex ships abstracts as {word: [positions]}; put the words back in order."""
    if not inverted_index:
        return ""
    positions = []
    for word, indexes in inverted_index.items():
        for i in indexes:
            positions.append((i, word))
    return " ".join(word for _, word in sorted(positions))


class OpenAlexAdapter(SearchAdapter):
    name = "openalex"
    timeout = 15.0

    API_URL = "https://api.openalex.org/works"
    PER_PAGE = 50

    def __init__(self, mailto: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        super().__init__(client)
        self.mailto = mailto

    def build_query(self, keywords: StructuredKeywords, topics: List[str], questions: List[str]) -> str:
        return boolean_and_query(keywords, topics)

    async def search(self, query: str) -> List[dict]:
        logger.info(f"OpenAlex search: {query!r}")
        params = {
            "search": query,
            "filter": "has_fulltext:true",
            "per_page": self.PER_PAGE,
        }
        if self.mailto:
            params["mailto"] = self.mailto
        resp = await self.client.get(self.API_URL, params=params)
        resp.raise_for_status()
        return resp.json().get("results", [])

    def _pdf_url(self, item: dict) -> str:
        for key in ("best_oa_location", "primary_location"):
            location = item.get(key) or {}
            if location.get("pdf_url"):
                return location["pdf_url"]
        for location in item.get("locations") or []:
            if location and location.get("pdf_url"):
                return location["pdf_url"]
        return ""

    def normalize(self, raw: dict, query: str) -> Optional[CandidateDocument]:
        pdf_url = self._pdf_url(raw)
        if not pdf_url:
            return None

        authors = []
        for authorship in raw.get("authorships") or []:
            name = ((authorship or {}).get("author") or {}).get("display_name")
            if name:
                authors.append(name)

        return CandidateDocument(
            id=raw.get("id") or pdf_url,
            title=raw.get("display_name") or raw.get("title") or "Untitled",
            summary=rebuild_abstract(raw.get("abstract_inverted_index")),
            authors=authors,
            document_uri=pdf_url,
            published_date=raw.get("publication_date") or str(raw.get("publication_year") or ""),
            source_query=query,
            source_api=self.name,
        )
