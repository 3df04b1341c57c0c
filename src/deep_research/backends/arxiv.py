"""
arXiv API adapter.

Uses field-scoped boolean queries against export.arxiv.org:
- each keyword combination becomes abs:term AND abs:(multi AND word)
- combinations are OR'd so one request covers specific and broad variants
- no combinations: title-scoped primary keyword, then all: over raw topics
"""

import logging
import re
import xml.etree.ElementTree as ET
from typing import List, Optional

from deep_research.backends.base import SearchAdapter, clean_term, split_combination
from deep_research.models import CandidateDocument, StructuredKeywords

logger = logging.getLogger(__name__)

ATOM = {"a": "http://www.w3.org/2005/Atom"}


def _field(prefix: str, term: str) -> str:
    words = term.split()
    return f"{prefix}:({' AND '.join(words)})" if len(words) > 1 else f"{prefix}:{term}"


def _squash(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


class ArxivAdapter(SearchAdapter):
    name = "arxiv"
    timeout = 20.0

    API_URL = "https://export.arxiv.org/api/query"
    MAX_RESULTS = 50

    def build_query(self, keywords: StructuredKeywords, topics: List[str], questions: List[str]) -> str:
        clauses = []
        for combo in keywords.combinations:
            terms = split_combination(combo)
            if terms:
                clause = " AND ".join(_field("abs", t) for t in terms)
                clauses.append(f"({clause})" if len(terms) > 1 else clause)

        if not clauses and keywords.primary:
            clauses.append(_field("ti", clean_term(keywords.primary)))

        if not clauses:
            clauses = [_field("all", clean_term(t)) for t in topics if clean_term(t)]

        # dedupe while keeping most-specific-first order
        return " OR ".join(dict.fromkeys(clauses))

    async def search(self, query: str) -> List[dict]:
        logger.info(f"arXiv search: {query!r}")
        params = {
            "search_query": query,
            "start": 0,
            "max_results": self.MAX_RESULTS,
            "sortBy": "relevance",
            "sortOrder": "descending",
        }
        resp = await self.client.get(self.API_URL, params=params)
        resp.raise_for_status()
        return self.parse_feed(resp.text)

    def parse_feed(self, xml_text: str) -> List[dict]:
        root = ET.fromstring(xml_text)
        entries = []
        for entry in root.findall("a:entry", ATOM):
            pdf_url = ""
            for link in entry.findall("a:link", ATOM):
                if link.get("title") == "pdf":
                    pdf_url = link.get("href", "")
            entries.append({
                "id": entry.findtext("a:id", default="", namespaces=ATOM).strip(),
                "title": _squash(entry.findtext("a:title", default="", namespaces=ATOM)),
                "summary": _squash(entry.findtext("a:summary", default="", namespaces=ATOM)),
                "published": entry.findtext("a:published", default="", namespaces=ATOM).strip(),
                "authors": [
                    a.findtext("a:name", default="", namespaces=ATOM).strip()
                    for a in entry.findall("a:author", ATOM)
                ],
                "pdf_url": pdf_url,
            })
        logger.info(f"arXiv returned {len(entries)} entries")
        return entries

    def normalize(self, raw: dict, query: str) -> Optional[CandidateDocument]:
        entry_id = raw.get("id") or ""
        pdf_url = raw.get("pdf_url") or ""
        if not pdf_url and entry_id:
            pdf_url = entry_id.replace("/abs/", "/pdf/") + ".pdf"
        if not pdf_url:
            return None

        return CandidateDocument(
            id=entry_id or pdf_url,
            title=raw.get("title") or "Untitled",
            summary=raw.get("summary") or "",
            authors=[a for a in raw.get("authors", []) if a],
            document_uri=pdf_url,
            published_date=raw.get("published") or "",
            source_query=query,
            source_api=self.name,
        )
