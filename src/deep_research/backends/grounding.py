"""
Gemini grounding search: Gemini answers with the Google Search tool enabled.

The query is a natural-language request plus search operators restricting
results to PDFs on academic hosts. Results come from two places in the reply:
the JSON paper list in the text (when the model follows instructions) and the
grounding chunks the search tool attaches (always present when it searched).
"""

import logging
from typing import List, Optional

from deep_research.backends.base import SearchAdapter
from deep_research.backends.llm import GeminiProvider
from deep_research.errors import ProviderError
from deep_research.fallback import parse_json_content
from deep_research.models import CandidateDocument, StructuredKeywords

logger = logging.getLogger(__name__)

ACADEMIC_SITES = (
    "arxiv.org",
    "ncbi.nlm.nih.gov",
    "semanticscholar.org",
    "researchgate.net",
    "mdpi.com",
)


class GroundingAdapter(SearchAdapter):
    name = "grounding"
    timeout = 45.0

    def __init__(self, provider: GeminiProvider):
        # shares the provider's HTTP client
        self.provider = provider
        self.client = provider.client

    def build_query(self, keywords: StructuredKeywords, topics: List[str], questions: List[str]) -> str:
        subject = ", ".join(topics) or keywords.primary
        sentence = f"Find academic research papers about {subject}"
        if questions:
            sentence += " that answer: " + "; ".join(questions)
        sites = " OR ".join(f"site:{s}" for s in ACADEMIC_SITES)
        return f"{sentence} filetype:pdf ({sites})"

    def build_prompt(self, query: str) -> str:
        return f"""Search the web for: {query}

List up to 10 matching papers that have a directly downloadable PDF.
Return JSON: {{"papers": [{{"title": "...", "pdf_url": "...", "summary": "one sentence", "authors": ["..."], "year": "..."}}]}}"""

    async def search(self, query: str) -> List[dict]:
        logger.info(f"Grounding search: {query!r}")
        response = await self.provider.generate_grounded(self.build_prompt(query), label="grounding search")

        results: List[dict] = []
        if response.content.strip():
            try:
                data = parse_json_content(response.content)
            except ProviderError:
                data = None
            if isinstance(data, dict):
                results.extend(p for p in data.get("papers", []) if isinstance(p, dict))

        for chunk in response.grounding:
            results.append({"title": chunk.get("title", ""), "pdf_url": chunk.get("uri", "")})
        return results

    def normalize(self, raw: dict, query: str) -> Optional[CandidateDocument]:
        url = raw.get("pdf_url") or raw.get("url") or ""
        if not url.startswith(("http://", "https://")):
            return None
        authors = raw.get("authors") if isinstance(raw.get("authors"), list) else []
        return CandidateDocument(
            id=url,
            title=raw.get("title") or "Untitled",
            summary=raw.get("summary") or "",
            authors=[a for a in authors if isinstance(a, str)],
            document_uri=url,
            published_date=str(raw.get("year") or ""),
            source_query=query,
            source_api=self.name,
        )

    async def close(self):
        # the provider owns the client
        return None
