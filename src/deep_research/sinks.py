"""
Persistence sinks: where finished documents and their notes go.

The pipeline only needs `async save(document)`. JsonFileSink appends one JSON
line per document; anything with the same method can be wired in instead.
"""

import asyncio
import json
import logging
from dataclasses import asdict
from typing import List

from deep_research.models import CandidateDocument

logger = logging.getLogger(__name__)


def document_to_dict(doc: CandidateDocument) -> dict:
    """Convert a CandidateDocument (with notes) to a serializable dict."""
    data = asdict(doc)
    data["analysis_status"] = doc.analysis_status.value
    if doc.relevance_score is not None:
        data["relevance_score"] = round(doc.relevance_score, 3)
    return data


class MemorySink:
    """Keeps saved documents in a list."""

    def __init__(self):
        self.saved: List[CandidateDocument] = []

    async def save(self, document: CandidateDocument) -> None:
        self.saved.append(document)


class JsonFileSink:
    """Appends each saved document as one JSON line."""

    def __init__(self, path: str):
        self.path = path
        self._lock = asyncio.Lock()

    async def save(self, document: CandidateDocument) -> None:
        line = json.dumps(document_to_dict(document), ensure_ascii=False)
        async with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        logger.info(f"Saved {len(document.notes)} notes for {document.title[:50]!r} to {self.path}")
