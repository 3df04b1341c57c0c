"""
Page-level selection: which pages of a fetched document are worth extracting from.

The page text itself comes from a page-text collaborator (PyMuPDFPageExtractor
by default). PageSelector embeds every non-trivial page and keeps the ones
whose cosine similarity to the research intent clears PAGE_THRESHOLD.
"""

import logging
import re
from typing import List, Optional, Sequence

import pymupdf

from deep_research.backends.embeddings import RETRIEVAL_DOCUMENT, RETRIEVAL_QUERY, cosine_similarity
from deep_research.cancel import CancelToken, guarded
from deep_research.models import ExtractedDocument, PageText

logger = logging.getLogger(__name__)

PAGE_THRESHOLD = 0.20
MIN_PAGE_CHARS = 50
PDF_MAGIC = b"%PDF-"

REFERENCE_HEADING = re.compile(r"^\s*(references|bibliography|works cited)\s*$", re.IGNORECASE | re.MULTILINE)
REFERENCE_ENTRY = re.compile(r"^\s*(\[\d+\]|\d+\.)\s+", re.MULTILINE)


def split_references(text: str) -> List[str]:
    """Split a reference section into entries on "[n]" / "n." markers, else on blank lines."""
    starts = [m.start() for m in REFERENCE_ENTRY.finditer(text)]
    if starts:
        bounds = starts + [len(text)]
        entries = [text[bounds[i]:bounds[i + 1]] for i in range(len(starts))]
    else:
        entries = re.split(r"\n\s*\n", text)
    return [" ".join(e.split()) for e in entries if e.strip()]


class PyMuPDFPageExtractor:
    """Page-text collaborator: PDF bytes -> ordered page strings + reference list."""

    def extract(self, data: bytes) -> ExtractedDocument:
        # PyMuPDF also opens HTML and plain text without complaint
        if PDF_MAGIC not in data[:1024]:
            raise ValueError("not a PDF document")
        with pymupdf.open(stream=data, filetype="pdf") as pdf:
            pages = [page.get_text() for page in pdf]

        references: List[str] = []
        for index in range(len(pages) - 1, -1, -1):
            match = REFERENCE_HEADING.search(pages[index])
            if match:
                tail = pages[index][match.end():] + "\n".join(pages[index + 1:])
                references = split_references(tail)
                break
        return ExtractedDocument(pages=pages, references=references)


class PageSelector:
    """Embedding prefilter over the pages of one document."""

    def __init__(self, embeddings, threshold: float = PAGE_THRESHOLD, min_chars: int = MIN_PAGE_CHARS):
        self.embeddings = embeddings
        self.threshold = threshold
        self.min_chars = min_chars

    async def select_pages(
        self,
        document_uri: str,
        pages: Sequence[str],
        questions: Sequence[str],
        queries: Sequence[str] = (),
        cancel: Optional[CancelToken] = None,
    ) -> List[PageText]:
        candidates = [
            PageText(document_uri=document_uri, page_index=i, text=text)
            for i, text in enumerate(pages)
            if text and len(text.strip()) >= self.min_chars
        ]
        if not candidates:
            return []

        master_query = "\n".join(questions) + "\n" + "\n".join(queries)
        target = await guarded(self.embeddings.embed(master_query, RETRIEVAL_QUERY), cancel)
        if not target:
            logger.warning(f"No intent vector for {document_uri}, keeping all {len(candidates)} pages")
            return candidates

        vectors = await self.embeddings.embed_batch([p.text for p in candidates], RETRIEVAL_DOCUMENT, cancel=cancel)
        selected = []
        for page, vector in zip(candidates, vectors):
            if not vector:
                continue
            page.score = cosine_similarity(target, vector)
            if page.score > self.threshold:
                selected.append(page)

        logger.info(f"{document_uri}: {len(selected)} of {len(pages)} pages above {self.threshold}")
        return selected
