"""
Note extraction: pull page-anchored quotes that answer the user's questions.

Relevant pages are split into batches of BATCH_SIZE and run BATCH_CONCURRENCY
at a time. Each batch is one model call; its notes are validated and handed to
the caller's `on_batch` sink as soon as the batch finishes, so consumers can
show notes while other batches are still running. A batch whose providers all
fail contributes no notes; extract() itself does not raise for it.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Set, Union

from deep_research.cancel import CancelToken
from deep_research.errors import ProviderError
from deep_research.fallback import ProviderFallbackClient
from deep_research.models import Citation, ExtractedNote, PageText
from deep_research.pool import run_pool

logger = logging.getLogger(__name__)

BATCH_SIZE = 8
BATCH_CONCURRENCY = 3
EXTRACT_TIMEOUT = 60.0
DEFAULT_RELEVANCE = 0.75

BatchSink = Callable[[List[ExtractedNote]], Union[None, Awaitable[None]]]

SCHEMA_HINT = {
    "notes": [{
        "quote": "verbatim text from the page",
        "justification": "which question it answers and how",
        "relatedQuestion": "the question text",
        "pageNumber": 1,
        "relevanceScore": 0.9,
        "citations": [{"inline": "[1]", "full": "full reference text"}],
    }]
}


def make_batches(pages: Sequence[PageText], size: int = BATCH_SIZE) -> List[List[PageText]]:
    return [list(pages[i:i + size]) for i in range(0, len(pages), size)]


def _text(value: Any, default: str = "") -> str:
    return value.strip() if isinstance(value, str) and value.strip() else default


def _page_number(value: Any, default: int, allowed: Set[int]) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    # a page the model was not shown cannot be cited
    return value if isinstance(value, int) and value in allowed else default


def _score(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_RELEVANCE
    return min(max(float(value), 0.0), 1.0)


def _citations(value: Any) -> List[Citation]:
    if not isinstance(value, list):
        return []
    citations = []
    for item in value:
        if isinstance(item, dict):
            inline, full = _text(item.get("inline")), _text(item.get("full"))
            if inline or full:
                citations.append(Citation(inline=inline, full=full))
    return citations


def normalize_notes(data: Any, batch: Sequence[PageText]) -> List[ExtractedNote]:
    """Validate a batch reply; notes without a quote are dropped."""
    if isinstance(data, dict):
        items = data.get("notes", [])
    else:
        items = data
    if not isinstance(items, list) or not batch:
        return []

    document_uri = batch[0].document_uri
    first_page = batch[0].page_number
    batch_pages = {p.page_number for p in batch}
    notes = []
    for item in items:
        if not isinstance(item, dict):
            continue
        quote = _text(item.get("quote"))
        if not quote:
            continue
        notes.append(ExtractedNote(
            quote=quote,
            justification=_text(item.get("justification"), "Relevant."),
            related_question=_text(item.get("relatedQuestion"), "General"),
            page_number=_page_number(item.get("pageNumber"), first_page, batch_pages),
            document_uri=document_uri,
            relevance_score=_score(item.get("relevanceScore")),
            citations=_citations(item.get("citations")),
        ))
    return notes


def build_prompt(
    batch: Sequence[PageText],
    questions: Sequence[str],
    title: str,
    abstract: str,
    references: Sequence[str],
) -> str:
    pages_text = "\n\n".join(
        f"==Page {p.page_number}==\n{p.text}\n==Page {p.page_number}==" for p in batch
    )
    questions_text = "\n".join(f"- {q}" for q in questions)
    if references:
        references_text = "\n".join(f"{i + 1}. {r}" for i, r in enumerate(references))
    else:
        references_text = "(no reference list available)"

    return f"""You are a PhD research assistant extracting evidence from an academic paper.

Paper title: {title or "Unknown"}
Abstract: {abstract or "Not available"}

Reference list of this paper:
{references_text}

The user's questions:
{questions_text}

Rules:
- Extract only passages that DIRECTLY answer one of the questions. If nothing on
  these pages answers a question, return {{"notes": []}}. Do not force a weak match.
- "quote" must be copied verbatim from the pages below.
- "justification" must say which question the quote answers and how.
- "relatedQuestion" must be one of the questions above.
- "pageNumber" is the number in the ==Page N== marker the quote came from.
- For every in-text citation in a quote (e.g. "[12]" or "(Smith, 2019)"), add
  {{"inline": "<marker>", "full": "<matching entry from the reference list>"}} to "citations".

Return JSON:
{{"notes": [{{"quote": "...", "justification": "...", "relatedQuestion": "...", "pageNumber": 12, "relevanceScore": 0.95, "citations": []}}]}}

Pages:
{pages_text}"""


class NoteExtractor:
    def __init__(
        self,
        llm: Optional[ProviderFallbackClient],
        batch_size: int = BATCH_SIZE,
        concurrency: int = BATCH_CONCURRENCY,
        timeout: float = EXTRACT_TIMEOUT,
    ):
        self.llm = llm
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.timeout = timeout

    async def _emit(self, on_batch: Optional[BatchSink], notes: List[ExtractedNote]) -> None:
        if on_batch is None:
            return
        try:
            result = on_batch(notes)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Note sink raised: {e!r}")

    async def extract(
        self,
        relevant_pages: Sequence[PageText],
        questions: Sequence[str],
        title: str = "",
        abstract: str = "",
        references: Sequence[str] = (),
        on_batch: Optional[BatchSink] = None,
        cancel: Optional[CancelToken] = None,
    ) -> List[ExtractedNote]:
        if not relevant_pages:
            return []
        if self.llm is None or not self.llm.configured:
            logger.warning("No language model configured for note extraction")
            return []

        batches = make_batches(relevant_pages, self.batch_size)
        logger.info(f"Extracting notes from {len(relevant_pages)} pages in {len(batches)} batches: {title[:60]!r}")

        async def process_batch(batch: List[PageText]) -> List[ExtractedNote]:
            pages_label = f"pages {batch[0].page_number}-{batch[-1].page_number}"
            try:
                data = await self.llm.call(
                    build_prompt(batch, questions, title, abstract, references),
                    timeout=self.timeout,
                    schema_hint=SCHEMA_HINT,
                    label=f"extracting notes ({pages_label})",
                )
            except ProviderError as e:
                logger.warning(f"Extraction failed for {pages_label} ({e.kind}: {e})")
                return []

            notes = normalize_notes(data, batch)
            await self._emit(on_batch, notes)
            return notes

        results = await run_pool(batches, self.concurrency, process_batch, cancel=cancel, label="extract")
        notes = [note for batch_notes in results if batch_notes for note in batch_notes]
        logger.info(f"Extracted {len(notes)} notes from {len(batches)} batches")
        return notes
