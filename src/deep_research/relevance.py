"""
Relevance filtering: narrow hundreds of candidates to a bounded, relevant set.

Two stages:
1. Embedding prefilter - cosine similarity between the user's intent vector
   and each candidate's title+abstract vector, cut at PREFILTER_THRESHOLD
2. Model selection - an LLM picks the SELECT_COUNT most relevant papers from
   each bracket of the prefiltered list

Bracket A is the top BRACKET_SIZE by cosine score; Bracket B is what the
prefilter kept beyond that. Each bracket falls back to its cosine top-N when no
model pick can be mapped back to a candidate, and the merged result is topped
up from Bracket A to MIN_YIELD so a strict model never starves the pipeline.
"""

import logging
from typing import Any, Iterable, List, Optional, Sequence, Union

from pydantic import BaseModel, ValidationError, field_validator

from deep_research.backends.embeddings import RETRIEVAL_DOCUMENT, RETRIEVAL_QUERY, cosine_similarity
from deep_research.cancel import CancelToken, guarded
from deep_research.errors import ProviderError
from deep_research.fallback import ProviderFallbackClient
from deep_research.models import CandidateDocument, StructuredKeywords

logger = logging.getLogger(__name__)

# Empirically tuned; kept as-is rather than re-derived.
PREFILTER_THRESHOLD = 0.48
BRACKET_SIZE = 100
SELECT_COUNT = 20
MIN_YIELD = 30
MAX_RESULTS = 50

SELECT_TIMEOUT = 80.0
ABSTRACT_CHARS = 300

SCHEMA_HINT = {"selected": [{"index": 0, "id": "string", "title": "string"}]}


class Selection(BaseModel):
    """One pick returned by the selector model. Every field is optional."""
    index: Optional[int] = None
    id: Optional[str] = None
    title: Optional[str] = None

    @field_validator("index", mode="before")
    @classmethod
    def _coerce_index(cls, value: Any) -> Optional[int]:
        if isinstance(value, bool):
            return None
        if isinstance(value, str):
            value = value.strip()
            return int(value) if value.isdigit() else None
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value if isinstance(value, int) else None

    @field_validator("id", "title", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


def intent_text(questions: Sequence[str], keywords: Sequence[str]) -> str:
    return "Questions: " + "\n".join(questions) + "\nKeywords: " + ", ".join(keywords)


def document_text(doc: CandidateDocument) -> str:
    return f"Title: {doc.title}\nAbstract: {doc.summary}"


def prefilter(candidates: Iterable[CandidateDocument], threshold: float = PREFILTER_THRESHOLD) -> List[CandidateDocument]:
    """Candidates scoring at or above `threshold`, best first."""
    kept = [c for c in candidates if (c.relevance_score or 0.0) >= threshold]
    return sorted(kept, key=lambda c: c.relevance_score or 0.0, reverse=True)


def parse_selections(data: Any) -> List[Selection]:
    """Accept {"selected": [...]}, a few common wrapper keys, or a bare list."""
    items = data
    if isinstance(data, dict):
        for key in ("selected", "selections", "papers", "results"):
            if isinstance(data.get(key), list):
                items = data[key]
                break
        else:
            items = []
    if not isinstance(items, list):
        return []

    selections = []
    for item in items:
        if isinstance(item, int) and not isinstance(item, bool):
            item = {"index": item}
        if not isinstance(item, dict):
            continue
        try:
            selections.append(Selection(**item))
        except ValidationError:
            continue
    return selections


def map_selection(selection: Selection, bracket: Sequence[CandidateDocument]) -> Optional[CandidateDocument]:
    """
    Map one model pick back to a bracket member.
    Order: exact index -> exact id -> substring id -> case-insensitive substring title.
    """
    if selection.index is not None and 0 <= selection.index < len(bracket):
        return bracket[selection.index]

    if selection.id:
        for doc in bracket:
            if doc.id == selection.id:
                return doc
        for doc in bracket:
            if doc.id and (selection.id in doc.id or doc.id in selection.id):
                return doc

    if selection.title:
        wanted = selection.title.lower()
        for doc in bracket:
            title = doc.title.lower()
            if title and (wanted in title or title in wanted):
                return doc

    return None


def dedupe_by_id(docs: Iterable[CandidateDocument]) -> List[CandidateDocument]:
    seen = set()
    unique = []
    for doc in docs:
        if doc.id not in seen:
            seen.add(doc.id)
            unique.append(doc)
    return unique


def build_selection_prompt(
    bracket: Sequence[CandidateDocument],
    questions: Sequence[str],
    keywords: Sequence[str],
    count: int,
) -> str:
    papers_text = ""
    for i, doc in enumerate(bracket):
        abstract = (doc.summary or "No abstract")[:ABSTRACT_CHARS]
        papers_text += f"""
[{i}] ID: {doc.id}
    Title: {doc.title}
    Abstract: {abstract}
"""

    questions_text = "\n".join(f"- {q}" for q in questions)
    return f"""You are a strict academic reviewer selecting papers for a literature review.

Research questions:
{questions_text}

Keywords: {", ".join(keywords)}

Candidate papers (index, id, title, truncated abstract):
{papers_text}

Select EXACTLY {count} papers that are most directly relevant to the research questions.
Judge strictly:
- The paper must address the same domain, population and era as the questions
- Prefer papers whose abstract directly addresses a question over ones that only share vocabulary
- Do not select a paper just because it mentions a keyword

Respond with JSON:
{{"selected": [{{"index": 0, "id": "...", "title": "..."}}, ...]}}

Copy index, id and title exactly as given above."""


class RelevanceFilter:
    """Embedding prefilter followed by two-bracket model selection with rescue."""

    def __init__(
        self,
        embeddings,
        llm: Optional[ProviderFallbackClient] = None,
        threshold: float = PREFILTER_THRESHOLD,
        bracket_size: int = BRACKET_SIZE,
        select_count: int = SELECT_COUNT,
        min_yield: int = MIN_YIELD,
        max_results: int = MAX_RESULTS,
        select_timeout: float = SELECT_TIMEOUT,
    ):
        self.embeddings = embeddings
        self.llm = llm
        self.threshold = threshold
        self.bracket_size = bracket_size
        self.select_count = select_count
        self.min_yield = min_yield
        self.max_results = max_results
        self.select_timeout = select_timeout

    async def score(
        self,
        candidates: List[CandidateDocument],
        questions: Sequence[str],
        keywords: Sequence[str],
        cancel: Optional[CancelToken] = None,
    ) -> bool:
        """
        Set relevance_score on every candidate. Candidates without a vector score 0.
        Returns False when the intent vector itself could not be computed.
        """
        target = await guarded(self.embeddings.embed(intent_text(questions, keywords), RETRIEVAL_QUERY), cancel)
        if not target:
            logger.warning("Could not embed the research intent, nothing to compare against")
            return False

        vectors = await self.embeddings.embed_batch(
            [document_text(c) for c in candidates], RETRIEVAL_DOCUMENT, cancel=cancel
        )
        for candidate, vector in zip(candidates, vectors):
            # negative similarity counts as unrelated
            candidate.relevance_score = max(0.0, cosine_similarity(target, vector)) if vector else 0.0
        return True

    async def select_from_bracket(
        self,
        bracket: Sequence[CandidateDocument],
        questions: Sequence[str],
        keywords: Sequence[str],
        label: str,
        cancel: Optional[CancelToken] = None,
    ) -> List[CandidateDocument]:
        """Model picks from `bracket` (sorted by cosine), or its cosine top-N when none map."""
        if not bracket:
            return []
        count = min(self.select_count, len(bracket))

        selections: List[Selection] = []
        if self.llm is not None and self.llm.configured:
            prompt = build_selection_prompt(bracket, questions, keywords, count)
            try:
                data = await guarded(
                    self.llm.call(prompt, timeout=self.select_timeout, schema_hint=SCHEMA_HINT,
                                  label=f"selecting {count} of {len(bracket)} papers ({label})"),
                    cancel,
                )
                selections = parse_selections(data)
            except ProviderError as e:
                logger.warning(f"Selector for {label} failed ({e.kind}: {e})")

        mapped = [doc for doc in (map_selection(s, bracket) for s in selections) if doc is not None]
        mapped = dedupe_by_id(mapped)
        dropped = len(selections) - len(mapped)
        if dropped > 0:
            logger.info(f"{label}: {dropped} selections could not be mapped or were duplicates")
        if len(mapped) > count:
            logger.info(f"{label}: selector returned {len(mapped)} papers, keeping the first {count}")
            mapped = mapped[:count]

        if not mapped:
            logger.warning(f"{label}: no usable selections, rescuing with cosine top {count}")
            return list(bracket[:count])

        logger.info(f"{label}: selector kept {len(mapped)} of {len(bracket)}")
        return mapped

    async def filter(
        self,
        candidates: List[CandidateDocument],
        questions: Sequence[str],
        keywords: Union[StructuredKeywords, Sequence[str]],
        cancel: Optional[CancelToken] = None,
    ) -> List[CandidateDocument]:
        """
        Return at most max_results relevant candidates.
        An empty list means "no relevant results", not an error.
        """
        if not candidates:
            return []
        if isinstance(keywords, StructuredKeywords):
            keywords = keywords.display_terms()

        # --- Embed + prefilter ---
        if not await self.score(candidates, questions, keywords, cancel):
            return []
        if cancel is not None:
            cancel.raise_if_cancelled()
        passed = prefilter(candidates, self.threshold)
        logger.info(f"Prefilter kept {len(passed)} of {len(candidates)} candidates (>= {self.threshold})")
        if not passed:
            return []

        # --- Bracket A: top of the prefiltered list ---
        bracket_a = passed[:self.bracket_size]
        chosen_a = await self.select_from_bracket(bracket_a, questions, keywords, "bracket A", cancel)

        # --- Bracket B: prefiltered candidates that did not fit in bracket A ---
        chosen_ids = {d.id for d in chosen_a}
        leftover = [d for d in passed[self.bracket_size:] if d.id not in chosen_ids][:self.bracket_size]
        chosen_b = await self.select_from_bracket(leftover, questions, keywords, "bracket B", cancel)

        merged = dedupe_by_id(chosen_a + chosen_b)

        # --- Minimum-yield rescue from bracket A ---
        if len(merged) < self.min_yield:
            merged_ids = {d.id for d in merged}
            top_up = [d for d in bracket_a if d.id not in merged_ids]
            needed = self.min_yield - len(merged)
            merged.extend(top_up[:needed])
            logger.info(f"Minimum-yield rescue added {min(needed, len(top_up))} candidates")

        result = merged[:self.max_results]
        logger.info(f"Relevance filter: {len(candidates)} -> {len(passed)} -> {len(result)} documents")
        return result
