"""
Query planning: turn free-text topics/questions into structured search terms.

Ask the LLM for a primary keyword, up to 3 secondary keywords and boolean
AND-combinations ordered most specific to broadest. Every field of the reply
is validated on its own; a bad or missing field is replaced by the matching
field of a deterministic fallback instead of rejecting the whole reply.
"""

import json
import logging
from typing import Any, List, Optional

from deep_research.errors import ProviderError
from deep_research.fallback import ProviderFallbackClient
from deep_research.models import StructuredKeywords

logger = logging.getLogger(__name__)

PLAN_TIMEOUT = 30.0

SCHEMA_HINT = {
    "primary_keyword": "string",
    "secondary_keywords": ["string"],
    "query_combinations": ["string"],
}


def fallback_keywords(topics: List[str], questions: List[str]) -> StructuredKeywords:
    """Deterministic, model-free keywords built straight from the user's input."""
    pool = [t for t in list(topics) + list(questions) if t]
    primary = pool[0] if pool else ""
    return StructuredKeywords(
        primary=primary,
        secondary=pool[1:4],
        combinations=list(topics) if topics else list(questions),
    )


def _flatten_once(values: List[Any]) -> List[Any]:
    flat = []
    for v in values:
        if isinstance(v, list):
            flat.extend(v)
        else:
            flat.append(v)
    return flat


def _string_list(value: Any) -> Optional[List[str]]:
    """List of non-empty strings, or None when the value is not usable."""
    if not isinstance(value, list):
        return None
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


def repair_keywords(data: Any, fallback: StructuredKeywords) -> StructuredKeywords:
    """Validate model output field by field against `fallback`."""
    if not isinstance(data, dict):
        logger.warning(f"Planner reply is not an object ({type(data).__name__}), using fallback")
        return fallback

    primary = data.get("primary_keyword", data.get("primary"))
    if not isinstance(primary, str) or not primary.strip():
        primary = fallback.primary

    secondary = _string_list(data.get("secondary_keywords", data.get("secondary")))
    if secondary is None:
        secondary = list(fallback.secondary)

    raw_combos = data.get("query_combinations", data.get("combinations"))
    combinations = _string_list(_flatten_once(raw_combos)) if isinstance(raw_combos, list) else None
    if not combinations:
        combinations = list(fallback.combinations)

    return StructuredKeywords(primary=primary, secondary=secondary, combinations=combinations)


def build_prompt(topics: List[str], questions: List[str]) -> str:
    return f"""You are an expert academic librarian building search terms for paper databases.

User Topics: {json.dumps(list(topics))}
User Questions: {json.dumps(list(questions))}

Produce:
1. primary_keyword: the single most important concept. Keep proper nouns and
   named entities as one phrase (e.g. "World War 1", "CRISPR-Cas9").
2. secondary_keywords: at most 3 supporting terms, each ONE word where possible.
3. query_combinations: boolean combinations joined with " AND ", ordered from
   the most specific (primary + several secondary terms) to the broadest
   (primary alone).

Example
Topics: ["World War 1"]  Questions: ["How did food shortages affect civilians?"]
{{
  "primary_keyword": "World War 1",
  "secondary_keywords": ["food", "shortages", "civilians"],
  "query_combinations": [
    "World War 1 AND food AND civilians",
    "World War 1 AND food",
    "World War 1"
  ]
}}

Example
Topics: ["transformer models"]  Questions: ["How well do they handle long documents?"]
{{
  "primary_keyword": "transformer",
  "secondary_keywords": ["long", "documents"],
  "query_combinations": [
    "transformer AND long AND documents",
    "transformer AND documents",
    "transformer"
  ]
}}

Return JSON with exactly the keys primary_keyword, secondary_keywords, query_combinations."""


class QueryPlanner:
    """Converts a SearchIntent into StructuredKeywords."""

    def __init__(self, llm: Optional[ProviderFallbackClient] = None, timeout: float = PLAN_TIMEOUT):
        self.llm = llm
        self.timeout = timeout

    async def plan(self, topics: List[str], questions: List[str]) -> StructuredKeywords:
        fallback = fallback_keywords(topics, questions)
        if self.llm is None or not self.llm.configured:
            logger.info("No language model configured, using fallback keywords")
            return fallback

        try:
            data = await self.llm.call(
                build_prompt(topics, questions),
                timeout=self.timeout,
                schema_hint=SCHEMA_HINT,
                label="planning search terms",
            )
        except ProviderError as e:
            logger.warning(f"Query planning failed ({e.kind}: {e}), using fallback keywords")
            return fallback

        keywords = repair_keywords(data, fallback)
        logger.info(f"Planned keywords: primary={keywords.primary!r} combinations={keywords.combinations}")
        return keywords
