"""
Data models for the pipeline.

Pipeline records are plain dataclasses. Shapes that come back from a language
model are pydantic models so they can be repaired field by field.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator


def _clean(values: List[str]) -> Tuple[str, ...]:
    return tuple(v.strip() for v in values if v and v.strip())


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SearchIntent:
    """What the researcher asked for. Created once per session."""
    topics: Tuple[str, ...] = ()
    questions: Tuple[str, ...] = ()

    @classmethod
    def create(cls, topics: List[str], questions: List[str]) -> "SearchIntent":
        return cls(topics=_clean(topics), questions=_clean(questions))


class StructuredKeywords(BaseModel):
    """Search terms produced by the query planner."""
    primary: str = ""
    secondary: List[str] = Field(default_factory=list)  # at most 3, ideally one word each
    combinations: List[str] = Field(default_factory=list)  # most specific first

    @field_validator("secondary")
    @classmethod
    def _cap_secondary(cls, value: List[str]) -> List[str]:
        return [v.strip() for v in value if v and v.strip()][:3]

    @field_validator("combinations")
    @classmethod
    def _strip_combinations(cls, value: List[str]) -> List[str]:
        return [v.strip() for v in value if v and v.strip()]

    @model_validator(mode="after")
    def _ensure_combination(self) -> "StructuredKeywords":
        self.primary = self.primary.strip()
        if self.primary and not self.combinations:
            self.combinations = [self.primary]
        return self

    def display_terms(self) -> List[str]:
        """Flat keyword list used for the intent text and for display."""
        terms = [self.primary] + list(self.secondary)
        return [t for t in terms if t]


@dataclass
class Citation:
    inline: str  # in-text marker, e.g. "[1]"
    full: str  # resolved reference text


@dataclass
class ExtractedNote:
    """A page-anchored quotation answering one of the questions."""
    quote: str
    justification: str
    related_question: str
    page_number: int
    document_uri: str
    relevance_score: float = 0.75
    citations: List[Citation] = field(default_factory=list)


@dataclass
class PageText:
    """One page of a document, with its prefilter score."""
    document_uri: str
    page_index: int  # 0-based
    text: str
    score: float = 0.0

    @property
    def page_number(self) -> int:
        return self.page_index + 1


@dataclass
class ExtractedDocument:
    """What the page-text collaborator hands back for a fetched document."""
    pages: List[str]
    references: List[str] = field(default_factory=list)


@dataclass
class CandidateDocument:
    """A discovered document, mutated in place as it moves through the pipeline."""
    id: str
    title: str
    summary: str
    authors: List[str]
    document_uri: str
    published_date: str = ""
    source_query: str = ""
    source_api: str = ""  # which adapter found it

    relevance_score: Optional[float] = None
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING
    notes: List[ExtractedNote] = field(default_factory=list)
    references: List[str] = field(default_factory=list)

    @property
    def dedup_key(self) -> str:
        return self.document_uri.lower()
