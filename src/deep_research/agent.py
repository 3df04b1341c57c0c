"""
Deep Research Agent

Runs the pipeline: plan -> search -> filter -> (per document) fetch -> pages -> extract -> save
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from deep_research.acquisition import DocumentAcquisition
from deep_research.cancel import CancelToken, guarded
from deep_research.errors import FetchError, OperationCancelled
from deep_research.extract import NoteExtractor
from deep_research.models import AnalysisStatus, CandidateDocument, SearchIntent, StructuredKeywords
from deep_research.pages import PageSelector
from deep_research.planner import QueryPlanner, fallback_keywords
from deep_research.pool import run_pool
from deep_research.relevance import RelevanceFilter
from deep_research.search import SearchAggregator
from deep_research.sinks import document_to_dict

logger = logging.getLogger(__name__)

DOCUMENT_CONCURRENCY = 3

UNFINISHED = (
    AnalysisStatus.PENDING,
    AnalysisStatus.DOWNLOADING,
    AnalysisStatus.PROCESSING,
    AnalysisStatus.EXTRACTING,
)


class DeepResearchAgent:
    """Wires together all the pipeline stages."""

    def __init__(
        self,
        planner: QueryPlanner,
        aggregator: SearchAggregator,
        relevance: RelevanceFilter,
        acquisition: DocumentAcquisition,
        page_extractor,
        page_selector: PageSelector,
        extractor: NoteExtractor,
        sink=None,
        document_concurrency: int = DOCUMENT_CONCURRENCY,
    ):
        self.planner = planner
        self.aggregator = aggregator
        self.relevance = relevance
        self.acquisition = acquisition
        self.page_extractor = page_extractor
        self.page_selector = page_selector
        self.extractor = extractor
        self.sink = sink
        self.document_concurrency = document_concurrency

    async def run(self, intent: SearchIntent, cancel: Optional[CancelToken] = None) -> Dict[str, Any]:
        """Run the full pipeline for one research session."""
        topics, questions = list(intent.topics), list(intent.questions)
        logger.info(f"Starting deep research: topics={topics} questions={questions}")

        # --- Step 1: Plan ---
        try:
            keywords = await guarded(self.planner.plan(topics, questions), cancel)
        except OperationCancelled:
            return self._result("stopped", fallback_keywords(topics, questions), [], [])

        # --- Step 2: Search ---
        candidates = await self.aggregator.search(keywords, topics, questions, cancel=cancel)
        logger.info(f"Found {len(candidates)} candidate documents")
        if cancel is not None and cancel.cancelled:
            return self._result("stopped", keywords, candidates, [])
        if not candidates:
            logger.info("No candidates found")
            return self._result("no_results", keywords, candidates, [])

        # --- Step 3: Filter ---
        try:
            documents = await self.relevance.filter(candidates, questions, keywords, cancel=cancel)
        except OperationCancelled:
            return self._result("stopped", keywords, candidates, [])
        if not documents:
            logger.info("No candidate passed the relevance filter")
            return self._result("no_results", keywords, candidates, [])

        # Log top 3 with scores
        for doc in documents[:3]:
            logger.info(f"  - [{doc.source_api}] {doc.title[:50]}... (cosine={doc.relevance_score or 0:.2f})")

        # --- Step 4: Fetch + extract, a few documents at a time ---
        await run_pool(
            documents,
            self.document_concurrency,
            lambda doc: self.process_document(doc, questions, keywords, cancel),
            cancel=cancel,
            label="documents",
        )

        stopped = cancel is not None and cancel.cancelled
        if stopped:
            for doc in documents:
                if doc.analysis_status in UNFINISHED:
                    doc.analysis_status = AnalysisStatus.STOPPED
        return self._result("stopped" if stopped else "completed", keywords, candidates, documents)

    async def process_document(
        self,
        doc: CandidateDocument,
        questions: List[str],
        keywords: StructuredKeywords,
        cancel: Optional[CancelToken] = None,
    ) -> CandidateDocument:
        """Move one document through fetch -> pages -> extract, updating its status in place."""
        try:
            doc.analysis_status = AnalysisStatus.DOWNLOADING
            data = await self.acquisition.fetch(doc.document_uri, cancel=cancel)

            try:
                extracted = self.page_extractor.extract(data)
            except Exception as e:
                logger.warning(f"Could not read pages of {doc.document_uri}: {e!r}")
                doc.analysis_status = AnalysisStatus.FAILED
                return doc
            doc.references = list(extracted.references)

            doc.analysis_status = AnalysisStatus.PROCESSING
            pages = await self.page_selector.select_pages(
                doc.document_uri, extracted.pages, questions, keywords.display_terms(), cancel=cancel
            )

            if pages:
                doc.analysis_status = AnalysisStatus.EXTRACTING
                notes = await self.extractor.extract(
                    pages,
                    questions,
                    title=doc.title,
                    abstract=doc.summary,
                    references=doc.references,
                    on_batch=doc.notes.extend,
                    cancel=cancel,
                )
                doc.notes = list(notes)
        except FetchError:
            doc.analysis_status = AnalysisStatus.FAILED
            return doc
        except OperationCancelled:
            doc.analysis_status = AnalysisStatus.STOPPED
            return doc
        except Exception as e:
            logger.warning(f"Processing {doc.document_uri} failed: {e!r}")
            doc.analysis_status = AnalysisStatus.FAILED
            return doc

        if cancel is not None and cancel.cancelled:
            doc.analysis_status = AnalysisStatus.STOPPED
            return doc

        doc.analysis_status = AnalysisStatus.COMPLETED
        await self._save(doc)
        return doc

    async def _save(self, doc: CandidateDocument) -> None:
        if self.sink is None:
            return
        try:
            await self.sink.save(doc)
        except Exception as e:
            logger.error(f"Persisting {doc.document_uri} failed: {e!r}")

    def _result(
        self,
        status: str,
        keywords: StructuredKeywords,
        candidates: List[CandidateDocument],
        documents: List[CandidateDocument],
    ) -> Dict[str, Any]:
        counts: Dict[str, int] = {}
        for doc in documents:
            counts[doc.analysis_status.value] = counts.get(doc.analysis_status.value, 0) + 1
        notes = sum(len(d.notes) for d in documents)

        if status == "no_results":
            message = "No relevant sources found for this query."
        elif documents and counts.get("completed", 0) < len(documents):
            message = f"Gathered notes from {counts.get('completed', 0)} of {len(documents)} sources."
        else:
            message = f"Gathered {notes} notes from {len(documents)} sources."

        return {
            "status": status,
            "message": message,
            "keywords": keywords.model_dump(),
            "documents": [document_to_dict(d) for d in documents],
            "metadata": {
                "candidates": len(candidates),
                "filtered": len(documents),
                "completed": counts.get("completed", 0),
                "failed": counts.get("failed", 0),
                "stopped": counts.get("stopped", 0),
                "notes": notes,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
