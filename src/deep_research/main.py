"""
CLI Entrypoint for Deep Research

Runs the full pipeline on a set of topics and questions and outputs results as JSON.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys

from dotenv import load_dotenv

# Load .env file before importing modules that need env vars
load_dotenv()

from deep_research.acquisition import DocumentAcquisition
from deep_research.agent import DeepResearchAgent
from deep_research.backends.arxiv import ArxivAdapter
from deep_research.backends.embeddings import GeminiEmbeddings
from deep_research.backends.google_cse import GoogleCSEAdapter
from deep_research.backends.grounding import GroundingAdapter
from deep_research.backends.llm import GeminiProvider, OpenAIProvider
from deep_research.backends.openalex import OpenAlexAdapter
from deep_research.cache import EmbeddingCache
from deep_research.cancel import CancelToken
from deep_research.config import Settings
from deep_research.errors import ConfigError
from deep_research.extract import NoteExtractor
from deep_research.fallback import ProviderFallbackClient
from deep_research.models import SearchIntent
from deep_research.pages import PageSelector, PyMuPDFPageExtractor
from deep_research.planner import QueryPlanner
from deep_research.relevance import RelevanceFilter
from deep_research.search import SearchAggregator
from deep_research.sinks import JsonFileSink


def configure_logging(level: str = "INFO") -> None:
    # suppress noisy httpx logs
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# Parse command-line arguments
def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Deep Research - find papers and extract quotes that answer your questions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--topic", "-t",
        action="append",
        default=[],
        help="A research topic (repeatable)",
    )

    parser.add_argument(
        "--question", "-q",
        action="append",
        default=[],
        help="A question the papers should answer (repeatable)",
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Output file path (default: print to stdout)",
    )

    parser.add_argument(
        "--notes-file",
        type=str,
        default=None,
        help="Append each finished document as a JSON line to this file",
    )

    args = parser.parse_args(argv)
    if not args.topic and not args.question:
        parser.error("give at least one --topic or --question")
    return args


def build_agent(settings: Settings, notes_path: str = None) -> DeepResearchAgent:
    """Wire providers, adapters and pipeline stages from settings."""
    gemini = GeminiProvider(settings.gemini_api_key, settings.gemini_model)
    openai = OpenAIProvider(settings.openai_api_key, settings.openai_model) if settings.openai_api_key else None
    llm = ProviderFallbackClient(primary=gemini, secondary=openai)

    embeddings = GeminiEmbeddings(
        settings.gemini_api_key,
        model=settings.gemini_embedding_model,
        cache=EmbeddingCache(),
    )

    adapters = [ArxivAdapter(), OpenAlexAdapter(mailto=settings.openalex_mailto)]
    if settings.google_search_key and settings.google_search_cx:
        adapters.append(GoogleCSEAdapter(settings.google_search_key, settings.google_search_cx))
    if settings.enable_grounding_search:
        adapters.append(GroundingAdapter(gemini))

    path = notes_path or settings.notes_path
    return DeepResearchAgent(
        planner=QueryPlanner(llm),
        aggregator=SearchAggregator(adapters),
        relevance=RelevanceFilter(embeddings, llm),
        acquisition=DocumentAcquisition(),
        page_extractor=PyMuPDFPageExtractor(),
        page_selector=PageSelector(embeddings),
        extractor=NoteExtractor(llm),
        sink=JsonFileSink(path) if path else None,
    )


# Main entry point of the entire program
async def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level)
    agent = build_agent(settings, args.notes_file)
    intent = SearchIntent.create(args.topic, args.question)

    # Ctrl-C stops new work; notes gathered so far are still written out
    cancel = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
    except NotImplementedError:
        # no loop signal handlers on Windows; Ctrl-C aborts instead
        pass

    result = await agent.run(intent, cancel=cancel)

    # Format output as JSON
    output = json.dumps(result, indent=2, ensure_ascii=False)

    # Write output
    if args.output: # Write to file
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(output)
        print(f"Results saved to {args.output}", file=sys.stderr)
    else: # Print to stdout
        print(output)

    print(result["message"], file=sys.stderr)
    return 0


def run() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))


# Just some standard boilerplate
if __name__ == "__main__":
    run()
