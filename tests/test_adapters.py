from __future__ import annotations

import json

import httpx
import pytest

from deep_research.backends.arxiv import ArxivAdapter
from deep_research.backends.base import boolean_and_query, split_combination
from deep_research.backends.google_cse import GoogleCSEAdapter
from deep_research.backends.grounding import GroundingAdapter
from deep_research.backends.llm import GeminiProvider
from deep_research.backends.openalex import OpenAlexAdapter, rebuild_abstract
from deep_research.models import StructuredKeywords

ARXIV_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <entry>
    <id>http://arxiv.org/abs/2101.00001v1</id>
    <published>2021-01-01T00:00:00Z</published>
    <title>Coral reef
      bleaching under warming</title>
    <summary>  We study bleaching.  </summary>
    <author><name>Ada Lovelace</name></author>
    <author><name>Alan Turing</name></author>
    <link href="http://arxiv.org/abs/2101.00001v1" rel="alternate" type="text/html"/>
    <link title="pdf" href="http://arxiv.org/pdf/2101.00001v1" rel="related" type="application/pdf"/>
  </entry>
  <entry>
    <id>http://arxiv.org/abs/2101.00002v2</id>
    <title>No pdf link</title>
    <summary>Abstract.</summary>
  </entry>
</feed>
"""


def _keywords(**kwargs) -> StructuredKeywords:
    return StructuredKeywords(**kwargs)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_split_combination_strips_quotes_and_empty_terms():
    assert split_combination('"world war 1" AND food AND ') == ["world war 1", "food"]


def test_boolean_and_query_prefers_first_combination():
    keywords = _keywords(primary="graphene", secondary=["battery"], combinations=["graphene AND battery", "graphene"])
    assert boolean_and_query(keywords, []) == "graphene AND battery"


def test_arxiv_query_ors_field_scoped_combinations():
    keywords = _keywords(
        primary="climate change",
        combinations=["climate change AND coral reefs", "climate change"],
    )

    query = ArxivAdapter(client=_client(lambda r: httpx.Response(200))).build_query(keywords, ["climate change"], [])

    assert query == "(abs:(climate AND change) AND abs:(coral AND reefs)) OR abs:(climate AND change)"


def test_arxiv_parse_feed_and_normalize():
    adapter = ArxivAdapter(client=_client(lambda r: httpx.Response(200)))

    entries = adapter.parse_feed(ARXIV_FEED)
    first = adapter.normalize(entries[0], "q")
    second = adapter.normalize(entries[1], "q")

    assert first.title == "Coral reef bleaching under warming"
    assert first.summary == "We study bleaching."
    assert first.authors == ["Ada Lovelace", "Alan Turing"]
    assert first.document_uri == "http://arxiv.org/pdf/2101.00001v1"
    assert first.source_api == "arxiv"
    assert second.document_uri == "http://arxiv.org/pdf/2101.00002v2.pdf"


@pytest.mark.asyncio
async def test_arxiv_search_sends_query_and_result_cap():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, text=ARXIV_FEED)

    adapter = ArxivAdapter(client=_client(handler))
    entries = await adapter.search("abs:coral")

    assert len(entries) == 2
    assert seen["params"]["search_query"] == "abs:coral"
    assert seen["params"]["max_results"] == "50"


def test_openalex_rebuilds_abstract_in_position_order():
    assert rebuild_abstract({"world": [1], "hello": [0], "again": [3], "hello ": []}) == "hello world again"
    assert rebuild_abstract(None) == ""


def test_openalex_normalize_picks_first_available_pdf_location():
    adapter = OpenAlexAdapter(client=_client(lambda r: httpx.Response(200)))
    raw = {
        "id": "https://openalex.org/W1",
        "display_name": "Reefs",
        "best_oa_location": {"pdf_url": None},
        "primary_location": None,
        "locations": [{"pdf_url": None}, {"pdf_url": "https://repo.org/w1.pdf"}],
        "authorships": [{"author": {"display_name": "Grace Hopper"}}, {"author": None}],
        "abstract_inverted_index": {"Reefs": [0], "matter": [1]},
        "publication_year": 2020,
    }

    doc = adapter.normalize(raw, "reefs")

    assert doc.document_uri == "https://repo.org/w1.pdf"
    assert doc.authors == ["Grace Hopper"]
    assert doc.summary == "Reefs matter"
    assert doc.published_date == "2020"
    assert adapter.normalize({"id": "W2", "locations": []}, "reefs") is None


@pytest.mark.asyncio
async def test_openalex_search_filters_fulltext_and_sends_mailto():
    seen = {}

    def handler(request):
        seen.update(dict(request.url.params))
        return httpx.Response(200, json={"results": [{"id": "W1"}]})

    adapter = OpenAlexAdapter(mailto="me@example.org", client=_client(handler))

    assert await adapter.search("reefs") == [{"id": "W1"}]
    assert seen["filter"] == "has_fulltext:true"
    assert seen["mailto"] == "me@example.org"


@pytest.mark.asyncio
async def test_google_cse_failed_page_does_not_discard_others():
    starts = []

    def handler(request):
        start = int(request.url.params["start"])
        starts.append(start)
        assert request.url.params["fileType"] == "pdf"
        if start == 21:
            return httpx.Response(429)
        if start == 41:
            raise httpx.ConnectError("down", request=request)
        return httpx.Response(200, json={"items": [{"link": f"https://x.org/{start}.pdf", "title": str(start)}]})

    adapter = GoogleCSEAdapter("key", "cx", client=_client(handler))
    items = await adapter.search("reefs")

    assert sorted(starts) == [1, 11, 21, 31, 41]
    assert sorted(i["title"] for i in items) == ["1", "11", "31"]


def test_google_cse_normalize_requires_pdf_link():
    adapter = GoogleCSEAdapter("key", "cx", client=_client(lambda r: httpx.Response(200)))

    assert adapter.normalize({"link": "https://x.org/page.html"}, "q") is None
    doc = adapter.normalize({"link": "https://x.org/a.PDF", "snippet": "s"}, "q")
    assert doc.summary == "s"
    assert doc.title == "Untitled PDF"


def test_grounding_query_restricts_to_pdfs_on_academic_hosts():
    provider = GeminiProvider("k", "m", client=_client(lambda r: httpx.Response(200)))
    adapter = GroundingAdapter(provider)

    query = adapter.build_query(_keywords(primary="reefs"), ["coral reefs"], ["why do they bleach?"])

    assert query.startswith("Find academic research papers about coral reefs that answer: why do they bleach?")
    assert "filetype:pdf" in query
    assert "site:arxiv.org" in query


@pytest.mark.asyncio
async def test_grounding_search_reads_text_papers_and_chunks():
    text = json.dumps({"papers": [{"title": "A", "pdf_url": "https://arxiv.org/pdf/1.pdf", "year": 2020}, "junk"]})
    payload = {"candidates": [{
        "content": {"parts": [{"text": text}]},
        "groundingMetadata": {"groundingChunks": [{"web": {"uri": "https://mdpi.com/2.pdf", "title": "B"}}]},
    }]}
    provider = GeminiProvider("k", "m", client=_client(lambda r: httpx.Response(200, json=payload)))
    adapter = GroundingAdapter(provider)

    raw = await adapter.search("query")
    docs = [adapter.normalize(r, "query") for r in raw]

    assert [d.document_uri for d in docs] == ["https://arxiv.org/pdf/1.pdf", "https://mdpi.com/2.pdf"]
    assert docs[0].published_date == "2020"
    assert adapter.normalize({"pdf_url": "ftp://nope"}, "query") is None
