"""
Document acquisition: fetch a PDF's bytes with classified failures.

One streamed GET per document:
- URI validated before any network call
- 15s timeout, descriptive User-Agent, redirects followed (hosts bounce to CDNs)
- content-type must look like a PDF before the body is read
- declared content-length checked against MAX_BYTES before reading, and the
  running total checked while reading (servers lie about content-length)
"""

import logging
from typing import Callable, Optional
from urllib.parse import urlparse

import httpx

from deep_research.cancel import CancelToken, guarded
from deep_research.errors import (
    FetchError,
    FetchTimeout,
    HttpError,
    InvalidUri,
    NetworkError,
    NotPdf,
    OperationCancelled,
    TooLarge,
)

logger = logging.getLogger(__name__)

MAX_BYTES = 25 * 1024 * 1024
FETCH_TIMEOUT = 15.0
USER_AGENT = "Mozilla/5.0 (compatible; DeepResearch/1.0; academic PDF fetcher)"
ACCEPT = "application/pdf,application/octet-stream;q=0.9,*/*;q=0.8"

OutcomeObserver = Callable[[str, str], None]


def validate_uri(uri: str) -> str:
    parsed = urlparse((uri or "").strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidUri(uri or "", f"invalid_uri: {uri!r}")
    return parsed.geturl()


def is_pdf_content_type(content_type: str) -> bool:
    value = content_type.lower()
    return "pdf" in value or "application/octet-stream" in value


class DocumentAcquisition:
    """Fetches document bytes; every outcome is logged and reported to `on_outcome`."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        max_bytes: int = MAX_BYTES,
        timeout: float = FETCH_TIMEOUT,
        on_outcome: Optional[OutcomeObserver] = None,
    ):
        self.max_bytes = max_bytes
        self.timeout = timeout
        self.on_outcome = on_outcome
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT, "Accept": ACCEPT},
        )

    def _report(self, uri: str, outcome: str) -> None:
        if self.on_outcome is not None:
            self.on_outcome(uri, outcome)

    async def fetch(self, uri: str, cancel: Optional[CancelToken] = None) -> bytes:
        try:
            data = await guarded(self._fetch(uri), cancel)
        except FetchError as e:
            logger.warning(f"PDF fetch failed for {uri}: {e.kind}")
            self._report(uri, e.kind)
            raise
        except OperationCancelled:
            self._report(uri, "cancelled")
            raise
        logger.info(f"Fetched PDF from {uri} ({len(data) / 1024:.1f}KB)")
        self._report(uri, "ok")
        return data

    async def _fetch(self, uri: str) -> bytes:
        url = validate_uri(uri)
        headers = {"User-Agent": USER_AGENT, "Accept": ACCEPT}
        try:
            async with self.client.stream("GET", url, headers=headers, timeout=self.timeout,
                                          follow_redirects=True) as resp:
                if resp.status_code >= 400:
                    raise HttpError(uri, resp.status_code)

                content_type = resp.headers.get("content-type", "")
                if not is_pdf_content_type(content_type):
                    raise NotPdf(uri, content_type)

                declared = resp.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > self.max_bytes:
                    raise TooLarge(uri, int(declared))

                chunks = []
                received = 0
                async for chunk in resp.aiter_bytes():
                    received += len(chunk)
                    if received > self.max_bytes:
                        raise TooLarge(uri, received)
                    chunks.append(chunk)
                return b"".join(chunks)
        except httpx.TimeoutException as e:
            raise FetchTimeout(uri) from e
        except httpx.InvalidURL as e:
            raise InvalidUri(uri) from e
        except httpx.HTTPError as e:
            raise NetworkError(uri, f"network_error: {uri} ({e!r})") from e

    async def close(self):
        await self.client.aclose()
