"""
Exception types shared across the pipeline.

Two families cross component boundaries:
- ProviderError: a language-model call failed on every configured provider
- FetchError: a document could not be acquired (one subclass per failure kind)
"""

from typing import Optional


class ConfigError(RuntimeError):
    """Required configuration (usually an API key) is missing."""


class OperationCancelled(Exception):
    """The caller's CancelToken fired before the operation finished."""


# --- Language-model providers ---

class ProviderError(Exception):
    """Base class for classified language-model failures."""
    kind = "provider_error"


class ProviderTimeout(ProviderError):
    kind = "timeout"


class ProviderHTTPError(ProviderError):
    kind = "http_error"

    def __init__(self, status: Optional[int], message: str = ""):
        self.status = status
        super().__init__(message or f"provider returned HTTP {status}")


class ProviderResponseError(ProviderError):
    """The provider answered but the payload was not usable JSON."""
    kind = "bad_response"


class NoProviderConfigured(ProviderError):
    kind = "no_provider"


# --- Document acquisition ---

class FetchError(Exception):
    """Base class for document fetch failures."""
    kind = "fetch_error"

    def __init__(self, uri: str, message: str = ""):
        self.uri = uri
        super().__init__(message or f"{self.kind}: {uri}")


class InvalidUri(FetchError):
    kind = "invalid_uri"


class FetchTimeout(FetchError):
    kind = "timeout"


class NotPdf(FetchError):
    kind = "not_pdf"

    def __init__(self, uri: str, content_type: str = ""):
        self.content_type = content_type
        super().__init__(uri, f"not_pdf: {uri} (content-type {content_type!r})")


class TooLarge(FetchError):
    kind = "too_large"

    def __init__(self, uri: str, size: int):
        self.size = size
        super().__init__(uri, f"too_large: {uri} ({size} bytes)")


class HttpError(FetchError):
    kind = "http_error"

    def __init__(self, uri: str, status_code: int):
        self.status_code = status_code
        super().__init__(uri, f"HTTP_{status_code}: {uri}")


class NetworkError(FetchError):
    kind = "network_error"
