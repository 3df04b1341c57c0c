"""
Provider fallback: one place for model-call timeouts and provider switching.

Every structured model call in the pipeline goes through ProviderFallbackClient.call().
The primary provider is raced against a timeout; on error or timeout the same
prompt is sent once to the secondary provider. If both fail, a classified
ProviderError is raised and the caller picks its own fallback value.
"""

import asyncio
import json
import logging
from typing import Any, Optional

from deep_research.errors import NoProviderConfigured, ProviderError, ProviderResponseError, ProviderTimeout

logger = logging.getLogger(__name__)


def parse_json_content(content: str) -> Any:
    """Parse model output as JSON, stripping markdown code fences if present."""
    text = content.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]
        if lines and lines[-1].strip().startswith("```"):
            lines = lines[:-1]
        text = "\n".join(lines).strip()
    try:
        return json.loads(text)
    except ValueError as e:
        raise ProviderResponseError(f"model returned invalid JSON: {text[:80]!r}") from e


class ProviderFallbackClient:
    """Primary/secondary provider wrapper with identical semantics for every call site."""

    def __init__(self, primary=None, secondary=None):
        self.primary = primary
        self.secondary = secondary

    @property
    def configured(self) -> bool:
        return self.primary is not None or self.secondary is not None

    async def call(
        self,
        prompt: str,
        timeout: float,
        schema_hint: Optional[Any] = None,
        label: Optional[str] = None,
    ) -> Any:
        """Return parsed JSON from the first provider that answers in time."""
        providers = [p for p in (self.primary, self.secondary) if p is not None]
        if not providers:
            raise NoProviderConfigured("no language model provider configured")

        last_error: Optional[ProviderError] = None
        for provider in providers:
            name = getattr(provider, "name", type(provider).__name__)
            try:
                response = await asyncio.wait_for(
                    provider.generate(prompt, schema_hint=schema_hint, label=label),
                    timeout=timeout,
                )
                return parse_json_content(response.content)
            except asyncio.TimeoutError:
                last_error = ProviderTimeout(f"{name} timed out after {timeout:.0f}s")
            except ProviderError as e:
                last_error = e
            logger.warning(f"Provider {name} failed ({label or 'call'}): {last_error}")

        raise last_error
