"""
Language-model providers.

Two interchangeable providers share one interface:
- GeminiProvider (primary): Google Generative Language REST API
- OpenAIProvider (secondary): OpenAI chat completions

Both use httpx for async HTTP requests and return raw text; JSON parsing and
provider switching live in ProviderFallbackClient.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from deep_research.errors import ProviderHTTPError, ProviderResponseError, ProviderTimeout

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a precise research analyst. Output valid JSON only."


class LLMResponse:
    """Response from a provider."""
    def __init__(self, content: str, provider: str = "", grounding: Optional[List[dict]] = None):
        self.content = content
        self.provider = provider
        self.grounding = grounding or []


def _schema_instruction(schema_hint: Optional[Any]) -> str:
    if schema_hint is None:
        return SYSTEM_PROMPT
    return f"{SYSTEM_PROMPT}\nThe JSON must have this shape:\n{json.dumps(schema_hint, indent=2)}"


def _log_call(name: str, prompt: str, label: Optional[str]) -> None:
    if label:
        logger.info(f"LLM[{name}]: {label}")
    else:
        prompt_preview = prompt[:60].replace('\n', ' ') + "..." if len(prompt) > 60 else prompt
        logger.info(f"LLM[{name}] call: {prompt_preview}")


class BaseProvider:
    """Shared HTTP plumbing. Subclasses build the payload and read the reply."""

    name = "base"

    def __init__(self, api_key: str, model: str, client: Optional[httpx.AsyncClient] = None):
        if not api_key:
            raise ValueError(f"{self.name} API key not set")
        self.api_key = api_key
        self.model = model
        self.client = client or httpx.AsyncClient(timeout=90.0)

    async def _post(self, url: str, payload: dict, headers: Dict[str, str]) -> dict:
        try:
            r = await self.client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"{self.name} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderHTTPError(None, f"{self.name} transport error: {e}") from e

        if r.status_code >= 400:
            raise ProviderHTTPError(r.status_code, f"{self.name} error {r.status_code}: {r.text[:200]}")
        try:
            return r.json()
        except ValueError as e:
            raise ProviderResponseError(f"{self.name} returned non-JSON body") from e

    async def close(self):
        await self.client.aclose()


class GeminiProvider(BaseProvider):
    """Gemini via the generateContent REST endpoint."""

    name = "gemini"
    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

    def _url(self) -> str:
        return f"{self.BASE_URL}/{self.model}:generateContent"

    def _headers(self) -> dict:
        return {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

    async def generate(self, prompt: str, schema_hint: Optional[Any] = None, label: Optional[str] = None) -> LLMResponse:
        _log_call(self.name, prompt, label)
        payload = {
            "systemInstruction": {"parts": [{"text": _schema_instruction(schema_hint)}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"responseMimeType": "application/json"},
        }
        data = await self._post(self._url(), payload, self._headers())
        content = self._candidate_text(data)
        logger.info(f"LLM[{self.name}] response: {len(content)} chars")
        return LLMResponse(content=content, provider=self.name)

    async def generate_grounded(self, prompt: str, label: Optional[str] = None) -> LLMResponse:
        """
        Ask Gemini with the Google Search tool enabled.
        The grounding chunks (web uri + title) are returned alongside the text.
        """
        _log_call(self.name, prompt, label)
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "tools": [{"google_search": {}}],
        }
        data = await self._post(self._url(), payload, self._headers())
        candidates = data.get("candidates") or []
        metadata = (candidates[0].get("groundingMetadata") or {}) if candidates else {}
        chunks = [c.get("web") for c in metadata.get("groundingChunks", []) if c.get("web")]
        try:
            content = self._candidate_text(data)
        except ProviderResponseError:
            content = ""
        return LLMResponse(content=content, provider=self.name, grounding=chunks)

    def _candidate_text(self, data: dict) -> str:
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderResponseError(f"{self.name} returned no candidates") from e
        return "".join(p.get("text", "") for p in parts)


class OpenAIProvider(BaseProvider):
    """OpenAI chat completions in JSON mode."""

    name = "openai"
    URL = "https://api.openai.com/v1/chat/completions"

    async def generate(self, prompt: str, schema_hint: Optional[Any] = None, label: Optional[str] = None) -> LLMResponse:
        _log_call(self.name, prompt, label)
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": _schema_instruction(schema_hint)},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        data = await self._post(self.URL, payload, headers)
        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderResponseError(f"{self.name} returned no choices") from e
        logger.info(f"LLM[{self.name}] response: {len(content)} chars")
        return LLMResponse(content=content, provider=self.name)
