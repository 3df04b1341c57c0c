"""
Runtime configuration read from the environment.

The CLI calls load_dotenv() before Settings.from_env(), so a local .env file
works the same as exported variables.
"""

import logging
import os
from typing import Optional

from pydantic import BaseModel

from deep_research.errors import ConfigError

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    # Language models / embeddings
    gemini_api_key: str
    gemini_model: str = "gemini-2.0-flash"
    gemini_embedding_model: str = "gemini-embedding-001"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    # Search sources
    google_search_key: Optional[str] = None
    google_search_cx: Optional[str] = None
    openalex_mailto: Optional[str] = None
    enable_grounding_search: bool = True

    # Output
    notes_path: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from os.environ. Missing GEMINI_API_KEY is fatal."""
        gemini_key = os.environ.get("GEMINI_API_KEY")
        if not gemini_key:
            raise ConfigError("GEMINI_API_KEY not set")

        env = os.environ.get
        settings = cls(
            gemini_api_key=gemini_key,
            gemini_model=env("GEMINI_MODEL") or cls.model_fields["gemini_model"].default,
            gemini_embedding_model=env("GEMINI_EMBEDDING_MODEL") or cls.model_fields["gemini_embedding_model"].default,
            openai_api_key=env("OPENAI_API_KEY") or None,
            openai_model=env("OPENAI_MODEL") or cls.model_fields["openai_model"].default,
            google_search_key=env("GOOGLE_SEARCH_KEY") or None,
            google_search_cx=env("GOOGLE_SEARCH_CX") or None,
            openalex_mailto=env("OPENALEX_MAILTO") or None,
            enable_grounding_search=(env("ENABLE_GROUNDING_SEARCH", "true").lower() not in ("0", "false", "no")),
            notes_path=env("NOTES_PATH") or None,
            log_level=env("LOG_LEVEL", "INFO").upper(),
        )

        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY not set, running without a fallback language model")
        if not (settings.google_search_key and settings.google_search_cx):
            logger.warning("GOOGLE_SEARCH_KEY/GOOGLE_SEARCH_CX not set, Google CSE source disabled")
        return settings
