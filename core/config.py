"""
Runtime configuration.

Environment variables (a .env file is loaded first):
- API_PROVIDER: openai | gemini | anthropic (default: openai)
- OPENAI_API_KEY, GEMINI_API_KEY, ANTHROPIC_API_KEY
- EXTRACTION_MODEL, SOLUTION_MODEL, DEBUGGING_MODEL: per-stage model overrides
- LANGUAGE: preferred solution language
- REQUEST_TIMEOUT (seconds), MAX_RETRIES, REQUESTS_PER_MINUTE
"""
import logging
import os
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

from dotenv import load_dotenv

from core.state import Stage

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "gemini", "anthropic")
DEFAULT_PROVIDER = "openai"
DEFAULT_REQUEST_TIMEOUT = 60.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_REQUESTS_PER_MINUTE = 60


@dataclass(frozen=True)
class Settings:
    """Read-only configuration snapshot."""
    api_provider: str = DEFAULT_PROVIDER
    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    extraction_model: Optional[str] = None
    solution_model: Optional[str] = None
    debugging_model: Optional[str] = None
    language: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE

    def __post_init__(self):
        if self.api_provider not in PROVIDERS:
            raise ValueError(f"Unsupported API provider: {self.api_provider}. Available: {list(PROVIDERS)}")

    @property
    def api_key(self) -> Optional[str]:
        return getattr(self, f"{self.api_provider}_api_key")

    def model_for(self, stage: Stage) -> Optional[str]:
        return {
            Stage.EXTRACTION: self.extraction_model,
            Stage.SOLUTION: self.solution_model,
            Stage.DEBUGGING: self.debugging_model,
        }[stage]


def _env_number(name: str, default, cast):
    value = os.getenv(name)
    if not value:
        return default
    try:
        return cast(value)
    except ValueError:
        logger.warning("%s in environment is not a valid number. Using default value: %s", name, default)
        return default


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Builds a Settings snapshot from the environment.

    Args:
        env_file: Optional path to a .env file; defaults to python-dotenv's lookup.

    Raises:
        ValueError: If API_PROVIDER names an unsupported provider.
    """
    load_dotenv(env_file)
    settings = Settings(
        api_provider=(os.getenv("API_PROVIDER") or DEFAULT_PROVIDER).strip().lower(),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
        extraction_model=os.getenv("EXTRACTION_MODEL") or None,
        solution_model=os.getenv("SOLUTION_MODEL") or None,
        debugging_model=os.getenv("DEBUGGING_MODEL") or None,
        language=os.getenv("LANGUAGE") or None,
        request_timeout=_env_number("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT, float),
        max_retries=_env_number("MAX_RETRIES", DEFAULT_MAX_RETRIES, int),
        requests_per_minute=_env_number("REQUESTS_PER_MINUTE", DEFAULT_REQUESTS_PER_MINUTE, int),
    )
    logger.info(f"Settings loaded for provider '{settings.api_provider}' (API key configured: {bool(settings.api_key)})")
    return settings


class ConfigSource:
    """Holds the current Settings and tells subscribers when they change."""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or Settings()
        self._listeners: List[Callable[[Settings], None]] = []

    def snapshot(self) -> Settings:
        return self._settings

    def update(self, **changes) -> Settings:
        self._settings = replace(self._settings, **changes)
        logger.info(f"Configuration updated: {sorted(k for k in changes if not k.endswith('api_key'))}")
        for listener in list(self._listeners):
            listener(self._settings)
        return self._settings

    def subscribe(self, listener: Callable[[Settings], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
