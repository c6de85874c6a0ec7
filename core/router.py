import logging
from typing import Callable, Optional, Sequence

from core.config import Settings
from core.state import Stage
from interfaces.status_sink import StatusSink
from utils.cancellation import CancellationToken
from utils.errors import ErrorKind, ProviderError
from utils.llm_api import ADAPTERS, ProviderAdapter

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "gemini": "gemini-2.0-flash",
    "anthropic": "claude-3-7-sonnet-20250219",
}

PROVIDER_DISPLAY_NAMES = {
    "openai": "OpenAI",
    "gemini": "Gemini",
    "anthropic": "Anthropic",
}

# Progress milestone reported just before each stage's network round-trip
STAGE_PROGRESS = {
    Stage.EXTRACTION: ("Analyzing problem from screenshots...", 20),
    Stage.SOLUTION: ("Creating optimal solution with detailed explanations...", 60),
    Stage.DEBUGGING: ("Analyzing code and generating debug feedback...", 60),
}

SYSTEM_PROMPTS = {
    Stage.EXTRACTION: (
        "You are a coding challenge interpreter. Analyze the screenshot of the coding problem and extract all relevant information. "
        "Return the information in JSON format with these fields: problem_statement, constraints, example_input, example_output. "
        "Just return the structured JSON without any other text."
    ),
    Stage.SOLUTION: (
        "You are an expert coding interview assistant. Provide clear, optimal solutions with detailed explanations."
    ),
    Stage.DEBUGGING: (
        "You are a coding interview assistant helping debug and improve solutions. "
        "Identify issues, suggest corrections and optimizations, and explain the changes clearly using the requested section headers."
    ),
}


def build_adapter(settings: Settings) -> Optional[ProviderAdapter]:
    """Creates the adapter for the selected provider, or None when it has no API key."""
    if not settings.api_key:
        logger.warning(f"No API key provided for {settings.api_provider}. Client not initialized.")
        return None
    adapter_cls = ADAPTERS[settings.api_provider]
    return adapter_cls(
        settings.api_key,
        timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        requests_per_minute=settings.requests_per_minute,
    )


class ModelRouter:
    """
    Picks provider, model and system instruction for a stage and dispatches
    to the current adapter. The adapter is only rebuilt through `configure()`.
    """

    def __init__(self, status_sink: StatusSink, settings: Optional[Settings] = None,
                 adapter: Optional[ProviderAdapter] = None,
                 adapter_factory: Callable[[Settings], Optional[ProviderAdapter]] = build_adapter):
        self.status_sink = status_sink
        self.settings = settings or Settings()
        self.adapter = adapter
        self.adapter_factory = adapter_factory

    @property
    def has_client(self) -> bool:
        return self.adapter is not None

    def configure(self, settings: Settings) -> None:
        self.settings = settings
        try:
            self.adapter = self.adapter_factory(settings)
        except Exception as e:
            logger.error(f"Failed to initialize AI client: {e}", exc_info=True)
            self.adapter = None
        if self.adapter:
            logger.info(f"Router configured for {self.adapter}.")

    def resolve_model(self, stage: Stage) -> str:
        return self.settings.model_for(stage) or DEFAULT_MODELS[self.settings.api_provider]

    async def dispatch(
        self,
        prompt: str,
        images: Sequence[str],
        stage: Stage,
        cancellation: Optional[CancellationToken] = None,
    ) -> str:
        """
        Runs one stage round-trip and returns the raw model text.

        Raises:
            ProviderError: MISSING_CREDENTIAL before any network call when no
                adapter is configured; otherwise whatever the adapter raised.
        """
        provider = self.settings.api_provider
        if self.adapter is None:
            display_name = PROVIDER_DISPLAY_NAMES[provider]
            raise ProviderError(
                ErrorKind.MISSING_CREDENTIAL,
                f"{display_name} API key not configured. Please check your settings.",
                provider,
            )

        model_name = self.resolve_model(stage)
        message, progress = STAGE_PROGRESS[stage]
        self.status_sink.notify(message, progress)
        logger.info(f"Dispatching {stage.value} stage to {provider} ({model_name}).")

        return await self.adapter.send(
            prompt,
            images,
            model_name,
            cancellation=cancellation,
            system_prompt=SYSTEM_PROMPTS[stage],
        )
