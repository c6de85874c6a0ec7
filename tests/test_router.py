import asyncio

import pytest

from core.config import Settings
from core.router import DEFAULT_MODELS, SYSTEM_PROMPTS, ModelRouter, build_adapter
from core.state import Stage
from utils.errors import ErrorKind, ProviderError
from utils.llm_api import AnthropicAdapter, GeminiAdapter, OpenAIAdapter

from conftest import RecordingSink, ScriptedAdapter


@pytest.mark.parametrize("provider", ["openai", "gemini", "anthropic"])
def test_default_model_per_provider(provider):
    router = ModelRouter(RecordingSink(), settings=Settings(api_provider=provider))
    for stage in Stage:
        assert router.resolve_model(stage) == DEFAULT_MODELS[provider]


def test_stage_override_wins():
    settings = Settings(api_provider="anthropic", solution_model="claude-3-5-sonnet-20241022")
    router = ModelRouter(RecordingSink(), settings=settings)
    assert router.resolve_model(Stage.SOLUTION) == "claude-3-5-sonnet-20241022"
    assert router.resolve_model(Stage.EXTRACTION) == "claude-3-7-sonnet-20250219"


@pytest.mark.parametrize("stage,message,progress", [
    (Stage.EXTRACTION, "Analyzing problem from screenshots...", 20),
    (Stage.SOLUTION, "Creating optimal solution with detailed explanations...", 60),
    (Stage.DEBUGGING, "Analyzing code and generating debug feedback...", 60),
])
def test_dispatch_reports_stage_milestone(stage, message, progress):
    sink = RecordingSink()
    adapter = ScriptedAdapter(["answer"])
    router = ModelRouter(sink, settings=Settings(openai_api_key="k"), adapter=adapter)

    result = asyncio.run(router.dispatch("prompt", ["img"], stage))

    assert result == "answer"
    assert sink.calls == [("processing-status", {"message": message, "progress": progress})]
    request = adapter.requests[0]
    assert request["model"] == "gpt-4o"
    assert request["images"] == ["img"]
    assert request["system_prompt"] == SYSTEM_PROMPTS[stage]


def test_missing_credential_raised_before_any_call():
    sink = RecordingSink()
    router = ModelRouter(sink, settings=Settings(api_provider="gemini"))

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(router.dispatch("prompt", [], Stage.EXTRACTION))

    assert exc_info.value.kind is ErrorKind.MISSING_CREDENTIAL
    assert exc_info.value.message == "Gemini API key not configured. Please check your settings."
    assert sink.calls == []


def test_build_adapter_picks_provider_class():
    assert build_adapter(Settings(api_provider="openai")) is None
    assert isinstance(build_adapter(Settings(api_provider="openai", openai_api_key="k")), OpenAIAdapter)
    assert isinstance(build_adapter(Settings(api_provider="gemini", gemini_api_key="k")), GeminiAdapter)
    assert isinstance(build_adapter(Settings(api_provider="anthropic", anthropic_api_key="k")), AnthropicAdapter)


def test_configure_rebuilds_adapter():
    built = []

    def factory(settings):
        adapter = ScriptedAdapter([]) if settings.api_key else None
        built.append(adapter)
        return adapter

    router = ModelRouter(RecordingSink(), adapter_factory=factory)
    router.configure(Settings())
    assert not router.has_client

    router.configure(Settings(openai_api_key="k"))
    assert router.has_client
    assert router.adapter is built[-1]
