import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import openai
import pytest
from google.genai import errors as genai_errors

import utils.llm_api as llm_api
from utils.cancellation import CancellationToken
from utils.errors import ErrorKind, ProviderError
from utils.llm_api import (
    MAX_OUTPUT_TOKENS,
    TEMPERATURE,
    AnthropicAdapter,
    GeminiAdapter,
    OpenAIAdapter,
)

IMAGE = "QUJD"  # base64 of b"ABC"


@pytest.fixture(autouse=True)
def no_retry_backoff(monkeypatch):
    monkeypatch.setattr(llm_api, "RETRY_BACKOFF", 0)


def _http_response(status, url="https://api.example.com/v1"):
    return httpx.Response(status, request=httpx.Request("POST", url))


def _openai_client(content="openai answer"):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])
    )
    return client


def _gemini_response(text="gemini answer"):
    return SimpleNamespace(
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=[SimpleNamespace(text=text)]), finish_reason="STOP")]
    )


def _gemini_client(response=None):
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=response or _gemini_response())
    return client


def _anthropic_client(blocks=None):
    client = MagicMock()
    if blocks is None:
        blocks = [SimpleNamespace(type="text", text="claude answer")]
    client.messages.create = AsyncMock(return_value=SimpleNamespace(content=blocks))
    return client


def _gemini_error(code, message, status):
    error_cls = genai_errors.ServerError if code >= 500 else genai_errors.ClientError
    return error_cls(code, {"error": {"code": code, "message": message, "status": status}}, None)


def _send(adapter, **kwargs):
    return asyncio.run(adapter.send("Solve this", [IMAGE], "some-model", **kwargs))


def test_openai_payload_shape():
    client = _openai_client()
    adapter = OpenAIAdapter("key", client=client)

    assert _send(adapter, system_prompt="be helpful") == "openai answer"

    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "some-model"
    assert kwargs["temperature"] == TEMPERATURE
    assert kwargs["max_tokens"] == MAX_OUTPUT_TOKENS
    system, user = kwargs["messages"]
    assert system == {"role": "system", "content": "be helpful"}
    assert user["content"][0] == {"type": "text", "text": "Solve this"}
    assert user["content"][1] == {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{IMAGE}"}}


def test_gemini_payload_shape():
    client = _gemini_client()
    adapter = GeminiAdapter("key", client=client)

    assert _send(adapter, system_prompt="ignored") == "gemini answer"

    kwargs = client.aio.models.generate_content.await_args.kwargs
    assert kwargs["model"] == "some-model"
    assert kwargs["config"].temperature == TEMPERATURE
    assert kwargs["config"].max_output_tokens == MAX_OUTPUT_TOKENS
    (content,) = kwargs["contents"]
    assert content.role == "user"
    assert content.parts[0].text == "Solve this"
    assert content.parts[1].inline_data.mime_type == "image/png"
    assert content.parts[1].inline_data.data == b"ABC"


def test_anthropic_payload_shape():
    client = _anthropic_client()
    adapter = AnthropicAdapter("key", client=client)

    assert _send(adapter) == "claude answer"

    kwargs = client.messages.create.await_args.kwargs
    assert kwargs["temperature"] == TEMPERATURE
    assert kwargs["max_tokens"] == MAX_OUTPUT_TOKENS
    (message,) = kwargs["messages"]
    assert message["role"] == "user"
    assert message["content"] == [
        {"type": "text", "text": "Solve this"},
        {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": IMAGE}},
    ]


@pytest.mark.parametrize("adapter", [
    OpenAIAdapter("key", client=_openai_client(content=None)),
    GeminiAdapter("key", client=_gemini_client(SimpleNamespace(candidates=[], prompt_feedback=None))),
    AnthropicAdapter("key", client=_anthropic_client(blocks=[])),
], ids=["openai", "gemini", "anthropic"])
def test_missing_text_is_no_content(adapter):
    with pytest.raises(ProviderError) as exc_info:
        _send(adapter)
    assert exc_info.value.kind is ErrorKind.NO_CONTENT
    assert exc_info.value.message == "No response content"


def test_rate_limit_maps_to_rate_limited_for_each_provider():
    openai_client = _openai_client()
    openai_client.chat.completions.create.side_effect = openai.RateLimitError(
        "slow down", response=_http_response(429), body=None
    )
    gemini_client = _gemini_client()
    gemini_client.aio.models.generate_content.side_effect = _gemini_error(429, "Resource exhausted", "RESOURCE_EXHAUSTED")
    anthropic_client = _anthropic_client()
    anthropic_client.messages.create.side_effect = anthropic.RateLimitError(
        "slow down", response=_http_response(429), body=None
    )

    expected = {
        "openai": (OpenAIAdapter("key", client=openai_client), "OpenAI API rate limit exceeded"),
        "gemini": (GeminiAdapter("key", client=gemini_client), "Gemini API rate limit exceeded"),
        "anthropic": (AnthropicAdapter("key", client=anthropic_client), "Claude API rate limit exceeded"),
    }
    for provider, (adapter, message_start) in expected.items():
        with pytest.raises(ProviderError) as exc_info:
            _send(adapter)
        error = exc_info.value
        assert error.kind is ErrorKind.RATE_LIMITED
        assert error.provider == provider
        assert error.status_code == 429
        assert error.message.startswith(message_start)


def test_openai_status_codes():
    cases = [
        (openai.AuthenticationError("bad key", response=_http_response(401), body=None), ErrorKind.INVALID_CREDENTIAL),
        (openai.APIStatusError("too big", response=_http_response(413), body=None), ErrorKind.PAYLOAD_TOO_LARGE),
        (openai.InternalServerError("oops", response=_http_response(500), body=None), ErrorKind.VENDOR_SERVER_ERROR),
        (openai.BadRequestError("bad", response=_http_response(400), body=None), ErrorKind.GENERIC),
    ]
    for error, kind in cases:
        client = _openai_client()
        client.chat.completions.create.side_effect = error
        with pytest.raises(ProviderError) as exc_info:
            _send(OpenAIAdapter("key", client=client))
        assert exc_info.value.kind is kind
    assert OpenAIAdapter.error_messages[ErrorKind.INVALID_CREDENTIAL] == "Invalid OpenAI API key. Please check your settings."


def test_anthropic_payload_too_large_advises_switching_provider():
    client = _anthropic_client()
    client.messages.create.side_effect = anthropic.APIStatusError(
        "request too large", response=_http_response(413), body=None
    )
    with pytest.raises(ProviderError) as exc_info:
        _send(AnthropicAdapter("key", client=client))
    assert exc_info.value.kind is ErrorKind.PAYLOAD_TOO_LARGE
    assert "Switch to OpenAI or Gemini" in exc_info.value.message


@pytest.mark.parametrize("code,message,status,kind", [
    (400, "API key not valid. Please pass a valid API key.", "INVALID_ARGUMENT", ErrorKind.INVALID_CREDENTIAL),
    (403, "Permission denied", "PERMISSION_DENIED", ErrorKind.INVALID_CREDENTIAL),
    (401, "Unauthenticated", "UNAUTHENTICATED", ErrorKind.INVALID_CREDENTIAL),
    (413, "Request payload size exceeds the limit", "INVALID_ARGUMENT", ErrorKind.PAYLOAD_TOO_LARGE),
    (503, "Overloaded", "UNAVAILABLE", ErrorKind.VENDOR_SERVER_ERROR),
    (400, "Invalid JSON payload", "INVALID_ARGUMENT", ErrorKind.GENERIC),
])
def test_gemini_status_codes(code, message, status, kind):
    client = _gemini_client()
    client.aio.models.generate_content.side_effect = _gemini_error(code, message, status)
    with pytest.raises(ProviderError) as exc_info:
        _send(GeminiAdapter("key", client=client))
    assert exc_info.value.kind is kind


def test_unknown_exception_is_generic_with_message():
    client = _openai_client()
    client.chat.completions.create.side_effect = RuntimeError("connection reset")
    with pytest.raises(ProviderError) as exc_info:
        _send(OpenAIAdapter("key", client=client))
    assert exc_info.value.kind is ErrorKind.GENERIC
    assert exc_info.value.message == "connection reset"


def test_cancel_during_request_is_canceled_kind():
    async def hang(**kwargs):
        await asyncio.Event().wait()

    client = _anthropic_client()
    client.messages.create = AsyncMock(side_effect=hang)
    adapter = AnthropicAdapter("key", client=client)

    async def scenario():
        token = CancellationToken()
        task = asyncio.create_task(adapter.send("p", [IMAGE], "m", cancellation=token))
        await asyncio.sleep(0.01)
        token.cancel()
        return await task

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.kind is ErrorKind.CANCELED
    assert exc_info.value.message == "Request was canceled by the user."


def test_already_cancelled_token_skips_network_call():
    client = _openai_client()
    adapter = OpenAIAdapter("key", client=client)

    async def scenario():
        token = CancellationToken()
        token.cancel()
        return await adapter.send("p", [], "m", cancellation=token)

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.kind is ErrorKind.CANCELED
    client.chat.completions.create.assert_not_called()


def test_local_request_budget_surfaces_as_rate_limited():
    client = _gemini_client()
    adapter = GeminiAdapter("key", client=client, requests_per_minute=1)

    assert _send(adapter) == "gemini answer"
    with pytest.raises(ProviderError) as exc_info:
        _send(adapter)
    assert exc_info.value.kind is ErrorKind.RATE_LIMITED
    assert client.aio.models.generate_content.await_count == 1


@pytest.mark.parametrize("error,kind,message", [
    (anthropic.AuthenticationError("bad key", response=_http_response(401), body=None),
     ErrorKind.INVALID_CREDENTIAL, "Invalid Anthropic API key. Please check your settings."),
    (anthropic.InternalServerError("oops", response=_http_response(500), body=None),
     ErrorKind.VENDOR_SERVER_ERROR, "Claude server error. Please try again later."),
], ids=["401", "500"])
def test_anthropic_status_codes(error, kind, message):
    client = _anthropic_client()
    client.messages.create.side_effect = error
    with pytest.raises(ProviderError) as exc_info:
        _send(AnthropicAdapter("key", client=client))
    assert exc_info.value.kind is kind
    assert exc_info.value.message == message


def test_sdk_clients_do_not_retry_on_their_own():
    assert OpenAIAdapter("key").client.max_retries == 0
    assert AnthropicAdapter("key").client.max_retries == 0


def test_openai_429_sent_once_over_http():
    attempts = []

    def handler(request):
        attempts.append(request.url.path)
        return httpx.Response(429, json={"error": {"message": "Rate limit reached", "type": "requests"}})

    adapter = OpenAIAdapter("key", max_retries=2)
    adapter.client = adapter.client.with_options(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    with pytest.raises(ProviderError) as exc_info:
        _send(adapter)

    assert exc_info.value.kind is ErrorKind.RATE_LIMITED
    assert len(attempts) == 1


def test_server_errors_retried_up_to_max_retries():
    client = _anthropic_client()
    client.messages.create.side_effect = anthropic.InternalServerError(
        "oops", response=_http_response(503), body=None
    )
    with pytest.raises(ProviderError) as exc_info:
        _send(AnthropicAdapter("key", client=client, max_retries=2))
    assert exc_info.value.kind is ErrorKind.VENDOR_SERVER_ERROR
    assert client.messages.create.await_count == 3


def test_connection_error_retried_then_succeeds():
    client = _openai_client()
    ok = client.chat.completions.create.return_value
    client.chat.completions.create.side_effect = [
        openai.APIConnectionError(request=httpx.Request("POST", "https://api.example.com/v1")),
        ok,
    ]
    assert _send(OpenAIAdapter("key", client=client, max_retries=1)) == "openai answer"
    assert client.chat.completions.create.await_count == 2


@pytest.mark.parametrize("status", [400, 401, 408, 409, 429])
def test_vendor_4xx_not_retried(status):
    client = _openai_client()
    client.chat.completions.create.side_effect = openai.APIStatusError(
        "client error", response=_http_response(status), body=None
    )
    with pytest.raises(ProviderError):
        _send(OpenAIAdapter("key", client=client, max_retries=2))
    assert client.chat.completions.create.await_count == 1
