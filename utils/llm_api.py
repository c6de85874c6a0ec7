import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type

import anthropic
import openai
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from ratelimit import RateLimitException, limits

from utils.cancellation import CancellationToken, RequestCancelled
from utils.errors import ErrorKind, ProviderError, kind_for_status

logger = logging.getLogger(__name__)

# Shared generation parameters for every provider
TEMPERATURE = 0.2
MAX_OUTPUT_TOKENS = 4000
IMAGE_MIME_TYPE = "image/png"

DEFAULT_TIMEOUT = 60.0  # seconds
DEFAULT_MAX_RETRIES = 2
DEFAULT_REQUESTS_PER_MINUTE = 60
RETRY_BACKOFF = 1.0  # seconds, doubled after each attempt

# Only transient server-side failures are retried, never vendor 4xx
GEMINI_RETRY_STATUS_CODES = [500, 502, 503, 504]

CANCELED_MESSAGE = "Request was canceled by the user."
NO_CONTENT_MESSAGE = "No response content"
DEFAULT_FAILURE_MESSAGE = "Failed to process request. Please try again."


class ProviderAdapter(ABC):
    """
    Uniform `send` call over one vendor's vision/chat API.

    Subclasses implement `_request` (build the vendor payload, perform the
    round-trip, pull the text out) and `_status_of` (read an HTTP status from
    a vendor exception). Throttling, cancellation and error translation are
    handled here so every provider surfaces the same ErrorKinds.
    """
    provider_name = "base"
    display_name = "AI"
    error_messages: Dict[ErrorKind, str] = {}
    # Exceptions that never reached the vendor, retried like 5xx responses
    transient_errors: Tuple[Type[Exception], ...] = ()

    def __init__(
        self,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.requests_per_minute = requests_per_minute
        # Client-side budget; raises RateLimitException instead of sleeping so the event loop never blocks
        self._throttled_request = limits(calls=requests_per_minute, period=60)(self._request)

    async def send(
        self,
        prompt: str,
        images: Sequence[str],
        model_name: str,
        cancellation: Optional[CancellationToken] = None,
        system_prompt: Optional[str] = None,
    ) -> str:
        """
        Sends a prompt plus base64-encoded PNG screenshots to the provider.

        Args:
            prompt: The user prompt text.
            images: Base64-encoded PNG payloads, in display order.
            model_name: Vendor model identifier.
            cancellation: Token that aborts the in-flight request when cancelled.
            system_prompt: Stage instruction, used by providers that support one.

        Returns:
            The first text content of the vendor response.

        Raises:
            ProviderError: for every failure, already classified.
        """
        logger.info(f"Sending request to {self.display_name} ({model_name}) with {len(images)} image(s)...")
        try:
            request = self._throttled_request(prompt, list(images), model_name, system_prompt)
            if cancellation is not None:
                text = await cancellation.guard(request)
            else:
                text = await request
        except RateLimitException as e:
            logger.warning(f"Local request budget for {self.display_name} exhausted.")
            raise ProviderError(
                ErrorKind.RATE_LIMITED,
                f"Too many {self.display_name} requests this minute. Please wait {e.period_remaining:.0f} seconds before trying again.",
                self.provider_name,
            ) from e
        except RequestCancelled as e:
            logger.info(f"{self.display_name} request canceled.")
            raise ProviderError(ErrorKind.CANCELED, CANCELED_MESSAGE, self.provider_name) from e
        except ProviderError:
            raise
        except Exception as e:
            logger.error(f"Error calling {self.display_name} API: {e}", exc_info=True)
            raise self._translate_error(e) from e

        if not text:
            logger.warning(f"{self.display_name} response had no text content.")
            raise ProviderError(ErrorKind.NO_CONTENT, NO_CONTENT_MESSAGE, self.provider_name)

        logger.info(f"Received response from {self.display_name}.")
        return text

    def _translate_error(self, error: Exception) -> ProviderError:
        status = self._status_of(error)
        if status is None:
            return ProviderError(ErrorKind.GENERIC, str(error) or DEFAULT_FAILURE_MESSAGE, self.provider_name)

        kind = self._kind_for(status, error)
        message = self.error_messages.get(kind) or f"{self.display_name} API error ({status}): {error}"
        return ProviderError(kind, message, self.provider_name, status_code=status)

    def _kind_for(self, status: int, error: Exception) -> ErrorKind:
        return kind_for_status(status)

    def _is_transient(self, error: Exception) -> bool:
        if isinstance(error, self.transient_errors):
            return True
        status = self._status_of(error)
        return status is not None and status >= 500

    async def _call_with_retries(self, call: Callable[[], Awaitable[Any]]) -> Any:
        """
        Awaits `call()`, retrying up to `max_retries` times on transport
        failures and 5xx responses. Vendor 4xx responses are raised at once.
        """
        for attempt in range(self.max_retries + 1):
            try:
                return await call()
            except Exception as e:
                if attempt >= self.max_retries or not self._is_transient(e):
                    raise
                delay = RETRY_BACKOFF * 2 ** attempt
                logger.warning(f"Transient {self.display_name} failure ({e}), retrying in {delay:.1f}s...")
                await asyncio.sleep(delay)

    @abstractmethod
    async def _request(
        self,
        prompt: str,
        images: List[str],
        model_name: str,
        system_prompt: Optional[str],
    ) -> Optional[str]:
        pass

    @abstractmethod
    def _status_of(self, error: Exception) -> Optional[int]:
        pass

    def __str__(self):
        return f"{type(self).__name__}({self.provider_name})"


class OpenAIAdapter(ProviderAdapter):
    """Chat-completion variant: system message plus a user message of content blocks."""
    provider_name = "openai"
    display_name = "OpenAI"
    transient_errors = (openai.APIConnectionError,)
    error_messages = {
        ErrorKind.INVALID_CREDENTIAL: "Invalid OpenAI API key. Please check your settings.",
        ErrorKind.RATE_LIMITED: "OpenAI API rate limit exceeded or insufficient credits. Please try again later.",
        ErrorKind.PAYLOAD_TOO_LARGE: "Your screenshots contain too much information for OpenAI to process. Switch to Gemini or Anthropic in settings which can handle larger inputs.",
        ErrorKind.VENDOR_SERVER_ERROR: "OpenAI server error. Please try again later.",
    }

    def __init__(self, api_key: str, client: Optional[Any] = None, **kwargs):
        super().__init__(api_key, **kwargs)
        self.client = client or openai.AsyncOpenAI(
            api_key=api_key,
            timeout=self.timeout,
            max_retries=0,
        )
        logger.info("OpenAI client initialized.")

    async def _request(self, prompt, images, model_name, system_prompt):
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                *[
                    {"type": "image_url", "image_url": {"url": f"data:{IMAGE_MIME_TYPE};base64,{data}"}}
                    for data in images
                ],
            ],
        })

        response = await self._call_with_retries(lambda: self.client.chat.completions.create(
            model=model_name,
            messages=messages,
            max_tokens=MAX_OUTPUT_TOKENS,
            temperature=TEMPERATURE,
        ))
        if not response.choices:
            return None
        return response.choices[0].message.content

    def _status_of(self, error):
        if isinstance(error, openai.APIStatusError):
            return error.status_code
        return None


class GeminiAdapter(ProviderAdapter):
    """
    REST-multimodal variant backed by the google-genai client.

    One user "contents" entry holding the text part followed by inline PNG
    parts, posted to the versioned generateContent endpoint.
    """
    provider_name = "gemini"
    display_name = "Gemini"
    error_messages = {
        ErrorKind.INVALID_CREDENTIAL: "Invalid Gemini API key. Please check your settings.",
        ErrorKind.RATE_LIMITED: "Gemini API rate limit exceeded. Please wait a few minutes before trying again.",
        ErrorKind.PAYLOAD_TOO_LARGE: "Your screenshots contain too much information for Gemini to process. Switch to OpenAI or Anthropic in settings which can handle larger inputs.",
        ErrorKind.VENDOR_SERVER_ERROR: "Gemini server error. Please try again later.",
    }

    def __init__(self, api_key: str, client: Optional[Any] = None, **kwargs):
        super().__init__(api_key, **kwargs)
        self.client = client or genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(
                timeout=int(self.timeout * 1000),  # milliseconds
                retry_options=types.HttpRetryOptions(
                    attempts=self.max_retries + 1,
                    http_status_codes=GEMINI_RETRY_STATUS_CODES,
                ),
            ),
        )
        self.generation_config = types.GenerateContentConfig(
            temperature=TEMPERATURE,
            max_output_tokens=MAX_OUTPUT_TOKENS,
        )
        logger.info("Google GenAI Client initialized.")

    async def _request(self, prompt, images, model_name, system_prompt):
        parts = [types.Part.from_text(text=prompt)]
        parts.extend(
            types.Part.from_bytes(data=base64.b64decode(data), mime_type=IMAGE_MIME_TYPE)
            for data in images
        )
        contents = [types.Content(role="user", parts=parts)]

        response = await self.client.aio.models.generate_content(
            model=model_name,
            contents=contents,
            config=self.generation_config,
        )

        candidates = getattr(response, "candidates", None)
        if not candidates:
            feedback = getattr(response, "prompt_feedback", None)
            if feedback is not None and getattr(feedback, "block_reason", None):
                logger.warning(f"Prompt blocked due to: {feedback.block_reason}")
            return None
        content = getattr(candidates[0], "content", None)
        if content is None or not content.parts:
            logger.warning(f"Gemini candidate had no parts (finish reason: {getattr(candidates[0], 'finish_reason', None)}).")
            return None
        return content.parts[0].text

    def _status_of(self, error):
        if isinstance(error, genai_errors.APIError):
            return error.code
        return None

    def _kind_for(self, status, error):
        # Gemini rejects bad keys with 400 "API key not valid" or 403
        if status == 403:
            return ErrorKind.INVALID_CREDENTIAL
        if status == 400 and "api key" in str(getattr(error, "message", "") or error).lower():
            return ErrorKind.INVALID_CREDENTIAL
        return super()._kind_for(status, error)


class AnthropicAdapter(ProviderAdapter):
    """Messages-API variant: one user message of text and base64 image blocks."""
    provider_name = "anthropic"
    display_name = "Anthropic"
    transient_errors = (anthropic.APIConnectionError,)
    error_messages = {
        ErrorKind.INVALID_CREDENTIAL: "Invalid Anthropic API key. Please check your settings.",
        ErrorKind.RATE_LIMITED: "Claude API rate limit exceeded. Please wait a few minutes before trying again.",
        ErrorKind.PAYLOAD_TOO_LARGE: "Your screenshots contain too much information for Claude to process. Switch to OpenAI or Gemini in settings which can handle larger inputs.",
        ErrorKind.VENDOR_SERVER_ERROR: "Claude server error. Please try again later.",
    }

    def __init__(self, api_key: str, client: Optional[Any] = None, **kwargs):
        super().__init__(api_key, **kwargs)
        self.client = client or anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=self.timeout,
            max_retries=0,
        )
        logger.info("Anthropic client initialized.")

    async def _request(self, prompt, images, model_name, system_prompt):
        content = [{"type": "text", "text": prompt}]
        content.extend(
            {
                "type": "image",
                "source": {"type": "base64", "media_type": IMAGE_MIME_TYPE, "data": data},
            }
            for data in images
        )

        response = await self._call_with_retries(lambda: self.client.messages.create(
            model=model_name,
            max_tokens=MAX_OUTPUT_TOKENS,
            messages=[{"role": "user", "content": content}],
            temperature=TEMPERATURE,
        ))
        if not response.content:
            return None
        first_block = response.content[0]
        if getattr(first_block, "type", None) != "text":
            return None
        return first_block.text

    def _status_of(self, error):
        if isinstance(error, anthropic.APIStatusError):
            return error.status_code
        return None


ADAPTERS = {
    OpenAIAdapter.provider_name: OpenAIAdapter,
    GeminiAdapter.provider_name: GeminiAdapter,
    AnthropicAdapter.provider_name: AnthropicAdapter,
}
