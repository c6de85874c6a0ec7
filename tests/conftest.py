import asyncio
from typing import List, Optional, Union

import pytest
from PIL import Image

from core.config import ConfigSource, Settings
from core.orchestrator import ProcessingOrchestrator
from core.router import ModelRouter
from interfaces.app_state import AppState
from interfaces.screenshot_store import ScreenshotQueue
from interfaces.status_sink import StatusSink
from utils.llm_api import ProviderAdapter

TWO_SUM_JSON = (
    '```json\n'
    '{"problem_statement":"Two Sum","constraints":"n<=1e5","example_input":"[2,7]","example_output":"[0,1]"}\n'
    '```'
)

SOLUTION_TEXT = (
    "```python\ndef two_sum(nums, target):\n    seen = {}\n    return []\n```\n"
    "Thoughts:\n- use hashmap\n- single pass\n"
    "Time complexity: O(n) because we scan once.\n"
    "Space complexity: O(n) because of the hashmap."
)

DEBUG_TEXT = (
    "Issues identified: the loop skips the last element.\n"
    "- Off-by-one in range\n"
    "Improvements: iterate to len(nums).\n"
    "```python\nfor i in range(len(nums)):\n    pass\n```"
)


class RecordingSink(StatusSink):
    """Keeps every notify/emit call in order."""

    def __init__(self):
        self.calls = []
        self.available = True

    def is_available(self):
        return self.available

    def _send(self, channel, payload):
        self.calls.append((channel, payload))

    def events(self) -> List[str]:
        return [channel for channel, _ in self.calls if channel != "processing-status"]

    def progress(self) -> List[int]:
        return [payload["progress"] for channel, payload in self.calls if channel == "processing-status"]

    def payload_of(self, channel):
        for name, payload in self.calls:
            if name == channel:
                return payload
        raise KeyError(channel)


Response = Union[str, Exception, asyncio.Event]


class ScriptedAdapter(ProviderAdapter):
    """Returns scripted responses in order; an asyncio.Event response blocks until set."""
    provider_name = "openai"
    display_name = "OpenAI"

    def __init__(self, responses: List[Response], **kwargs):
        super().__init__("test-key", **kwargs)
        self.responses = list(responses)
        self.requests = []
        self.started = asyncio.Event()

    async def _request(self, prompt, images, model_name, system_prompt):
        self.requests.append(
            {"prompt": prompt, "images": images, "model": model_name, "system_prompt": system_prompt}
        )
        self.started.set()
        response = self.responses.pop(0)
        if isinstance(response, asyncio.Event):
            await response.wait()
            return "late"
        if isinstance(response, Exception):
            raise response
        return response

    def _status_of(self, error):
        return getattr(error, "status_code", None)


@pytest.fixture
def make_png(tmp_path):
    def _make(name: str = "shot.png", size=(64, 48)) -> str:
        path = tmp_path / name
        Image.new("RGB", size, color=(200, 30, 30)).save(path, format="PNG")
        return str(path)
    return _make


class Harness:
    def __init__(self, adapter: Optional[ProviderAdapter], screenshots=(), extra=(), view="queue",
                 settings: Optional[Settings] = None):
        self.sink = RecordingSink()
        self.config = ConfigSource(settings or Settings(openai_api_key="test-key"))
        self.store = ScreenshotQueue(screenshots, extra)
        self.app_state = AppState(view=view)
        self.router = ModelRouter(self.sink, adapter_factory=lambda settings: adapter)
        self.orchestrator = ProcessingOrchestrator(
            self.config, self.store, self.sink, self.app_state, router=self.router
        )


@pytest.fixture
def harness():
    return Harness
