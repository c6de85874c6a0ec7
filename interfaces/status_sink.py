import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)

STATUS_CHANNEL = "processing-status"


class ProcessingEvent(str, Enum):
    """Lifecycle events sent to the UI layer."""
    INITIAL_START = "initial-start"
    NO_SCREENSHOTS = "processing-no-screenshots"
    PROBLEM_EXTRACTED = "problem-extracted"
    SOLUTION_SUCCESS = "solution-success"
    INITIAL_SOLUTION_ERROR = "solution-error"
    API_KEY_INVALID = "api-key-invalid"
    DEBUG_START = "debug-start"
    DEBUG_SUCCESS = "debug-success"
    DEBUG_ERROR = "debug-error"


class StatusSink(ABC):
    """
    Fire-and-forget channel to the UI.

    Both calls silently no-op once the surface is gone (`is_available()`
    returns False).
    """

    def is_available(self) -> bool:
        return True

    def notify(self, message: str, progress: int) -> None:
        if not self.is_available():
            return
        self._send(STATUS_CHANNEL, {"message": message, "progress": progress})

    def emit(self, event: ProcessingEvent, payload: Optional[Any] = None) -> None:
        if not self.is_available():
            return
        self._send(event.value, payload)

    @abstractmethod
    def _send(self, channel: str, payload: Optional[Any]) -> None:
        pass


class LoggingStatusSink(StatusSink):
    """Writes progress and events to the log; used by the command-line runner."""

    def __init__(self):
        self.closed = False

    def is_available(self) -> bool:
        return not self.closed

    def close(self) -> None:
        self.closed = True

    def _send(self, channel, payload):
        if channel == STATUS_CHANNEL:
            logger.info(f"[{payload['progress']:>3}%] {payload['message']}")
        elif payload is None:
            logger.info(f"Event: {channel}")
        else:
            if is_dataclass(payload):
                payload = asdict(payload)
            logger.debug(f"Event: {channel} {json.dumps(payload, default=str)[:500]}")
            logger.info(f"Event: {channel}")
