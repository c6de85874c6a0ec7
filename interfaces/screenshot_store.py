import base64
import io
import logging
from abc import ABC, abstractmethod
from typing import List

from PIL import Image

logger = logging.getLogger(__name__)

PREVIEW_SIZE = (300, 200)


class ScreenshotStore(ABC):
    """Primary (problem) and secondary (debug) screenshot queues."""

    @abstractmethod
    def list_primary_queue(self) -> List[str]:
        pass

    @abstractmethod
    def list_secondary_queue(self) -> List[str]:
        pass

    @abstractmethod
    def clear_secondary_queue(self) -> None:
        pass

    @abstractmethod
    def get_preview(self, path: str) -> str:
        pass


class ScreenshotQueue(ScreenshotStore):
    """In-memory queues of screenshot paths with Pillow thumbnails as previews."""

    def __init__(self, screenshots=None, extra_screenshots=None):
        self._queue: List[str] = list(screenshots or [])
        self._extra_queue: List[str] = list(extra_screenshots or [])

    def add_screenshot(self, path: str) -> None:
        self._queue.append(str(path))

    def add_extra_screenshot(self, path: str) -> None:
        self._extra_queue.append(str(path))

    def list_primary_queue(self):
        return list(self._queue)

    def list_secondary_queue(self):
        return list(self._extra_queue)

    def clear_secondary_queue(self):
        logger.info(f"Clearing {len(self._extra_queue)} extra screenshot(s).")
        self._extra_queue.clear()

    def get_preview(self, path):
        """Returns a PNG thumbnail of `path` as a data URL."""
        with Image.open(path) as image:
            image.thumbnail(PREVIEW_SIZE)
            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
        return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("utf-8")
