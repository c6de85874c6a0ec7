import asyncio
import inspect
import logging
from typing import Awaitable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestCancelled(Exception):
    """Raised by CancellationToken.guard when the token fires first."""


class CancellationToken:
    """
    Cooperative cancellation handle passed explicitly through every
    suspending call of a flow.

    The orchestrator creates one token per flow; adapters wrap their network
    round-trip in `guard()` so that `cancel()` aborts the in-flight request.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.debug("Cancellation requested.")
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Awaits `awaitable` unless the token fires first.

        Raises:
            RequestCancelled: the token was cancelled before the awaitable
                finished; the underlying task is cancelled.
        """
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise RequestCancelled("Request was canceled by the user.")

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()
        raise RequestCancelled("Request was canceled by the user.")
