"""Cancellation handle shared by every operation of one generation run."""
import asyncio
from typing import Awaitable, TypeVar

from app.errors import GenerationStopped

T = TypeVar("T")


class CancellationToken:
    """
    One-shot stop signal for a generation run.

    A token is never reset: a new run must allocate a new token.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "stopped") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationStopped(self.reason)

    async def sleep(self, delay: float) -> None:
        """Sleep for `delay` seconds unless the token fires first."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise GenerationStopped(self.reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` in its own task, aborting it if the token fires.

        Raises:
            GenerationStopped: The token fired before the awaitable finished
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise GenerationStopped(self.reason)
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        # A stop always wins, even over a result that arrived in the same tick
        if self._event.is_set():
            if task.done() and not task.cancelled():
                task.exception()
            raise GenerationStopped(self.reason)
        return task.result()
