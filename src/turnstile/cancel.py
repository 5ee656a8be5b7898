import asyncio
import contextlib
import threading
from typing import Union

from .errors import OperationCancelled


class CancelToken:
    """Thread-safe cancel signal for the sync dispatcher."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Union[float, None] = None) -> bool:
        """Block up to ``timeout`` seconds; True if the signal fired."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, operation: Union[str, None] = None):
        if self._event.is_set():
            raise OperationCancelled(operation)


class AsyncCancelToken:
    """Cancel signal for the async dispatcher; must be used from one event loop."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation: Union[str, None] = None):
        if self._event.is_set():
            raise OperationCancelled(operation)

    async def guard(self, awaitable, operation: Union[str, None] = None):
        """Await ``awaitable`` unless the signal fires first.

        When the signal wins, the pending awaitable is cancelled and
        ``OperationCancelled`` is raised.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled(operation)
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            waiter.cancel()
            raise
        if task in done:
            waiter.cancel()
            return task.result()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise OperationCancelled(operation)

    async def sleep(self, seconds: float, operation: Union[str, None] = None):
        if self._event.is_set():
            raise OperationCancelled(operation)
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise OperationCancelled(operation)
