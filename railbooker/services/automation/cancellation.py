"""
Cooperative cancellation for a running workflow
"""

import asyncio
from typing import Awaitable, TypeVar

from ...exceptions import WorkflowCancelledError

T = TypeVar("T")


class CancellationToken:
    """Signals a running workflow to stop at its next wait"""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise WorkflowCancelledError("Workflow cancelled")

    async def sleep(self, delay: float):
        """Sleep for ``delay`` seconds, waking early with WorkflowCancelledError on cancel"""
        self.raise_if_cancelled()
        if delay <= 0:
            await asyncio.sleep(0)
        else:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                return
        self.raise_if_cancelled()

    async def wait(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first

        On cancel the pending operation is cancelled and
        WorkflowCancelledError is raised.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise WorkflowCancelledError("Workflow cancelled")
        return task.result()
