"""Cooperative cancellation for in-flight generations."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from .errors import GenerationCancelledError

T = TypeVar("T")


class CancellationToken:
    """A one-shot flag that can be set from outside the generating task.

    Streaming loops poll ``cancelled`` on every iteration; blocking waits
    race against ``wait()``. Cancelling twice is a no-op.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(work: Awaitable[T], token: CancellationToken) -> T:
    """Await ``work`` unless ``token`` fires first.

    On token cancellation the work task is cancelled and awaited so the
    backend call unwinds, then ``GenerationCancelledError`` is raised.
    Cancellation of the calling task itself propagates unchanged.
    """
    if token.cancelled:
        if asyncio.iscoroutine(work):
            work.close()
        raise GenerationCancelledError()

    work_task = asyncio.ensure_future(work)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait((work_task, waiter), return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not work_task.done():
            work_task.cancel()
            await asyncio.gather(work_task, return_exceptions=True)

    if work_task.cancelled():
        raise GenerationCancelledError()
    return work_task.result()
