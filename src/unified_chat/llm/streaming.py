"""Uniform, cancellable chunk stream returned by every provider."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from typing import Optional

from .cancellation import CancellationToken
from .errors import AIError, GenerationFailedError
from .types import FinishReason, GenerationChunk, GenerationResult, tokens_per_second

logger = logging.getLogger(__name__)

_EXHAUSTED = object()


async def _cancel_and_wait(task: asyncio.Future) -> None:
    if not task.done():
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


class GenerationStream:
    """Async iterator of :class:`GenerationChunk` values.

    Constructing a stream does no I/O; the adapter's generator starts on the
    first pull. Guarantees:

    - exactly one terminal signal, either a chunk with ``is_complete=True``
      or a raised :class:`AIError`, and nothing after it;
    - each pull races the next upstream event against the cancellation
      token, so ``cancel()`` is observed even while waiting on the backend;
    - an upstream that ends without a terminal chunk is closed with a
      synthesized ``stop`` completion.
    """

    def __init__(
        self,
        source: AsyncIterator[GenerationChunk],
        token: Optional[CancellationToken] = None,
        on_close: Optional[Callable[[], None]] = None,
    ):
        self._source = source
        self.token = token or CancellationToken()
        self._on_close = on_close
        self._finished = False
        self._started_at: Optional[float] = None
        self._parts: list[str] = []
        self.token_count = 0
        self.finish_reason: Optional[FinishReason] = None
        self.error: Optional[AIError] = None

    @property
    def text(self) -> str:
        """Text received so far."""
        return "".join(self._parts)

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at

    def cancel(self) -> None:
        self.token.cancel()

    def __aiter__(self) -> "GenerationStream":
        return self

    async def __anext__(self) -> GenerationChunk:
        if self._finished:
            raise StopAsyncIteration
        if self._started_at is None:
            self._started_at = time.monotonic()
        if self.token.cancelled:
            return await self._finish(GenerationChunk.completion(FinishReason.CANCELLED))

        pull = asyncio.ensure_future(self._pull())
        waiter = asyncio.ensure_future(self.token.wait())
        try:
            await asyncio.wait((pull, waiter), return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            waiter.cancel()
            await _cancel_and_wait(pull)
            await self._abandon()
            raise
        waiter.cancel()
        await _cancel_and_wait(pull)

        # token fired while the backend was still silent
        if pull.cancelled() or (self.token.cancelled and pull.exception() is not None):
            return await self._finish(GenerationChunk.completion(FinishReason.CANCELLED))

        try:
            item = pull.result()
        except AIError as exc:
            await self._fail(exc)
            raise
        except Exception as exc:
            error = GenerationFailedError(exc)
            await self._fail(error)
            raise error from exc

        if item is _EXHAUSTED:
            return await self._finish(GenerationChunk.completion(FinishReason.STOP))
        if item.is_complete:
            return await self._finish(item)

        self._parts.append(item.text)
        self.token_count += item.token_count
        return item

    async def _pull(self):
        try:
            return await self._source.__anext__()
        except StopAsyncIteration:
            return _EXHAUSTED

    async def _finish(self, chunk: GenerationChunk) -> GenerationChunk:
        self.finish_reason = chunk.finish_reason or FinishReason.STOP
        if chunk.text:
            self._parts.append(chunk.text)
            self.token_count += chunk.token_count
        await self._abandon()
        logger.debug(
            "Stream finished: reason=%s tokens=%d elapsed=%.2fs",
            self.finish_reason.value, self.token_count, self.elapsed,
        )
        return chunk

    async def _fail(self, error: AIError) -> None:
        self.error = error
        await self._abandon()

    async def _abandon(self) -> None:
        if self._finished:
            return
        self._finished = True
        try:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            if self._on_close is not None:
                self._on_close()

    async def aclose(self) -> None:
        """Stop consuming the backend without waiting for a terminal chunk."""
        await self._abandon()

    async def collect(self) -> GenerationResult:
        """Drain the stream and summarise it as a :class:`GenerationResult`."""
        async for _ in self:
            pass
        elapsed = self.elapsed
        return GenerationResult(
            text=self.text,
            token_count=self.token_count,
            generation_time=elapsed,
            tokens_per_second=tokens_per_second(self.token_count, elapsed),
            finish_reason=self.finish_reason or FinishReason.STOP,
        )
