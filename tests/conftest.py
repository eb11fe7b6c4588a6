"""Shared fixtures: a scripted provider and httpx mock transports."""

import asyncio
from typing import Optional

import httpx
import pytest

from unified_chat.llm.base import BaseLLMProvider
from unified_chat.llm.models import ModelIdentifier, ProviderNamespace
from unified_chat.llm.types import (
    FinishReason,
    GenerationChunk,
    GenerationResult,
    ProviderAvailability,
    UnavailableReason,
)

MOCK_MODEL = ModelIdentifier.ollama("mock-model")


class MockProvider(BaseLLMProvider):
    """Provider that replays a script instead of calling a backend.

    ``pause_after`` holds generation after that many stream chunks (or
    before the reply, for ``generate``) until ``release()`` is called.
    """

    def __init__(
        self,
        response: str = "Mock response",
        chunks: Optional[list[str]] = None,
        error: Optional[Exception] = None,
        finish_reason: FinishReason = FinishReason.STOP,
        pause_after: Optional[int] = None,
        namespace: ProviderNamespace = ProviderNamespace.OLLAMA,
        available: bool = True,
    ):
        super().__init__()
        self.namespace = namespace
        self.response = response
        self.chunks = chunks
        self.error = error
        self.finish_reason = finish_reason
        self.pause_after = pause_after
        self.available = available
        self.requests: list[list] = []
        self._released = asyncio.Event()

    def release(self):
        self._released.set()

    async def availability_status(self) -> ProviderAvailability:
        if self.available:
            return ProviderAvailability.available()
        return ProviderAvailability.unavailable(UnavailableReason.SERVICE_UNREACHABLE)

    async def _generate(self, messages, model, config):
        self.requests.append(list(messages))
        if self.pause_after is not None:
            await self._released.wait()
        if self.error is not None:
            raise self.error
        return GenerationResult(
            text=self.response,
            token_count=len(self.response.split()),
            generation_time=0.01,
            tokens_per_second=100.0,
            finish_reason=self.finish_reason,
        )

    async def _stream(self, messages, model, config, token):
        self.requests.append(list(messages))
        chunks = self.chunks if self.chunks is not None else [self.response]
        for index, text in enumerate(chunks):
            if index == self.pause_after:
                await self._released.wait()
            if token.cancelled:
                yield GenerationChunk.completion(FinishReason.CANCELLED)
                return
            yield GenerationChunk(text=text)
        if self.error is not None:
            raise self.error
        yield GenerationChunk.completion(self.finish_reason)


async def wait_until(predicate, attempts: int = 200):
    """Yield to the event loop until ``predicate()`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


def mock_client(handler) -> httpx.AsyncClient:
    """An AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def sse_body(*events: tuple[str, str]) -> bytes:
    """Encode ``(event, data)`` pairs as an event-stream body."""
    lines = []
    for event, data in events:
        if event:
            lines.append(f"event: {event}")
        lines.append(f"data: {data}")
        lines.append("")
    return ("\n".join(lines) + "\n").encode()


@pytest.fixture
def provider():
    return MockProvider()
