"""Abstract base class for LLM providers."""

import logging
import weakref
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from typing import ClassVar, Optional

from .cancellation import CancellationToken, run_cancellable
from .errors import AIError, GenerationFailedError, InvalidInputError
from .models import ModelIdentifier, ModelLike, ProviderNamespace, as_model_identifier
from .streaming import GenerationStream
from .types import GenerateConfig, GenerationChunk, GenerationResult, Message, ProviderAvailability

logger = logging.getLogger(__name__)


class BaseLLMProvider(ABC):
    """Abstract interface for LLM backends.

    Subclasses translate the unified request into their backend's format in
    ``_generate`` and ``_stream``; this class owns the contract every caller
    relies on:

    - the model must belong to the provider's ``namespace``;
    - ``generate`` raises ``GenerationCancelledError`` when cancelled;
    - ``stream`` returns immediately and delivers exactly one terminal signal;
    - nothing but :class:`AIError` subclasses escapes.

    Cancellation: each request runs under its own :class:`CancellationToken`.
    ``cancel_generation()`` cancels every request in flight on this instance.
    Callers sharing a provider that want to cancel only their own request pass
    ``cancel_token`` and cancel that instead.
    """

    namespace: ClassVar[ProviderNamespace]

    def __init__(self):
        self._active_tokens: "weakref.WeakSet[CancellationToken]" = weakref.WeakSet()

    # -- availability -----------------------------------------------------

    @abstractmethod
    async def availability_status(self) -> ProviderAvailability:
        """Readiness check with a reason code when unavailable.

        Must return within a bounded time; never blocks on the network
        indefinitely.
        """
        ...

    async def is_available(self) -> bool:
        return (await self.availability_status()).is_available

    # -- generation -------------------------------------------------------

    async def generate(
        self,
        messages: Sequence[Message],
        model: ModelLike,
        config: GenerateConfig | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> GenerationResult:
        """Generate a complete response.

        Args:
            messages: Conversation history, oldest first.
            model: Model identifier in this provider's namespace.
            config: Sampling parameters; defaults to ``GenerateConfig.DEFAULT``.
            cancel_token: Optional token the caller can cancel.

        Returns:
            The full generation result.

        Raises:
            InvalidInputError: If ``model`` belongs to another provider.
            GenerationCancelledError: If the request was cancelled.
            AIError: Any other mapped backend failure.
        """
        model_id = self._validate_model(model)
        cfg = config or GenerateConfig.DEFAULT
        token = self._track(cancel_token)
        logger.debug("generate: model=%s messages=%d", model_id, len(messages))
        try:
            return await run_cancellable(self._generate(list(messages), model_id, cfg), token)
        except AIError:
            raise
        except Exception as exc:
            raise GenerationFailedError(exc) from exc
        finally:
            self._active_tokens.discard(token)

    def stream(
        self,
        messages: Sequence[Message],
        model: ModelLike,
        config: GenerateConfig | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> GenerationStream:
        """Return a chunk stream without starting any work.

        Errors, including an invalid model, surface while iterating.
        """
        token = self._track(cancel_token)
        source = self._stream_source(list(messages), model, config or GenerateConfig.DEFAULT, token)
        return GenerationStream(source, token, on_close=lambda: self._active_tokens.discard(token))

    async def cancel_generation(self) -> None:
        """Cancel every generation currently in flight on this provider."""
        tokens = list(self._active_tokens)
        if tokens:
            logger.debug("Cancelling %d in-flight request(s) on %s", len(tokens), type(self).__name__)
        for token in tokens:
            token.cancel()

    # -- text conveniences ------------------------------------------------

    async def generate_text(
        self,
        prompt: str,
        model: ModelLike,
        config: GenerateConfig | None = None,
    ) -> str:
        """Generate from a single user prompt and return only the text."""
        result = await self.generate([Message.user(prompt)], model, config)
        return result.text

    async def stream_text(
        self,
        prompt: str,
        model: ModelLike,
        config: GenerateConfig | None = None,
    ) -> AsyncIterator[str]:
        """Stream text deltas for a single user prompt."""
        stream = self.stream([Message.user(prompt)], model, config)
        try:
            async for chunk in stream:
                if chunk.text:
                    yield chunk.text
        finally:
            await stream.aclose()

    # -- lifecycle --------------------------------------------------------

    async def close(self):
        """Release backend resources. Safe to call more than once."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    # -- adapter hooks ----------------------------------------------------

    @abstractmethod
    async def _generate(
        self,
        messages: list[Message],
        model: ModelIdentifier,
        config: GenerateConfig,
    ) -> GenerationResult:
        ...

    @abstractmethod
    def _stream(
        self,
        messages: list[Message],
        model: ModelIdentifier,
        config: GenerateConfig,
        token: CancellationToken,
    ) -> AsyncIterator[GenerationChunk]:
        """Yield delta chunks, then exactly one completion chunk.

        Implementations check ``token.cancelled`` on every iteration and
        yield a ``cancelled`` completion when it is set.
        """
        ...

    # -- helpers ----------------------------------------------------------

    def _validate_model(self, model: ModelLike) -> ModelIdentifier:
        model_id = as_model_identifier(model)
        if model_id.namespace != self.namespace:
            raise InvalidInputError(
                f"{type(self).__name__} only supports {self.namespace.value} models, got {model_id}"
            )
        return model_id

    def _track(self, token: Optional[CancellationToken]) -> CancellationToken:
        token = token or CancellationToken()
        self._active_tokens.add(token)
        return token

    async def _stream_source(
        self,
        messages: list[Message],
        model: ModelLike,
        config: GenerateConfig,
        token: CancellationToken,
    ) -> AsyncIterator[GenerationChunk]:
        model_id = self._validate_model(model)
        logger.debug("stream: model=%s messages=%d", model_id, len(messages))
        async with aclosing(self._stream(messages, model_id, config, token)) as chunks:
            async for chunk in chunks:
                yield chunk
