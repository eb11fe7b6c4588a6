"""Stateful chat session on top of any LLM provider."""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Iterable
from typing import Optional, Union

from .llm.base import BaseLLMProvider
from .llm.cancellation import CancellationToken
from .llm.errors import AIError, InvalidInputError, OperationInProgressError
from .llm.models import ModelIdentifier, ModelLike, as_model_identifier
from .llm.types import (
    FinishReason,
    GenerateConfig,
    GenerationChunk,
    GenerationResult,
    Message,
    Role,
)

logger = logging.getLogger(__name__)

UserInput = Union[str, Message]


class ChatSession:
    """One conversation: its history and at most one generation in flight.

    The session is the only writer of its history. Reads from other threads
    (a UI polling ``messages`` or ``streaming_text``) see consistent
    snapshots because every field is guarded by the same lock.

    ``send`` and ``stream`` move the session from idle to generating and
    back on every exit path. A second call while generating raises
    :class:`OperationInProgressError` without touching the history.
    """

    def __init__(
        self,
        provider: BaseLLMProvider,
        model: ModelLike,
        config: GenerateConfig = GenerateConfig.DEFAULT,
        system_prompt: Optional[str] = None,
    ):
        self.provider = provider
        self._model = as_model_identifier(model)
        self._lock = threading.RLock()
        self._config = config
        self._messages: list[Message] = []
        self._is_generating = False
        self._last_error: Optional[AIError] = None
        self._streaming_text = ""
        self._token: Optional[CancellationToken] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        if system_prompt is not None:
            self.set_system_prompt(system_prompt)

    # -- state ------------------------------------------------------------

    @property
    def model(self) -> ModelIdentifier:
        return self._model

    @property
    def messages(self) -> tuple[Message, ...]:
        with self._lock:
            return tuple(self._messages)

    @property
    def is_generating(self) -> bool:
        with self._lock:
            return self._is_generating

    @property
    def config(self) -> GenerateConfig:
        with self._lock:
            return self._config

    @config.setter
    def config(self, value: GenerateConfig):
        with self._lock:
            self._config = value

    @property
    def last_error(self) -> Optional[AIError]:
        with self._lock:
            return self._last_error

    @property
    def streaming_text(self) -> str:
        """Text of the stream in progress, or the partial text of the last
        stream that was cancelled or failed."""
        with self._lock:
            return self._streaming_text

    @property
    def message_count(self) -> int:
        with self._lock:
            return len(self._messages)

    @property
    def user_message_count(self) -> int:
        with self._lock:
            return sum(1 for m in self._messages if m.role is Role.USER)

    @property
    def last_assistant_message(self) -> Optional[Message]:
        return self._last_with_role(Role.ASSISTANT)

    @property
    def last_user_message(self) -> Optional[Message]:
        return self._last_with_role(Role.USER)

    @property
    def has_conversation(self) -> bool:
        with self._lock:
            return any(m.role is not Role.SYSTEM for m in self._messages)

    @property
    def system_prompt(self) -> Optional[str]:
        with self._lock:
            if self._has_system_message():
                return self._messages[0].text
            return None

    @property
    def has_system_prompt(self) -> bool:
        with self._lock:
            return self._has_system_message()

    # -- history ----------------------------------------------------------

    def set_system_prompt(self, text: Optional[str]) -> None:
        """Replace, insert or remove the single system message at index 0."""
        with self._lock:
            if self._has_system_message():
                if text is None:
                    del self._messages[0]
                else:
                    self._messages[0] = Message.system(text)
            elif text is not None:
                self._messages.insert(0, Message.system(text))

    def clear_history(self, preserve_system_prompt: bool = True) -> None:
        with self._lock:
            self._ensure_idle()
            system = self._messages[0] if self._has_system_message() else None
            removed = len(self._messages)
            self._messages.clear()
            if preserve_system_prompt and system is not None:
                self._messages.append(system)
                removed -= 1
            self._streaming_text = ""
            self._last_error = None
        logger.info("Cleared %d message(s) from session history", removed)

    def undo_last_exchange(self) -> bool:
        """Remove the most recent user/assistant pair.

        Returns False and leaves the history alone unless the last two
        messages after the system prompt are a user message and its reply.
        """
        with self._lock:
            self._ensure_idle()
            start = 1 if self._has_system_message() else 0
            conversation = self._messages[start:]
            if not conversation:
                return False
            if (
                len(conversation) >= 2
                and conversation[-2].role is Role.USER
                and conversation[-1].role is Role.ASSISTANT
            ):
                del self._messages[-2:]
                return True
            return False

    def inject_history(self, messages: Iterable[Message], position: Optional[int] = None) -> int:
        """Add prior turns to the history; system messages are skipped.

        ``position`` indexes the full history and never lands before the
        session's own system message. Returns the number of messages added.
        """
        injected = [m for m in messages if m.role is not Role.SYSTEM]
        with self._lock:
            self._ensure_idle()
            floor = 1 if self._has_system_message() else 0
            if position is None:
                index = len(self._messages)
            else:
                index = min(max(position, floor), len(self._messages))
            self._messages[index:index] = injected
        logger.info("Injected %d message(s) into session history at %d", len(injected), index)
        return len(injected)

    # -- generation -------------------------------------------------------

    async def send(self, content: UserInput) -> GenerationResult:
        """Send a user message and wait for the full reply.

        The user message is appended before the request. On success the
        reply is appended too; on failure ``last_error`` is set and the same
        error is raised, leaving only the user message behind.

        Raises:
            OperationInProgressError: If a generation is already running.
            InvalidInputError: If ``content`` is a message with a role other than user.
            AIError: Whatever the provider raised.
        """
        history, token = self._begin(content)
        try:
            result = await self.provider.generate(history, self._model, self.config, cancel_token=token)
        except AIError as exc:
            with self._lock:
                self._last_error = exc
            logger.debug("send failed: %s", exc.kind.value)
            raise
        else:
            with self._lock:
                self._messages.append(Message.assistant(result.text))
                self._last_error = None
            return result
        finally:
            self._end(token)

    async def stream(self, content: UserInput) -> AsyncIterator[GenerationChunk]:
        """Send a user message and yield the reply as it arrives.

        Nothing happens until the first chunk is requested; the user message
        is appended then. The terminal chunk is yielded after the history is
        updated, so a caller stopping at ``is_complete`` already sees the
        assistant message. A cancelled or failed stream appends nothing and
        keeps its partial text in ``streaming_text``.

        Close the generator (``contextlib.aclosing``) when abandoning it
        early, or the session stays generating until it is collected.
        """
        history, token = self._begin(content)
        with self._lock:
            self._streaming_text = ""
        chunks = self.provider.stream(history, self._model, self.config, cancel_token=token)
        try:
            async for chunk in chunks:
                if chunk.is_complete:
                    self._complete_stream(chunk, token)
                else:
                    with self._lock:
                        self._streaming_text += chunk.text
                yield chunk
        except AIError as exc:
            with self._lock:
                self._last_error = exc
            logger.debug("stream failed: %s", exc.kind.value)
            raise
        finally:
            await chunks.aclose()
            self._end(token)

    def cancel(self) -> None:
        """Cancel this session's generation, if any.

        Safe to call from any thread. Other sessions sharing the provider
        are not affected.
        """
        with self._lock:
            token, loop = self._token, self._loop
        if token is None:
            return
        if loop is None or loop.is_closed() or _running_loop() is loop:
            token.cancel()
        else:
            loop.call_soon_threadsafe(token.cancel)

    # -- internals --------------------------------------------------------

    def _begin(self, content: UserInput) -> tuple[list[Message], CancellationToken]:
        message = content if isinstance(content, Message) else Message.user(content)
        if message.role is not Role.USER:
            raise InvalidInputError(f"Only user messages can be sent, got {message.role.value}")
        with self._lock:
            self._ensure_idle()
            self._messages.append(message)
            self._is_generating = True
            self._token = CancellationToken()
            self._loop = _running_loop()
            return list(self._messages), self._token

    def _complete_stream(self, chunk: GenerationChunk, token: CancellationToken) -> None:
        with self._lock:
            self._streaming_text += chunk.text
            if chunk.finish_reason is not FinishReason.CANCELLED:
                self._messages.append(Message.assistant(self._streaming_text))
                self._streaming_text = ""
                self._last_error = None
        self._end(token)

    def _end(self, token: CancellationToken) -> None:
        with self._lock:
            if self._token is token:
                self._is_generating = False
                self._token = None
                self._loop = None

    def _ensure_idle(self) -> None:
        if self._is_generating:
            raise OperationInProgressError()

    def _has_system_message(self) -> bool:
        return bool(self._messages) and self._messages[0].role is Role.SYSTEM

    def _last_with_role(self, role: Role) -> Optional[Message]:
        with self._lock:
            for message in reversed(self._messages):
                if message.role is role:
                    return message
            return None


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
