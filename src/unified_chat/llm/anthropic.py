"""Anthropic Messages API provider."""

import logging
import time
from collections.abc import AsyncIterator
from typing import Any, Optional

import httpx

from .cancellation import CancellationToken
from .errors import (
    AIError,
    AuthenticationError,
    GenerationFailedError,
    GenerationTimeoutError,
    InvalidInputError,
    ProviderUnavailableError,
    RateLimitedError,
    ServerError,
    UnknownProviderError,
)
from .models import ModelIdentifier, ProviderNamespace
from .sse import iter_sse_events
from .transport import HTTPProvider, decode_json, parse_retry_after, response_text
from .types import (
    FinishReason,
    GenerateConfig,
    GenerationChunk,
    GenerationResult,
    ImagePart,
    Message,
    ProviderAvailability,
    Role,
    TextPart,
    UnavailableReason,
    UsageStats,
    tokens_per_second,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com"
DEFAULT_API_VERSION = "2023-06-01"

STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "max_tokens": FinishReason.MAX_TOKENS,
    "stop_sequence": FinishReason.STOP_SEQUENCE,
    "refusal": FinishReason.CONTENT_FILTER,
}

SUPPORTED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})


def map_stop_reason(reason: Optional[str]) -> FinishReason:
    """Map an Anthropic ``stop_reason``; unknown values fall back to ``stop``."""
    if reason is None:
        return FinishReason.STOP
    mapped = STOP_REASONS.get(reason)
    if mapped is None:
        logger.warning("Unrecognised Anthropic stop_reason %r, treating as stop", reason)
        return FinishReason.STOP
    return mapped


def map_anthropic_error(
    error_type: Optional[str],
    message: str,
    status_code: int,
    retry_after: Optional[float] = None,
    timeout: Optional[float] = None,
) -> AIError:
    """Map an Anthropic error ``type`` to the unified taxonomy.

    | type                    | error                  |
    |-------------------------|------------------------|
    | invalid_request_error   | InvalidInputError      |
    | not_found_error         | InvalidInputError      |
    | authentication_error    | AuthenticationError    |
    | permission_error        | AuthenticationError    |
    | rate_limit_error        | RateLimitedError       |
    | timeout_error           | GenerationTimeoutError |
    | api_error               | ServerError            |
    | overloaded_error        | ServerError            |
    | anything else           | UnknownProviderError   |
    """
    if error_type in ("invalid_request_error", "not_found_error"):
        return InvalidInputError(message)
    if error_type in ("authentication_error", "permission_error"):
        return AuthenticationError(message)
    if error_type == "rate_limit_error":
        return RateLimitedError(message, retry_after=retry_after)
    if error_type == "timeout_error":
        return GenerationTimeoutError(timeout, message=message)
    if error_type in ("api_error", "overloaded_error"):
        return ServerError(status_code, message)
    logger.warning("Unrecognised Anthropic error type %r", error_type)
    return UnknownProviderError(error_type, message)


class AnthropicProvider(HTTPProvider):
    """Cloud inference through the Anthropic Messages API.

    The first system message is sent in the ``system`` field; any further
    system messages are dropped. Tool turns are dropped. Streaming uses
    server-sent events.
    """

    namespace = ProviderNamespace.ANTHROPIC

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 60.0,
        default_max_tokens: int = 1024,
        thinking_budget_tokens: Optional[int] = None,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(base_url, timeout, client)
        self.api_key = api_key
        self.api_version = api_version
        self.default_max_tokens = default_max_tokens
        self.thinking_budget_tokens = thinking_budget_tokens

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    async def availability_status(self) -> ProviderAvailability:
        if not self.has_api_key:
            return ProviderAvailability.unavailable(UnavailableReason.API_KEY_MISSING)
        return ProviderAvailability.available()

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

    def _require_key(self) -> None:
        if not self.has_api_key:
            raise ProviderUnavailableError(UnavailableReason.API_KEY_MISSING, "Anthropic API key is not configured")

    # -- request translation ---------------------------------------------

    def build_request_body(
        self,
        messages: list[Message],
        model: ModelIdentifier,
        config: GenerateConfig,
        stream: bool = False,
    ) -> dict[str, Any]:
        """Build a ``/v1/messages`` body.

        If only system messages were given the ``messages`` array is empty;
        the API rejects that and the error is mapped as usual.
        """
        system_prompt = next((m.text for m in messages if m.role is Role.SYSTEM), None)

        turns = []
        for message in messages:
            if message.role not in (Role.USER, Role.ASSISTANT):
                continue
            if isinstance(message.content, str):
                turns.append({"role": message.role.value, "content": message.content})
            else:
                turns.append({"role": message.role.value, "content": self._content_parts(message)})

        body: dict[str, Any] = {
            "model": model.name,
            "messages": turns,
            "max_tokens": config.max_tokens or self.default_max_tokens,
            "temperature": min(config.temperature, 1.0),
        }
        if system_prompt is not None:
            body["system"] = system_prompt
        if 0 < config.top_p <= 1:
            body["top_p"] = config.top_p
        if config.top_k is not None:
            body["top_k"] = config.top_k
        if config.stop_sequences:
            body["stop_sequences"] = list(config.stop_sequences)
        if self.thinking_budget_tokens:
            body["thinking"] = {"type": "enabled", "budget_tokens": self.thinking_budget_tokens}
        if stream:
            body["stream"] = True
        return body

    @staticmethod
    def _content_parts(message: Message) -> list[dict[str, Any]]:
        parts = []
        for part in message.parts:
            if isinstance(part, TextPart):
                parts.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                if part.mime_type not in SUPPORTED_IMAGE_TYPES:
                    raise InvalidInputError(f"Anthropic does not accept {part.mime_type} images")
                parts.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": part.mime_type, "data": part.data},
                })
        return parts

    # -- generation -------------------------------------------------------

    async def _generate(
        self,
        messages: list[Message],
        model: ModelIdentifier,
        config: GenerateConfig,
    ) -> GenerationResult:
        self._require_key()
        body = self.build_request_body(messages, model, config)
        started = time.monotonic()
        data = await self._post_json("/v1/messages", body)
        return self._to_result(data, time.monotonic() - started)

    async def _stream(
        self,
        messages: list[Message],
        model: ModelIdentifier,
        config: GenerateConfig,
        token: CancellationToken,
    ) -> AsyncIterator[GenerationChunk]:
        self._require_key()
        body = self.build_request_body(messages, model, config, stream=True)
        started = time.monotonic()
        emitted = 0
        stop_reason: Optional[str] = None
        output_tokens: Optional[int] = None

        async with self._open_stream("/v1/messages", body) as response:
            async for event in iter_sse_events(response.aiter_lines()):
                if token.cancelled:
                    yield GenerationChunk.completion(FinishReason.CANCELLED)
                    return

                payload = decode_json(event.data)
                if not isinstance(payload, dict):
                    raise GenerationFailedError(f"Unexpected event payload: {event.data[:200]}")
                event_type = event.event or payload.get("type")

                if event_type == "content_block_delta":
                    delta = payload.get("delta") or {}
                    # thinking_delta and signature_delta never reach the user
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        emitted += 1
                        yield GenerationChunk(
                            text=delta["text"],
                            token_count=1,
                            tokens_per_second=tokens_per_second(emitted, time.monotonic() - started),
                        )
                elif event_type == "message_delta":
                    stop_reason = (payload.get("delta") or {}).get("stop_reason") or stop_reason
                    output_tokens = (payload.get("usage") or {}).get("output_tokens", output_tokens)
                elif event_type == "message_stop":
                    logger.debug("Anthropic stream done: stop_reason=%s output_tokens=%s", stop_reason, output_tokens)
                    yield GenerationChunk.completion(map_stop_reason(stop_reason))
                    return
                elif event_type == "error":
                    error = payload.get("error") or {}
                    raise map_anthropic_error(
                        error.get("type"),
                        error.get("message") or "Stream error",
                        response.status_code,
                        timeout=self.timeout,
                    )

        # connection closed without message_stop
        yield GenerationChunk.completion(map_stop_reason(stop_reason))

    # -- response translation --------------------------------------------

    def _to_result(self, data: Any, elapsed: float) -> GenerationResult:
        if not isinstance(data, dict) or not isinstance(data.get("content"), list):
            raise GenerationFailedError("Unexpected response shape from Anthropic")

        blocks = data["content"]
        text = "".join(b.get("text") or "" for b in blocks if b.get("type") == "text")
        thinking = "".join(b.get("thinking") or "" for b in blocks if b.get("type") == "thinking")

        usage_data = data.get("usage") or {}
        output_tokens = int(usage_data.get("output_tokens") or 0)
        return GenerationResult(
            text=text,
            token_count=output_tokens,
            generation_time=elapsed,
            tokens_per_second=tokens_per_second(output_tokens, elapsed),
            finish_reason=map_stop_reason(data.get("stop_reason")),
            usage=UsageStats(
                prompt_tokens=int(usage_data.get("input_tokens") or 0),
                completion_tokens=output_tokens,
            ),
            reasoning=thinking or None,
        )

    def _map_http_error(self, response: httpx.Response) -> AIError:
        try:
            body = decode_json(response.content)
        except GenerationFailedError:
            body = None
        error = body.get("error") if isinstance(body, dict) else None
        if not isinstance(error, dict):
            return ServerError(response.status_code, response_text(response))
        return map_anthropic_error(
            error.get("type"),
            error.get("message") or response_text(response),
            response.status_code,
            retry_after=parse_retry_after(response.headers),
            timeout=self.timeout,
        )
