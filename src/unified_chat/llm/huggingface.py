"""Hugging Face Inference provider (OpenAI-compatible chat completions)."""

import logging
import time
from collections.abc import AsyncIterator
from typing import Any, Optional

import httpx

from .cancellation import CancellationToken
from .errors import AIError, GenerationFailedError, ProviderUnavailableError, UnknownProviderError
from .models import ModelIdentifier, ProviderNamespace
from .sse import iter_sse_events
from .transport import HTTPProvider, decode_json, error_for_status, parse_retry_after, response_text
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

DEFAULT_BASE_URL = "https://router.huggingface.co/v1"

FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "eos_token": FinishReason.STOP,
    "end_of_sequence": FinishReason.STOP,
    "length": FinishReason.MAX_TOKENS,
    "max_tokens": FinishReason.MAX_TOKENS,
    "stop_sequence": FinishReason.STOP_SEQUENCE,
    "content_filter": FinishReason.CONTENT_FILTER,
}


def map_finish_reason(reason: Optional[str]) -> FinishReason:
    if reason is None:
        return FinishReason.STOP
    mapped = FINISH_REASONS.get(reason.lower())
    if mapped is None:
        logger.warning("Unrecognised finish_reason %r, treating as stop", reason)
        return FinishReason.STOP
    return mapped


class HuggingFaceProvider(HTTPProvider):
    """Cloud inference through the Hugging Face router.

    Uses the OpenAI-compatible ``/chat/completions`` endpoint with a bearer
    token. System messages stay inline; images are sent as data URLs.
    """

    namespace = ProviderNamespace.HUGGINGFACE

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(base_url, timeout, client)
        self.token = token

    @property
    def has_token(self) -> bool:
        return bool(self.token and self.token.strip())

    async def availability_status(self) -> ProviderAvailability:
        if not self.has_token:
            return ProviderAvailability.unavailable(UnavailableReason.API_KEY_MISSING)
        return ProviderAvailability.available()

    def _headers(self) -> dict[str, str]:
        return {
            "authorization": f"Bearer {self.token}",
            "content-type": "application/json",
        }

    def build_request_body(
        self,
        messages: list[Message],
        model: ModelIdentifier,
        config: GenerateConfig,
        stream: bool = False,
    ) -> dict[str, Any]:
        turns = []
        for message in messages:
            if message.role is Role.TOOL:
                continue
            if isinstance(message.content, str):
                content: Any = message.content
            else:
                content = []
                for part in message.parts:
                    if isinstance(part, TextPart):
                        content.append({"type": "text", "text": part.text})
                    elif isinstance(part, ImagePart):
                        content.append({
                            "type": "image_url",
                            "image_url": {"url": f"data:{part.mime_type};base64,{part.data}"},
                        })
            turns.append({"role": message.role.value, "content": content})

        body: dict[str, Any] = {
            "model": model.name,
            "messages": turns,
            "temperature": config.temperature,
            "top_p": config.top_p,
            "stream": stream,
        }
        if config.max_tokens is not None:
            body["max_tokens"] = config.max_tokens
        if config.top_k is not None:
            body["top_k"] = config.top_k
        if config.repetition_penalty is not None:
            body["frequency_penalty"] = config.repetition_penalty - 1.0
        if config.stop_sequences:
            body["stop"] = list(config.stop_sequences)
        return body

    async def _generate(
        self,
        messages: list[Message],
        model: ModelIdentifier,
        config: GenerateConfig,
    ) -> GenerationResult:
        self._require_token()
        body = self.build_request_body(messages, model, config)
        started = time.monotonic()
        data = await self._post_json("/chat/completions", body)
        elapsed = time.monotonic() - started

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise GenerationFailedError("No choices in response")
        message = choices[0].get("message")
        if not isinstance(message, dict):
            raise GenerationFailedError("No message in choice")

        usage = None
        output_tokens = 0
        if isinstance(data.get("usage"), dict):
            output_tokens = int(data["usage"].get("completion_tokens") or 0)
            usage = UsageStats(
                prompt_tokens=int(data["usage"].get("prompt_tokens") or 0),
                completion_tokens=output_tokens,
            )
        return GenerationResult(
            text=message.get("content") or "",
            token_count=output_tokens,
            generation_time=elapsed,
            tokens_per_second=tokens_per_second(output_tokens, elapsed),
            finish_reason=map_finish_reason(choices[0].get("finish_reason")),
            usage=usage,
            reasoning=message.get("reasoning_content") or None,
        )

    async def _stream(
        self,
        messages: list[Message],
        model: ModelIdentifier,
        config: GenerateConfig,
        token: CancellationToken,
    ) -> AsyncIterator[GenerationChunk]:
        self._require_token()
        body = self.build_request_body(messages, model, config, stream=True)
        started = time.monotonic()
        emitted = 0

        async with self._open_stream("/chat/completions", body) as response:
            async for event in iter_sse_events(response.aiter_lines()):
                if token.cancelled:
                    yield GenerationChunk.completion(FinishReason.CANCELLED)
                    return
                if event.data.strip() == "[DONE]":
                    yield GenerationChunk.completion(FinishReason.STOP)
                    return

                payload = decode_json(event.data)
                if not isinstance(payload, dict):
                    raise GenerationFailedError(f"Unexpected event payload: {event.data[:200]}")
                if "error" in payload:
                    error = payload["error"]
                    if isinstance(error, dict):
                        raise UnknownProviderError(error.get("type"), str(error.get("message") or error))
                    raise UnknownProviderError(payload.get("error_type"), str(error))

                choices = payload.get("choices") or []
                if not choices:
                    continue
                choice = choices[0]

                content = (choice.get("delta") or {}).get("content")
                if content:
                    emitted += 1
                    yield GenerationChunk(
                        text=content,
                        token_count=1,
                        tokens_per_second=tokens_per_second(emitted, time.monotonic() - started),
                    )

                if choice.get("finish_reason"):
                    yield GenerationChunk.completion(map_finish_reason(choice["finish_reason"]))
                    return

    def _require_token(self) -> None:
        if not self.has_token:
            raise ProviderUnavailableError(UnavailableReason.API_KEY_MISSING, "Hugging Face token is not configured")

    def _error_from_body(self, body: dict[str, Any], status_code: int, retry_after: Optional[float] = None) -> AIError:
        error = body.get("error")
        if isinstance(error, dict):
            message = str(error.get("message") or error)
        else:
            message = str(error)
        return error_for_status(status_code, message, retry_after)

    def _map_http_error(self, response: httpx.Response) -> AIError:
        try:
            body = decode_json(response.content)
        except GenerationFailedError:
            body = None
        retry_after = parse_retry_after(response.headers)
        if isinstance(body, dict) and "error" in body:
            return self._error_from_body(body, response.status_code, retry_after)
        return error_for_status(response.status_code, response_text(response), retry_after)
