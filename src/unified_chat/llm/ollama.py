"""Ollama provider: local inference through an Ollama engine."""

import logging
import time
from collections.abc import AsyncIterator
from typing import Any, Optional

import httpx

from .cancellation import CancellationToken
from .errors import AIError, GenerationFailedError, InvalidInputError, UnknownProviderError
from .models import ModelIdentifier, ProviderNamespace
from .transport import HTTPProvider, decode_json, error_for_status, parse_retry_after, response_text
from .types import (
    FinishReason,
    GenerateConfig,
    GenerationChunk,
    GenerationResult,
    Message,
    ProviderAvailability,
    Role,
    UnavailableReason,
    UsageStats,
    tokens_per_second,
)

logger = logging.getLogger(__name__)

DONE_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.MAX_TOKENS,
    "load": FinishReason.STOP,
    "unload": FinishReason.STOP,
}

SUPPORTED_IMAGE_TYPES = frozenset({"image/png", "image/jpeg"})


def map_done_reason(reason: Optional[str]) -> FinishReason:
    if reason is None:
        return FinishReason.STOP
    mapped = DONE_REASONS.get(reason.lower())
    if mapped is None:
        logger.warning("Unrecognised Ollama done_reason %r, treating as stop", reason)
        return FinishReason.STOP
    return mapped


class OllamaProvider(HTTPProvider):
    """LLM provider that talks to a local Ollama instance.

    Streams token-by-token over ``/api/chat`` as newline-delimited JSON.
    System messages stay inline in the turn list.
    """

    namespace = ProviderNamespace.OLLAMA

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 120.0,
        availability_timeout: float = 2.0,
        num_ctx: Optional[int] = None,
        keep_alive: Optional[str] = None,
        client: httpx.AsyncClient | None = None,
    ):
        # Support both full URL (http://host/api/chat) and base URL (http://host:11434)
        base_url = base_url.rstrip("/")
        for suffix in ("/api/chat", "/api/generate"):
            if base_url.endswith(suffix):
                base_url = base_url[: -len(suffix)]
        super().__init__(base_url, timeout, client)
        self.availability_timeout = availability_timeout
        self.num_ctx = num_ctx
        self.keep_alive = keep_alive

    @property
    def chat_url(self) -> str:
        return self._url("/api/chat")

    async def availability_status(self) -> ProviderAvailability:
        client = await self._get_client()
        try:
            response = await client.get(self._url("/api/version"), timeout=self.availability_timeout)
        except httpx.HTTPError as exc:
            logger.debug("Ollama not reachable at %s: %s", self.base_url, exc)
            return ProviderAvailability.unavailable(UnavailableReason.SERVICE_UNREACHABLE)
        if response.is_success:
            return ProviderAvailability.available()
        return ProviderAvailability.unavailable(UnavailableReason.SERVICE_UNREACHABLE)

    # -- request translation ---------------------------------------------

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
                # tool turns are not supported yet
                continue
            turn: dict[str, Any] = {"role": message.role.value, "content": message.text}
            images = message.images
            if images:
                for image in images:
                    if image.mime_type not in SUPPORTED_IMAGE_TYPES:
                        raise InvalidInputError(f"Ollama does not accept {image.mime_type} images")
                turn["images"] = [image.data for image in images]
            turns.append(turn)

        options: dict[str, Any] = {
            "temperature": config.temperature,
            "top_p": config.top_p,
        }
        if config.top_k is not None:
            options["top_k"] = config.top_k
        if config.max_tokens is not None:
            options["num_predict"] = config.max_tokens
        if config.repetition_penalty is not None:
            options["repeat_penalty"] = config.repetition_penalty
        if config.stop_sequences:
            options["stop"] = list(config.stop_sequences)
        if self.num_ctx:
            options["num_ctx"] = self.num_ctx

        body: dict[str, Any] = {
            "model": model.name,
            "messages": turns,
            "stream": stream,
            "options": options,
        }
        if self.keep_alive is not None:
            body["keep_alive"] = self.keep_alive
        return body

    # -- generation -------------------------------------------------------

    async def _generate(
        self,
        messages: list[Message],
        model: ModelIdentifier,
        config: GenerateConfig,
    ) -> GenerationResult:
        body = self.build_request_body(messages, model, config, stream=False)
        started = time.monotonic()
        data = await self._post_json("/api/chat", body)
        return self._to_result(data, time.monotonic() - started)

    async def _stream(
        self,
        messages: list[Message],
        model: ModelIdentifier,
        config: GenerateConfig,
        token: CancellationToken,
    ) -> AsyncIterator[GenerationChunk]:
        body = self.build_request_body(messages, model, config, stream=True)
        started = time.monotonic()
        emitted = 0

        async with self._open_stream("/api/chat", body) as response:
            async for line in response.aiter_lines():
                if token.cancelled:
                    yield GenerationChunk.completion(FinishReason.CANCELLED)
                    return
                if not line.strip():
                    continue

                event = decode_json(line)
                if not isinstance(event, dict):
                    raise GenerationFailedError(f"Unexpected stream line: {line[:200]}")
                if "error" in event:
                    raise UnknownProviderError("stream_error", str(event["error"]))

                delta = (event.get("message") or {}).get("content") or ""
                if delta:
                    emitted += 1
                    yield GenerationChunk(
                        text=delta,
                        token_count=1,
                        tokens_per_second=tokens_per_second(emitted, time.monotonic() - started),
                    )

                if event.get("done"):
                    yield GenerationChunk.completion(map_done_reason(event.get("done_reason")))
                    return

    # -- response translation --------------------------------------------

    def _to_result(self, data: Any, elapsed: float) -> GenerationResult:
        if not isinstance(data, dict):
            raise GenerationFailedError("Unexpected response shape from Ollama")
        if "error" in data:
            raise UnknownProviderError(None, str(data["error"]))
        message = data.get("message")
        if not isinstance(message, dict):
            raise GenerationFailedError("Ollama response has no message")

        output_tokens = int(data.get("eval_count") or 0)
        usage = None
        if "eval_count" in data or "prompt_eval_count" in data:
            usage = UsageStats(
                prompt_tokens=int(data.get("prompt_eval_count") or 0),
                completion_tokens=output_tokens,
            )
        return GenerationResult(
            text=message.get("content") or "",
            token_count=output_tokens,
            generation_time=elapsed,
            tokens_per_second=tokens_per_second(output_tokens, elapsed),
            finish_reason=map_done_reason(data.get("done_reason")),
            usage=usage,
            reasoning=message.get("thinking") or None,
        )

    def _map_http_error(self, response: httpx.Response) -> AIError:
        message = response_text(response)
        try:
            body = decode_json(response.content)
        except GenerationFailedError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            message = str(body["error"])
        return error_for_status(response.status_code, message, parse_retry_after(response.headers))
