"""Chat session endpoints."""

import json
import logging
import uuid
from contextlib import aclosing
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from ..config import settings
from ..llm.base import BaseLLMProvider
from ..llm.errors import AIError, ErrorKind, OperationInProgressError, ProviderUnavailableError
from ..llm.models import ModelIdentifier, ProviderNamespace
from ..llm.types import (
    GenerateConfig,
    GenerationChunk,
    GenerationResult,
    ImagePart,
    Message,
    TextPart,
    UnavailableReason,
)
from ..session import ChatSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

ERROR_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.AUTHENTICATION_FAILED: 401,
    ErrorKind.OPERATION_IN_PROGRESS: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.PROVIDER_UNAVAILABLE: 503,
    ErrorKind.TIMEOUT: 504,
}

_providers: dict[ProviderNamespace, BaseLLMProvider] = {}
_sessions: dict[str, ChatSession] = {}


def set_providers(providers: dict[ProviderNamespace, BaseLLMProvider]):
    """Install the providers sessions are created against. Set at app startup."""
    global _providers
    _providers = dict(providers)
    _sessions.clear()


# -- request bodies -------------------------------------------------------


class ImageInput(BaseModel):
    data: str = Field(..., description="Base64-encoded image bytes")
    mime_type: str = "image/png"


class CreateSessionRequest(BaseModel):
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(None, ge=1)


class MessageRequest(BaseModel):
    text: str
    images: list[ImageInput] = Field(default_factory=list)

    def to_message(self) -> Message:
        if not self.images:
            return Message.user(self.text)
        parts = [TextPart(self.text)] + [ImagePart(i.data, i.mime_type) for i in self.images]
        return Message.user(parts)


class SystemPromptRequest(BaseModel):
    text: Optional[str] = None


# -- serialisation --------------------------------------------------------


def error_payload(exc: AIError) -> dict:
    return {"error": exc.kind.value, "message": str(exc)}


async def ai_error_handler(request: Request, exc: AIError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.kind, 502)
    logger.warning("%s %s -> %d %s", request.method, request.url.path, status_code, exc.kind.value)
    return JSONResponse(status_code=status_code, content=error_payload(exc))


def _message_json(message: Message) -> dict:
    return {
        "id": message.id,
        "role": message.role.value,
        "text": message.text,
        "has_images": message.has_images,
        "timestamp": message.timestamp.isoformat(),
    }


def _session_json(session_id: str, session: ChatSession) -> dict:
    last_error = session.last_error
    return {
        "id": session_id,
        "model": str(session.model),
        "is_generating": session.is_generating,
        "streaming_text": session.streaming_text,
        "last_error": error_payload(last_error) if last_error else None,
        "messages": [_message_json(m) for m in session.messages],
    }


def _result_json(result: GenerationResult) -> dict:
    return {
        "text": result.text,
        "token_count": result.token_count,
        "generation_time": result.generation_time,
        "tokens_per_second": result.tokens_per_second,
        "finish_reason": result.finish_reason.value,
        "usage": (
            {
                "prompt_tokens": result.usage.prompt_tokens,
                "completion_tokens": result.usage.completion_tokens,
                "total_tokens": result.usage.total_tokens,
            }
            if result.usage
            else None
        ),
        "reasoning": result.reasoning,
    }


def _chunk_json(chunk: GenerationChunk) -> dict:
    return {
        "text": chunk.text,
        "token_count": chunk.token_count,
        "tokens_per_second": chunk.tokens_per_second,
        "is_complete": chunk.is_complete,
        "finish_reason": chunk.finish_reason.value if chunk.finish_reason else None,
    }


def _get_session(session_id: str) -> ChatSession:
    session = _sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return session


# -- endpoints ------------------------------------------------------------


@router.get("/providers")
async def list_providers():
    """Availability of every configured provider."""
    providers = {}
    for namespace, provider in _providers.items():
        status = await provider.availability_status()
        providers[namespace.value] = {
            "available": status.is_available,
            "reason": status.reason.value if status.reason else None,
        }
    return {"providers": providers}


@router.post("/sessions", status_code=201)
async def create_session(body: CreateSessionRequest):
    model = ModelIdentifier.parse(body.model or settings.default_model)
    provider = _providers.get(model.namespace)
    if provider is None:
        raise ProviderUnavailableError(
            UnavailableReason.SERVICE_UNREACHABLE,
            f"No provider configured for {model.namespace.value}",
        )

    config = GenerateConfig.DEFAULT
    if body.temperature is not None:
        config = config.with_options(temperature=body.temperature)
    if body.max_tokens is not None:
        config = config.with_options(max_tokens=body.max_tokens)

    system_prompt = body.system_prompt if body.system_prompt is not None else settings.default_system_prompt
    session = ChatSession(provider, model, config, system_prompt=system_prompt)
    session_id = uuid.uuid4().hex
    _sessions[session_id] = session
    logger.info("Created session %s for %s", session_id, model)
    return _session_json(session_id, session)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    return _session_json(session_id, _get_session(session_id))


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    """Drop a session, cancelling its generation if one is running."""
    session = _get_session(session_id)
    session.cancel()
    del _sessions[session_id]
    logger.info("Deleted session %s", session_id)
    return {"deleted": True}


@router.post("/sessions/{session_id}/messages")
async def send_message(session_id: str, body: MessageRequest):
    """Send a message and wait for the whole reply."""
    session = _get_session(session_id)
    result = await session.send(body.to_message())
    return _result_json(result)


@router.post("/sessions/{session_id}/stream")
async def stream_message(session_id: str, body: MessageRequest):
    """Send a message and stream the reply as Server-Sent Events.

    Each event carries a chunk; the last is either a chunk with
    ``is_complete`` set or an ``error`` event.
    """
    session = _get_session(session_id)
    if session.is_generating:
        raise OperationInProgressError()
    message = body.to_message()

    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            async with aclosing(session.stream(message)) as chunks:
                async for chunk in chunks:
                    yield f"data: {json.dumps(_chunk_json(chunk), ensure_ascii=False)}\n\n"
        except AIError as exc:
            yield f"event: error\ndata: {json.dumps(error_payload(exc), ensure_ascii=False)}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/sessions/{session_id}/cancel")
async def cancel_generation(session_id: str):
    session = _get_session(session_id)
    was_generating = session.is_generating
    session.cancel()
    return {"cancelled": was_generating}


@router.post("/sessions/{session_id}/undo")
async def undo_last_exchange(session_id: str):
    session = _get_session(session_id)
    undone = session.undo_last_exchange()
    return {"undone": undone, "session": _session_json(session_id, session)}


@router.put("/sessions/{session_id}/system-prompt")
async def set_system_prompt(session_id: str, body: SystemPromptRequest):
    session = _get_session(session_id)
    session.set_system_prompt(body.text)
    return _session_json(session_id, session)


@router.delete("/sessions/{session_id}/history")
async def clear_history(session_id: str, preserve_system_prompt: bool = True):
    session = _get_session(session_id)
    session.clear_history(preserve_system_prompt=preserve_system_prompt)
    return _session_json(session_id, session)
