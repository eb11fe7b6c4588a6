"""
Unit tests for the Anthropic provider against a mocked HTTP transport.
"""

import asyncio
import json

import httpx
import pytest

from conftest import mock_client, sse_body
from unified_chat.llm.anthropic import AnthropicProvider, map_anthropic_error, map_stop_reason
from unified_chat.llm.errors import (
    AuthenticationError,
    ErrorKind,
    GenerationTimeoutError,
    InvalidInputError,
    ProviderUnavailableError,
    RateLimitedError,
    ServerError,
    UnknownProviderError,
)
from unified_chat.llm.models import ModelIdentifier
from unified_chat.llm.types import (
    FinishReason,
    GenerateConfig,
    ImagePart,
    Message,
    TextPart,
    UnavailableReason,
)

MODEL = ModelIdentifier.CLAUDE_HAIKU_4_5


def messages_response(stop_reason="end_turn"):
    return {
        "id": "msg_01",
        "type": "message",
        "role": "assistant",
        "content": [
            {"type": "thinking", "thinking": "The user greets me.", "signature": "sig"},
            {"type": "text", "text": "Hello"},
            {"type": "text", "text": " there"},
        ],
        "stop_reason": stop_reason,
        "usage": {"input_tokens": 9, "output_tokens": 4},
    }


def make_provider(handler, **kwargs) -> AnthropicProvider:
    kwargs.setdefault("api_key", "sk-test")
    return AnthropicProvider(client=mock_client(handler), **kwargs)


# -- request translation --------------------------------------------------


def test_request_body_moves_first_system_message_out_of_turns():
    provider = AnthropicProvider(api_key="sk-test")
    messages = [
        Message.system("Be brief."),
        Message.user("Hi"),
        Message.system("Ignored."),
        Message.tool("{}"),
        Message.assistant("Hello"),
    ]

    body = provider.build_request_body(messages, MODEL, GenerateConfig.DEFAULT)

    assert body["system"] == "Be brief."
    assert body["messages"] == [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello"},
    ]
    assert body["max_tokens"] == 1024
    assert "stream" not in body


def test_request_body_clamps_sampling_parameters():
    provider = AnthropicProvider(api_key="sk-test", default_max_tokens=256)
    config = GenerateConfig(temperature=1.8, top_p=0.0, top_k=5, stop_sequences=("END",))

    body = provider.build_request_body([Message.user("Hi")], MODEL, config, stream=True)

    assert body["temperature"] == 1.0
    assert "top_p" not in body
    assert body["top_k"] == 5
    assert body["stop_sequences"] == ["END"]
    assert body["max_tokens"] == 256
    assert body["stream"] is True


def test_request_body_with_thinking_budget():
    provider = AnthropicProvider(api_key="sk-test", thinking_budget_tokens=2048)

    body = provider.build_request_body([Message.user("Hi")], MODEL, GenerateConfig.DEFAULT)

    assert body["thinking"] == {"type": "enabled", "budget_tokens": 2048}


def test_request_body_encodes_images():
    provider = AnthropicProvider(api_key="sk-test")
    message = Message.user([TextPart("What is this?"), ImagePart("aGk=", "image/webp")])

    body = provider.build_request_body([message], MODEL, GenerateConfig.DEFAULT)

    assert body["messages"][0]["content"] == [
        {"type": "text", "text": "What is this?"},
        {"type": "image", "source": {"type": "base64", "media_type": "image/webp", "data": "aGk="}},
    ]


def test_unsupported_image_type_is_invalid_input():
    provider = AnthropicProvider(api_key="sk-test")

    with pytest.raises(InvalidInputError):
        provider.build_request_body(
            [Message.user([ImagePart("aGk=", "image/tiff")])], MODEL, GenerateConfig.DEFAULT
        )


# -- mapping tables -------------------------------------------------------


@pytest.mark.parametrize(
    "reason, expected",
    [
        ("end_turn", FinishReason.STOP),
        ("max_tokens", FinishReason.MAX_TOKENS),
        ("stop_sequence", FinishReason.STOP_SEQUENCE),
        ("refusal", FinishReason.CONTENT_FILTER),
        ("pause_turn", FinishReason.STOP),
        (None, FinishReason.STOP),
    ],
)
def test_stop_reason_table(reason, expected):
    assert map_stop_reason(reason) is expected


@pytest.mark.parametrize(
    "error_type, kind",
    [
        ("invalid_request_error", ErrorKind.INVALID_INPUT),
        ("not_found_error", ErrorKind.INVALID_INPUT),
        ("authentication_error", ErrorKind.AUTHENTICATION_FAILED),
        ("permission_error", ErrorKind.AUTHENTICATION_FAILED),
        ("rate_limit_error", ErrorKind.RATE_LIMITED),
        ("timeout_error", ErrorKind.TIMEOUT),
        ("api_error", ErrorKind.SERVER_ERROR),
        ("overloaded_error", ErrorKind.SERVER_ERROR),
        ("billing_error", ErrorKind.UNKNOWN_PROVIDER_ERROR),
        (None, ErrorKind.UNKNOWN_PROVIDER_ERROR),
    ],
)
def test_error_type_table(error_type, kind):
    error = map_anthropic_error(error_type, "original message", 400)

    assert error.kind is kind
    assert error.message == "original message"


def test_unknown_error_type_keeps_type_name():
    error = map_anthropic_error("billing_error", "Your credit balance is too low", 400)

    assert isinstance(error, UnknownProviderError)
    assert error.error_type == "billing_error"


# -- generate -------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_sends_auth_headers():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(200, json=messages_response())

    provider = make_provider(handler, api_version="2023-06-01")
    await provider.generate([Message.user("Hi")], MODEL)

    request = seen[0]
    assert request.url.path == "/v1/messages"
    assert request.headers["x-api-key"] == "sk-test"
    assert request.headers["anthropic-version"] == "2023-06-01"
    assert json.loads(request.content)["model"] == "claude-haiku-4-5"


@pytest.mark.asyncio
async def test_generate_joins_text_blocks_and_keeps_thinking_apart():
    provider = make_provider(lambda request: httpx.Response(200, json=messages_response("max_tokens")))

    result = await provider.generate([Message.user("Hi")], MODEL)

    assert result.text == "Hello there"
    assert result.reasoning == "The user greets me."
    assert result.finish_reason is FinishReason.MAX_TOKENS
    assert result.token_count == 4
    assert result.usage.prompt_tokens == 9


@pytest.mark.asyncio
async def test_generate_without_api_key_is_unavailable():
    provider = make_provider(lambda request: pytest.fail("no request expected"), api_key=None)

    status = await provider.availability_status()
    assert status.reason is UnavailableReason.API_KEY_MISSING

    with pytest.raises(ProviderUnavailableError):
        await provider.generate([Message.user("Hi")], MODEL)


@pytest.mark.asyncio
async def test_available_with_api_key():
    provider = make_provider(lambda request: pytest.fail("no request expected"))

    assert await provider.is_available()


@pytest.mark.parametrize(
    "status, error_type, expected",
    [
        (400, "invalid_request_error", InvalidInputError),
        (401, "authentication_error", AuthenticationError),
        (429, "rate_limit_error", RateLimitedError),
        (504, "timeout_error", GenerationTimeoutError),
        (529, "overloaded_error", ServerError),
        (402, "billing_error", UnknownProviderError),
    ],
)
@pytest.mark.asyncio
async def test_http_error_body_is_mapped(status, error_type, expected):
    body = {"type": "error", "error": {"type": error_type, "message": "details here"}}
    provider = make_provider(lambda request: httpx.Response(status, json=body))

    with pytest.raises(expected):
        await provider.generate([Message.user("Hi")], MODEL)


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after():
    body = {"type": "error", "error": {"type": "rate_limit_error", "message": "slow down"}}
    provider = make_provider(lambda request: httpx.Response(429, headers={"retry-after": "20"}, json=body))

    with pytest.raises(RateLimitedError) as exc_info:
        await provider.generate([Message.user("Hi")], MODEL)
    assert exc_info.value.retry_after == 20.0


@pytest.mark.asyncio
async def test_non_json_error_body_is_server_error():
    provider = make_provider(lambda request: httpx.Response(502, text="Bad Gateway"))

    with pytest.raises(ServerError) as exc_info:
        await provider.generate([Message.user("Hi")], MODEL)
    assert exc_info.value.status_code == 502


# -- stream ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_stream_emits_text_deltas_only():
    body = sse_body(
        ("message_start", json.dumps({"type": "message_start", "message": {"id": "msg_01"}})),
        ("content_block_start", json.dumps({"type": "content_block_start", "index": 0})),
        ("ping", json.dumps({"type": "ping"})),
        ("content_block_delta", json.dumps({
            "type": "content_block_delta", "index": 0,
            "delta": {"type": "thinking_delta", "thinking": "hmm"},
        })),
        ("content_block_delta", json.dumps({
            "type": "content_block_delta", "index": 1,
            "delta": {"type": "text_delta", "text": "Hel"},
        })),
        ("content_block_delta", json.dumps({
            "type": "content_block_delta", "index": 1,
            "delta": {"type": "text_delta", "text": "lo"},
        })),
        ("content_block_stop", json.dumps({"type": "content_block_stop", "index": 1})),
        ("message_delta", json.dumps({"type": "message_delta", "delta": {"stop_reason": "stop_sequence"}})),
        ("message_stop", json.dumps({"type": "message_stop"})),
    )
    provider = make_provider(lambda request: httpx.Response(200, content=body))

    chunks = [chunk async for chunk in provider.stream([Message.user("Hi")], MODEL)]

    assert [c.text for c in chunks] == ["Hel", "lo", ""]
    assert chunks[-1].finish_reason is FinishReason.STOP_SEQUENCE


@pytest.mark.asyncio
async def test_stream_error_event_is_mapped():
    body = sse_body(
        ("content_block_delta", json.dumps({
            "type": "content_block_delta", "index": 0,
            "delta": {"type": "text_delta", "text": "Hel"},
        })),
        ("error", json.dumps({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})),
    )
    provider = make_provider(lambda request: httpx.Response(200, content=body))
    stream = provider.stream([Message.user("Hi")], MODEL)

    assert (await stream.__anext__()).text == "Hel"
    with pytest.raises(ServerError):
        await stream.__anext__()


@pytest.mark.asyncio
async def test_stream_closed_without_message_stop_still_completes():
    body = sse_body(
        ("content_block_delta", json.dumps({
            "type": "content_block_delta", "index": 0,
            "delta": {"type": "text_delta", "text": "Hi"},
        })),
        ("message_delta", json.dumps({"type": "message_delta", "delta": {"stop_reason": "max_tokens"}})),
    )
    provider = make_provider(lambda request: httpx.Response(200, content=body))

    chunks = [chunk async for chunk in provider.stream([Message.user("Hi")], MODEL)]

    assert chunks[-1].is_complete
    assert chunks[-1].finish_reason is FinishReason.MAX_TOKENS


@pytest.mark.asyncio
async def test_stream_cancel_while_backend_is_silent():
    release = asyncio.Event()

    async def body():
        yield sse_body(("content_block_delta", json.dumps({
            "type": "content_block_delta", "index": 0,
            "delta": {"type": "text_delta", "text": "Hel"},
        })))
        await release.wait()
        yield sse_body(("message_stop", json.dumps({"type": "message_stop"})))

    provider = make_provider(lambda request: httpx.Response(200, content=body()))
    stream = provider.stream([Message.user("Hi")], MODEL)
    assert (await stream.__anext__()).text == "Hel"

    pending = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0.01)
    await provider.cancel_generation()
    chunk = await asyncio.wait_for(pending, timeout=1)

    assert chunk.is_complete
    assert chunk.finish_reason is FinishReason.CANCELLED
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
