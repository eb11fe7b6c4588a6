"""Types for the LLM abstraction layer."""

import base64
import dataclasses
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional, Union


class Role(str, Enum):
    """Author of a conversation turn."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class TextPart:
    """A text segment of multi-part content."""
    text: str


@dataclass(frozen=True)
class ImagePart:
    """An inline image, base64-encoded."""
    data: str
    mime_type: str = "image/png"

    @classmethod
    def from_bytes(cls, raw: bytes, mime_type: str = "image/png") -> "ImagePart":
        return cls(data=base64.b64encode(raw).decode("ascii"), mime_type=mime_type)


ContentPart = Union[TextPart, ImagePart]
Content = Union[str, tuple[ContentPart, ...]]


def _new_message_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """A single conversation turn.

    ``content`` is either a plain string or an ordered tuple of
    :class:`TextPart` / :class:`ImagePart` values. Lists are frozen into
    tuples on construction.
    """
    role: Role
    content: Content
    id: str = field(default_factory=_new_message_id, compare=False)
    timestamp: datetime = field(default_factory=_utcnow, compare=False)
    metadata: Optional[Mapping[str, Any]] = field(default=None, compare=False, hash=False)

    def __post_init__(self):
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))
        if not isinstance(self.content, str):
            object.__setattr__(self, "content", tuple(self.content))

    @classmethod
    def system(cls, text: str, **kwargs) -> "Message":
        return cls(Role.SYSTEM, text, **kwargs)

    @classmethod
    def user(cls, content: Union[str, Sequence[ContentPart]], **kwargs) -> "Message":
        return cls(Role.USER, content, **kwargs)

    @classmethod
    def assistant(cls, text: str, **kwargs) -> "Message":
        return cls(Role.ASSISTANT, text, **kwargs)

    @classmethod
    def tool(cls, text: str, **kwargs) -> "Message":
        return cls(Role.TOOL, text, **kwargs)

    @property
    def parts(self) -> tuple[ContentPart, ...]:
        if isinstance(self.content, str):
            return (TextPart(self.content),)
        return self.content

    @property
    def text(self) -> str:
        """Text parts concatenated in order. Images contribute nothing."""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def images(self) -> list[ImagePart]:
        return [p for p in self.parts if isinstance(p, ImagePart)]

    @property
    def has_images(self) -> bool:
        return bool(self.images)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class GenerateConfig:
    """Sampling parameters for a generation request.

    ``temperature`` is clamped to [0, 2] and ``top_p`` to [0, 1]. Adapters
    clamp further where their backend is stricter.
    """
    max_tokens: Optional[int] = None
    temperature: float = 0.7
    top_p: float = 0.9
    top_k: Optional[int] = None
    repetition_penalty: Optional[float] = None
    stop_sequences: tuple[str, ...] = ()

    DEFAULT: ClassVar["GenerateConfig"]
    CREATIVE: ClassVar["GenerateConfig"]
    PRECISE: ClassVar["GenerateConfig"]
    CODE: ClassVar["GenerateConfig"]

    def __post_init__(self):
        object.__setattr__(self, "temperature", _clamp(float(self.temperature), 0.0, 2.0))
        object.__setattr__(self, "top_p", _clamp(float(self.top_p), 0.0, 1.0))
        if self.max_tokens is not None and self.max_tokens < 1:
            object.__setattr__(self, "max_tokens", 1)
        object.__setattr__(self, "stop_sequences", tuple(self.stop_sequences))

    def with_options(self, **changes) -> "GenerateConfig":
        """Return a copy with ``changes`` applied."""
        return dataclasses.replace(self, **changes)


GenerateConfig.DEFAULT = GenerateConfig()
GenerateConfig.CREATIVE = GenerateConfig(temperature=1.0, top_p=0.95)
GenerateConfig.PRECISE = GenerateConfig(temperature=0.1, top_p=0.5)
GenerateConfig.CODE = GenerateConfig(temperature=0.2, top_p=0.9)


class FinishReason(str, Enum):
    """Why a generation ended."""
    STOP = "stop"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"
    CONTENT_FILTER = "content_filter"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class UsageStats:
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class GenerationChunk:
    """One streaming unit. The final chunk has ``is_complete=True``."""
    text: str
    token_count: int = 1
    tokens_per_second: Optional[float] = None
    is_complete: bool = False
    finish_reason: Optional[FinishReason] = None

    @classmethod
    def completion(cls, finish_reason: FinishReason) -> "GenerationChunk":
        return cls(text="", token_count=0, is_complete=True, finish_reason=finish_reason)


@dataclass(frozen=True)
class GenerationResult:
    """Full response of a non-streaming call, or the summary of a finished stream."""
    text: str
    token_count: int
    generation_time: float
    tokens_per_second: float
    finish_reason: FinishReason = FinishReason.STOP
    usage: Optional[UsageStats] = None
    logprobs: Optional[list[float]] = None
    reasoning: Optional[str] = None  # never part of text


def tokens_per_second(tokens: int, elapsed: float) -> float:
    return tokens / elapsed if elapsed > 0 else 0.0


class UnavailableReason(str, Enum):
    API_KEY_MISSING = "api_key_missing"
    DEVICE_NOT_SUPPORTED = "device_not_supported"
    SERVICE_UNREACHABLE = "service_unreachable"


@dataclass(frozen=True)
class ProviderAvailability:
    is_available: bool
    reason: Optional[UnavailableReason] = None

    @classmethod
    def available(cls) -> "ProviderAvailability":
        return cls(is_available=True)

    @classmethod
    def unavailable(cls, reason: UnavailableReason) -> "ProviderAvailability":
        return cls(is_available=False, reason=reason)
