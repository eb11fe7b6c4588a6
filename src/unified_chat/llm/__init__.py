"""LLM abstraction layer."""

from .anthropic import AnthropicProvider
from .base import BaseLLMProvider
from .cancellation import CancellationToken
from .errors import (
    AIError,
    AuthenticationError,
    ErrorKind,
    GenerationCancelledError,
    GenerationFailedError,
    GenerationTimeoutError,
    InvalidInputError,
    NetworkError,
    OperationInProgressError,
    ProviderUnavailableError,
    RateLimitedError,
    ServerError,
    UnknownProviderError,
)
from .huggingface import HuggingFaceProvider
from .models import ModelIdentifier, ProviderNamespace, resolve
from .ollama import OllamaProvider
from .streaming import GenerationStream
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
)

__all__ = [
    "AIError",
    "AnthropicProvider",
    "AuthenticationError",
    "BaseLLMProvider",
    "CancellationToken",
    "ErrorKind",
    "FinishReason",
    "GenerateConfig",
    "GenerationCancelledError",
    "GenerationChunk",
    "GenerationFailedError",
    "GenerationResult",
    "GenerationStream",
    "GenerationTimeoutError",
    "HuggingFaceProvider",
    "ImagePart",
    "InvalidInputError",
    "Message",
    "ModelIdentifier",
    "NetworkError",
    "OllamaProvider",
    "OperationInProgressError",
    "ProviderAvailability",
    "ProviderNamespace",
    "ProviderUnavailableError",
    "RateLimitedError",
    "Role",
    "ServerError",
    "TextPart",
    "UnavailableReason",
    "UnknownProviderError",
    "UsageStats",
    "resolve",
]
