"""Model identifiers and namespace resolution."""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union

from .errors import InvalidInputError


class ProviderNamespace(str, Enum):
    """Backends a model identifier can belong to."""
    OLLAMA = "ollama"
    ANTHROPIC = "anthropic"
    HUGGINGFACE = "huggingface"


@dataclass(frozen=True)
class ModelIdentifier:
    """A model name scoped to the provider that serves it.

    Rendered as ``namespace:name``; the name itself may contain colons
    (Ollama tags such as ``llama3.2:1b``).
    """
    namespace: ProviderNamespace
    name: str

    LLAMA3_2_1B: ClassVar["ModelIdentifier"]
    LLAMA3_2_3B: ClassVar["ModelIdentifier"]
    QWEN2_5_CODER_1_5B: ClassVar["ModelIdentifier"]
    CLAUDE_SONNET_4_5: ClassVar["ModelIdentifier"]
    CLAUDE_HAIKU_4_5: ClassVar["ModelIdentifier"]
    CLAUDE_OPUS_4_1: ClassVar["ModelIdentifier"]
    HF_LLAMA3_1_8B_INSTRUCT: ClassVar["ModelIdentifier"]
    HF_QWEN2_5_72B_INSTRUCT: ClassVar["ModelIdentifier"]

    @classmethod
    def ollama(cls, name: str) -> "ModelIdentifier":
        return cls(ProviderNamespace.OLLAMA, name)

    @classmethod
    def anthropic(cls, name: str) -> "ModelIdentifier":
        return cls(ProviderNamespace.ANTHROPIC, name)

    @classmethod
    def huggingface(cls, name: str) -> "ModelIdentifier":
        return cls(ProviderNamespace.HUGGINGFACE, name)

    @classmethod
    def parse(cls, value: str) -> "ModelIdentifier":
        """Parse ``namespace:name``.

        Raises:
            InvalidInputError: If the namespace is unknown or the name is empty.
        """
        namespace, sep, name = value.partition(":")
        if not sep or not name:
            raise InvalidInputError(f"Model identifier must look like 'namespace:name', got {value!r}")
        try:
            return cls(ProviderNamespace(namespace.strip().lower()), name.strip())
        except ValueError:
            raise InvalidInputError(f"Unknown model namespace {namespace!r}") from None

    def __str__(self) -> str:
        return f"{self.namespace.value}:{self.name}"


ModelIdentifier.LLAMA3_2_1B = ModelIdentifier.ollama("llama3.2:1b")
ModelIdentifier.LLAMA3_2_3B = ModelIdentifier.ollama("llama3.2:3b")
ModelIdentifier.QWEN2_5_CODER_1_5B = ModelIdentifier.ollama("qwen2.5-coder:1.5b")
ModelIdentifier.CLAUDE_SONNET_4_5 = ModelIdentifier.anthropic("claude-sonnet-4-5")
ModelIdentifier.CLAUDE_HAIKU_4_5 = ModelIdentifier.anthropic("claude-haiku-4-5")
ModelIdentifier.CLAUDE_OPUS_4_1 = ModelIdentifier.anthropic("claude-opus-4-1")
ModelIdentifier.HF_LLAMA3_1_8B_INSTRUCT = ModelIdentifier.huggingface("meta-llama/Llama-3.1-8B-Instruct")
ModelIdentifier.HF_QWEN2_5_72B_INSTRUCT = ModelIdentifier.huggingface("Qwen/Qwen2.5-72B-Instruct")


ModelLike = Union[ModelIdentifier, str]


def as_model_identifier(model: ModelLike) -> ModelIdentifier:
    if isinstance(model, ModelIdentifier):
        return model
    if isinstance(model, str):
        return ModelIdentifier.parse(model)
    raise InvalidInputError(f"Unsupported model identifier type: {type(model).__name__}")


def resolve(model: ModelLike) -> ProviderNamespace:
    """Return the provider namespace a model identifier belongs to."""
    return as_model_identifier(model).namespace
