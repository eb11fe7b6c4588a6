"""Build providers from application settings."""

from typing import Union

from ..config import AppSettings
from .anthropic import AnthropicProvider
from .base import BaseLLMProvider
from .huggingface import HuggingFaceProvider
from .models import ModelIdentifier, ProviderNamespace, resolve
from .ollama import OllamaProvider


def create_provider(
    namespace_or_model: Union[ProviderNamespace, ModelIdentifier, str],
    settings: AppSettings,
) -> BaseLLMProvider:
    """Return a new provider for a namespace or for the namespace of a model.

    Strings are read as a namespace (``"anthropic"``) when they contain no
    colon, otherwise as a model identifier (``"anthropic:claude-haiku-4-5"``).
    """
    if isinstance(namespace_or_model, ProviderNamespace):
        namespace = namespace_or_model
    elif isinstance(namespace_or_model, str) and ":" not in namespace_or_model:
        namespace = ProviderNamespace(namespace_or_model.strip().lower())
    else:
        namespace = resolve(namespace_or_model)

    if namespace is ProviderNamespace.OLLAMA:
        ollama = settings.ollama
        return OllamaProvider(
            base_url=ollama.url,
            timeout=ollama.timeout,
            availability_timeout=ollama.availability_timeout,
            num_ctx=ollama.num_ctx,
            keep_alive=ollama.keep_alive,
        )
    if namespace is ProviderNamespace.ANTHROPIC:
        anthropic = settings.anthropic
        return AnthropicProvider(
            api_key=anthropic.api_key,
            base_url=anthropic.base_url,
            api_version=anthropic.api_version,
            timeout=anthropic.timeout,
            default_max_tokens=anthropic.max_tokens,
            thinking_budget_tokens=anthropic.thinking_budget,
        )
    hf = settings.huggingface
    return HuggingFaceProvider(token=hf.token, base_url=hf.base_url, timeout=hf.timeout)
