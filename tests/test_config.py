"""
Unit tests for settings and the provider factory.
"""

import pytest

from unified_chat.config import AnthropicSettings, AppSettings, HuggingFaceSettings, OllamaSettings
from unified_chat.llm.anthropic import AnthropicProvider
from unified_chat.llm.huggingface import HuggingFaceProvider
from unified_chat.llm.models import ModelIdentifier, ProviderNamespace
from unified_chat.llm.ollama import OllamaProvider
from unified_chat.llm.registry import create_provider


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "OLLAMA_URL", "OLLAMA_TIMEOUT", "OLLAMA_NUM_CTX", "OLLAMA_KEEP_ALIVE",
        "ANTHROPIC_API_KEY", "ANTHROPIC_MAX_TOKENS", "ANTHROPIC_THINKING_BUDGET",
        "HF_TOKEN", "HUGGING_FACE_HUB_TOKEN", "DEFAULT_MODEL", "DEFAULT_SYSTEM_PROMPT",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = AppSettings.from_env()

    assert settings.default_model == "ollama:qwen2.5-coder:1.5b"
    assert settings.default_system_prompt is None
    assert settings.ollama.url == "http://localhost:11434"
    assert settings.ollama.num_ctx == 16384
    assert settings.anthropic.api_key is None
    assert settings.anthropic.max_tokens == 1024
    assert settings.huggingface.base_url == "https://router.huggingface.co/v1"


def test_environment_overrides(clean_env):
    clean_env.setenv("OLLAMA_URL", "http://gpu-box:11434")
    clean_env.setenv("OLLAMA_TIMEOUT", "30")
    clean_env.setenv("OLLAMA_NUM_CTX", "")
    clean_env.setenv("ANTHROPIC_API_KEY", "sk-env")
    clean_env.setenv("ANTHROPIC_THINKING_BUDGET", "4096")

    ollama = OllamaSettings.from_env()
    anthropic = AnthropicSettings.from_env()

    assert ollama.url == "http://gpu-box:11434"
    assert ollama.timeout == 30.0
    assert ollama.num_ctx is None
    assert anthropic.api_key == "sk-env"
    assert anthropic.thinking_budget == 4096


def test_hub_token_fallback(clean_env):
    clean_env.setenv("HUGGING_FACE_HUB_TOKEN", "hf_fallback")

    assert HuggingFaceSettings.from_env().token == "hf_fallback"


def test_create_provider_by_namespace():
    settings = AppSettings(anthropic=AnthropicSettings(api_key="sk-test", max_tokens=512))

    ollama = create_provider(ProviderNamespace.OLLAMA, settings)
    anthropic = create_provider("anthropic", settings)
    huggingface = create_provider(ProviderNamespace.HUGGINGFACE, settings)

    assert isinstance(ollama, OllamaProvider)
    assert isinstance(anthropic, AnthropicProvider)
    assert anthropic.default_max_tokens == 512
    assert isinstance(huggingface, HuggingFaceProvider)


def test_create_provider_for_model():
    settings = AppSettings()

    assert isinstance(create_provider(ModelIdentifier.LLAMA3_2_3B, settings), OllamaProvider)
    assert isinstance(create_provider("huggingface:Qwen/Qwen2.5-72B-Instruct", settings), HuggingFaceProvider)
