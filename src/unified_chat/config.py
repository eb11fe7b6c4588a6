"""Application configuration."""

import os
from dataclasses import dataclass, field
from typing import Optional

import dotenv

dotenv.load_dotenv()


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    return int(value)


@dataclass
class OllamaSettings:
    """Local Ollama engine."""

    url: str = "http://localhost:11434"
    timeout: float = 120.0
    availability_timeout: float = 2.0
    num_ctx: Optional[int] = 16384
    keep_alive: Optional[str] = None

    @classmethod
    def from_env(cls) -> "OllamaSettings":
        num_ctx = os.getenv("OLLAMA_NUM_CTX")
        return cls(
            url=os.getenv("OLLAMA_URL", cls.url),
            timeout=float(os.getenv("OLLAMA_TIMEOUT", cls.timeout)),
            availability_timeout=float(os.getenv("OLLAMA_AVAILABILITY_TIMEOUT", cls.availability_timeout)),
            num_ctx=cls.num_ctx if num_ctx is None else _optional_int(num_ctx),
            keep_alive=os.getenv("OLLAMA_KEEP_ALIVE") or None,
        )


@dataclass
class AnthropicSettings:
    """Anthropic Messages API."""

    api_key: Optional[str] = None
    base_url: str = "https://api.anthropic.com"
    api_version: str = "2023-06-01"
    timeout: float = 60.0
    max_tokens: int = 1024
    thinking_budget: Optional[int] = None

    @classmethod
    def from_env(cls) -> "AnthropicSettings":
        return cls(
            api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            base_url=os.getenv("ANTHROPIC_BASE_URL", cls.base_url),
            api_version=os.getenv("ANTHROPIC_VERSION", cls.api_version),
            timeout=float(os.getenv("ANTHROPIC_TIMEOUT", cls.timeout)),
            max_tokens=int(os.getenv("ANTHROPIC_MAX_TOKENS", cls.max_tokens)),
            thinking_budget=_optional_int(os.getenv("ANTHROPIC_THINKING_BUDGET")),
        )


@dataclass
class HuggingFaceSettings:
    """Hugging Face inference router."""

    token: Optional[str] = None
    base_url: str = "https://router.huggingface.co/v1"
    timeout: float = 60.0

    @classmethod
    def from_env(cls) -> "HuggingFaceSettings":
        return cls(
            token=os.getenv("HF_TOKEN") or os.getenv("HUGGING_FACE_HUB_TOKEN") or None,
            base_url=os.getenv("HF_BASE_URL", cls.base_url),
            timeout=float(os.getenv("HF_TIMEOUT", cls.timeout)),
        )


@dataclass
class AppSettings:
    """Main application settings with environment variable overrides."""

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Sessions
    default_model: str = "ollama:qwen2.5-coder:1.5b"
    default_system_prompt: Optional[str] = None

    # Providers
    ollama: OllamaSettings = field(default_factory=OllamaSettings)
    anthropic: AnthropicSettings = field(default_factory=AnthropicSettings)
    huggingface: HuggingFaceSettings = field(default_factory=HuggingFaceSettings)

    @classmethod
    def from_env(cls) -> "AppSettings":
        return cls(
            host=os.getenv("APP_HOST", cls.host),
            port=int(os.getenv("APP_PORT", cls.port)),
            default_model=os.getenv("DEFAULT_MODEL", cls.default_model),
            default_system_prompt=os.getenv("DEFAULT_SYSTEM_PROMPT") or None,
            ollama=OllamaSettings.from_env(),
            anthropic=AnthropicSettings.from_env(),
            huggingface=HuggingFaceSettings.from_env(),
        )


settings = AppSettings.from_env()
