"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .llm.base import BaseLLMProvider
from .llm.errors import AIError
from .llm.models import ProviderNamespace
from .llm.registry import create_provider
from .routes import chat

logger = logging.getLogger(__name__)


async def _log_provider_availability(providers: dict[ProviderNamespace, BaseLLMProvider]):
    """Report which backends can serve requests right now."""
    logger.info("[startup] Default model: %s", settings.default_model)
    for namespace, provider in providers.items():
        status = await provider.availability_status()
        if status.is_available:
            logger.info("[startup] %s is available", namespace.value)
        else:
            logger.warning("[startup] %s is unavailable: %s", namespace.value, status.reason.value)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build one provider per backend and close them on shutdown."""
    providers = {namespace: create_provider(namespace, settings) for namespace in ProviderNamespace}
    await _log_provider_availability(providers)
    chat.set_providers(providers)

    yield

    for provider in providers.values():
        await provider.close()
    logger.info("Provider connections closed")


app = FastAPI(lifespan=lifespan)
app.add_exception_handler(AIError, chat.ai_error_handler)

app.include_router(chat.router)
