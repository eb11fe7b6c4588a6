"""Shared httpx plumbing for HTTP-backed providers."""

import json
import logging
from abc import abstractmethod
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import httpx

from .base import BaseLLMProvider
from .errors import (
    AIError,
    AuthenticationError,
    GenerationFailedError,
    GenerationTimeoutError,
    InvalidInputError,
    NetworkError,
    RateLimitedError,
    ServerError,
)

logger = logging.getLogger(__name__)


def parse_retry_after(headers: Mapping[str, str]) -> Optional[float]:
    """Seconds from a ``Retry-After`` header (delta-seconds or HTTP date)."""
    value = headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def error_for_status(status_code: int, message: str, retry_after: Optional[float] = None) -> AIError:
    """Generic status-code mapping for backends without typed error bodies."""
    if status_code in (400, 404, 422):
        return InvalidInputError(message)
    if status_code in (401, 403):
        return AuthenticationError(message)
    if status_code == 429:
        return RateLimitedError(message, retry_after=retry_after)
    if status_code in (408, 504):
        return GenerationTimeoutError(message=message)
    return ServerError(status_code, message)


class HTTPProvider(BaseLLMProvider):
    """Provider that owns a lazily created ``httpx.AsyncClient``.

    Every request is bounded by ``timeout``; transport failures surface as
    ``NetworkError`` or ``GenerationTimeoutError`` and are never retried here.
    """

    def __init__(self, base_url: str, timeout: float, client: httpx.AsyncClient | None = None):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
            self._owns_client = True
        return self._client

    async def close(self):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self) -> dict[str, str]:
        return {"content-type": "application/json"}

    @abstractmethod
    def _map_http_error(self, response: httpx.Response) -> AIError:
        """Translate a non-2xx response into the unified taxonomy."""
        ...

    async def _post_json(self, path: str, payload: dict[str, Any]) -> Any:
        client = await self._get_client()
        try:
            response = await client.post(
                self._url(path),
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise GenerationTimeoutError(self.timeout) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(exc) from exc

        if not response.is_success:
            error = self._map_http_error(response)
            logger.warning("%s returned HTTP %d: %s", type(self).__name__, response.status_code, error)
            raise error
        return decode_json(response.content)

    @asynccontextmanager
    async def _open_stream(self, path: str, payload: dict[str, Any]) -> AsyncIterator[httpx.Response]:
        """POST and yield the streaming response once its status is known good.

        Transport errors raised while the body is being read are mapped too.
        """
        client = await self._get_client()
        try:
            async with client.stream(
                "POST",
                self._url(path),
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            ) as response:
                if not response.is_success:
                    await response.aread()
                    error = self._map_http_error(response)
                    logger.warning("%s returned HTTP %d: %s", type(self).__name__, response.status_code, error)
                    raise error
                yield response
        except httpx.TimeoutException as exc:
            raise GenerationTimeoutError(self.timeout) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(exc) from exc


def decode_json(body: bytes | str) -> Any:
    """Decode a JSON body, mapping failures to ``GenerationFailedError``."""
    if not body:
        raise GenerationFailedError("Empty response body")
    try:
        return json.loads(body)
    except ValueError as exc:
        raise GenerationFailedError(exc) from exc


def response_text(response: httpx.Response) -> str:
    try:
        return response.text or f"HTTP {response.status_code}"
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return f"HTTP {response.status_code}"
