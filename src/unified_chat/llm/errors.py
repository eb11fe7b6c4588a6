"""Unified error taxonomy.

Every backend-specific failure is mapped into one of these exceptions before
it leaves an adapter. Callers branch on the exception class or on ``kind``.
"""

from enum import Enum
from typing import Any, Optional

from .types import UnavailableReason


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    AUTHENTICATION_FAILED = "authentication_failed"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    GENERATION_FAILED = "generation_failed"
    UNKNOWN_PROVIDER_ERROR = "unknown_provider_error"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    OPERATION_IN_PROGRESS = "operation_in_progress"
    CANCELLED = "cancelled"


class AIError(Exception):
    """Base exception for every generation failure."""

    kind: ErrorKind = ErrorKind.GENERATION_FAILED

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class InvalidInputError(AIError):
    """Model identifier or content the provider cannot handle."""

    kind = ErrorKind.INVALID_INPUT


class AuthenticationError(AIError):
    """Missing or rejected credential."""

    kind = ErrorKind.AUTHENTICATION_FAILED


class RateLimitedError(AIError):
    """Backend signalled throttling."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str = "Rate limited", retry_after: Optional[float] = None):
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after


class GenerationTimeoutError(AIError):
    """Bounded wait for the backend was exceeded."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout: Optional[float] = None, message: Optional[str] = None):
        if message is None:
            message = f"Request timed out after {timeout}s" if timeout else "Request timed out"
        super().__init__(message, details={"timeout": timeout})
        self.timeout = timeout


class NetworkError(AIError):
    """Transport-level failure: connectivity or a malformed response envelope."""

    kind = ErrorKind.NETWORK_ERROR

    def __init__(self, underlying: BaseException | str):
        super().__init__(f"Network error: {underlying}", details={"underlying": underlying})
        self.underlying = underlying


class ServerError(AIError):
    """Backend-side 4xx/5xx response not otherwise classified."""

    kind = ErrorKind.SERVER_ERROR

    def __init__(self, status_code: int, message: str):
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code

    def __str__(self) -> str:
        return f"[{self.status_code}] {self.message}"


class GenerationFailedError(AIError):
    """Decode failure, empty or malformed body, or another processing error."""

    kind = ErrorKind.GENERATION_FAILED

    def __init__(self, underlying: BaseException | str):
        super().__init__(f"Generation failed: {underlying}", details={"underlying": underlying})
        self.underlying = underlying


class UnknownProviderError(GenerationFailedError):
    """Backend error type with no entry in the adapter's mapping table."""

    kind = ErrorKind.UNKNOWN_PROVIDER_ERROR

    def __init__(self, error_type: Optional[str], message: str):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.details = {"error_type": error_type}


class ProviderUnavailableError(AIError):
    """Device, platform or credential precondition not met."""

    kind = ErrorKind.PROVIDER_UNAVAILABLE

    def __init__(self, reason: UnavailableReason, message: Optional[str] = None):
        super().__init__(message or f"Provider unavailable: {reason.value}", details={"reason": reason})
        self.reason = reason


class OperationInProgressError(AIError):
    """A second generation was started while one is still running."""

    kind = ErrorKind.OPERATION_IN_PROGRESS

    def __init__(self, message: str = "A generation is already in progress"):
        super().__init__(message)


class GenerationCancelledError(AIError):
    """The generation was cooperatively cancelled."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Generation was cancelled"):
        super().__init__(message)
