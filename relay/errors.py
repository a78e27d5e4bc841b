"""
Relay error taxonomy and upstream error handling.

Auth, config and quota errors are raised before the WebSocket upgrade and map
to an HTTP status. Upstream errors are reported in-band to the client.
Metering errors are logged and dropped.
"""
import asyncio
from typing import Optional

from logging_setup import get_logger, Component, redact_text
from observability.events import EventEmitter


class ErrorCategory:
    """Stable error categories."""

    UNAUTHORIZED = "auth.unauthorized"
    UNKNOWN_PROVIDER = "config.unknown_provider"
    QUOTA_EXHAUSTED = "quota.exhausted"

    CONNECT_FAILED = "upstream.connect_failed"
    CONNECT_TIMEOUT = "upstream.connect_timeout"
    PROTOCOL_ERROR = "upstream.protocol_error"

    LOG_FAILED = "metering.log_failed"
    DEBIT_FAILED = "metering.debit_failed"


class RelayError(Exception):
    """Base class; subclasses pin the category and status code."""

    category: str = "relay.error"
    status_code: int = 500

    def __init__(self, message: str = "", category: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        if category is not None:
            self.category = category


class AuthError(RelayError):
    category = ErrorCategory.UNAUTHORIZED
    status_code = 401


class ConfigError(RelayError):
    category = ErrorCategory.UNKNOWN_PROVIDER
    status_code = 400


class QuotaError(RelayError):
    category = ErrorCategory.QUOTA_EXHAUSTED
    status_code = 402


class UpstreamError(RelayError):
    category = ErrorCategory.PROTOCOL_ERROR
    status_code = 502


class MeteringError(RelayError):
    category = ErrorCategory.LOG_FAILED


# In-band frame sent to the client when the upstream side fails
UPSTREAM_ERROR_FRAME = '{"type": "error", "error": {"message": "Upstream provider error"}}'


class UpstreamErrorHandler:
    """Classifies upstream failures and emits upstream.error events."""

    def __init__(self, emitter: EventEmitter):
        self.emitter = emitter
        self.logger = get_logger(Component.ERROR_HANDLER)

    @staticmethod
    def classify_error(error: BaseException) -> str:
        """Map an exception raised while talking to upstream onto a category."""
        if isinstance(error, RelayError):
            return error.category

        error_str = str(error).lower()
        error_type = type(error).__name__

        if isinstance(error, (TimeoutError, asyncio.TimeoutError)) or "timeout" in error_str:
            return ErrorCategory.CONNECT_TIMEOUT

        if (
            isinstance(error, OSError)
            or "connect" in error_str
            or "handshake" in error_str
            or error_type in ("WSServerHandshakeError", "ClientConnectorError", "InvalidURL")
        ):
            return ErrorCategory.CONNECT_FAILED

        return ErrorCategory.PROTOCOL_ERROR

    @staticmethod
    def redact_detail(error: BaseException) -> str:
        detail = redact_text(str(error))
        lowered = detail.lower()
        if "secret" in lowered or "key=" in lowered or "api-key" in lowered or "api_key" in lowered:
            return "[redacted: potential secret]"
        return detail

    def handle_error(
        self,
        session_id: str,
        error: BaseException,
        provider: Optional[str] = None,
    ) -> str:
        """Emit upstream.error for ``error`` and return its category. Never raises."""
        category = self.classify_error(error)
        detail = self.redact_detail(error)

        self.logger.with_session(session_id).warning(
            "Upstream error",
            category=category,
            provider=provider,
            error_type=type(error).__name__,
            detail=detail,
        )
        self.emitter.upstream_error(
            session_id=session_id,
            category=category,
            provider=provider,
            detail=detail,
        )
        return category
