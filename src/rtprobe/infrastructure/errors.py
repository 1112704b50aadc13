"""Error taxonomy shared by the diagnostics engine and its adapters."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    HANDSHAKE_TIMEOUT = "HANDSHAKE_TIMEOUT"
    HANDSHAKE_REJECTED = "HANDSHAKE_REJECTED"
    SUBSCRIPTION_TIMEOUT = "SUBSCRIPTION_TIMEOUT"
    SUBSCRIPTION_REJECTED = "SUBSCRIPTION_REJECTED"
    ROUND_TRIP_TIMEOUT = "ROUND_TRIP_TIMEOUT"
    WRITE_FAILED = "WRITE_FAILED"
    REMEDIATION_FAILED = "REMEDIATION_FAILED"
    REALTIME_DISABLED = "REALTIME_DISABLED"


class RtprobeError(Exception):
    """Base class for errors raised by rtprobe components."""

    code: Optional[ErrorCode] = None

    def __init__(self, message: str, *, context: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})


class TransportError(RtprobeError):
    """Raised when the realtime transport cannot be reached or used."""


class WriteFailedError(RtprobeError):
    """Raised when writing a probe record to the watched resource fails.

    ``message`` is the backend's error text, kept verbatim.
    """

    code = ErrorCode.WRITE_FAILED

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, context=context)
        self.status_code = status_code
        self.error_code = error_code


class RemediationError(RtprobeError):
    """Raised when the remediation RPC cannot be invoked."""

    code = ErrorCode.REMEDIATION_FAILED


def error_message(exc: BaseException) -> str:
    """Return the most direct message carried by ``exc``."""

    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    text = str(exc)
    return text or exc.__class__.__name__


__all__ = [
    "ErrorCode",
    "RtprobeError",
    "TransportError",
    "WriteFailedError",
    "RemediationError",
    "error_message",
]
