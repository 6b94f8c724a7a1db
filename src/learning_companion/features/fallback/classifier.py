"""
Provider error taxonomy.

``classify_error`` is a pure function of the transport signals an exception
carries (HTTP status, transport code, message), defaulting to ``UNKNOWN``.
"""

import asyncio
from enum import Enum
from typing import Optional

from ...core.exceptions import CircuitOpenError

NETWORK_CODES = frozenset({"ENOTFOUND", "ECONNREFUSED", "ECONNRESET", "EAI_AGAIN"})


class ErrorKind(Enum):
    """Kinds of provider failure."""

    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    NETWORK_UNAVAILABLE = "network_unavailable"
    AUTH_FAILURE = "auth_failure"
    SERVICE_MAINTENANCE = "service_maintenance"
    UNKNOWN = "unknown"


def _status_of(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify_error(error: Optional[BaseException]) -> ErrorKind:
    """Map an exception to an ``ErrorKind``."""
    if error is None:
        return ErrorKind.UNKNOWN

    status = _status_of(error)
    code = getattr(error, "code", None)
    code = code.upper() if isinstance(code, str) else None
    message = str(error).lower()

    if status == 429 or "rate limit" in message:
        return ErrorKind.RATE_LIMIT

    if (
        isinstance(error, (asyncio.TimeoutError, TimeoutError))
        or code == "ETIMEDOUT"
        or "timeout" in message
        or "timed out" in message
    ):
        return ErrorKind.TIMEOUT

    if (
        isinstance(error, CircuitOpenError)
        or code in NETWORK_CODES
        or isinstance(error, ConnectionError)
    ):
        return ErrorKind.NETWORK_UNAVAILABLE

    if status in (401, 403):
        return ErrorKind.AUTH_FAILURE

    if status == 503:
        return ErrorKind.SERVICE_MAINTENANCE

    return ErrorKind.UNKNOWN
