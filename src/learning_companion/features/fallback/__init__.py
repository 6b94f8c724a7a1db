"""Error classification and offline fallback content."""

from .catalogue import ContentCatalogue, ContentType, FallbackContentItem
from .classifier import ErrorKind, classify_error
from .handler import (
    GENERIC_RETRY_MESSAGE,
    POLICY_TABLE,
    ErrorContext,
    ErrorHandler,
    ErrorPolicy,
    ErrorResolution,
    QueuedUtterance,
)

__all__ = [
    "GENERIC_RETRY_MESSAGE",
    "POLICY_TABLE",
    "ContentCatalogue",
    "ContentType",
    "ErrorContext",
    "ErrorHandler",
    "ErrorKind",
    "ErrorPolicy",
    "ErrorResolution",
    "FallbackContentItem",
    "QueuedUtterance",
    "classify_error",
]
