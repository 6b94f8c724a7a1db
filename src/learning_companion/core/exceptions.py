"""
Exception hierarchy for the Learning Companion.

Provides structured error handling with specific error types for sessions,
providers, storage and content components.
"""

from typing import Any, Dict, Optional


class LearningCompanionError(Exception):
    """Base exception for all Learning Companion errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        component: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.component = component

    def __str__(self) -> str:
        """String representation of the error."""
        base_msg = f"[{self.component or 'LearningCompanion'}] {self.message}"
        if self.error_code:
            base_msg = f"[{self.error_code}] {base_msg}"
        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "component": self.component,
            "details": self.details,
        }


class ConfigurationError(LearningCompanionError):
    """Exception raised when configuration is invalid or missing."""

    pass


class StorageError(LearningCompanionError):
    """Exception raised when the key-value store fails."""

    pass


class CatalogueError(LearningCompanionError):
    """Exception raised when the content catalogue cannot be loaded."""

    pass


class ValidationError(LearningCompanionError):
    """Exception raised when input validation fails."""

    def __init__(self, field: str, value: Any, reason: str, **kwargs: Any) -> None:
        super().__init__(
            f"Validation failed for {field}: {reason}",
            error_code="VALIDATION_ERROR",
            details={"field": field, "value": value, "reason": reason},
            **kwargs,
        )


class SessionError(LearningCompanionError):
    """Exception raised for session lifecycle failures."""

    pass


class SessionNotFoundError(SessionError):
    """Raised when a session id is unknown or already archived.

    Callers are expected to start a new session.
    """

    def __init__(self, session_id: str, **kwargs: Any) -> None:
        super().__init__(
            f"Session not found: {session_id}. Please start a new session.",
            error_code="SESSION_NOT_FOUND",
            details={"session_id": session_id},
            component=kwargs.pop("component", "SessionOrchestrator"),
            **kwargs,
        )
        self.session_id = session_id


class InvalidSessionStateError(SessionError):
    """Raised when a session state transition is not allowed."""

    def __init__(self, session_id: str, current: str, target: str, **kwargs: Any) -> None:
        super().__init__(
            f"Cannot move session {session_id} from {current} to {target}",
            error_code="INVALID_SESSION_STATE",
            details={"session_id": session_id, "current": current, "target": target},
            component=kwargs.pop("component", "SessionOrchestrator"),
            **kwargs,
        )


class ProviderError(LearningCompanionError):
    """Transport-level failure reported by an LLM provider.

    ``status_code`` and ``code`` carry the raw transport signals that the
    error classifier inspects.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        provider: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", None) or {}
        details.update({"status_code": status_code, "code": code, "provider": provider})
        super().__init__(
            message,
            error_code=kwargs.pop("error_code", "PROVIDER_ERROR"),
            details=details,
            component=kwargs.pop("component", provider or "LLMProvider"),
            **kwargs,
        )
        self.status_code = status_code
        self.code = code
        self.provider = provider


class CircuitOpenError(ProviderError):
    """Raised when the provider circuit breaker is open and calls fail fast."""

    def __init__(self, provider: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(
            "Circuit breaker is OPEN",
            code="CIRCUIT_OPEN",
            provider=provider,
            error_code="CIRCUIT_OPEN",
            **kwargs,
        )
