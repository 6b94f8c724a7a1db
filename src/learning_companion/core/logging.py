"""
Structured logging configuration with session correlation.

Provides centralized logging configuration with correlation IDs so a single
tutoring turn can be followed across the session, memory, cache, cost and
provider components.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

import structlog
from structlog.stdlib import LoggerFactory

# Context variables for request correlation
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
module_var: ContextVar[Optional[str]] = ContextVar("module", default=None)


class StructuredLogger:
    """Structured logger that stamps every event with the current turn context."""

    def __init__(self, name: str):
        self.name = name
        self.logger = structlog.get_logger(name)

    def _get_context(self) -> Dict[str, Any]:
        """Get current request context for logging."""
        context = {}

        if request_id := request_id_var.get():
            context["request_id"] = request_id
        if session_id := session_id_var.get():
            context["session_id"] = session_id
        if user_id := user_id_var.get():
            context["user_id"] = user_id
        if module := module_var.get():
            context["module"] = module

        return context

    def _merge(self, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        merged = self._get_context()
        merged.update(kwargs)
        return merged

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message with context."""
        self.logger.debug(message, **self._merge(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message with context."""
        self.logger.info(message, **self._merge(kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message with context."""
        self.logger.warning(message, **self._merge(kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error message with context."""
        self.logger.error(message, **self._merge(kwargs))

    def critical(self, message: str, **kwargs: Any) -> None:
        """Log critical message with context."""
        self.logger.critical(message, **self._merge(kwargs))

    def log_processing_step(
        self,
        step: str,
        component: str,
        duration_ms: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        """Log a processing step with timing information."""
        log_data = {"step": step, "component": component, **kwargs}

        if duration_ms is not None:
            log_data["duration_ms"] = duration_ms

        self.info(f"Processing step: {step}", **log_data)

    def log_api_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
        **kwargs: Any,
    ) -> None:
        """Log API request with timing and status."""
        self.info(
            f"API request: {method} {path}",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms,
            **kwargs,
        )

    def log_session_event(self, event_type: str, session_id: str, **kwargs: Any) -> None:
        """Log session lifecycle events."""
        self.info(
            f"Session event: {event_type}",
            event_type=event_type,
            tutor_session=session_id,
            **kwargs,
        )

    def log_provider_call(
        self,
        provider: str,
        model: str,
        tier: str,
        input_tokens: int,
        output_tokens: int,
        duration_ms: float,
        **kwargs: Any,
    ) -> None:
        """Log one completed LLM call with its token usage."""
        self.info(
            f"Provider call: {provider}/{model}",
            provider=provider,
            model=model,
            tier=tier,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
            **kwargs,
        )


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name)


def set_request_context(
    request_id: Optional[str] = None,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    module: Optional[str] = None,
) -> None:
    """Set request context for correlation."""
    if request_id:
        request_id_var.set(request_id)
    if session_id:
        session_id_var.set(session_id)
    if user_id:
        user_id_var.set(user_id)
    if module:
        module_var.set(module)


def clear_request_context() -> None:
    """Clear request context."""
    request_id_var.set(None)
    session_id_var.set(None)
    user_id_var.set(None)
    module_var.set(None)


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return str(uuid.uuid4())


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Configure structured logging for the application."""

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.add_log_level,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(message)s",
        handlers=[logging.StreamHandler()],
    )


class ProcessingTimer:
    """Context manager for timing processing steps."""

    def __init__(
        self, logger: StructuredLogger, step: str, component: str, **kwargs: Any
    ):
        self.logger = logger
        self.step = step
        self.component = component
        self.kwargs = kwargs
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[float] = None

    def __enter__(self) -> "ProcessingTimer":
        self.start_time = time.perf_counter()
        self.logger.log_processing_step(
            f"{self.step}_start", self.component, **self.kwargs
        )
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.start_time is not None:
            self.duration_ms = (time.perf_counter() - self.start_time) * 1000
            status = "success" if exc_type is None else "error"

            self.logger.log_processing_step(
                f"{self.step}_end",
                self.component,
                duration_ms=self.duration_ms,
                status=status,
                **self.kwargs,
            )
