"""
Content-safe logging module.
CRITICAL: Never log prompt text, message content or attachment URLs.
Only log: identifiers, statuses, counts and error codes.
"""
import logging
import sys
from typing import Any, Optional

from app.core.config import get_settings


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()

    # Determine log level based on environment
    log_level = logging.DEBUG if settings.service_env == "dev" else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger instance."""
    return logging.getLogger(name)


class SafeLogger:
    """
    Content-safe logger wrapper.
    Only context fields listed in SAFE_FIELDS are rendered.
    """

    SAFE_FIELDS = frozenset({
        "request_id",
        "client_id",
        "queue_id",
        "chat_id",
        "status",
        "status_code",
        "error_code",
        "method",
        "path",
        "model",
        "gate",
        "count",
        "completed",
        "failed",
        "failures",
        "outstanding",
        "queue_size",
        "latency_ms",
        "generation",
        "state",
        "exception_class",
    })

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _format_safe_context(self, context: dict[str, Any]) -> str:
        """Format only safe fields from context."""
        safe_items = []
        for key, value in context.items():
            if key in self.SAFE_FIELDS:
                safe_items.append(f"{key}={value}")
        return " | ".join(safe_items) if safe_items else ""

    def _render(self, message: str, context: dict[str, Any]) -> str:
        ctx = self._format_safe_context(context)
        return f"{message} | {ctx}" if ctx else message

    def info(self, message: str, **context: Any) -> None:
        """Log info with safe context only."""
        self._logger.info(self._render(message, context))

    def warning(self, message: str, **context: Any) -> None:
        """Log warning with safe context only."""
        self._logger.warning(self._render(message, context))

    def error(
        self,
        message: str,
        error_code: Optional[str] = None,
        **context: Any
    ) -> None:
        """
        Log error with safe context only.
        NEVER log exception messages that might echo prompt content.
        """
        if error_code:
            context["error_code"] = error_code
        self._logger.error(self._render(message, context))

    def debug(self, message: str, **context: Any) -> None:
        """Log debug with safe context only."""
        self._logger.debug(self._render(message, context))


def get_safe_logger(name: str) -> SafeLogger:
    """Get a content-safe logger instance."""
    return SafeLogger(name)
