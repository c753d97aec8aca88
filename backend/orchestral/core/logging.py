"""
Structured logging configuration for Orchestral.

Provides JSON-formatted logs with context propagation so that every line
emitted while answering a chat request carries the request, session and
knowledge source it belongs to.
"""

import logging
import json
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, Optional, Callable

# Context variables for request tracing
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
session_id_var: ContextVar[str] = ContextVar("session_id", default="")
source_id_var: ContextVar[str] = ContextVar("source_id", default="")


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return str(uuid.uuid4())[:8]


def set_request_context(request_id: Optional[str] = None) -> str:
    """Set the request id for logging, generating one if not given."""
    req_id = request_id or generate_request_id()
    request_id_var.set(req_id)
    return req_id


def set_session_context(session_id: str) -> None:
    """Attach a chat session to the current logging context."""
    session_id_var.set(session_id[:8] + "..." if len(session_id) > 8 else session_id)


def set_source_context(source_id: str) -> None:
    """Attach a knowledge source to the current logging context.

    Each source query runs in its own asyncio task, so the value set here
    only affects log lines of that one query.
    """
    source_id_var.set(source_id)


def clear_request_context() -> None:
    """Clear request context after request completes."""
    request_id_var.set("")
    session_id_var.set("")
    source_id_var.set("")


class StructuredLogFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in JSON format suitable for log aggregation systems
    like ELK, Splunk, or CloudWatch.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add context from context variables
        if request_id := request_id_var.get():
            log_data["request_id"] = request_id
        if session_id := session_id_var.get():
            log_data["session_id"] = session_id
        if source_id := source_id_var.get():
            log_data["source_id"] = source_id

        # Add extra fields from record
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Provides colorized, readable output for local development.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset = self.COLORS["RESET"]

        context_parts = []
        if request_id := request_id_var.get():
            context_parts.append(f"req={request_id}")
        if session_id := session_id_var.get():
            context_parts.append(f"session={session_id}")
        if source_id := source_id_var.get():
            context_parts.append(f"src={source_id}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        log_line = (
            f"{color}{timestamp} {record.levelname:8}{reset}"
            f"{context_str} "
            f"{record.name}: {record.getMessage()}"
        )

        if hasattr(record, "extra_fields") and record.extra_fields:
            extras = " | ".join(f"{k}={v}" for k, v in record.extra_fields.items())
            log_line += f" | {extras}"

        if record.exc_info:
            log_line += f"\n{self.formatException(record.exc_info)}"

        return log_line


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that automatically includes context in log messages.

    Usage:
        logger = get_logger(__name__)
        logger.info("Source queried", extra={"source_id": "jira-issues", "duration_ms": 150})
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get("extra", {})
        if extra:
            kwargs["extra"] = {"extra_fields": extra}
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """
    Get a configured logger with context support.

    Args:
        name: Logger name (typically __name__)

    Returns:
        ContextLogger instance
    """
    logger = logging.getLogger(name)
    return ContextLogger(logger, {})


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
) -> None:
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format for production, readable format for development
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, log_level.upper()))
    handler.setFormatter(StructuredLogFormatter() if json_format else DevelopmentFormatter())
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("slack_sdk").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def log_execution_time(operation: str = "operation") -> Callable:
    """
    Decorator to log how long a coroutine function takes.

    Usage:
        @log_execution_time(operation="confluence_search")
        async def search_pages(...):
            ...
    """

    def decorator(func: Callable) -> Callable:
        func_logger = get_logger(func.__module__)

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                duration_ms = (time.perf_counter() - start) * 1000
                func_logger.info(
                    f"{operation} completed",
                    extra={"duration_ms": round(duration_ms, 2), "status": "success"},
                )
                return result
            except Exception as e:
                duration_ms = (time.perf_counter() - start) * 1000
                func_logger.error(
                    f"{operation} failed",
                    extra={
                        "duration_ms": round(duration_ms, 2),
                        "status": "error",
                        "error_type": type(e).__name__,
                    },
                )
                raise

        return async_wrapper

    return decorator


# ============ Specialized Loggers ============


class PerformanceLogger:
    """Logger specialized for performance metrics."""

    def __init__(self, name: str = "performance"):
        self.logger = get_logger(name)

    def log_plan(self, phases: int, sources: list, fallback: bool, duration_ms: float) -> None:
        """Log a planning decision."""
        self.logger.info(
            "Query plan created",
            extra={
                "phases": phases,
                "sources": sources,
                "fallback": fallback,
                "duration_ms": round(duration_ms, 2),
            },
        )

    def log_source_query(
        self,
        source_id: str,
        duration_ms: float,
        citations: int,
        success: bool = True,
    ) -> None:
        """Log one knowledge source invocation."""
        self.logger.info(
            f"Source query: {source_id}",
            extra={
                "source_id": source_id,
                "duration_ms": round(duration_ms, 2),
                "citations": citations,
                "success": success,
            },
        )

    def log_phase(self, phase: int, sources: int, duration_ms: float) -> None:
        """Log completion of one execution phase."""
        self.logger.info(
            f"Phase {phase} completed",
            extra={"phase": phase, "sources": sources, "duration_ms": round(duration_ms, 2)},
        )

    def log_llm_call(
        self,
        model: str,
        purpose: str,
        input_tokens: int,
        output_tokens: int,
        duration_ms: float,
    ) -> None:
        """Log LLM call metrics."""
        self.logger.info(
            f"LLM call: {purpose}",
            extra={
                "model": model,
                "purpose": purpose,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "duration_ms": round(duration_ms, 2),
            },
        )


# Global logger instance
perf_logger = PerformanceLogger()
