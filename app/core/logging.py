"""Structured logging configuration.

Provides JSON-formatted logs with ingestion context (student, report,
report kind) so every profile mutation can be traced back to the
analysis payload that caused it.
"""
import logging
import json
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import traceback


# Record attributes copied into JSON output when present
CONTEXT_FIELDS = (
    "request_id", "student_id", "report_id", "report_kind", "attribute_type",
    "change_type", "endpoint", "method", "status_code", "duration_ms", "error_type",
)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs one JSON object per record with timestamp, level, message,
    module, function and any ingestion context bound to the record.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string.

        Args:
            record: LogRecord to format

        Returns:
            JSON string with log data
        """
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_obj["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        for attr in CONTEXT_FIELDS:
            if hasattr(record, attr):
                log_obj[attr] = getattr(record, attr)

        return json.dumps(log_obj, default=str, ensure_ascii=False)


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that includes context in all log messages.

    Example:
        >>> logger = ContextLogger(base_logger, {"student_id": 7, "report_id": 42})
        >>> logger.info("Weakness created")
        # Output includes student_id and report_id automatically
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get("extra") or {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """Configure application-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Whether to use JSON formatter (True for production)

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        formatter = JSONFormatter()
    else:
        # Human-readable format for development
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    return root_logger


def get_logger(name: str, context: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """Get a logger with optional context.

    Args:
        name: Logger name (typically __name__ of module)
        context: Optional context dict to include in all logs

    Returns:
        Logger or ContextLogger if context provided

    Example:
        >>> logger = get_logger(__name__, {"student_id": 7})
        >>> logger.info("Ingestion finished", extra={"duration_ms": 12})
    """
    logger = logging.getLogger(name)

    if context:
        return ContextLogger(logger, context)

    return logger


class LogTimer:
    """Context manager for timing operations and logging duration.

    Example:
        >>> logger = get_logger(__name__)
        >>> with LogTimer(logger, "profile_ingest"):
        ...     engine.ingest(7, 42, "test", payload)
        # Logs: "profile_ingest completed in 3.2ms"
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is None:
            return
        duration = (time.perf_counter() - self.start_time) * 1000

        if exc_type:
            self.logger.error(
                f"{self.operation} failed after {duration:.1f}ms",
                extra={"operation": self.operation, "duration_ms": duration},
                exc_info=True
            )
        else:
            self.logger.info(
                f"{self.operation} completed in {duration:.1f}ms",
                extra={"operation": self.operation, "duration_ms": duration}
            )


# Initialize logging on module import (can be reconfigured later)
setup_logging(
    level="INFO",
    json_format=False  # Set to True for production JSON logs
)
