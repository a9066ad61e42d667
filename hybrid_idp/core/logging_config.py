"""Structured logging configuration.

Provides JSON-formatted log records so decisions, rule applications and
assisted-analysis calls can be filtered by run, strategy, rule or pattern.
"""

import json
import logging
from datetime import datetime, timezone

# Context keys copied from logger.info(..., extra={...}) into the JSON output
EXTRA_KEYS = (
    "run_id",
    "document_path",
    "strategy",
    "confidence",
    "rule_id",
    "pattern_id",
    "template_id",
    "error_code",
    "service",
    "duration_ms",
    "stage_ms",
    "attempt",
    "max_attempts",
    "delay_seconds",
    "exception_type",
)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs logs as JSON with standard fields plus any extra context
    provided via the 'extra' parameter in logger calls.

    Example:
        >>> logger.info("Strategy selected", extra={"run_id": "abc", "strategy": "FullyLocal"})
        # Output: {"timestamp": "2025-12-05T17:52:00Z", "level": "INFO",
        #          "message": "Strategy selected", "run_id": "abc", "strategy": "FullyLocal"}
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string with log data
        """
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data = {
            "timestamp": created.strftime("%Y-%m-%dT%H:%M:%S.%f") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.process:
            log_data["process_id"] = record.process
        if record.thread:
            log_data["thread_id"] = record.thread

        for key in EXTRA_KEYS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_data, ensure_ascii=False, default=str)


def configure_structured_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """Configure structured logging for the engine.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatter (True) or plain text (False)
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler()

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
