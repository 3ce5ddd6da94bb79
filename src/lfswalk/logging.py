"""
JSON logging for lfswalk runs.

A walk over a large Lustre tree runs for hours as a batch job on a
data-mover node, and a failure on one entry never stops it: the entry is
counted in ``errors``, logged and skipped. The log is therefore the only
record of which paths were left behind. Each line is a single JSON object
so operators can filter a finished run's output by ``path`` or
``error_type`` (with ``jq`` or a log collector) and retry just those
entries.
"""

import json
import logging
import sys
from typing import Any, Dict, Optional


class JsonFormatter(logging.Formatter):
    """
    Render a record as one JSON line.

    Exception records carry the traceback in ``error`` and the exception
    class in ``error_type``, so EACCES on a single file and a failed
    ``lfs setstripe`` on a destination file can be told apart without parsing
    message text.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            log_obj["error"] = self.formatException(record.exc_info)
            log_obj["error_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None

        if hasattr(record, "extra_fields"):
            log_obj["extra_fields"] = record.extra_fields

        return json.dumps(log_obj, default=str)


def setup_logging(logger_name: str = "lfswalk", level: str = "INFO") -> logging.Logger:
    """
    Attach the JSON formatter to the run's logger, writing to stdout.

    Progress lines and per-entry errors share the stream, so a job
    scheduler's captured output holds the whole history of the run.

    Args:
        logger_name: Name of the logger
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper()))

    # Walkers are created once per run, but tests create many
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)

    return logger


def log_with_context(
    logger: logging.Logger, level: str, message: str, extra: Optional[Dict[str, Any]] = None
) -> None:
    """
    Log ``message`` with the entry it concerns.

    Callers pass the affected ``path`` or ``directory`` in ``extra``,
    plus ``error`` and ``error_type`` for failures. They land under
    ``extra_fields`` in the JSON line, which is what makes a
    skipped entry findable after the run.

    Args:
        logger: Logger instance
        level: Log level name (info, warning, error, ...)
        message: Log message
        extra: Context fields such as path, error or counters
    """
    if extra is None:
        extra = {}

    log_method = getattr(logger, level.lower())
    log_method(message, extra={"extra_fields": extra})
