"""
Structured logging for workflow and saga executions.

The engines bind the execution they are driving to a ContextVar; the filter
and JSON formatter here copy that context into every log record, so log
lines emitted by step runners carry the execution id as well.
"""

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

execution_context: ContextVar[dict[str, Any]] = ContextVar("execution_context", default={})

_CONTEXT_FIELDS = ("execution_id", "workflow_id", "saga_id", "step_id")


@contextmanager
def bind_execution_context(**fields: Any):
    """
    Merge `fields` into the current execution context for the block.

    Example:
        >>> with bind_execution_context(execution_id="exec_1", step_id="charge"):
        ...     logger.info("charging")
    """
    merged = {**execution_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = execution_context.set(merged)
    try:
        yield merged
    finally:
        execution_context.reset(token)


class ExecutionJsonFormatter(logging.Formatter):
    """
    JSON formatter with execution context fields.
    """

    # Fields to extract from log record if present
    _EXTRA_FIELDS = (
        *_CONTEXT_FIELDS,
        "notification",
        "attempt",
        "duration_ms",
        "error_type",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_entry = self._build_base_entry(record)
        self._add_execution_context(log_entry)
        self._add_record_extras(log_entry, record)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)

    def _build_base_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

    def _add_execution_context(self, log_entry: dict[str, Any]) -> None:
        context = execution_context.get()
        for field in _CONTEXT_FIELDS:
            if context.get(field) is not None:
                log_entry[field] = context[field]

    def _add_record_extras(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self._EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value not in (None, ""):
                log_entry[field] = value


class ExecutionContextFilter(logging.Filter):
    """Adds the execution context fields to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = execution_context.get()
        for field in _CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, context.get(field) or "")
        return True


def setup_logging(
    log_level: str = "INFO", json_format: bool = True, include_console: bool = True
) -> logging.Logger:
    """
    Set up structured logging for the "sagaflow" logger hierarchy.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_format: Use ExecutionJsonFormatter instead of a text format
        include_console: Attach a console handler

    Returns:
        The configured "sagaflow" logger
    """
    root_logger = logging.getLogger("sagaflow")
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for existing in root_logger.filters[:]:
        root_logger.removeFilter(existing)

    if include_console:
        console_handler = logging.StreamHandler()
        console_handler.addFilter(ExecutionContextFilter())

        if json_format:
            console_handler.setFormatter(ExecutionJsonFormatter())
        else:
            console_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - "
                    "[%(execution_id)s:%(step_id)s] - %(message)s"
                )
            )

        root_logger.addHandler(console_handler)

    return root_logger
