"""
Structured logging for fulfillment processing

Every log line written while a billing event is being processed carries the
prescription and event identifiers, so one renewal can be traced across the
processor, ledger and storage modules.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

fulfillment_context: ContextVar[dict[str, Any]] = ContextVar("fulfillment_context", default={})

_CONTEXT_FIELDS = ("prescription_id", "external_event_id", "event_type", "correlation_id")


@contextmanager
def bind_fulfillment_context(**fields: Any) -> Iterator[dict[str, Any]]:
    """
    Bind identifiers to all logs emitted inside the block.

    Example:
        >>> with bind_fulfillment_context(prescription_id="rx-1", external_event_id="inv_9"):
        ...     logger.info("processing")
    """
    context = {**fulfillment_context.get({}), **fields}
    context.setdefault("correlation_id", fields.get("external_event_id"))
    token = fulfillment_context.set(context)
    try:
        yield context
    finally:
        fulfillment_context.reset(token)


class FulfillmentJsonFormatter(logging.Formatter):
    """JSON formatter that includes the bound fulfillment context."""

    _EXTRA_FIELDS = (
        "stage_index",
        "refills_remaining",
        "outcome",
        "duration_ms",
        "collaborator",
        "error_type",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        context = fulfillment_context.get({})
        for name in _CONTEXT_FIELDS:
            if context.get(name) is not None:
                log_entry[name] = context[name]

        for name in self._EXTRA_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class FulfillmentContextFilter(logging.Filter):
    """Copies the bound fulfillment context onto each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = fulfillment_context.get({})
        for name in _CONTEXT_FIELDS:
            setattr(record, name, context.get(name) or "")
        return True


def configure_logging(level: int | str = logging.INFO, json_format: bool = False) -> logging.Logger:
    """
    Attach a stream handler to the 'titrate' logger.

    Calling it again replaces the handler it installed previously.

    Args:
        level: Logging level for the titrate namespace
        json_format: Emit JSON lines instead of plain text
    """
    root = logging.getLogger("titrate")
    root.setLevel(level)

    for handler in list(root.handlers):
        if getattr(handler, "_titrate_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._titrate_handler = True  # type: ignore[attr-defined]
    handler.addFilter(FulfillmentContextFilter())
    if json_format:
        handler.setFormatter(FulfillmentJsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - "
                "[rx=%(prescription_id)s evt=%(external_event_id)s] %(message)s"
            )
        )
    root.addHandler(handler)
    return root
