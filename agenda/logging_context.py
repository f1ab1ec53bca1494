"""Operation ID logging context for tracing mutations across modules.

Every facade call gets an operation ID so that a confirmation and all the
relocations it causes can be followed through the catalog, ledger, and
resolver logs.

Usage:
    from agenda.logging_context import get_operation_logger, set_operation_id

    set_operation_id("OP-3f2a9c")
    logger = get_operation_logger(__name__)
    logger.info("Confirming appointment")  # record.operation_id == "OP-3f2a9c"
"""

import logging
import uuid
from contextvars import ContextVar

_operation_id: ContextVar[str] = ContextVar("operation_id", default="NO_OPERATION_ID")


def new_operation_id() -> str:
    return f"OP-{uuid.uuid4().hex[:6]}"


def set_operation_id(operation_id: str) -> None:
    """Set the operation ID for the current async context."""
    _operation_id.set(operation_id)


def get_operation_id() -> str:
    """Retrieve the current operation ID."""
    return _operation_id.get()


class OperationIdFilter(logging.Filter):
    """Injects operation_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.operation_id = _operation_id.get()  # type: ignore[attr-defined]
        return True


def get_operation_logger(name: str) -> logging.Logger:
    """Return a logger with the OperationIdFilter attached.

    The filter adds ``operation_id`` to each record so formatters can
    include ``%(operation_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, OperationIdFilter) for f in logger.filters):
        logger.addFilter(OperationIdFilter())
    return logger
