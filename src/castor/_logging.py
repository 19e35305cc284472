"""Logging helpers that attach an invocation context snapshot."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from castor.types import InvocationContext

log = logging.getLogger("castor.router")


def log_with_context(message: str, context: InvocationContext | None) -> None:
    """Record a non-fatal anomaly together with the request context."""
    if context is None:
        log.warning("%s", message)
        return
    log.warning("%s (context: %s)", message, context.snapshot())


def log_error_with_context(
    error: BaseException | str | None, context: InvocationContext | None
) -> None:
    """Record a non-recoverable error together with the request context."""
    snapshot = context.snapshot() if context is not None else {}
    if isinstance(error, BaseException):
        log.error(
            "%s: %s (context: %s)",
            type(error).__name__,
            error,
            snapshot,
            exc_info=(type(error), error, error.__traceback__),
        )
    else:
        log.error("%s (context: %s)", error, snapshot)
