"""Middleware: functions that wrap an update handler with pre/post logic.

A middleware has the shape ``handler -> handler``.  :func:`compose` wraps the
root handler in reverse registration order, so the first middleware in the
list is the outermost one: it runs first on the way in and last on the way
out.
"""

from __future__ import annotations

import time
from typing import Sequence

from bot.base import Middleware, UpdateHandler
from bot.context import Context
from core.logger import BotwireLogger
from sdk.exceptions import BotwireError, InternalHandlerError

logger = BotwireLogger.get_logger()


def compose(handler: UpdateHandler, middleware: Sequence[Middleware]) -> UpdateHandler:
    """Wrap *handler* so that ``middleware[0]`` is outermost."""
    for mw in reversed(middleware):
        handler = mw(handler)
    return handler


def recovery_middleware(next_handler: UpdateHandler) -> UpdateHandler:
    """Turn unexpected exceptions into :class:`InternalHandlerError`.

    :class:`BotwireError` subclasses are deliberate failures (a rejected
    follow-up call, a validation problem) and pass through unchanged.
    """

    def handler(ctx: Context) -> None:
        try:
            next_handler(ctx)
        except BotwireError:
            raise
        except Exception as exc:
            logger.exception("Recovered from handler fault", extra={"update_id": ctx.update.update_id})
            raise InternalHandlerError("internal error") from exc

    return handler


def logging_middleware(next_handler: UpdateHandler) -> UpdateHandler:
    """Log each update's type and how long handling took."""

    def handler(ctx: Context) -> None:
        started = time.perf_counter()
        try:
            next_handler(ctx)
        finally:
            logger.info(
                "Update handled",
                extra={
                    "update_id": ctx.update.update_id,
                    "event_type": ctx.update.event_type,
                    "elapsed_ms": round((time.perf_counter() - started) * 1000, 3),
                },
            )

    return handler
