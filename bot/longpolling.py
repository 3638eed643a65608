"""Long-polling engine: one fetch thread feeding a pool of handler workers.

The fetch thread calls ``getUpdates`` in a loop, publishes every received
update onto a shared queue and advances the offset right after each publish.
Worker threads take updates off the queue, wrap each in a
:class:`~bot.context.Context` and run the bot's handler through the
configured middleware.  ``stop()`` cancels the shared execution context,
which every blocking point observes within a short tick; a ``getUpdates``
call already waiting on the server is aborted through
:class:`~sdk.transport.AbortableHTTPAdapter`.  ``start()`` returns once every
thread has been joined.

Delivery is at-most-once: the offset acknowledges an update as soon as it is
handed to the queue, so an update whose processing is interrupted by a crash
is not fetched again.
"""

from __future__ import annotations

import dataclasses
import enum
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

import requests

from bot.base import Bot, Middleware
from bot.context import Context
from bot.middleware import compose
from core.logger import BotwireLogger
from sdk.cancellation import ExecutionContext
from sdk.client import RequestConfig, checked_url_template, send_request
from sdk.exceptions import FailedValidationError
from sdk.methods import GetUpdates, check_update_types
from sdk.models import Update
from sdk.transport import AbortableHTTPAdapter, abortable_session

logger = BotwireLogger.get_logger()

# Upper bound on how long a queue put/get waits before re-checking cancellation.
_TICK: float = 0.1


class PollingState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class PollingConfig:
    """Settings for :class:`LongPollingBot`.

    Attributes:
        limit: Updates per ``getUpdates`` call, 1-100.
        timeout: Seconds the API may hold a ``getUpdates`` call open.
        allowed_updates: Update types to receive; ``None`` keeps the
            server-side setting.
        workers: Number of handler threads.
        queue_size: Capacity of the update queue; ``0`` means unbounded.
        retry_delay: Seconds to wait after a failed fetch before retrying.
        http_timeout_slack: Added to *timeout* to get the HTTP read timeout.
        on_error: Called with every fetch or handler error.  ``None`` logs
            the error instead.
    """

    limit: int = 100
    timeout: int = 30
    allowed_updates: Optional[List[str]] = None
    workers: int = 1
    queue_size: int = 1
    retry_delay: float = 0.0
    http_timeout_slack: float = 10.0
    on_error: Optional[Callable[[Exception], None]] = None

    def merge(self, **overrides: Any) -> "PollingConfig":
        """Return a copy with every non-``None`` override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes) if changes else self


class LongPollingBot:
    """Drive a :class:`~bot.base.Bot` by long polling ``getUpdates``.

    Usage::

        poller = LongPollingBot(EchoBot(token), workers=4)
        poller.start()          # blocks until poller.stop() is called
    """

    def __init__(
        self,
        bot: Bot,
        config: Optional[PollingConfig] = None,
        middleware: Optional[List[Middleware]] = None,
        **overrides: Any,
    ) -> None:
        cfg = (config or PollingConfig()).merge(**overrides)
        if cfg.workers == 0:
            logger.warning("Worker pool size 0 requested, falling back to 1", extra={"workers": 0})
            cfg = dataclasses.replace(cfg, workers=1)
        self.bot = bot
        self.config = cfg
        self._middleware: List[Middleware] = list(middleware or [])

        self._offset: Optional[int] = None
        self._state = PollingState.IDLE
        self._state_lock = threading.Lock()
        self._context: Optional[ExecutionContext] = None
        self._url_template: str = self.bot.api_url_template
        self._queue: Optional[queue.Queue] = None
        self._threads: List[threading.Thread] = []
        self._runner: Optional[threading.Thread] = None
        self._finished = threading.Event()

    # ------------------------------------------------------------------
    #  Introspection
    # ------------------------------------------------------------------

    @property
    def offset(self) -> Optional[int]:
        """Next ``getUpdates`` offset; ``None`` until the first update arrives."""
        return self._offset

    @property
    def state(self) -> PollingState:
        return self._state

    @property
    def context(self) -> Optional[ExecutionContext]:
        return self._context

    def use(self, *middleware: Middleware) -> None:
        """Append middleware.  Takes effect on the next ``start()``."""
        self._middleware.extend(middleware)

    # ------------------------------------------------------------------
    #  Lifecycle
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check the polling parameters.

        Raises:
            FailedValidationError: Listing every problem found.
        """
        cfg = self.config
        problems: List[str] = []
        if not self.bot.token:
            problems.append("API token can't be empty")
        if not 1 <= cfg.limit <= 100:
            problems.append("limit must be between 1 and 100")
        if cfg.timeout < 0:
            problems.append("timeout must not be negative")
        problems.extend(check_update_types(cfg.allowed_updates))
        if cfg.workers < 1:
            problems.append("workers must be at least 1")
        if cfg.queue_size < 0:
            problems.append("queue_size must not be negative")
        if problems:
            raise FailedValidationError(problems)

    def start(self) -> None:
        """Validate, spawn the fetch and worker threads, and block until stopped.

        Raises:
            FailedValidationError: The configuration is invalid; no thread
                was started.
            RuntimeError: The engine was already started.
        """
        with self._state_lock:
            if self._state is not PollingState.IDLE:
                raise RuntimeError(f"cannot start a long-polling bot in state {self._state.value}")
            logger.info("Validating long-polling settings")
            self.validate()

            self._context = ExecutionContext()
            self._url_template = checked_url_template(self.bot.api_url_template)
            self._queue = queue.Queue(maxsize=self.config.queue_size)
            self._runner = threading.current_thread()
            self._threads = [threading.Thread(target=self._poll, name="botwire-poll")]
            self._threads += [
                threading.Thread(target=self._work, name=f"botwire-worker-{i}")
                for i in range(self.config.workers)
            ]
            self._state = PollingState.RUNNING

        logger.info(
            "Bot is online",
            extra={"workers": self.config.workers, "limit": self.config.limit, "timeout": self.config.timeout},
        )
        try:
            for thread in self._threads:
                thread.start()
            for thread in self._threads:
                # Short joins keep the calling thread responsive to signals.
                while thread.is_alive():
                    thread.join(0.5)
        finally:
            self._context.cancel()
            for thread in self._threads:
                if thread.ident is not None:
                    thread.join()
            with self._state_lock:
                self._state = PollingState.STOPPED
            self._finished.set()
            logger.info("Bot is offline", extra={"offset": self._offset})

    def stop(self) -> None:
        """Cancel every loop and drop updates not yet picked up by a worker.

        When called from outside the engine, also waits for ``start()`` to
        finish joining its threads.
        """
        with self._state_lock:
            if self._state is not PollingState.RUNNING:
                return
            self._state = PollingState.STOPPING
        logger.info("Stopping long-polling bot")
        self._context.cancel()
        self._drain()

        current = threading.current_thread()
        if current is not self._runner and current not in self._threads:
            self._finished.wait()

    # ------------------------------------------------------------------
    #  Loops
    # ------------------------------------------------------------------

    def _poll(self) -> None:
        ctx = self._context
        cfg = self.config
        session, adapter = self._fetch_session()
        if adapter is not None:
            # Cuts a getUpdates call that is blocked waiting for the server.
            ctx.on_cancel(adapter.abort)
        request_config = RequestConfig(
            session=session,
            url_template=self._url_template,
            context=ctx,
            timeout=cfg.timeout + cfg.http_timeout_slack,
        )
        try:
            self._fetch_loop(request_config)
        finally:
            if adapter is not None:
                session.close()
        logger.info("Exiting polling loop")

    def _fetch_session(self) -> Tuple[requests.Session, Optional[AbortableHTTPAdapter]]:
        """Return the session ``getUpdates`` goes through and its abortable adapter.

        A plain ``requests.Session`` is copied onto an abortable one owned by
        this run; any other transport is used as given and cannot be aborted.
        """
        session = self.bot.session
        if isinstance(session, requests.Session):
            return abortable_session(session)
        return session, None

    def _fetch_loop(self, request_config: RequestConfig) -> None:
        ctx = request_config.context
        cfg = self.config
        while not ctx.cancelled:
            body = GetUpdates(
                offset=self._offset,
                limit=cfg.limit,
                timeout=cfg.timeout,
                allowed_updates=cfg.allowed_updates,
            )
            try:
                updates = send_request(body, self.bot.token, List[Update], request_config)
            except Exception as exc:
                if ctx.cancelled:
                    break
                self._report(exc, "Failed to fetch updates", offset=self._offset)
                if cfg.retry_delay > 0:
                    ctx.wait(cfg.retry_delay)
                continue

            for update in sorted(updates, key=lambda u: u.update_id):
                if self._offset is not None and update.update_id < self._offset:
                    logger.debug("Skipping already acknowledged update", extra={"update_id": update.update_id})
                    continue
                if not self._publish(update, ctx):
                    break
                self._offset = update.update_id + 1
                logger.debug("Update published", extra={"update_id": update.update_id, "offset": self._offset})

    def _publish(self, update: Update, ctx: ExecutionContext) -> bool:
        while not ctx.cancelled:
            try:
                self._queue.put(update, timeout=_TICK)
                return True
            except queue.Full:
                continue
        return False

    def _work(self) -> None:
        ctx = self._context
        handler = compose(self.bot.on_update, self._middleware)
        while not ctx.cancelled:
            try:
                update = self._queue.get(timeout=_TICK)
            except queue.Empty:
                continue
            context = Context(
                token=self.bot.token,
                update=update,
                session=self.bot.session,
                api_url_template=self._url_template,
                execution=ctx,
            )
            try:
                handler(context)
            except Exception as exc:
                self._report(exc, "Update handler failed", update_id=update.update_id)
                continue
            logger.debug("Done answering update", extra={"update_id": update.update_id})
        logger.info("Exiting worker loop")

    def _drain(self) -> None:
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
            dropped += 1
        if dropped:
            logger.warning("Dropped unprocessed updates on stop", extra={"dropped": dropped})

    def _report(self, exc: Exception, message: str, **extra: Any) -> None:
        if self.config.on_error is None:
            logger.error(message, extra={**extra, "error": str(exc), "error_type": type(exc).__name__})
            return
        try:
            self.config.on_error(exc)
        except Exception:
            logger.exception("Error hook failed", extra=extra)
