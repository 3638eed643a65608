"""Webhook server: receive updates pushed by Telegram over HTTP.

``WebhookBot.start()`` first registers the public URL with ``setWebhook``
and only then serves a FastAPI application through uvicorn.  Each POST to
the configured path is decoded into an :class:`~sdk.models.Update`, wrapped
in a :class:`~bot.context.Context` and run through the middleware chain on
Starlette's threadpool, since handlers are blocking code.

Responses carry no body.  A handler that returned gives 200; a body that is
not a valid update or exceeds ``max_body_size`` gives 400, as does a handler
that raised; a missing or wrong secret token gives 401.

Handler contexts carry no cancellation: a handler still running while the
server shuts down can finish its follow-up calls.  The server's own
execution context is cancelled only after uvicorn's graceful shutdown has
returned.
"""

from __future__ import annotations

import dataclasses
import hmac
import threading
from dataclasses import dataclass
from typing import Any, List, Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from bot.base import Bot, Middleware
from bot.context import Context
from bot.middleware import compose, logging_middleware, recovery_middleware
from core.logger import BotwireLogger
from sdk.cancellation import ExecutionContext
from sdk.client import BotwireClient, RequestConfig, checked_url_template, send_request
from sdk.exceptions import BotwireError, WebhookRegistrationError
from sdk.methods import InputFile, SetWebhook
from sdk.models import Update, WebhookInfo

logger = BotwireLogger.get_logger()

SECRET_TOKEN_HEADER = "X-Telegram-Bot-Api-Secret-Token"

# Extra time stop() allows on top of the graceful shutdown timeout.
_STOP_SLACK: float = 1.0

DEFAULT_MAX_BODY_SIZE = 1024 * 1024


@dataclass(frozen=True)
class WebhookConfig:
    """Settings for :class:`WebhookBot`.

    ``url`` is the public base URL Telegram pushes to; ``path`` is appended
    to it on registration and is also the route served locally.
    """

    url: str
    path: str = "/webhook"
    host: str = "0.0.0.0"
    port: int = 80
    certificate: Optional[InputFile] = None
    ip_address: Optional[str] = None
    max_connections: Optional[int] = None
    allowed_updates: Optional[List[str]] = None
    drop_pending_updates: Optional[bool] = None
    secret_token: Optional[str] = None
    shutdown_timeout: float = 5.0
    ssl_certfile: Optional[str] = None
    ssl_keyfile: Optional[str] = None
    max_body_size: int = DEFAULT_MAX_BODY_SIZE

    def merge(self, **overrides: Any) -> "WebhookConfig":
        """Return a copy with every non-``None`` override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes) if changes else self

    @property
    def route(self) -> str:
        return self.path if self.path.startswith("/") else "/" + self.path

    @property
    def webhook_url(self) -> str:
        return self.url.rstrip("/") + self.route


class WebhookBot:
    """Serve a :class:`~bot.base.Bot` behind an HTTP webhook.

    Usage::

        server = WebhookBot(EchoBot(token), WebhookConfig(url="https://example.org", port=8443))
        server.start()          # registers, then blocks until server.stop()
    """

    def __init__(
        self,
        bot: Bot,
        config: WebhookConfig,
        middleware: Optional[List[Middleware]] = None,
    ) -> None:
        self.bot = bot
        self.config = config
        self._middleware: List[Middleware] = (
            list(middleware) if middleware is not None else [recovery_middleware, logging_middleware]
        )
        self._url_template = checked_url_template(bot.api_url_template)
        self._context = ExecutionContext()
        self._app: Optional[FastAPI] = None
        self._server: Optional[uvicorn.Server] = None
        self._runner: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._finished = threading.Event()

    # ------------------------------------------------------------------
    #  Middleware
    # ------------------------------------------------------------------

    def use(self, *middleware: Middleware) -> None:
        self._middleware.extend(middleware)

    def set_middleware(self, middleware: List[Middleware]) -> None:
        """Replace the whole chain, including the default recovery and logging middleware."""
        self._middleware = list(middleware)

    @property
    def middleware(self) -> List[Middleware]:
        return list(self._middleware)

    # ------------------------------------------------------------------
    #  HTTP application
    # ------------------------------------------------------------------

    @property
    def context(self) -> ExecutionContext:
        return self._context

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            self._app = self._build_app()
        return self._app

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="botwire webhook", docs_url=None, redoc_url=None, openapi_url=None)
        app.add_api_route(self.config.route, self._receive, methods=["POST"], include_in_schema=False)
        return app

    async def _receive(self, request: Request) -> Response:
        if self.config.secret_token is not None:
            supplied = request.headers.get(SECRET_TOKEN_HEADER, "")
            if not hmac.compare_digest(supplied.encode(), self.config.secret_token.encode()):
                logger.warning("Rejected webhook request with a bad secret token", extra={"client": _client_host(request)})
                return Response(status_code=401)

        raw = await _read_body(request, self.config.max_body_size)
        if raw is None:
            logger.warning(
                "Rejected oversized webhook request",
                extra={"client": _client_host(request), "max_body_size": self.config.max_body_size},
            )
            return Response(status_code=400)
        try:
            update = Update.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Can't decode webhook update", extra={"error": str(exc), "body_size": len(raw)})
            return Response(status_code=400)

        context = Context(
            token=self.bot.token,
            update=update,
            session=self.bot.session,
            api_url_template=self._url_template,
        )
        handler = compose(self.bot.on_update, self._middleware)
        try:
            await run_in_threadpool(handler, context)
        except Exception as exc:
            logger.error(
                "Update handler failed",
                extra={"update_id": update.update_id, "error": str(exc), "error_type": type(exc).__name__},
            )
            return Response(status_code=400)
        return Response(status_code=200)

    # ------------------------------------------------------------------
    #  Registration
    # ------------------------------------------------------------------

    def _request_config(self, context: Optional[ExecutionContext] = None) -> RequestConfig:
        return RequestConfig(
            session=self.bot.session,
            url_template=self._url_template,
            context=context,
        ).normalized()

    def register_webhook(self) -> None:
        """Call ``setWebhook`` with this server's public URL.

        Raises:
            WebhookRegistrationError: The call failed or returned ``False``.
        """
        cfg = self.config
        body = SetWebhook(
            url=cfg.webhook_url,
            certificate=cfg.certificate,
            ip_address=cfg.ip_address,
            max_connections=cfg.max_connections,
            allowed_updates=cfg.allowed_updates,
            drop_pending_updates=cfg.drop_pending_updates,
            secret_token=cfg.secret_token,
        )
        try:
            registered = send_request(body, self.bot.token, bool, self._request_config(self._context))
        except BotwireError as exc:
            raise WebhookRegistrationError(f"can't register webhook at {cfg.webhook_url}: {exc}") from exc
        if not registered:
            raise WebhookRegistrationError(f"can't register webhook at {cfg.webhook_url}: setWebhook returned false")
        logger.info("Webhook registered", extra={"url": cfg.webhook_url})

    def delete_webhook(self, drop_pending_updates: Optional[bool] = None) -> bool:
        return BotwireClient(self.bot.token, self._request_config()).delete_webhook(drop_pending_updates)

    def get_webhook_info(self) -> WebhookInfo:
        return BotwireClient(self.bot.token, self._request_config()).get_webhook_info()

    # ------------------------------------------------------------------
    #  Lifecycle
    # ------------------------------------------------------------------

    def _server_config(self) -> uvicorn.Config:
        cfg = self.config
        return uvicorn.Config(
            self.app,
            host=cfg.host,
            port=cfg.port,
            timeout_graceful_shutdown=cfg.shutdown_timeout,
            ssl_certfile=cfg.ssl_certfile,
            ssl_keyfile=cfg.ssl_keyfile,
            log_config=None,
        )

    def start(self) -> None:
        """Register the webhook, then serve until :meth:`stop` is called.

        Raises:
            WebhookRegistrationError: Registration failed; the server never
                started listening.
            RuntimeError: The server is already running.
        """
        with self._lock:
            if self._server is not None:
                raise RuntimeError("webhook server is already running")
            self._context = ExecutionContext()
            self.register_webhook()
            self._server = uvicorn.Server(self._server_config())
            self._runner = threading.current_thread()
            self._finished.clear()

        logger.info(
            "Webhook server listening",
            extra={"host": self.config.host, "port": self.config.port, "path": self.config.route},
        )
        try:
            self._server.run()
        finally:
            self._context.cancel()
            with self._lock:
                self._server = None
            self._finished.set()
            logger.info("Webhook server stopped")

    def stop(self) -> None:
        """Ask the server to shut down and wait for in-flight requests.

        The wait is bounded by ``shutdown_timeout``; requests still running
        after that are abandoned by uvicorn.  The execution context is
        cancelled by :meth:`start` once the server has stopped.
        """
        with self._lock:
            server = self._server
        if server is None:
            return
        logger.info("Stopping webhook server")
        server.should_exit = True
        if threading.current_thread() is self._runner:
            return
        if not self._finished.wait(self.config.shutdown_timeout + _STOP_SLACK):
            logger.warning("Webhook server did not stop in time", extra={"timeout": self.config.shutdown_timeout})


def _client_host(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def _read_body(request: Request, limit: int) -> Optional[bytes]:
    """Read the request body, or return ``None`` once it exceeds *limit* bytes."""
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        return None
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            return None
    return bytes(body)
