"""Request executor and BotwireClient service layer.

:func:`send_request` is the single path every outbound Bot API call takes:
validate the body, check the token, serialize, POST, unwrap the envelope,
and decode ``result`` into the caller's type.  Each failure mode raises its
own exception from :mod:`sdk.exceptions`; nothing is retried here.

:class:`BotwireClient` binds a token and a :class:`RequestConfig` together and
offers one method per endpoint the core uses.
"""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Optional
from urllib.parse import urlsplit

import requests
from pydantic import TypeAdapter, ValidationError

from core.logger import BotwireLogger
from sdk.cancellation import ExecutionContext
from sdk.exceptions import (
    LocalValidationError,
    MalformedResponseError,
    MissingCredentialsError,
    RemoteAPIError,
    RequestCancelledError,
    ResultDecodeError,
    TransportError,
)
from sdk.methods import (
    DeleteWebhook,
    GetMe,
    GetUpdates,
    GetWebhookInfo,
    InputFile,
    RequestBody,
    SendMessage,
    SetWebhook,
)
from sdk.models import APIResponse, Message, Update, User, WebhookInfo

logger = BotwireLogger.get_logger()

# <token> is replaced with the bot token, <method> with the API method name.
DEFAULT_URL_TEMPLATE = "https://api.telegram.org/bot<token>/<method>"

_DEFAULT_TIMEOUT: float = 10

_default_session: Optional[requests.Session] = None
_default_session_lock = threading.Lock()


def default_session() -> requests.Session:
    """Return the process-wide session used when none is configured."""
    global _default_session
    with _default_session_lock:
        if _default_session is None:
            _default_session = requests.Session()
        return _default_session


def is_correct_url_template(template: str) -> bool:
    """Check that *template* has exactly one ``<token>`` and one ``<method>``."""
    if not isinstance(template, str):
        return False
    if template.count("<token>") != 1 or template.count("<method>") != 1:
        return False
    sample = template.replace("<token>", "123456:ABC-DEF1234ghIkl-zyx57W2v1u123ew11").replace("<method>", "getMe")
    try:
        parts = urlsplit(sample)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def format_url(template: str, token: str, method: str) -> str:
    return template.replace("<token>", token, 1).replace("<method>", method, 1)


def checked_url_template(template: str) -> str:
    """Return *template*, or :data:`DEFAULT_URL_TEMPLATE` with a warning if it is invalid."""
    if is_correct_url_template(template):
        return template
    logger.warning("Invalid API URL template, using default", extra={"url_template": template})
    return DEFAULT_URL_TEMPLATE


@dataclass(frozen=True)
class RequestConfig:
    """Per-call settings for :func:`send_request`.

    Attributes:
        session: HTTP transport.  ``None`` means :func:`default_session`.
        url_template: Bot API URL with ``<token>`` and ``<method>``
            placeholders.  An invalid template falls back to
            :data:`DEFAULT_URL_TEMPLATE`.
        context: Cancellation context.  ``None`` means never cancelled.
        timeout: HTTP timeout in seconds.
    """

    session: Optional[requests.Session] = None
    url_template: str = DEFAULT_URL_TEMPLATE
    context: Optional[ExecutionContext] = None
    timeout: float = _DEFAULT_TIMEOUT

    def merge(self, **overrides: Any) -> "RequestConfig":
        """Return a copy with every non-``None`` override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes) if changes else self

    def normalized(self) -> "RequestConfig":
        """Fill in defaults and replace an invalid URL template.

        A config that is already complete is returned as is, so long-lived
        owners normalize once and every later call is a no-op.
        """
        if self.session is not None and self.context is not None and is_correct_url_template(self.url_template):
            return self
        return RequestConfig(
            session=self.session or default_session(),
            url_template=checked_url_template(self.url_template),
            context=self.context or ExecutionContext(),
            timeout=self.timeout,
        )


@lru_cache(maxsize=None)
def _result_adapter(result_type: Any) -> TypeAdapter:
    return TypeAdapter(result_type)


def send_request(
    body: RequestBody,
    token: str,
    result_type: Any = None,
    config: Optional[RequestConfig] = None,
    **overrides: Any,
) -> Any:
    """Send *body* to the Bot API and return its decoded result.

    Args:
        body: The request to send.
        token: Bot token substituted into the URL template.
        result_type: Type to decode ``result`` into (``bool``,
            ``list[Update]``, a model class, …).  ``None`` discards it.
        config: Transport settings; *overrides* are merged on top.

    Returns:
        The decoded result, or ``None`` when *result_type* is ``None``.

    Raises:
        LocalValidationError: *body* failed validation; nothing was sent.
        MissingCredentialsError: *token* is empty.
        TransportError: The HTTP call failed or was cancelled.
        MalformedResponseError: The response is not a valid envelope.
        RemoteAPIError: The API answered ``"ok": false``.
        ResultDecodeError: ``result`` does not fit *result_type*.
    """
    endpoint = body.endpoint()
    try:
        body.validate()
    except LocalValidationError:
        raise
    except Exception as exc:
        raise LocalValidationError(str(exc)) from exc

    if not token:
        raise MissingCredentialsError("API token can't be empty")

    cfg = (config or RequestConfig()).merge(**overrides).normalized()

    # reader() must run first: multipart bodies fix their boundary there.
    stream = body.reader()
    content_type = body.content_type()

    cfg.context.raise_if_cancelled()
    url = format_url(cfg.url_template, token, endpoint)
    try:
        response = cfg.session.post(
            url,
            data=stream,
            headers={"Content-Type": content_type},
            timeout=cfg.timeout,
        )
    except requests.RequestException as exc:
        if cfg.context.cancelled:
            raise RequestCancelledError(f"{endpoint} cancelled") from exc
        logger.debug("Transport failure", extra={"api_endpoint": endpoint, "error": str(exc)})
        raise TransportError(f"{endpoint}: {exc}") from exc
    cfg.context.raise_if_cancelled()

    try:
        envelope = APIResponse.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise MalformedResponseError(
            f"{endpoint}: response is not a valid API envelope (HTTP {response.status_code})"
        ) from exc

    if not envelope.ok:
        parameters = envelope.parameters.model_dump() if envelope.parameters else None
        raise RemoteAPIError(envelope.error_code, envelope.description, parameters)

    if result_type is None:
        return None
    try:
        return _result_adapter(result_type).validate_python(envelope.result)
    except ValidationError as exc:
        raise ResultDecodeError(f"{endpoint}: can't decode result: {exc}") from exc


class BotwireClient:
    """Client-side service layer for the endpoints the core relies on.

    Each public method builds the matching request body and sends it through
    :func:`send_request` with this client's token and configuration.
    """

    def __init__(self, token: str, config: Optional[RequestConfig] = None, **overrides: Any) -> None:
        """Create a client bound to *token*.

        Args:
            token: Bot token.
            config: Transport settings shared by every call.
            **overrides: Individual :class:`RequestConfig` fields.
        """
        self._token = token
        self._config = (config or RequestConfig()).merge(**overrides).normalized()

    @property
    def config(self) -> RequestConfig:
        return self._config

    def send(self, body: RequestBody, result_type: Any = None, **overrides: Any) -> Any:
        """Send any request body with this client's settings."""
        return send_request(body, self._token, result_type, self._config, **overrides)

    def get_me(self) -> User:
        return self.send(GetMe(), User)

    def get_updates(
        self,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
        timeout: Optional[int] = None,
        allowed_updates: Optional[List[str]] = None,
    ) -> List[Update]:
        body = GetUpdates(offset=offset, limit=limit, timeout=timeout, allowed_updates=allowed_updates)
        http_timeout = self._config.timeout + (timeout or 0)
        return self.send(body, List[Update], timeout=http_timeout)

    def send_message(self, chat_id: int | str, text: str, **kwargs: Any) -> Message:
        return self.send(SendMessage(chat_id=chat_id, text=text, **kwargs), Message)

    def set_webhook(
        self,
        url: str,
        certificate: Optional[InputFile] = None,
        ip_address: Optional[str] = None,
        max_connections: Optional[int] = None,
        allowed_updates: Optional[List[str]] = None,
        drop_pending_updates: Optional[bool] = None,
        secret_token: Optional[str] = None,
    ) -> bool:
        body = SetWebhook(
            url=url,
            certificate=certificate,
            ip_address=ip_address,
            max_connections=max_connections,
            allowed_updates=allowed_updates,
            drop_pending_updates=drop_pending_updates,
            secret_token=secret_token,
        )
        return self.send(body, bool)

    def delete_webhook(self, drop_pending_updates: Optional[bool] = None) -> bool:
        return self.send(DeleteWebhook(drop_pending_updates=drop_pending_updates), bool)

    def get_webhook_info(self) -> WebhookInfo:
        return self.send(GetWebhookInfo(), WebhookInfo)
