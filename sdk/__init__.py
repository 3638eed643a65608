"""Telegram Bot API wire layer: request bodies, the executor, models and exceptions.

Usage::

    from sdk import BotwireClient, send_request, RemoteAPIError
    from sdk.methods import SendMessage
    from sdk.models import Message

    message = send_request(SendMessage(chat_id=42, text="hi"), token, Message)
"""

from sdk.cancellation import ExecutionContext
from sdk.client import DEFAULT_URL_TEMPLATE, BotwireClient, RequestConfig, send_request
from sdk.exceptions import (
    BotwireError,
    FailedValidationError,
    InternalHandlerError,
    LocalValidationError,
    MalformedResponseError,
    MissingCredentialsError,
    RemoteAPIError,
    RequestCancelledError,
    ResultDecodeError,
    TransportError,
    WebhookRegistrationError,
)
from sdk.methods import RequestBody

__all__ = [
    # Executor
    "send_request",
    "BotwireClient",
    "RequestConfig",
    "ExecutionContext",
    "RequestBody",
    "DEFAULT_URL_TEMPLATE",
    # Exceptions
    "BotwireError",
    "LocalValidationError",
    "FailedValidationError",
    "MissingCredentialsError",
    "TransportError",
    "RequestCancelledError",
    "MalformedResponseError",
    "RemoteAPIError",
    "ResultDecodeError",
    "WebhookRegistrationError",
    "InternalHandlerError",
]
