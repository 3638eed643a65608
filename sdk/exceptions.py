"""Exception hierarchy for the botwire Telegram SDK.

Every failure the request pipeline can produce has its own class so callers
can tell a local mistake (never reached the network) from a transport fault,
a garbled response, or a refusal reported by the Bot API itself.
"""

from typing import Any, Dict, List, Optional


class BotwireError(Exception):
    """Base class for every error raised by this package."""


class LocalValidationError(BotwireError, ValueError):
    """A request body failed its own self-check; no request was sent."""


class FailedValidationError(LocalValidationError):
    """Several validation problems collected in one go.

    Attributes:
        errors: The individual problem descriptions, in discovery order.
    """

    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class MissingCredentialsError(BotwireError):
    """The bot token is empty."""


class TransportError(BotwireError):
    """The HTTP call itself failed (connection refused, timeout, …)."""


class RequestCancelledError(TransportError):
    """The execution context was cancelled before the call could complete."""


class MalformedResponseError(BotwireError):
    """The response body is not a valid Bot API envelope."""


class RemoteAPIError(BotwireError):
    """The Bot API answered with ``"ok": false``.

    Attributes:
        code: The ``error_code`` reported by the API.
        description: Human-readable ``description`` reported by the API.
        parameters: Structured ``parameters`` (retry-after, migrated chat id)
            as a dict, empty when the API sent none.
    """

    def __init__(self, code: int, description: str, parameters: Optional[Dict[str, Any]] = None) -> None:
        self.code = code
        self.description = description
        self.parameters = {k: v for k, v in (parameters or {}).items() if v is not None}
        super().__init__(self._render())

    @property
    def retry_after(self) -> Optional[int]:
        """Seconds to wait before repeating the request after flood control."""
        return self.parameters.get("retry_after")

    @property
    def migrate_to_chat_id(self) -> Optional[int]:
        """Identifier of the supergroup the chat was migrated to."""
        return self.parameters.get("migrate_to_chat_id")

    def _render(self) -> str:
        text = f"error {self.code}: {self.description}"
        if self.migrate_to_chat_id is not None:
            text += f", the group has been migrated to supergroup with id={self.migrate_to_chat_id}"
        if self.retry_after is not None:
            text += f", retry after {self.retry_after} seconds"
        return text


class ResultDecodeError(BotwireError):
    """The call succeeded but ``result`` did not fit the requested type."""


class WebhookRegistrationError(BotwireError):
    """``setWebhook`` failed, so the webhook server refuses to listen."""


class InternalHandlerError(BotwireError):
    """An unexpected exception escaped an update handler."""
