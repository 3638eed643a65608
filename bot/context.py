"""Per-update context handed to update handlers.

A :class:`Context` bundles the update being handled with the credentials and
transport of the bot that received it, so handler code can issue follow-up
calls without threading the token around.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from sdk.cancellation import ExecutionContext
from sdk.client import BotwireClient, RequestConfig, send_request
from sdk.exceptions import LocalValidationError
from sdk.methods import RequestBody, SendMessage
from sdk.models import Message, Update


@dataclass(frozen=True)
class Context:
    """Immutable bundle for one inbound update.

    ``session`` and ``execution`` are shared with the engine that built the
    context; they are referenced, never copied.
    """

    token: str
    update: Update
    session: requests.Session
    api_url_template: str
    execution: Optional[ExecutionContext] = field(default=None, compare=False)

    def request_config(self) -> RequestConfig:
        return RequestConfig(
            session=self.session,
            url_template=self.api_url_template,
            context=self.execution,
        )

    @property
    def client(self) -> BotwireClient:
        return BotwireClient(self.token, self.request_config())

    def send(self, body: RequestBody, result_type: Any = None) -> Any:
        """Send *body* with this context's bot settings and decode the result."""
        return send_request(body, self.token, result_type, self.request_config())

    def send_message(self, chat_id: int | str, text: str, **kwargs: Any) -> Message:
        return self.send(SendMessage(chat_id=chat_id, text=text, **kwargs), Message)

    def reply(self, text: str, **kwargs: Any) -> Message:
        """Send *text* to the chat the update came from."""
        chat = self.update.effective_chat
        if chat is None:
            raise LocalValidationError(f"update {self.update.update_id} has no chat to reply to")
        return self.send_message(chat.id, text, **kwargs)
