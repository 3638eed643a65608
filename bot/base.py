"""The contract every bot must satisfy to be driven by an update engine.

Design:
- ``Bot`` is a :class:`Protocol`: a token, a URL template, an HTTP session,
  and an ``on_update`` callback.  Engines depend on nothing else.
- ``BotBase`` supplies the usual defaults (shared session, public API URL)
  so subclasses only provide the token and ``on_update``.
- ``FunctionBot`` adapts a plain function to the protocol.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Optional, Protocol, runtime_checkable

import requests

from sdk.client import DEFAULT_URL_TEMPLATE, default_session

if TYPE_CHECKING:
    from bot.context import Context

# ── Handler types ────────────────────────────────────────────────────────────

UpdateHandler = Callable[["Context"], None]
Middleware = Callable[[UpdateHandler], UpdateHandler]


@runtime_checkable
class Bot(Protocol):
    """Capability set consumed by :class:`~bot.longpolling.LongPollingBot`
    and :class:`~bot.webhook.WebhookBot`."""

    @property
    def token(self) -> str: ...  # noqa: E704

    @property
    def api_url_template(self) -> str: ...  # noqa: E704

    @property
    def session(self) -> requests.Session: ...  # noqa: E704

    def on_update(self, ctx: "Context") -> None: ...  # noqa: E704


class BotBase:
    """Default implementation of everything but ``token`` and ``on_update``.

    Usage::

        class EchoBot(BotBase):
            def on_update(self, ctx):
                if ctx.update.message and ctx.update.message.text:
                    ctx.reply(ctx.update.message.text)

        bot = EchoBot("123:ABC")
    """

    def __init__(
        self,
        token: str,
        session: Optional[requests.Session] = None,
        api_url_template: str = DEFAULT_URL_TEMPLATE,
    ) -> None:
        self._token = token
        self._session = session
        self._api_url_template = api_url_template

    @property
    def token(self) -> str:
        return self._token

    @property
    def api_url_template(self) -> str:
        return self._api_url_template

    @property
    def session(self) -> requests.Session:
        return self._session or default_session()

    def on_update(self, ctx: "Context") -> None:
        raise NotImplementedError


class FunctionBot(BotBase):
    """Wrap a plain ``handler(ctx)`` function as a :class:`Bot`."""

    def __init__(
        self,
        token: str,
        handler: UpdateHandler,
        session: Optional[requests.Session] = None,
        api_url_template: str = DEFAULT_URL_TEMPLATE,
    ) -> None:
        super().__init__(token, session=session, api_url_template=api_url_template)
        self._handler = handler

    def on_update(self, ctx: "Context") -> None:
        self._handler(ctx)
