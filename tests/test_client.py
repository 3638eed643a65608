"""Tests for send_request, RequestConfig and BotwireClient."""

import json
import logging
import sys
import os
from dataclasses import dataclass

import pytest
import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from fakes import FakeResponse, FakeSession, failure, message_payload, ok
from sdk.cancellation import ExecutionContext
from sdk.client import (
    DEFAULT_URL_TEMPLATE,
    BotwireClient,
    RequestConfig,
    format_url,
    is_correct_url_template,
    send_request,
)
from sdk.exceptions import (
    LocalValidationError,
    MalformedResponseError,
    MissingCredentialsError,
    RemoteAPIError,
    RequestCancelledError,
    ResultDecodeError,
    TransportError,
)
from sdk.methods import GetMe, JSONMethod, SendMessage
from sdk.models import Message, User

ME = {"id": 1, "is_bot": True, "first_name": "Botwire", "username": "botwire_bot"}


# ── URL templates ────────────────────────────────────────────────────────────


class TestUrlTemplate:
    """Validate template checking and substitution."""

    def test_default_is_correct(self) -> None:
        assert is_correct_url_template(DEFAULT_URL_TEMPLATE)

    def test_local_server_template(self) -> None:
        assert is_correct_url_template("http://localhost:8081/bot<token>/<method>")

    @pytest.mark.parametrize(
        "template",
        [
            "https://api.telegram.org/bot/<method>",
            "https://api.telegram.org/bot<token>/",
            "api.telegram.org/bot<token>/<method>",
            "https://api.telegram.org/bot<token><token>/<method>",
            "",
        ],
    )
    def test_rejected(self, template: str) -> None:
        assert not is_correct_url_template(template)

    def test_format_url(self) -> None:
        assert format_url(DEFAULT_URL_TEMPLATE, "1:A", "getMe") == "https://api.telegram.org/bot1:A/getMe"


# ── RequestConfig ────────────────────────────────────────────────────────────


class TestRequestConfig:
    """Validate merging and normalisation."""

    def test_merge_ignores_none(self) -> None:
        base = RequestConfig(timeout=5)
        merged = base.merge(timeout=None, url_template=None)
        assert merged is base

    def test_merge_overrides(self) -> None:
        merged = RequestConfig(timeout=5).merge(timeout=42)
        assert merged.timeout == 42

    def test_normalized_fills_defaults(self) -> None:
        cfg = RequestConfig(url_template="nonsense").normalized()
        assert cfg.url_template == DEFAULT_URL_TEMPLATE
        assert cfg.session is not None
        assert cfg.context is not None and not cfg.context.cancelled

    def test_normalized_is_idempotent(self, session: FakeSession) -> None:
        cfg = RequestConfig(session=session, context=ExecutionContext()).normalized()
        assert cfg.normalized() is cfg


# ── send_request ─────────────────────────────────────────────────────────────


class TestSendRequestValidation:
    """Nothing reaches the network when local checks fail."""

    def test_invalid_body_short_circuits(self, session: FakeSession, token: str) -> None:
        with pytest.raises(LocalValidationError) as info:
            send_request(SendMessage(chat_id=1, text=""), token, Message, RequestConfig(session=session))
        assert str(info.value) == "text parameter must be between 1 and 4096 characters"
        assert session.calls == []

    def test_foreign_validation_error_is_wrapped(self, session: FakeSession, token: str) -> None:
        @dataclass
        class Picky(JSONMethod):
            def validate(self) -> None:
                raise KeyError("missing")

        with pytest.raises(LocalValidationError) as info:
            send_request(Picky(), token, config=RequestConfig(session=session))
        assert isinstance(info.value.__cause__, KeyError)
        assert session.calls == []

    def test_missing_token(self, session: FakeSession) -> None:
        with pytest.raises(MissingCredentialsError, match="API token can't be empty"):
            send_request(GetMe(), "", User, RequestConfig(session=session))
        assert session.calls == []

    def test_validation_runs_before_token_check(self, session: FakeSession) -> None:
        with pytest.raises(LocalValidationError):
            send_request(SendMessage(chat_id=0, text="hi"), "", Message, RequestConfig(session=session))

    def test_cancelled_context_sends_nothing(self, session: FakeSession, token: str) -> None:
        ctx = ExecutionContext()
        ctx.cancel()
        with pytest.raises(RequestCancelledError):
            send_request(GetMe(), token, User, RequestConfig(session=session, context=ctx))
        assert session.calls == []


class TestSendRequestTransport:
    """Validate what goes on the wire."""

    def test_posts_json_to_formatted_url(self, token: str) -> None:
        session = FakeSession([ok(message_payload(chat_id=5, text="hi"))])
        message = send_request(
            SendMessage(chat_id=5, text="hi"), token, Message, RequestConfig(session=session, timeout=7)
        )
        assert isinstance(message, Message)
        assert message.chat.id == 5

        call = session.calls[0]
        assert call.url == f"https://api.telegram.org/bot{token}/sendMessage"
        assert call.headers == {"Content-Type": "application/json"}
        assert call.timeout == 7
        assert json.loads(call.body) == {"chat_id": 5, "text": "hi"}

    def test_invalid_template_falls_back(self, token: str) -> None:
        session = FakeSession([ok(ME)])
        send_request(GetMe(), token, User, RequestConfig(session=session, url_template="broken"))
        assert session.calls[0].url == f"https://api.telegram.org/bot{token}/getMe"

    def test_custom_template(self, token: str) -> None:
        session = FakeSession([ok(ME)])
        template = "http://localhost:8081/bot<token>/<method>"
        send_request(GetMe(), token, User, RequestConfig(session=session), url_template=template)
        assert session.calls[0].url == f"http://localhost:8081/bot{token}/getMe"

    def test_connection_error(self, token: str) -> None:
        session = FakeSession([requests.ConnectionError("connection refused")])
        with pytest.raises(TransportError) as info:
            send_request(GetMe(), token, User, RequestConfig(session=session))
        assert not isinstance(info.value, RequestCancelledError)
        assert isinstance(info.value.__cause__, requests.ConnectionError)

    def test_cancelled_during_call(self, token: str) -> None:
        ctx = ExecutionContext()

        def respond(_call):
            ctx.cancel()
            return ok(ME)

        session = FakeSession([respond])
        with pytest.raises(RequestCancelledError):
            send_request(GetMe(), token, User, RequestConfig(session=session, context=ctx))


class TestSendRequestResponse:
    """Validate envelope decoding and error mapping."""

    def test_non_json_body(self, token: str) -> None:
        session = FakeSession([FakeResponse(text="<html>Bad Gateway</html>", status_code=502)])
        with pytest.raises(MalformedResponseError, match="HTTP 502"):
            send_request(GetMe(), token, User, RequestConfig(session=session))

    def test_failure_without_description_is_malformed(self, token: str) -> None:
        session = FakeSession([FakeResponse({"ok": False})])
        with pytest.raises(MalformedResponseError):
            send_request(GetMe(), token, User, RequestConfig(session=session))

    def test_flood_control(self, token: str) -> None:
        session = FakeSession([failure(429, "Too Many Requests: retry after 5", retry_after=5)])
        with pytest.raises(RemoteAPIError) as info:
            send_request(SendMessage(chat_id=1, text="hi"), token, Message, RequestConfig(session=session))
        exc = info.value
        assert exc.code == 429
        assert exc.description == "Too Many Requests: retry after 5"
        assert exc.retry_after == 5
        assert exc.migrate_to_chat_id is None
        assert str(exc) == "error 429: Too Many Requests: retry after 5, retry after 5 seconds"

    def test_remote_error_without_parameters(self, token: str) -> None:
        session = FakeSession([failure(401, "Unauthorized")])
        with pytest.raises(RemoteAPIError) as info:
            send_request(GetMe(), token, User, RequestConfig(session=session))
        assert info.value.parameters == {}
        assert str(info.value) == "error 401: Unauthorized"

    def test_result_decoded_into_type(self, token: str) -> None:
        session = FakeSession([ok(ME)])
        user = send_request(GetMe(), token, User, RequestConfig(session=session))
        assert user.username == "botwire_bot"

    def test_result_type_mismatch(self, token: str) -> None:
        session = FakeSession([ok("not a user")])
        with pytest.raises(ResultDecodeError):
            send_request(GetMe(), token, User, RequestConfig(session=session))

    def test_no_result_type_discards_result(self, token: str) -> None:
        session = FakeSession([ok(ME)])
        assert send_request(GetMe(), token, config=RequestConfig(session=session)) is None


# ── BotwireClient ────────────────────────────────────────────────────────────


class TestBotwireClient:
    """Validate the per-endpoint helpers."""

    def test_get_updates_extends_http_timeout(self, token: str) -> None:
        session = FakeSession([ok([])])
        client = BotwireClient(token, session=session)
        assert client.get_updates(offset=3, timeout=30) == []
        call = session.calls[0]
        assert call.timeout == 40
        assert json.loads(call.body) == {"offset": 3, "timeout": 30}

    def test_send_message(self, token: str) -> None:
        session = FakeSession([ok(message_payload(chat_id=9, text="yo"))])
        message = BotwireClient(token, RequestConfig(session=session)).send_message(9, "yo", parse_mode="HTML")
        assert message.text == "yo"
        assert json.loads(session.calls[0].body) == {"chat_id": 9, "text": "yo", "parse_mode": "HTML"}

    def test_set_webhook_returns_bool(self, token: str) -> None:
        session = FakeSession([ok(True)])
        assert BotwireClient(token, session=session).set_webhook("https://example.org/hook") is True
        assert session.calls[0].url.endswith("/setWebhook")

    def test_get_webhook_info(self, token: str) -> None:
        session = FakeSession([ok({"url": "", "has_custom_certificate": False, "pending_update_count": 3})])
        info = BotwireClient(token, session=session).get_webhook_info()
        assert info.pending_update_count == 3

    def test_invalid_template_is_reported_once(self, token: str, caplog) -> None:
        session = FakeSession([ok(ME), ok(ME), ok(ME)])
        with caplog.at_level(logging.WARNING, logger="botwire"):
            client = BotwireClient(token, session=session, url_template="https://example.org/no-placeholders")
            for _ in range(3):
                client.get_me()

        warnings = [r for r in caplog.records if r.getMessage() == "Invalid API URL template, using default"]
        assert len(warnings) == 1
        assert client.config.url_template == DEFAULT_URL_TEMPLATE
        assert all(call.url.endswith("/getMe") for call in session.calls)
