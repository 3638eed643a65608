"""Tests for the webhook server: request handling, registration and lifecycle."""

import json
import logging
import sys
import os
import threading
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from bot.base import FunctionBot
from bot.webhook import SECRET_TOKEN_HEADER, WebhookBot, WebhookConfig
from fakes import FakeSession, failure, message_payload, ok, update_payload, wait_until
from sdk.exceptions import RemoteAPIError, WebhookRegistrationError
from sdk.methods import InputFile


def make_server(token, handler, session=None, middleware=None, **config):
    config.setdefault("url", "https://example.org")
    bot = FunctionBot(token, handler, session=session or FakeSession())
    return WebhookBot(bot, WebhookConfig(**config), middleware=middleware)


# ── Request handling ─────────────────────────────────────────────────────────


class TestRequestHandling:
    """Validate responses for each kind of inbound request."""

    def test_valid_update(self, token: str) -> None:
        received = []
        server = make_server(token, received.append)
        response = TestClient(server.app).post("/webhook", json=update_payload(1, text="hi"))

        assert response.status_code == 200
        assert response.content == b""
        assert len(received) == 1
        ctx = received[0]
        assert ctx.update.update_id == 1
        assert ctx.update.message.text == "hi"
        assert ctx.token == token
        assert ctx.execution is None

    def test_malformed_body(self, token: str) -> None:
        handler = MagicMock()
        server = make_server(token, handler)
        client = TestClient(server.app)

        assert client.post("/webhook", content=b"{not json").status_code == 400
        assert client.post("/webhook", json={"message": {}}).status_code == 400
        handler.assert_not_called()

    def test_handler_fault_is_recovered(self, token: str) -> None:
        def broken(_ctx):
            raise ZeroDivisionError("boom")

        server = make_server(token, broken)
        response = TestClient(server.app).post("/webhook", json=update_payload(2))
        assert response.status_code == 400

    def test_handler_botwire_error(self, token: str) -> None:
        def refused(_ctx):
            raise RemoteAPIError(403, "Forbidden: bot was blocked by the user")

        server = make_server(token, refused)
        assert TestClient(server.app).post("/webhook", json=update_payload(3)).status_code == 400

    def test_custom_path(self, token: str) -> None:
        server = make_server(token, MagicMock(), path="tg/updates")
        client = TestClient(server.app)
        assert client.post("/tg/updates", json=update_payload(4)).status_code == 200
        assert client.post("/webhook", json=update_payload(4)).status_code == 404

    def test_reply_goes_through_bot_session(self, token: str) -> None:
        session = FakeSession([ok(message_payload(chat_id=42, text="hi"))])
        server = make_server(token, lambda ctx: ctx.reply(ctx.update.message.text), session=session)
        assert TestClient(server.app).post("/webhook", json=update_payload(5, text="hi")).status_code == 200

        call = session.calls[0]
        assert call.url == f"https://api.telegram.org/bot{token}/sendMessage"
        assert json.loads(call.body) == {"chat_id": 42, "text": "hi"}


class TestSecretToken:
    """Validate the X-Telegram-Bot-Api-Secret-Token check."""

    def test_missing_or_wrong_secret(self, token: str) -> None:
        handler = MagicMock()
        server = make_server(token, handler, secret_token="s3cret")
        client = TestClient(server.app)

        assert client.post("/webhook", json=update_payload(1)).status_code == 401
        assert client.post("/webhook", json=update_payload(1), headers={SECRET_TOKEN_HEADER: "nope"}).status_code == 401
        handler.assert_not_called()

    def test_matching_secret(self, token: str) -> None:
        handler = MagicMock()
        server = make_server(token, handler, secret_token="s3cret")
        response = TestClient(server.app).post(
            "/webhook", json=update_payload(1), headers={SECRET_TOKEN_HEADER: "s3cret"}
        )
        assert response.status_code == 200
        handler.assert_called_once()


class TestBodyLimit:
    """Bodies over max_body_size are refused before decoding."""

    def test_oversized_body(self, token: str) -> None:
        handler = MagicMock()
        server = make_server(token, handler, max_body_size=64)
        response = TestClient(server.app).post("/webhook", json=update_payload(1, text="x" * 200))
        assert response.status_code == 400
        handler.assert_not_called()

    def test_oversized_body_without_length(self, token: str) -> None:
        handler = MagicMock()
        server = make_server(token, handler, max_body_size=64)
        chunks = iter([b'{"update_id": 1, ', b" " * 100, b"}"])
        assert TestClient(server.app).post("/webhook", content=chunks).status_code == 400
        handler.assert_not_called()

    def test_body_at_limit(self, token: str) -> None:
        handler = MagicMock()
        raw = json.dumps(update_payload(1)).encode()
        server = make_server(token, handler, max_body_size=len(raw))
        response = TestClient(server.app).post(
            "/webhook", content=raw, headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 200
        handler.assert_called_once()


# ── Middleware ───────────────────────────────────────────────────────────────


class TestMiddleware:
    """Validate chain order and defaults."""

    @staticmethod
    def _tracer(name, trace):
        def middleware(next_handler):
            def handler(ctx):
                trace.append(f"{name}-in")
                next_handler(ctx)
                trace.append(f"{name}-out")

            return handler

        return middleware

    def test_first_registered_is_outermost(self, token: str) -> None:
        trace = []
        server = make_server(token, lambda ctx: trace.append("handler"), middleware=[])
        server.use(self._tracer("A", trace), self._tracer("B", trace))
        assert TestClient(server.app).post("/webhook", json=update_payload(1)).status_code == 200
        assert trace == ["A-in", "B-in", "handler", "B-out", "A-out"]

    def test_default_chain_is_recovery_then_logging(self, token: str) -> None:
        from bot.middleware import logging_middleware, recovery_middleware

        server = make_server(token, MagicMock())
        assert server.middleware == [recovery_middleware, logging_middleware]

    def test_default_chain_logs_each_update(self, token: str, caplog) -> None:
        server = make_server(token, MagicMock())
        with caplog.at_level(logging.INFO, logger="botwire"):
            assert TestClient(server.app).post("/webhook", json=update_payload(6)).status_code == 200
        assert any(r.getMessage() == "Update handled" for r in caplog.records)

    def test_set_middleware_replaces_chain(self, token: str) -> None:
        trace = []
        server = make_server(token, lambda ctx: trace.append("handler"))
        server.set_middleware([self._tracer("only", trace)])
        TestClient(server.app).post("/webhook", json=update_payload(1))
        assert trace == ["only-in", "handler", "only-out"]


# ── Registration and lifecycle ───────────────────────────────────────────────


class TestRegistration:
    """Registration must succeed before the server listens."""

    def test_registration_failure_prevents_listening(self, token: str) -> None:
        session = FakeSession([failure(400, "Bad Request: bad webhook: HTTPS url must be provided for webhook")])
        server = make_server(token, MagicMock(), session=session, url="http://example.org")
        with patch("bot.webhook.uvicorn.Server") as server_cls:
            with pytest.raises(WebhookRegistrationError) as info:
                server.start()
        server_cls.assert_not_called()
        assert isinstance(info.value.__cause__, RemoteAPIError)

    def test_false_result_is_a_failure(self, token: str) -> None:
        session = FakeSession([ok(False)])
        server = make_server(token, MagicMock(), session=session)
        with patch("bot.webhook.uvicorn.Server") as server_cls:
            with pytest.raises(WebhookRegistrationError):
                server.start()
        server_cls.assert_not_called()

    def test_registration_request(self, token: str) -> None:
        session = FakeSession([ok(True)])
        server = make_server(
            token,
            MagicMock(),
            session=session,
            url="https://example.org/",
            path="/hook",
            max_connections=10,
            allowed_updates=["message"],
            secret_token="s3cret",
        )
        server.register_webhook()

        call = session.calls[0]
        assert call.url.endswith("/setWebhook")
        assert json.loads(call.body) == {
            "url": "https://example.org/hook",
            "max_connections": 10,
            "allowed_updates": ["message"],
            "secret_token": "s3cret",
        }

    def test_certificate_is_uploaded(self, token: str) -> None:
        session = FakeSession([ok(True)])
        server = make_server(token, MagicMock(), session=session, certificate=InputFile(b"PEM", "cert.pem"))
        server.register_webhook()
        call = session.calls[0]
        assert call.headers["Content-Type"].startswith("multipart/form-data")
        assert b'filename="cert.pem"' in call.body

    def test_delete_and_info(self, token: str) -> None:
        session = FakeSession(
            [ok(True), ok({"url": "https://example.org/webhook", "has_custom_certificate": False, "pending_update_count": 1})]
        )
        server = make_server(token, MagicMock(), session=session)
        assert server.delete_webhook(drop_pending_updates=True) is True
        assert server.get_webhook_info().url == "https://example.org/webhook"
        assert json.loads(session.calls[0].body) == {"drop_pending_updates": True}


class TestLifecycle:
    """Validate start/stop around a patched uvicorn server."""

    def test_start_serves_after_registration(self, token: str) -> None:
        session = FakeSession([ok(True)])
        server = make_server(token, MagicMock(), session=session, host="127.0.0.1", port=8443)
        with patch("bot.webhook.uvicorn.Server") as server_cls:
            server.start()

        server_cls.return_value.run.assert_called_once()
        uvicorn_config = server_cls.call_args[0][0]
        assert uvicorn_config.host == "127.0.0.1"
        assert uvicorn_config.port == 8443
        assert uvicorn_config.timeout_graceful_shutdown == 5.0
        assert server.context.cancelled

    def test_stop_ends_start(self, token: str) -> None:
        session = FakeSession([ok(True)])
        server = make_server(token, MagicMock(), session=session, shutdown_timeout=1.0)
        fake = MagicMock()
        fake.should_exit = False
        running = threading.Event()

        def serve():
            running.set()
            wait_until(lambda: fake.should_exit, timeout=5)

        fake.run.side_effect = serve
        with patch("bot.webhook.uvicorn.Server", return_value=fake):
            runner = threading.Thread(target=server.start)
            runner.start()
            assert running.wait(5)
            server.stop()
            runner.join(5)

        assert not runner.is_alive()
        assert fake.should_exit is True
        assert server.context.cancelled

    def test_request_in_flight_during_stop_still_replies(self, token: str) -> None:
        session = FakeSession([ok(True), ok(message_payload(chat_id=42, text="bye"))])
        entered = threading.Event()
        release = threading.Event()

        def handler(ctx):
            entered.set()
            release.wait(5)
            ctx.reply("bye")

        server = make_server(token, handler, session=session, shutdown_timeout=1.0)
        fake = MagicMock()
        fake.should_exit = False
        fake.run.side_effect = lambda: wait_until(lambda: fake.should_exit, timeout=5)
        responses = []

        def deliver():
            responses.append(TestClient(server.app).post("/webhook", json=update_payload(1)))

        with patch("bot.webhook.uvicorn.Server", return_value=fake):
            runner = threading.Thread(target=server.start)
            runner.start()
            assert wait_until(lambda: fake.run.called)
            request = threading.Thread(target=deliver)
            request.start()
            assert entered.wait(5)

            server.stop()
            runner.join(5)
            release.set()
            request.join(5)

        assert not runner.is_alive()
        assert server.context.cancelled
        assert responses[0].status_code == 200
        assert len([call for call in session.calls if call.url.endswith("/sendMessage")]) == 1

    def test_delete_webhook_after_stop(self, token: str) -> None:
        session = FakeSession([ok(True), ok(True)])
        server = make_server(token, MagicMock(), session=session)
        with patch("bot.webhook.uvicorn.Server"):
            server.start()
        assert server.context.cancelled
        assert server.delete_webhook() is True
        assert session.calls[1].url.endswith("/deleteWebhook")

    def test_stop_before_start(self, token: str) -> None:
        server = make_server(token, MagicMock())
        server.stop()
        assert not server.context.cancelled
