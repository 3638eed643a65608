"""Echo bot entry point.

Reads settings from :mod:`config`, builds either a long-polling or a webhook
update source around :class:`EchoBot` and runs it until SIGINT/SIGTERM.

Usage::

    BOT_TOKEN=123:ABC python main.py
    BOT_MODE=webhook WEBHOOK_URL=https://example.org WEBHOOK_PORT=8443 python main.py
"""

import signal
import sys

import config
from bot import (
    BotBase,
    Context,
    LongPollingBot,
    PollingConfig,
    WebhookBot,
    WebhookConfig,
    logging_middleware,
)
from core.logger import BotwireLogger
from sdk import DEFAULT_URL_TEMPLATE, BotwireError

logger = BotwireLogger.get_logger()


class EchoBot(BotBase):
    """Reply to every text message with the same text."""

    def on_update(self, ctx: Context) -> None:
        message = ctx.update.message
        if message is None or not message.text:
            logger.debug("Nothing to echo", extra={"update_id": ctx.update.update_id})
            return
        ctx.reply(message.text)


def build_source(bot: EchoBot) -> LongPollingBot | WebhookBot:
    """Return the update source selected by ``BOT_MODE``."""
    if config.BOT_MODE == "webhook":
        webhook_config = WebhookConfig(
            url=config.WEBHOOK_URL or "",
            path=config.WEBHOOK_PATH,
            host=config.WEBHOOK_HOST,
            port=config.WEBHOOK_PORT,
            allowed_updates=config.ALLOWED_UPDATES,
            secret_token=config.WEBHOOK_SECRET_TOKEN,
        ).merge(max_body_size=config.WEBHOOK_MAX_BODY_SIZE)
        return WebhookBot(bot, webhook_config)

    polling_config = PollingConfig().merge(
        limit=config.POLL_LIMIT,
        timeout=config.POLL_TIMEOUT,
        workers=config.POLL_WORKERS,
        allowed_updates=config.ALLOWED_UPDATES,
    )
    return LongPollingBot(bot, polling_config, middleware=[logging_middleware])


def main() -> int:
    if not config.BOT_TOKEN:
        raise EnvironmentError("BOT_TOKEN environment variable is not set or is empty.")

    bot = EchoBot(config.BOT_TOKEN, api_url_template=config.API_URL_TEMPLATE or DEFAULT_URL_TEMPLATE)
    source = build_source(bot)

    def _shutdown(signum, _frame) -> None:
        logger.info("Shutdown requested", extra={"signal": signal.Signals(signum).name})
        source.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    logger.info("Starting echo bot", extra={"mode": config.BOT_MODE})
    try:
        source.start()
    except BotwireError as exc:
        logger.error("Echo bot failed to start", extra={"error": str(exc), "error_type": type(exc).__name__})
        return 1
    finally:
        BotwireLogger().cleanup()
    return 0


if __name__ == "__main__":
    sys.exit(main())
