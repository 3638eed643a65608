"""Update engines and the per-update handler surface: polling, webhook, context, middleware.

This package may import from ``sdk/`` and ``core/`` only, never ``config``.
"""

from bot.base import Bot, BotBase, FunctionBot, Middleware, UpdateHandler
from bot.context import Context
from bot.longpolling import LongPollingBot, PollingConfig, PollingState
from bot.middleware import compose, logging_middleware, recovery_middleware
from bot.webhook import WebhookBot, WebhookConfig

__all__ = [
    # Bot contract
    "Bot",
    "BotBase",
    "FunctionBot",
    "UpdateHandler",
    "Middleware",
    "Context",
    # Engines
    "LongPollingBot",
    "PollingConfig",
    "PollingState",
    "WebhookBot",
    "WebhookConfig",
    # Middleware
    "compose",
    "recovery_middleware",
    "logging_middleware",
]
