"""Application configuration: environment variables and derived constants.

Loads the bot token, the update source (``polling`` or ``webhook``) and the
settings of each engine from the environment via ``python-dotenv``.  All
values are resolved at import time so the entry point can
``from config import ...`` without repeated lookups.  Library packages
(``sdk/``, ``bot/``) never import this module.
"""

# ── stdlib ───────────────────────────────────────────────────────────────────
import os

# ── third-party ──────────────────────────────────────────────────────────────
from dotenv import load_dotenv

# ── core ─────────────────────────────────────────────────────────────────────
from core.logger import BotwireLogger

# ── Environment bootstrap ────────────────────────────────────────────────────
load_dotenv()

# ── Logger (used for startup diagnostics at the bottom of this module) ───────
logger = BotwireLogger.get_logger()

_MODES = ("polling", "webhook")
_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ── Helper functions (private) ───────────────────────────────────────────────


def _parse_int(raw: str | None, default: int | None = None) -> int | None:
    """Parse an integer variable, returning *default* when unset or invalid."""
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _parse_list(raw: str | None) -> list[str] | None:
    """Parse a comma-separated list such as ``"message,callback_query"``.

    Empty tokens are skipped.  Returns ``None`` when the variable is unset or
    holds no tokens, so the server-side setting is kept.
    """
    if not raw:
        return None
    result = [token.strip() for token in raw.split(",") if token.strip()]
    return result or None


def _parse_mode(raw: str | None) -> str:
    mode = (raw or "polling").strip().lower()
    return mode if mode in _MODES else "polling"


def _parse_level(raw: str | None) -> str:
    level = (raw or "INFO").strip().upper()
    return level if level in _LEVELS else "INFO"


def _parse_optional(raw: str | None) -> str | None:
    if raw is None or not raw.strip():
        return None
    return raw.strip()


# ── Public constants ─────────────────────────────────────────────────────────

BOT_TOKEN: str | None = os.environ.get("BOT_TOKEN")
BOT_MODE: str = _parse_mode(os.environ.get("BOT_MODE"))
API_URL_TEMPLATE: str | None = _parse_optional(os.environ.get("API_URL_TEMPLATE"))

POLL_LIMIT: int | None = _parse_int(os.environ.get("POLL_LIMIT"))
POLL_TIMEOUT: int | None = _parse_int(os.environ.get("POLL_TIMEOUT"))
POLL_WORKERS: int | None = _parse_int(os.environ.get("POLL_WORKERS"))
ALLOWED_UPDATES: list[str] | None = _parse_list(os.environ.get("ALLOWED_UPDATES"))

WEBHOOK_URL: str | None = _parse_optional(os.environ.get("WEBHOOK_URL"))
WEBHOOK_HOST: str = _parse_optional(os.environ.get("WEBHOOK_HOST")) or "0.0.0.0"
WEBHOOK_PORT: int = _parse_int(os.environ.get("WEBHOOK_PORT"), 80)
WEBHOOK_PATH: str = _parse_optional(os.environ.get("WEBHOOK_PATH")) or "/webhook"
WEBHOOK_SECRET_TOKEN: str | None = _parse_optional(os.environ.get("WEBHOOK_SECRET_TOKEN"))
WEBHOOK_MAX_BODY_SIZE: int | None = _parse_int(os.environ.get("WEBHOOK_MAX_BODY_SIZE"))

LOG_LEVEL: str = _parse_level(os.environ.get("LOG_LEVEL"))


# ── Startup diagnostics ─────────────────────────────────────────────────────

BotwireLogger.set_level(LOG_LEVEL)

if BOT_TOKEN:
    logger.info("Config loaded, BOT_TOKEN is set", extra={"mode": BOT_MODE})
else:
    logger.warning("Config loaded, BOT_TOKEN is NOT set", extra={"mode": BOT_MODE})

if BOT_MODE == "webhook" and not WEBHOOK_URL:
    logger.warning("BOT_MODE is webhook but WEBHOOK_URL is not set")

if ALLOWED_UPDATES:
    logger.info("ALLOWED_UPDATES loaded", extra={"allowed_updates": ALLOWED_UPDATES})
