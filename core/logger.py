"""Project-wide structured logging.

Every module logs through one ``botwire`` logger whose records are rendered
as single-line JSON.  Records go to stderr and, unless the ``LOG_DIR``
environment variable is set to an empty string, to a size-rotated
``<LOG_DIR>/botwire.log``.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, List, Optional


class _JsonFormatter(logging.Formatter):
    """Render a :class:`logging.LogRecord` as one JSON object per line.

    Fixed keys come first; whatever the caller passed through ``extra=`` is
    appended, so engine logs can carry ``update_id``, ``offset``,
    ``api_endpoint`` and similar fields::

        logger.info("Update published", extra={"update_id": 5, "offset": 6})
        # {"timestamp": "...", "level": "INFO", ..., "update_id": 5, "offset": 6}

    Values that are not JSON-serializable are written with ``str()``.
    """

    # Attribute names every LogRecord has; anything else came from ``extra``.
    _RESERVED: frozenset = frozenset(
        vars(logging.LogRecord("", 0, "", 0, "", (), None))
    ) | {"message", "asctime"}

    def _fixed_fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        return {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func_name": record.funcName,
            "thread": record.threadName,
        }

    def format(self, record: logging.LogRecord) -> str:
        entry = self._fixed_fields(record)
        entry.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in self._RESERVED and key not in entry
        )
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class BotwireLogger:
    """Process-wide singleton owning the ``botwire`` logger and its handlers.

    Usage::

        from core.logger import BotwireLogger

        logger = BotwireLogger.get_logger()
        logger.info("Bot is online", extra={"workers": 4})
    """

    _instance: Optional["BotwireLogger"] = None
    _logger: Optional[logging.Logger] = None

    NAME: str = "botwire"
    FILE_NAME: str = "botwire.log"
    MAX_BYTES: int = 5 * 1024 * 1024
    BACKUP_COUNT: int = 5

    def __new__(cls, level: int = logging.INFO) -> "BotwireLogger":
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._logger = cls._configure(logging.getLogger(cls.NAME), level)
            cls._instance = instance
        return cls._instance

    @classmethod
    def _configure(cls, logger: logging.Logger, level: int) -> logging.Logger:
        logger.setLevel(level)
        # Handlers survive a module reload; attach them only once.
        if not logger.handlers:
            formatter = _JsonFormatter()
            for handler in cls._handlers(os.environ.get("LOG_DIR", "logs")):
                handler.setFormatter(formatter)
                logger.addHandler(handler)
        return logger

    @classmethod
    def _handlers(cls, log_dir: str) -> List[logging.Handler]:
        handlers: List[logging.Handler] = [logging.StreamHandler()]
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    os.path.join(log_dir, cls.FILE_NAME),
                    maxBytes=cls.MAX_BYTES,
                    backupCount=cls.BACKUP_COUNT,
                    encoding="utf-8",
                )
            )
        return handlers

    @staticmethod
    def get_logger(level: int = logging.INFO) -> logging.Logger:
        """Return the shared logger, creating it on first use.

        *level* only applies to that first call; use :meth:`set_level`
        afterwards.
        """
        logger = BotwireLogger(level)._logger
        assert logger is not None
        return logger

    @staticmethod
    def set_level(level: int | str) -> None:
        BotwireLogger.get_logger().setLevel(level)

    def cleanup(self) -> None:
        """Flush, close and detach every handler."""
        if self._logger is None:
            return
        for handler in list(self._logger.handlers):
            handler.flush()
            handler.close()
            self._logger.removeHandler(handler)
