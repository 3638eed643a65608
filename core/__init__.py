"""Framework-agnostic utilities: structured logging.

This package must NEVER import from ``bot/`` or ``sdk/``.
"""

from core.logger import BotwireLogger

__all__ = [
    "BotwireLogger",
]
