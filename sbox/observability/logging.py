"""
Process-wide logging setup for the engine, the CLI and the structured event stream.

Every module calls ``get_logger(__name__)``; the first call attaches one stream
handler to the root logger. ``SBOX_LOG_LEVEL`` (default INFO) is re-read on each
call so tests and the CLI can turn on DEBUG to see per-row decisions and
counter updates.
"""

from __future__ import annotations

import logging
import os
from typing import Final

_HANDLER_ATTACHED: bool = False
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level() -> int:
    level_name = os.getenv("SBOX_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """
    Return the logger for ``name`` at the current ``SBOX_LOG_LEVEL``.

    Side Effects:
        - Attaches the shared stream handler to the root logger on first use
        - Sets the root and named logger levels
    """
    global _HANDLER_ATTACHED

    level = _resolve_level()

    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(level)
        _HANDLER_ATTACHED = True
    else:
        logging.getLogger().setLevel(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
