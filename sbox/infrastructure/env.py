"""
Centralized environment variable loader for SBOX.

Side Effects:
    - Loads .env file from project root (once per process)

Usage:
    from sbox.infrastructure.env import ensure_env_loaded, get_optional_env

    ensure_env_loaded()
    level = get_optional_env("SBOX_LOG_LEVEL", "INFO")
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

_ENV_LOADED = False


def ensure_env_loaded(env_path: Path | None = None) -> None:
    """
    Ensure .env file is loaded exactly once.

    Args:
        env_path: Optional path to .env file. If None, searches upward for one.

    Side Effects:
        - Loads environment variables from .env file (existing values win)
        - Sets module-level flag to prevent double-loading
    """
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    if env_path is None:
        current = Path(__file__).parent
        while current != current.parent:
            env_candidate = current / ".env"
            if env_candidate.exists():
                env_path = env_candidate
                break
            current = current.parent

    if env_path and env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()
    _ENV_LOADED = True


def get_optional_env(key: str, default: str = "") -> str:
    """
    Get optional environment variable with default value.

    Args:
        key: Environment variable name
        default: Default value if not set
    """
    ensure_env_loaded()
    return os.getenv(key, default)


def get_env_bool(key: str, default: bool) -> bool:
    """Interpret ``true/1/yes`` and ``false/0/no``; anything else yields ``default``."""
    value = get_optional_env(key, "").strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    return default
