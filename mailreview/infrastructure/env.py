"""
Environment loading and typed MAILREVIEW_* readers.

config.py reads every override through these helpers, after ensure_env_loaded()
has merged a .env file into os.environ. Variables already set in the process
environment win over .env values.

Lookup order for .env:
    1. explicit env_path argument
    2. nearest .env walking up from the current working directory
    3. ~/.mailreview/.env (next to the default database)

Usage:
    from mailreview.infrastructure.env import ensure_env_loaded, env_int

    ensure_env_loaded()
    max_entries = env_int("MAILREVIEW_MAX_CACHE_ENTRIES", 50, minimum=1)
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

USER_ENV_FILE = Path.home() / ".mailreview" / ".env"

_loaded_from: Path | None = None
_ENV_LOADED = False


def _locate_env_file() -> Path | None:
    found = find_dotenv(usecwd=True)
    if found:
        return Path(found)
    if USER_ENV_FILE.is_file():
        return USER_ENV_FILE
    return None


def ensure_env_loaded(env_path: Path | None = None) -> Path | None:
    """
    Merge a .env file into the process environment, once.

    Returns:
        The file that was loaded, or None when there was none

    Side Effects:
        - Sets variables from the file that are not already set
    """
    global _ENV_LOADED, _loaded_from
    if _ENV_LOADED:
        return _loaded_from

    path = env_path if env_path is not None else _locate_env_file()
    if path is not None and path.is_file():
        load_dotenv(path, override=False)
        _loaded_from = path
    _ENV_LOADED = True
    return _loaded_from


def get_optional_env(key: str, default: str = "") -> str:
    ensure_env_loaded()
    return os.getenv(key, default).strip()


def _parse(key: str, raw: str, kind: type[int] | type[float]) -> int | float:
    try:
        return kind(raw)
    except ValueError as e:
        raise ValueError(f"{key}={raw!r} is not a valid {kind.__name__}") from e


def env_int(key: str, default: int, *, minimum: int | None = None) -> int:
    """
    Integer override, or default when unset/blank.

    Raises:
        ValueError: If the variable is set but not an integer, or below minimum
    """
    raw = get_optional_env(key)
    if not raw:
        return default
    value = int(_parse(key, raw, int))
    if minimum is not None and value < minimum:
        raise ValueError(f"{key}={value} must be at least {minimum}")
    return value


def env_float(key: str, default: float) -> float:
    """
    Float override, or default when unset/blank.

    Raises:
        ValueError: If the variable is set but not a number
    """
    raw = get_optional_env(key)
    if not raw:
        return default
    return float(_parse(key, raw, float))
