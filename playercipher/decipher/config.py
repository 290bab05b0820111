"""
Runtime settings for the decipher pipeline, read from the environment
(a local .env is honoured).
"""
from __future__ import annotations
import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


PLAYER_BASE_URL = os.getenv("PLAYERCIPHER_PLAYER_BASE", "https://www.youtube.com")

USER_AGENT = os.getenv(
    "PLAYERCIPHER_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36",
)

FETCH_TIMEOUT = _int_env("PLAYERCIPHER_FETCH_TIMEOUT", 10)

# Characters inspected before an unmatched "{" when looking for a function header
LOOKBACK_WINDOW = _int_env("PLAYERCIPHER_LOOKBACK", 100)

# Max characters on either side of a marker inside a declaration literal
DECLARATION_WINDOW = _int_env("PLAYERCIPHER_DECLARATION_WINDOW", 5000)

# Milliseconds; 0 disables the engine-side limit
JS_TIMEOUT = _int_env("PLAYERCIPHER_JS_TIMEOUT", 0)

DEBUG = os.getenv("PLAYERCIPHER_DEBUG", "").lower() in ("1", "true", "yes")
