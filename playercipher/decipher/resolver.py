"""
Resolver: extracts the player functions once per bundle and rewrites
format URLs with the deciphered signature and transformed n parameter.

Usage:
    async with Fetcher() as fetcher:
        urls = await decipher_formats(formats, player_url, fetcher)
    for url, fmt in urls.items():
        print(fmt["itag"], url)
"""
from __future__ import annotations
import logging
from typing import Any, Iterable, Mapping, Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit, SplitResult

from .base import (
    Format, PipelineState, PlayerFunctions, DECIPHER_ARGUMENT, N_ARGUMENT,
)
from .cache import functions_key
from .extractors import (
    extract_global_variable, extract_sig_decipher_func, extract_n_transform_func,
)
from .fetcher import Fetcher
from .sandbox import Script
from . import config

log = logging.getLogger("playercipher.decipher.resolver")

# Used when callers do not thread their own state through
_DEFAULT_STATE = PipelineState()


# ──────────────────────────────
#  Extraction
# ──────────────────────────────
def extract_functions(body: str, state: PipelineState | None = None) -> PlayerFunctions:
    """Build both scripts from a player bundle; missing ones are None."""
    state = state or _DEFAULT_STATE
    if not body:
        return PlayerFunctions()

    global_var = extract_global_variable(body)

    decipher_script = None
    try:
        decipher_code = extract_sig_decipher_func(body, global_var)
        if decipher_code:
            decipher_script = Script(decipher_code, state.evaluator)
    except Exception as e:
        log.error(f"Failed to extract decipher function: {e}")

    if decipher_script is None and not state.decipher_warned:
        log.warning("Could not parse decipher function. Stream URLs will be missing.")
        state.decipher_warned = True

    n_transform_script = None
    try:
        n_transform_code = extract_n_transform_func(body, global_var)
        if n_transform_code:
            n_transform_script = Script(n_transform_code, state.evaluator)
    except Exception as e:
        log.error(f"Failed to extract n transform function: {e}")

    if n_transform_script is None and not state.n_transform_warned:
        log.warning("Could not parse n transform function.")
        state.n_transform_warned = True

    return PlayerFunctions(decipher_script, n_transform_script)


def get_functions(key: str, body: str, state: PipelineState | None = None) -> PlayerFunctions:
    """Synchronous memoized ``extract_functions``."""
    state = state or _DEFAULT_STATE
    cached = state.cache.get(key)
    if cached is not None:
        return cached

    functions = extract_functions(body, state)
    state.cache.set(key, functions)
    return functions


# ──────────────────────────────
#  URL helpers
# ──────────────────────────────
def _split_url(url: str) -> SplitResult:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Invalid URL: {url[:80]!r}")
    return parts


def _query_value(parts: SplitResult, name: str) -> Optional[str]:
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key == name:
            return value
    return None


def set_query_param(url: str, name: str, value: str) -> str:
    """Replace the first ``name`` parameter (dropping repeats) or append it."""
    parts = _split_url(url)
    query = []
    replaced = False
    for key, current in parse_qsl(parts.query, keep_blank_values=True):
        if key == name:
            if not replaced:
                query.append((key, value))
                replaced = True
            continue
        query.append((key, current))
    if not replaced:
        query.append((name, value))
    return urlunsplit(parts._replace(query=urlencode(query)))


def _js_truthy(value: Any) -> bool:
    if value is None or value is False or value == "":
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == value and value != 0      # NaN and 0 are falsy
    return True


def _js_string(value: Any) -> str:
    """Render an engine value the way JavaScript's ``String()`` would."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return "[object Object]"
    if isinstance(value, Sequence):
        return ",".join(_js_string(item) for item in value)
    return str(value)


# ──────────────────────────────
#  Per-format rewriting
# ──────────────────────────────
def _decipher(cipher: str, decipher_script: Optional[Script]) -> Optional[str]:
    args = dict(parse_qsl(cipher, keep_blank_values=True))
    url = args.get("url")
    if not args.get("s") or not decipher_script:
        return url

    try:
        signature = decipher_script.run({DECIPHER_ARGUMENT: args["s"]})
        if not isinstance(signature, str):
            log.warning(f"Decipher returned {type(signature).__name__}, keeping original URL")
            return url
        return set_query_param(url, args.get("sp") or "sig", signature)
    except Exception as e:
        log.error(f"Error applying decipher: {e}")
        return url


def _n_transform(url: Optional[str], n_transform_script: Optional[Script]) -> Optional[str]:
    if not url:
        return url
    try:
        parts = _split_url(url)
        n = _query_value(parts, "n")
        if not n or not n_transform_script:
            return url

        transformed = n_transform_script.run({N_ARGUMENT: n})

        if isinstance(transformed, str) and transformed:
            if transformed == n:
                log.warning(
                    "Transformed n parameter is the same as input, "
                    "n function possibly short-circuited")
            elif transformed.startswith("enhanced_except_") or "_w8_" in transformed:
                log.warning("N function did not complete due to exception")
            return set_query_param(url, "n", transformed)

        if _js_truthy(transformed):
            return set_query_param(url, "n", _js_string(transformed))

        return url
    except Exception as e:
        log.error(f"Error applying n transform: {e}")
        return url


def set_download_url(
    fmt: Format,
    decipher_script: Optional[Script],
    n_transform_script: Optional[Script],
) -> None:
    """Rewrite ``fmt["url"]`` in place; a plain url skips deciphering."""
    if not fmt:
        return

    cipher = not fmt.get("url")
    url = fmt.get("url") or fmt.get("signatureCipher") or fmt.get("cipher")
    if not url:
        return

    try:
        fmt["url"] = _n_transform(
            _decipher(url, decipher_script) if cipher else url,
            n_transform_script,
        )
        fmt.pop("signatureCipher", None)
        fmt.pop("cipher", None)
    except Exception as e:
        log.error(f"Error setting download URL: {e}")


# ──────────────────────────────
#  Batch entry point
# ──────────────────────────────
async def decipher_formats(
    formats: Iterable[Format],
    player_url: str,
    fetcher: Fetcher,
    *,
    headers: dict | None = None,
    state: PipelineState | None = None,
) -> dict[str, Format]:
    """Resolve every format against ``player_url``; returns ``{url: format}``.

    The bundle is only fetched when its functions are not cached yet.
    Formats that end up without a URL are left out.
    """
    state = state or _DEFAULT_STATE
    try:
        key = functions_key(player_url)

        async def _load() -> PlayerFunctions:
            log.info(f"Fetching player {player_url}")
            body = await fetcher.get(
                player_url, base_url=config.PLAYER_BASE_URL, headers=headers)
            return extract_functions(body, state)

        decipher_script, n_transform_script = await state.cache.get_or_create(key, _load)

        deciphered: dict[str, Format] = {}
        for fmt in formats:
            set_download_url(fmt, decipher_script, n_transform_script)
            if fmt.get("url"):
                deciphered[fmt["url"]] = fmt
        return deciphered
    except Exception as e:
        log.error(f"Error deciphering formats: {e}")
        return {}
