"""
Builders that turn a raw player bundle into standalone programs.

Each builder returns program text (or None when its pattern no longer
matches the current player). The text always ends with a call of a fixed
entry point on a fixed parameter name so the sandbox can run it directly.
"""
from __future__ import annotations
import logging
import re
from typing import Optional

from .base import (
    Snippet, DECIPHER_ARGUMENT, N_ARGUMENT, DECIPHER_FUNC_NAME, N_TRANSFORM_FUNC_NAME,
)
from .guards import strip_short_circuits
from .locator import IDENT, SnippetLocator

log = logging.getLogger("playercipher.decipher.extractors")

# Strings known to live inside the shared obfuscation table, by priority
GLOBAL_TABLE_MARKERS = [
    "-_w8_",
    "Untrusted URL{",
    "1969",
    "1970",
    "playerfallback",
]

# Strings characteristic of the n transform body, by priority
N_TRANSFORM_MARKERS = [
    "-_w8_",                            # error tag suffix
    "1969-12-31",
    "1970-01-01",
    "enhanced_except",
    ".push(String.fromCharCode(",
    ".reverse().forEach(function",
    "new Date(",
]

_SPLIT_JOIN_ARG = r'(?:""|' + IDENT + r"\[\d+\])"

# function(a){a=a.split("");Xy.ab(a,3);...;return a.join("")}
_SIG_FUNC_RE = re.compile(
    r"function\((" + IDENT + r")\)\{(\1=\1\.split\(" + _SPLIT_JOIN_ARG + r"\)"
    r"(.+?)\.join\(" + _SPLIT_JOIN_ARG + r"\))\}"
)

# Receiver of the first Xy.ab / Xy["ab"] access
_HELPER_CALL_RE = re.compile(r"(" + IDENT + r")(?:\.|\[\")" + IDENT + r"(?:\"\])?")

_ANON_FUNC_RE = re.compile(r"^function\s*\(")


def extract_global_variable(body: str, locator: SnippetLocator | None = None) -> Optional[Snippet]:
    """Find the string/array table shared by the obfuscated helpers."""
    locator = locator or SnippetLocator()
    return locator.find_declaration(body, GLOBAL_TABLE_MARKERS)


def _find_helper_object(body: str, name: str) -> Optional[str]:
    # One level of nested braces: the method bodies inside the object literal
    pattern = re.compile(
        r"var\s+" + re.escape(name) + r"\s*=\s*\{([^{}]*(?:\{[^{}]*\}[^{}]*)*)\}"
    )
    match = pattern.search(body)
    if not match:
        return None
    return f"var {name}={{{match.group(1)}}}"


def extract_sig_decipher_func(body: str, global_var: Optional[Snippet]) -> Optional[str]:
    """Build the signature decipher program, or None."""
    match = _SIG_FUNC_RE.search(body)
    if not match:
        log.debug("Decipher split/join idiom not found")
        return None

    var_name, func_body, calls = match.group(1), match.group(2), match.group(3)

    helper_call = _HELPER_CALL_RE.search(calls)
    if not helper_call:
        log.debug("Decipher helper object reference not found")
        return None

    helper_name = helper_call.group(1)
    helper_code = _find_helper_object(body, helper_name)
    if not helper_code:
        log.debug(f"Decipher helper object {helper_name!r} declaration not found")
        return None

    global_code = global_var.code if global_var else ""
    decipher_func = f"function {DECIPHER_FUNC_NAME}({var_name}){{{func_body}}}"

    return (
        f"{global_code}\n{helper_code};\n{decipher_func}\n"
        f"{DECIPHER_FUNC_NAME}({DECIPHER_ARGUMENT});"
    )


def extract_n_transform_func(
    body: str,
    global_var: Optional[Snippet],
    locator: SnippetLocator | None = None,
) -> Optional[str]:
    """Build the n parameter transform program, or None."""
    locator = locator or SnippetLocator()
    func = locator.find_function(body, N_TRANSFORM_MARKERS)
    if not func:
        log.debug("No n transform marker matched")
        return None

    cleaned = strip_short_circuits(func.code)
    global_code = global_var.code if global_var else ""

    if func.name:
        return (
            f"{global_code}\n{cleaned}\n"
            f"var {N_TRANSFORM_FUNC_NAME}={func.name};\n"
            f"{N_TRANSFORM_FUNC_NAME}({N_ARGUMENT});"
        )

    cleaned = _ANON_FUNC_RE.sub(f"function {N_TRANSFORM_FUNC_NAME}(", cleaned, count=1)
    return f"{global_code}\n{cleaned}\n{N_TRANSFORM_FUNC_NAME}({N_ARGUMENT});"
