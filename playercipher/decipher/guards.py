"""
Removal of the player's environment-detection short-circuits.

The n function bails out early with statements such as

    ;if(typeof XY==="undefined")return a;

when it thinks it is not running in a browser. Each guard is replaced by a
bare ";" so execution falls through into the real transform.
"""
from __future__ import annotations
import re

from .locator import IDENT

_GUARD_PATTERNS = [
    # if (typeof X === "undefined") return Y;
    re.compile(
        r";\s*if\s*\(\s*typeof\s+" + IDENT + r"\s*===?\s*[\"']undefined[\"']\s*\)"
        r"\s*return\s+" + IDENT + r"\s*;?",
        re.IGNORECASE,
    ),
    # if (typeof X === T[3]) return Y;
    re.compile(
        r";\s*if\s*\(\s*typeof\s+" + IDENT + r"\s*===?\s*" + IDENT + r"\[\d+\]\s*\)"
        r"\s*return\s+" + IDENT + r"\s*;?",
        re.IGNORECASE,
    ),
    # if (typeof X === void 0) return Y;
    re.compile(
        r";\s*if\s*\(\s*typeof\s+" + IDENT + r"\s*===?\s*void\s+0\s*\)"
        r"\s*return\s+" + IDENT + r"\s*;?",
        re.IGNORECASE,
    ),
    # exception-flag variant
    re.compile(
        r";\s*if\s*\([^)]*enhanced_except[^)]*\)\s*return\s+[^;]+;",
        re.IGNORECASE,
    ),
]


def strip_short_circuits(code: str) -> str:
    for pattern in _GUARD_PATTERNS:
        code = pattern.sub(";", code)
    return code
