"""
Heuristic snippet locator for minified player code.

The player bundle is never parsed. Fragments are found with bounded regex
searches around known marker strings, falling back to a brace-balancing
scan when the regexes run out of nesting depth:

  1. function name(...){ ...marker... }          (regex, two nesting levels)
  2. var name = function(...){ ...marker... }    (regex, two nesting levels)
  3. walk out from the marker to the enclosing function, then balance braces
"""
from __future__ import annotations
import re
from typing import Iterable, Optional

from .base import Snippet
from . import config

IDENT = r"[a-zA-Z_$][a-zA-Z0-9_$]*"

# Body text tolerating up to two levels of nested braces (not true balancing)
_NESTED = r"[^{}]*(?:\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}[^{}]*)*"

_FUNC_HEADER_RE = re.compile(r"(function\s*(" + IDENT + r")?)\s*\([^)]*\)\s*$")
_FUNC_NAME_RE = re.compile(r"function\s*(" + IDENT + r")?")

# Blocks the backward walk may climb out of: if/for/while/switch/catch bodies
_CONTROL_BLOCK_RE = re.compile(r"(?:\)|\b(?:else|do|try|finally))\s*$")


class SnippetLocator:
    """Finds declarations and functions whose source contains a marker.

    ``lookback`` is how many characters before an unmatched ``{`` are searched
    for a ``function(...)`` header; ``declaration_window`` caps how far a
    declaration literal may extend on either side of the marker.
    """

    def __init__(
        self,
        *,
        lookback: int | None = None,
        declaration_window: int | None = None,
    ):
        self.lookback = config.LOOKBACK_WINDOW if lookback is None else lookback
        self.declaration_window = (
            config.DECLARATION_WINDOW if declaration_window is None else declaration_window
        )

    # ── declarations ──────────────────

    def find_declaration(self, text: str, markers: Iterable[str]) -> Optional[Snippet]:
        """Return the first ``var x = [...]`` / ``var x = "..."`` holding a marker."""
        window = "{0,%d}" % self.declaration_window
        for marker in markers:
            pattern = re.compile(
                r"var\s+(" + IDENT + r")\s*=\s*([\[\"'][^;]" + window
                + re.escape(marker) + r"[^;]" + window + r");"
            )
            match = pattern.search(text)
            if match:
                return Snippet(
                    name=match.group(1),
                    code=f"var {match.group(1)} = {match.group(2)};",
                )
        return None

    # ── functions ──────────────────

    def find_function(self, text: str, markers: Iterable[str]) -> Optional[Snippet]:
        """Markers are tried in order; for each one the three strategies run in turn."""
        for marker in markers:
            snippet = (
                self.match_named_function(text, marker)
                or self.match_assigned_function(text, marker)
                or self.scan_enclosing_function(text, marker)
            )
            if snippet:
                return snippet
        return None

    def match_named_function(self, text: str, marker: str) -> Optional[Snippet]:
        pattern = re.compile(
            r"(function\s+(" + IDENT + r")\s*\([^)]*\)\s*\{"
            + _NESTED + re.escape(marker) + _NESTED + r"\})"
        )
        match = pattern.search(text)
        if match:
            return Snippet(name=match.group(2), code=match.group(1))
        return None

    def match_assigned_function(self, text: str, marker: str) -> Optional[Snippet]:
        pattern = re.compile(
            r"(var\s+(" + IDENT + r")\s*=\s*function\s*\([^)]*\)\s*\{"
            + _NESTED + re.escape(marker) + _NESTED + r"\})"
        )
        match = pattern.search(text)
        if match:
            return Snippet(name=match.group(2), code=match.group(1))
        return None

    def scan_enclosing_function(self, text: str, marker: str) -> Optional[Snippet]:
        """Exact fallback: locate the function around the first marker occurrence."""
        idx = text.find(marker)
        if idx == -1:
            return None

        start = self.find_function_start(text, idx)
        if start is None:
            return None

        end = self.find_block_end(text, start)
        if end is None:
            return None

        code = text[start:end]
        name_match = _FUNC_NAME_RE.match(code)
        return Snippet(name=name_match.group(1) if name_match else None, code=code)

    def find_function_start(self, text: str, idx: int) -> Optional[int]:
        """Walk backwards from ``idx`` to the ``function`` keyword owning it.

        Every unmatched ``{`` is checked for a function header in the
        lookback window. Control-flow blocks are climbed out of; any other
        block (an object literal, say) ends the search with None.
        """
        depth = 0
        i = idx
        while i >= 0:
            ch = text[i]
            if ch == "}":
                depth += 1
            elif ch == "{":
                depth -= 1
                if depth < 0:
                    before = text[max(0, i - self.lookback):i]
                    header = _FUNC_HEADER_RE.search(before)
                    if header:
                        return i - len(before) + header.start(1)
                    if not _CONTROL_BLOCK_RE.search(before):
                        return None
                    depth = 0
            i -= 1
        return None

    @staticmethod
    def find_block_end(text: str, start: int) -> Optional[int]:
        """Index just past the brace closing the first block opened at/after ``start``."""
        depth = 0
        for j in range(start, len(text)):
            ch = text[j]
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return j + 1
        return None


def find_declaration_by_content(text: str, markers: Iterable[str]) -> Optional[Snippet]:
    return SnippetLocator().find_declaration(text, markers)


def find_function_by_content(text: str, markers: Iterable[str]) -> Optional[Snippet]:
    return SnippetLocator().find_function(text, markers)
