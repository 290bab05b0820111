"""
Sandboxed execution of assembled player programs.

Programs run inside a fresh embedded V8 context (mini-racer) whose global
scope is first seeded with stand-ins for the browser objects the player
looks for. A real host object always wins over its stand-in.

Usage:
    script = Script(program_text)
    value = script.run({"sig": "..."})     # None on any failure
"""
from __future__ import annotations
import json
import logging
import re
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

from py_mini_racer import JSEvalException, MiniRacer

from .base import ENTRY_POINTS
from .guards import strip_short_circuits
from .locator import IDENT
from . import config

log = logging.getLogger("playercipher.decipher.sandbox")

_IDENT_RE = re.compile(IDENT)

_ORIGIN = config.PLAYER_BASE_URL.rstrip("/")
_HOSTNAME = urlsplit(_ORIGIN).hostname or "www.youtube.com"
_UA = json.dumps(config.USER_AGENT)
_LOCATION = (
    f"{{href: {json.dumps(_ORIGIN)}, hostname: {json.dumps(_HOSTNAME)}, "
    f"protocol: 'https:', origin: {json.dumps(_ORIGIN)}}}"
)
_STORAGE = (
    "{getItem: function () { return null; }, setItem: function () {}, "
    "removeItem: function () {}}"
)

# ──────────────────────────────
#  Browser stand-ins (name → JS expression), installed in order
# ──────────────────────────────
BROWSER_STAND_INS: dict[str, str] = {
    "window": f"{{location: {_LOCATION}, navigator: {{userAgent: {_UA}}}}}",
    "self": "window",
    "globalThis": "window",
    "document": (
        "{createElement: function (tag) { return {style: {}, appendChild: function () {}, "
        "setAttribute: function () {}, getElementsByTagName: function () { return []; }}; }, "
        "getElementsByTagName: function () { return []; }, "
        "getElementById: function () { return null; }, "
        "body: {appendChild: function () {}}, head: {appendChild: function () {}}}"
    ),
    "navigator": f"{{userAgent: {_UA}, platform: 'Win32', language: 'en-US'}}",
    "location": _LOCATION,
    "performance": (
        "{now: function () { return Date.now(); }, timing: {navigationStart: Date.now()}}"
    ),
    "localStorage": _STORAGE,
    "sessionStorage": _STORAGE,
    "crypto": (
        "{getRandomValues: function (arr) { for (var i = 0; i < arr.length; i++) "
        "arr[i] = Math.floor(Math.random() * 256); return arr; }}"
    ),
}

# Reduced set for the retry after a failed first attempt
FALLBACK_STAND_INS: dict[str, str] = {
    "window": "{}",
    "self": "window",
    "globalThis": "window",
    "document": "{createElement: function () { return {}; }}",
    "navigator": "{userAgent: 'Mozilla/5.0'}",
    "location": f"{{href: {json.dumps(_ORIGIN)}}}",
}


class ExecError(RuntimeError):
    """A program could not be evaluated to a result."""


class Evaluator:
    """Runs program text with ``bindings`` exposed as variables."""

    def run(
        self,
        program: str,
        bindings: Mapping[str, Any],
        *,
        stand_ins: Mapping[str, str],
        strict: bool = True,
    ) -> Any:
        raise NotImplementedError


def _prelude(stand_ins: Mapping[str, str], strict: bool) -> str:
    lines = []
    for name, expr in stand_ins.items():
        if strict:
            lines.append(f"var {name} = (typeof {name} !== 'undefined') ? {name} : ({expr});")
        else:
            lines.append(f"var {name} = {name} || ({expr});")
    return "\n".join(lines)


_PLAIN = (
    "function __plain(r) { if (r === undefined) return null; "
    "return (r !== null && (typeof r === 'object' || typeof r === 'function')) ? String(r) : r; }"
)


def build_unit(program: str, names: list[str]) -> str:
    """Wrap ``program`` in a function taking ``names`` and dispatching to an entry point.

    Results never reference the context: ``undefined`` comes back as ``null``
    and objects (arrays included) as their ``String()`` form.
    """
    dispatch = "\n".join(
        f"if (typeof {ENTRY_POINTS[name]} === 'function') "
        f"{{ return __plain({ENTRY_POINTS[name]}({name})); }}"
        for name in names if name in ENTRY_POINTS
    )
    return (
        f"(function ({', '.join(names)}) {{\n{program}\n{_PLAIN}\n{dispatch}\nreturn null;\n}})"
    )


class MiniRacerEvaluator(Evaluator):
    """Embedded V8; every run gets its own context."""

    def __init__(self, *, timeout: int | None = None):
        self.timeout = timeout            # milliseconds, None = unlimited

    def run(self, program, bindings, *, stand_ins, strict=True):
        names = list(bindings)
        for name in names:
            if not _IDENT_RE.fullmatch(name):
                raise ExecError(f"Invalid binding name: {name!r}")

        kwargs = {"timeout": self.timeout} if self.timeout else {}
        with MiniRacer() as ctx:
            try:
                ctx.eval(_prelude(stand_ins, strict), **kwargs)
                return ctx.call(
                    build_unit(program, names), *[bindings[n] for n in names], **kwargs)
            except JSEvalException as e:
                raise ExecError(str(e)) from e


class Script:
    """An assembled program plus the evaluator that runs it."""

    def __init__(self, code: str, evaluator: Optional[Evaluator] = None):
        self.code = code
        self.evaluator = evaluator or MiniRacerEvaluator(timeout=config.JS_TIMEOUT or None)

    def __repr__(self):
        return f"Script({len(self.code)} chars)"

    def run(self, context: Mapping[str, Any]) -> Any:
        """Execute with ``context`` bound; never raises, returns None on failure."""
        program = strip_short_circuits(self.code)
        if config.DEBUG:
            log.debug(f"Executing with context {list(context)}: {program[:300]}...")

        try:
            result = self.evaluator.run(
                program, context, stand_ins=BROWSER_STAND_INS, strict=True)
            if config.DEBUG:
                log.debug(f"Execution result: {result!r}")
            return result
        except Exception as e:
            log.warning(f"Script execution failed, retrying with minimal globals: {e}")

        try:
            return self.evaluator.run(
                program, context, stand_ins=FALLBACK_STAND_INS, strict=False)
        except Exception as e:
            log.error(f"Fallback script execution also failed: {e}")
            return None
