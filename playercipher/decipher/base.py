"""
Core types for the player decipher pipeline.

  - Snippet: a piece of source text lifted out of the player bundle
  - PlayerFunctions: the pair of assembled scripts cached per bundle
  - PipelineState: process-scoped cache + one-shot warning flags
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator, Optional

from .cache import FunctionCache

if TYPE_CHECKING:
    from .sandbox import Evaluator, Script

# Fixed names used inside every assembled program
DECIPHER_ARGUMENT = "sig"
N_ARGUMENT = "ncode"
DECIPHER_FUNC_NAME = "PlayerCipherDecipherFunc"
N_TRANSFORM_FUNC_NAME = "PlayerCipherNTransformFunc"

# Context key → entry point invoked by the sandbox
ENTRY_POINTS = {
    DECIPHER_ARGUMENT: DECIPHER_FUNC_NAME,
    N_ARGUMENT: N_TRANSFORM_FUNC_NAME,
}

# Format descriptors come straight from the player response JSON
Format = dict[str, Any]


# ──────────────────────────────
#  Located source fragment
# ──────────────────────────────
@dataclass(frozen=True)
class Snippet:
    name: Optional[str]               # None for anonymous functions
    code: str


# ──────────────────────────────
#  Cached pair of scripts
# ──────────────────────────────
@dataclass(frozen=True)
class PlayerFunctions:
    decipher: Optional["Script"] = None
    n_transform: Optional["Script"] = None

    def __iter__(self) -> Iterator[Optional["Script"]]:
        return iter((self.decipher, self.n_transform))


# ──────────────────────────────
#  Process-scoped state
# ──────────────────────────────
@dataclass
class PipelineState:
    cache: FunctionCache = field(default_factory=FunctionCache)
    evaluator: Optional["Evaluator"] = None   # None → MiniRacerEvaluator per script
    decipher_warned: bool = False
    n_transform_warned: bool = False
