from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Pattern, Union

from ..models import StepEntry


MATCH_MODES = ("anchored", "smart", "substring")


@dataclass(frozen=True)
class CompiledStep:
    pattern: Pattern[str]

    def matches(self, body: str) -> bool:
        return self.pattern.search(body) is not None


@dataclass(frozen=True)
class UnusablePattern:
    """A step definition whose regex the host engine rejects; it never matches."""

    error: str

    def matches(self, body: str) -> bool:
        return False


CompileResult = Union[CompiledStep, UnusablePattern]


def normalize_body(body: str) -> str:
    return body.strip()


def pattern_for_mode(regex: str, mode: str) -> str:
    if mode == "anchored":
        pattern = regex
        if not pattern.startswith("^"):
            pattern = "^" + pattern
        if not pattern.endswith("$"):
            pattern = pattern + "$"
        return pattern
    if mode == "smart":
        if regex.startswith("^") or regex.endswith("$"):
            return regex
        return f"^{regex}$"
    # substring
    return regex


@lru_cache(maxsize=4096)
def compile_step(regex: str, mode: str) -> CompileResult:
    try:
        return CompiledStep(re.compile(pattern_for_mode(regex, mode)))
    except (re.error, OverflowError, RecursionError) as e:
        return UnusablePattern(error=str(e))


def match_step(
    steps: List[StepEntry],
    kind: str,
    body: str,
    mode: str = "smart",
) -> List[StepEntry]:
    norm = normalize_body(body)
    return [s for s in steps if s.kind == kind and compile_step(s.regex, mode).matches(norm)]


def first_capture_groups(regex: str, body: str) -> Optional[List[str]]:
    """Capture groups of ``regex`` against ``body`` with the anchors stripped, if any."""
    stripped = regex
    if stripped.startswith("^"):
        stripped = stripped[1:]
    if stripped.endswith("$"):
        stripped = stripped[:-1]
    compiled = compile_step(stripped, "substring")
    if not isinstance(compiled, CompiledStep):
        return None
    m = compiled.pattern.search(body)
    if not m or not m.groups():
        return None
    return [g if g is not None else "" for g in m.groups()]
