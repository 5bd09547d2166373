from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional

from .dialects import Dialect, build_step_keyword_regex
from .outline import split_lines


_SCENARIO_HEADER = re.compile(r"^\s*Scenario( Outline)?:", re.IGNORECASE)


@dataclass(frozen=True)
class StepLine:
    index: int  # 0-based line number
    text: str
    keyword: str
    body: str
    kind: str  # effective Given | When | Then

    @property
    def body_start(self) -> int:
        m = re.match(rf"^\s*{re.escape(self.keyword)}\s+", self.text)
        return m.end() if m else max(0, self.text.find(self.body))


def iter_step_lines(text: str, dialect: Dialect, reset_at_scenario: bool = False) -> Iterator[StepLine]:
    """Yield every step line with its effective kind.

    And/But take the kind of the most recent Given/When/Then in the document,
    or Given when none has been seen. That memory spans scenarios unless
    ``reset_at_scenario`` is set.
    """
    step_re = build_step_keyword_regex(dialect)
    last_kind: Optional[str] = None
    for i, line in enumerate(split_lines(text)):
        if reset_at_scenario and _SCENARIO_HEADER.match(line):
            last_kind = None
            continue
        m = step_re.match(line)
        if not m:
            continue
        keyword, body = m.group(1), m.group(2)
        kind = dialect.kind_for(keyword)
        if kind in ("And", "But"):
            kind = last_kind or "Given"
        elif kind is None:
            continue
        else:
            last_kind = kind
        yield StepLine(index=i, text=line, keyword=keyword, body=body, kind=kind)


def step_line_at(lines: List[str], line_index: int, dialect: Dialect) -> Optional[StepLine]:
    """Parse the step on ``line_index``, resolving And/But from the nearest explicit step above it."""
    if not 0 <= line_index < len(lines):
        return None
    step_re = build_step_keyword_regex(dialect)
    m = step_re.match(lines[line_index])
    if not m:
        return None
    keyword, body = m.group(1), m.group(2)
    kind = dialect.kind_for(keyword)
    if kind in ("And", "But"):
        kind = "Given"
        for i in range(line_index - 1, -1, -1):
            prev = step_re.match(lines[i])
            if not prev:
                continue
            prev_kind = dialect.kind_for(prev.group(1))
            if prev_kind in ("Given", "When", "Then"):
                kind = prev_kind
                break
    return StepLine(index=line_index, text=lines[line_index], keyword=keyword, body=body, kind=kind)
