from __future__ import annotations

import re
from typing import Dict, List

from pydantic import BaseModel, Field


_OUTLINE = re.compile(r"^Scenario Outline:", re.IGNORECASE)
_SCENARIO = re.compile(r"^Scenario:", re.IGNORECASE)
_SCENARIO_ANY = re.compile(r"^Scenario( Outline)?:", re.IGNORECASE)
_FEATURE = re.compile(r"^Feature:", re.IGNORECASE)
_EXAMPLES = re.compile(r"^Examples:", re.IGNORECASE)
_TABLE_ROW = re.compile(r"^\s*\|")
_PLACEHOLDER = re.compile(r"<([^>]+)>")

_LINE_SPLIT = re.compile(r"\r?\n")


class OutlineContext(BaseModel):
    is_outline: bool = False
    header: List[str] = Field(default_factory=list)
    examples: List[Dict[str, str]] = Field(default_factory=list)


def split_lines(text: str) -> List[str]:
    return _LINE_SPLIT.split(text)


def has_placeholders(body: str) -> bool:
    return _PLACEHOLDER.search(body) is not None


def _table_cells(raw: str) -> List[str]:
    inner = raw.strip()
    if inner.startswith("|"):
        inner = inner[1:]
    inner = inner.rstrip()
    if inner.endswith("|"):
        inner = inner[:-1]
    return [cell.strip() for cell in inner.split("|")]


def extract_outline_context(text: str, line_index: int) -> OutlineContext:
    lines = split_lines(text)
    if not lines or line_index < 0:
        return OutlineContext()
    start = -1
    for i in range(min(line_index, len(lines) - 1), -1, -1):
        t = lines[i].strip()
        if _OUTLINE.match(t):
            start = i
            break
        if _SCENARIO.match(t) or _FEATURE.match(t):
            break
    if start == -1:
        return OutlineContext()

    examples_start = -1
    for i in range(start + 1, len(lines)):
        t = lines[i].strip()
        if _EXAMPLES.match(t):
            examples_start = i
            break
        if _SCENARIO_ANY.match(t):
            break
    if examples_start == -1:
        return OutlineContext(is_outline=True)

    header: List[str] = []
    rows: List[Dict[str, str]] = []
    for raw in lines[examples_start + 1 :]:
        # A blank line or any non-table line closes the Examples block
        if not _TABLE_ROW.match(raw):
            break
        cells = _table_cells(raw)
        if not header:
            header = cells
            continue
        rows.append({name: cells[pos] if pos < len(cells) else "" for pos, name in enumerate(header)})
    return OutlineContext(is_outline=True, header=header, examples=rows)


def resolve_placeholders(body: str, row: Dict[str, str]) -> str:
    return _PLACEHOLDER.sub(lambda m: row.get(m.group(1), m.group(0)), body)
