from __future__ import annotations

import re
from typing import List, Optional, Tuple

from ..models import ExtractorInput, SourceFile, StepEntry, StepIndex


_BUILDER = re.compile(r"\.(given|when|then)\s*(?:::<[^>]+>)?\s*\(")
_MACRO = re.compile(r"\b(given|when|then)!\s*\(")
_ATTRIBUTE = re.compile(r"#\[\s*(given|when|then)\b")
_FN_NAME = re.compile(
    r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:async\s+)?fn\s+([A-Za-z_][A-Za-z0-9_]*)\s*[(<]",
    re.MULTILINE,
)

_ESCAPES = {'"': '"', "\\": "\\", "n": "\n", "r": "\r", "t": "\t"}


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def _raw_string_start(s: str, i: int) -> Optional[Tuple[int, int]]:
    """If a raw literal ``r#*"`` begins at ``i``, return (hash count, index after the quote)."""
    if s[i] != "r" or (i > 0 and _is_ident_char(s[i - 1])):
        return None
    j = i + 1
    while j < len(s) and s[j] == "#":
        j += 1
    if j < len(s) and s[j] == '"':
        return j - i - 1, j + 1
    return None


def find_first_string_literal(s: str) -> Optional[Tuple[int, int, str]]:
    """Locate the first normal or raw Rust string literal in ``s``.

    Returns the offsets where the literal starts and ends and its unescaped content,
    or None when there is none or it is unterminated.
    """
    i = 0
    n = len(s)
    while i < n:
        raw = _raw_string_start(s, i)
        if raw is not None:
            hashes, start = raw
            closing = '"' + "#" * hashes
            end = s.find(closing, start)
            if end == -1:
                return None
            return i, end + len(closing), s[start:end]
        if s[i] == '"':
            out: List[str] = []
            j = i + 1
            while j < n:
                c = s[j]
                if c == "\\":
                    if j + 1 >= n:
                        return None
                    e = s[j + 1]
                    # unknown escapes are kept as written
                    out.append(_ESCAPES.get(e, "\\" + e))
                    j += 2
                    continue
                if c == '"':
                    return i, j + 1, "".join(out)
                out.append(c)
                j += 1
            return None
        i += 1
    return None


def extract_first_string_literal(s: str) -> Optional[str]:
    found = find_first_string_literal(s)
    return found[2] if found else None


def strip_comments(text: str) -> str:
    """Blank out // and /* */ comments, keeping string literals and line breaks intact."""
    out: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        c = text[i]
        if text.startswith("//", i):
            while i < n and text[i] != "\n":
                out.append(" ")
                i += 1
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            end = n if end == -1 else end + 2
            out.append("".join("\n" if ch == "\n" else " " for ch in text[i:end]))
            i = end
            continue
        raw = _raw_string_start(text, i)
        if raw is not None:
            hashes, start = raw
            closing = '"' + "#" * hashes
            end = text.find(closing, start)
            end = n if end == -1 else end + len(closing)
            out.append(text[i:end])
            i = end
            continue
        if c == '"':
            j = i + 1
            while j < n and text[j] != '"':
                j += 2 if text[j] == "\\" else 1
            end = min(j + 1, n)
            out.append(text[i:end])
            i = end
            continue
        out.append(c)
        i += 1
    return "".join(out)


def _kind(word: str) -> str:
    return word.capitalize()


def _discover_call_steps(path: str, stripped: str) -> List[StepEntry]:
    steps: List[StepEntry] = []
    for lineno, line in enumerate(stripped.splitlines(), start=1):
        for detector in (_BUILDER, _MACRO):
            for m in detector.finditer(line):
                regex = extract_first_string_literal(line[m.end() :])
                if regex is None:
                    continue
                steps.append(StepEntry(kind=_kind(m.group(1)), regex=regex, file=path, line=lineno))
    return steps


def _discover_attribute_steps(path: str, stripped: str) -> List[StepEntry]:
    steps: List[StepEntry] = []
    for m in _ATTRIBUTE.finditer(stripped):
        rest = stripped[m.end() :]
        found = find_first_string_literal(rest)
        if found is None:
            continue
        offset, end, regex = found
        # The literal must belong to this attribute, not to code after it
        if -1 < rest.find("]") < offset:
            continue
        close = rest.find("]", end)
        lineno = stripped.count("\n", 0, m.start()) + 1
        after_attr = rest[close + 1 :] if close != -1 else ""
        scope = "\n".join(after_attr.split("\n")[:4])
        fn = _FN_NAME.search(scope)
        steps.append(
            StepEntry(
                kind=_kind(m.group(1)),
                regex=regex,
                file=path,
                line=lineno,
                function=fn.group(1) if fn else None,
            )
        )
    return steps


def extract_step_index(files: List[SourceFile]) -> StepIndex:
    steps: List[StepEntry] = []
    for sf in files:
        stripped = strip_comments(sf.text)
        steps.extend(_discover_call_steps(sf.path, stripped))
        steps.extend(_discover_attribute_steps(sf.path, stripped))
    return StepIndex.from_steps(steps)


def extract_step_index_json(payload: str) -> str:
    """JSON entry point: ``{"files": [{"path", "text"}]}`` in, StepIndex JSON out."""
    request = ExtractorInput.model_validate_json(payload)
    return extract_step_index(request.files).model_dump_json(exclude_none=True)
