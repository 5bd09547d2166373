from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

from .ambiguity import AmbiguityMemory, choice_key
from .config import AppConfig
from .gherkin.dialects import detect_dialect, get_dialect
from .gherkin.outline import extract_outline_context, has_placeholders, resolve_placeholders, split_lines
from .gherkin.steps import StepLine, step_line_at
from .matching.matcher import first_capture_groups, match_step
from .models import STEP_KINDS, ChoiceTarget, NavigationTarget, StepEntry, StepIndex, dedupe_steps


@dataclass
class DefinitionLookup:
    step: StepLine
    key: str
    candidates: List[StepEntry] = field(default_factory=list)
    remembered: Optional[ChoiceTarget] = None

    @property
    def targets(self) -> List[NavigationTarget]:
        if self.remembered is not None:
            return [NavigationTarget(file=self.remembered.file, line=self.remembered.line)]
        return [NavigationTarget.from_step(s) for s in self.candidates]

    @property
    def needs_choice(self) -> bool:
        return self.remembered is None and len(self.candidates) > 1


@dataclass
class HoverInfo:
    step: StepEntry
    body: str
    resolved: Optional[str] = None  # set when an Examples row was substituted
    captures: List[str] = field(default_factory=list)
    other_candidates: int = 0


@dataclass
class CompletionItem:
    label: str
    snippet: str
    detail: str


def _candidate_bodies(text: str, step: StepLine) -> List[str]:
    outline = extract_outline_context(text, step.index)
    if outline.is_outline and outline.examples and has_placeholders(step.body):
        return [resolve_placeholders(step.body, row) for row in outline.examples]
    return [step.body]


def _step_at(text: str, line_index: int, config: AppConfig) -> Optional[StepLine]:
    dialect = get_dialect(detect_dialect(text, config.dialect))
    return step_line_at(split_lines(text), line_index, dialect)


def find_definitions(
    text: str,
    line_index: int,
    index: Optional[StepIndex],
    config: AppConfig,
    memory: AmbiguityMemory,
) -> Optional[DefinitionLookup]:
    if index is None:
        return None
    step = _step_at(text, line_index, config)
    if step is None:
        return None
    matches: List[StepEntry] = []
    for body in _candidate_bodies(text, step):
        matches.extend(match_step(index.steps, step.kind, body, config.match_mode))
    key = choice_key(step.kind, step.body)
    return DefinitionLookup(step=step, key=key, candidates=dedupe_steps(matches), remembered=memory.get_choice(key))


def remember_choice(memory: AmbiguityMemory, lookup: DefinitionLookup, chosen: StepEntry) -> NavigationTarget:
    memory.set_choice(lookup.key, ChoiceTarget(file=chosen.file, line=chosen.line))
    return NavigationTarget.from_step(chosen)


def hover(text: str, line_index: int, index: Optional[StepIndex], config: AppConfig) -> Optional[HoverInfo]:
    """First matching definition for the step on ``line_index``, trying Given, When, Then in turn."""
    if index is None:
        return None
    step = _step_at(text, line_index, config)
    if step is None:
        return None
    bodies = _candidate_bodies(text, step)
    for kind in STEP_KINDS:
        for body in bodies:
            matches = match_step(index.steps, kind, body, config.match_mode)
            if not matches:
                continue
            first = matches[0]
            return HoverInfo(
                step=first,
                body=step.body,
                resolved=body if body != step.body else None,
                captures=first_capture_groups(first.regex, body) or [],
                other_candidates=len(matches) - 1,
            )
    return None


_SNIPPET_PASSES = (
    (re.compile(r"\(\\d\+\)"), "number"),
    (re.compile(r"\(\.\+\)"), "value"),
    (re.compile(r"\\d\+"), "number"),
)


def to_snippet(regex: str) -> str:
    """Turn a step regex into snippet text.

    Tab stops are numbered pass by pass: every ``(\\d+)`` as ``number``, then every
    ``(.+)`` as ``value``, then any bare ``\\d+`` left over.
    """
    counter = iter(range(1, 1000))
    body = regex[1:] if regex.startswith("^") else regex
    body = body[:-1] if body.endswith("$") else body
    for pattern, label in _SNIPPET_PASSES:
        body = pattern.sub(lambda _: f"${{{next(counter)}:{label}}}", body)
    return body


def completions(index: Optional[StepIndex], config: AppConfig) -> List[CompletionItem]:
    if index is None or not config.completion_enabled:
        return []
    return [
        CompletionItem(label=f"{s.kind}: {s.regex}", snippet=to_snippet(s.regex), detail=s.location)
        for s in index.steps
    ]
