from __future__ import annotations

from typing import Dict, List, Optional

from .config import AppConfig
from .gherkin.dialects import detect_dialect, get_dialect
from .gherkin.outline import extract_outline_context, has_placeholders, resolve_placeholders
from .gherkin.steps import StepLine, iter_step_lines
from .matching.matcher import match_step
from .models import Diagnostic, StepIndex


UNDEFINED = "Undefined step"
AMBIGUOUS = "Ambiguous step"
UNDEFINED_OUTLINE = "Undefined step (none of the Examples values match)"
AMBIGUOUS_OUTLINE = "Ambiguous step (one or more Examples values have multiple matches)"


def _diagnostic(step: StepLine, message: str) -> Diagnostic:
    return Diagnostic(line=step.index, start_character=0, end_character=len(step.text), message=message)


def _classify(step: StepLine, text: str, index: StepIndex, mode: str) -> Optional[str]:
    outline = extract_outline_context(text, step.index)
    if outline.is_outline and outline.examples and has_placeholders(step.body):
        any_ok = False
        any_ambiguous = False
        for row in outline.examples:
            count = len(match_step(index.steps, step.kind, resolve_placeholders(step.body, row), mode))
            if count >= 1:
                any_ok = True
            if count > 1:
                any_ambiguous = True
        if not any_ok:
            return UNDEFINED_OUTLINE
        if any_ambiguous:
            return AMBIGUOUS_OUTLINE
        return None

    count = len(match_step(index.steps, step.kind, step.body, mode))
    if count == 0:
        return UNDEFINED
    if count > 1:
        return AMBIGUOUS
    return None


def build_diagnostics(text: str, index: Optional[StepIndex], config: AppConfig) -> List[Diagnostic]:
    if index is None:
        return []
    dialect = get_dialect(detect_dialect(text, config.dialect))
    diags: List[Diagnostic] = []
    for step in iter_step_lines(text, dialect, reset_at_scenario=config.reset_kind_at_scenario):
        message = _classify(step, text, index, config.match_mode)
        if message:
            diags.append(_diagnostic(step, message))
    return diags


class DiagnosticsCollection:
    """Published diagnostics per document; an empty publish retracts."""

    def __init__(self) -> None:
        self._by_document: Dict[str, List[Diagnostic]] = {}

    def set(self, document: str, diagnostics: List[Diagnostic]) -> None:
        self._by_document[document] = list(diagnostics)

    def delete(self, document: str) -> None:
        self._by_document.pop(document, None)

    def get(self, document: str) -> List[Diagnostic]:
        return list(self._by_document.get(document, []))

    def documents(self) -> List[str]:
        return list(self._by_document)

    def clear(self) -> None:
        self._by_document.clear()
