from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


StepKind = Literal["Given", "When", "Then"]
STEP_KINDS: Tuple[StepKind, ...] = ("Given", "When", "Then")


class StepEntry(BaseModel):
    kind: StepKind
    regex: str
    file: str  # relative to the workspace folder
    line: int  # 1-based
    function: Optional[str] = None
    captures: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = None

    @property
    def identity(self) -> Tuple[str, str, str, int]:
        return (self.kind, self.regex, self.file, self.line)

    @property
    def location(self) -> str:
        return f"{self.file}:{self.line}"


class StepIndexStats(BaseModel):
    total: int = 0
    by_kind: Dict[str, int] = Field(default_factory=lambda: {k: 0 for k in STEP_KINDS})
    ambiguous: int = 0
    generated_at: Optional[str] = None

    @field_validator("by_kind", mode="before")
    @classmethod
    def _normalize_kind_keys(cls, value):
        # Artifacts in the wild spell the keys either "Given" or "given"
        if isinstance(value, dict):
            return {str(k).capitalize(): v for k, v in value.items()}
        return value

    def generated_timestamp(self) -> Optional[float]:
        """Return ``generated_at`` as epoch seconds, or None when absent or unparseable."""
        if not self.generated_at:
            return None
        raw = self.generated_at.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()


class StepIndex(BaseModel):
    steps: List[StepEntry] = Field(default_factory=list)
    stats: StepIndexStats = Field(default_factory=StepIndexStats)

    @staticmethod
    def from_steps(steps: List[StepEntry], stamp: bool = True) -> "StepIndex":
        ordered = sorted(steps, key=lambda s: (s.file, s.line))
        by_kind = Counter(s.kind for s in ordered)
        # Ambiguous: the same (kind, regex) pair is defined more than once
        pairs = Counter((s.kind, s.regex) for s in ordered)
        stats = StepIndexStats(
            total=len(ordered),
            by_kind={k: by_kind.get(k, 0) for k in STEP_KINDS},
            ambiguous=sum(1 for count in pairs.values() if count > 1),
            generated_at=datetime.now(timezone.utc).isoformat() if stamp else None,
        )
        return StepIndex(steps=ordered, stats=stats)

    def deduplicated(self) -> "StepIndex":
        return StepIndex(steps=dedupe_steps(self.steps), stats=self.stats)


def dedupe_steps(steps: List[StepEntry]) -> List[StepEntry]:
    seen = set()
    out: List[StepEntry] = []
    for step in steps:
        key = step.identity
        if key in seen:
            continue
        seen.add(key)
        out.append(step)
    return out


class SourceFile(BaseModel):
    path: str
    text: str


class ExtractorInput(BaseModel):
    files: List[SourceFile] = Field(default_factory=list)


class ChoiceTarget(BaseModel):
    file: str
    line: int


class Diagnostic(BaseModel):
    line: int  # 0-based
    start_character: int = 0
    end_character: int
    message: str
    severity: Literal["warning"] = "warning"
    source: str = "stepsync"


class NavigationTarget(BaseModel):
    file: str  # relative to the folder root
    line: int  # 1-based
    kind: Optional[StepKind] = None
    regex: Optional[str] = None

    @staticmethod
    def from_step(step: StepEntry) -> "NavigationTarget":
        return NavigationTarget(file=step.file, line=step.line, kind=step.kind, regex=step.regex)
