from __future__ import annotations

import re
from typing import Dict, List, Optional, Pattern

from pydantic import BaseModel


class Dialect(BaseModel):
    code: str
    Given: List[str]
    When: List[str]
    Then: List[str]
    And: List[str]
    But: List[str]

    def keywords(self) -> List[str]:
        return [*self.Given, *self.When, *self.Then, *self.And, *self.But]

    def kind_for(self, keyword: str) -> Optional[str]:
        """Classify a step keyword as Given, When, Then, And or But."""
        for kind in ("Given", "When", "Then", "And", "But"):
            if keyword in getattr(self, kind):
                return kind
        return None


DIALECTS: Dict[str, Dialect] = {
    "en": Dialect(
        code="en",
        Given=["Given"],
        When=["When"],
        Then=["Then"],
        And=["And"],
        But=["But"],
    ),
    "es": Dialect(
        code="es",
        Given=["Dado", "Dada"],
        When=["Cuando"],
        Then=["Entonces"],
        And=["Y"],
        But=["Pero"],
    ),
}

DEFAULT_DIALECT = "en"

_LANGUAGE_HEADER = re.compile(r"^\s*#\s*language:\s*([A-Za-z0-9_-]+)", re.IGNORECASE | re.MULTILINE)


def get_dialect(code: str) -> Dialect:
    return DIALECTS.get(code, DIALECTS[DEFAULT_DIALECT])


def detect_dialect(text: str, configured: str = "auto") -> str:
    if configured != "auto":
        return configured
    m = _LANGUAGE_HEADER.search(text)
    if not m:
        return DEFAULT_DIALECT
    code = m.group(1).strip().lower()
    if code.startswith("es"):
        return "es"
    return DEFAULT_DIALECT


def build_step_keyword_regex(dialect: Dialect) -> Pattern[str]:
    alternatives = "|".join(re.escape(kw) for kw in dialect.keywords())
    return re.compile(rf"^\s*({alternatives})\s+(.+)$")
