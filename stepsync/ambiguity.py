from __future__ import annotations

from typing import Dict, Optional

from .models import ChoiceTarget


def choice_key(kind: str, body: str) -> str:
    """Key for a remembered choice; ``body`` is the step text before placeholder resolution."""
    return f"{kind}|{body}"


class AmbiguityMemory:
    """Remembered answers to "which definition did you mean?", shared by every folder.

    Entries are only dropped by :meth:`clear`. They are not checked against newer
    indexes, so a remembered target may point at a definition that has since moved.
    """

    def __init__(self) -> None:
        self._choices: Dict[str, ChoiceTarget] = {}

    def set_choice(self, key: str, target: ChoiceTarget) -> None:
        self._choices = {**self._choices, key: target}

    def get_choice(self, key: str) -> Optional[ChoiceTarget]:
        return self._choices.get(key)

    def clear(self) -> None:
        self._choices = {}

    def __len__(self) -> int:
        return len(self._choices)

    def snapshot(self) -> Dict[str, ChoiceTarget]:
        return dict(self._choices)
