from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, Optional

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)

# Asked once per (folder, command); returns True when the user trusts it
ConfirmCallback = Callable[[str, str], bool]


class TrustRecord(BaseModel):
    folders: Dict[str, str] = Field(default_factory=dict)  # folder path -> trusted command


class TrustStore:
    """Persisted, per-folder confirmations that a runtime-list command may run."""

    def __init__(self, path: Path, confirm: Optional[ConfirmCallback] = None):
        self.path = path
        self.confirm = confirm
        self._record: Optional[TrustRecord] = None

    def _load(self) -> TrustRecord:
        if self._record is None:
            try:
                self._record = TrustRecord.model_validate_json(self.path.read_text(encoding="utf-8"))
            except FileNotFoundError:
                self._record = TrustRecord()
            except (OSError, ValueError) as e:
                logger.warning("Trust store %s unreadable, starting empty: %s", self.path, e)
                self._record = TrustRecord()
        return self._record

    def _save(self) -> None:
        record = self._load()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(record.model_dump_json(indent=2), encoding="utf-8")

    def is_trusted(self, folder: str, command: str) -> bool:
        return self._load().folders.get(folder) == command

    def trust(self, folder: str, command: str) -> None:
        self._load().folders[folder] = command
        self._save()

    def revoke(self, folder: str) -> None:
        if self._load().folders.pop(folder, None) is not None:
            self._save()

    def ensure_trusted(self, folder: str, command: str) -> bool:
        if self.is_trusted(folder, command):
            return True
        if self.confirm is None or not self.confirm(folder, command):
            return False
        self.trust(folder, command)
        return True
