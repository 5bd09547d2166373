from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

DiscoveryMode = Literal["auto", "static-scan", "artifact", "runtime-list"]
MatchMode = Literal["anchored", "smart", "substring"]
DialectSetting = Literal["auto", "en", "es"]

FOLDER_CONFIG_FILE = ".stepsync.json"


class AppConfig(BaseSettings):
    """Engine configuration loaded from environment variables (``STEPSYNC_*``) and ``.env``."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="STEPSYNC_", extra="ignore")

    # Discovery
    discovery_mode: DiscoveryMode = Field(default="auto", description="How the step index is obtained")
    index_path: str = Field(
        default="docs/cukerust/step_index.json",
        description="Artifact location relative to the workspace folder",
    )
    ignore_globs: List[str] = Field(
        default_factory=lambda: [
            "**/.git/**",
            "**/node_modules/**",
        ]
    )
    runtime_list_command: str = Field(default="", description="Command that prints a StepIndex as JSON")
    runtime_list_max_output_bytes: int = Field(default=8 * 1024 * 1024, description="Stdout bound for the command")
    trust_store_path: Path = Field(
        default_factory=lambda: Path.home() / ".stepsync" / "trusted_commands.json",
        description="Where runtime-list trust confirmations are persisted",
    )

    # Matching and diagnostics
    dialect: DialectSetting = Field(default="auto", description="Gherkin dialect, or auto-detect")
    match_mode: MatchMode = Field(default="smart", description="Regex anchoring policy")
    reset_kind_at_scenario: bool = Field(
        default=False,
        description="Forget the last Given/When/Then at each Scenario header when resolving And/But",
    )
    completion_enabled: bool = True

    # Rebuilds
    debounce_ms: int = Field(default=500, description="Quiet period before a folder is rebuilt")
    invalidate_choices_on_rebuild: bool = Field(
        default=False,
        description="Drop remembered disambiguation choices after every successful rebuild",
    )

    def for_folder(self, root: Path) -> "AppConfig":
        """Overlay the folder's ``.stepsync.json`` (if any) on top of this configuration."""
        path = root / FOLDER_CONFIG_FILE
        if not path.is_file():
            return self
        try:
            overrides = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable %s: %s", path, e)
            return self
        if not isinstance(overrides, dict):
            logger.warning("Ignoring %s: expected a JSON object", path)
            return self
        merged = {**self.model_dump(), **_normalize_keys(overrides)}
        try:
            return AppConfig.model_validate(merged)
        except ValidationError as e:
            logger.warning("Ignoring invalid %s: %s", path, e)
            return self


# Host-facing dotted names for the settings the engine reads
_SETTING_ALIASES = {
    "discovery.mode": "discovery_mode",
    "index.path": "index_path",
    "ignoreGlobs": "ignore_globs",
    "regex.matchMode": "match_mode",
    "runtimeList.command": "runtime_list_command",
}


def _normalize_keys(raw: dict) -> dict:
    return {_SETTING_ALIASES.get(k, k): v for k, v in raw.items()}


def load_config(overrides: Optional[dict] = None) -> AppConfig:
    config = AppConfig()
    if overrides:
        config = AppConfig.model_validate({**config.model_dump(), **_normalize_keys(overrides)})
    return config
