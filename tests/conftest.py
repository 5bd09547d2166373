"""Shared test fixtures."""

import json
import os
from pathlib import Path
from typing import Any, Callable

import pytest

from stepsync.config import AppConfig
from stepsync.models import StepEntry, StepIndex


STEPS_RS = """\
use cucumber::{given, then, when};

#[given(regex = r"^I have (\\d+) cukes$")]
async fn have_cukes(world: &mut World, n: usize) {}

#[when(regex = r"^I eat (\\d+)$")]
async fn eat(world: &mut World, n: usize) {}

#[then(regex = r"^I should have (\\d+) left$")]
async fn left(world: &mut World, n: usize) {}
"""


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """Configuration isolated from the developer's environment."""
    return AppConfig(
        _env_file=None,
        trust_store_path=tmp_path / "trust" / "trusted_commands.json",
        debounce_ms=20,
    )


@pytest.fixture
def cukes_index() -> StepIndex:
    return StepIndex(
        steps=[
            StepEntry(kind="Given", regex=r"^I have (\d+) cukes$", file="src/steps.rs", line=10),
            StepEntry(kind="When", regex=r"^I eat (\d+)$", file="src/steps.rs", line=20),
            StepEntry(kind="Then", regex=r"^I should have (\d+) left$", file="src/steps.rs", line=30),
        ]
    )


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A workspace folder with one Rust step file."""
    root = tmp_path / "ws"
    (root / "src").mkdir(parents=True)
    (root / "src" / "steps.rs").write_text(STEPS_RS, encoding="utf-8")
    return root


@pytest.fixture
def write_artifact() -> Callable[..., Path]:
    """Write a StepIndex payload where the default configuration looks for it."""

    def _write(root: Path, index: dict[str, Any], rel: str = "docs/cukerust/step_index.json") -> Path:
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(index), encoding="utf-8")
        return path

    return _write


def set_mtime(path: Path, when: float) -> None:
    os.utime(path, (when, when))


@pytest.fixture
def touch() -> Callable[[Path, float], None]:
    """Set a file's access and modification time."""
    return set_mtime
