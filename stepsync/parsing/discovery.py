from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from pathspec import PathSpec

from ..models import SourceFile


logger = logging.getLogger(__name__)

SOURCE_GLOB = "**/*.rs"
SOURCE_SUFFIXES = {".rs"}

# Build output is never scanned, whatever the configured ignore globs say
BUILD_OUTPUT_GLOBS = ["**/target/**", "target/"]


def _build_ignore_spec(ignore_globs: List[str]) -> PathSpec:
    return PathSpec.from_lines("gitwildmatch", [*BUILD_OUTPUT_GLOBS, *ignore_globs])


def is_source_path(path: Path) -> bool:
    return path.suffix in SOURCE_SUFFIXES


def discover_source_files(root: Path, ignore_globs: List[str]) -> List[Path]:
    ignore_spec = _build_ignore_spec(ignore_globs)
    found: List[Path] = []
    for path in root.rglob("*"):
        if not is_source_path(path) or path.is_dir():
            continue
        rel = path.relative_to(root)
        if ignore_spec.match_file(rel.as_posix()):
            continue
        found.append(path)
    return sorted(found)


def read_source_files(root: Path, paths: List[Path]) -> List[SourceFile]:
    files: List[SourceFile] = []
    for path in paths:
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug("Skipping unreadable source %s: %s", path, e)
            continue
        files.append(SourceFile(path=path.relative_to(root).as_posix(), text=text))
    return files
