from __future__ import annotations

import asyncio
import logging
import os
import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError

from ..config import AppConfig
from ..errors import ArtifactError, RuntimeListError, UntrustedCommandError
from ..models import SourceFile, StepIndex
from ..parsing.discovery import discover_source_files, read_source_files
from ..parsing.rust_steps import extract_step_index
from .trust import TrustStore


logger = logging.getLogger(__name__)

SourceExtractor = Callable[[List[SourceFile]], StepIndex]

_READ_CHUNK = 64 * 1024


@dataclass
class AcquisitionResult:
    """Outcome of one acquisition attempt for a folder.

    ``index`` is None when the folder's current index must be left untouched.
    """

    source: str  # artifact | static-scan | runtime-list | none
    index: Optional[StepIndex] = None
    stale: bool = False
    elapsed_ms: Optional[int] = None


def load_artifact(path: Path) -> Tuple[StepIndex, float]:
    try:
        mtime = path.stat().st_mtime
        text = path.read_bytes().decode("utf-8")
    except OSError as e:
        raise ArtifactError(f"Cannot read artifact {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ArtifactError(f"Artifact {path} is not UTF-8: {e}") from e
    try:
        index = StepIndex.model_validate_json(text)
    except ValidationError as e:
        raise ArtifactError(f"Artifact {path} is not a valid step index: {e.error_count()} error(s)") from e
    return index, mtime


def is_artifact_fresh(root: Path, artifact_mtime: float, index: StepIndex) -> bool:
    baseline = artifact_mtime
    generated = index.stats.generated_timestamp()
    if generated is not None:
        baseline = max(baseline, generated)
    checked = set()
    for step in index.steps:
        if step.file in checked:
            continue
        checked.add(step.file)
        try:
            mtime = os.stat(root / step.file).st_mtime
        except OSError:
            # a referenced source that cannot be stat'ed (usually deleted) means stale
            return False
        if mtime > baseline:
            return False
    return True


class StepIndexAcquirer:
    def __init__(
        self,
        extractor: SourceExtractor = extract_step_index,
        trust_store: Optional[TrustStore] = None,
    ):
        self.extractor = extractor
        self.trust_store = trust_store

    async def acquire(self, root: Path, config: AppConfig) -> AcquisitionResult:
        mode = config.discovery_mode
        if mode == "runtime-list":
            return await self.runtime_list(root, config)
        if mode == "static-scan":
            return await self.static_scan(root, config)

        fresh = await self.fresh_artifact(root, config)
        if fresh is not None:
            return AcquisitionResult(source="artifact", index=fresh)
        if mode == "artifact":
            logger.warning("Artifact for %s is stale or missing; keeping the current index", root)
            return AcquisitionResult(source="none", stale=True)
        logger.info("Artifact for %s is stale or missing; falling back to static scan", root)
        return await self.static_scan(root, config)

    async def fresh_artifact(self, root: Path, config: AppConfig) -> Optional[StepIndex]:
        """Return the artifact's index when it exists, parses and is fresh; otherwise None."""
        path = root / config.index_path
        try:
            index, mtime = await asyncio.to_thread(load_artifact, path)
        except ArtifactError as e:
            logger.debug("%s", e)
            return None
        if not await asyncio.to_thread(is_artifact_fresh, root, mtime, index):
            return None
        return index

    async def static_scan(self, root: Path, config: AppConfig) -> AcquisitionResult:
        started = time.perf_counter()
        paths = await asyncio.to_thread(discover_source_files, root, config.ignore_globs)
        files = await asyncio.to_thread(read_source_files, root, paths)
        index = self.extractor(files).deduplicated()
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info("Scanned %d source file(s) in %s: %d step(s) in %dms", len(files), root, len(index.steps), elapsed_ms)
        return AcquisitionResult(source="static-scan", index=index, elapsed_ms=elapsed_ms)

    async def runtime_list(self, root: Path, config: AppConfig) -> AcquisitionResult:
        folder = str(root)
        command = config.runtime_list_command.strip()
        if not command:
            raise RuntimeListError("No runtime-list command is configured", folder=folder)
        if self.trust_store is None or not self.trust_store.ensure_trusted(folder, command):
            raise UntrustedCommandError(f"Runtime-list command not trusted for {folder}: {command}", folder=folder)

        started = time.perf_counter()
        try:
            argv = shlex.split(command)
        except ValueError as e:
            raise RuntimeListError(f"Cannot parse runtime-list command: {e}", folder=folder) from e
        stdout, stderr, code = await _run_bounded(argv, root, config.runtime_list_max_output_bytes)
        if code != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise RuntimeListError(
                f"Runtime-list command exited with {code}" + (f": {detail}" if detail else ""),
                folder=folder,
                exit_code=code,
            )
        try:
            index = StepIndex.model_validate_json(stdout.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise RuntimeListError(f"Runtime-list command printed non-UTF-8 output: {e}", folder=folder) from e
        except ValidationError as e:
            raise RuntimeListError(f"Runtime-list command printed invalid JSON: {e.error_count()} error(s)", folder=folder) from e
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return AcquisitionResult(source="runtime-list", index=index, elapsed_ms=elapsed_ms)


async def _run_bounded(argv: List[str], cwd: Path, limit: int) -> Tuple[bytes, bytes, int]:
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise RuntimeListError(f"Cannot start runtime-list command {argv[0]!r}: {e}", folder=str(cwd)) from e

    stderr_task = asyncio.create_task(proc.stderr.read())
    chunks: List[bytes] = []
    size = 0
    while True:
        chunk = await proc.stdout.read(_READ_CHUNK)
        if not chunk:
            break
        size += len(chunk)
        if size > limit:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            stderr_task.cancel()
            raise RuntimeListError(f"Runtime-list output exceeded {limit} bytes", folder=str(cwd))
        chunks.append(chunk)
    stderr = await stderr_task
    code = await proc.wait()
    return b"".join(chunks), stderr, code
