from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .ambiguity import AmbiguityMemory
from .config import AppConfig
from .diagnostics import DiagnosticsCollection, build_diagnostics
from .errors import RuntimeListError
from .indexing.acquisition import StepIndexAcquirer
from .indexing.trust import TrustStore
from .models import ChoiceTarget, Diagnostic, StepEntry, StepIndex
from .navigation import CompletionItem, DefinitionLookup, HoverInfo, completions, find_definitions, hover, remember_choice
from .scheduler import RebuildScheduler


logger = logging.getLogger(__name__)

ErrorCallback = Callable[[RuntimeListError], None]


@dataclass
class FolderState:
    folder_id: str
    root: Path
    config: AppConfig
    index: Optional[StepIndex] = None
    stale: bool = False
    last_source: Optional[str] = None
    last_build_ms: Optional[int] = None
    last_error: Optional[str] = None
    generation: int = 0


@dataclass
class FolderHealth:
    folder_id: str
    mode: str
    stale: bool
    last_build_ms: Optional[int]
    steps: int
    source: Optional[str]
    error: Optional[str]


class ResolutionEngine:
    """Owns every workspace folder's step index and the state derived from it."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        acquirer: Optional[StepIndexAcquirer] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.config = config or AppConfig()
        self.acquirer = acquirer or StepIndexAcquirer(trust_store=TrustStore(self.config.trust_store_path))
        self.on_error = on_error
        self.memory = AmbiguityMemory()
        self.diagnostics = DiagnosticsCollection()
        self.scheduler = RebuildScheduler(self.rebuild_and_refresh, delay_s=self.config.debounce_ms / 1000)
        self._folders: Dict[str, FolderState] = {}
        self._documents: Dict[str, str] = {}

    # Folders

    def add_folder(self, root: Path, folder_id: Optional[str] = None, config: Optional[AppConfig] = None) -> FolderState:
        root = root.resolve()
        folder_id = folder_id or str(root)
        state = FolderState(folder_id=folder_id, root=root, config=config or self.config.for_folder(root))
        self._folders[folder_id] = state
        return state

    def remove_folder(self, folder_id: str) -> None:
        self.scheduler.cancel(folder_id)
        state = self._folders.pop(folder_id, None)
        if state is None:
            return
        for document in list(self._documents):
            if _is_within(Path(document), state.root):
                self.diagnostics.delete(document)

    def folders(self) -> List[FolderState]:
        return list(self._folders.values())

    def folder(self, folder_id: str) -> Optional[FolderState]:
        return self._folders.get(folder_id)

    def folder_for(self, path: Path) -> Optional[FolderState]:
        path = path.resolve()
        owners = [s for s in self._folders.values() if _is_within(path, s.root)]
        if not owners:
            return None
        # nested workspace folders: the deepest root owns the file
        return max(owners, key=lambda s: len(s.root.parts))

    def get_index(self, folder_id: str) -> Optional[StepIndex]:
        state = self._folders.get(folder_id)
        return state.index if state else None

    # Rebuilds

    async def rebuild(self, folder_id: str) -> bool:
        """Recompute one folder's index. Returns True when a new index was installed."""
        state = self._folders.get(folder_id)
        if state is None:
            return False
        state.generation += 1
        generation = state.generation
        logger.debug("Rebuilding %s (mode=%s, generation=%d)", folder_id, state.config.discovery_mode, generation)
        try:
            result = await self.acquirer.acquire(state.root, state.config)
        except RuntimeListError as e:
            if self._folders.get(folder_id) is not state or generation != state.generation:
                logger.info("Ignoring failure of superseded rebuild %d of %s: %s", generation, folder_id, e)
                return False
            state.last_error = str(e)
            logger.error("Step index for %s not updated: %s", folder_id, e)
            if self.on_error is not None:
                self.on_error(e)
            return False

        if self._folders.get(folder_id) is not state:
            return False
        if generation != state.generation:
            logger.info("Discarding superseded rebuild %d of %s", generation, folder_id)
            return False

        state.last_error = None
        if result.index is None:
            state.stale = result.stale
            return False
        # whole-value replacement: readers never see a half-built index
        state.index = result.index
        state.stale = False
        state.last_source = result.source
        if result.elapsed_ms is not None:
            state.last_build_ms = result.elapsed_ms
        if self.config.invalidate_choices_on_rebuild:
            self.memory.clear()
        logger.info("Installed %d step(s) for %s from %s", len(result.index.steps), folder_id, result.source)
        return True

    async def rebuild_all(self) -> None:
        for folder_id in list(self._folders):
            await self.rebuild(folder_id)

    async def rebuild_and_refresh(self, folder_id: str) -> None:
        await self.rebuild(folder_id)
        self.refresh_folder(folder_id)

    def notify_change(self, folder_id: str) -> None:
        if folder_id in self._folders:
            self.scheduler.notify_change(folder_id)

    # Documents and diagnostics

    def open_document(self, path: Path, text: str) -> List[Diagnostic]:
        key = str(path.resolve())
        self._documents[key] = text
        return self.refresh_diagnostics(key)

    update_document = open_document

    def close_document(self, path: Path) -> None:
        key = str(path.resolve())
        self._documents.pop(key, None)
        self.diagnostics.delete(key)

    def refresh_diagnostics(self, document: str) -> List[Diagnostic]:
        text = self._documents.get(document)
        state = self.folder_for(Path(document))
        index = state.index if state else None
        if text is None or index is None:
            self.diagnostics.delete(document)
            return []
        diags = build_diagnostics(text, index, state.config)
        self.diagnostics.set(document, diags)
        return diags

    def refresh_folder(self, folder_id: str) -> None:
        state = self._folders.get(folder_id)
        if state is None:
            return
        for document in list(self._documents):
            owner = self.folder_for(Path(document))
            if owner is state:
                self.refresh_diagnostics(document)

    # Navigation

    def _document_context(self, path: Path):
        key = str(path.resolve())
        text = self._documents.get(key)
        if text is None:
            text = path.read_text(encoding="utf-8")
        state = self.folder_for(path)
        return text, state

    def definitions(self, path: Path, line_index: int) -> Optional[DefinitionLookup]:
        text, state = self._document_context(path)
        if state is None:
            return None
        return find_definitions(text, line_index, state.index, state.config, self.memory)

    def choose_definition(self, lookup: DefinitionLookup, chosen: StepEntry) -> None:
        remember_choice(self.memory, lookup, chosen)

    def hover(self, path: Path, line_index: int) -> Optional[HoverInfo]:
        text, state = self._document_context(path)
        if state is None:
            return None
        return hover(text, line_index, state.index, state.config)

    def completions(self, path: Path) -> List[CompletionItem]:
        state = self.folder_for(path)
        if state is None:
            return []
        return completions(state.index, state.config)

    # Ambiguity memory

    def set_choice(self, key: str, target: ChoiceTarget) -> None:
        self.memory.set_choice(key, target)

    def get_choice(self, key: str) -> Optional[ChoiceTarget]:
        return self.memory.get_choice(key)

    def clear_choices(self) -> None:
        self.memory.clear()

    # Reporting

    def health(self) -> List[FolderHealth]:
        return [
            FolderHealth(
                folder_id=s.folder_id,
                mode=s.config.discovery_mode,
                stale=s.stale,
                last_build_ms=s.last_build_ms,
                steps=len(s.index.steps) if s.index else 0,
                source=s.last_source,
                error=s.last_error,
            )
            for s in self._folders.values()
        ]

    async def close(self) -> None:
        self.scheduler.close()
        await self.scheduler.drain()


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True
