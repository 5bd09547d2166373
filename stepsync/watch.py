from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, List

from pathspec import PathSpec
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .engine import ResolutionEngine
from .parsing.discovery import BUILD_OUTPUT_GLOBS, is_source_path


logger = logging.getLogger(__name__)


class SourceChangeHandler(FileSystemEventHandler):
    """Forwards create/modify/delete/move events on step sources to the event loop."""

    def __init__(self, root: Path, ignore_globs: List[str], on_change: Callable[[], None]):
        super().__init__()
        self.root = root
        self.ignore_spec = PathSpec.from_lines("gitwildmatch", [*BUILD_OUTPUT_GLOBS, *ignore_globs])
        self.on_change = on_change

    def _relevant(self, raw_path) -> bool:
        path = Path(raw_path if isinstance(raw_path, str) else raw_path.decode())
        if not is_source_path(path):
            return False
        try:
            rel = path.resolve().relative_to(self.root)
        except ValueError:
            return False
        return not self.ignore_spec.match_file(rel.as_posix())

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in ("created", "modified", "deleted", "moved"):
            return
        paths = [event.src_path]
        if getattr(event, "dest_path", None):
            paths.append(event.dest_path)
        if any(self._relevant(p) for p in paths):
            logger.debug("Source change: %s %s", event.event_type, event.src_path)
            self.on_change()


class FolderWatcher:
    """One recursive watchdog observer per engine folder, feeding the rebuild scheduler."""

    def __init__(self, engine: ResolutionEngine, loop: asyncio.AbstractEventLoop):
        self.engine = engine
        self.loop = loop
        self.observer = Observer()

    def start(self) -> None:
        for state in self.engine.folders():
            folder_id = state.folder_id

            def forward(folder_id: str = folder_id) -> None:
                # watchdog calls us from its own thread
                self.loop.call_soon_threadsafe(self.engine.notify_change, folder_id)

            handler = SourceChangeHandler(state.root, state.config.ignore_globs, forward)
            self.observer.schedule(handler, str(state.root), recursive=True)
        self.observer.start()

    def stop(self) -> None:
        self.observer.stop()
        self.observer.join()
