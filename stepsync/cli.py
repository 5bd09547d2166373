from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import AppConfig, load_config
from .engine import ResolutionEngine
from .errors import RuntimeListError
from .indexing.acquisition import StepIndexAcquirer
from .indexing.trust import TrustStore
from .parsing.rust_steps import extract_step_index_json


app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load_config(mode: Optional[str], match_mode: Optional[str] = None) -> AppConfig:
    load_dotenv(override=False)
    overrides = {}
    if mode:
        overrides["discovery_mode"] = mode
    if match_mode:
        overrides["match_mode"] = match_mode
    try:
        return load_config(overrides)
    except ValidationError as e:
        raise typer.BadParameter(str(e)) from e


def _confirm_command(folder: str, command: str) -> bool:
    return typer.confirm(f"Allow {folder} to run the step listing command `{command}`?", default=False)


def _report_error(error: RuntimeListError) -> None:
    console.print(f"[red]Step index not updated[/red] {error}")


def _engine(cfg: AppConfig, roots: List[Path]) -> ResolutionEngine:
    acquirer = StepIndexAcquirer(trust_store=TrustStore(cfg.trust_store_path, confirm=_confirm_command))
    engine = ResolutionEngine(cfg, acquirer=acquirer, on_error=_report_error)
    for root in roots:
        if not root.exists():
            raise typer.BadParameter(f"Path not found: {root}")
        engine.add_folder(root)
    return engine


def _feature_files(paths: List[Path]) -> List[Path]:
    found: List[Path] = []
    for p in paths:
        if p.is_dir():
            found.extend(sorted(p.rglob("*.feature")))
        elif p.exists():
            found.append(p)
        else:
            raise typer.BadParameter(f"Path not found: {p}")
    return found


@app.command()
def index(
    path: str = typer.Argument(".", help="Workspace folder holding the step definitions"),
    mode: Optional[str] = typer.Option(None, help="Discovery mode: auto, static-scan, artifact or runtime-list"),
    out: Optional[str] = typer.Option(None, help="Write the index as a JSON artifact to this file"),
):
    """Build the step index for a folder and summarize it."""
    cfg = _load_config(mode)
    root = Path(path).resolve()
    engine = _engine(cfg, [root])
    state = engine.folders()[0]
    asyncio.run(engine.rebuild(state.folder_id))

    if state.index is None:
        note = " (artifact stale or missing)" if state.stale else ""
        console.print(f"[yellow]No step index for[/yellow] {root}{note}")
        raise typer.Exit(code=1)

    stats = state.index.stats
    table = Table(title=f"Step index ({state.last_source})")
    table.add_column("Kind")
    table.add_column("Count", justify="right")
    for kind, count in stats.by_kind.items():
        table.add_row(kind, str(count))
    table.add_row("[bold]Total[/bold]", str(len(state.index.steps)))
    table.add_row("Ambiguous", str(stats.ambiguous))
    console.print(table)

    if out:
        out_path = Path(out).resolve()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(state.index.model_dump_json(indent=2, exclude_none=True), encoding="utf-8")
        console.print(f"[green]Wrote[/green] {out_path}")


@app.command()
def check(
    features: List[str] = typer.Argument(..., help="Feature files or directories to check"),
    root: str = typer.Option(".", help="Workspace folder holding the step definitions"),
    mode: Optional[str] = typer.Option(None, help="Discovery mode override"),
    match_mode: Optional[str] = typer.Option(None, help="Regex match mode: anchored, smart or substring"),
    strict: bool = typer.Option(False, help="Exit non-zero when any step is undefined or ambiguous"),
):
    """Report undefined and ambiguous steps in feature files."""
    cfg = _load_config(mode, match_mode)
    engine = _engine(cfg, [Path(root).resolve()])
    asyncio.run(engine.rebuild_all())

    total = 0
    table = Table(title="Step diagnostics")
    table.add_column("Location")
    table.add_column("Message")
    table.add_column("Step")
    for feature in _feature_files([Path(f) for f in features]):
        text = feature.read_text(encoding="utf-8")
        lines = text.splitlines()
        for d in engine.open_document(feature, text):
            total += 1
            step_text = lines[d.line].strip() if d.line < len(lines) else ""
            table.add_row(f"{feature}:{d.line + 1}", f"[yellow]{d.message}[/yellow]", step_text)

    if total:
        console.print(table)
    console.print(f"[bold]{total}[/bold] warning(s)")
    if strict and total:
        raise typer.Exit(code=1)


@app.command()
def definition(
    feature: str = typer.Argument(..., help="Feature file"),
    line: int = typer.Argument(..., help="1-based line number of the step"),
    root: str = typer.Option(".", help="Workspace folder holding the step definitions"),
    mode: Optional[str] = typer.Option(None, help="Discovery mode override"),
):
    """Show where the step on a line is defined."""
    cfg = _load_config(mode)
    engine = _engine(cfg, [Path(root).resolve()])
    asyncio.run(engine.rebuild_all())

    lookup = engine.definitions(Path(feature), line - 1)
    if lookup is None:
        console.print("[yellow]No step on that line, or no index for its folder[/yellow]")
        raise typer.Exit(code=1)
    if not lookup.candidates:
        console.print(f"[yellow]Undefined step[/yellow] {lookup.step.kind} {lookup.step.body}")
        raise typer.Exit(code=1)

    for n, target in enumerate(lookup.targets, start=1):
        console.print(f"{n}. {target.file}:{target.line}  [dim]{target.kind} /{target.regex}/[/dim]")
    info = engine.hover(Path(feature), line - 1)
    if info and info.captures:
        console.print("Captures: " + ", ".join(f"${i}={c!r}" for i, c in enumerate(info.captures, start=1)))


@app.command()
def health(
    paths: List[str] = typer.Argument(None, help="Workspace folders"),
    mode: Optional[str] = typer.Option(None, help="Discovery mode override"),
):
    """Rebuild each folder and print a health report."""
    cfg = _load_config(mode)
    engine = _engine(cfg, [Path(p).resolve() for p in (paths or ["."])])
    asyncio.run(engine.rebuild_all())

    table = Table(title="Health Report")
    table.add_column("Folder")
    table.add_column("Mode")
    table.add_column("Last build")
    table.add_column("Steps", justify="right")
    for h in engine.health():
        mode_label = h.mode + (" [yellow](stale artifact)[/yellow]" if h.stale else "")
        build = f"{h.last_build_ms}ms" if h.last_build_ms is not None else "n/a"
        table.add_row(h.folder_id, mode_label, build, str(h.steps))
    console.print(table)


@app.command()
def watch(
    paths: List[str] = typer.Argument(None, help="Workspace folders to watch"),
    features: Optional[str] = typer.Option(None, help="Feature directory to keep diagnostics for"),
):
    """Rebuild indexes as step sources change and re-check open feature files."""
    from .watch import FolderWatcher

    cfg = _load_config(None)
    roots = [Path(p).resolve() for p in (paths or ["."])]
    engine = _engine(cfg, roots)
    feature_files = _feature_files([Path(features)]) if features else _feature_files(roots)

    async def _run() -> None:
        await engine.rebuild_all()
        for f in feature_files:
            engine.open_document(f, f.read_text(encoding="utf-8"))
        _print_summary(engine)
        watcher = FolderWatcher(engine, asyncio.get_running_loop())
        watcher.start()
        console.print(f"[bold]Watching[/bold] {len(roots)} folder(s); Ctrl-C to stop")
        try:
            last = None
            while True:
                await asyncio.sleep(0.25)
                snapshot = {d: engine.diagnostics.get(d) for d in engine.diagnostics.documents()}
                if snapshot != last and last is not None:
                    _print_summary(engine)
                last = snapshot
        finally:
            watcher.stop()
            await engine.close()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("Stopped")


def _print_summary(engine: ResolutionEngine) -> None:
    count = sum(len(engine.diagnostics.get(d)) for d in engine.diagnostics.documents())
    console.print(f"[dim]{len(engine.diagnostics.documents())} document(s), {count} warning(s)[/dim]")


@app.command()
def extract():
    """Read {"files": [{"path", "text"}]} from stdin and print the extracted StepIndex JSON."""
    sys.stdout.write(extract_step_index_json(sys.stdin.read()) + "\n")


if __name__ == "__main__":  # pragma: no cover
    app()
