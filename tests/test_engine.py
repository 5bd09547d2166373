"""Tests for the multi-folder resolution engine."""

import asyncio
from pathlib import Path

import pytest

from stepsync.config import AppConfig
from stepsync.diagnostics import UNDEFINED
from stepsync.engine import ResolutionEngine
from stepsync.errors import RuntimeListError
from stepsync.indexing.acquisition import AcquisitionResult, StepIndexAcquirer
from stepsync.indexing.trust import TrustStore
from stepsync.models import ChoiceTarget, StepEntry, StepIndex


FEATURE = "Feature: f\n  Scenario: s\n    Given I have 5 cukes\n    When I dance\n"


def _index(*regexes: str) -> StepIndex:
    return StepIndex(steps=[StepEntry(kind="Given", regex=r, file="src/steps.rs", line=i + 1) for i, r in enumerate(regexes)])


class ScriptedAcquirer(StepIndexAcquirer):
    """Hands out prepared results, optionally waiting on a gate first."""

    def __init__(self, results: list):
        super().__init__()
        self.results = list(results)
        self.gates: dict[int, asyncio.Event] = {}
        self.calls = 0

    async def acquire(self, root, config):
        call = self.calls
        self.calls += 1
        gate = self.gates.get(call)
        if gate is not None:
            await gate.wait()
        result = self.results[call]
        if isinstance(result, Exception):
            raise result
        return result


class TestFolders:
    def test_deepest_root_owns_a_file(self, config: AppConfig, tmp_path: Path) -> None:
        engine = ResolutionEngine(config)
        outer = engine.add_folder(tmp_path)
        inner = engine.add_folder(tmp_path / "crates" / "a")
        assert engine.folder_for(tmp_path / "crates" / "a" / "x.feature") is inner
        assert engine.folder_for(tmp_path / "features" / "x.feature") is outer
        assert engine.folder_for(tmp_path.parent / "elsewhere.feature") is None

    def test_folder_override_file_applies(self, config: AppConfig, tmp_path: Path) -> None:
        (tmp_path / ".stepsync.json").write_text('{"match_mode": "substring"}', encoding="utf-8")
        state = ResolutionEngine(config).add_folder(tmp_path)
        assert state.config.match_mode == "substring"

    @pytest.mark.asyncio
    async def test_static_scan_end_to_end(self, config: AppConfig, workspace: Path) -> None:
        engine = ResolutionEngine(config)
        state = engine.add_folder(workspace, folder_id="ws")
        assert await engine.rebuild("ws") is True
        assert state.last_source == "static-scan"
        assert len(engine.get_index("ws").steps) == 3

        feature = workspace / "features" / "cukes.feature"
        feature.parent.mkdir()
        diags = engine.open_document(feature, FEATURE)
        assert [(d.line, d.message) for d in diags] == [(3, UNDEFINED)]
        assert engine.diagnostics.get(str(feature.resolve())) == diags

        engine.close_document(feature)
        assert engine.diagnostics.documents() == []

    def test_documents_without_index_get_no_diagnostics(self, config: AppConfig, tmp_path: Path) -> None:
        engine = ResolutionEngine(config)
        engine.add_folder(tmp_path)
        assert engine.open_document(tmp_path / "a.feature", FEATURE) == []
        assert engine.open_document(tmp_path.parent / "outside.feature", FEATURE) == []

    def test_losing_the_index_retracts_published_diagnostics(self, config: AppConfig, tmp_path: Path) -> None:
        engine = ResolutionEngine(config)
        state = engine.add_folder(tmp_path, folder_id="ws")
        state.index = _index("^nothing$")
        doc = tmp_path / "a.feature"
        assert engine.open_document(doc, FEATURE)
        state.index = None
        engine.refresh_folder("ws")
        assert engine.diagnostics.get(str(doc.resolve())) == []
        assert engine.diagnostics.documents() == []

    def test_remove_folder_retracts_its_diagnostics(self, config: AppConfig, tmp_path: Path) -> None:
        acquirer = ScriptedAcquirer([])
        engine = ResolutionEngine(config, acquirer=acquirer)
        state = engine.add_folder(tmp_path, folder_id="ws")
        state.index = _index("^nothing$")
        engine.open_document(tmp_path / "a.feature", FEATURE)
        assert engine.diagnostics.documents()
        engine.remove_folder("ws")
        assert engine.diagnostics.documents() == []
        assert engine.get_index("ws") is None


class TestRebuild:
    @pytest.mark.asyncio
    async def test_new_index_refreshes_open_documents(self, config: AppConfig, tmp_path: Path) -> None:
        with_dance = _index(r"^I have (\d+) cukes$")
        with_dance.steps.append(StepEntry(kind="When", regex="^I dance$", file="b.rs", line=1))
        acquirer = ScriptedAcquirer(
            [
                AcquisitionResult(source="static-scan", index=_index(r"^I have (\d+) cukes$")),
                AcquisitionResult(source="static-scan", index=with_dance),
            ]
        )
        engine = ResolutionEngine(config, acquirer=acquirer)
        engine.add_folder(tmp_path, folder_id="ws")
        await engine.rebuild("ws")
        doc = tmp_path / "a.feature"
        # the first index has no When definitions
        assert len(engine.open_document(doc, FEATURE)) == 1
        await engine.rebuild_and_refresh("ws")
        assert engine.diagnostics.get(str(doc.resolve())) == []
        assert len(engine.get_index("ws").steps) == 2

    @pytest.mark.asyncio
    async def test_runtime_list_failure_keeps_previous_index(self, config: AppConfig, tmp_path: Path) -> None:
        errors: list[RuntimeListError] = []
        first = _index("^a$")
        acquirer = ScriptedAcquirer(
            [
                AcquisitionResult(source="runtime-list", index=first),
                RuntimeListError("exited with 2", folder=str(tmp_path), exit_code=2),
            ]
        )
        engine = ResolutionEngine(config, acquirer=acquirer, on_error=errors.append)
        state = engine.add_folder(tmp_path, folder_id="ws")
        assert await engine.rebuild("ws") is True
        assert await engine.rebuild("ws") is False
        assert engine.get_index("ws") is first
        assert state.last_error == "exited with 2"
        assert [e.exit_code for e in errors] == [2]

    @pytest.mark.asyncio
    async def test_stale_artifact_sets_flag_and_keeps_index(self, config: AppConfig, tmp_path: Path) -> None:
        first = _index("^a$")
        acquirer = ScriptedAcquirer(
            [AcquisitionResult(source="artifact", index=first), AcquisitionResult(source="none", stale=True)]
        )
        engine = ResolutionEngine(config, acquirer=acquirer)
        state = engine.add_folder(tmp_path, folder_id="ws")
        await engine.rebuild("ws")
        await engine.rebuild("ws")
        assert state.index is first
        assert state.stale is True
        assert engine.health()[0].stale is True

    @pytest.mark.asyncio
    async def test_superseded_rebuild_is_discarded(self, config: AppConfig, tmp_path: Path) -> None:
        old, new = _index("^old$"), _index("^new$")
        acquirer = ScriptedAcquirer(
            [AcquisitionResult(source="static-scan", index=old), AcquisitionResult(source="static-scan", index=new)]
        )
        gate = asyncio.Event()
        acquirer.gates[0] = gate
        engine = ResolutionEngine(config, acquirer=acquirer)
        engine.add_folder(tmp_path, folder_id="ws")

        slow = asyncio.create_task(engine.rebuild("ws"))
        await asyncio.sleep(0)
        assert await engine.rebuild("ws") is True
        gate.set()
        assert await slow is False
        assert engine.get_index("ws") is new

    @pytest.mark.asyncio
    async def test_superseded_failure_is_not_reported(self, config: AppConfig, tmp_path: Path) -> None:
        errors: list[RuntimeListError] = []
        new = _index("^new$")
        acquirer = ScriptedAcquirer(
            [RuntimeListError("boom", folder=str(tmp_path)), AcquisitionResult(source="static-scan", index=new)]
        )
        gate = asyncio.Event()
        acquirer.gates[0] = gate
        engine = ResolutionEngine(config, acquirer=acquirer, on_error=errors.append)
        state = engine.add_folder(tmp_path, folder_id="ws")

        slow = asyncio.create_task(engine.rebuild("ws"))
        await asyncio.sleep(0)
        assert await engine.rebuild("ws") is True
        gate.set()
        assert await slow is False
        assert errors == []
        assert state.last_error is None
        assert engine.get_index("ws") is new

    @pytest.mark.asyncio
    async def test_unparseable_runtime_list_command_is_reported(self, config: AppConfig, tmp_path: Path) -> None:
        errors: list[RuntimeListError] = []
        cfg = config.model_copy(update={"discovery_mode": "runtime-list", "runtime_list_command": 'echo "oops'})
        acquirer = StepIndexAcquirer(trust_store=TrustStore(config.trust_store_path, confirm=lambda folder, cmd: True))
        engine = ResolutionEngine(cfg, acquirer=acquirer, on_error=errors.append)
        state = engine.add_folder(tmp_path, folder_id="ws", config=cfg)
        assert await engine.rebuild("ws") is False
        assert len(errors) == 1
        assert "Cannot parse" in state.last_error
        assert engine.get_index("ws") is None

    @pytest.mark.asyncio
    async def test_unknown_folder(self, config: AppConfig) -> None:
        assert await ResolutionEngine(config).rebuild("missing") is False

    @pytest.mark.asyncio
    async def test_choices_survive_rebuilds_by_default(self, config: AppConfig, tmp_path: Path) -> None:
        acquirer = ScriptedAcquirer([AcquisitionResult(source="static-scan", index=_index("^a$"))])
        engine = ResolutionEngine(config, acquirer=acquirer)
        engine.add_folder(tmp_path, folder_id="ws")
        engine.set_choice("Given|a", ChoiceTarget(file="gone.rs", line=1))
        await engine.rebuild("ws")
        assert engine.get_choice("Given|a") == ChoiceTarget(file="gone.rs", line=1)
        engine.clear_choices()
        assert engine.get_choice("Given|a") is None

    @pytest.mark.asyncio
    async def test_choices_can_be_invalidated_on_rebuild(self, config: AppConfig, tmp_path: Path) -> None:
        cfg = config.model_copy(update={"invalidate_choices_on_rebuild": True})
        acquirer = ScriptedAcquirer([AcquisitionResult(source="static-scan", index=_index("^a$"))])
        engine = ResolutionEngine(cfg, acquirer=acquirer)
        engine.add_folder(tmp_path, folder_id="ws", config=cfg)
        engine.set_choice("Given|a", ChoiceTarget(file="a.rs", line=1))
        await engine.rebuild("ws")
        assert engine.get_choice("Given|a") is None

    @pytest.mark.asyncio
    async def test_change_notifications_are_debounced(self, config: AppConfig, tmp_path: Path) -> None:
        acquirer = ScriptedAcquirer([AcquisitionResult(source="static-scan", index=_index("^a$"))])
        engine = ResolutionEngine(config, acquirer=acquirer)
        engine.add_folder(tmp_path, folder_id="ws")
        for _ in range(4):
            engine.notify_change("ws")
        engine.notify_change("not-a-folder")
        await asyncio.sleep(config.debounce_ms / 1000 * 4)
        await engine.close()
        assert acquirer.calls == 1
        assert engine.get_index("ws") is not None


class TestNavigationThroughEngine:
    @pytest.mark.asyncio
    async def test_definition_hover_and_completion(self, config: AppConfig, workspace: Path) -> None:
        engine = ResolutionEngine(config)
        engine.add_folder(workspace)
        await engine.rebuild_all()
        feature = workspace / "cukes.feature"
        feature.write_text(FEATURE, encoding="utf-8")

        lookup = engine.definitions(feature, 2)
        assert [(t.file, t.line) for t in lookup.targets] == [("src/steps.rs", 3)]
        assert engine.hover(feature, 2).captures == ["5"]
        assert len(engine.completions(feature)) == 3

    @pytest.mark.asyncio
    async def test_choose_definition_is_remembered(self, config: AppConfig, tmp_path: Path) -> None:
        index = StepIndex(
            steps=[
                StepEntry(kind="Given", regex=r"^I have (\d+) cukes$", file="a.rs", line=1),
                StepEntry(kind="Given", regex=r"^I have (.+) cukes$", file="b.rs", line=2),
            ]
        )
        engine = ResolutionEngine(config, acquirer=ScriptedAcquirer([AcquisitionResult(source="artifact", index=index)]))
        engine.add_folder(tmp_path)
        await engine.rebuild_all()
        doc = tmp_path / "a.feature"
        engine.open_document(doc, FEATURE)

        lookup = engine.definitions(doc, 2)
        assert lookup.needs_choice
        engine.choose_definition(lookup, lookup.candidates[0])
        assert engine.definitions(doc, 2).targets[0].file == "a.rs"

    def test_health_report(self, config: AppConfig, tmp_path: Path) -> None:
        engine = ResolutionEngine(config)
        engine.add_folder(tmp_path, folder_id="ws")
        [report] = engine.health()
        assert report.folder_id == "ws"
        assert report.mode == "auto"
        assert report.steps == 0
        assert report.last_build_ms is None
