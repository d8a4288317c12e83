from __future__ import annotations

import json
from pathlib import Path

import pytest

from jett_build.__main__ import load_features, main, parse_feature
from jett_build.models import ModuleStatus, TaskStatus
from jett_build.planning import make_tasks
from jett_build.settings import RuntimeSettings
from jett_build.snapshots import SnapshotStore
from jett_build.state_store import ProjectStateStore


def _plan(project_dir: Path) -> None:
    code = main(
        [
            "--project-dir",
            str(project_dir),
            "plan",
            "--name",
            "Planner",
            "--project-id",
            "proj-cli",
            "--feature",
            "Calendar: Month view",
        ]
    )
    assert code == 0


def test_plan_writes_core_plus_feature_modules(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    project_dir = tmp_path / "app"

    _plan(project_dir)

    out = capsys.readouterr().out
    assert "project_id=proj-cli" in out
    assert "modules=2" in out
    project = ProjectStateStore(RuntimeSettings().state_path(project_dir)).load()
    assert [module.name for module in project.ordered_modules()] == ["Core Setup", "Calendar"]


def test_snapshots_and_rollback_commands(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    project_dir = tmp_path / "app"
    _plan(project_dir)
    state = ProjectStateStore(RuntimeSettings().state_path(project_dir))
    project = state.load()
    core = project.ordered_modules()[0]
    core.tasks = make_tasks(core.id, ["Scaffold app", "Add header"])
    for task in core.tasks:
        task.status = TaskStatus.WORKING
        task.attempts = 1
    core.status = ModuleStatus.COMPLETE
    state.save(project)

    store = SnapshotStore(RuntimeSettings().history_dir)
    (project_dir / "src").mkdir()
    (project_dir / "src/App.tsx").write_text("app", encoding="utf-8")
    assert store.create(project_dir, 1, "Scaffold app").success
    (project_dir / "src/Header.tsx").write_text("header", encoding="utf-8")
    assert store.create(project_dir, 2, "Add header").success
    capsys.readouterr()

    assert main(["--project-dir", str(project_dir), "snapshots"]) == 0
    assert "snapshots=2" in capsys.readouterr().out

    assert main(["--project-dir", str(project_dir), "snapshots", "--details", "task-1"]) == 0
    details = json.loads(capsys.readouterr().out)
    assert details["taskDescription"] == "Scaffold app"
    assert details["files"] == ["src/App.tsx"]

    assert main(["--project-dir", str(project_dir), "rollback", "--module", core.id, "--task", "1"]) == 0
    out = capsys.readouterr().out
    assert "success=True" in out
    assert "snapshots_deleted=1" in out
    assert not (project_dir / "src/Header.tsx").exists()

    rolled_back = state.load().get_module(core.id)
    assert [task.status for task in rolled_back.tasks] == [TaskStatus.WORKING, TaskStatus.PENDING]
    assert rolled_back.status == ModuleStatus.NEEDS_WORK


def test_rollback_rejects_out_of_range_task(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    project_dir = tmp_path / "app"
    _plan(project_dir)
    module_id = ProjectStateStore(RuntimeSettings().state_path(project_dir)).load().priority_stack[0]
    capsys.readouterr()

    assert main(["--project-dir", str(project_dir), "rollback", "--module", module_id, "--task", "1"]) == 1
    assert "success=False" in capsys.readouterr().out


def test_build_without_api_key_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    project_dir = tmp_path / "app"
    _plan(project_dir)

    assert main(["--project-dir", str(project_dir), "build"]) == 1


def test_feature_parsing(tmp_path: Path) -> None:
    assert parse_feature("Kanban: Drag and drop", 0).description == "Drag and drop"
    with pytest.raises(ValueError):
        parse_feature("  : no title", 1)

    features_file = tmp_path / "features.json"
    features_file.write_text(json.dumps([{"title": "Search", "description": "Full text"}]), encoding="utf-8")
    features = load_features(["Calendar"], features_file)
    assert [(feature.id, feature.title) for feature in features] == [("feature-0", "Calendar"), ("feature-1", "Search")]

    features_file.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError, match="JSON list"):
        load_features([], features_file)
