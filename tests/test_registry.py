from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeCodeGen, FakeVerifier, make_project

from jett_build.models import Project
from jett_build.orchestrator import ModuleOrchestrator
from jett_build.registry import OrchestratorRegistry
from jett_build.settings import RuntimeSettings


def _orchestrator(project: Project, root: Path, settings: RuntimeSettings) -> ModuleOrchestrator:
    root.mkdir(parents=True, exist_ok=True)
    return ModuleOrchestrator(project, root, codegen=FakeCodeGen(), verifier=FakeVerifier(), settings=settings)


def test_each_project_gets_its_own_orchestrator(tmp_path: Path, settings: RuntimeSettings) -> None:
    registry = OrchestratorRegistry()
    first = make_project("Core Setup")
    second = make_project("Core Setup").model_copy(update={"id": "proj-2"}, deep=True)

    a = registry.register(_orchestrator(first, tmp_path / "a", settings))
    b = registry.get_or_create("proj-2", lambda: _orchestrator(second, tmp_path / "b", settings))

    assert registry.get("proj-1") is a
    assert registry.get_or_create("proj-2", lambda: pytest.fail("factory must not run twice")) is b
    assert registry.project_ids() == ["proj-1", "proj-2"]

    a.build_module("mod-0")
    assert a.project.get_module("mod-0").status.value == "complete"
    assert b.project.get_module("mod-0").status.value == "draft"
    assert (tmp_path / "a/.jett/history").is_dir()
    assert not (tmp_path / "b/.jett").exists()


def test_register_duplicate_and_unknown_lookups(tmp_path: Path, settings: RuntimeSettings) -> None:
    registry = OrchestratorRegistry()
    registry.register(_orchestrator(make_project("Core Setup"), tmp_path / "a", settings))

    with pytest.raises(ValueError):
        registry.register(_orchestrator(make_project("Core Setup"), tmp_path / "b", settings))
    with pytest.raises(KeyError):
        registry.get("proj-9")


def test_close_forgets_project(tmp_path: Path, settings: RuntimeSettings) -> None:
    registry = OrchestratorRegistry()
    registry.register(_orchestrator(make_project("Core Setup"), tmp_path / "a", settings))

    assert registry.close("proj-1")
    assert "proj-1" not in registry
    assert not registry.close("proj-1")
    assert len(registry) == 0
