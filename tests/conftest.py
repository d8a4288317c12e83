from __future__ import annotations

import re
from pathlib import Path
from typing import Callable

import pytest

from jett_build.models import (
    FileWrite,
    GeneratedFiles,
    GenerationError,
    GenerationResult,
    Module,
    ModuleContext,
    ModuleStatus,
    Project,
    Suggestion,
    Verdict,
)
from jett_build.planning import make_tasks
from jett_build.ports import ProcessResult
from jett_build.settings import RuntimeSettings


def slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


class FakeCodeGen:
    """Writes one file per instruction unless a scripted result is queued."""

    def __init__(
        self,
        *,
        tasks: list[str] | Exception | None = None,
        script: list[GenerationResult | Exception] | None = None,
        fix_result: GenerationResult | None = None,
    ) -> None:
        self.tasks = tasks
        self.script = list(script or [])
        self.fix_result = fix_result
        self.calls: list[tuple[str, ModuleContext]] = []
        self.task_requests: list[ModuleContext] = []
        self.fix_prompts: list[str] = []
        self.on_generate: Callable[[str], None] | None = None

    def generate(self, instruction: str, context: ModuleContext) -> GenerationResult:
        self.calls.append((instruction, context))
        if self.on_generate is not None:
            self.on_generate(instruction)
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        body = FileWrite(path=f"src/{slug(instruction)}.tsx", content=f"// {instruction}\n")
        return GeneratedFiles(files=(body,))

    def generate_tasks(self, context: ModuleContext) -> list[str]:
        self.task_requests.append(context)
        if isinstance(self.tasks, Exception):
            raise self.tasks
        if self.tasks is None:
            return [f"Build {context.module_name} view", f"Wire {context.module_name} state"]
        return list(self.tasks)

    def fix(self, prompt: str, context: ModuleContext) -> GenerationResult:
        self.fix_prompts.append(prompt)
        if self.fix_result is not None:
            return self.fix_result
        return GenerationError(reason="no fix scripted")


class FakeVerifier:
    """Returns scripted verdicts in order, then ``default``."""

    def __init__(
        self,
        verdicts: list[Verdict | Exception] | None = None,
        *,
        default: Verdict = Verdict.WORKING,
        broken_when: str | None = None,
    ) -> None:
        self.verdicts = list(verdicts or [])
        self.default = default
        self.broken_when = broken_when
        self.calls: list[tuple[str, list[str], str | None]] = []

    def verify(self, instruction: str, files_written: list[str], evidence: str | None = None) -> Verdict:
        self.calls.append((instruction, list(files_written), evidence))
        if self.broken_when is not None and self.broken_when in instruction:
            return Verdict.BROKEN
        if self.verdicts:
            item = self.verdicts.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self.default


class FakeInstaller:
    def __init__(self, results: list[ProcessResult] | None = None) -> None:
        self.results = list(results or [])
        self.calls: list[Path] = []

    def install(self, project_dir: Path) -> ProcessResult:
        self.calls.append(project_dir)
        if self.results:
            return self.results.pop(0)
        return ProcessResult(success=True, output="added 120 packages")


class FakePreview:
    def __init__(self, result: ProcessResult | None = None) -> None:
        self.result = result or ProcessResult(success=True, url="http://localhost:5173/")
        self.starts = 0
        self.stops = 0

    def start(self, project_dir: Path) -> ProcessResult:
        self.starts += 1
        return self.result

    def stop(self) -> None:
        self.stops += 1


class FakeSuggester:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[str] = []

    def suggest(self, module: Module, context: ModuleContext) -> list[Suggestion]:
        self.calls.append(module.id)
        if self.error is not None:
            raise self.error
        return [
            Suggestion(id=f"{module.id}-suggestion-0", rank=1, title="Add empty state", severity="high"),
            Suggestion(id=f"{module.id}-suggestion-1", rank=2, title="Keyboard shortcuts", severity="low"),
        ]


class FakeEvidence:
    def __init__(self, frame: str | None = "aW1hZ2U=") -> None:
        self.frame = frame
        self.captures = 0

    def capture(self) -> str | None:
        self.captures += 1
        return self.frame


def make_project(*names: str, tasks: dict[str, list[str]] | None = None) -> Project:
    """Project whose first module is named ``names[0]``; ids are ``mod-<index>``."""
    modules: dict[str, Module] = {}
    for index, name in enumerate(names):
        module_id = f"mod-{index}"
        descriptions = (tasks or {}).get(module_id, [])
        modules[module_id] = Module(
            id=module_id,
            name=name,
            description=f"{name} feature",
            status=ModuleStatus.DRAFT,
            tasks=make_tasks(module_id, descriptions),
        )
    return Project(
        id="proj-1",
        name="Planner",
        description="A small planner",
        modules=modules,
        priority_stack=list(modules),
    )


@pytest.fixture
def settings() -> RuntimeSettings:
    return RuntimeSettings(settle_delay_ms=0)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    root = tmp_path / "app"
    root.mkdir()
    return root
