from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeCodeGen, FakeEvidence, FakeVerifier, make_project

from jett_build.build_log import BuildLog
from jett_build.engine import TaskExecutionEngine
from jett_build.models import FileWrite, GeneratedFiles, GenerationError, TaskStatus, Verdict
from jett_build.workspace import ProjectWorkspace


def _engine(
    project_dir: Path,
    codegen: FakeCodeGen,
    verifier: FakeVerifier,
    **kwargs: object,
) -> TaskExecutionEngine:
    return TaskExecutionEngine(
        codegen=codegen,
        verifier=verifier,
        workspace=ProjectWorkspace(project_dir),
        build_log=BuildLog(),
        settle_delay_s=0,
        **kwargs,
    )


def test_working_verdict_succeeds_on_first_attempt(project_dir: Path) -> None:
    project = make_project("Core Setup", tasks={"mod-0": ["Create layout"]})
    module = project.get_module("mod-0")
    engine = _engine(project_dir, FakeCodeGen(), FakeVerifier())

    outcome = engine.execute(module, 0, project=project)

    assert outcome.status == TaskStatus.WORKING
    assert outcome.attempts == 1
    assert module.tasks[0].status == TaskStatus.WORKING
    assert module.files == ["src/create-layout.tsx"]
    assert (project_dir / "src/create-layout.tsx").read_text(encoding="utf-8") == "// Create layout\n"


def test_inconclusive_verdict_counts_as_working_when_files_written(project_dir: Path) -> None:
    project = make_project("Core Setup", tasks={"mod-0": ["Create layout"]})
    module = project.get_module("mod-0")
    engine = _engine(project_dir, FakeCodeGen(), FakeVerifier(default=Verdict.INCONCLUSIVE))

    outcome = engine.execute(module, 0)

    assert outcome.succeeded
    assert outcome.verdict == Verdict.INCONCLUSIVE
    assert engine.build_log.events("verification_inconclusive")


def test_verifier_exception_is_treated_as_inconclusive(project_dir: Path) -> None:
    project = make_project("Core Setup", tasks={"mod-0": ["Create layout"]})
    module = project.get_module("mod-0")
    engine = _engine(project_dir, FakeCodeGen(), FakeVerifier([RuntimeError("vision model offline")]))

    outcome = engine.execute(module, 0)

    assert outcome.status == TaskStatus.WORKING
    assert outcome.attempts == 1


def test_broken_verdict_retries_until_working(project_dir: Path) -> None:
    project = make_project("Core Setup", tasks={"mod-0": ["Create layout"]})
    module = project.get_module("mod-0")
    verifier = FakeVerifier([Verdict.BROKEN, Verdict.BROKEN, Verdict.WORKING])
    engine = _engine(project_dir, FakeCodeGen(), verifier)

    outcome = engine.execute(module, 0, max_attempts=3)

    assert outcome.status == TaskStatus.WORKING
    assert outcome.attempts == 3
    assert len(verifier.calls) == 3
    assert len(engine.build_log.events("task_attempt_failed")) == 2


def test_attempts_never_exceed_bound(project_dir: Path) -> None:
    project = make_project("Core Setup", tasks={"mod-0": ["Create layout"]})
    module = project.get_module("mod-0")
    codegen = FakeCodeGen()
    engine = _engine(project_dir, codegen, FakeVerifier(default=Verdict.BROKEN))

    outcome = engine.execute(module, 0, max_attempts=3)

    assert outcome.status == TaskStatus.FAILED
    assert outcome.attempts == 3
    assert module.tasks[0].attempts == 3
    assert len(codegen.calls) == 3
    assert outcome.error == "verification reported BROKEN"
    [entry] = engine.build_log.events("task_outcome")
    assert entry.level == "error"


@pytest.mark.parametrize(
    "result",
    [
        GeneratedFiles(files=()),
        GenerationError(reason="no file blocks in response"),
        RuntimeError("rate limited"),
    ],
)
def test_generation_failures_count_against_attempts(project_dir: Path, result: object) -> None:
    project = make_project("Core Setup", tasks={"mod-0": ["Create layout"]})
    module = project.get_module("mod-0")
    verifier = FakeVerifier()
    engine = _engine(project_dir, FakeCodeGen(script=[result, result]), verifier)

    outcome = engine.execute(module, 0, max_attempts=2)

    assert outcome.status == TaskStatus.FAILED
    assert outcome.attempts == 2
    assert verifier.calls == []
    assert module.files == []


def test_write_failure_aborts_attempt_and_next_attempt_recovers(project_dir: Path) -> None:
    project = make_project("Core Setup", tasks={"mod-0": ["Create layout"]})
    module = project.get_module("mod-0")
    unsafe = GeneratedFiles(
        files=(
            FileWrite(path="src/ok.ts", content="export {}"),
            FileWrite(path="node_modules/evil.js", content="x"),
        )
    )
    verifier = FakeVerifier()
    engine = _engine(project_dir, FakeCodeGen(script=[unsafe]), verifier)

    outcome = engine.execute(module, 0, max_attempts=3)

    assert outcome.status == TaskStatus.WORKING
    assert outcome.attempts == 2
    assert len(verifier.calls) == 1
    # Partial writes from the failed attempt stay on disk.
    assert (project_dir / "src/ok.ts").is_file()
    assert not (project_dir / "node_modules").exists()
    assert module.files == ["src/ok.ts", "src/create-layout.tsx"]
    assert outcome.files_written == ["src/ok.ts", "src/create-layout.tsx"]


def test_settle_delay_and_evidence_precede_verification(project_dir: Path) -> None:
    project = make_project("Core Setup", tasks={"mod-0": ["Create layout"]})
    module = project.get_module("mod-0")
    waits: list[float] = []
    evidence = FakeEvidence()
    verifier = FakeVerifier()
    engine = TaskExecutionEngine(
        codegen=FakeCodeGen(),
        verifier=verifier,
        workspace=ProjectWorkspace(project_dir),
        build_log=BuildLog(),
        evidence=evidence,
        settle_delay_s=1.5,
        sleep=waits.append,
    )

    engine.execute(module, 0)

    assert waits == [1.5]
    assert evidence.captures == 1
    assert verifier.calls == [("Create layout", ["src/create-layout.tsx"], "aW1hZ2U=")]


def test_rerun_starts_from_fresh_attempt_counter(project_dir: Path) -> None:
    project = make_project("Core Setup", tasks={"mod-0": ["Create layout"]})
    module = project.get_module("mod-0")
    engine = _engine(project_dir, FakeCodeGen(), FakeVerifier([Verdict.BROKEN, Verdict.BROKEN]))

    first = engine.execute(module, 0, max_attempts=2)
    second = engine.execute(module, 0, max_attempts=2)

    assert first.status == TaskStatus.FAILED
    assert second.status == TaskStatus.WORKING
    assert second.attempts == 1


def test_current_task_index_is_visible_during_execution(project_dir: Path) -> None:
    project = make_project("Core Setup", tasks={"mod-0": ["Create layout", "Add navigation"]})
    module = project.get_module("mod-0")
    codegen = FakeCodeGen()
    engine = _engine(project_dir, codegen, FakeVerifier())
    seen: list[int | None] = []
    codegen.on_generate = lambda _instruction: seen.append(engine.current_task_index)

    engine.execute(module, 1)

    assert seen == [1]
    assert engine.current_task_index is None


def test_out_of_range_index_raises(project_dir: Path) -> None:
    project = make_project("Core Setup", tasks={"mod-0": ["Create layout"]})
    engine = _engine(project_dir, FakeCodeGen(), FakeVerifier())
    with pytest.raises(IndexError):
        engine.execute(project.get_module("mod-0"), 1)
