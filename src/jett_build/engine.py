from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from .build_log import BuildLog
from .models import (
    GenerationError,
    Module,
    Project,
    TaskOutcome,
    TaskStatus,
    Verdict,
)
from .planning import module_context
from .ports import CodeGenPort, EvidenceSource, VerificationPort
from .retry import BoundedRetry, RetryDecision
from .workspace import ProjectWorkspace

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class AttemptResult:
    files_written: list[str] = field(default_factory=list)
    verdict: Verdict | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and bool(self.files_written) and self.verdict != Verdict.BROKEN


class TaskExecutionEngine:
    """Drive one task through generate -> write -> settle -> verify with bounded retries.

    The engine never rolls back files written by a failed attempt; a later
    attempt may overwrite them and whole-tree rollback belongs to the
    snapshot store. ``current_task_index`` is set while a task runs so a UI
    can render progress.
    """

    def __init__(
        self,
        *,
        codegen: CodeGenPort,
        verifier: VerificationPort,
        workspace: ProjectWorkspace,
        build_log: BuildLog,
        evidence: EvidenceSource | None = None,
        settle_delay_s: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self.codegen = codegen
        self.verifier = verifier
        self.workspace = workspace
        self.build_log = build_log
        self.evidence = evidence
        self.settle_delay_s = settle_delay_s
        self._sleep = sleep
        self._on_change = on_change
        self.current_task_index: int | None = None

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def execute(
        self,
        module: Module,
        task_index: int,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        *,
        project: Project | None = None,
    ) -> TaskOutcome:
        """Run ``module.tasks[task_index]`` to exactly one terminal outcome.

        The attempt counter starts from zero on every call, so a rebuild is a
        full redo of the task rather than a resume.

        Raises:
            IndexError: If ``task_index`` is out of range.
            ValueError: If ``max_attempts`` is not positive.
        """
        if not 0 <= task_index < len(module.tasks):
            raise IndexError(f"task index {task_index} out of range for module {module.id}")
        retry = BoundedRetry(max_attempts)
        task = module.tasks[task_index]
        task.reset()
        all_written: dict[str, None] = {}

        def action(attempt: int) -> AttemptResult:
            task.begin_attempt()
            self._notify()
            if attempt > 1:
                self.build_log.info(
                    "task_retry",
                    f"retry attempt {attempt}/{max_attempts}",
                    module_id=module.id,
                    task_id=task.id,
                )
            result = self.run_once(module, task.description, project=project, task_id=task.id)
            all_written.update(dict.fromkeys(result.files_written))
            return result

        def between(attempt: int, result: AttemptResult) -> None:
            self.build_log.warning(
                "task_attempt_failed",
                f"attempt {attempt} failed ({result.error}), retrying",
                module_id=module.id,
                task_id=task.id,
            )

        self.current_task_index = task_index
        self.build_log.info("task_started", f"executing: {task.description}", module_id=module.id, task_id=task.id)
        try:
            outcome = retry.run(
                action,
                lambda result: RetryDecision.SUCCEED if result.succeeded else RetryDecision.RETRY,
                between=between,
            )
        finally:
            self.current_task_index = None
            if task.status == TaskStatus.EXECUTING:
                # Only reached when an attempt raised; never leave the task executing.
                task.status = TaskStatus.FAILED
                self._notify()

        task.status = TaskStatus.WORKING if outcome.succeeded else TaskStatus.FAILED
        self._notify()
        result = TaskOutcome(
            module_id=module.id,
            task_id=task.id,
            task_index=task_index,
            status=task.status,
            attempts=task.attempts,
            files_written=list(all_written),
            verdict=outcome.last_result.verdict,
            error=None if outcome.succeeded else outcome.last_result.error,
        )
        self.build_log.record_outcome(result)
        return result

    def run_once(
        self,
        module: Module,
        instruction: str,
        *,
        project: Project | None = None,
        task_id: str | None = None,
    ) -> AttemptResult:
        """One generate -> write -> settle -> verify pass with no retry and no task bookkeeping."""
        context = module_context(project, module)
        try:
            generated = self.codegen.generate(instruction, context)
        except Exception as exc:  # noqa: BLE001
            return AttemptResult(error=f"generation failed: {exc}")
        if isinstance(generated, GenerationError):
            return AttemptResult(error=f"generation failed: {generated.reason}")
        if not generated.files:
            return AttemptResult(error="no files produced")

        written: list[str] = []
        try:
            for item in generated.files:
                path = self.workspace.write_file(item)
                written.append(path)
                self.build_log.info("file_written", f"created: {path}", module_id=module.id, task_id=task_id)
        except (OSError, ValueError) as exc:
            return AttemptResult(files_written=written, error=f"file write failed: {exc}")
        finally:
            module.add_files(written)
            self._notify()

        # Verification against a stale preview is a false negative.
        if self.settle_delay_s > 0:
            self._sleep(self.settle_delay_s)

        evidence = self._capture_evidence()
        try:
            verdict = self.verifier.verify(instruction, written, evidence)
        except Exception as exc:  # noqa: BLE001
            logger.warning("verification failed for %s: %s", task_id or module.id, exc)
            verdict = Verdict.INCONCLUSIVE

        if verdict == Verdict.BROKEN:
            return AttemptResult(files_written=written, verdict=verdict, error="verification reported BROKEN")
        if verdict == Verdict.INCONCLUSIVE:
            self.build_log.warning(
                "verification_inconclusive",
                "no clear verification answer; files were written, treating it as working",
                module_id=module.id,
                task_id=task_id,
            )
        return AttemptResult(files_written=written, verdict=verdict)

    def _capture_evidence(self) -> str | None:
        if self.evidence is None:
            return None
        try:
            return self.evidence.capture()
        except Exception as exc:  # noqa: BLE001
            logger.warning("could not capture preview evidence: %s", exc)
            return None
