from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Literal, TypedDict

from langgraph.errors import GraphRecursionError
from langgraph.graph import END, START, StateGraph
from langgraph.types import Command

from .agents import LLMCodeGenerator, LLMSuggestionAdvisor, LLMVerifier
from .build_log import BuildLog
from .dependencies import DependencySetup, DependencySetupResult
from .engine import TaskExecutionEngine
from .models import Module, ModuleStatus, Project, TaskStatus, Verdict
from .planning import default_task_descriptions, make_tasks, module_context
from .ports import (
    CodeGenPort,
    DependencyInstaller,
    EvidenceSource,
    PreviewServer,
    SuggestionPort,
    VerificationPort,
)
from .processes import DevServer, NpmInstaller
from .rollback import RollbackResult, rollback_module
from .settings import RuntimeSettings
from .snapshots import INITIAL_DESCRIPTION, SnapshotStore, snapshot_id_for
from .state_store import ProjectStateStore
from .workspace import ProjectWorkspace

logger = logging.getLogger(__name__)


class BuildState(TypedDict, total=False):
    module_id: str
    task_cursor: int
    next_module_id: str | None


@dataclass(frozen=True)
class BuildReport:
    accepted: bool
    module_id: str
    modules_built: list[str] = field(default_factory=list)
    statuses: dict[str, ModuleStatus] = field(default_factory=dict)
    reason: str | None = None


@dataclass(frozen=True)
class SuggestionBuildResult:
    success: bool
    suggestion_id: str
    files_written: list[str] = field(default_factory=list)
    verdict: Verdict | None = None
    error: str | None = None


class ModuleOrchestrator:
    """Build modules of one project in priority order.

    One instance per open project. Each module build is one LangGraph run
    over its tasks; a module that finishes ``complete`` hands over to the
    next ``draft`` module in ``priority_stack`` with a fresh run, and the
    whole auto-progressed chain holds the project's busy flag.
    Rollback, suggestion builds and reordering are refused while it is held.
    """

    def __init__(
        self,
        project: Project,
        project_dir: Path,
        *,
        codegen: CodeGenPort,
        verifier: VerificationPort,
        suggestions: SuggestionPort | None = None,
        installer: DependencyInstaller | None = None,
        preview: PreviewServer | None = None,
        evidence: EvidenceSource | None = None,
        settings: RuntimeSettings | None = None,
        state_store: ProjectStateStore | None = None,
        build_log: BuildLog | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.project = project
        self.project_dir = Path(project_dir)
        self.settings = (settings or RuntimeSettings()).normalized()
        self.codegen = codegen
        self.suggestions = suggestions
        self.preview = preview
        self.state_store = state_store
        self.build_log = build_log or BuildLog()
        self.workspace = ProjectWorkspace(self.project_dir)
        self.snapshots = SnapshotStore(self.settings.history_dir)
        self.engine = TaskExecutionEngine(
            codegen=codegen,
            verifier=verifier,
            workspace=self.workspace,
            build_log=self.build_log,
            evidence=evidence,
            settle_delay_s=self.settings.settle_delay_seconds,
            sleep=sleep,
            on_change=self._persist,
        )
        self.dependencies = (
            DependencySetup(
                installer=installer,
                preview=preview,
                codegen=codegen,
                workspace=self.workspace,
                build_log=self.build_log,
                fix_attempts=self.settings.dependency_fix_attempts,
                on_change=self._persist,
            )
            if installer is not None
            else None
        )
        self.last_dependency_result: DependencySetupResult | None = None

        self._lock = threading.Lock()
        self._busy: str | None = None
        self.building_module_id: str | None = None
        self._executor: ThreadPoolExecutor | None = None
        self.graph = self._build_graph().compile()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def project_id(self) -> str:
        return self.project.id

    @property
    def is_building(self) -> bool:
        with self._lock:
            return self._busy is not None

    @property
    def current_task_index(self) -> int | None:
        return self.engine.current_task_index

    def _persist(self) -> None:
        if self.state_store is None:
            return
        try:
            self.state_store.save(self.project)
        except OSError as exc:
            logger.warning("could not persist project %s: %s", self.project.id, exc)

    def _try_begin(self, activity: str) -> str | None:
        """Take the busy flag. Returns the reason on refusal, None when acquired."""
        with self._lock:
            if self._busy is not None:
                return f"project {self.project.id} is busy: {self._busy}"
            self._busy = activity
            return None

    def _end(self) -> None:
        with self._lock:
            self._busy = None
            self.building_module_id = None

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(BuildState)
        graph.add_node("prepare", self._prepare_node)
        graph.add_node("task_step", self._task_step_node)
        graph.add_node("task_route", self._task_route_node)
        graph.add_node("finalize", self._finalize_node)

        graph.add_edge(START, "prepare")
        graph.add_edge("prepare", "task_route")
        graph.add_edge("task_step", "task_route")
        graph.add_edge("finalize", END)
        return graph

    def _plan_tasks(self, module: Module) -> None:
        context = module_context(self.project, module)
        try:
            descriptions = [item.strip() for item in self.codegen.generate_tasks(context) if item.strip()]
        except Exception as exc:  # noqa: BLE001
            self.build_log.warning("task_planning_failed", f"task generation failed: {exc}", module_id=module.id)
            descriptions = []
        if not descriptions:
            descriptions = default_task_descriptions(module)
            self.build_log.info("task_planning_fallback", "using default task list", module_id=module.id)
        module.tasks = make_tasks(module.id, descriptions)
        self.build_log.info("tasks_planned", f"planned {len(module.tasks)} task(s)", module_id=module.id)

    def _ensure_initial_snapshot(self) -> None:
        if any(module.version > 0 for module in self.project.modules.values()):
            return
        if self.snapshots.details(self.project_dir, snapshot_id_for(0)).success:
            return
        result = self.snapshots.create_initial(self.project_dir)
        if result.success:
            self.build_log.info("snapshot_saved", INITIAL_DESCRIPTION)
        else:
            self.build_log.warning("snapshot_failed", f"initial snapshot failed: {result.error}")

    def _prepare_node(self, state: BuildState) -> dict[str, Any]:
        module = self.project.get_module(state["module_id"])
        self._ensure_initial_snapshot()
        for task in module.tasks:
            task.reset()
        module.status = ModuleStatus.BUILDING
        self._persist()
        return {"task_cursor": 0, "next_module_id": None}

    def _task_step_node(self, state: BuildState) -> dict[str, Any]:
        module = self.project.get_module(state["module_id"])
        cursor = int(state["task_cursor"])
        outcome = self.engine.execute(
            module,
            cursor,
            self.settings.max_task_attempts,
            project=self.project,
        )
        if outcome.succeeded:
            if cursor == 0 and self.project.is_first_in_stack(module.id):
                self._setup_dependencies(module)
            self._snapshot_task(module, cursor)
        self._persist()
        return {"task_cursor": cursor + 1}

    def _task_route_node(self, state: BuildState) -> Command[Literal["task_step", "finalize"]]:
        module = self.project.get_module(state["module_id"])
        if int(state.get("task_cursor", 0)) >= len(module.tasks):
            return Command(goto="finalize")
        return Command(goto="task_step")

    def _finalize_node(self, state: BuildState) -> dict[str, Any]:
        module = self.project.get_module(state["module_id"])
        status = module.settle_status()
        module.version += 1
        working = sum(1 for task in module.tasks if task.status == TaskStatus.WORKING)
        self.build_log.append(
            "module_build_finished",
            f"{module.name} is {status.value} ({working}/{len(module.tasks)} tasks working, v{module.version})",
            level="info" if status == ModuleStatus.COMPLETE else "warning",
            module_id=module.id,
        )
        self._persist()

        if status != ModuleStatus.COMPLETE:
            return {"next_module_id": None}

        self._attach_suggestions(module)
        following = self.project.next_in_stack(module.id)
        if following is None or following.status != ModuleStatus.DRAFT:
            return {"next_module_id": None}
        self.build_log.info("auto_progress", f"auto-starting next module: {following.name}", module_id=following.id)
        return {"next_module_id": following.id}

    # ------------------------------------------------------------------
    # Collaborator steps
    # ------------------------------------------------------------------

    def _setup_dependencies(self, module: Module) -> None:
        if self.dependencies is None:
            return
        self.last_dependency_result = self.dependencies.run(
            self.project_dir,
            module,
            module_context(self.project, module),
        )

    def _snapshot_task(self, module: Module, task_index: int) -> None:
        position = task_index + 1
        task = module.tasks[task_index]
        result = self.snapshots.create(self.project_dir, position, task.description)
        if result.success:
            self.build_log.info(
                "snapshot_saved",
                f"snapshot {result.snapshot_id} saved",
                module_id=module.id,
                task_id=task.id,
            )
        else:
            self.build_log.warning(
                "snapshot_failed",
                f"snapshot for task {position} failed: {result.error}",
                module_id=module.id,
                task_id=task.id,
            )

    def _attach_suggestions(self, module: Module) -> None:
        if self.suggestions is None or self.settings.suggestion_count == 0:
            return
        try:
            module.suggestions = self.suggestions.suggest(module, module_context(self.project, module))
        except Exception as exc:  # noqa: BLE001
            self.build_log.warning("suggestions_failed", f"could not generate suggestions: {exc}", module_id=module.id)
            return
        self.build_log.info("suggestions_ready", f"{len(module.suggestions)} suggestion(s)", module_id=module.id)
        self._persist()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def _statuses(self) -> dict[str, ModuleStatus]:
        return {module.id: module.status for module in self.project.ordered_modules()}

    def _step_limit(self, module: Module) -> int:
        # prepare, finalize, and one task_step plus task_route per task.
        return max(self.settings.recursion_limit, 2 * len(module.tasks) + 4)

    def _build_one(self, module: Module) -> str | None:
        """Run the graph over one module; returns the module to auto-progress to, if any."""
        self.building_module_id = module.id
        self.build_log.info("module_build_started", f"building {module.name} (v{module.version})", module_id=module.id)
        if not module.tasks:
            self._plan_tasks(module)
        result = self.graph.invoke(
            {"module_id": module.id},
            config={"recursion_limit": self._step_limit(module)},
        )
        return result.get("next_module_id")

    def _run_build(self, module_id: str) -> BuildReport:
        built: list[str] = []
        reason: str | None = None
        next_id: str | None = module_id
        try:
            while next_id is not None:
                module = self.project.get_module(next_id)
                built.append(module.id)
                next_id = self._build_one(module)
        except GraphRecursionError as exc:
            self.project.recover_interrupted()
            reason = f"build of {built[-1]} exceeded the graph step limit: {exc}"
            self.build_log.error("build_aborted", reason, module_id=built[-1])
        except Exception:
            logger.exception("build of %s failed", module_id)
            self.project.recover_interrupted()
            self.build_log.error("build_aborted", f"build of {module_id} aborted unexpectedly", module_id=module_id)
            raise
        finally:
            self._end()
            self._persist()
        return BuildReport(
            accepted=True,
            module_id=module_id,
            modules_built=built,
            statuses=self._statuses(),
            reason=reason,
        )

    def _admit(self, module_id: str) -> BuildReport | None:
        if module_id not in self.project.modules:
            return BuildReport(accepted=False, module_id=module_id, reason=f"unknown module: {module_id}")
        refusal = self._try_begin(f"building {module_id}")
        if refusal is not None:
            self.build_log.warning("build_rejected", refusal, module_id=module_id)
            return BuildReport(accepted=False, module_id=module_id, reason=refusal)
        return None

    def build_module(self, module_id: str) -> BuildReport:
        """Build ``module_id`` and any modules auto-progressed after it, synchronously.

        A request made while another build, rollback or suggestion build is
        running is rejected with ``accepted=False``; it is never queued.
        """
        rejected = self._admit(module_id)
        if rejected is not None:
            return rejected
        return self._run_build(module_id)

    def start_build(self, module_id: str) -> Future[BuildReport]:
        """Start ``build_module`` on this project's worker thread."""
        rejected = self._admit(module_id)
        if rejected is not None:
            future: Future[BuildReport] = Future()
            future.set_result(rejected)
            return future
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"jett-{self.project.id}")
        try:
            return self._executor.submit(self._run_build, module_id)
        except RuntimeError:
            self._end()
            raise

    def rollback(self, module_id: str, task_position: int) -> RollbackResult:
        """Restore the project tree to the snapshot taken after task ``task_position`` (1-based).

        Tasks up to the position become ``working``; later tasks go back to
        ``pending`` with no attempts; the module is ``complete`` only when the
        position is its last task, otherwise ``needs-work``.
        Snapshots after the position are deleted.
        """
        refusal = self._try_begin(f"rolling back {module_id}")
        if refusal is not None:
            return RollbackResult(success=False, error=refusal)
        try:
            return self._rollback(module_id, task_position)
        finally:
            self._end()

    def _rollback(self, module_id: str, task_position: int) -> RollbackResult:
        result = rollback_module(
            self.project,
            self.project_dir,
            module_id,
            task_position,
            snapshots=self.snapshots,
            build_log=self.build_log,
        )
        if result.success:
            self._persist()
        return result

    def build_suggestion(self, module_id: str, suggestion_id: str) -> SuggestionBuildResult:
        """Implement one improvement suggestion attached to a module.

        Once files were written the suggestion is removed whatever the
        verdict; a generation failure leaves it in place for another try.
        """
        refusal = self._try_begin(f"building suggestion {suggestion_id}")
        if refusal is not None:
            return SuggestionBuildResult(success=False, suggestion_id=suggestion_id, error=refusal)
        try:
            return self._build_suggestion(module_id, suggestion_id)
        finally:
            self._end()

    def _build_suggestion(self, module_id: str, suggestion_id: str) -> SuggestionBuildResult:
        try:
            module = self.project.get_module(module_id)
        except KeyError as exc:
            return SuggestionBuildResult(success=False, suggestion_id=suggestion_id, error=str(exc.args[0]))
        suggestion = next((item for item in module.suggestions if item.id == suggestion_id), None)
        if suggestion is None:
            return SuggestionBuildResult(
                success=False,
                suggestion_id=suggestion_id,
                error=f"unknown suggestion: {suggestion_id}",
            )

        self.build_log.info(
            "suggestion_started",
            f"building: {suggestion.title} ({suggestion.category})",
            module_id=module.id,
        )
        instruction = (
            f"Implement this improvement to the existing application: {suggestion.title}. "
            f"{suggestion.description}".strip()
        )
        attempt = self.engine.run_once(module, instruction, project=self.project)
        if not attempt.files_written:
            self.build_log.error(
                "suggestion_failed",
                f"suggestion produced no files: {attempt.error}",
                module_id=module.id,
            )
            return SuggestionBuildResult(success=False, suggestion_id=suggestion_id, error=attempt.error)

        module.suggestions = [item for item in module.suggestions if item.id != suggestion_id]
        module.version += 1
        self._persist()
        verdict_text = attempt.verdict.value if attempt.verdict is not None else "unverified"
        self.build_log.append(
            "suggestion_finished",
            f"{suggestion.title}: {verdict_text}",
            level="info" if attempt.succeeded else "warning",
            module_id=module.id,
        )
        return SuggestionBuildResult(
            success=attempt.succeeded,
            suggestion_id=suggestion_id,
            files_written=list(attempt.files_written),
            verdict=attempt.verdict,
            error=attempt.error,
        )

    def move_in_stack(self, module_id: str, direction: Literal["up", "down"]) -> bool:
        """Swap a module with its neighbour in the build order. False at either end or while busy."""
        refusal = self._try_begin(f"reordering {module_id}")
        if refusal is not None:
            self.build_log.warning("reorder_rejected", refusal, module_id=module_id)
            return False
        try:
            moved = self.project.move_in_stack(module_id, direction)
        finally:
            self._end()
        if moved:
            self._persist()
        return moved

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self.preview is not None:
            self.preview.stop()


def open_orchestrator(
    project_dir: Path,
    *,
    settings: RuntimeSettings | None = None,
    project: Project | None = None,
) -> ModuleOrchestrator:
    """Wire a production orchestrator for ``project_dir`` from settings.

    The project is loaded from the state file unless one is passed in.

    Raises:
        FileNotFoundError: If no project is passed and no state file exists.
        ValueError: If the state file is corrupt or settings are invalid.
    """
    project_dir = Path(project_dir)
    resolved = (settings or RuntimeSettings.from_env()).normalized()
    state_store = ProjectStateStore(resolved.state_path(project_dir))
    loaded = project if project is not None else state_store.load()
    return ModuleOrchestrator(
        loaded,
        project_dir,
        codegen=LLMCodeGenerator.from_settings(resolved, project_dir=project_dir),
        verifier=LLMVerifier.from_settings(resolved, project_dir=project_dir),
        suggestions=LLMSuggestionAdvisor.from_settings(resolved, project_dir=project_dir),
        installer=NpmInstaller(timeout_s=resolved.install_timeout_s),
        preview=DevServer(timeout_s=resolved.preview_timeout_s),
        settings=resolved,
        state_store=state_store,
    )
