"""One-time dependency installation with bounded auto-fix, then preview bootstrap."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .build_log import BuildLog
from .install_errors import analyze_install_output
from .models import GenerationError, Module, ModuleContext
from .ports import CodeGenPort, DependencyInstaller, PreviewServer, ProcessResult
from .retry import BoundedRetry, RetryDecision
from .workspace import ProjectWorkspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencySetupResult:
    installed: bool
    install_attempts: int
    fixes_applied: int = 0
    preview_started: bool = False
    preview_url: str | None = None
    error: str | None = None


class DependencySetup:
    """Install the generated project's dependencies and start its preview.

    Installation is retried after each auto-fix cycle up to ``fix_attempts``
    times. Failure is recorded in the build log and returned as a value; it
    never aborts the build that triggered it.
    """

    def __init__(
        self,
        *,
        installer: DependencyInstaller,
        preview: PreviewServer | None,
        codegen: CodeGenPort,
        workspace: ProjectWorkspace,
        build_log: BuildLog,
        fix_attempts: int = 2,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        if fix_attempts < 0:
            raise ValueError(f"fix_attempts must be >= 0, got: {fix_attempts}")
        self.installer = installer
        self.preview = preview
        self.codegen = codegen
        self.workspace = workspace
        self.build_log = build_log
        self.fix_attempts = fix_attempts
        self._on_change = on_change

    def _install(self, project_dir: Path) -> ProcessResult:
        try:
            return self.installer.install(project_dir)
        except Exception as exc:  # noqa: BLE001
            return ProcessResult(success=False, error=str(exc))

    @staticmethod
    def _failure_text(result: ProcessResult) -> str:
        return "\n".join(part for part in (result.output, result.error or "") if part)

    def _classify(self, result: ProcessResult) -> RetryDecision:
        if result.success:
            return RetryDecision.SUCCEED
        if analyze_install_output(self._failure_text(result)).has_auto_fixable:
            return RetryDecision.RETRY
        return RetryDecision.ABORT

    def run(self, project_dir: Path, module: Module, context: ModuleContext) -> DependencySetupResult:
        fixes = 0
        self.build_log.info("dependency_install", "installing dependencies", module_id=module.id)

        def between(attempt: int, result: ProcessResult) -> None:
            nonlocal fixes
            analysis = analyze_install_output(self._failure_text(result))
            self.build_log.warning(
                "dependency_install_failed",
                f"install attempt {attempt} failed: {analysis.summary}; attempting auto-fix",
                module_id=module.id,
            )
            prompt = analysis.fix_prompt
            if prompt is None:
                return
            try:
                patch = self.codegen.fix(prompt, context)
            except Exception as exc:  # noqa: BLE001
                self.build_log.warning("dependency_fix_failed", f"auto-fix request failed: {exc}", module_id=module.id)
                return
            if isinstance(patch, GenerationError):
                self.build_log.warning(
                    "dependency_fix_failed",
                    f"auto-fix produced no files: {patch.reason}",
                    module_id=module.id,
                )
                return
            written: list[str] = []
            try:
                for item in patch.files:
                    written.append(self.workspace.write_file(item))
            except (OSError, ValueError) as exc:
                self.build_log.warning("dependency_fix_failed", f"could not apply auto-fix: {exc}", module_id=module.id)
            finally:
                module.add_files(written)
                if self._on_change is not None:
                    self._on_change()
            if written:
                fixes += 1
                self.build_log.info(
                    "dependency_fix_applied",
                    f"auto-fix updated {', '.join(written)}",
                    module_id=module.id,
                )

        outcome = BoundedRetry(1 + self.fix_attempts).run(
            lambda _attempt: self._install(project_dir),
            self._classify,
            between=between,
        )
        if not outcome.succeeded:
            summary = analyze_install_output(self._failure_text(outcome.last_result)).summary
            error = outcome.last_result.error or summary
            if outcome.aborted:
                message = f"dependency installation failed and cannot be auto-fixed: {summary}"
            else:
                message = f"dependency installation failed after {outcome.attempts} attempt(s): {summary}"
            self.build_log.error("dependency_install_failed", message, module_id=module.id)
            return DependencySetupResult(
                installed=False,
                install_attempts=outcome.attempts,
                fixes_applied=fixes,
                error=error,
            )

        self.build_log.info(
            "dependency_install_succeeded",
            f"dependencies installed after {outcome.attempts} attempt(s)",
            module_id=module.id,
        )
        if self.preview is None:
            return DependencySetupResult(installed=True, install_attempts=outcome.attempts, fixes_applied=fixes)

        try:
            started = self.preview.start(project_dir)
        except Exception as exc:  # noqa: BLE001
            started = ProcessResult(success=False, error=str(exc))
        if started.success:
            self.build_log.info(
                "preview_started",
                f"preview server running at {started.url}" if started.url else "preview server running",
                module_id=module.id,
            )
        else:
            self.build_log.warning("preview_failed", f"preview server failed: {started.error}", module_id=module.id)
        return DependencySetupResult(
            installed=True,
            install_attempts=outcome.attempts,
            fixes_applied=fixes,
            preview_started=started.success,
            preview_url=started.url,
            error=None if started.success else started.error,
        )
