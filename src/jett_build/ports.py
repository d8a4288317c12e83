"""Collaborator boundaries the orchestrator depends on.

Each port is a structural ``Protocol``; the LLM-backed adapters live in
``agents.py`` and the subprocess adapters in ``processes.py``. Tests supply
in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .models import GenerationResult, Module, ModuleContext, Suggestion, Verdict


class CodeGenPort(Protocol):
    def generate(self, instruction: str, context: ModuleContext) -> GenerationResult:
        """Return the file writes for one instruction, or a typed parse error."""
        ...

    def generate_tasks(self, context: ModuleContext) -> list[str]:
        """Return an ordered list of task descriptions for a module."""
        ...

    def fix(self, prompt: str, context: ModuleContext) -> GenerationResult:
        """Return file patches answering a failure report."""
        ...


class VerificationPort(Protocol):
    def verify(self, instruction: str, files_written: list[str], evidence: str | None = None) -> Verdict:
        ...


class SuggestionPort(Protocol):
    def suggest(self, module: Module, context: ModuleContext) -> list[Suggestion]:
        ...


class EvidenceSource(Protocol):
    def capture(self) -> str | None:
        """Return a base64 screenshot of the live preview, or None."""
        ...


@dataclass(frozen=True)
class ProcessResult:
    success: bool
    output: str = ""
    url: str | None = None
    error: str | None = None


class DependencyInstaller(Protocol):
    def install(self, project_dir: Path) -> ProcessResult:
        ...


class PreviewServer(Protocol):
    def start(self, project_dir: Path) -> ProcessResult:
        ...

    def stop(self) -> None:
        ...
