from importlib.metadata import version

from .build_log import BuildLog
from .dependencies import DependencySetup, DependencySetupResult
from .engine import TaskExecutionEngine
from .install_errors import DetectedError, InstallErrorAnalysis, analyze_install_output
from .models import (
    BuildLogEntry,
    Feature,
    FileWrite,
    GeneratedFiles,
    GenerationError,
    GenerationResult,
    Module,
    ModuleContext,
    ModuleStatus,
    Project,
    SnapshotMetadata,
    SnapshotSummary,
    Suggestion,
    Task,
    TaskOutcome,
    TaskStatus,
    Verdict,
)
from .orchestrator import BuildReport, ModuleOrchestrator, SuggestionBuildResult, open_orchestrator
from .planning import default_task_descriptions, plan_modules
from .registry import OrchestratorRegistry
from .retry import BoundedRetry, RetryDecision, RetryOutcome
from .rollback import RollbackResult, rollback_module
from .settings import RuntimeSettings
from .snapshots import SnapshotStore
from .state_store import ProjectStateStore


def get_version() -> str:
    try:
        return version("jett-build")
    except Exception:
        return "0.0.0"


__all__ = [
    "BoundedRetry",
    "BuildLog",
    "BuildLogEntry",
    "BuildReport",
    "DependencySetup",
    "DependencySetupResult",
    "DetectedError",
    "Feature",
    "FileWrite",
    "GeneratedFiles",
    "GenerationError",
    "GenerationResult",
    "InstallErrorAnalysis",
    "Module",
    "ModuleContext",
    "ModuleOrchestrator",
    "ModuleStatus",
    "OrchestratorRegistry",
    "Project",
    "ProjectStateStore",
    "RetryDecision",
    "RetryOutcome",
    "RollbackResult",
    "RuntimeSettings",
    "SnapshotMetadata",
    "SnapshotStore",
    "SnapshotSummary",
    "Suggestion",
    "SuggestionBuildResult",
    "Task",
    "TaskExecutionEngine",
    "TaskOutcome",
    "TaskStatus",
    "Verdict",
    "analyze_install_output",
    "default_task_descriptions",
    "get_version",
    "open_orchestrator",
    "plan_modules",
    "rollback_module",
]
