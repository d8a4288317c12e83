from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class TaskStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    WORKING = "working"
    FAILED = "failed"


class ModuleStatus(str, Enum):
    DRAFT = "draft"
    BUILDING = "building"
    COMPLETE = "complete"
    NEEDS_WORK = "needs-work"


class Verdict(str, Enum):
    WORKING = "WORKING"
    BROKEN = "BROKEN"
    INCONCLUSIVE = "INCONCLUSIVE"


TERMINAL_TASK_STATUSES: frozenset[TaskStatus] = frozenset({TaskStatus.WORKING, TaskStatus.FAILED})


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys on disk."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class Task(CamelModel):
    id: str = Field(min_length=1)
    description: str = Field(min_length=1, frozen=True)
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = Field(default=0, ge=0)

    def begin_attempt(self) -> None:
        self.status = TaskStatus.EXECUTING
        self.attempts += 1

    def reset(self) -> None:
        self.status = TaskStatus.PENDING
        self.attempts = 0


class Suggestion(CamelModel):
    id: str
    rank: int = Field(ge=1, le=3)
    category: str = "Polish"
    title: str
    description: str = ""
    severity: Literal["high", "medium", "low"] = "medium"


class Module(CamelModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    status: ModuleStatus = ModuleStatus.DRAFT
    version: int = Field(default=0, ge=0)
    tasks: list[Task] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_task_ids(self) -> "Module":
        seen: set[str] = set()
        for task in self.tasks:
            if task.id in seen:
                raise ValueError(f"duplicate task id {task.id!r} in module {self.id!r}")
            seen.add(task.id)
        return self

    @property
    def all_working(self) -> bool:
        return bool(self.tasks) and all(task.status == TaskStatus.WORKING for task in self.tasks)

    def add_files(self, paths: list[str]) -> None:
        """Union ``paths`` into ``files`` keeping first-seen order."""
        known = set(self.files)
        for path in paths:
            if path not in known:
                known.add(path)
                self.files.append(path)

    def settle_status(self) -> ModuleStatus:
        self.status = ModuleStatus.COMPLETE if self.all_working else ModuleStatus.NEEDS_WORK
        return self.status


class Feature(CamelModel):
    id: str
    title: str = Field(min_length=1)
    description: str = ""


class Project(CamelModel):
    """Owning aggregate: modules keyed by id plus the build order."""

    id: str = Field(min_length=1)
    name: str = "App"
    description: str = ""
    features: list[Feature] = Field(default_factory=list)
    modules: dict[str, Module] = Field(default_factory=dict)
    priority_stack: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _stack_is_permutation(self) -> "Project":
        if len(self.priority_stack) != len(set(self.priority_stack)):
            raise ValueError("priorityStack contains duplicate module ids")
        if set(self.priority_stack) != set(self.modules):
            raise ValueError("priorityStack must be a permutation of the module ids")
        for key, module in self.modules.items():
            if key != module.id:
                raise ValueError(f"module keyed {key!r} has id {module.id!r}")
        return self

    def get_module(self, module_id: str) -> Module:
        try:
            return self.modules[module_id]
        except KeyError:
            raise KeyError(f"unknown module: {module_id}") from None

    def add_module(self, module: Module) -> None:
        if module.id in self.modules:
            raise ValueError(f"module already exists: {module.id}")
        self.modules[module.id] = module
        self.priority_stack.append(module.id)

    def ordered_modules(self) -> list[Module]:
        return [self.modules[module_id] for module_id in self.priority_stack]

    def is_first_in_stack(self, module_id: str) -> bool:
        return bool(self.priority_stack) and self.priority_stack[0] == module_id

    def next_in_stack(self, module_id: str) -> Module | None:
        index = self.priority_stack.index(module_id)
        if index + 1 >= len(self.priority_stack):
            return None
        return self.modules[self.priority_stack[index + 1]]

    def move_in_stack(self, module_id: str, direction: Literal["up", "down"]) -> bool:
        """Swap ``module_id`` with its neighbour. Returns False at either end."""
        if module_id not in self.priority_stack:
            raise KeyError(f"unknown module: {module_id}")
        current = self.priority_stack.index(module_id)
        target = current - 1 if direction == "up" else current + 1
        if target < 0 or target >= len(self.priority_stack):
            return False
        stack = self.priority_stack
        stack[current], stack[target] = stack[target], stack[current]
        return True

    def recover_interrupted(self) -> list[str]:
        """Apply the resume rule to state left behind by an interrupted process.

        Tasks left ``executing`` restart from attempt 0. Modules left
        ``building`` are settled from their task states, or return to
        ``draft`` when no task ever ran.

        Returns:
            Ids of the tasks that were reset.
        """
        reset: list[str] = []
        for module in self.ordered_modules():
            for task in module.tasks:
                if task.status == TaskStatus.EXECUTING:
                    task.reset()
                    reset.append(task.id)
            if module.status == ModuleStatus.BUILDING:
                if all(task.status == TaskStatus.PENDING for task in module.tasks) and module.version == 0:
                    module.status = ModuleStatus.DRAFT
                else:
                    module.settle_status()
        return reset


class SnapshotMetadata(CamelModel):
    """Sidecar record written next to every snapshot copy."""

    task_index: int = Field(ge=0)
    task_description: str
    timestamp: datetime
    file_count: int = Field(ge=0)
    files: list[str]


class SnapshotSummary(CamelModel):
    id: str
    task_index: int
    task_description: str
    timestamp: datetime
    file_count: int


class BuildLogEntry(CamelModel):
    timestamp: datetime
    level: Literal["info", "warning", "error"] = "info"
    event: str
    message: str
    module_id: str | None = None
    task_id: str | None = None


# ---------------------------------------------------------------------------
# Port value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileWrite:
    path: str
    content: str


@dataclass(frozen=True)
class GeneratedFiles:
    files: tuple[FileWrite, ...]

    @property
    def paths(self) -> list[str]:
        return [item.path for item in self.files]


@dataclass(frozen=True)
class GenerationError:
    reason: str
    raw_output: str = ""


GenerationResult = GeneratedFiles | GenerationError


@dataclass(frozen=True)
class ModuleContext:
    """What a code-generation call is told about the module being built."""

    project_name: str
    project_description: str
    module_name: str
    module_description: str
    features: tuple[str, ...] = ()
    existing_files: tuple[str, ...] = ()
    is_core: bool = False


@dataclass(frozen=True)
class TaskOutcome:
    module_id: str
    task_id: str
    task_index: int
    status: TaskStatus
    attempts: int
    files_written: list[str] = field(default_factory=list)
    verdict: Verdict | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.WORKING
