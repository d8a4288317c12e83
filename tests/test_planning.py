from __future__ import annotations

import pytest
from conftest import make_project
from pydantic import ValidationError

from jett_build.models import Feature, Module, ModuleStatus, Task, TaskStatus
from jett_build.planning import (
    CORE_MODULE_NAME,
    default_task_descriptions,
    make_tasks,
    module_context,
    plan_modules,
)


def test_plan_modules_puts_core_setup_first() -> None:
    seed = make_project()
    features = [
        Feature(id="f1", title="Calendar", description="Month and week views"),
        Feature(id="f2", title="Kanban", description="Drag-and-drop board"),
    ]

    project = plan_modules(seed, features)

    modules = project.ordered_modules()
    assert [module.name for module in modules] == [CORE_MODULE_NAME, "Calendar", "Kanban"]
    assert all(module.status == ModuleStatus.DRAFT for module in modules)
    assert project.priority_stack[0].endswith("-core")
    assert project.features == features
    assert modules[1].description == "Month and week views"


def test_default_task_descriptions() -> None:
    core = Module(id="m-core", name=CORE_MODULE_NAME)
    feature = Module(id="m-1", name="Calendar")
    assert default_task_descriptions(core)[0] == "Set up project with Vite, React, and Tailwind CSS"
    assert default_task_descriptions(feature) == [
        "Create Calendar component",
        "Add Calendar functionality and state",
        "Style and polish Calendar",
    ]


def test_make_tasks_start_pending_with_stable_ids() -> None:
    tasks = make_tasks("m-1", ["One", "Two"])
    assert [task.id for task in tasks] == ["m-1-task-0", "m-1-task-1"]
    assert all(task.status == TaskStatus.PENDING and task.attempts == 0 for task in tasks)


def test_module_context_lists_files_from_earlier_modules() -> None:
    project = make_project("Core Setup", "Calendar")
    project.get_module("mod-0").files = ["src/App.tsx", "src/main.tsx"]
    project.get_module("mod-1").files = ["src/Calendar.tsx", "src/App.tsx"]

    context = module_context(project, project.get_module("mod-1"))

    assert context.existing_files == ("src/App.tsx", "src/main.tsx", "src/Calendar.tsx")
    assert context.module_name == "Calendar"
    assert not context.is_core
    assert module_context(project, project.get_module("mod-0")).is_core


def test_move_in_stack_swaps_neighbours() -> None:
    project = make_project("Core Setup", "Calendar", "Kanban")
    assert project.move_in_stack("mod-1", "down")
    assert project.priority_stack == ["mod-0", "mod-2", "mod-1"]
    assert not project.move_in_stack("mod-1", "down")
    with pytest.raises(KeyError):
        project.move_in_stack("mod-9", "up")


def test_module_with_no_tasks_is_never_complete() -> None:
    module = Module(id="m", name="Empty")
    assert module.settle_status() == ModuleStatus.NEEDS_WORK


def test_module_rejects_duplicate_task_ids() -> None:
    with pytest.raises(ValidationError):
        Module(id="m", name="Dup", tasks=[Task(id="t", description="a"), Task(id="t", description="b")])


def test_task_description_is_immutable() -> None:
    task = Task(id="t", description="Create layout")
    with pytest.raises(ValidationError):
        task.description = "Something else"


def test_add_files_is_an_ordered_union() -> None:
    module = Module(id="m", name="Files", files=["a.ts"])
    module.add_files(["b.ts", "a.ts", "c.ts", "b.ts"])
    assert module.files == ["a.ts", "b.ts", "c.ts"]
