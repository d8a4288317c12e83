"""Module planning from PRD features, fallback task lists and generation context."""

from __future__ import annotations

import uuid

from .models import Feature, Module, ModuleContext, ModuleStatus, Project, Task, TaskStatus

CORE_MODULE_NAME = "Core Setup"
CORE_MODULE_DESCRIPTION = "Project structure, routing, and shared components"


def is_core_module(module: Module) -> bool:
    return module.name == CORE_MODULE_NAME


def make_tasks(module_id: str, descriptions: list[str]) -> list[Task]:
    return [
        Task(id=f"{module_id}-task-{index}", description=description, status=TaskStatus.PENDING, attempts=0)
        for index, description in enumerate(descriptions)
    ]


def default_task_descriptions(module: Module) -> list[str]:
    """Task list used when task generation fails or returns nothing."""
    if is_core_module(module):
        return [
            "Set up project with Vite, React, and Tailwind CSS",
            "Create basic app layout and structure",
            "Add navigation components",
        ]
    return [
        f"Create {module.name} component",
        f"Add {module.name} functionality and state",
        f"Style and polish {module.name}",
    ]


def plan_modules(project: Project, features: list[Feature] | None = None) -> Project:
    """Replace the project's modules with Core Setup plus one draft module per feature.

    ``priorityStack`` follows the same order, Core Setup first.
    """
    chosen = features if features is not None else project.features
    batch = uuid.uuid4().hex[:8]
    modules = [
        Module(
            id=f"module-{batch}-core",
            name=CORE_MODULE_NAME,
            description=CORE_MODULE_DESCRIPTION,
            status=ModuleStatus.DRAFT,
        )
    ]
    modules.extend(
        Module(
            id=f"module-{batch}-{index}",
            name=feature.title,
            description=feature.description,
            status=ModuleStatus.DRAFT,
        )
        for index, feature in enumerate(chosen)
    )
    return Project(
        id=project.id,
        name=project.name,
        description=project.description,
        features=list(chosen),
        modules={module.id: module for module in modules},
        priority_stack=[module.id for module in modules],
    )


def module_context(project: Project | None, module: Module) -> ModuleContext:
    if project is None:
        return ModuleContext(
            project_name="App",
            project_description="",
            module_name=module.name,
            module_description=module.description,
            existing_files=tuple(module.files),
            is_core=is_core_module(module),
        )
    # Generation sees every file written so far, not only this module's.
    existing: dict[str, None] = {}
    for other in project.ordered_modules():
        existing.update(dict.fromkeys(other.files))
    existing.update(dict.fromkeys(module.files))
    return ModuleContext(
        project_name=project.name,
        project_description=project.description,
        module_name=module.name,
        module_description=module.description,
        features=tuple(feature.title for feature in project.features),
        existing_files=tuple(existing),
        is_core=is_core_module(module),
    )
