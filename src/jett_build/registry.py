from __future__ import annotations

import threading
from typing import Callable

from .orchestrator import ModuleOrchestrator


class OrchestratorRegistry:
    """One ``ModuleOrchestrator`` per open project, addressed by project id.

    Build state lives on each instance, so builds of different projects
    never share a busy flag or a current task index.
    """

    def __init__(self) -> None:
        self._orchestrators: dict[str, ModuleOrchestrator] = {}
        self._lock = threading.Lock()

    def __contains__(self, project_id: object) -> bool:
        with self._lock:
            return project_id in self._orchestrators

    def __len__(self) -> int:
        with self._lock:
            return len(self._orchestrators)

    def project_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._orchestrators)

    def register(self, orchestrator: ModuleOrchestrator) -> ModuleOrchestrator:
        with self._lock:
            if orchestrator.project_id in self._orchestrators:
                raise ValueError(f"project already open: {orchestrator.project_id}")
            self._orchestrators[orchestrator.project_id] = orchestrator
        return orchestrator

    def get(self, project_id: str) -> ModuleOrchestrator:
        with self._lock:
            try:
                return self._orchestrators[project_id]
            except KeyError:
                raise KeyError(f"project not open: {project_id}") from None

    def get_or_create(self, project_id: str, factory: Callable[[], ModuleOrchestrator]) -> ModuleOrchestrator:
        with self._lock:
            existing = self._orchestrators.get(project_id)
            if existing is not None:
                return existing
            created = factory()
            if created.project_id != project_id:
                raise ValueError(f"factory built project {created.project_id!r}, expected {project_id!r}")
            self._orchestrators[project_id] = created
            return created

    def close(self, project_id: str) -> bool:
        """Close and forget a project. Refused (False) while it is building."""
        with self._lock:
            orchestrator = self._orchestrators.get(project_id)
            if orchestrator is None or orchestrator.is_building:
                return False
            del self._orchestrators[project_id]
        orchestrator.close()
        return True

    def close_all(self) -> None:
        with self._lock:
            orchestrators = list(self._orchestrators.values())
            self._orchestrators.clear()
        for orchestrator in orchestrators:
            orchestrator.close()
