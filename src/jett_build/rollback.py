"""Roll a module back to the project state captured after one of its tasks."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .build_log import BuildLog
from .models import Project, TaskStatus
from .snapshots import SnapshotStore, snapshot_id_for


@dataclass(frozen=True)
class RollbackResult:
    success: bool
    snapshot_id: str = ""
    files_restored: int = 0
    snapshots_deleted: int = 0
    error: str | None = None


def rollback_module(
    project: Project,
    project_dir: Path,
    module_id: str,
    task_position: int,
    *,
    snapshots: SnapshotStore,
    build_log: BuildLog,
) -> RollbackResult:
    """Restore ``task-<task_position>`` and reset the module's task states to match.

    Tasks ``1..task_position`` become ``working``; later tasks return to
    ``pending`` with zero attempts, and the module status is settled from
    them (``complete`` only when the position is the last task). Other
    modules whose files the restored tree lacks are named in a warning.
    Snapshots newer than the position are deleted. The caller must make sure
    no build is running and is responsible for persisting ``project``.
    """
    project_dir = Path(project_dir)
    try:
        module = project.get_module(module_id)
    except KeyError as exc:
        return RollbackResult(success=False, error=str(exc.args[0]))
    if not 1 <= task_position <= len(module.tasks):
        return RollbackResult(
            success=False,
            error=f"task position must be between 1 and {len(module.tasks)}, got: {task_position}",
        )

    snapshot_id = snapshot_id_for(task_position)
    details = snapshots.details(project_dir, snapshot_id)
    if not details.success:
        build_log.error("rollback_failed", f"no snapshot found for task {task_position}", module_id=module_id)
        return RollbackResult(success=False, snapshot_id=snapshot_id, error=details.error)

    restored = snapshots.restore(project_dir, snapshot_id)
    if not restored.success:
        build_log.error("rollback_failed", f"restore failed: {restored.error}", module_id=module_id)
        return RollbackResult(success=False, snapshot_id=snapshot_id, error=restored.error)

    pruned = snapshots.delete_after(project_dir, task_position)
    if not pruned.success:
        build_log.warning("snapshot_prune_failed", f"could not delete newer snapshots: {pruned.error}")
    elif pruned.deleted:
        build_log.info("snapshots_pruned", f"deleted {pruned.deleted} newer snapshot(s)", module_id=module_id)

    for index, task in enumerate(module.tasks):
        if index < task_position:
            task.status = TaskStatus.WORKING
        else:
            task.reset()
    module.settle_status()
    # Restored files replace whatever later tasks wrote.
    stale: list[str] = []
    for other in project.ordered_modules():
        kept = [path for path in other.files if (project_dir / path).is_file()]
        if other.id != module_id and len(kept) < len(other.files):
            stale.append(other.id)
        other.files = kept
    if stale:
        build_log.warning(
            "rollback_removed_module_files",
            f"rollback removed files written by other modules: {', '.join(stale)}; rebuild them to restore",
            module_id=module_id,
        )

    build_log.info(
        "rollback_complete",
        f"rolled back to after task {task_position} ({restored.files_restored} files restored)",
        module_id=module_id,
    )
    return RollbackResult(
        success=True,
        snapshot_id=snapshot_id,
        files_restored=restored.files_restored,
        snapshots_deleted=pruned.deleted,
    )
