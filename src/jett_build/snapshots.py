"""Point-in-time copies of a project tree, keyed by task index.

Layout::

    <project>/.jett/history/task-<N>/<mirrored project files>
    <project>/.jett/history/task-<N>/_metadata.json

Every public operation returns a result value; filesystem errors never
escape to the caller.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

from pydantic import ValidationError

from .canonical import to_canonical_json
from .models import SnapshotMetadata, SnapshotSummary
from .parsing import normalize_project_path
from .state_store import atomic_write_text, safe_read_json

logger = logging.getLogger(__name__)

HISTORY_DIR = ".jett/history"
METADATA_FILE = "_metadata.json"
INITIAL_DESCRIPTION = "Initial project state"
SNAPSHOT_ID_RE = re.compile(r"^task-(\d+)$")

# Dependency caches, VCS metadata, the store itself, build output, OS artifacts, lockfiles.
EXCLUDED_NAMES: frozenset[str] = frozenset(
    {
        "node_modules",
        ".git",
        ".jett",
        "dist",
        ".vite",
        ".DS_Store",
        "package-lock.json",
        "yarn.lock",
    }
)


def snapshot_id_for(task_index: int) -> str:
    if task_index < 0:
        raise ValueError(f"task_index must be >= 0, got: {task_index}")
    return f"task-{task_index}"


@dataclass(frozen=True)
class SnapshotResult:
    success: bool
    snapshot_id: str = ""
    error: str | None = None


@dataclass(frozen=True)
class SnapshotListResult:
    success: bool
    snapshots: list[SnapshotSummary] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class SnapshotDetailsResult:
    success: bool
    metadata: SnapshotMetadata | None = None
    error: str | None = None


@dataclass(frozen=True)
class RestoreResult:
    success: bool
    files_restored: int = 0
    error: str | None = None


@dataclass(frozen=True)
class DeleteResult:
    success: bool
    deleted: int = 0
    error: str | None = None


class SnapshotStore:
    """Snapshot/restore of a project directory under ``history_dir``."""

    def __init__(self, history_dir: str = HISTORY_DIR) -> None:
        self.history_dir = history_dir.strip("/")
        self._history_parts = PurePosixPath(self.history_dir).parts

    # ------------------------------------------------------------------
    # Tree walking
    # ------------------------------------------------------------------

    def history_root(self, project_dir: Path) -> Path:
        return Path(project_dir) / self.history_dir

    def is_excluded(self, relative_path: str) -> bool:
        parts = PurePosixPath(relative_path).parts
        if any(part in EXCLUDED_NAMES for part in parts):
            return True
        return parts[: len(self._history_parts)] == self._history_parts

    def project_files(self, project_dir: Path) -> list[str]:
        """Return sorted project-relative POSIX paths of every included file."""
        root = Path(project_dir)
        files: list[str] = []
        if not root.is_dir():
            return files
        for current, dirnames, filenames in os.walk(root):
            relative_dir = Path(current).relative_to(root)
            kept: list[str] = []
            for name in sorted(dirnames):
                relative = (relative_dir / name).as_posix()
                if not self.is_excluded(relative) and not (Path(current) / name).is_symlink():
                    kept.append(name)
            dirnames[:] = kept
            for name in sorted(filenames):
                relative = (relative_dir / name).as_posix()
                if not self.is_excluded(relative):
                    files.append(relative)
        return sorted(files)

    def _clean_empty_dirs(self, directory: Path, root: Path) -> None:
        for entry in sorted(directory.iterdir()):
            if not entry.is_dir() or entry.is_symlink():
                continue
            relative = entry.relative_to(root).as_posix()
            if self.is_excluded(relative):
                continue
            self._clean_empty_dirs(entry, root)
            if not any(entry.iterdir()):
                entry.rmdir()

    def _read_metadata(self, snapshot_dir: Path) -> SnapshotMetadata:
        text = safe_read_json(snapshot_dir / METADATA_FILE, "snapshot metadata")
        try:
            return SnapshotMetadata.model_validate_json(text)
        except ValidationError as exc:
            raise ValueError(f"snapshot metadata at {snapshot_dir} failed validation: {exc}") from exc

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(self, project_dir: Path, task_index: int, description: str) -> SnapshotResult:
        """Copy every included project file into ``task-<task_index>``.

        An existing snapshot with the same index is replaced. Metadata is
        written last, so a snapshot interrupted mid-copy is never listed.
        """
        project_dir = Path(project_dir)
        try:
            snapshot_id = snapshot_id_for(task_index)
        except ValueError as exc:
            return SnapshotResult(success=False, error=str(exc))
        if not project_dir.is_dir():
            return SnapshotResult(success=False, error=f"project directory not found: {project_dir}")

        snapshot_dir = self.history_root(project_dir) / snapshot_id
        try:
            if snapshot_dir.exists():
                shutil.rmtree(snapshot_dir)
            snapshot_dir.mkdir(parents=True)

            files = self.project_files(project_dir)
            for relative in files:
                destination = snapshot_dir / relative
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(project_dir / relative, destination)

            metadata = SnapshotMetadata(
                task_index=task_index,
                task_description=description,
                timestamp=datetime.now(UTC),
                file_count=len(files),
                files=files,
            )
            atomic_write_text(snapshot_dir / METADATA_FILE, to_canonical_json(metadata))
        except OSError as exc:
            logger.warning("snapshot %s failed: %s", snapshot_id, exc)
            shutil.rmtree(snapshot_dir, ignore_errors=True)
            return SnapshotResult(success=False, error=str(exc))

        logger.info("snapshot %s captured %d files", snapshot_id, len(files))
        return SnapshotResult(success=True, snapshot_id=snapshot_id)

    def create_initial(self, project_dir: Path) -> SnapshotResult:
        return self.create(project_dir, 0, INITIAL_DESCRIPTION)

    def list(self, project_dir: Path) -> SnapshotListResult:
        """List readable snapshots sorted by ascending task index."""
        history = self.history_root(project_dir)
        if not history.is_dir():
            return SnapshotListResult(success=True, snapshots=[])

        summaries: list[SnapshotSummary] = []
        try:
            entries = sorted(history.iterdir())
        except OSError as exc:
            return SnapshotListResult(success=False, error=str(exc))
        for entry in entries:
            if not entry.is_dir() or SNAPSHOT_ID_RE.match(entry.name) is None:
                continue
            try:
                metadata = self._read_metadata(entry)
            except (OSError, ValueError) as exc:
                logger.warning("skipping unreadable snapshot %s: %s", entry.name, exc)
                continue
            summaries.append(
                SnapshotSummary(
                    id=entry.name,
                    task_index=metadata.task_index,
                    task_description=metadata.task_description,
                    timestamp=metadata.timestamp,
                    file_count=metadata.file_count,
                )
            )
        summaries.sort(key=lambda summary: summary.task_index)
        return SnapshotListResult(success=True, snapshots=summaries)

    def details(self, project_dir: Path, snapshot_id: str) -> SnapshotDetailsResult:
        if SNAPSHOT_ID_RE.match(snapshot_id) is None:
            return SnapshotDetailsResult(success=False, error=f"invalid snapshot id: {snapshot_id!r}")
        snapshot_dir = self.history_root(project_dir) / snapshot_id
        if not (snapshot_dir / METADATA_FILE).is_file():
            return SnapshotDetailsResult(success=False, error="Snapshot not found")
        try:
            return SnapshotDetailsResult(success=True, metadata=self._read_metadata(snapshot_dir))
        except (OSError, ValueError) as exc:
            return SnapshotDetailsResult(success=False, error=str(exc))

    def restore(self, project_dir: Path, snapshot_id: str) -> RestoreResult:
        """Make the project tree match a snapshot.

        Files absent from the snapshot's file list are deleted, listed files
        are copied back, and directories left empty are removed. Excluded
        paths (dependency caches, the store itself) are never touched.
        """
        project_dir = Path(project_dir)
        if SNAPSHOT_ID_RE.match(snapshot_id) is None:
            return RestoreResult(success=False, error=f"invalid snapshot id: {snapshot_id!r}")
        snapshot_dir = self.history_root(project_dir) / snapshot_id
        if not snapshot_dir.is_dir():
            return RestoreResult(success=False, error="Snapshot not found")
        if not (snapshot_dir / METADATA_FILE).is_file():
            return RestoreResult(success=False, error="Invalid snapshot (no metadata)")

        try:
            metadata = self._read_metadata(snapshot_dir)
            listed = [normalize_project_path(path) for path in metadata.files]
        except (OSError, ValueError) as exc:
            return RestoreResult(success=False, error=str(exc))

        keep = set(listed)
        restored = 0
        try:
            for relative in self.project_files(project_dir):
                if relative not in keep:
                    (project_dir / relative).unlink(missing_ok=True)

            for relative in listed:
                source = snapshot_dir / relative
                if not source.is_file():
                    logger.warning("snapshot %s is missing listed file %s", snapshot_id, relative)
                    continue
                destination = project_dir / relative
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, destination)
                restored += 1

            self._clean_empty_dirs(project_dir, project_dir)
        except OSError as exc:
            return RestoreResult(success=False, files_restored=restored, error=str(exc))

        logger.info("restored %s (%d files)", snapshot_id, restored)
        return RestoreResult(success=True, files_restored=restored)

    def delete_after(self, project_dir: Path, task_index: int) -> DeleteResult:
        """Remove every snapshot whose task index is strictly greater than ``task_index``."""
        history = self.history_root(project_dir)
        if not history.is_dir():
            return DeleteResult(success=True, deleted=0)

        deleted = 0
        try:
            for entry in sorted(history.iterdir()):
                match = SNAPSHOT_ID_RE.match(entry.name)
                if not entry.is_dir() or match is None:
                    continue
                if int(match.group(1)) > task_index:
                    shutil.rmtree(entry)
                    deleted += 1
        except OSError as exc:
            return DeleteResult(success=False, deleted=deleted, error=str(exc))
        return DeleteResult(success=True, deleted=deleted)
