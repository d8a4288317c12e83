from __future__ import annotations

import fcntl
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from pydantic import ValidationError

from .canonical import to_canonical_json
from .models import Project

logger = logging.getLogger(__name__)

_LOCK_SUFFIX = ".lock"


@contextmanager
def locked_file(path: Path) -> Iterator[None]:
    """Hold an exclusive ``fcntl`` lock on a ``.lock`` sidecar of *path*.

    The sidecar lets the data file itself be swapped with ``os.replace``
    while the lock handle stays valid.
    """
    lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to a temp file beside *path*, then rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def safe_read_json(path: Path, label: str) -> str:
    """Read a JSON file and raise a clear error if missing or unreadable.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is empty or contains non-UTF-8 data.
    """
    if not path.is_file():
        raise FileNotFoundError(f"{label} not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError(f"{label} at {path} contains invalid UTF-8 data") from exc
    if not text.strip():
        raise ValueError(f"{label} at {path} is empty")
    return text


class ProjectStateStore:
    """Persist the ``Project`` aggregate as canonical JSON under the project tree.

    Reads apply the resume rule, so a project saved mid-build comes back
    with no task left ``executing``.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file()

    def save(self, project: Project) -> None:
        with locked_file(self.path):
            atomic_write_text(self.path, to_canonical_json(project))

    def load(self) -> Project:
        """Raises FileNotFoundError if missing, ValueError if corrupt."""
        with locked_file(self.path):
            text = safe_read_json(self.path, "project state")
        try:
            project = Project.model_validate_json(text)
        except ValidationError as exc:
            raise ValueError(f"project state at {self.path} failed validation: {exc}") from exc

        reset = project.recover_interrupted()
        if reset:
            logger.warning("reset %d interrupted task(s) to pending: %s", len(reset), ", ".join(reset))
        return project
