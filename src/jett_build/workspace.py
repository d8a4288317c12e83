from __future__ import annotations

import logging
from pathlib import Path

from .models import FileWrite
from .parsing import normalize_project_path

logger = logging.getLogger(__name__)

PROTECTED_ROOTS: frozenset[str] = frozenset({".jett", ".git", "node_modules"})


class ProjectWorkspace:
    """The generated project's file tree on disk."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def resolve(self, relative_path: str) -> tuple[str, Path]:
        """Return the normalized relative path and its absolute location.

        Raises:
            ValueError: If the path is unsafe or targets a protected directory.
        """
        normalized = normalize_project_path(relative_path)
        if normalized.split("/", 1)[0] in PROTECTED_ROOTS:
            raise ValueError(f"refusing to write into protected path: {normalized}")
        return normalized, self.root / normalized

    def write_file(self, item: FileWrite) -> str:
        """Write one file and return its normalized relative path.

        Raises:
            ValueError: If the path is unsafe.
            OSError: If the write fails.
        """
        normalized, target = self.resolve(item.path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(item.content, encoding="utf-8")
        logger.debug("wrote %s (%d bytes)", normalized, len(item.content))
        return normalized

    def write(self, files: tuple[FileWrite, ...] | list[FileWrite]) -> list[str]:
        """Write every file in order. Files written before a failure stay on disk."""
        return [self.write_file(item) for item in files]
