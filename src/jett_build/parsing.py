from __future__ import annotations

import re
from pathlib import PurePosixPath

from .models import FileWrite, GeneratedFiles, GenerationError, GenerationResult, Verdict

FILE_BLOCK_RE = re.compile(
    r'---FILE-START\s*path="(?P<path>[^"]+)"\s*---(?P<content>.*?)---FILE-END---',
    re.DOTALL,
)
FILE_START_RE = re.compile(r"---FILE-START\b")
TASK_BLOCK_RE = re.compile(r"---TASKS-START---(?P<body>.*?)---TASKS-END---", re.DOTALL)
TASK_NUMBER_RE = re.compile(r"^\s*(?:\d+[.)]|[-*])\s*")


def normalize_project_path(raw: str) -> str:
    """Return a clean project-relative POSIX path.

    Raises:
        ValueError: If the path is empty, absolute, or escapes the project root.
    """
    candidate = raw.strip().replace("\\", "/")
    if not candidate:
        raise ValueError("file path is empty")
    path = PurePosixPath(candidate)
    if path.is_absolute() or re.match(r"^[A-Za-z]:", candidate):
        raise ValueError(f"file path must be project-relative: {raw!r}")
    parts = [part for part in path.parts if part not in {"", "."}]
    if not parts or ".." in parts:
        raise ValueError(f"file path escapes the project root: {raw!r}")
    return "/".join(parts)


def parse_file_blocks(text: str) -> GenerationResult:
    """Extract ``---FILE-START path="..."---`` blocks from a generation response.

    Returns a typed ``GeneratedFiles`` on success. A response without blocks,
    with an unterminated block, or naming an unsafe path is a
    ``GenerationError``; nothing is guessed from unstructured code fences.
    Repeated paths keep the last body.
    """
    if not text or not text.strip():
        return GenerationError(reason="empty response", raw_output=text or "")

    by_path: dict[str, str] = {}
    for match in FILE_BLOCK_RE.finditer(text):
        try:
            path = normalize_project_path(match.group("path"))
        except ValueError as exc:
            return GenerationError(reason=str(exc), raw_output=text)
        by_path.pop(path, None)
        by_path[path] = match.group("content").strip("\r\n")

    starts = len(FILE_START_RE.findall(text))
    if starts > len(FILE_BLOCK_RE.findall(text)):
        return GenerationError(reason="unterminated file block in response", raw_output=text)
    if not by_path:
        return GenerationError(reason="no file blocks in response", raw_output=text)

    return GeneratedFiles(files=tuple(FileWrite(path=path, content=content) for path, content in by_path.items()))


def parse_task_list(text: str) -> list[str]:
    """Extract numbered task descriptions between the task markers.

    Returns an empty list when the markers are missing.
    """
    match = TASK_BLOCK_RE.search(text or "")
    if match is None:
        return []
    tasks: list[str] = []
    for line in match.group("body").splitlines():
        description = TASK_NUMBER_RE.sub("", line).strip()
        if description:
            tasks.append(description)
    return tasks


def parse_verdict(text: str | None) -> Verdict:
    """Map a verifier reply to a verdict.

    WORKING is checked first, so a reply mentioning both words counts as
    WORKING. Anything else is INCONCLUSIVE.
    """
    if not text:
        return Verdict.INCONCLUSIVE
    upper = text.upper()
    if "WORKING" in upper:
        return Verdict.WORKING
    if "BROKEN" in upper:
        return Verdict.BROKEN
    return Verdict.INCONCLUSIVE
