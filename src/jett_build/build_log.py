from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Callable, Literal

from .models import BuildLogEntry, TaskOutcome

logger = logging.getLogger(__name__)

_LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}

LogListener = Callable[[BuildLogEntry], None]


class BuildLog:
    """Append-only, user-facing record of a project's builds.

    Every entry is mirrored to the module logger so the same events reach
    the process log without a second call site.
    """

    def __init__(self) -> None:
        self._entries: list[BuildLogEntry] = []
        self._listeners: list[LogListener] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[BuildLogEntry]:
        with self._lock:
            return list(self._entries)

    def subscribe(self, listener: LogListener) -> None:
        self._listeners.append(listener)

    def append(
        self,
        event: str,
        message: str,
        *,
        level: Literal["info", "warning", "error"] = "info",
        module_id: str | None = None,
        task_id: str | None = None,
    ) -> BuildLogEntry:
        entry = BuildLogEntry(
            timestamp=datetime.now(UTC),
            level=level,
            event=event,
            message=message,
            module_id=module_id,
            task_id=task_id,
        )
        with self._lock:
            self._entries.append(entry)
        logger.log(_LEVELS[level], "[%s] %s", event, message)
        for listener in self._listeners:
            listener(entry)
        return entry

    def info(self, event: str, message: str, **kwargs: str | None) -> BuildLogEntry:
        return self.append(event, message, level="info", **kwargs)

    def warning(self, event: str, message: str, **kwargs: str | None) -> BuildLogEntry:
        return self.append(event, message, level="warning", **kwargs)

    def error(self, event: str, message: str, **kwargs: str | None) -> BuildLogEntry:
        return self.append(event, message, level="error", **kwargs)

    def record_outcome(self, outcome: TaskOutcome) -> BuildLogEntry:
        if outcome.succeeded:
            message = f"task {outcome.task_index + 1} working after {outcome.attempts} attempt(s)"
            level: Literal["info", "warning", "error"] = "info"
        else:
            message = f"task {outcome.task_index + 1} failed after {outcome.attempts} attempt(s)"
            if outcome.error:
                message = f"{message}: {outcome.error}"
            level = "error"
        return self.append(
            "task_outcome",
            message,
            level=level,
            module_id=outcome.module_id,
            task_id=outcome.task_id,
        )

    def events(self, event: str) -> list[BuildLogEntry]:
        return [entry for entry in self.entries if entry.event == event]
