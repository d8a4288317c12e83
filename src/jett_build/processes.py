"""Subprocess adapters for dependency installation and the live preview server."""

from __future__ import annotations

import logging
import queue
import re
import subprocess
import threading
import time
from pathlib import Path
from typing import IO

from .ports import ProcessResult

logger = logging.getLogger(__name__)

READY_URL_RE = re.compile(r"Local:\s+(https?://\S+)")
READY_MARKER_RE = re.compile(r"ready in \d+", re.IGNORECASE)
ANSI_RE = re.compile(r"\x1B\[[0-9;]*[a-zA-Z]")


class NpmInstaller:
    """Run ``npm install`` in the project directory."""

    def __init__(self, *, command: list[str] | None = None, timeout_s: int = 300) -> None:
        self.command = command if command is not None else ["npm", "install"]
        self.timeout_s = timeout_s

    def install(self, project_dir: Path) -> ProcessResult:
        if not (project_dir / "package.json").is_file():
            return ProcessResult(success=False, error="package.json not found", output="")
        try:
            completed = subprocess.run(
                self.command,
                cwd=project_dir,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
                check=False,
            )
        except FileNotFoundError as exc:
            return ProcessResult(success=False, error=f"installer not available: {exc}")
        except subprocess.TimeoutExpired as exc:
            output = (exc.stdout or "") if isinstance(exc.stdout, str) else ""
            return ProcessResult(success=False, output=output, error=f"install timed out after {self.timeout_s}s")

        output = f"{completed.stdout}\n{completed.stderr}".strip()
        if completed.returncode != 0:
            return ProcessResult(success=False, output=output, error=f"exit code {completed.returncode}")
        return ProcessResult(success=True, output=output)


def _pump(stream: IO[str], sink: "queue.Queue[str | None]") -> None:
    for line in iter(stream.readline, ""):
        sink.put(line)
    sink.put(None)


class DevServer:
    """Long-running preview server started with ``npm run dev``.

    ``start`` returns once a ready marker appears on stdout, the process
    exits, or the timeout passes. The process keeps running until ``stop``.
    """

    def __init__(self, *, command: list[str] | None = None, timeout_s: int = 30) -> None:
        self.command = command if command is not None else ["npm", "run", "dev"]
        self.timeout_s = timeout_s
        self._process: subprocess.Popen[str] | None = None
        self.url: str | None = None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self, project_dir: Path) -> ProcessResult:
        if self.running:
            return ProcessResult(success=True, url=self.url)
        try:
            self._process = subprocess.Popen(
                self.command,
                cwd=project_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError as exc:
            return ProcessResult(success=False, error=f"preview server not available: {exc}")

        assert self._process.stdout is not None
        lines: queue.Queue[str | None] = queue.Queue()
        threading.Thread(target=_pump, args=(self._process.stdout, lines), daemon=True).start()

        seen: list[str] = []
        stream_closed = False
        deadline = time.monotonic() + self.timeout_s
        # Vite prints "ready in" one line before the URL; give the URL a short grace period.
        ready_at: float | None = None
        while time.monotonic() < deadline:
            if ready_at is not None and time.monotonic() - ready_at > 2.0:
                return ProcessResult(success=True, output="".join(seen), url=self.url)
            try:
                line = lines.get(timeout=0.25)
            except queue.Empty:
                continue
            if line is None:
                stream_closed = True
                break
            clean = ANSI_RE.sub("", line)
            seen.append(clean)
            url_match = READY_URL_RE.search(clean)
            if url_match is not None:
                self.url = url_match.group(1)
                logger.info("preview server ready at %s", self.url)
                return ProcessResult(success=True, output="".join(seen), url=self.url)
            if ready_at is None and READY_MARKER_RE.search(clean):
                ready_at = time.monotonic()

        output = "".join(seen)
        if stream_closed:
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning("preview server closed its output but is still running")
        if ready_at is not None and self.running:
            return ProcessResult(success=True, output=output, url=self.url)
        if self._process.poll() is not None:
            code = self._process.returncode
            self._process = None
            return ProcessResult(success=False, output=output, error=f"preview server exited with code {code}")
        self.stop()
        return ProcessResult(success=False, output=output, error=f"no ready signal within {self.timeout_s}s")

    def stop(self) -> None:
        if self._process is None:
            return
        if self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
        self._process = None
        self.url = None
