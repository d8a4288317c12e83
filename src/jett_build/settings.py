from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    max_task_attempts: int = 3
    dependency_fix_attempts: int = 2
    settle_delay_ms: int = 2_000
    history_dir: str = ".jett/history"
    state_file: str = ".jett/project.json"
    model_codegen: str = "gpt-4o"
    model_verifier: str = "gpt-4o-mini"
    suggestion_count: int = 3
    recursion_limit: int = 1_000
    preview_timeout_s: int = 30
    install_timeout_s: int = 300

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            max_task_attempts=_get_env_int("JETT_MAX_TASK_ATTEMPTS", default=3, minimum=1, maximum=10),
            dependency_fix_attempts=_get_env_int("JETT_DEPENDENCY_FIX_ATTEMPTS", default=2, minimum=0, maximum=10),
            settle_delay_ms=_get_env_int("JETT_SETTLE_DELAY_MS", default=2_000, minimum=0, maximum=60_000),
            history_dir=os.getenv("JETT_HISTORY_DIR", ".jett/history"),
            state_file=os.getenv("JETT_STATE_FILE", ".jett/project.json"),
            model_codegen=os.getenv("JETT_MODEL", "gpt-4o"),
            model_verifier=os.getenv("JETT_VERIFIER_MODEL", "gpt-4o-mini"),
            suggestion_count=_get_env_int("JETT_SUGGESTION_COUNT", default=3, minimum=0, maximum=3),
            recursion_limit=_get_env_int("JETT_RECURSION_LIMIT", default=1_000, minimum=100),
            preview_timeout_s=_get_env_int("JETT_PREVIEW_TIMEOUT_S", default=30, minimum=1, maximum=600),
            install_timeout_s=_get_env_int("JETT_INSTALL_TIMEOUT_S", default=300, minimum=1, maximum=3_600),
        ).normalized()

    @property
    def settle_delay_seconds(self) -> float:
        return self.settle_delay_ms / 1000.0

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        model_codegen = self.model_codegen.strip()
        if not model_codegen:
            raise ValueError("JETT_MODEL must be non-empty")
        model_verifier = self.model_verifier.strip()
        if not model_verifier:
            raise ValueError("JETT_VERIFIER_MODEL must be non-empty")

        if self.max_task_attempts < 1:
            raise ValueError(f"JETT_MAX_TASK_ATTEMPTS must be >= 1, got: {self.max_task_attempts}")
        if self.dependency_fix_attempts < 0:
            raise ValueError(
                f"JETT_DEPENDENCY_FIX_ATTEMPTS must be >= 0, got: {self.dependency_fix_attempts}"
            )
        if self.settle_delay_ms < 0:
            raise ValueError(f"JETT_SETTLE_DELAY_MS must be >= 0, got: {self.settle_delay_ms}")
        if not 0 <= self.suggestion_count <= 3:
            raise ValueError(f"JETT_SUGGESTION_COUNT must be between 0 and 3, got: {self.suggestion_count}")
        if self.recursion_limit > 100_000:
            raise ValueError(f"JETT_RECURSION_LIMIT must be <= 100000, got: {self.recursion_limit}")

        # Both paths live inside the project tree and must stay relative to it.
        history_dir = self.history_dir.strip().strip("/")
        if not history_dir:
            raise ValueError("JETT_HISTORY_DIR must be non-empty")
        if Path(history_dir).is_absolute() or ".." in Path(history_dir).parts:
            raise ValueError(f"JETT_HISTORY_DIR must be project-relative, got: {self.history_dir!r}")
        state_file = self.state_file.strip().strip("/")
        if not state_file:
            raise ValueError("JETT_STATE_FILE must be non-empty")
        if ".." in Path(state_file).parts:
            raise ValueError(f"JETT_STATE_FILE must be project-relative, got: {self.state_file!r}")

        return RuntimeSettings(
            max_task_attempts=self.max_task_attempts,
            dependency_fix_attempts=self.dependency_fix_attempts,
            settle_delay_ms=self.settle_delay_ms,
            history_dir=history_dir,
            state_file=state_file,
            model_codegen=model_codegen,
            model_verifier=model_verifier,
            suggestion_count=self.suggestion_count,
            recursion_limit=self.recursion_limit,
            preview_timeout_s=self.preview_timeout_s,
            install_timeout_s=self.install_timeout_s,
        )

    def history_path(self, project_dir: Path) -> Path:
        return project_dir / self.history_dir

    def state_path(self, project_dir: Path) -> Path:
        return project_dir / self.state_file


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound (default 10M, prevents absurd values).

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
