from __future__ import annotations

from pathlib import Path

import pytest

from jett_build.settings import RuntimeSettings


def test_runtime_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("JETT_MAX_TASK_ATTEMPTS", "JETT_SETTLE_DELAY_MS", "JETT_HISTORY_DIR", "JETT_MODEL"):
        monkeypatch.delenv(name, raising=False)
    settings = RuntimeSettings.from_env()
    assert settings.max_task_attempts == 3
    assert settings.dependency_fix_attempts == 2
    assert settings.settle_delay_seconds == 2.0
    assert settings.history_path(Path("/work/app")) == Path("/work/app/.jett/history")
    assert settings.state_path(Path("/work/app")) == Path("/work/app/.jett/project.json")


def test_runtime_settings_from_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JETT_MAX_TASK_ATTEMPTS", "5")
    monkeypatch.setenv("JETT_SETTLE_DELAY_MS", "0")
    monkeypatch.setenv("JETT_HISTORY_DIR", "/snapshots/")
    monkeypatch.setenv("JETT_MODEL", "  gpt-4.1  ")
    settings = RuntimeSettings.from_env()
    assert settings.max_task_attempts == 5
    assert settings.settle_delay_seconds == 0.0
    assert settings.history_dir == "snapshots"
    assert settings.model_codegen == "gpt-4.1"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("JETT_MAX_TASK_ATTEMPTS", "abc"),
        ("JETT_MAX_TASK_ATTEMPTS", "0"),
        ("JETT_MAX_TASK_ATTEMPTS", "11"),
        ("JETT_SETTLE_DELAY_MS", "-5"),
        ("JETT_HISTORY_DIR", "../outside"),
        ("JETT_STATE_FILE", "   "),
        ("JETT_MODEL", " "),
    ],
)
def test_runtime_settings_invalid_env_raises(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        RuntimeSettings.from_env()


@pytest.mark.parametrize("count", [-1, 4])
def test_normalized_rejects_suggestion_count_outside_rank_range(count: int) -> None:
    with pytest.raises(ValueError, match="JETT_SUGGESTION_COUNT"):
        RuntimeSettings(suggestion_count=count).normalized()
