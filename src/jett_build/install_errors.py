"""Classify dependency-installer output into fixable and unfixable errors."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable

ANSI_RE = re.compile(r"\x1B\[[0-9;]*[a-zA-Z]")
RAW_OUTPUT_LIMIT = 500


@dataclass(frozen=True)
class DetectedError:
    type: str
    message: str
    auto_fixable: bool
    suggestion: str | None = None
    raw_output: str = ""


@dataclass(frozen=True)
class InstallErrorAnalysis:
    errors: list[DetectedError] = field(default_factory=list)

    @property
    def has_auto_fixable(self) -> bool:
        return any(error.auto_fixable for error in self.errors)

    @property
    def summary(self) -> str:
        if not self.errors:
            return "No errors detected"
        if len(self.errors) == 1:
            return self.errors[0].message
        return f"{len(self.errors)} dependency errors"

    @property
    def fix_prompt(self) -> str | None:
        if not self.has_auto_fixable:
            return None
        described: list[str] = []
        for error in self.errors:
            line = f"- {error.message}"
            if error.suggestion:
                line = f"{line}\n  Suggestion: {error.suggestion}"
            described.append(line)
        return (
            "Fix the following dependency installation error(s):\n\n"
            + "\n".join(described)
            + "\n\nInstructions:\n"
            "1. Determine the root cause of each error\n"
            "2. Correct package.json (names, versions, peer dependencies)\n"
            "3. Output ONLY the files that need to be modified"
        )


@dataclass(frozen=True)
class _Pattern:
    type: str
    regex: re.Pattern[str]
    describe: Callable[[re.Match[str]], tuple[str, str | None]]
    auto_fixable: bool


_PATTERNS: tuple[_Pattern, ...] = (
    _Pattern(
        type="package_not_found",
        regex=re.compile(r"npm ERR! 404 Not Found.*?'([^']+)'", re.IGNORECASE | re.DOTALL),
        describe=lambda m: (
            f"Package '{m.group(1)}' not found",
            "Check package name spelling or try a different version",
        ),
        auto_fixable=True,
    ),
    _Pattern(
        type="peer_dependency",
        regex=re.compile(r"npm WARN peer dep missing: ([^,\n]+)", re.IGNORECASE),
        describe=lambda m: (f"Missing peer dependency: {m.group(1)}", "Add the missing peer dependency"),
        auto_fixable=True,
    ),
    _Pattern(
        type="version_conflict",
        regex=re.compile(r"npm ERR! (?:code )?ERESOLVE.*?Could not resolve dependency", re.IGNORECASE | re.DOTALL),
        describe=lambda m: ("Dependency version conflict", "Align conflicting package versions"),
        auto_fixable=True,
    ),
    _Pattern(
        type="enoent",
        regex=re.compile(r"npm ERR! enoent ENOENT.*?'([^']+)'", re.IGNORECASE | re.DOTALL),
        describe=lambda m: (f"File not found: {m.group(1)}", "Ensure package.json exists"),
        auto_fixable=False,
    ),
    _Pattern(
        type="cannot_find_module",
        regex=re.compile(r"Cannot find module '([^']+)'"),
        describe=lambda m: (f"Cannot find module '{m.group(1)}'", f"Add {m.group(1)} to dependencies"),
        auto_fixable=True,
    ),
)

_GENERIC_ERROR_RE = re.compile(r"error|failed", re.IGNORECASE)


def _first_error_line(output: str) -> str:
    lines = output.splitlines()
    for line in lines:
        lowered = line.lower()
        if "error" in lowered and "0 errors" not in lowered:
            return line.strip()[:200]
    return next((line.strip()[:200] for line in lines if len(line.strip()) > 10), "Unknown error")


def analyze_install_output(output: str) -> InstallErrorAnalysis:
    """Match installer output against known failure patterns.

    Output that matches nothing but still mentions an error is reported as a
    single fixable ``unrecognized`` error, so the fixer gets a chance at it.
    """
    clean = ANSI_RE.sub("", output or "")
    raw = (output or "")[:RAW_OUTPUT_LIMIT]
    errors: list[DetectedError] = []
    for pattern in _PATTERNS:
        match = pattern.regex.search(clean)
        if match is None:
            continue
        message, suggestion = pattern.describe(match)
        errors.append(
            DetectedError(
                type=pattern.type,
                message=message,
                auto_fixable=pattern.auto_fixable,
                suggestion=suggestion,
                raw_output=raw,
            )
        )

    if not errors and _GENERIC_ERROR_RE.search(clean):
        errors.append(
            DetectedError(
                type="unrecognized",
                message=_first_error_line(clean),
                auto_fixable=True,
                raw_output=raw,
            )
        )
    return InstallErrorAnalysis(errors=errors)
