"""Ignore-rule resolution for project scans.

Combines the project's root `.gitignore` with a fixed list of preset
exclusions for dependency, build and VCS directories.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable

import pathspec

from codecache.errors import ConfigurationError

logger = logging.getLogger("codecache.scanner")

# Each entry is a regular expression for one whole path segment.
PRESET_EXCLUDE_PATTERNS = (
    r"\.git",
    r"node_modules",
    r"venv",
    r"\.venv",
    r"__pycache__",
    r"\.pytest_cache",
    r"\.tox",
    r"build",
    r"dist",
    r"[^/]*\.egg-info",
    r"target",
    r"vendor",
    r"\.gradle",
    r"\.idea",
    r"\.vscode",
)

# The staleness check only skips version-control metadata.
STATUS_EXCLUDE_PATTERNS = (r"\.git",)


def _compile_segments(patterns: Iterable[str]) -> re.Pattern | None:
    parts = [p for p in patterns if p]
    if not parts:
        return None
    return re.compile(r"(?:^|/)(?:" + "|".join(parts) + r")(?:/|$)")


def _normalize(rel_path: str) -> str:
    return (rel_path or "").replace("\\", "/").strip("/")


def load_gitignore(project_root: Path) -> pathspec.PathSpec | None:
    """Compile `<project_root>/.gitignore`.

    A missing file yields no rules, and so does a file whose patterns fail to
    compile. Any other read failure is a configuration error.
    """
    gitignore = project_root / ".gitignore"
    try:
        text = gitignore.read_text(encoding="utf-8", errors="ignore")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise ConfigurationError(f"unable to read {gitignore}: {exc}") from exc

    lines = text.splitlines()
    if not any(line.strip() and not line.strip().startswith("#") for line in lines):
        return None
    try:
        return pathspec.PathSpec.from_lines("gitwildmatch", lines)
    except ValueError as exc:
        logger.warning("Ignoring malformed .gitignore at %s: %s", gitignore, exc)
        return None


class IgnoreRules:
    """Decides, per relative path, whether a walker should skip it."""

    def __init__(self, gitignore_spec: pathspec.PathSpec | None = None, preset: re.Pattern | None = None):
        self._spec = gitignore_spec
        self._preset = preset

    @classmethod
    def load(
        cls,
        project_root: Path,
        *,
        no_gitignore: bool = False,
        no_preset_excludes: bool = False,
        preset_patterns: Iterable[str] = PRESET_EXCLUDE_PATTERNS,
    ) -> "IgnoreRules":
        spec = None if no_gitignore else load_gitignore(project_root)
        preset = None if no_preset_excludes else _compile_segments(preset_patterns)
        return cls(spec, preset)

    @property
    def has_gitignore(self) -> bool:
        return self._spec is not None

    def matches_preset(self, rel_path: str) -> bool:
        rel = _normalize(rel_path)
        return bool(rel and self._preset is not None and self._preset.search(rel))

    def matches_gitignore(self, rel_path: str, is_dir: bool = False) -> bool:
        rel = _normalize(rel_path)
        if not rel or self._spec is None:
            return False
        if self._spec.match_file(rel):
            return True
        return is_dir and self._spec.match_file(f"{rel}/")

    def should_skip(self, rel_path: str, is_dir: bool = False) -> bool:
        return self.matches_preset(rel_path) or self.matches_gitignore(rel_path, is_dir)
