"""Background watcher that keeps project caches fresh.

Change batches from `watchfiles` are grouped by the project root they fall
under, and each touched project gets one incremental refresh per batch.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

from watchfiles import Change, DefaultFilter, awatch

from codecache.errors import CodeCacheError
from codecache.services.ignore_rules import STATUS_EXCLUDE_PATTERNS, IgnoreRules

logger = logging.getLogger("codecache.watcher")

_VCS_RULES = IgnoreRules.load(Path("."), no_gitignore=True, preset_patterns=STATUS_EXCLUDE_PATTERNS)


class FileWatcher:
    """Runs one `awatch` task over every watched project root."""

    def __init__(self, debounce_ms: int = 1600):
        self.debounce_ms = debounce_ms
        self._roots: list[Path] = []
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def roots(self) -> list[Path]:
        return list(self._roots)

    async def start(self, cache_engine, project_roots: Iterable[Path]) -> None:
        if self.is_running:
            logger.warning("Watcher already active for %d root(s)", len(self._roots))
            return
        self._roots = [Path(p).resolve() for p in project_roots if Path(p).is_dir()]
        if not self._roots:
            logger.warning("No existing project directories to watch")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(cache_engine))
        logger.info("Watching %d project root(s): %s", len(self._roots), ", ".join(map(str, self._roots)))

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Watcher stopped")

    async def _run(self, cache_engine) -> None:
        try:
            async for changes in awatch(
                *self._roots,
                watch_filter=DefaultFilter(),
                debounce=self.debounce_ms,
                stop_event=self._stop_event,
            ):
                await self._refresh_touched(cache_engine, self.classify_changes(changes, self._roots))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Watcher loop terminated")

    async def _refresh_touched(self, cache_engine, touched: dict[Path, int]) -> None:
        for root, count in touched.items():
            logger.info("%d change(s) under %s, refreshing incrementally", count, root)
            try:
                await cache_engine.refresh(root, incremental=True, trigger="watcher")
            except CodeCacheError as exc:
                logger.error("Watcher refresh of %s failed: %s", root, exc)

    @staticmethod
    def classify_changes(changes: set[tuple[Change, str]], project_roots: list[Path]) -> dict[Path, int]:
        """Count changes per containing project root, ignoring `.git` internals."""
        touched: dict[Path, int] = {}
        for _change, raw_path in changes:
            path = Path(raw_path)
            root = next((r for r in project_roots if path == r or r in path.parents), None)
            if root is None:
                continue
            rel = path.relative_to(root).as_posix()
            if rel == "." or _VCS_RULES.matches_preset(rel):
                continue
            touched[root] = touched.get(root, 0) + 1
        return touched


file_watcher = FileWatcher()
