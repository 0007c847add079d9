"""Scan → reconcile → persist refresh engine.

Runs the concurrent scanner off the event loop, diffs its output against the
stored snapshot and applies the result transactionally. Every refresh is an
observable operation with phase/counter updates, and progress events are
delivered through an optional callback instead of being printed.
"""
from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import os
import stat
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

import aiosqlite

from codecache import config
from codecache.date_utils import mtime_from_ns, parse_mtime, utc_now_iso
from codecache.db.factory import get_file_repository, get_project_repository
from codecache.models import NOT_SCANNED_YET, RefreshResult
from codecache.observability import record_file_changes, record_refresh, start_span
from codecache.project_manager import normalize_project_path, require_directory
from codecache.services.ignore_rules import STATUS_EXCLUDE_PATTERNS, IgnoreRules
from codecache.services.reconcile import reconcile
from codecache.services.scanner import ScanOptions, scan_project, sniff_is_binary, walk_relative

logger = logging.getLogger("codecache.cache")

ProgressCallback = Callable[[str, dict[str, Any]], Union[None, Awaitable[None]]]


def find_first_difference(
    project_root: Path,
    rules: IgnoreRules,
    cached_mtimes: dict[str, Optional[datetime]],
    include_binary: bool = False,
) -> tuple[str, str] | None:
    """Walk the tree and return (reason, relative_path) for the first change found.

    Only modification times are compared. Returns None when the cache matches.
    """
    remaining = dict(cached_mtimes)
    for _, rel_paths in walk_relative(project_root, rules):
        for rel_path in rel_paths:
            full_path = project_root / rel_path
            try:
                st = os.lstat(full_path)
                if not stat.S_ISREG(st.st_mode):
                    continue
                if rel_path not in remaining:
                    if not include_binary and sniff_is_binary(full_path):
                        continue
                    return "new_file", rel_path
            except OSError as exc:
                logger.debug("Status check skipping %s: %s", rel_path, exc)
                continue
            if remaining.pop(rel_path) != mtime_from_ns(st.st_mtime_ns):
                return "modified_file", rel_path
    if remaining:
        return "deleted_file", min(remaining)
    return None


class CacheEngine:
    """Refreshes and inspects the per-project file metadata cache.

    Refreshes of the same project are serialized; refreshes of different
    projects may interleave, and their writes queue on the connection's
    write lock. A refresh called without options reuses the options of the
    last refresh of that project.
    """

    def __init__(self, db: aiosqlite.Connection, *, batch_size: int | None = None, workers: int | None = None):
        self.db = db
        self.project_repo = get_project_repository(db)
        self.file_repo = get_file_repository(db)
        self.batch_size = max(1, int(batch_size or config.BATCH_SIZE))
        self.workers = workers
        self._project_locks: dict[str, asyncio.Lock] = {}
        self._last_options: dict[str, ScanOptions] = {}
        self._ops_lock = asyncio.Lock()
        self._operations: dict[str, dict[str, Any]] = {}
        self._operation_order: list[str] = []
        self._active_operation_ids: set[str] = set()
        self._max_operation_history = config.OPERATION_HISTORY

    # ── Refresh ─────────────────────────────────────────────────────

    async def refresh(
        self,
        project_path: str | Path,
        options: ScanOptions | None = None,
        *,
        incremental: bool = True,
        progress: ProgressCallback | None = None,
        operation_id: str | None = None,
        trigger: str = "api",
    ) -> RefreshResult:
        """Bring the cached snapshot of a project in line with the filesystem."""
        try:
            path = normalize_project_path(project_path)
            options = options or self._last_options.get(path) or ScanOptions()
            root = require_directory(path)
            rules = IgnoreRules.load(
                root,
                no_gitignore=options.no_gitignore,
                no_preset_excludes=options.no_preset_excludes,
            )
        except Exception as exc:
            await self._finish_operation(operation_id, status="failed", error=str(exc))
            raise
        mode = "incremental" if incremental else "full"

        lock = self._project_locks.setdefault(path, asyncio.Lock())
        async with lock:
            project = await self.project_repo.get_or_create(path)
            project_id = int(project["id"])
            if not operation_id:
                operation_id = await self._start_operation(
                    f"{mode}_refresh",
                    path,
                    trigger,
                    {
                        "includeBinary": options.include_binary,
                        "noGitignore": options.no_gitignore,
                        "noPresetExcludes": options.no_preset_excludes,
                    },
                )

            t0 = time.monotonic()
            try:
                with start_span("codecache.refresh", {"project.path": path, "refresh.mode": mode}):
                    if incremental:
                        result = await self._refresh_incremental(
                            project_id, root, rules, options, progress, operation_id
                        )
                    else:
                        result = await self._refresh_full(
                            project_id, root, rules, options, progress, operation_id
                        )
                result.operationId = operation_id
                result.durationMs = int((time.monotonic() - t0) * 1000)
                await self._emit(progress, operation_id, "completed", result.payload())
            except Exception as exc:
                elapsed = int((time.monotonic() - t0) * 1000)
                record_refresh(mode, "failed", elapsed, project_id=str(project_id))
                await self._finish_operation(operation_id, status="failed", error=str(exc))
                raise

            self._last_options[path] = options
            record_refresh(mode, result.status, result.durationMs, project_id=str(project_id))
            await self._finish_operation(operation_id, status="completed", stats=result.payload())
            logger.info(
                f"Refresh complete for {path} ({mode}): status={result.status} "
                f"in {result.durationMs}ms"
            )
            return result

    async def _scan(
        self,
        root: Path,
        rules: IgnoreRules,
        options: ScanOptions,
        progress: ProgressCallback | None,
        operation_id: str,
    ) -> list:
        await self._emit(progress, operation_id, "scanning_local_files", {})
        records = await asyncio.to_thread(scan_project, root, rules, options, self.workers)
        await self._emit(progress, operation_id, "finished_scanning_local_files", {"count": len(records)})
        return records

    async def _refresh_full(
        self,
        project_id: int,
        root: Path,
        rules: IgnoreRules,
        options: ScanOptions,
        progress: ProgressCallback | None,
        operation_id: str,
    ) -> RefreshResult:
        await self._emit(progress, operation_id, "starting_full_scan", {"projectPath": str(root)})
        records = await self._scan(root, rules, options, progress, operation_id)
        await self._emit(progress, operation_id, "clearing_old_cache", {})
        await self._emit(progress, operation_id, "inserting_new_data", {"count": len(records)})
        await self.file_repo.replace_all(project_id, records, self.batch_size)
        await self.project_repo.mark_scanned(project_id, utc_now_iso())
        record_file_changes(project_id=str(project_id), added=len(records))
        return RefreshResult(mode="full", status="replaced", projectId=project_id, scanned=len(records))

    async def _refresh_incremental(
        self,
        project_id: int,
        root: Path,
        rules: IgnoreRules,
        options: ScanOptions,
        progress: ProgressCallback | None,
        operation_id: str,
    ) -> RefreshResult:
        await self._emit(progress, operation_id, "starting_incremental_scan", {"projectPath": str(root)})
        records = await self._scan(root, rules, options, progress, operation_id)

        snapshot = await self.file_repo.snapshot(project_id)
        await self._emit(progress, operation_id, "fetched_db_metadata", {"count": len(snapshot)})

        changes = reconcile(snapshot, records)
        counts = changes.counts()
        await self._emit(progress, operation_id, "analyzed_diff", counts)

        if changes.is_empty:
            await self.project_repo.mark_scanned(project_id, utc_now_iso())
            return RefreshResult(
                mode="incremental",
                status="up_to_date",
                projectId=project_id,
                added=0,
                modified=0,
                deleted=0,
                totalScanned=len(records),
            )

        await self._emit(progress, operation_id, "applying_changes", counts)
        await self.file_repo.apply_changes(
            project_id,
            changes.to_insert,
            changes.to_update,
            changes.to_delete,
            self.batch_size,
        )
        # Only reached once the transaction committed.
        await self.project_repo.mark_scanned(project_id, utc_now_iso())
        record_file_changes(
            project_id=str(project_id),
            added=counts["new"],
            modified=counts["modified"],
            deleted=counts["deleted"],
        )
        return RefreshResult(
            mode="incremental",
            status="updated",
            projectId=project_id,
            added=counts["new"],
            modified=counts["modified"],
            deleted=counts["deleted"],
            totalScanned=len(records),
        )

    async def _emit(
        self,
        progress: ProgressCallback | None,
        operation_id: str,
        event: str,
        data: dict[str, Any],
    ) -> None:
        await self._update_operation(operation_id, phase=event, counters=data)
        if progress is None:
            return
        outcome = progress(event, dict(data))
        if inspect.isawaitable(outcome):
            await outcome

    # ── Staleness check ─────────────────────────────────────────────

    async def check_status(
        self,
        project_path: str | Path,
        options: ScanOptions | None = None,
    ) -> dict[str, Any]:
        """Report whether the cache differs from disk, without writing file rows.

        Honours .gitignore but skips only `.git` among the preset exclusions.
        """
        options = options or ScanOptions()
        path = normalize_project_path(project_path)
        root = require_directory(path)
        rules = IgnoreRules.load(
            root,
            no_gitignore=options.no_gitignore,
            preset_patterns=STATUS_EXCLUDE_PATTERNS,
        )
        project = await self.project_repo.get_or_create(path)
        snapshot = await self.file_repo.snapshot(int(project["id"]))
        cached = {rel: parse_mtime(mtime) for rel, (mtime, _) in snapshot.items()}

        difference = await asyncio.to_thread(
            find_first_difference, root, rules, cached, options.include_binary
        )
        reason, first_path = difference if difference else ("up_to_date", "")
        last_scan = str(project.get("last_scan_timestamp") or NOT_SCANNED_YET)
        return {
            "projectId": int(project["id"]),
            "projectPath": path,
            "isStale": difference is not None,
            "reason": reason,
            "path": first_path,
            "cachedFiles": len(snapshot),
            "lastScanTimestamp": last_scan,
        }

    # ── Operation tracking ──────────────────────────────────────────

    async def start_operation(
        self,
        kind: str,
        project_path: str,
        trigger: str = "api",
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Create an observable operation and return its ID."""
        return await self._start_operation(kind, project_path, trigger, metadata or {})

    async def list_operations(self, limit: int = 20) -> list[dict[str, Any]]:
        """Return latest operation snapshots, newest first."""
        async with self._ops_lock:
            op_ids = self._operation_order[: max(1, limit)]
            return [copy.deepcopy(self._operations[op_id]) for op_id in op_ids if op_id in self._operations]

    async def get_operation(self, operation_id: str) -> dict[str, Any] | None:
        """Return a single operation snapshot."""
        async with self._ops_lock:
            op = self._operations.get(operation_id)
            if not op:
                return None
            return copy.deepcopy(op)

    async def get_observability_snapshot(self) -> dict[str, Any]:
        async with self._ops_lock:
            active = [
                copy.deepcopy(self._operations[op_id])
                for op_id in self._operation_order
                if op_id in self._active_operation_ids and op_id in self._operations
            ]
            latest = [
                copy.deepcopy(self._operations[op_id])
                for op_id in self._operation_order[:5]
                if op_id in self._operations
            ]
            return {
                "activeOperationCount": len(active),
                "activeOperations": active,
                "recentOperations": latest,
                "trackedOperationCount": len(self._operations),
            }

    async def _start_operation(
        self,
        kind: str,
        project_path: str,
        trigger: str,
        metadata: dict[str, Any],
    ) -> str:
        op_id = f"OP-{uuid.uuid4()}"
        now = datetime.now(timezone.utc).isoformat()
        payload = {
            "id": op_id,
            "kind": kind,
            "projectPath": project_path,
            "trigger": trigger,
            "status": "running",
            "phase": "queued",
            "message": "",
            "startedAt": now,
            "updatedAt": now,
            "finishedAt": "",
            "durationMs": 0,
            "counters": {},
            "stats": {},
            "metadata": metadata,
            "error": "",
        }
        async with self._ops_lock:
            self._operations[op_id] = payload
            self._operation_order.insert(0, op_id)
            self._active_operation_ids.add(op_id)
            if len(self._operation_order) > self._max_operation_history:
                stale_ids = self._operation_order[self._max_operation_history :]
                self._operation_order = self._operation_order[: self._max_operation_history]
                for stale_id in stale_ids:
                    self._operations.pop(stale_id, None)
                    self._active_operation_ids.discard(stale_id)
        logger.info("Operation started [%s] %s (project=%s trigger=%s)", op_id, kind, project_path, trigger)
        return op_id

    async def _update_operation(
        self,
        operation_id: str | None,
        *,
        phase: str | None = None,
        message: str | None = None,
        counters: dict[str, Any] | None = None,
    ) -> None:
        if not operation_id:
            return
        now = datetime.now(timezone.utc).isoformat()
        changed_phase = ""
        async with self._ops_lock:
            operation = self._operations.get(operation_id)
            if not operation:
                return
            if phase and phase != operation.get("phase"):
                operation["phase"] = phase
                changed_phase = phase
            if message is not None:
                operation["message"] = message
            if counters:
                operation.setdefault("counters", {}).update(counters)
            operation["updatedAt"] = now

        if changed_phase:
            logger.info("Operation update [%s] %s", operation_id, changed_phase)

    async def _finish_operation(
        self,
        operation_id: str | None,
        *,
        status: str,
        stats: dict[str, Any] | None = None,
        error: str = "",
    ) -> None:
        if not operation_id:
            return
        now = datetime.now(timezone.utc)
        async with self._ops_lock:
            operation = self._operations.get(operation_id)
            if not operation:
                return
            operation["status"] = status
            operation["updatedAt"] = now.isoformat()
            operation["finishedAt"] = now.isoformat()
            if stats:
                operation.setdefault("stats", {}).update(stats)
            if error:
                operation["error"] = error
            started_at = parse_mtime(str(operation.get("startedAt") or ""))
            operation["durationMs"] = (
                max(0, int((now - started_at).total_seconds() * 1000)) if started_at else 0
            )
            self._active_operation_ids.discard(operation_id)

        if status == "failed":
            logger.error("Operation failed [%s]: %s", operation_id, error)
        else:
            logger.info("Operation finished [%s] status=%s", operation_id, status)
