"""SQLite implementation of FileRepository (the per-project file snapshot)."""
from __future__ import annotations

import logging
import sqlite3
from typing import Iterable, Sequence

import aiosqlite

from codecache.date_utils import format_mtime
from codecache.db.connection import transaction
from codecache.errors import PersistenceError
from codecache.models import FileRecord

logger = logging.getLogger("codecache.db")

# SQLite's default bound-parameter limit is 999; one slot is the project id.
_MAX_IN_PARAMS = 900

_COLUMNS = (
    "relative_path, filename, extension, size_bytes, line_count, "
    "is_text, last_mod_time, content_hash"
)


def _chunks(items: Sequence, size: int) -> Iterable[Sequence]:
    step = max(1, int(size))
    for start in range(0, len(items), step):
        yield items[start:start + step]


def _record_params(project_id: int, record: FileRecord) -> tuple:
    return (
        project_id,
        record.relative_path,
        record.filename,
        record.extension,
        int(record.size_bytes),
        int(record.line_count),
        1 if record.is_text else 0,
        format_mtime(record.last_mod_time),
        record.content_hash,
    )


def _row_to_dict(row: aiosqlite.Row) -> dict:
    data = dict(row)
    if "is_text" in data:
        data["is_text"] = bool(data["is_text"])
    return data


class SqliteFileRepository:
    """Cached FileRecords, scoped to a project and unique by relative path.

    Bulk writes run in a single transaction and are chunked to `batch_size`
    rows per statement; a failure anywhere rolls back the whole call.
    """

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def snapshot(self, project_id: int) -> dict[str, tuple[str, str]]:
        """Return {relative_path: (last_mod_time, content_hash)}."""
        async with self.db.execute(
            "SELECT relative_path, last_mod_time, content_hash FROM file_metadata WHERE project_id = ?",
            (project_id,),
        ) as cur:
            return {row[0]: (row[1], row[2]) for row in await cur.fetchall()}

    async def list_records(self, project_id: int, text_only: bool = False) -> list[dict]:
        query = f"SELECT {_COLUMNS} FROM file_metadata WHERE project_id = ?"
        params: list = [project_id]
        if text_only:
            query += " AND is_text = 1"
        query += " ORDER BY relative_path ASC"
        async with self.db.execute(query, tuple(params)) as cur:
            return [_row_to_dict(r) for r in await cur.fetchall()]

    async def list_paths(self, project_id: int, text_only: bool = False) -> list[str]:
        query = "SELECT relative_path FROM file_metadata WHERE project_id = ?"
        if text_only:
            query += " AND is_text = 1"
        query += " ORDER BY relative_path ASC"
        async with self.db.execute(query, (project_id,)) as cur:
            return [row[0] for row in await cur.fetchall()]

    async def get_records(self, project_id: int, paths: Sequence[str]) -> list[dict]:
        """Fetch a subset of records by relative path, ordered by path."""
        rows: list[dict] = []
        for chunk in _chunks(list(paths), _MAX_IN_PARAMS):
            placeholders = ",".join("?" for _ in chunk)
            async with self.db.execute(
                f"SELECT {_COLUMNS} FROM file_metadata "
                f"WHERE project_id = ? AND relative_path IN ({placeholders})",
                (project_id, *chunk),
            ) as cur:
                rows.extend(_row_to_dict(r) for r in await cur.fetchall())
        rows.sort(key=lambda item: item["relative_path"])
        return rows

    async def count(self, project_id: int) -> int:
        async with self.db.execute(
            "SELECT COUNT(*) FROM file_metadata WHERE project_id = ?", (project_id,)
        ) as cur:
            row = await cur.fetchone()
            return int(row[0]) if row else 0

    async def replace_all(
        self,
        project_id: int,
        records: Sequence[FileRecord],
        batch_size: int = 100,
    ) -> int:
        """Delete every cached record of the project, then bulk-insert `records`."""
        try:
            async with transaction(self.db):
                await self.db.execute("DELETE FROM file_metadata WHERE project_id = ?", (project_id,))
                await self._insert(project_id, records, batch_size)
        except sqlite3.Error as exc:
            logger.error("Full cache replace failed for project %s: %s", project_id, exc)
            raise PersistenceError(f"failed to replace cached files: {exc}") from exc
        return len(records)

    async def apply_changes(
        self,
        project_id: int,
        to_insert: Sequence[FileRecord],
        to_update: Sequence[FileRecord],
        to_delete: Sequence[str],
        batch_size: int = 100,
    ) -> None:
        """Apply one reconciliation result atomically."""
        try:
            async with transaction(self.db):
                await self._insert(project_id, to_insert, batch_size)
                for chunk in _chunks(list(to_update), batch_size):
                    await self.db.executemany(
                        """UPDATE file_metadata SET
                            filename = ?, extension = ?, size_bytes = ?, line_count = ?,
                            is_text = ?, last_mod_time = ?, content_hash = ?
                           WHERE project_id = ? AND relative_path = ?""",
                        [
                            (*params[2:], params[0], params[1])
                            for params in (_record_params(project_id, r) for r in chunk)
                        ],
                    )
                for chunk in _chunks(list(to_delete), min(batch_size, _MAX_IN_PARAMS)):
                    placeholders = ",".join("?" for _ in chunk)
                    await self.db.execute(
                        f"DELETE FROM file_metadata WHERE project_id = ? AND relative_path IN ({placeholders})",
                        (project_id, *chunk),
                    )
        except sqlite3.Error as exc:
            logger.error("Incremental cache update failed for project %s: %s", project_id, exc)
            raise PersistenceError(f"failed to apply cache changes: {exc}") from exc

    async def _insert(self, project_id: int, records: Sequence[FileRecord], batch_size: int) -> None:
        for chunk in _chunks(list(records), batch_size):
            await self.db.executemany(
                f"INSERT INTO file_metadata (project_id, {_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [_record_params(project_id, r) for r in chunk],
            )
