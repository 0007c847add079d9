"""SQLite implementation of ProjectRepository."""
from __future__ import annotations

import aiosqlite

from codecache.db.connection import transaction
from codecache.errors import PersistenceError
from codecache.models import NOT_SCANNED_YET


class SqliteProjectRepository:
    """One row per cached project, keyed by its absolute path."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get_by_path(self, project_path: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM projects WHERE project_path = ?", (project_path,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def get_by_id(self, project_id: int) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM projects WHERE id = ?", (project_id,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def get_or_create(self, project_path: str) -> dict:
        existing = await self.get_by_path(project_path)
        if existing:
            return existing
        async with transaction(self.db):
            await self.db.execute(
                "INSERT OR IGNORE INTO projects (project_path, last_scan_timestamp) VALUES (?, ?)",
                (project_path, NOT_SCANNED_YET),
            )
        created = await self.get_by_path(project_path)
        if created is None:
            raise PersistenceError(f"project '{project_path}' could not be created")
        return created

    async def list_all(self) -> list[dict]:
        async with self.db.execute("SELECT * FROM projects ORDER BY project_path") as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def delete(self, project_path: str) -> int:
        """Delete a project and, through the cascade, its files and profiles."""
        async with transaction(self.db):
            cur = await self.db.execute(
                "DELETE FROM projects WHERE project_path = ?", (project_path,)
            )
            deleted = cur.rowcount
            await cur.close()
        return max(0, deleted or 0)

    async def mark_scanned(self, project_id: int, timestamp: str) -> None:
        async with transaction(self.db):
            await self.db.execute(
                "UPDATE projects SET last_scan_timestamp = ? WHERE id = ?",
                (timestamp, project_id),
            )
