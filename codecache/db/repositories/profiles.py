"""SQLite implementation of ProfileRepository."""
from __future__ import annotations

import aiosqlite

from codecache.db.connection import transaction


class SqliteProfileRepository:
    """Named filter specifications, unique per project."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert(self, project_id: int, name: str, data_json: str) -> None:
        async with transaction(self.db):
            await self.db.execute(
                """INSERT INTO profiles (project_id, profile_name, profile_data_json)
                   VALUES (?, ?, ?)
                   ON CONFLICT(project_id, profile_name) DO UPDATE SET
                       profile_data_json=excluded.profile_data_json
                """,
                (project_id, name, data_json),
            )

    async def get(self, project_id: int, name: str) -> str | None:
        async with self.db.execute(
            "SELECT profile_data_json FROM profiles WHERE project_id = ? AND profile_name = ?",
            (project_id, name),
        ) as cur:
            row = await cur.fetchone()
            return row[0] if row else None

    async def list_all(self, project_id: int) -> list[dict]:
        async with self.db.execute(
            """SELECT profile_name AS name, profile_data_json AS data_json
               FROM profiles WHERE project_id = ? ORDER BY profile_name""",
            (project_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def delete(self, project_id: int, name: str) -> int:
        async with transaction(self.db):
            cur = await self.db.execute(
                "DELETE FROM profiles WHERE project_id = ? AND profile_name = ?",
                (project_id, name),
            )
            deleted = cur.rowcount
            await cur.close()
        return max(0, deleted or 0)
