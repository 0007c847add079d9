"""SQLite schema for projects, cached file rows and filter profiles.

The base DDL is idempotent; versioned additions go through `_ensure_column`.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("codecache.db")

SCHEMA_VERSION = 2

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Projects ────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS projects (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    project_path         TEXT NOT NULL UNIQUE,
    last_scan_timestamp  TEXT NOT NULL
);

-- ── 2. Cached file metadata (one flat snapshot per project) ───────
CREATE TABLE IF NOT EXISTS file_metadata (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id     INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    relative_path  TEXT NOT NULL,
    filename       TEXT NOT NULL,
    extension      TEXT NOT NULL DEFAULT '',
    size_bytes     INTEGER NOT NULL DEFAULT 0,
    line_count     INTEGER NOT NULL DEFAULT 0,
    is_text        INTEGER NOT NULL DEFAULT 1,
    last_mod_time  TEXT NOT NULL,
    content_hash   TEXT NOT NULL,
    UNIQUE (project_id, relative_path)
);

CREATE INDEX IF NOT EXISTS idx_file_metadata_project ON file_metadata(project_id);

-- ── 3. Saved filter profiles ───────────────────────────────────────
CREATE TABLE IF NOT EXISTS profiles (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id         INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    profile_name       TEXT NOT NULL,
    profile_data_json  TEXT NOT NULL,
    UNIQUE (project_id, profile_name)
);
"""


async def _ensure_column(db: aiosqlite.Connection, table: str, column: str, definition: str) -> None:
    async with db.execute(f"PRAGMA table_info({table})") as cur:
        existing = {row[1] for row in await cur.fetchall()}
    if column not in existing:
        await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


async def _schema_version(db: aiosqlite.Connection) -> int:
    try:
        async with db.execute("SELECT COALESCE(MAX(version), 0) FROM schema_version") as cur:
            row = await cur.fetchone()
    except aiosqlite.OperationalError:
        return 0
    return int(row[0]) if row else 0


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Bring the schema to SCHEMA_VERSION. Safe to call on every startup."""
    version = await _schema_version(db)
    if version >= SCHEMA_VERSION:
        logger.debug("Schema already at version %s", version)
        return

    logger.info("Migrating cache schema from version %s to %s", version, SCHEMA_VERSION)
    await db.executescript(_TABLES)
    if version < 2:
        # v1 rows predate binary tracking and were all text.
        await _ensure_column(db, "file_metadata", "is_text", "INTEGER NOT NULL DEFAULT 1")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_profiles_project ON profiles(project_id, profile_name)")
    await db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    await db.commit()
