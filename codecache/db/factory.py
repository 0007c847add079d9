"""Repository factory so services never construct repositories directly."""
from __future__ import annotations

import aiosqlite

from codecache.db.repositories.files import SqliteFileRepository
from codecache.db.repositories.profiles import SqliteProfileRepository
from codecache.db.repositories.projects import SqliteProjectRepository


def get_project_repository(db: aiosqlite.Connection) -> SqliteProjectRepository:
    return SqliteProjectRepository(db)


def get_file_repository(db: aiosqlite.Connection) -> SqliteFileRepository:
    return SqliteFileRepository(db)


def get_profile_repository(db: aiosqlite.Connection) -> SqliteProfileRepository:
    return SqliteProfileRepository(db)
