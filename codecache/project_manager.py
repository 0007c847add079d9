"""Project registry backed by the cache database."""
from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from codecache.db.factory import get_project_repository
from codecache.errors import ConfigurationError, ProjectNotFoundError
from codecache.models import Project

logger = logging.getLogger("codecache")


def normalize_project_path(raw: str | Path | None) -> str:
    """Absolute, normalized form used as the project's unique key."""
    text = str(raw or "").strip()
    if not text:
        raise ConfigurationError("project path is required")
    return str(Path(text).expanduser().resolve(strict=False))


def require_directory(project_path: str) -> Path:
    root = Path(project_path)
    if not root.is_dir():
        raise ConfigurationError(f"project path '{project_path}' is not a directory")
    return root


class ProjectManager:
    """Adds, lists, resolves and deletes cached projects."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db
        self.repo = get_project_repository(db)

    async def get_or_create(self, project_path: str | Path) -> Project:
        path = normalize_project_path(project_path)
        return Project.from_row(await self.repo.get_or_create(path))

    async def add_project(self, project_path: str | Path) -> Project:
        path = normalize_project_path(project_path)
        existing = await self.repo.get_by_path(path)
        if existing:
            return Project.from_row(existing)
        project = Project.from_row(await self.repo.get_or_create(path))
        logger.info("Project added: %s (id=%s)", project.path, project.id)
        return project

    async def get_project(self, project_path: str | Path) -> Project:
        """Resolve an existing project; read-only callers never create one."""
        path = normalize_project_path(project_path)
        row = await self.repo.get_by_path(path)
        if not row:
            raise ProjectNotFoundError(path)
        return Project.from_row(row)

    async def list_projects(self) -> list[Project]:
        return [Project.from_row(row) for row in await self.repo.list_all()]

    async def delete_project(self, project_path: str | Path) -> None:
        path = normalize_project_path(project_path)
        if await self.repo.delete(path) == 0:
            raise ProjectNotFoundError(path)
        logger.info("Project deleted: %s", path)
