"""Project registry API."""
from __future__ import annotations

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from codecache.db import connection
from codecache.errors import CodeCacheError
from codecache.models import Project
from codecache.project_manager import ProjectManager
from codecache.routers.deps import http_error

projects_router = APIRouter(prefix="/api/projects", tags=["projects"])


class AddProjectRequest(BaseModel):
    path: str = Field(..., min_length=1)


@projects_router.get("", response_model=list[Project])
async def list_projects():
    db = await connection.get_connection()
    return await ProjectManager(db).list_projects()


@projects_router.post("", response_model=Project)
async def add_project(body: AddProjectRequest):
    """Register a project without scanning it."""
    db = await connection.get_connection()
    try:
        return await ProjectManager(db).add_project(body.path)
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc


@projects_router.delete("")
async def delete_project(path: str = Query(..., min_length=1)):
    """Remove a project with its cached files and saved profiles."""
    db = await connection.get_connection()
    try:
        await ProjectManager(db).delete_project(path)
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc
    return {"status": "ok", "deleted": path}
