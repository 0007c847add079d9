"""Filtered queries over a project's cached file metadata."""
from __future__ import annotations

from typing import Any, Literal, Optional

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from codecache.db import connection
from codecache.errors import CodeCacheError
from codecache.project_manager import ProjectManager
from codecache.routers.deps import http_error
from codecache.services.codebase_explorer import CodebaseExplorerService, render_tree_text
from codecache.services.filter_profiles import resolve_filter

analyze_router = APIRouter(prefix="/api/analyze", tags=["analyze"])
content_router = APIRouter(prefix="/api/content", tags=["content"])


class QueryRequest(BaseModel):
    projectPath: str = Field(..., min_length=1)
    profileName: str = ""
    filter: Optional[dict[str, Any]] = None


class TreeRequest(QueryRequest):
    format: Literal["json", "text"] = "json"


async def _prepare(body: QueryRequest):
    db = await connection.get_connection()
    project = await ProjectManager(db).get_project(body.projectPath)
    flt = await resolve_filter(db, project.id, body.profileName, body.filter)
    return CodebaseExplorerService(db, project), flt


@analyze_router.post("/filter")
async def filter_files(body: QueryRequest):
    """Metadata of every cached file that passes the filter, ordered by path."""
    try:
        service, flt = await _prepare(body)
        files = await service.list_files(flt)
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc
    return {"count": len(files), "files": files}


@analyze_router.post("/summary")
async def summarize_files(body: QueryRequest):
    try:
        service, flt = await _prepare(body)
        return await service.summary(flt)
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc


@analyze_router.post("/stats")
async def file_stats(body: QueryRequest):
    """Totals overall and per extension."""
    try:
        service, flt = await _prepare(body)
        return await service.stats(flt)
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc


@analyze_router.post("/tree")
async def file_tree(body: TreeRequest):
    try:
        service, flt = await _prepare(body)
        tree = await service.get_tree(flt)
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc
    if body.format == "text":
        return PlainTextResponse(render_tree_text(tree))
    return tree


@content_router.post("")
async def file_contents(body: QueryRequest):
    """Contents of the filtered files keyed by relative path."""
    try:
        service, flt = await _prepare(body)
        return await service.get_contents(flt)
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc
