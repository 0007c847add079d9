"""Saved filter profile API."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Query

from codecache.db import connection
from codecache.errors import CodeCacheError
from codecache.models import FilterProfile, FilterSpec
from codecache.project_manager import ProjectManager
from codecache.routers.deps import http_error
from codecache.services import filter_profiles

profiles_router = APIRouter(prefix="/api/profiles", tags=["profiles"])


@profiles_router.get("", response_model=list[FilterProfile])
async def list_profiles(path: str = Query(..., min_length=1)):
    db = await connection.get_connection()
    try:
        project = await ProjectManager(db).get_project(path)
        return await filter_profiles.list_profiles(db, project.id)
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc


@profiles_router.get("/{name}", response_model=FilterSpec)
async def load_profile(name: str, path: str = Query(..., min_length=1)):
    db = await connection.get_connection()
    try:
        project = await ProjectManager(db).get_project(path)
        return await filter_profiles.load_profile(db, project.id, name)
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc


@profiles_router.put("/{name}", response_model=FilterProfile)
async def save_profile(
    name: str,
    path: str = Query(..., min_length=1),
    spec: dict[str, Any] = Body(...),
):
    """Create or overwrite a profile after validating its patterns."""
    db = await connection.get_connection()
    try:
        project = await ProjectManager(db).get_project(path)
        return await filter_profiles.save_profile(db, project.id, name, spec)
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc


@profiles_router.delete("/{name}")
async def delete_profile(name: str, path: str = Query(..., min_length=1)):
    db = await connection.get_connection()
    try:
        project = await ProjectManager(db).get_project(path)
        await filter_profiles.delete_profile(db, project.id, name)
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc
    return {"status": "ok", "deleted": name}
