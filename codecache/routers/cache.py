"""Cache refresh, staleness and operation tracking API."""
from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from pydantic import BaseModel, Field

from codecache.db.file_watcher import file_watcher
from codecache.errors import CodeCacheError
from codecache.project_manager import normalize_project_path
from codecache.routers.deps import get_cache_engine, http_error
from codecache.services.scanner import ScanOptions

logger = logging.getLogger("codecache.cache")

cache_router = APIRouter(prefix="/api/cache", tags=["cache"])


class RefreshRequest(BaseModel):
    projectPath: str = Field(..., min_length=1)
    incremental: bool = True
    background: bool = False
    includeBinary: bool = False
    noGitignore: bool = False
    noPresetExcludes: bool = False
    trigger: str = "api"

    def scan_options(self) -> ScanOptions:
        return ScanOptions(
            include_binary=self.includeBinary,
            no_gitignore=self.noGitignore,
            no_preset_excludes=self.noPresetExcludes,
        )


async def _run_background_refresh(cache_engine, body: RefreshRequest, operation_id: str) -> None:
    try:
        await cache_engine.refresh(
            body.projectPath,
            body.scan_options(),
            incremental=body.incremental,
            operation_id=operation_id,
            trigger=body.trigger,
        )
    except CodeCacheError as exc:
        logger.error(f"Background refresh {operation_id} failed: {exc}")


@cache_router.post("/refresh")
async def trigger_refresh(request: Request, background_tasks: BackgroundTasks, body: RefreshRequest):
    """Run a full or incremental refresh, optionally in the background."""
    cache_engine = get_cache_engine(request)
    mode = "incremental" if body.incremental else "full"

    if body.background:
        try:
            project_path = normalize_project_path(body.projectPath)
        except CodeCacheError as exc:
            raise http_error(exc) from exc
        operation_id = await cache_engine.start_operation(
            f"{mode}_refresh",
            project_path,
            trigger=body.trigger,
            metadata={
                "includeBinary": body.includeBinary,
                "noGitignore": body.noGitignore,
                "noPresetExcludes": body.noPresetExcludes,
            },
        )
        background_tasks.add_task(_run_background_refresh, cache_engine, body, operation_id)
        return {
            "status": "ok",
            "mode": "background",
            "message": f"{mode.capitalize()} refresh triggered in background",
            "operationId": operation_id,
        }

    try:
        result = await cache_engine.refresh(
            body.projectPath,
            body.scan_options(),
            incremental=body.incremental,
            trigger=body.trigger,
        )
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc
    return {"status": "ok", "mode": "foreground", "result": result.payload()}


@cache_router.get("/status")
async def get_cache_status(
    request: Request,
    path: str = Query(..., min_length=1),
    includeBinary: bool = False,
    noGitignore: bool = False,
):
    """Report whether a project's cache is stale without modifying it."""
    cache_engine = get_cache_engine(request)
    options = ScanOptions(include_binary=includeBinary, no_gitignore=noGitignore)
    try:
        return await cache_engine.check_status(path, options)
    except (CodeCacheError, ValueError) as exc:
        raise http_error(exc) from exc


@cache_router.get("/engine")
async def get_engine_status(request: Request):
    cache_engine = get_cache_engine(request)
    return {
        "status": "active",
        "watcher": "running" if file_watcher.is_running else "stopped",
        "operations": await cache_engine.get_observability_snapshot(),
    }


@cache_router.get("/operations")
async def list_cache_operations(request: Request, limit: int = Query(20, ge=1, le=200)):
    """List recent refresh operations."""
    cache_engine = get_cache_engine(request)
    operations = await cache_engine.list_operations(limit=limit)
    return {"status": "ok", "count": len(operations), "items": operations}


@cache_router.get("/operations/{operation_id}")
async def get_cache_operation(request: Request, operation_id: str):
    cache_engine = get_cache_engine(request)
    operation = await cache_engine.get_operation(operation_id)
    if not operation:
        raise HTTPException(status_code=404, detail=f"Operation {operation_id} not found")
    return operation
