"""CodeCache FastAPI service: application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from codecache import config
from codecache.db import connection
from codecache.db.cache_engine import CacheEngine
from codecache.db.file_watcher import file_watcher
from codecache.db.sqlite_migrations import run_migrations
from codecache.observability import initialize as initialize_observability, shutdown as shutdown_observability
from codecache.project_manager import ProjectManager
from codecache.routers.analyze import analyze_router, content_router
from codecache.routers.cache import cache_router
from codecache.routers.profiles import profiles_router
from codecache.routers.projects import projects_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("codecache")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("CodeCache service starting up")
    initialize_observability(app)

    db = await connection.get_connection()
    await run_migrations(db)

    cache_engine = CacheEngine(db)
    app.state.cache_engine = cache_engine

    if config.WATCH_ENABLED:
        roots = list(config.WATCH_PATHS)
        if not roots:
            roots = [Path(project.path) for project in await ProjectManager(db).list_projects()]
        await file_watcher.start(cache_engine, roots)

    yield

    logger.info("CodeCache service shutting down")
    await file_watcher.stop()
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="CodeCache API",
    description="Incremental file metadata cache with filtered codebase queries",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(projects_router)
app.include_router(cache_router)
app.include_router(analyze_router)
app.include_router(content_router)
app.include_router(profiles_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "db": "connected" if connection._connection else "disconnected",
        "watcher": "running" if file_watcher.is_running else "stopped",
    }


if __name__ == "__main__":
    uvicorn.run("codecache.main:app", host=config.HOST, port=config.PORT)
