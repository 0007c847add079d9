"""Shared router helpers: engine lookup and error translation."""
from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from codecache.errors import (
    ConfigurationError,
    NotFoundError,
    PersistenceError,
    ScanError,
)

logger = logging.getLogger("codecache.api")


def get_cache_engine(request: Request):
    cache_engine = getattr(request.app.state, "cache_engine", None)
    if not cache_engine:
        raise HTTPException(status_code=503, detail="Cache engine not initialized")
    return cache_engine


def http_error(exc: Exception) -> HTTPException:
    """Translate a service-layer exception into an HTTP error."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (ConfigurationError, ValueError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ScanError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, PersistenceError):
        logger.error("Persistence failure: %s", exc)
        return HTTPException(status_code=500, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
