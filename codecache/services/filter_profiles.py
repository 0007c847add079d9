"""Saved filter profiles and filter resolution for queries."""
from __future__ import annotations

import json
import logging
from typing import Any

import aiosqlite

from codecache.db.factory import get_profile_repository
from codecache.errors import ConfigurationError, ProfileNotFoundError
from codecache.models import FilterProfile, FilterSpec
from codecache.services.filter_engine import Filter, compile_filter, parse_filter_spec

logger = logging.getLogger("codecache.profiles")


async def save_profile(db: aiosqlite.Connection, project_id: int, name: str, spec: Any) -> FilterProfile:
    """Validate `spec` by compiling it, then create or overwrite the profile."""
    profile_name = (name or "").strip()
    if not profile_name:
        raise ConfigurationError("profile name is required")
    parsed = parse_filter_spec(spec)
    compile_filter(parsed)
    await get_profile_repository(db).upsert(project_id, profile_name, json.dumps(parsed.model_dump()))
    logger.info("Profile '%s' saved for project %s", profile_name, project_id)
    return FilterProfile(name=profile_name, data=parsed)


async def load_profile(db: aiosqlite.Connection, project_id: int, name: str) -> FilterSpec:
    raw = await get_profile_repository(db).get(project_id, name)
    if raw is None:
        raise ProfileNotFoundError(name)
    return parse_filter_spec(raw)


async def list_profiles(db: aiosqlite.Connection, project_id: int) -> list[FilterProfile]:
    rows = await get_profile_repository(db).list_all(project_id)
    return [FilterProfile(name=row["name"], data=parse_filter_spec(row["data_json"])) for row in rows]


async def delete_profile(db: aiosqlite.Connection, project_id: int, name: str) -> None:
    if await get_profile_repository(db).delete(project_id, name) == 0:
        raise ProfileNotFoundError(name)
    logger.info("Profile '%s' deleted for project %s", name, project_id)


async def resolve_filter(
    db: aiosqlite.Connection,
    project_id: int,
    profile_name: str = "",
    spec: Any = None,
) -> Filter:
    """Compile the filter for a query; a named profile wins over an inline spec."""
    if profile_name:
        return compile_filter(await load_profile(db, project_id, profile_name))
    return compile_filter(spec)
