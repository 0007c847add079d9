"""Codebase explorer queries over the cached file metadata.

Every query compiles its filter once and evaluates it against the cached
relative paths; nothing here touches the filesystem except content reads.
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import aiosqlite

from codecache.db.factory import get_file_repository
from codecache.models import FileMetadata, Project
from codecache.services.filter_engine import Filter

NO_EXTENSION = "no_extension"


def _normalize_rel_path(raw: str | None) -> str:
    value = str(raw or "").replace("\\", "/").strip()
    if not value:
        return ""
    value = value.lstrip("/")
    if value.startswith("./"):
        value = value[2:]
    parts: list[str] = []
    for token in value.split("/"):
        clean = token.strip()
        if not clean or clean == ".":
            continue
        if clean == "..":
            raise ValueError("Path traversal is not allowed")
        parts.append(clean)
    return "/".join(parts)


def _resolve_safe_path(project_root: Path, requested_path: str) -> tuple[str, Path]:
    rel = _normalize_rel_path(requested_path)
    if not rel:
        raise ValueError("File path cannot be empty")

    root = project_root.resolve(strict=False)
    candidate = (root / rel).resolve(strict=False)
    try:
        candidate.relative_to(root)
    except ValueError as exc:
        raise ValueError("Requested path escapes the project root") from exc
    return rel, candidate


def _read_contents(project_root: Path, paths: list[str]) -> dict[str, str]:
    contents: dict[str, str] = {}
    for rel_path in paths:
        try:
            _, full_path = _resolve_safe_path(project_root, rel_path)
            contents[rel_path] = full_path.read_bytes().decode("utf-8", errors="replace")
        except (OSError, ValueError) as exc:
            contents[rel_path] = f"Error: Unable to read file. {exc}"
    return contents


async def filtered_paths(db: aiosqlite.Connection, project_id: int, flt: Filter) -> list[str]:
    """Relative paths of the project's cached files that pass `flt`, by path."""
    paths = await get_file_repository(db).list_paths(project_id, text_only=flt.text_only)
    return flt.select(paths)


def render_tree_text(root: dict[str, Any]) -> str:
    """Plain-text rendering with box-drawing connectors."""
    lines = [root["name"]]

    def walk(node: dict[str, Any], prefix: str) -> None:
        children = node.get("children") or []
        for idx, child in enumerate(children):
            is_last = idx == len(children) - 1
            connector = "└── " if is_last else "├── "
            if child["is_dir"]:
                size_info = f" ({child['total_file_count']} files, {child['total_size_bytes']} bytes)"
            else:
                size_info = f" ({child['size_bytes']} bytes)"
            marker = " [excluded]" if child.get("status") == "excluded" else ""
            lines.append(f"{prefix}{connector}{child['name']}{size_info}{marker}")
            if child["is_dir"]:
                walk(child, prefix + ("    " if is_last else "│   "))

    walk(root, "")
    return "\n".join(lines) + "\n"


class CodebaseExplorerService:
    """Builds filter/summary/stats/tree/content payloads for one project."""

    def __init__(self, db: aiosqlite.Connection, project: Project):
        self.db = db
        self.project = project
        self.project_root = Path(project.path)
        self.file_repo = get_file_repository(db)

    async def filtered_paths(self, flt: Filter) -> list[str]:
        return await filtered_paths(self.db, self.project.id, flt)

    async def list_files(self, flt: Filter) -> list[dict[str, Any]]:
        paths = await self.filtered_paths(flt)
        if not paths:
            return []
        rows = await self.file_repo.get_records(self.project.id, paths)
        return [FileMetadata.model_validate(row).model_dump() for row in rows]

    async def summary(self, flt: Filter) -> dict[str, Any]:
        files = await self.list_files(flt)
        return {
            "fileCount": len(files),
            "totalSizeBytes": sum(item["size_bytes"] for item in files),
            "files": files,
        }

    async def stats(self, flt: Filter) -> dict[str, Any]:
        files = await self.list_files(flt)
        by_extension: dict[str, dict[str, int]] = {}
        for item in files:
            key = item["extension"] or NO_EXTENSION
            bucket = by_extension.setdefault(key, {"fileCount": 0, "totalSize": 0, "totalLines": 0})
            bucket["fileCount"] += 1
            bucket["totalSize"] += item["size_bytes"]
            bucket["totalLines"] += item["line_count"]
        return {
            "totalFiles": len(files),
            "totalSize": sum(b["totalSize"] for b in by_extension.values()),
            "totalLines": sum(b["totalLines"] for b in by_extension.values()),
            "byExtension": dict(sorted(by_extension.items())),
        }

    async def get_tree(self, flt: Filter) -> dict[str, Any]:
        """Every cached file, annotated included/excluded, with directory totals."""
        included = set(await self.filtered_paths(flt))
        records = await self.file_repo.list_records(self.project.id)

        root: dict[str, Any] = {
            "name": self.project_root.name or str(self.project_root),
            "path": ".",
            "is_dir": True,
            "_children": {},
        }
        nodes: dict[str, dict[str, Any]] = {".": root}

        for record in records:
            parts = [part for part in record["relative_path"].split("/") if part]
            parent = root
            traversed = ""
            for idx, part in enumerate(parts):
                traversed = f"{traversed}/{part}" if traversed else part
                is_dir = idx < len(parts) - 1
                node = nodes.get(traversed)
                if node is None:
                    node = {"name": part, "path": traversed, "is_dir": is_dir, "_children": {}}
                    if not is_dir:
                        node["size_bytes"] = int(record["size_bytes"])
                        node["status"] = "included" if traversed in included else "excluded"
                    nodes[traversed] = node
                    parent["_children"][part] = node
                parent = node

        def finalize(node: dict[str, Any]) -> dict[str, Any]:
            if not node["is_dir"]:
                return {
                    "name": node["name"],
                    "path": node["path"],
                    "is_dir": False,
                    "status": node["status"],
                    "size_bytes": node["size_bytes"],
                    "children": [],
                }
            children = [finalize(child) for child in node["_children"].values()]
            children.sort(key=lambda item: (not item["is_dir"], item["name"]))
            total_size = 0
            total_count = 0
            for child in children:
                if child["is_dir"]:
                    total_size += child["total_size_bytes"]
                    total_count += child["total_file_count"]
                else:
                    total_size += child["size_bytes"]
                    total_count += 1
            return {
                "name": node["name"],
                "path": node["path"],
                "is_dir": True,
                "total_size_bytes": total_size,
                "total_file_count": total_count,
                "children": children,
            }

        return finalize(root)

    async def get_contents(self, flt: Filter) -> dict[str, str]:
        """Map of relative path to file text for every file passing `flt`."""
        paths = await self.filtered_paths(flt)
        return await asyncio.to_thread(_read_contents, self.project_root, paths)
