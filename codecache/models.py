"""Pydantic models shared by the services and the HTTP API."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


NOT_SCANNED_YET = "not_scanned_yet"


class Project(BaseModel):
    id: int
    path: str
    lastScanTimestamp: str = NOT_SCANNED_YET

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Project":
        return cls(
            id=int(row["id"]),
            path=str(row["project_path"]),
            lastScanTimestamp=str(row.get("last_scan_timestamp") or NOT_SCANNED_YET),
        )


# ── Filter specification ────────────────────────────────────────────

class FilterSpec(BaseModel):
    """Declarative include/exclude rules, as exchanged in JSON documents.

    Unknown fields are ignored and absent fields mean "no constraint".
    `includes`/`excludes` are accepted as aliases for the raw regex lists,
    and the older `excludedExtensions`/`excludedPrefixes` fields are folded
    into `excludeExts`/`excludePrefixes`.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    includePaths: list[str] = Field(default_factory=list)
    excludePaths: list[str] = Field(default_factory=list)
    includeExts: list[str] = Field(default_factory=list)
    excludeExts: list[str] = Field(default_factory=list)
    includePrefixes: list[str] = Field(default_factory=list)
    excludePrefixes: list[str] = Field(default_factory=list)
    includeRegex: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("includeRegex", "includes"),
    )
    excludeRegex: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("excludeRegex", "excludes"),
    )
    priority: str = "includes"
    isTextOnly: bool = False

    @model_validator(mode="before")
    @classmethod
    def _merge_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        merged = dict(data)
        for legacy, target in (("excludedExtensions", "excludeExts"), ("excludedPrefixes", "excludePrefixes")):
            extra = merged.pop(legacy, None)
            if not extra:
                continue
            if isinstance(extra, str):
                extra = [extra]
            current = merged.get(target) or []
            if isinstance(current, str):
                current = [current]
            merged[target] = [*current, *extra]
        return merged

    @field_validator(
        "includePaths", "excludePaths",
        "includeExts", "excludeExts",
        "includePrefixes", "excludePrefixes",
        "includeRegex", "excludeRegex",
        mode="before",
    )
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("priority", mode="before")
    @classmethod
    def _default_priority(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text or "includes"


class FilterProfile(BaseModel):
    name: str
    data: FilterSpec


# ── Cache payloads ──────────────────────────────────────────────────

class FileMetadata(BaseModel):
    relative_path: str
    filename: str
    extension: str = ""
    size_bytes: int = 0
    line_count: int = 0
    is_text: bool = True


class RefreshResult(BaseModel):
    """Outcome of one cache refresh.

    Incremental runs fill added/modified/deleted/totalScanned, full runs fill
    scanned. Unset counters are dropped from `payload()`.
    """

    mode: str
    status: str
    projectId: int
    added: Optional[int] = None
    modified: Optional[int] = None
    deleted: Optional[int] = None
    totalScanned: Optional[int] = None
    scanned: Optional[int] = None
    operationId: str = ""
    durationMs: int = 0

    def payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


@dataclass(frozen=True)
class FileRecord:
    """Cached metadata for one file of one project.

    `relative_path` is the identity; `(last_mod_time, content_hash)` is the
    staleness key compared during reconciliation.
    """

    relative_path: str
    filename: str
    extension: str
    size_bytes: int
    line_count: int
    is_text: bool
    last_mod_time: datetime
    content_hash: str
