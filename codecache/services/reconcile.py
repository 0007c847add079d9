"""Diff a live scan against the persisted snapshot of a project."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from codecache.date_utils import parse_mtime
from codecache.models import FileRecord


@dataclass
class ChangeSet:
    to_insert: list[FileRecord] = field(default_factory=list)
    to_update: list[FileRecord] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_insert or self.to_update or self.to_delete)

    def counts(self) -> dict[str, int]:
        return {
            "new": len(self.to_insert),
            "modified": len(self.to_update),
            "deleted": len(self.to_delete),
        }


def is_unchanged(record: FileRecord, stored_mtime: str, stored_hash: str) -> bool:
    """Both the modification time and the content hash must match.

    A touched file with identical content is therefore reported as modified.
    """
    return parse_mtime(stored_mtime) == record.last_mod_time and stored_hash == record.content_hash


def reconcile(snapshot: Mapping[str, tuple[str, str]], live: Iterable[FileRecord]) -> ChangeSet:
    """Partition the difference into insert / update / delete sets.

    `snapshot` maps relative path to the stored (last_mod_time, content_hash).
    The three sets are disjoint and sorted by relative path.
    """
    changes = ChangeSet()
    seen: set[str] = set()
    for record in live:
        seen.add(record.relative_path)
        stored = snapshot.get(record.relative_path)
        if stored is None:
            changes.to_insert.append(record)
        elif not is_unchanged(record, stored[0], stored[1]):
            changes.to_update.append(record)

    changes.to_delete = sorted(path for path in snapshot if path not in seen)
    changes.to_insert.sort(key=lambda r: r.relative_path)
    changes.to_update.sort(key=lambda r: r.relative_path)
    return changes
