"""Concurrent project scanner.

A single-threaded depth-first walk decides what to visit (pruning ignored
directories in place) and hands each surviving file to a bounded thread pool
that classifies, hashes and line-counts it.
"""
from __future__ import annotations

import hashlib
import logging
import os
import stat
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from codecache import config
from codecache.date_utils import mtime_from_ns
from codecache.errors import ScanError
from codecache.models import FileRecord
from codecache.services.ignore_rules import IgnoreRules

logger = logging.getLogger("codecache.scanner")

SNIFF_BYTES = 512
_READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class ScanOptions:
    include_binary: bool = False
    no_gitignore: bool = False
    no_preset_excludes: bool = False


def file_extension(filename: str) -> str:
    """Suffix after the last dot, without the dot ("" when there is none)."""
    _, dot, ext = filename.rpartition(".")
    return ext if dot else ""


def is_binary_prefix(prefix: bytes) -> bool:
    return b"\x00" in prefix


def sniff_is_binary(path: Path) -> bool:
    with open(path, "rb") as fh:
        return is_binary_prefix(fh.read(SNIFF_BYTES))


def count_lines(fh: BinaryIO) -> int:
    """Count newline-delimited lines; a trailing unterminated line counts too."""
    lines = 0
    last = b""
    for chunk in iter(lambda: fh.read(_READ_CHUNK), b""):
        lines += chunk.count(b"\n")
        last = chunk
    if last and not last.endswith(b"\n"):
        lines += 1
    return lines


def scan_file(project_root: Path, rel_path: str, include_binary: bool = False) -> FileRecord | None:
    """Build the FileRecord for one file.

    Returns None for non-regular files and for binaries when they were not
    requested. I/O errors propagate to the caller.
    """
    full_path = project_root / rel_path
    st = os.lstat(full_path)
    if not stat.S_ISREG(st.st_mode):
        return None

    with open(full_path, "rb") as fh:
        st = os.fstat(fh.fileno())
        is_text = not is_binary_prefix(fh.read(SNIFF_BYTES))
        if not is_text and not include_binary:
            return None

        fh.seek(0)
        digest = hashlib.sha256()
        for chunk in iter(lambda: fh.read(_READ_CHUNK), b""):
            digest.update(chunk)

        line_count = 0
        if is_text:
            fh.seek(0)
            line_count = count_lines(fh)

    filename = rel_path.rsplit("/", 1)[-1]
    return FileRecord(
        relative_path=rel_path,
        filename=filename,
        extension=file_extension(filename),
        size_bytes=int(st.st_size),
        line_count=line_count,
        is_text=is_text,
        last_mod_time=mtime_from_ns(st.st_mtime_ns),
        content_hash=digest.hexdigest(),
    )


def _scan_file_safely(project_root: Path, rel_path: str, include_binary: bool) -> FileRecord | None:
    try:
        return scan_file(project_root, rel_path, include_binary)
    except OSError as exc:
        # Unreadable or vanished mid-scan; the file is left out of the result.
        logger.debug("Skipping %s: %s", rel_path, exc)
        return None


def _raise_walk_error(exc: OSError) -> None:
    raise ScanError(f"error walking project tree at '{exc.filename}': {exc.strerror or exc}") from exc


def walk_relative(project_root: Path, rules: IgnoreRules):
    """Yield (rel_dir, kept_filenames) in depth-first order, pruning skipped dirs.

    Any directory read error aborts the walk with ScanError.
    """
    for dirpath, dirnames, filenames in os.walk(project_root, onerror=_raise_walk_error):
        rel_dir = Path(dirpath).relative_to(project_root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir

        kept_dirs = []
        for dirname in sorted(dirnames):
            child_rel = f"{rel_dir}/{dirname}" if rel_dir else dirname
            if rules.should_skip(child_rel, is_dir=True):
                continue
            kept_dirs.append(dirname)
        dirnames[:] = kept_dirs

        kept_files = []
        for filename in sorted(filenames):
            rel_path = f"{rel_dir}/{filename}" if rel_dir else filename
            if rules.should_skip(rel_path, is_dir=False):
                continue
            kept_files.append(rel_path)
        yield rel_dir, kept_files


def scan_project(
    project_root: Path,
    rules: IgnoreRules,
    options: ScanOptions | None = None,
    workers: int | None = None,
) -> list[FileRecord]:
    """Scan a project tree and return one FileRecord per cached file."""
    options = options or ScanOptions()
    root = Path(project_root)
    max_workers = max(1, int(workers or config.scan_workers()))
    # The walk only ever waits on pool admission, never on a given worker.
    admission = threading.BoundedSemaphore(max_workers * 2)
    futures: list[Future] = []

    def _release(_future: Future) -> None:
        admission.release()

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="codecache-scan") as pool:
        for _, rel_paths in walk_relative(root, rules):
            for rel_path in rel_paths:
                admission.acquire()
                try:
                    future = pool.submit(_scan_file_safely, root, rel_path, options.include_binary)
                except BaseException:
                    admission.release()
                    raise
                future.add_done_callback(_release)
                futures.append(future)

    records = [record for record in (f.result() for f in futures) if record is not None]
    logger.info("Scanned %s: %d files kept of %d visited", root, len(records), len(futures))
    return records
