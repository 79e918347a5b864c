"""Read-only file system access confined to a session's project directory."""

from __future__ import annotations

import os
import stat
import time
from dataclasses import dataclass, field
from typing import Iterator

MAX_LIST_ENTRIES = 200
MAX_SEARCH_RESULTS = 50
SEARCH_TIMEOUT = 5.0


class PathOutsideProjectError(ValueError):
    """The requested path lies outside the project directory."""

    def __init__(self) -> None:
        super().__init__("path outside project")


class SymlinkEscapeError(ValueError):
    """The requested path resolves through a symlink to outside the project."""

    def __init__(self) -> None:
        super().__init__("symlink escape detected")


@dataclass(frozen=True)
class FsEntry:
    name: str = field(metadata={"json": "name"})
    path: str = field(metadata={"json": "path"})
    is_dir: bool = field(metadata={"json": "isDir"})


@dataclass(frozen=True)
class FsSearchResult:
    path: str = field(metadata={"json": "path"})
    is_dir: bool = field(metadata={"json": "isDir"})


def _within(path: str, root: str) -> bool:
    return path == root or path.startswith(root + os.sep)


def safe_path(cwd: str, rel_path: str = "") -> str:
    """Resolve ``rel_path`` under ``cwd``, rejecting traversal and symlink escapes."""
    if rel_path in ("", "."):
        return os.path.realpath(cwd, strict=True)
    target = os.path.normpath(os.path.join(cwd, rel_path.lstrip(os.sep)))
    if not _within(target, cwd):
        raise PathOutsideProjectError()
    real_target = os.path.realpath(target, strict=True)
    real_cwd = os.path.realpath(cwd, strict=True)
    if not _within(real_target, real_cwd):
        raise SymlinkEscapeError()
    return real_target


def _is_dir(entry: os.DirEntry) -> bool:
    try:
        return entry.is_dir(follow_symlinks=False)
    except OSError:
        return False


def list_dir(cwd: str, rel_path: str = "") -> list[FsEntry]:
    """List a project directory: directories first, then by name, at most 200 entries."""
    target = safe_path(cwd, rel_path)
    with os.scandir(target) as it:
        items = [(entry.name, _is_dir(entry)) for entry in it]
    items.sort(key=lambda item: (not item[1], item[0]))
    prefix = "" if rel_path == "." else rel_path
    return [
        FsEntry(
            name=name,
            path=os.path.normpath(os.path.join(prefix, name)) if prefix else name,
            is_dir=is_dir,
        )
        for name, is_dir in items[:MAX_LIST_ENTRIES]
    ]


def _walk_dir(path: str, rel: str) -> Iterator[tuple[str, str, bool]]:
    try:
        with os.scandir(path) as it:
            entries = sorted(it, key=lambda entry: entry.name)
    except OSError:
        return
    for entry in entries:
        is_dir = _is_dir(entry)
        if is_dir and entry.name == ".git":
            continue
        entry_rel = os.path.join(rel, entry.name) if rel else entry.name
        yield entry_rel, entry.name, is_dir
        if is_dir:
            yield from _walk_dir(entry.path, entry_rel)


def _walk(root: str) -> Iterator[tuple[str, str, bool]]:
    """Yield (relative path, name, is_dir) for every entry below ``root``, skipping .git."""
    try:
        info = os.lstat(root)
    except OSError:
        return
    if not stat.S_ISDIR(info.st_mode):
        return
    if os.path.basename(os.path.normpath(root)) == ".git":
        return
    yield from _walk_dir(root, "")


def search(cwd: str, query: str) -> list[FsSearchResult]:
    """Find entries whose name contains ``query`` (case-insensitive), at most 50."""
    deadline = time.monotonic() + SEARCH_TIMEOUT
    needle = query.lower()
    results = []
    for rel, name, is_dir in _walk(cwd):
        if time.monotonic() > deadline:
            break
        if needle in name.lower():
            results.append(FsSearchResult(path=rel, is_dir=is_dir))
    results.sort(key=lambda result: (not result.is_dir, len(result.path)))
    return results[:MAX_SEARCH_RESULTS]