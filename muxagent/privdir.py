"""Owner-only directory creation."""

from __future__ import annotations

import os

_MODE = 0o700


def ensure(path: str | os.PathLike) -> None:
    """Create ``path`` and missing parents, then restrict it to its owner."""
    clean = os.path.normpath(os.fspath(path))
    os.makedirs(clean, mode=_MODE, exist_ok=True)
    os.chmod(clean, _MODE)


def ensure_within(path: str | os.PathLike, root: str | os.PathLike) -> None:
    """Create ``path`` and restrict it and every ancestor up to ``root`` to its owner."""
    clean_path = os.path.normpath(os.fspath(path))
    clean_root = os.path.normpath(os.fspath(root))
    os.makedirs(clean_path, mode=_MODE, exist_ok=True)
    current = clean_path
    while True:
        os.chmod(current, _MODE)
        if current == clean_root:
            return
        parent = os.path.dirname(current)
        if parent == current or parent == "":
            return
        current = parent