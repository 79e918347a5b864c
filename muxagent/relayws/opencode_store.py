"""Session summaries read from the opencode SQLite database."""

from __future__ import annotations

import json
import os
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from muxagent.domain import SessionSummary

SQLITE3_BIN = "sqlite3"
OPENCODE_DB_ENV = "MUXAGENT_OPENCODE_DB_PATH"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class OpencodeStoreError(RuntimeError):
    """The opencode database could not be located, queried or parsed."""


def opencode_db_path() -> str:
    """Return where the opencode database is expected to live."""
    path = os.environ.get(OPENCODE_DB_ENV, "")
    if path:
        return path
    xdg_data_home = os.environ.get("XDG_DATA_HOME", "")
    if xdg_data_home:
        return os.path.join(xdg_data_home, "opencode", "opencode.db")
    try:
        home = str(Path.home())
    except (RuntimeError, KeyError) as exc:
        raise OpencodeStoreError(f"resolve user home: {exc}") from exc
    return os.path.join(home, ".local", "share", "opencode", "opencode.db")


def sqlite_quote(value: str) -> str:
    """Quote ``value`` as an SQLite string literal."""
    return "'" + value.replace("'", "''") + "'"


def _row_field(row: dict, key: str, expected: type) -> Any:
    value = row.get(key)
    if value is None:
        return expected()
    if expected is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, expected)
    if not ok:
        raise OpencodeStoreError(
            f"parse opencode db result: field {key} has type {type(value).__name__}"
        )
    return value


def _parse_rows(output: str) -> list[SessionSummary]:
    try:
        rows = json.loads(output)
    except json.JSONDecodeError as exc:
        raise OpencodeStoreError(f"parse opencode db result: {exc}") from exc
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise OpencodeStoreError("parse opencode db result: expected an array")
    summaries = []
    for row in rows:
        if row is None:
            row = {}
        if not isinstance(row, dict):
            raise OpencodeStoreError("parse opencode db result: expected an object")
        millis = _row_field(row, "timeUpdated", int)
        summaries.append(
            SessionSummary(
                session_id=_row_field(row, "sessionId", str),
                cwd=_row_field(row, "cwd", str),
                title=_row_field(row, "title", str),
                updated_at=_EPOCH + timedelta(milliseconds=millis),
            )
        )
    return summaries


def lookup_session_summaries(
    session_ids: Iterable[str],
    db_path: Optional[str] = None,
    sqlite3_bin: str = SQLITE3_BIN,
) -> list[SessionSummary]:
    """Look up the given session ids in the opencode database via the sqlite3 tool."""
    ids = list(session_ids)
    if not ids:
        return []
    if db_path is None:
        db_path = opencode_db_path()
    try:
        os.stat(db_path)
    except OSError as exc:
        raise OpencodeStoreError(f"stat opencode db: {exc}") from exc

    quoted = [sqlite_quote(session_id) for session_id in ids if session_id]
    if not quoted:
        return []

    query = (
        "select id as sessionId, directory as cwd, title, time_updated as timeUpdated "
        f"from session where id in ({','.join(quoted)})"
    )
    try:
        proc = subprocess.run(
            [sqlite3_bin, "-json", db_path, query],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
    except OSError as exc:
        raise OpencodeStoreError(f"query opencode db: {exc}: ") from exc
    output = proc.stdout.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        raise OpencodeStoreError(
            f"query opencode db: exit status {proc.returncode}: {output.strip()}"
        )
    return _parse_rows(output)