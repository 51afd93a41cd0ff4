from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

LOGGER = logging.getLogger("vidl.storage")
DEFAULT_BUSY_TIMEOUT_SECONDS = 30.0

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS channel (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chanid TEXT NOT NULL,
    service TEXT NOT NULL,
    title TEXT NOT NULL,
    thumbnail TEXT NOT NULL,
    last_update TEXT NULL,
    UNIQUE (chanid, service)
);

CREATE TABLE IF NOT EXISTS video (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    channel INTEGER NOT NULL,
    video_id TEXT NOT NULL,
    status TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    thumbnail TEXT NOT NULL,
    published_at TEXT NOT NULL,
    FOREIGN KEY(channel) REFERENCES channel(id)
);

CREATE INDEX IF NOT EXISTS idx_video_published_at ON video(published_at);

CREATE INDEX IF NOT EXISTS idx_video_channel ON video(channel);
"""

# Columns added to the video table after its first release, with their DDL.
_VIDEO_LATER_COLUMNS: tuple[tuple[str, str], ...] = (
    ("duration", "INTEGER NOT NULL DEFAULT (0)"),
    ("date_added", "TEXT NULL"),
    ("title_alt", "TEXT NULL"),
    ("description_alt", "TEXT NULL"),
)


class Database:
    def __init__(self, path: Path, *, busy_timeout_seconds: float = DEFAULT_BUSY_TIMEOUT_SECONDS) -> None:
        self._path = path
        self._busy_timeout_seconds = busy_timeout_seconds

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, timeout=self._busy_timeout_seconds)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA_SQL)
            _maybe_add_video_columns(conn)


def _maybe_add_video_columns(conn: sqlite3.Connection) -> None:
    columns = _table_columns(conn, "video")
    for column_name, column_ddl in _VIDEO_LATER_COLUMNS:
        if column_name in columns:
            continue
        LOGGER.info("adding missing column video.%s", column_name)
        conn.execute(f"ALTER TABLE video ADD COLUMN {column_name} {column_ddl}")

    if "date_added" not in columns:
        # Older rows predate date_added; the best available value is their publish date.
        conn.execute("UPDATE video SET date_added = published_at WHERE date_added IS NULL")


def _table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {str(row["name"]) for row in rows}
