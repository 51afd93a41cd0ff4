from __future__ import annotations

import sqlite3
from collections.abc import Collection
from datetime import datetime
from typing import Any

from vidl.models.channels import PersistedVideo, VideoRecord
from vidl.models.video_status import VideoStatus, ensure_transition
from vidl.repositories.common import parse_iso_datetime, to_iso, utc_now
from vidl.repositories.database import Database

_VIDEO_COLUMNS = (
    "id, channel, video_id, status, url, title, title_alt, description, description_alt, "
    "thumbnail, published_at, duration, date_added"
)


class DuplicateUrlError(ValueError):
    def __init__(self, url: str) -> None:
        super().__init__(f"Video URL already stored: {url}")
        self.url = url


class VideoNotFoundError(LookupError):
    pass


class VideoRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def insert_video(
        self,
        channel_id: int,
        record: VideoRecord,
        *,
        date_added: datetime | None = None,
    ) -> int:
        added_at = date_added if date_added is not None else utc_now()
        try:
            with self._db.connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO video (
                        channel, video_id, status, url, title, title_alt, description,
                        description_alt, thumbnail, published_at, duration, date_added
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        channel_id,
                        record.video_id,
                        VideoStatus.NEW.value,
                        record.url,
                        record.title,
                        record.title_alt,
                        record.description,
                        record.description_alt,
                        record.thumbnail_url,
                        to_iso(record.published_at),
                        record.duration_seconds,
                        to_iso(added_at),
                    ),
                )
                return int(cursor.lastrowid or 0)
        except sqlite3.IntegrityError as exc:
            if "video.url" in str(exc):
                raise DuplicateUrlError(record.url) from exc
            raise

    def get_video_by_id(self, video_id: int) -> PersistedVideo:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {_VIDEO_COLUMNS} FROM video WHERE id = ?",
                (video_id,),
            ).fetchone()
        if row is None:
            raise VideoNotFoundError(f"No video with id {video_id}")
        return _row_to_video(row)

    def url_exists(self, url: str) -> bool:
        with self._db.connection() as conn:
            row = conn.execute("SELECT 1 FROM video WHERE url = ? LIMIT 1", (url,)).fetchone()
        return row is not None

    def recent_video_urls(self, channel_id: int, limit: int) -> set[str]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT url
                FROM video
                WHERE channel = ?
                ORDER BY published_at DESC
                LIMIT ?
                """,
                (channel_id, max(0, limit)),
            ).fetchall()
        return {str(row["url"]) for row in rows}

    def set_video_status(self, video_id: int, status: VideoStatus) -> VideoStatus:
        """Apply a validated status transition and return the previous status."""
        with self._db.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT status FROM video WHERE id = ?", (video_id,)).fetchone()
            if row is None:
                raise VideoNotFoundError(f"No video with id {video_id}")
            current = VideoStatus.from_code(str(row["status"]))
            ensure_transition(current, status)
            if current is not status:
                conn.execute(
                    "UPDATE video SET status = ? WHERE id = ?",
                    (status.value, video_id),
                )
        return current

    def claim_for_download(self, video_id: int) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "UPDATE video SET status = ? WHERE id = ? AND status = ?",
                (VideoStatus.DOWNLOADING.value, video_id, VideoStatus.QUEUED.value),
            )
            return cursor.rowcount == 1

    def list_videos(
        self,
        *,
        channel_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
        statuses: Collection[VideoStatus] | None = None,
        name_contains: str | None = None,
    ) -> list[PersistedVideo]:
        clauses: list[str] = []
        params: list[Any] = []
        if channel_id is not None:
            clauses.append("channel = ?")
            params.append(channel_id)
        if statuses:
            placeholders = ", ".join("?" for _ in statuses)
            clauses.append(f"status IN ({placeholders})")
            params.extend(status.value for status in statuses)
        if name_contains:
            clauses.append("(title LIKE ? OR title_alt LIKE ?)")
            pattern = f"%{name_contains}%"
            params.extend([pattern, pattern])

        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([max(0, limit), max(0, offset)])
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_VIDEO_COLUMNS}
                FROM video
                {where_sql}
                ORDER BY published_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                params,
            ).fetchall()
        return [_row_to_video(row) for row in rows]


def _row_to_video(row: sqlite3.Row) -> PersistedVideo:
    date_added_raw = row["date_added"]
    published_at = parse_iso_datetime(str(row["published_at"]))
    date_added = (
        parse_iso_datetime(str(date_added_raw))
        if isinstance(date_added_raw, str) and date_added_raw.strip()
        else published_at
    )
    return PersistedVideo(
        id=int(row["id"]),
        channel_id=int(row["channel"]),
        status=VideoStatus.from_code(str(row["status"])),
        date_added=date_added,
        record=VideoRecord(
            video_id=str(row["video_id"]),
            url=str(row["url"]),
            title=str(row["title"]),
            title_alt=_none_if_empty(row["title_alt"]),
            description=str(row["description"]),
            description_alt=_none_if_empty(row["description_alt"]),
            thumbnail_url=str(row["thumbnail"]),
            published_at=published_at,
            duration_seconds=int(row["duration"] or 0),
        ),
    )


def _none_if_empty(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None
