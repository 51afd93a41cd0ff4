from __future__ import annotations

import sqlite3
from datetime import datetime

from vidl.models.channels import Channel, ChannelID, ChannelMetadata, Service
from vidl.repositories.common import parse_optional_iso_datetime, to_iso
from vidl.repositories.database import Database

_CHANNEL_COLUMNS = "id, chanid, service, title, thumbnail, last_update"


class ChannelNotFoundError(LookupError):
    pass


class ChannelExistsError(ValueError):
    pass


class ChannelRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def create_channel(self, identity: ChannelID, metadata: ChannelMetadata) -> Channel:
        try:
            with self._db.connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO channel (chanid, service, title, thumbnail, last_update)
                    VALUES (?, ?, ?, ?, NULL)
                    """,
                    (
                        identity.id,
                        identity.service.value,
                        metadata.title,
                        metadata.thumbnail_url,
                    ),
                )
                channel_id = int(cursor.lastrowid or 0)
        except sqlite3.IntegrityError as exc:
            raise ChannelExistsError(
                f"Channel already exists: {identity.service.value}/{identity.id}"
            ) from exc
        return self.get_channel(channel_id)

    def get_channel(self, channel_id: int) -> Channel:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {_CHANNEL_COLUMNS} FROM channel WHERE id = ?",
                (channel_id,),
            ).fetchone()
        if row is None:
            raise ChannelNotFoundError(f"No channel with id {channel_id}")
        return _row_to_channel(row)

    def get_channel_by_identity(self, identity: ChannelID) -> Channel | None:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {_CHANNEL_COLUMNS} FROM channel WHERE chanid = ? AND service = ?",
                (identity.id, identity.service.value),
            ).fetchone()
        if row is None:
            return None
        return _row_to_channel(row)

    def list_channels(self) -> list[Channel]:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"SELECT {_CHANNEL_COLUMNS} FROM channel ORDER BY id ASC"
            ).fetchall()
        return [_row_to_channel(row) for row in rows]

    def delete_channel(self, channel_id: int) -> None:
        with self._db.connection() as conn:
            conn.execute("DELETE FROM video WHERE channel = ?", (channel_id,))
            cursor = conn.execute("DELETE FROM channel WHERE id = ?", (channel_id,))
            if cursor.rowcount == 0:
                raise ChannelNotFoundError(f"No channel with id {channel_id}")

    def get_channel_last_update(self, channel_id: int) -> datetime | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT last_update FROM channel WHERE id = ?",
                (channel_id,),
            ).fetchone()
        if row is None:
            raise ChannelNotFoundError(f"No channel with id {channel_id}")
        return parse_optional_iso_datetime(row["last_update"])

    def set_channel_last_update(self, channel_id: int, when: datetime) -> bool:
        """Record an update attempt; returns False when a newer value is already stored."""
        when_iso = to_iso(when)
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE channel
                SET last_update = ?
                WHERE id = ? AND (last_update IS NULL OR last_update < ?)
                """,
                (when_iso, channel_id, when_iso),
            )
            return cursor.rowcount > 0

    def update_channel_metadata(self, channel_id: int, metadata: ChannelMetadata) -> None:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "UPDATE channel SET title = ?, thumbnail = ? WHERE id = ?",
                (metadata.title, metadata.thumbnail_url, channel_id),
            )
            if cursor.rowcount == 0:
                raise ChannelNotFoundError(f"No channel with id {channel_id}")


def _row_to_channel(row: sqlite3.Row) -> Channel:
    return Channel(
        id=int(row["id"]),
        chanid=str(row["chanid"]),
        service=Service.from_str(str(row["service"])),
        title=str(row["title"]),
        thumbnail_url=str(row["thumbnail"]),
        last_update=parse_optional_iso_datetime(row["last_update"]),
    )
