from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from vidl.models.channels import Channel, VideoRecord
from vidl.repositories.channel_repository import ChannelRepository
from vidl.repositories.common import utc_now
from vidl.repositories.video_repository import DuplicateUrlError, VideoRepository
from vidl.services.sources.base import FetchError, UnsupportedServiceError
from vidl.services.sources.registry import SourceRegistry

LOGGER = logging.getLogger("vidl.sync")

DEFAULT_UPDATE_INTERVAL = timedelta(minutes=60)
DEFAULT_DEDUP_WINDOW_SIZE = 200


@dataclass(frozen=True)
class SyncResult:
    channel_id: int
    skipped: bool = False
    inserted: int = 0
    duplicates: int = 0
    failed_inserts: int = 0
    stopped_early: bool = False
    pages_error: bool = False
    metadata_error: bool = False
    unsupported: bool = False

    @property
    def ok(self) -> bool:
        return not (self.pages_error or self.metadata_error or self.unsupported)


def is_update_due(
    last_update: datetime | None,
    now: datetime,
    *,
    interval: timedelta = DEFAULT_UPDATE_INTERVAL,
) -> bool:
    if last_update is None:
        return True
    return now - last_update > interval


class ChannelSyncService:
    """Finds videos published since a channel was last checked and stores them as new."""

    def __init__(
        self,
        channels: ChannelRepository,
        videos: VideoRepository,
        sources: SourceRegistry,
        *,
        update_interval: timedelta = DEFAULT_UPDATE_INTERVAL,
        dedup_window_size: int = DEFAULT_DEDUP_WINDOW_SIZE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._channels = channels
        self._videos = videos
        self._sources = sources
        self._update_interval = update_interval
        self._dedup_window_size = max(1, dedup_window_size)
        self._clock = clock

    def sync_channel(
        self,
        channel: Channel,
        *,
        force: bool = False,
        full_update: bool = False,
    ) -> SyncResult:
        now = self._clock()
        last_update = self._channels.get_channel_last_update(channel.id)
        LOGGER.debug(
            "checking channel for update channel_id=%s chanid=%s last_update=%s",
            channel.id,
            channel.chanid,
            last_update,
        )
        if not force and not is_update_due(last_update, now, interval=self._update_interval):
            return SyncResult(channel_id=channel.id, skipped=True)

        try:
            source = self._sources.for_service(channel.service)
        except UnsupportedServiceError:
            LOGGER.error(
                "no source for channel service channel_id=%s service=%s",
                channel.id,
                channel.service.value,
            )
            return SyncResult(channel_id=channel.id, unsupported=True)

        # Marked before fetching; a failed sync waits a full interval too.
        self._channels.set_channel_last_update(channel.id, now)
        LOGGER.info(
            "updating channel channel_id=%s title=%s full_update=%s",
            channel.id,
            channel.title,
            full_update,
        )

        try:
            metadata = source.get_metadata(channel.chanid)
        except FetchError:
            LOGGER.error(
                "channel metadata refresh failed channel_id=%s",
                channel.id,
                exc_info=True,
            )
            return SyncResult(channel_id=channel.id, metadata_error=True)
        self._channels.update_channel_metadata(channel.id, metadata)

        known_urls = self._videos.recent_video_urls(channel.id, self._dedup_window_size)
        new_videos: list[VideoRecord] = []
        duplicates = 0
        stopped_early = False
        try:
            for video in source.videos(channel.chanid):
                if video.url in known_urls:
                    if not full_update:
                        LOGGER.debug(
                            "reached known video, stopping channel_id=%s url=%s",
                            channel.id,
                            video.url,
                        )
                        stopped_early = True
                        break
                    duplicates += 1
                    continue
                if full_update and self._videos.url_exists(video.url):
                    duplicates += 1
                    continue
                new_videos.append(video)
        except FetchError:
            LOGGER.error(
                "fetching videos failed, nothing stored channel_id=%s collected=%s",
                channel.id,
                len(new_videos),
                exc_info=True,
            )
            return SyncResult(channel_id=channel.id, pages_error=True)

        inserted = 0
        failed_inserts = 0
        # Oldest first: an interrupted run never stores a newer video ahead of an older one.
        for video in reversed(new_videos):
            try:
                self._videos.insert_video(channel.id, video, date_added=self._clock())
            except DuplicateUrlError:
                duplicates += 1
                LOGGER.debug("video already stored url=%s", video.url)
            except Exception:
                failed_inserts += 1
                LOGGER.error(
                    "failed to store video channel_id=%s url=%s",
                    channel.id,
                    video.url,
                    exc_info=True,
                )
            else:
                inserted += 1
                LOGGER.info("new video channel_id=%s title=%s", channel.id, video.title)

        return SyncResult(
            channel_id=channel.id,
            inserted=inserted,
            duplicates=duplicates,
            failed_inserts=failed_inserts,
            stopped_early=stopped_early,
        )
