from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

from vidl.config import AppSettings, load_settings
from vidl.repositories.channel_repository import ChannelRepository
from vidl.repositories.database import Database
from vidl.repositories.video_repository import VideoRepository
from vidl.services.channel_sync_service import ChannelSyncService
from vidl.services.download_service import DownloadService, YoutubeDlExecutor
from vidl.services.scheduler_service import SchedulerService
from vidl.services.sources.registry import SourceRegistry, build_source_registry
from vidl.services.thumbnail_cache import ThumbnailCache
from vidl.services.worker_pool import WorkerPool, WorkItemDispatcher


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    settings = get_settings()
    database = Database(settings.db_path)
    database.initialize()
    return database


def get_channel_repository() -> ChannelRepository:
    return ChannelRepository(get_database())


def get_video_repository() -> VideoRepository:
    return VideoRepository(get_database())


@lru_cache(maxsize=1)
def get_source_registry() -> SourceRegistry:
    return build_source_registry(get_settings())


@lru_cache(maxsize=1)
def get_thumbnail_cache() -> ThumbnailCache:
    return ThumbnailCache(http_timeout_seconds=get_settings().http_timeout_seconds)


@lru_cache(maxsize=1)
def get_sync_service() -> ChannelSyncService:
    settings = get_settings()
    return ChannelSyncService(
        get_channel_repository(),
        get_video_repository(),
        get_source_registry(),
        update_interval=timedelta(minutes=settings.update_interval_minutes),
        dedup_window_size=settings.dedup_window_size,
    )


@lru_cache(maxsize=1)
def get_download_service() -> DownloadService:
    settings = get_settings()
    return DownloadService(
        get_video_repository(),
        YoutubeDlExecutor(
            binary=settings.youtube_dl_binary,
            download_dir=settings.download_dir,
            filename_format=settings.filename_format,
            extra_args=settings.extra_youtube_dl_args,
            timeout_seconds=settings.download_timeout_seconds,
        ),
    )


def build_worker_pool() -> WorkerPool:
    dispatcher = WorkItemDispatcher(
        sync_service=get_sync_service(),
        download_service=get_download_service(),
        thumbnail_cache=get_thumbnail_cache(),
    )
    return WorkerPool(dispatcher, num_workers=get_settings().num_workers)


def build_scheduler(pool: WorkerPool) -> SchedulerService:
    settings = get_settings()
    return SchedulerService(
        get_channel_repository(),
        pool.enqueue,
        settings.scheduler_poll_interval_seconds,
        lock_path=settings.scheduler_lock_path,
    )


def reset_cached_dependencies() -> None:
    get_download_service.cache_clear()
    get_sync_service.cache_clear()
    get_thumbnail_cache.cache_clear()
    get_source_registry.cache_clear()
    get_database.cache_clear()
    get_settings.cache_clear()
