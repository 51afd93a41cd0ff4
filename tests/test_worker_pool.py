from __future__ import annotations

import threading
import time
from typing import Any, cast

import pytest
from structlog.contextvars import get_contextvars

from vidl.models.channels import Channel, Service
from vidl.models.work_items import (
    DownloadWorkItem,
    ThumbnailCacheWorkItem,
    UpdateWorkItem,
    WorkItem,
)
from vidl.services.worker_pool import WorkerPool, WorkerPoolClosedError, WorkItemDispatcher

_CHANNEL = Channel(
    id=7,
    chanid="UCabc",
    service=Service.YOUTUBE,
    title="Channel",
    thumbnail_url="",
)


class _RecordingExecutor:
    def __init__(self, *, delay: float = 0.0, failing: set[int] | None = None) -> None:
        self.delay = delay
        self.failing = failing or set()
        self.executed: list[WorkItem] = []
        self.contexts: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def __call__(self, item: WorkItem) -> None:
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.executed.append(item)
            self.contexts.append(dict(get_contextvars()))
        if isinstance(item, DownloadWorkItem) and item.video_id in self.failing:
            raise RuntimeError(f"video {item.video_id} exploded")


def test_stop_drains_every_enqueued_item() -> None:
    executor = _RecordingExecutor(delay=0.01)
    pool = WorkerPool(executor, num_workers=4)
    pool.start()

    for video_id in range(40):
        pool.enqueue(DownloadWorkItem(video_id=video_id))
    pool.stop()

    executed_ids = sorted(cast(DownloadWorkItem, item).video_id for item in executor.executed)
    assert executed_ids == list(range(40))
    assert not pool.is_running


def test_stop_runs_items_enqueued_before_start() -> None:
    executor = _RecordingExecutor()
    pool = WorkerPool(executor, num_workers=2)

    for video_id in range(3):
        pool.enqueue(DownloadWorkItem(video_id=video_id))
    pool.stop()

    executed_ids = sorted(cast(DownloadWorkItem, item).video_id for item in executor.executed)
    assert executed_ids == [0, 1, 2]
    assert not pool.is_running


def test_single_worker_preserves_enqueue_order() -> None:
    executor = _RecordingExecutor()
    pool = WorkerPool(executor, num_workers=1)
    pool.start()

    items: list[WorkItem] = [DownloadWorkItem(video_id=n) for n in range(10)]
    for item in items:
        pool.enqueue(item)
    pool.stop()

    assert executor.executed == items


def test_failing_item_does_not_stop_the_pool() -> None:
    executor = _RecordingExecutor(failing={3, 5})
    pool = WorkerPool(executor, num_workers=2)
    pool.start()

    for video_id in range(10):
        pool.enqueue(DownloadWorkItem(video_id=video_id))
    pool.stop()

    assert len(executor.executed) == 10


def test_enqueue_after_stop_is_rejected() -> None:
    pool = WorkerPool(_RecordingExecutor(), num_workers=2)
    pool.start()
    pool.stop()
    pool.stop()

    with pytest.raises(WorkerPoolClosedError):
        pool.enqueue(DownloadWorkItem(video_id=1))
    with pytest.raises(WorkerPoolClosedError):
        pool.start()


def test_work_item_context_is_bound_per_item() -> None:
    executor = _RecordingExecutor()
    pool = WorkerPool(executor, num_workers=1)
    pool.start()

    pool.enqueue(DownloadWorkItem(video_id=11))
    pool.enqueue(UpdateWorkItem(channel=_CHANNEL))
    pool.stop()

    download_context, update_context = executor.contexts
    assert download_context["worker"] == 0
    assert download_context["work_item"] == "download"
    assert download_context["video_id"] == 11
    assert update_context["work_item"] == "update"
    assert update_context["channel_id"] == 7
    assert "video_id" not in update_context


class _FakeSyncService:
    def __init__(self) -> None:
        self.calls: list[tuple[int, bool, bool]] = []

    def sync_channel(self, channel: Channel, *, force: bool, full_update: bool) -> Any:
        self.calls.append((channel.id, force, full_update))

        class _Result:
            skipped = False
            inserted = 0
            stopped_early = False
            ok = True

        return _Result()


class _FakeDownloadService:
    def __init__(self) -> None:
        self.calls: list[int] = []

    def download_video(self, video_id: int) -> None:
        self.calls.append(video_id)


class _FakeThumbnailCache:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def fetch(self, url: str) -> bool:
        self.calls.append(url)
        return True


def test_dispatcher_routes_items() -> None:
    sync_service = _FakeSyncService()
    download_service = _FakeDownloadService()
    thumbnail_cache = _FakeThumbnailCache()
    dispatcher = WorkItemDispatcher(
        sync_service=cast(Any, sync_service),
        download_service=cast(Any, download_service),
        thumbnail_cache=cast(Any, thumbnail_cache),
    )

    dispatcher(UpdateWorkItem(channel=_CHANNEL, force=True, full_update=False))
    dispatcher(DownloadWorkItem(video_id=3))
    dispatcher(ThumbnailCacheWorkItem(url="https://img/x.jpg"))

    assert sync_service.calls == [(7, True, False)]
    assert download_service.calls == [3]
    assert thumbnail_cache.calls == ["https://img/x.jpg"]
