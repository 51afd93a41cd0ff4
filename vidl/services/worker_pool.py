from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

from structlog.contextvars import bind_contextvars, reset_contextvars

from vidl.models.work_items import (
    DownloadWorkItem,
    ShutdownWorkItem,
    ThumbnailCacheWorkItem,
    UpdateWorkItem,
    WorkItem,
    describe_work_item,
)
from vidl.services.channel_sync_service import ChannelSyncService
from vidl.services.download_service import DownloadService
from vidl.services.thumbnail_cache import ThumbnailCache

LOGGER = logging.getLogger("vidl.worker")

DEFAULT_NUM_WORKERS = 4


class WorkerPoolClosedError(RuntimeError):
    pass


class WorkItemDispatcher:
    def __init__(
        self,
        *,
        sync_service: ChannelSyncService,
        download_service: DownloadService,
        thumbnail_cache: ThumbnailCache,
    ) -> None:
        self._sync_service = sync_service
        self._download_service = download_service
        self._thumbnail_cache = thumbnail_cache

    def __call__(self, item: WorkItem) -> None:
        if isinstance(item, UpdateWorkItem):
            result = self._sync_service.sync_channel(
                item.channel,
                force=item.force,
                full_update=item.full_update,
            )
            LOGGER.debug(
                "update finished skipped=%s inserted=%s stopped_early=%s ok=%s",
                result.skipped,
                result.inserted,
                result.stopped_early,
                result.ok,
            )
        elif isinstance(item, DownloadWorkItem):
            self._download_service.download_video(item.video_id)
        elif isinstance(item, ThumbnailCacheWorkItem):
            self._thumbnail_cache.fetch(item.url)
        else:
            raise TypeError(f"Unsupported work item: {item!r}")


class WorkerPool:
    """Fixed set of threads draining one FIFO queue of work items.

    ``stop()`` sends one shutdown sentinel per worker after everything already
    queued, then joins, so every item enqueued before it runs to completion.
    """

    def __init__(
        self,
        executor: Callable[[WorkItem], None],
        *,
        num_workers: int = DEFAULT_NUM_WORKERS,
        name: str = "vidl-worker",
    ) -> None:
        self._executor = executor
        self._num_workers = max(1, num_workers)
        self._name = name
        self._queue: queue.Queue[WorkItem] = queue.Queue()
        self._threads: list[threading.Thread] = []
        self._state_lock = threading.Lock()
        self._closed = False

    @property
    def num_workers(self) -> int:
        return self._num_workers

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        with self._state_lock:
            if self._closed:
                raise WorkerPoolClosedError("Worker pool has been stopped")
            self._spawn_workers()

    def enqueue(self, item: WorkItem) -> None:
        with self._state_lock:
            if self._closed:
                raise WorkerPoolClosedError("Cannot enqueue work after the pool was stopped")
            self._queue.put(item)

    def stop(self) -> None:
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            LOGGER.info("commencing worker pool shutdown")
            # Items accepted before start() still run to completion.
            self._spawn_workers()
            for _ in self._threads:
                self._queue.put(ShutdownWorkItem())
            threads = list(self._threads)

        for thread in threads:
            thread.join()
        LOGGER.debug("worker pool stopped")

    def _spawn_workers(self) -> None:
        if self._threads:
            return
        for number in range(self._num_workers):
            thread = threading.Thread(
                target=self._run,
                args=(number,),
                name=f"{self._name}-{number}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        LOGGER.debug("worker pool started num_workers=%s", self._num_workers)

    def _run(self, number: int) -> None:
        while True:
            item = self._queue.get()
            try:
                if isinstance(item, ShutdownWorkItem):
                    LOGGER.debug("shutting down worker worker=%s", number)
                    return
                self._execute(number, item)
            finally:
                self._queue.task_done()

    def _execute(self, number: int, item: WorkItem) -> None:
        tokens = bind_contextvars(
            worker=number,
            work_item=describe_work_item(item),
            **_item_context(item),
        )
        try:
            LOGGER.debug("worker picked up item worker=%s item=%s", number, item)
            self._executor(item)
        except Exception:
            LOGGER.error(
                "error while executing work item worker=%s item=%s",
                number,
                item,
                exc_info=True,
            )
        finally:
            reset_contextvars(**tokens)


def _item_context(item: WorkItem) -> dict[str, object]:
    if isinstance(item, UpdateWorkItem):
        return {"channel_id": item.channel.id}
    if isinstance(item, DownloadWorkItem):
        return {"video_id": item.video_id}
    if isinstance(item, ThumbnailCacheWorkItem):
        return {"thumbnail_url": item.url}
    return {}
