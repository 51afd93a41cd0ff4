from __future__ import annotations

import fcntl
import logging
import os
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import TextIO
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from vidl.models.work_items import UpdateWorkItem, WorkItem
from vidl.repositories.channel_repository import ChannelRepository

LOGGER = logging.getLogger("vidl.scheduler")


class SchedulerLock:
    """Advisory file lock so only one vidl process runs the refresh loop.

    The lock file holds the owner's pid. Closing the file releases the lock.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._file: TextIO | None = None

    @property
    def held(self) -> bool:
        return self._file is not None

    def acquire(self) -> bool:
        if self._file is not None:
            return True
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = self.path.open("a+", encoding="utf-8")
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_file.close()
            LOGGER.info("refresh loop already running elsewhere lock=%s", self.path)
            return False
        lock_file.seek(0)
        lock_file.truncate()
        lock_file.write(f"{os.getpid()}\n")
        lock_file.flush()
        self._file = lock_file
        return True

    def release(self) -> None:
        if self._file is None:
            return
        self._file.close()
        self._file = None


class SchedulerService:
    """Periodically enqueues an update check for every stored channel."""

    def __init__(
        self,
        channels: ChannelRepository,
        enqueue: Callable[[WorkItem], None],
        poll_interval_seconds: int,
        *,
        lock_path: Path | None = None,
    ) -> None:
        self._channels = channels
        self._enqueue = enqueue
        self._poll_interval_seconds = max(1, poll_interval_seconds)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = SchedulerLock(lock_path) if lock_path is not None else None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the refresh loop; ``False`` if another process holds the lock."""
        if self.is_running:
            return True
        if self._lock is not None and not self._lock.acquire():
            return False

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="vidl-scheduler", daemon=True)
        self._thread.start()
        LOGGER.info("refresh loop started interval_seconds=%s", self._poll_interval_seconds)
        return True

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3)
            self._thread = None
        if self._lock is not None:
            self._lock.release()

    def run_tick(self) -> int:
        tokens = bind_contextvars(scheduler_tick_id=uuid4().hex)
        try:
            channels = self._channels.list_channels()
            for channel in channels:
                self._enqueue(UpdateWorkItem(channel=channel))
            LOGGER.debug("scheduled update checks channels=%s", len(channels))
            return len(channels)
        finally:
            reset_contextvars(**tokens)

    def _run_loop(self) -> None:
        next_tick = 0.0
        while not self._stop_event.is_set():
            now = time.monotonic()
            if now >= next_tick:
                try:
                    self.run_tick()
                except Exception:
                    LOGGER.warning("scheduler tick failed", exc_info=True)
                next_tick = now + self._poll_interval_seconds
            self._stop_event.wait(max(0.0, next_tick - now))
