from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from vidl.models.channels import VideoRecord
from vidl.models.video_status import VideoStatus
from vidl.models.work_items import DownloadWorkItem
from vidl.repositories.video_repository import VideoRepository

LOGGER = logging.getLogger("vidl.download")


class DownloadError(Exception):
    def __init__(self, message: str, *, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class DownloadExecutor(Protocol):
    def download(self, video: VideoRecord) -> None:
        ...


class YoutubeDlExecutor:
    """Runs a youtube-dl compatible binary for one video and relays its output to the log."""

    def __init__(
        self,
        *,
        binary: str,
        download_dir: Path,
        filename_format: str,
        extra_args: Sequence[str] = (),
        timeout_seconds: float | None = None,
    ) -> None:
        self._binary = binary
        self._download_dir = download_dir
        self._filename_format = filename_format
        self._extra_args = list(extra_args)
        self._timeout_seconds = timeout_seconds

    def build_command(self, video: VideoRecord) -> list[str]:
        output_template = str(self._download_dir / self._filename_format)
        return [
            self._binary,
            video.url,
            "--newline",
            "-o",
            output_template,
            *self._extra_args,
        ]

    def download(self, video: VideoRecord) -> None:
        command = self.build_command(video)
        LOGGER.debug("running download command=%s", command)
        try:
            self._download_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DownloadError(f"Cannot use download directory {self._download_dir}: {exc}") from exc
        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            raise DownloadError(f"Failed to start {self._binary}: {exc}") from exc

        timed_out = threading.Event()
        timer: threading.Timer | None = None
        if self._timeout_seconds is not None:
            timer = threading.Timer(self._timeout_seconds, _kill_process, (process, timed_out))
            timer.daemon = True
            timer.start()

        try:
            for line in process.stdout or ():
                LOGGER.debug("%s: %s", self._binary, line.rstrip())
            returncode = process.wait()
        finally:
            if timer is not None:
                timer.cancel()

        if timed_out.is_set():
            raise DownloadError(
                f"Download of {video.url} timed out after {self._timeout_seconds}s",
                returncode=returncode,
            )
        if returncode != 0:
            raise DownloadError(
                f"{self._binary} exited with status {returncode} for {video.url}",
                returncode=returncode,
            )


def _kill_process(process: subprocess.Popen[str], timed_out: threading.Event) -> None:
    timed_out.set()
    try:
        process.kill()
    except OSError:
        LOGGER.debug("download process already gone pid=%s", process.pid)


class DownloadService:
    def __init__(self, videos: VideoRepository, executor: DownloadExecutor) -> None:
        self._videos = videos
        self._executor = executor

    def queue_video(self, video_id: int) -> DownloadWorkItem:
        previous = self._videos.set_video_status(video_id, VideoStatus.QUEUED)
        LOGGER.info("queued video video_id=%s previous_status=%s", video_id, previous.name)
        return DownloadWorkItem(video_id=video_id)

    def ignore_video(self, video_id: int) -> None:
        previous = self._videos.set_video_status(video_id, VideoStatus.IGNORE)
        LOGGER.info("ignored video video_id=%s previous_status=%s", video_id, previous.name)

    def download_video(self, video_id: int) -> VideoStatus:
        """Download a queued video; anything not ``Queued`` is left untouched.

        Returns the status the video ends up in.
        """
        if not self._videos.claim_for_download(video_id):
            current = self._videos.get_video_by_id(video_id)
            LOGGER.info(
                "video not queued, skipping download video_id=%s status=%s",
                video_id,
                current.status.name,
            )
            return current.status

        video = self._videos.get_video_by_id(video_id)
        try:
            self._executor.download(video.record)
        except DownloadError:
            LOGGER.error("download failed video_id=%s url=%s", video_id, video.url, exc_info=True)
            self._videos.set_video_status(video_id, VideoStatus.GRAB_ERROR)
            return VideoStatus.GRAB_ERROR
        except Exception:
            self._videos.set_video_status(video_id, VideoStatus.GRAB_ERROR)
            raise

        LOGGER.info("grabbed video video_id=%s title=%s", video_id, video.title)
        self._videos.set_video_status(video_id, VideoStatus.GRABBED)
        return VideoStatus.GRABBED

    def recover_interrupted(self) -> int:
        stuck = self._videos.list_videos(
            statuses={VideoStatus.DOWNLOADING},
            limit=1_000_000,
        )
        for video in stuck:
            self._videos.set_video_status(video.id, VideoStatus.GRAB_ERROR)
            LOGGER.warning("marking interrupted download as failed video_id=%s", video.id)
        return len(stuck)

    def queued_work_items(self) -> list[DownloadWorkItem]:
        queued = self._videos.list_videos(statuses={VideoStatus.QUEUED}, limit=1_000_000)
        return [DownloadWorkItem(video_id=video.id) for video in queued]
