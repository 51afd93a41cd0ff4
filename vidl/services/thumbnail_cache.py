from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from urllib.error import HTTPError
from urllib.request import Request, urlopen

LOGGER = logging.getLogger("vidl.thumbnails")

DEFAULT_CONTENT_TYPE = "image/jpeg"


@dataclass(frozen=True)
class Image:
    content_type: str
    data: bytes


@dataclass(frozen=True)
class ImageResponse:
    status: int
    content_type: str | None
    data: bytes

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class CacheLookup:
    image: Image | None
    needs_fetch: bool


class ThumbnailCache:
    """In-memory thumbnail store shared by the workers that fill it and the readers."""

    def __init__(self, *, http_timeout_seconds: float = 30.0) -> None:
        self._http_timeout_seconds = http_timeout_seconds
        self._images: dict[str, Image] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._images)

    def contains(self, url: str) -> bool:
        with self._lock:
            return url in self._images

    def add(self, url: str, image: Image) -> None:
        with self._lock:
            self._images[url] = image

    def lookup(self, url: str) -> CacheLookup:
        with self._lock:
            image = self._images.get(url)
        return CacheLookup(image=image, needs_fetch=image is None)

    def fetch(self, url: str) -> bool:
        """Fill the cache for ``url``; returns True when an image was stored."""
        # Another worker may have cached it since the item was queued.
        if self.contains(url):
            LOGGER.debug("image already in cache, skipping url=%s", url)
            return False

        try:
            response = _fetch_image(url, timeout_seconds=self._http_timeout_seconds)
        except OSError as exc:
            # URLError and socket timeouts
            LOGGER.error("failed to grab thumbnail url=%s error=%s", url, exc)
            return False
        if not response.is_success:
            LOGGER.error("failed to grab thumbnail url=%s status=%s", url, response.status)
            return False

        self.add(
            url,
            Image(
                content_type=response.content_type or DEFAULT_CONTENT_TYPE,
                data=response.data,
            ),
        )
        return True


def _fetch_image(url: str, *, timeout_seconds: float) -> ImageResponse:
    request = Request(url, method="GET")
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            return ImageResponse(
                status=int(getattr(response, "status", 200)),
                content_type=response.headers.get("content-type"),
                data=response.read(),
            )
    except HTTPError as exc:
        return ImageResponse(status=exc.code, content_type=None, data=b"")
