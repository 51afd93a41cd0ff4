from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Protocol

from vidl.models.channels import ChannelMetadata, Service, VideoRecord


class FetchError(Exception):
    """Network, HTTP or parse failure while talking to a remote source."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class UnsupportedServiceError(LookupError):
    def __init__(self, service: Service) -> None:
        super().__init__(f"No channel source available for service {service.value!r}")
        self.service = service


@dataclass(frozen=True)
class ContinuationToken:
    """Opaque cursor for the next page; ``value is None`` marks the end."""

    value: str | None = None

    @classmethod
    def end(cls) -> ContinuationToken:
        return cls(value=None)

    @classmethod
    def from_raw(cls, raw_value: object) -> ContinuationToken:
        if isinstance(raw_value, str) and raw_value.strip():
            return cls(value=raw_value)
        return cls.end()

    @property
    def is_end(self) -> bool:
        return self.value is None


@dataclass(frozen=True)
class VideoPage:
    videos: list[VideoRecord]
    continuation: ContinuationToken


class ChannelSource(Protocol):
    def get_metadata(self, channel_id: str) -> ChannelMetadata:
        ...

    def videos(self, channel_id: str) -> Iterator[VideoRecord]:
        ...

    def resolve_channel_id(self, name: str) -> str:
        ...


def paginate(
    fetch_page: Callable[[str | None], VideoPage],
    *,
    before_fetch: Callable[[], None] | None = None,
) -> Iterator[VideoRecord]:
    """Lazily walk pages newest-first, fetching one page per exhausted buffer.

    A failing page fetch propagates its ``FetchError`` out of ``next()``, which
    also finishes the generator. An empty page or an end token stops cleanly.
    """
    continuation: str | None = None
    while True:
        if before_fetch is not None:
            before_fetch()
        page = fetch_page(continuation)
        if not page.videos:
            return
        yield from page.videos
        if page.continuation.is_end:
            return
        continuation = page.continuation.value
