from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from typing import TypeVar
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from vidl.models.channels import ChannelMetadata, VideoRecord
from vidl.services.rate_limiter import TokenBucketRateLimiter
from vidl.services.sources.base import ContinuationToken, FetchError, VideoPage, paginate

LOGGER = logging.getLogger("vidl.source.invidious")

DEFAULT_INVIDIOUS_URL = "https://y.com.sb"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:78.0) Gecko/20100101 Firefox/78.0"
)
CHANNEL_METADATA_FIELDS = "author,authorId,description,authorThumbnails,authorBanners"
YOUTUBE_WATCH_URL = "http://youtube.com/watch?v={video_id}"

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class _InvidiousModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class _Thumbnail(_InvidiousModel):
    quality: str | None = None
    url: str
    width: int | None = None
    height: int | None = None


class _ChannelInfo(_InvidiousModel):
    author: str
    author_id: str
    description: str = ""
    author_thumbnails: list[_Thumbnail] = []


class _VideoInfo(_InvidiousModel):
    title: str
    video_id: str
    video_thumbnails: list[_Thumbnail] = []
    description: str = ""
    length_seconds: int
    published: int


class _VideoListPage(_InvidiousModel):
    videos: list[_VideoInfo]
    continuation: str | None = None


class _ResolvedUrl(_InvidiousModel):
    ucid: str | None = None


class InvidiousSource:
    """YouTube channel data through an Invidious instance's JSON API."""

    def __init__(
        self,
        *,
        api_prefix: str = DEFAULT_INVIDIOUS_URL,
        rate_limiter: TokenBucketRateLimiter,
        http_timeout_seconds: float = 30.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        metadata_backoff_seconds: float = 1.0,
        listing_backoff_seconds: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_prefix = api_prefix.strip().rstrip("/")
        self._rate_limiter = rate_limiter
        self._http_timeout_seconds = http_timeout_seconds
        self._max_retries = max(0, max_retries)
        self._retry_delay_seconds = max(0.0, retry_delay_seconds)
        self._metadata_backoff_seconds = metadata_backoff_seconds
        self._listing_backoff_seconds = listing_backoff_seconds
        self._user_agent = user_agent
        self._sleep = sleep

    @property
    def api_prefix(self) -> str:
        return self._api_prefix

    def get_metadata(self, channel_id: str) -> ChannelMetadata:
        query = urlencode({"fields": CHANNEL_METADATA_FIELDS}, safe=",")
        url = f"{self._api_prefix}/api/v1/channels/{quote(channel_id)}?{query}"
        self._wait_for_budget(self._metadata_backoff_seconds)
        info = self._request_model(url, _ChannelInfo)
        return ChannelMetadata(
            title=info.author,
            thumbnail_url=_choose_best_thumbnail(info.author_thumbnails),
            description=info.description,
        )

    def videos(self, channel_id: str) -> Iterator[VideoRecord]:
        return paginate(
            lambda continuation: self._fetch_video_page(channel_id, continuation),
            before_fetch=lambda: self._wait_for_budget(self._listing_backoff_seconds),
        )

    def resolve_channel_id(self, name: str) -> str:
        """Return the ``UC…`` id for a channel id, handle, user or custom name."""
        stripped = name.strip()
        if stripped.startswith("UC"):
            return stripped

        candidates = [
            f"https://www.youtube.com/@{stripped.lstrip('@')}",
            f"https://www.youtube.com/user/{stripped}",
            f"https://www.youtube.com/c/{stripped}",
        ]
        for candidate in candidates:
            url = f"{self._api_prefix}/api/v1/resolveurl?{urlencode({'url': candidate})}"
            self._wait_for_budget(self._metadata_backoff_seconds)
            try:
                resolved = self._request_model(url, _ResolvedUrl)
            except FetchError:
                LOGGER.debug("channel lookup failed candidate=%s", candidate)
                continue
            if resolved.ucid:
                return resolved.ucid
            raise FetchError(f"No channel id in lookup response for {candidate}", url=url)

        raise FetchError(f"Failed to find any of {candidates}")

    def _fetch_video_page(self, channel_id: str, continuation: str | None) -> VideoPage:
        url = f"{self._api_prefix}/api/v1/channels/{quote(channel_id)}/videos"
        if continuation is not None:
            url = f"{url}?{urlencode({'continuation': continuation})}"
        page = self._request_model(url, _VideoListPage)
        LOGGER.debug(
            "fetched video page channel_id=%s videos=%s has_continuation=%s",
            channel_id,
            len(page.videos),
            page.continuation is not None,
        )
        try:
            videos = [_to_video_record(video) for video in page.videos]
        except (OverflowError, ValueError, OSError) as exc:
            raise FetchError(f"Invalid video in page from {url}: {exc}", url=url) from exc
        return VideoPage(
            videos=videos,
            continuation=ContinuationToken.from_raw(page.continuation),
        )

    def _wait_for_budget(self, backoff_seconds: float) -> None:
        while True:
            decision = self._rate_limiter.take(self._api_prefix)
            if decision.allowed:
                return
            LOGGER.debug(
                "waiting for rate limit backoff_seconds=%s retry_after_seconds=%.1f",
                backoff_seconds,
                decision.retry_after_seconds,
            )
            self._sleep(backoff_seconds)

    def _request_model(self, url: str, model: type[_ModelT]) -> _ModelT:
        attempts = self._max_retries + 1
        last_error = FetchError(f"No request made to {url}", url=url)
        for attempt in range(attempts):
            try:
                raw_body = _fetch_text(
                    url,
                    timeout_seconds=self._http_timeout_seconds,
                    user_agent=self._user_agent,
                )
                return model.model_validate_json(raw_body)
            except ValidationError as exc:
                last_error = FetchError(f"Failed to parse response from {url}: {exc}", url=url)
            except FetchError as exc:
                last_error = exc

            if attempt < attempts - 1:
                LOGGER.debug(
                    "retrying request url=%s attempt=%s/%s error=%s",
                    url,
                    attempt + 1,
                    attempts,
                    last_error,
                )
                if self._retry_delay_seconds > 0:
                    self._sleep(self._retry_delay_seconds)

        raise last_error


def _fetch_text(url: str, *, timeout_seconds: float, user_agent: str) -> str:
    LOGGER.debug("retrieving url=%s", url)
    request = Request(
        url,
        headers={"user-agent": user_agent, "accept": "application/json"},
        method="GET",
    )
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            return response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        raise FetchError(f"HTTP {exc.code} from {url}", url=url) from exc
    except (URLError, TimeoutError, OSError) as exc:
        raise FetchError(f"Request to {url} failed: {exc}", url=url) from exc


def _choose_best_thumbnail(thumbnails: list[_Thumbnail]) -> str:
    for thumbnail in thumbnails:
        if thumbnail.quality == "default":
            return thumbnail.url
    if thumbnails:
        return thumbnails[0].url
    return ""


def _to_video_record(video: _VideoInfo) -> VideoRecord:
    return VideoRecord(
        video_id=video.video_id,
        url=YOUTUBE_WATCH_URL.format(video_id=video.video_id),
        title=video.title,
        description=video.description,
        thumbnail_url=_choose_best_thumbnail(video.video_thumbnails),
        published_at=datetime.fromtimestamp(video.published, UTC),
        duration_seconds=video.length_seconds,
    )
