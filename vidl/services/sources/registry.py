from __future__ import annotations

from collections.abc import Mapping

from vidl.config import AppSettings
from vidl.models.channels import Service
from vidl.services.rate_limiter import TokenBucketRateLimiter
from vidl.services.sources.base import ChannelSource, UnsupportedServiceError
from vidl.services.sources.invidious import InvidiousSource


class SourceRegistry:
    def __init__(self, sources: Mapping[Service, ChannelSource]) -> None:
        self._sources = dict(sources)

    def for_service(self, service: Service) -> ChannelSource:
        source = self._sources.get(service)
        if source is None:
            raise UnsupportedServiceError(service)
        return source

    def supports(self, service: Service) -> bool:
        return service in self._sources


def build_source_registry(
    settings: AppSettings,
    *,
    rate_limiter: TokenBucketRateLimiter | None = None,
) -> SourceRegistry:
    limiter = rate_limiter or TokenBucketRateLimiter(
        capacity=settings.rate_limit_requests,
        refill_period_seconds=settings.rate_limit_window_seconds,
    )
    youtube = InvidiousSource(
        api_prefix=settings.invidious_url,
        rate_limiter=limiter,
        http_timeout_seconds=settings.http_timeout_seconds,
        max_retries=settings.request_retries,
        retry_delay_seconds=settings.request_retry_delay_seconds,
        metadata_backoff_seconds=settings.metadata_backoff_seconds,
        listing_backoff_seconds=settings.listing_backoff_seconds,
    )
    # Vimeo channels can be stored but have no listing source.
    return SourceRegistry({Service.YOUTUBE: youtube})
