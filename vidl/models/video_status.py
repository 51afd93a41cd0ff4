from __future__ import annotations

from enum import Enum


class VideoStatus(Enum):
    NEW = "NE"
    QUEUED = "QU"
    DOWNLOADING = "DL"
    GRABBED = "GR"
    GRAB_ERROR = "GE"
    IGNORE = "IG"

    @classmethod
    def from_code(cls, raw_value: str) -> VideoStatus:
        normalized = raw_value.strip().upper()
        for status in cls:
            if status.value == normalized or status.name == normalized:
                return status
        raise ValueError(f"Unknown video status: {raw_value!r}")

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[VideoStatus] = frozenset(
    {VideoStatus.GRABBED, VideoStatus.IGNORE}
)

# Ignore is reachable from every non-Ignore state as a manual override.
_ALLOWED_TRANSITIONS: dict[VideoStatus, frozenset[VideoStatus]] = {
    VideoStatus.NEW: frozenset({VideoStatus.QUEUED, VideoStatus.IGNORE}),
    VideoStatus.QUEUED: frozenset({VideoStatus.DOWNLOADING, VideoStatus.IGNORE}),
    VideoStatus.DOWNLOADING: frozenset(
        {VideoStatus.GRABBED, VideoStatus.GRAB_ERROR, VideoStatus.IGNORE}
    ),
    VideoStatus.GRABBED: frozenset({VideoStatus.IGNORE}),
    VideoStatus.GRAB_ERROR: frozenset({VideoStatus.QUEUED, VideoStatus.IGNORE}),
    VideoStatus.IGNORE: frozenset(),
}


class InvalidTransitionError(ValueError):
    def __init__(self, current: VideoStatus, requested: VideoStatus) -> None:
        super().__init__(
            f"Invalid video status transition {current.name} -> {requested.name}"
        )
        self.current = current
        self.requested = requested


def can_transition(current: VideoStatus, requested: VideoStatus) -> bool:
    if current is requested:
        return True
    return requested in _ALLOWED_TRANSITIONS[current]


def ensure_transition(current: VideoStatus, requested: VideoStatus) -> None:
    if not can_transition(current, requested):
        raise InvalidTransitionError(current, requested)


def parse_statuses(raw_value: str) -> frozenset[VideoStatus]:
    """Parse a comma separated list of status codes such as ``GE,NE``."""
    statuses: set[VideoStatus] = set()
    for part in raw_value.split(","):
        if part.strip():
            statuses.add(VideoStatus.from_code(part))
    return frozenset(statuses)
