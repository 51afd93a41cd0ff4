from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from vidl.config import AppSettings

LOG_FILE_NAME = "vidl.log"

# Bound by the worker pool for the duration of one work item.
WORK_CONTEXT_KEYS = ("worker", "work_item")


def configure_application_logging(
    settings: AppSettings,
    *,
    console_level: str | None = None,
) -> Path:
    """Route every ``vidl.*`` logger to a console stream and a JSON lines file.

    The file always records DEBUG. The console follows ``console_level`` when
    given and ``settings.log_level`` otherwise.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / LOG_FILE_NAME
    level_name = (console_level or settings.log_level).strip().upper()

    logger = logging.getLogger("vidl")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console_handler = logging.StreamHandler(stream=sys.stdout)
    console_handler.setLevel(_level_number(level_name))
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[
                _collapse_work_context,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=_is_terminal(sys.stdout)),
            ],
        )
    )

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[
                _add_thread_name,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
        )
    )

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)
    logger.debug("logging configured console_level=%s path=%s", level_name, log_file)
    return log_file


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _collapse_work_context(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Render ``worker=2 work_item=download`` as ``task=worker-2/download``."""
    if not all(key in event_dict for key in WORK_CONTEXT_KEYS):
        return event_dict
    worker = event_dict.pop("worker")
    work_item = event_dict.pop("work_item")
    event_dict["task"] = f"worker-{worker}/{work_item}"
    return event_dict


def _add_thread_name(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["thread_name"] = record.threadName
    return event_dict


def _level_number(level_name: str) -> int:
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


def _is_terminal(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    return callable(isatty) and bool(isatty())
