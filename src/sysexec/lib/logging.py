"""Structlog configuration helpers."""

from __future__ import annotations

import logging as std_logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO

import structlog


def _level_from_verbosity(verbosity: int) -> int:
    if verbosity <= 0:
        return std_logging.WARNING
    if verbosity == 1:
        return std_logging.INFO
    return std_logging.DEBUG


def _resolve_level(verbosity: int, level_name: str | None) -> int:
    if level_name is None:
        return _level_from_verbosity(verbosity)
    level = std_logging.getLevelName(level_name.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {level_name!r}")
    return level


def configure_logging(
    json_mode: bool = False,
    verbosity: int = 0,
    *,
    level_name: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog and stdlib logging.

    Diagnostics default to stderr because child process output is echoed
    on stdout by the CLI.
    """

    level = _resolve_level(verbosity, level_name)
    target = stream or sys.stderr
    handler = std_logging.StreamHandler(target)
    handler.setFormatter(std_logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    std_logging.basicConfig(level=level, handlers=[handler], force=True)

    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer()
        if json_mode
        else structlog.dev.ConsoleRenderer(colors=target.isatty())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info if json_mode else _passthrough,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=target),
        cache_logger_on_first_use=False,
    )


def _passthrough(
    logger: object, method_name: str, event_dict: structlog.typing.EventDict
) -> structlog.typing.EventDict:
    _ = (logger, method_name)
    return event_dict


@contextmanager
def bound_log_context(**values: object) -> Iterator[None]:
    """Attach key/value pairs to every log event emitted in this context."""

    tokens = structlog.contextvars.bind_contextvars(**values)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
