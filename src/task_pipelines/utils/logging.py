"""Logging configuration for the library and the command-line scripts."""

from __future__ import annotations

import logging
from logging import Logger
from typing import IO, Iterable, Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown logging level: {level!r}")
    return resolved


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    name: str = "task_pipelines",
    stream: Optional[IO[str]] = None,
    propagate: bool = False,
    extra_loggers: Optional[Iterable[str]] = None,
) -> Logger:
    """Attach a stream handler to ``name`` (and ``extra_loggers``) and set their level.

    Parameters
    ----------
    level: int | str
        Numeric level or a level name such as ``"DEBUG"``.
    name: str
        Logger namespace; module loggers under ``task_pipelines.*`` inherit
        the handler installed here.
    stream:
        Destination for the handler, ``sys.stderr`` when omitted.

    Calling again only updates the level: a logger that already has a stream
    handler keeps it, so repeated calls do not duplicate output.
    """

    resolved = resolve_level(level)
    names = [name, *(extra_loggers or ())]
    loggers = [logging.getLogger(logger_name) for logger_name in names]
    for target in loggers:
        if not any(isinstance(existing, logging.StreamHandler) for existing in target.handlers):
            handler = logging.StreamHandler(stream)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            target.addHandler(handler)
        target.setLevel(resolved)
        target.propagate = propagate
    return loggers[0]
