from __future__ import annotations

import logging

from quizreel.config import LoggingSettings

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
ENGINE_LOGGER_NAME = "quizreel.render.engine"


def configure_logging(settings: LoggingSettings) -> None:
    """Configure process-wide logging once at startup.

    The transcoding engine logs every ffmpeg command line; it gets its own
    level so a compile run at INFO does not drown in command dumps.
    """

    logging.basicConfig(
        level=_resolve_level(settings.level),
        format=DEFAULT_LOG_FORMAT,
        force=True,
    )
    logging.getLogger(ENGINE_LOGGER_NAME).setLevel(_resolve_level(settings.engine_level))


def _resolve_level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)
