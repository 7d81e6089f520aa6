from __future__ import annotations

import logging

from quizreel.config import LoggingSettings
from quizreel.logging_config import ENGINE_LOGGER_NAME, configure_logging


def test_configure_logging_sets_root_and_engine_levels() -> None:
    configure_logging(LoggingSettings(level="warning", engine_level="DEBUG"))

    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger(ENGINE_LOGGER_NAME).level == logging.DEBUG


def test_unknown_level_falls_back_to_info() -> None:
    configure_logging(LoggingSettings(level="chatty"))

    assert logging.getLogger().level == logging.INFO
