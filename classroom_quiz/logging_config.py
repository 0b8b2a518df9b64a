"""Logging configuration helpers for the classroom quiz service."""

from __future__ import annotations

import logging
from logging import Logger

from classroom_quiz.config import get_settings


def configure_logging(level: str | None = None) -> Logger:
    """Configure basic logging for the service and return the package logger."""
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return logging.getLogger("classroom_quiz")
