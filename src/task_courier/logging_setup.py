"""Console logging for the task-courier command line."""

from __future__ import annotations

import logging
import os
import sys

_LOGGER_NAME = "task_courier"
_CONFIGURED_ATTR = "_task_courier_handler"
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _parse_level(raw: str) -> int:
    normalized = raw.strip().upper()
    return getattr(logging, normalized, logging.INFO)


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach one stderr handler to the package logger; safe to call repeatedly.

    A repeated call rebinds the handler to the current ``sys.stderr``.
    """

    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(_parse_level(level or os.getenv("TASK_COURIER_LOG_LEVEL", "INFO")))

    for existing in [h for h in logger.handlers if getattr(h, _CONFIGURED_ATTR, False)]:
        logger.removeHandler(existing)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    setattr(handler, _CONFIGURED_ATTR, True)
    logger.addHandler(handler)
    return logger
