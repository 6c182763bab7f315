"""Logging setup for VeilBatch processes."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, TextIO


ROOT_LOGGER = "veilbatch"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(
    level: str | int = "INFO",
    *,
    stream: Optional[TextIO] = None,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Install handlers on the `veilbatch` logger, replacing any installed earlier.

    Child loggers (`veilbatch.ledger`, `veilbatch.agent`, ...) propagate here.
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"unknown log level: {level!r}")
        level = resolved

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    fmt = logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S")

    console = logging.StreamHandler(stream or sys.stderr)
    console.setLevel(level)
    console.setFormatter(fmt)
    logger.addHandler(console)

    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(fmt)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def get_logger(component: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")
