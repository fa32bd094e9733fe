"""Logging configuration for the variation engine."""
from __future__ import annotations

import logging
from pathlib import Path

ROOT_LOGGER = "variation_engine"

_configured = False


def configure_logging(level: int | str = logging.INFO, log_dir: str | Path | None = None) -> logging.Logger:
    """Attach console (and optional file) handlers to the package logger.

    Args:
        level: Level for the package logger and its handlers.
        log_dir: Directory for ``variation_engine.log``; no file handler if omitted.

    Returns:
        The configured ``variation_engine`` logger.
    """
    global _configured
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    if _configured:
        return logger

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(message)s"))
    logger.addHandler(sh)

    if log_dir is not None:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(directory / "variation_engine.log", encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter("%(asctime)s [%(name)s] [%(levelname)s] %(message)s"))
        logger.addHandler(fh)

    _configured = True
    return logger


def reset_logging() -> None:
    """Detach handlers added by :func:`configure_logging`."""
    global _configured
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    _configured = False
