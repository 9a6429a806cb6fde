"""Logging utilities for adaptive discovery.

The library stays silent until the host application configures logging or
calls :func:`configure_logging`. Setting ``DEBUG=adaptive-tests`` (or
``adaptive-tests:*`` / ``*``) in the environment turns on verbose output.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

_LOGGER_NAME = "adaptive_tests"
_DEBUG_NAMESPACES = {"adaptive-tests", "adaptive-tests:*", "adaptive_tests", "*"}

logging.getLogger(_LOGGER_NAME).addHandler(logging.NullHandler())


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the adaptive_tests hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def debug_enabled(environ: Mapping[str, str] | None = None) -> bool:
    """True when the ``DEBUG`` variable names the adaptive-tests namespace."""
    value = (environ if environ is not None else os.environ).get("DEBUG", "")
    namespaces = {item.strip() for item in value.replace(",", " ").split()}
    return bool(namespaces & _DEBUG_NAMESPACES)


def configure_logging(
    *, verbose: bool | None = None, log_file: Path | None = None
) -> logging.Logger:
    """Attach a console handler (and optional file sink) to the adaptive_tests logger.

    ``verbose=None`` defers to the ``DEBUG`` environment variable.
    """
    if verbose is None:
        verbose = debug_enabled()
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Replaces the import-time NullHandler as well as earlier configuration.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(logging.Formatter("[adaptive-tests] %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(stream_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)

    return logger


__all__ = ["configure_logging", "debug_enabled", "get_logger"]
