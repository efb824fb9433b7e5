"""Centralized logging setup for Helly.

Usage:
    from src.helly.core.logger import get_logger
    logger = get_logger("router")
    logger.warning("router.parse.failed error_code=%s", code)

Set `LOG_LEVEL` (DEBUG, INFO, WARNING, ERROR) to control verbosity.
"""

from __future__ import annotations

import logging
import os
import sys

ROOT_LOGGER_NAME = "helly"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def _configure_root_logger() -> logging.Logger:
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if _configured:
        return root

    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.propagate = False
    _configured = True
    return root


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the `helly` namespace."""
    root = _configure_root_logger()
    if not name or name == ROOT_LOGGER_NAME:
        return root
    if name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = name[len(ROOT_LOGGER_NAME) + 1 :]
    return root.getChild(name)
