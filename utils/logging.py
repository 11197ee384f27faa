"""Logging helpers shared by the indexer, the query layer and the routes."""

from __future__ import annotations

import logging
import sys

import config

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
ROOT_LOGGER_NAME = 'passgallery'

_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    level = getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO)
    root.setLevel(level)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the application namespace."""
    _configure_root()
    return logging.getLogger(name)


def set_level(level: int) -> None:
    """Change the level of every application logger at once."""
    _configure_root()
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(level)


indexer_logger = get_logger('passgallery.indexer')
