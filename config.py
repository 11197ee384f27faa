"""Application configuration.

Values are read from ``PASSGALLERY_*`` environment variables at import time,
falling back to the defaults below.
"""

from __future__ import annotations

import os
from pathlib import Path

VERSION = '1.4.0'

BASE_DIR = Path(__file__).resolve().parent


def _get_env(name: str, default: str) -> str:
    return os.environ.get(f'PASSGALLERY_{name}', default)


def _get_env_int(name: str, default: int) -> int:
    value = os.environ.get(f'PASSGALLERY_{name}')
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(f'PASSGALLERY_{name}')
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# Paths
DATA_DIR = Path(_get_env('DATA_DIR', str(BASE_DIR / 'data')))
DB_PATH = Path(_get_env('DB_PATH', str(DATA_DIR / 'image_metadata.db')))
LIVE_OUTPUT_DIR = Path(_get_env('LIVE_OUTPUT_DIR', str(BASE_DIR / 'live_output')))

# Indexing
STABILITY_POLICY = _get_env('STABILITY_POLICY', 'mtime')  # 'mtime' or 'recursive'
STABILITY_WINDOW_SECONDS = _get_env_int('STABILITY_WINDOW_SECONDS', 15 * 60)
RECENT_FILE_SECONDS = _get_env_int('RECENT_FILE_SECONDS', 4 * 60)
INDEX_INTERVAL_SECONDS = _get_env_int('INDEX_INTERVAL_SECONDS', 10 * 60)
INDEX_ON_STARTUP = _get_env_bool('INDEX_ON_STARTUP', True)
DIMENSION_WORKERS = _get_env_int('DIMENSION_WORKERS', 4)

# Retrieval
DEFAULT_IMAGE_LIMIT = _get_env_int('DEFAULT_IMAGE_LIMIT', 100)

# Server
LOG_LEVEL = _get_env('LOG_LEVEL', 'INFO')
HOST = _get_env('HOST', '0.0.0.0')
PORT = _get_env_int('PORT', 5050)
