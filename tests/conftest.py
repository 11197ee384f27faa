"""Shared fixtures for pass gallery tests."""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from utils.database import PassStore


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    import app as app_module
    from routes import register_blueprints

    app_module.app.config['TESTING'] = True

    if 'gallery' not in app_module.app.blueprints:
        register_blueprints(app_module.app)

    return app_module.app


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def live_output(tmp_path):
    """Empty live output root."""
    root = tmp_path / 'live_output'
    root.mkdir()
    return root


@pytest.fixture
def store(tmp_path):
    """Initialized store on a temporary database."""
    pass_store = PassStore(tmp_path / 'data' / 'image_metadata.db')
    pass_store.init_schema()
    yield pass_store
    pass_store.close()


@pytest.fixture
def temp_db(tmp_path, live_output):
    """Point the global store and scheduler at temporary paths."""
    import utils.passes.scheduler as scheduler_module
    from utils.database import close_db, init_db

    db_path = tmp_path / 'global' / 'image_metadata.db'
    with patch('utils.database.DB_PATH', db_path), \
         patch('utils.database.DB_DIR', db_path.parent), \
         patch('config.LIVE_OUTPUT_DIR', live_output), \
         patch.object(scheduler_module, '_scheduler', None):
        close_db()
        init_db()
        yield db_path
        close_db()


def write_image(path: Path, width: int = 64, height: int = 48) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new('RGB', (width, height), (30, 60, 90)).save(path)
    return path


def age_path(path: Path, seconds: float) -> None:
    """Move a path's mtime into the past."""
    then = time.time() - seconds
    os.utime(path, (then, then))


class PassTreeBuilder:
    """Builds SatDump-style pass directories under a live output root."""

    def __init__(self, root: Path):
        self.root = root

    def _pass_dir(self, name: str) -> Path:
        pass_dir = self.root / name
        pass_dir.mkdir(parents=True, exist_ok=True)
        return pass_dir

    def dataset(self, name: str, satellite: str, timestamp=None) -> Path:
        pass_dir = self._pass_dir(name)
        data = {'satellite': satellite}
        if timestamp is not None:
            data['timestamp'] = timestamp
        (pass_dir / 'dataset.json').write_text(json.dumps(data))
        return pass_dir

    def noaa(self, name: str, images: dict[str, int], satellite: str = 'NOAA 19',
             timestamp=1704450600) -> Path:
        """images: filename -> height"""
        pass_dir = self.dataset(name, satellite, timestamp)
        for filename, height in images.items():
            write_image(pass_dir / filename, height=height)
        return pass_dir

    def meteor(self, name: str, msu: dict[str, int] | None = None, filled: dict[str, int] | None = None,
               satellite: str = 'METEOR-M2 3', timestamp=1704450600, cadu: str | None = None) -> Path:
        pass_dir = self.dataset(name, satellite, timestamp)
        for filename, height in (msu or {}).items():
            write_image(pass_dir / 'MSU-MR' / filename, height=height)
        for filename, height in (filled or {}).items():
            write_image(pass_dir / 'MSU-MR (Filled)' / filename, height=height)
        if cadu:
            (pass_dir / cadu).write_bytes(b'\x1a\xcf\xfc\x1d' * 16)
        return pass_dir

    def elektro(self, name: str, products: dict[str, list[str]], times: dict[str, int] | None = None) -> Path:
        """products: subfolder -> filenames; times: subfolder -> capture time"""
        pass_dir = self._pass_dir(name)
        cache = {
            f'IMAGES/ELEKTRO-L3/{subfolder}': {'time': time_value}
            for subfolder, time_value in (times or {}).items()
        }
        (pass_dir / '.composite_cache_do_not_delete.json').write_text(json.dumps(cache))
        for subfolder, filenames in products.items():
            for filename in filenames:
                write_image(pass_dir / 'IMAGES' / 'ELEKTRO-L3' / subfolder / filename, 8, 8)
        return pass_dir

    def fengyun(self, name: str, products: dict[str, list[str]]) -> Path:
        pass_dir = self._pass_dir(name)
        (pass_dir / 'IMAGE').mkdir(exist_ok=True)
        for subfolder, filenames in products.items():
            for filename in filenames:
                write_image(pass_dir / 'IMAGE' / subfolder / filename, 8, 8)
        return pass_dir

    def formatted(self, name: str, satellite: str, products: dict[str, dict[str, int]],
                  listed: list | None = None, timestamp=1704450600) -> Path:
        """products: instrument folder -> {filename: height}; listed defaults to the folders"""
        pass_dir = self._pass_dir(name)
        data = {'satellite': satellite, 'timestamp': timestamp,
                'products': list(products) if listed is None else listed}
        (pass_dir / 'dataset.json').write_text(json.dumps(data))
        for folder, images in products.items():
            for filename, height in images.items():
                write_image(pass_dir / folder / filename, height=height)
        return pass_dir

    def flat(self, name: str, folder: str, filenames: list[str]) -> Path:
        pass_dir = self._pass_dir(name)
        (pass_dir / folder).mkdir(exist_ok=True)
        for filename in filenames:
            write_image(pass_dir / folder / filename, 8, 8)
        return pass_dir

    def uvsq(self, name: str, products: dict[str, list[str]]) -> Path:
        pass_dir = self._pass_dir(name)
        for subfolder, filenames in products.items():
            for filename in filenames:
                write_image(pass_dir / subfolder / filename, 8, 8)
        return pass_dir

    def raw(self, name: str, filename: str) -> Path:
        path = self._pass_dir(name) / filename
        path.write_bytes(b'\x1a\xcf\xfc\x1d' * 16)
        return path

    def empty(self, name: str) -> Path:
        return self._pass_dir(name)

    def settle(self, seconds: float = 3600) -> None:
        """Age every pass directory past the stability window."""
        for entry in self.root.iterdir():
            if entry.is_dir():
                age_path(entry, seconds)


@pytest.fixture
def pass_tree(live_output):
    return PassTreeBuilder(live_output)
