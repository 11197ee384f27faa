"""
SQLite store for indexed satellite passes.

The ``PassStore`` object owns the database file and its schema. The indexer
and the gallery query layer receive a store explicitly; the Flask layer uses
the process-wide instance returned by ``get_store()``.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Generator, Iterable

import config
from utils.logging import get_logger

if TYPE_CHECKING:
    from utils.passes.models import ImageRecord, PassRecord

logger = get_logger('passgallery.database')

# Database location (patched by tests)
DB_DIR = config.DATA_DIR
DB_PATH = config.DB_PATH

# Columns whose absence marks a passes table from an older schema version
REQUIRED_PASS_COLUMNS = ('satellite', 'downlink')

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS passes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT UNIQUE,
        satellite TEXT,
        timestamp INTEGER,
        rawDataPath TEXT,
        downlink TEXT
    );

    CREATE TABLE IF NOT EXISTS images (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT,
        composite TEXT,
        sensor TEXT,
        mapOverlay INTEGER,
        corrected INTEGER,
        filled INTEGER,
        vPixels INTEGER,
        passId INTEGER,
        FOREIGN KEY (passId) REFERENCES passes(id) ON DELETE CASCADE
    );

    CREATE INDEX IF NOT EXISTS idx_images_pass ON images(passId);
    CREATE INDEX IF NOT EXISTS idx_passes_timestamp ON passes(timestamp);
'''


class StoreError(Exception):
    """Raised when the store cannot be opened, migrated or written."""


class PassStore:
    """Thread-aware access to the pass/image database."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), timeout=30, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute('PRAGMA journal_mode=WAL')
            conn.execute('PRAGMA synchronous=NORMAL')
            conn.execute('PRAGMA foreign_keys=ON')
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Cannot open database {self.db_path}: {e}") from e

        with self._connections_lock:
            self._connections.append(conn)
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Yield this thread's connection inside a transaction.

        Commits on success and rolls back on any exception. sqlite errors are
        re-raised as StoreError.
        """
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn

        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing connection: {e}")
            self._connections.clear()
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def init_schema(self) -> None:
        """Create tables if missing, dropping a passes table from an old schema."""
        with self.connection() as conn:
            columns = {row['name'] for row in conn.execute('PRAGMA table_info(passes)')}
            if columns and not all(col in columns for col in REQUIRED_PASS_COLUMNS):
                logger.warning("Outdated passes table found; dropping pass and image tables")
                conn.execute('DROP TABLE IF EXISTS images')
                conn.execute('DROP TABLE IF EXISTS passes')
            conn.executescript(SCHEMA)

    def has_passes_table(self) -> bool:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='passes'"
            ).fetchone()
            return row is not None

    def delete_file(self) -> bool:
        """Remove the database file and its WAL side files.

        Returns:
            True if a database file existed
        """
        self.close()
        existed = self.db_path.exists()
        for suffix in ('', '-wal', '-shm'):
            path = Path(f"{self.db_path}{suffix}")
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StoreError(f"Cannot delete {path}: {e}") from e
        return existed

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Delete every pass and image row."""
        with self.connection() as conn:
            conn.execute('DELETE FROM images')
            conn.execute('DELETE FROM passes')

    def indexed_pass_names(self) -> set[str]:
        with self.connection() as conn:
            return {row['name'] for row in conn.execute('SELECT name FROM passes')}

    def write_pass(self, record: PassRecord, images: Iterable[ImageRecord] | None = None) -> int:
        """Upsert one pass and replace its images in a single transaction.

        Returns:
            The new pass row id
        """
        if images is None:
            images = record.images

        with self.connection() as conn:
            conn.execute(
                'DELETE FROM images WHERE passId IN (SELECT id FROM passes WHERE name = ?)',
                (record.name,)
            )
            cursor = conn.execute('''
                INSERT OR REPLACE INTO passes (name, satellite, timestamp, rawDataPath, downlink)
                VALUES (?, ?, ?, ?, ?)
            ''', record.to_row())
            pass_id = cursor.lastrowid

            conn.executemany('''
                INSERT INTO images (path, composite, sensor, mapOverlay, corrected, filled, vPixels, passId)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ''', [image.to_row(pass_id) for image in images])

        return pass_id

    def delete_pass(self, name: str) -> bool:
        """Delete a pass and its images so the next update re-indexes it."""
        with self.connection() as conn:
            conn.execute(
                'DELETE FROM images WHERE passId IN (SELECT id FROM passes WHERE name = ?)',
                (name,)
            )
            cursor = conn.execute('DELETE FROM passes WHERE name = ?', (name,))
            return cursor.rowcount > 0

    def get_pass(self, name: str) -> dict | None:
        with self.connection() as conn:
            row = conn.execute('''
                SELECT id, name, satellite, timestamp, rawDataPath, downlink
                FROM passes
                WHERE name = ?
            ''', (name,)).fetchone()
            return dict(row) if row else None

    def get_pass_images(self, name: str) -> list[dict]:
        with self.connection() as conn:
            cursor = conn.execute('''
                SELECT images.*
                FROM images
                JOIN passes ON images.passId = passes.id
                WHERE passes.name = ?
                ORDER BY images.path ASC
            ''', (name,))
            return [dict(row) for row in cursor]

    def count_passes(self) -> int:
        with self.connection() as conn:
            return conn.execute('SELECT COUNT(*) FROM passes').fetchone()[0]

    def count_images(self) -> int:
        with self.connection() as conn:
            return conn.execute('SELECT COUNT(*) FROM images').fetchone()[0]


# Global store instance
_store: PassStore | None = None
_store_lock = threading.Lock()


def get_store() -> PassStore:
    """Get or create the global store for DB_PATH."""
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = PassStore(DB_PATH)
    return _store


def init_db() -> None:
    """Initialize the global store schema."""
    DB_DIR.mkdir(parents=True, exist_ok=True)
    get_store().init_schema()
    logger.info(f"Database initialized at {DB_PATH}")


def close_db() -> None:
    """Close and forget the global store."""
    global _store
    with _store_lock:
        if _store is not None:
            _store.close()
        _store = None
