"""
Pass indexer.

Walks the SatDump live output directory and records every pass folder in the
gallery store. Three modes are supported:

    - repopulate: clear both tables and index every pass folder
    - update:     index only folders not yet in the store that look settled
    - rebuild:    delete the database file, recreate it, then repopulate

Each pass is classified, all of its images are extracted, and only then is
the pass row written together with its images in one transaction.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import config
from utils.database import PassStore
from utils.logging import indexer_logger as logger
from utils.passes.classifier import classify_pass
from utils.passes.extractors import get_extractor
from utils.passes.models import PassRecord
from utils.passes.stability import StabilityPolicy, get_stability_policy

MODE_REPOPULATE = 'repopulate'
MODE_UPDATE = 'update'
MODE_REBUILD = 'rebuild'
INDEX_MODES = (MODE_REPOPULATE, MODE_UPDATE, MODE_REBUILD)


class IndexerError(Exception):
    """Raised when an indexing run cannot start."""


@dataclass
class IndexResult:
    """Outcome of one indexing run."""

    mode: str
    added: int = 0
    skipped: int = 0
    failed: int = 0
    elapsed_seconds: float = 0.0
    finished_at: datetime | None = None
    added_names: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'mode': self.mode,
            'added': self.added,
            'skipped': self.skipped,
            'failed': self.failed,
            'elapsed_seconds': round(self.elapsed_seconds, 3),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }


class PassIndexer:
    """Indexes pass directories under a live output root into a PassStore."""

    def __init__(
        self,
        store: PassStore,
        live_output_dir: str | Path | None = None,
        stability: StabilityPolicy | None = None,
        dimension_workers: int | None = None,
    ):
        self.store = store
        self.live_output_dir = Path(live_output_dir or config.LIVE_OUTPUT_DIR)
        self.stability = stability or get_stability_policy()
        self.dimension_workers = dimension_workers

    def run(self, mode: str) -> IndexResult:
        """Run one indexing mode by name.

        Raises:
            ValueError: for an unknown mode
            IndexerError: if the live output directory cannot be read
            StoreError: if the store cannot be opened or written
        """
        mode = (mode or '').strip().lower().lstrip('-')
        if mode == MODE_REPOPULATE:
            return self.repopulate()
        if mode == MODE_UPDATE:
            return self.update()
        if mode == MODE_REBUILD:
            return self.rebuild()
        raise ValueError(f"Unknown index mode: {mode!r} (expected one of {', '.join(INDEX_MODES)})")

    def repopulate(self) -> IndexResult:
        """Clear the store and index every pass directory."""
        logger.info("Repopulating pass index...")
        start = time.monotonic()
        result = IndexResult(mode=MODE_REPOPULATE)

        pass_names = self.list_pass_directories()
        self.store.init_schema()
        self.store.clear()

        for name in pass_names:
            if self._index_and_store(name):
                result.added += 1
                result.added_names.append(name)
            else:
                result.failed += 1

        return self._finish(result, start, f"Database population complete. Passes found: {result.added}")

    def update(self) -> IndexResult:
        """Index pass directories that are not in the store yet."""
        if not self.store.has_passes_table():
            logger.info("Table 'passes' does not exist. Falling back to repopulate.")
            return self.repopulate()

        logger.info("Updating pass index...")
        start = time.monotonic()
        result = IndexResult(mode=MODE_UPDATE)

        pass_names = self.list_pass_directories()
        self.store.init_schema()
        indexed = self.store.indexed_pass_names()

        for name in pass_names:
            if name in indexed:
                continue
            if not self.stability.is_stable(self.live_output_dir / name):
                logger.info(f"{name} may be updating at this time; skipping...")
                result.skipped += 1
                continue
            if self._index_and_store(name):
                result.added += 1
                result.added_names.append(name)
            else:
                result.failed += 1

        return self._finish(result, start, f"Database has been updated. Added {result.added} passes")

    def rebuild(self) -> IndexResult:
        """Delete the database file, recreate the schema and repopulate."""
        logger.info("Rebuilding pass index...")
        # Fail before destroying anything if the source tree is unusable
        self.list_pass_directories()

        if self.store.delete_file():
            logger.info("Deleted existing database.")
        self.store.init_schema()
        logger.info("Database initialized")

        result = self.repopulate()
        result.mode = MODE_REBUILD
        return result

    def list_pass_directories(self) -> list[str]:
        """Names of the pass folders directly under the live output root."""
        try:
            return sorted(entry.name for entry in self.live_output_dir.iterdir() if entry.is_dir())
        except OSError as e:
            raise IndexerError(f"Cannot read live output directory {self.live_output_dir}: {e}") from e

    def build_pass(self, name: str) -> PassRecord:
        """Classify and extract one pass directory without writing it.

        Raises:
            OSError: if the pass directory cannot be listed
        """
        pass_dir = self.live_output_dir / name
        classification = classify_pass(pass_dir)
        extractor = get_extractor(classification.family, self.dimension_workers)
        images = extractor.extract(pass_dir, name)
        return extractor.pass_record(pass_dir, name, classification, images)

    def _index_and_store(self, name: str) -> bool:
        try:
            record = self.build_pass(name)
        except OSError as e:
            logger.error(f"Error processing {name}: {e}")
            return False

        self.store.write_pass(record)
        logger.debug(
            f"Indexed {name}: {record.satellite} ({record.family.value}), "
            f"{record.image_count} images"
        )
        return True

    def _finish(self, result: IndexResult, start: float, message: str) -> IndexResult:
        result.elapsed_seconds = time.monotonic() - start
        result.finished_at = datetime.now(timezone.utc)
        logger.info(f"{message} ({result.elapsed_seconds:.2f}s)")
        if result.failed:
            logger.warning(f"{result.failed} pass directories could not be indexed")
        return result
