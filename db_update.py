#!/usr/bin/env python3
"""
Pass index maintenance.

Usage:
    python db_update.py repopulate   # clear and re-index every pass
    python db_update.py update       # index new, settled passes only
    python db_update.py rebuild      # delete the database and re-index
"""

from __future__ import annotations

import argparse
import logging
import sys

import config
from utils.database import PassStore, StoreError
from utils.logging import get_logger, set_level
from utils.passes.indexer import INDEX_MODES, IndexerError, PassIndexer
from utils.passes.stability import get_stability_policy

logger = get_logger('passgallery.db_update')


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the index maintenance command."""
    parser = argparse.ArgumentParser(
        description='Index SatDump pass directories into the gallery database',
    )
    parser.add_argument('mode', choices=INDEX_MODES, help='Indexing mode')
    parser.add_argument(
        '--live-output',
        default=str(config.LIVE_OUTPUT_DIR),
        help=f'Pass directory root (default: {config.LIVE_OUTPUT_DIR})'
    )
    parser.add_argument(
        '--db',
        default=str(config.DB_PATH),
        help=f'Database file (default: {config.DB_PATH})'
    )
    parser.add_argument(
        '--stability',
        choices=('mtime', 'recursive'),
        default=None,
        help='Stability check used by update mode'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    args = parser.parse_args(argv)

    if args.verbose:
        set_level(logging.DEBUG)

    store = PassStore(args.db)
    indexer = PassIndexer(
        store,
        args.live_output,
        stability=get_stability_policy(args.stability),
    )

    try:
        result = indexer.run(args.mode)
    except (IndexerError, StoreError) as e:
        logger.error(f"Index {args.mode} failed: {e}")
        return 1
    finally:
        store.close()

    logger.info(
        f"{result.mode}: added {result.added}, skipped {result.skipped}, "
        f"failed {result.failed} in {result.elapsed_seconds:.2f}s"
    )
    return 0


if __name__ == '__main__':
    sys.exit(main())
