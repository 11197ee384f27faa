#!/usr/bin/env python3
"""
Pass Gallery - index and browse SatDump satellite pass output
"""

from __future__ import annotations

import argparse
import logging
import time

from flask import Flask, jsonify

import config
from utils.database import StoreError, get_store, init_db
from utils.logging import get_logger, set_level
from utils.passes.scheduler import get_index_scheduler

logger = get_logger('passgallery.app')

app = Flask(__name__)

_start_time = time.time()


@app.route('/health')
def health_check():
    """Health check with index counts."""
    data = {'passes': None, 'images': None}
    try:
        store = get_store()
        data = {'passes': store.count_passes(), 'images': store.count_images()}
    except StoreError as e:
        logger.warning(f"Health check could not read the store: {e}")

    return jsonify({
        'status': 'healthy',
        'version': config.VERSION,
        'uptime_seconds': round(time.time() - _start_time, 2),
        'indexer': get_index_scheduler().get_status(),
        'data': data,
    })


def main() -> None:
    from routes import register_blueprints

    parser = argparse.ArgumentParser(description='Satellite pass gallery server')
    parser.add_argument('--host', default=config.HOST, help=f'Bind address (default: {config.HOST})')
    parser.add_argument('-p', '--port', type=int, default=config.PORT, help=f'Port (default: {config.PORT})')
    parser.add_argument('--debug', action='store_true', help='Enable Flask debug mode and verbose logging')
    parser.add_argument('--no-index', action='store_true', help='Do not index on startup or on a schedule')
    parser.add_argument(
        '--index-interval',
        type=int,
        default=config.INDEX_INTERVAL_SECONDS,
        help=f'Seconds between scheduled updates, 0 to disable (default: {config.INDEX_INTERVAL_SECONDS})'
    )
    args = parser.parse_args()

    if args.debug:
        set_level(logging.DEBUG)

    init_db()
    register_blueprints(app)

    if not args.no_index:
        scheduler = get_index_scheduler()
        scheduler.set_interval(args.index_interval)
        if not scheduler.start(run_immediately=config.INDEX_ON_STARTUP) and config.INDEX_ON_STARTUP:
            try:
                scheduler.run_now('update')
            except Exception as e:
                logger.error(f"Startup index update failed: {e}")

    logger.info(f"Pass gallery v{config.VERSION} listening on {args.host}:{args.port}")
    try:
        app.run(host=args.host, port=args.port, debug=args.debug, threaded=True, use_reloader=False)
    finally:
        get_index_scheduler().stop()


if __name__ == '__main__':
    main()
