"""Pass gallery routes.

Serves filtered views of the pass index and triggers indexing runs.
"""

from __future__ import annotations

from flask import Blueprint, Response, jsonify, request

from utils.database import StoreError, get_store
from utils.logging import get_logger
from utils.passes.indexer import INDEX_MODES, MODE_UPDATE, IndexerError
from utils.passes.query import GalleryQuery, ImageQuery
from utils.passes.scheduler import IndexerBusyError, get_index_scheduler

logger = get_logger('passgallery.gallery')

gallery_bp = Blueprint('gallery', __name__, url_prefix='/api')


def _gallery() -> GalleryQuery:
    return GalleryQuery(get_store())


@gallery_bp.route('/images')
def list_images() -> Response:
    """Get gallery images.

    Query parameters:
        map: 'only' for map overlays only (or mapsOnly=1)
        correctedOnly: '1' for corrected images only
        filledOnly: '0' to include unfilled images
        satellite, band: case-insensitive exact match
        composite: composite key, repeatable; 'other' for unclassified
        startDate, endDate: YYYY-MM-DD
        startTime, endTime: HH:MM
        useUTC: '0' to read dates and times as server local time
        sortBy: 'timestamp' or 'vPixels'
        sortOrder: 'ASC' or 'DESC'
        limit, page: page size and 1-based page number
        limitType: 'images' or 'passes'

    Returns:
        JSON with one page of images.
    """
    query = ImageQuery.from_args(request.args)
    try:
        page = _gallery().images(query)
    except StoreError as e:
        logger.error(f"Error in /api/images: {e}")
        return jsonify({
            'status': 'error',
            'message': 'Failed to query images'
        }), 500

    return jsonify({'status': 'ok', **page.to_dict()})


@gallery_bp.route('/satellites')
def list_satellites() -> Response:
    try:
        satellites = _gallery().satellites()
    except StoreError as e:
        logger.error(f"Error listing satellites: {e}")
        return jsonify({'status': 'error', 'message': str(e)}), 500
    return jsonify({'status': 'ok', 'satellites': satellites})


@gallery_bp.route('/bands')
def list_bands() -> Response:
    try:
        bands = _gallery().downlinks()
    except StoreError as e:
        logger.error(f"Error listing bands: {e}")
        return jsonify({'status': 'error', 'message': str(e)}), 500
    return jsonify({'status': 'ok', 'bands': bands})


@gallery_bp.route('/composites')
def list_composites() -> Response:
    """Get composite filter options, optionally for one satellite."""
    try:
        composites = _gallery().composites(request.args.get('satellite'))
    except StoreError as e:
        logger.error(f"Error listing composites: {e}")
        return jsonify({'status': 'error', 'message': str(e)}), 500
    return jsonify({'status': 'ok', 'composites': composites})


@gallery_bp.route('/passes/<name>')
def get_pass(name: str) -> Response:
    """Get one indexed pass with all of its images.

    Args:
        name: Pass folder name

    Returns:
        JSON with the pass row and its images.
    """
    store = get_store()
    try:
        record = store.get_pass(name)
        images = store.get_pass_images(name) if record else []
    except StoreError as e:
        logger.error(f"Error reading pass {name}: {e}")
        return jsonify({'status': 'error', 'message': str(e)}), 500

    if record is None:
        return jsonify({'status': 'error', 'message': 'Pass not found'}), 404

    return jsonify({'status': 'ok', 'pass': record, 'images': images})


@gallery_bp.route('/passes/<name>', methods=['DELETE'])
def delete_pass(name: str) -> Response:
    """Drop a pass from the index so the next update picks it up again.

    Files on disk are left alone.
    """
    try:
        deleted = get_store().delete_pass(name)
    except StoreError as e:
        logger.error(f"Error deleting pass {name}: {e}")
        return jsonify({'status': 'error', 'message': str(e)}), 500

    if deleted:
        logger.info(f"Removed pass {name} from the index")
        return jsonify({'status': 'deleted', 'name': name})
    else:
        return jsonify({'status': 'error', 'message': 'Pass not found'}), 404


@gallery_bp.route('/index', methods=['POST'])
def run_index() -> Response:
    """Run the indexer now.

    JSON body:
        {"mode": "update"}   // repopulate, update or rebuild

    Returns:
        JSON with the run result.
    """
    data = request.get_json(silent=True) or {}
    mode = str(data.get('mode', MODE_UPDATE)).strip().lower()
    if mode not in INDEX_MODES:
        return jsonify({
            'status': 'error',
            'message': f'Invalid mode. Must be one of: {", ".join(INDEX_MODES)}'
        }), 400

    try:
        result = get_index_scheduler().run_now(mode)
    except IndexerBusyError as e:
        return jsonify({'status': 'busy', 'message': str(e)}), 409
    except (IndexerError, StoreError) as e:
        logger.error(f"Index {mode} failed: {e}")
        return jsonify({'status': 'error', 'message': str(e)}), 500

    return jsonify({'status': 'ok', 'result': result.to_dict()})


@gallery_bp.route('/index/status')
def index_status() -> Response:
    return jsonify({'status': 'ok', 'scheduler': get_index_scheduler().get_status()})
