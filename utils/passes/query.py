"""
Gallery queries over the pass index.

``ImageQuery`` holds an independent set of optional filters plus sort and
limit settings; ``build_where`` turns the filters into a bound-parameter
WHERE clause and ``GalleryQuery`` runs one of three query shapes:

    - images limited by image count
    - images of the first N passes, passes ordered by timestamp
    - images of the first N passes, passes ordered by their largest image
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import config
from utils.database import PassStore
from utils.logging import get_logger
from utils.passes.composites import (
    COMPOSITE_TYPES,
    OTHER_KEY,
    classify_composite,
    composite_options,
)

logger = get_logger('passgallery.query')

SECONDS_PER_DAY = 86400

SORT_TIMESTAMP = 'timestamp'
SORT_V_PIXELS = 'vPixels'
LIMIT_IMAGES = 'images'
LIMIT_PASSES = 'passes'

MAX_IMAGE_LIMIT = 500
MAX_PASS_LIMIT = 200

# Largest OFFSET SQLite accepts; pages beyond it fall back to the first page
SQLITE_MAX_INTEGER = 2 ** 63 - 1

# Whitelisted ORDER BY columns
SORT_COLUMNS = {
    SORT_TIMESTAMP: 'passes.timestamp',
    SORT_V_PIXELS: 'images.vPixels',
}

IMAGE_COLUMNS = '''
    images.id, images.path, images.composite, images.sensor,
    images.mapOverlay, images.corrected, images.filled,
    images.vPixels, images.passId,
    passes.timestamp AS timestamp,
    passes.satellite AS satellite,
    passes.rawDataPath AS rawDataPath,
    passes.name AS name,
    passes.downlink AS downlink
'''

_TRUE_VALUES = ('1', 'true', 'yes', 'on')
_FALSE_VALUES = ('0', 'false', 'no', 'off')


def _is_true(value: Any) -> bool:
    return str(value).strip().lower() in _TRUE_VALUES if value is not None else False


def _is_false(value: Any) -> bool:
    return str(value).strip().lower() in _FALSE_VALUES if value is not None else False


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def local_utc_offset_seconds() -> int:
    """Current offset of the server's local zone from UTC, in seconds."""
    offset = datetime.now().astimezone().utcoffset()
    return int(offset.total_seconds()) if offset else 0


def parse_time_of_day(value: str | None) -> int | None:
    """Parse ``HH:MM`` into seconds after midnight, or None if invalid."""
    if not value:
        return None
    try:
        parsed = datetime.strptime(value.strip(), '%H:%M')
    except ValueError:
        return None
    return parsed.hour * 3600 + parsed.minute * 60


def day_start_epoch(date_str: str | None, use_utc: bool, days_after: int = 0) -> int | None:
    """Epoch seconds of 00:00 on ``YYYY-MM-DD`` (plus ``days_after``) in UTC or local time."""
    if not date_str:
        return None
    try:
        day = datetime.strptime(date_str.strip(), '%Y-%m-%d') + timedelta(days=days_after)
    except (ValueError, OverflowError):
        return None
    if use_utc:
        day = day.replace(tzinfo=timezone.utc)
    # A naive datetime is interpreted in the local zone
    try:
        return int(day.timestamp())
    except (OverflowError, OSError, ValueError):
        return None


def time_of_day_bound(value: str | None, use_utc: bool) -> int | None:
    """Convert a time-of-day filter to a UTC second-of-day.

    Local times are shifted by the local UTC offset and wrapped into
    [0, 86400).
    """
    seconds = parse_time_of_day(value)
    if seconds is None:
        return None
    if not use_utc:
        seconds = (seconds - local_utc_offset_seconds()) % SECONDS_PER_DAY
    return seconds


@dataclass
class ImageQuery:
    """Filter, sort and limit settings for one gallery request."""

    maps_only: bool = False
    corrected_only: bool = False
    filled_only: bool = True
    satellite: str | None = None
    band: str | None = None
    composites: list[str] = field(default_factory=list)
    start_date: str | None = None
    end_date: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    use_utc: bool = True
    sort_by: str = SORT_TIMESTAMP
    sort_order: str = 'DESC'
    limit: int = config.DEFAULT_IMAGE_LIMIT
    limit_type: str = LIMIT_IMAGES
    page: int = 1

    def __post_init__(self):
        self.satellite = _clean(self.satellite)
        self.band = _clean(self.band)
        self.composites = [c for c in (_clean(c) for c in self.composites) if c]

        sort_by = str(self.sort_by or '').strip().lower()
        self.sort_by = SORT_V_PIXELS if sort_by in ('vpixels', 'images.vpixels') else SORT_TIMESTAMP
        self.sort_order = 'ASC' if str(self.sort_order or '').strip().upper() == 'ASC' else 'DESC'
        self.limit_type = LIMIT_PASSES if str(self.limit_type or '').strip().lower() == LIMIT_PASSES else LIMIT_IMAGES

        try:
            limit = int(self.limit)
        except (TypeError, ValueError, OverflowError):
            limit = config.DEFAULT_IMAGE_LIMIT
        if limit < 1:
            limit = config.DEFAULT_IMAGE_LIMIT
        max_limit = MAX_PASS_LIMIT if self.limit_type == LIMIT_PASSES else MAX_IMAGE_LIMIT
        self.limit = min(limit, max_limit)

        try:
            self.page = max(1, int(self.page))
        except (TypeError, ValueError, OverflowError):
            self.page = 1
        if self.offset > SQLITE_MAX_INTEGER:
            self.page = 1

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> 'ImageQuery':
        """Build a query from request-style arguments.

        Accepts a werkzeug MultiDict (repeated ``composite`` keys) or a plain
        mapping. Invalid values fall back to defaults.
        """
        getlist = getattr(args, 'getlist', None)
        if getlist is not None:
            composites = getlist('composite')
        else:
            raw = args.get('composite')
            if raw is None:
                composites = []
            elif isinstance(raw, (list, tuple)):
                composites = list(raw)
            else:
                composites = [raw]

        filled_only = True
        if _is_false(args.get('filledOnly')) or _is_true(args.get('showUnfilled')):
            filled_only = False

        return cls(
            maps_only=args.get('map') == 'only' or _is_true(args.get('mapsOnly')),
            corrected_only=_is_true(args.get('correctedOnly')),
            filled_only=filled_only,
            satellite=args.get('satellite'),
            band=args.get('band'),
            composites=composites,
            start_date=_clean(args.get('startDate')),
            end_date=_clean(args.get('endDate')),
            start_time=_clean(args.get('startTime')),
            end_time=_clean(args.get('endTime')),
            use_utc=not _is_false(args.get('useUTC')),
            sort_by=args.get('sortBy') or SORT_TIMESTAMP,
            sort_order=args.get('sortOrder') or 'DESC',
            limit=args.get('limit') or config.DEFAULT_IMAGE_LIMIT,
            limit_type=args.get('limitType') or LIMIT_IMAGES,
            page=args.get('page') or 1,
        )


def _composite_condition(selected: list[str]) -> tuple[str | None, list]:
    """OR together the selected known categories and the ``other`` bucket."""
    by_lower = {key.lower(): key for key in COMPOSITE_TYPES}
    wanted = {value.lower() for value in selected}

    known = [key for key in COMPOSITE_TYPES if key.lower() in wanted]
    include_other = OTHER_KEY in wanted

    clauses = []
    params: list = []

    if known:
        clauses.append('(' + ' OR '.join(
            'instr(LOWER(images.composite), ?) > 0' for _ in known
        ) + ')')
        params.extend(key.lower() for key in known)

    if include_other:
        negations = ' AND '.join('instr(LOWER(images.composite), ?) = 0' for _ in by_lower)
        clauses.append(
            f"(images.composite IS NOT NULL AND images.composite != '' AND {negations})"
        )
        params.extend(by_lower)

    if not clauses:
        return None, []
    return '(' + ' OR '.join(clauses) + ')', params


def build_where(query: ImageQuery) -> tuple[str, list]:
    """Build the WHERE clause for a query.

    Returns:
        (sql, params) where sql is '' or starts with 'WHERE'
    """
    conditions = []
    params: list = []

    if query.maps_only:
        conditions.append('images.mapOverlay = 1')
    if query.corrected_only:
        conditions.append('images.corrected = 1')
    if query.filled_only:
        conditions.append('images.filled = 1')

    if query.satellite:
        conditions.append('LOWER(passes.satellite) = LOWER(?)')
        params.append(query.satellite)
    if query.band:
        conditions.append('LOWER(passes.downlink) = LOWER(?)')
        params.append(query.band)

    start = day_start_epoch(query.start_date, query.use_utc)
    if start is not None:
        conditions.append('passes.timestamp >= ?')
        params.append(start)

    # The whole end day is included
    end = day_start_epoch(query.end_date, query.use_utc, days_after=1)
    if end is not None:
        conditions.append('passes.timestamp < ?')
        params.append(end)

    start_seconds = time_of_day_bound(query.start_time, query.use_utc)
    if start_seconds is not None:
        conditions.append('(passes.timestamp % 86400) >= ?')
        params.append(start_seconds)

    end_seconds = time_of_day_bound(query.end_time, query.use_utc)
    if end_seconds is not None:
        conditions.append('(passes.timestamp % 86400) <= ?')
        params.append(end_seconds)

    if query.composites:
        clause, clause_params = _composite_condition(query.composites)
        if clause:
            conditions.append(clause)
            params.extend(clause_params)

    if not conditions:
        return '', params
    return 'WHERE ' + ' AND '.join(conditions), params


def build_image_query(query: ImageQuery) -> tuple[str, list]:
    """SQL for the image-limited shape."""
    where, params = build_where(query)
    sql = f'''
        SELECT {IMAGE_COLUMNS}
        FROM images
        JOIN passes ON images.passId = passes.id
        {where}
        ORDER BY {SORT_COLUMNS[query.sort_by]} {query.sort_order}, images.id ASC
        LIMIT ? OFFSET ?
    '''
    return sql, params + [query.limit, query.offset]


def build_pass_query(query: ImageQuery) -> tuple[str, list]:
    """SQL for the pass-limited shapes."""
    where, params = build_where(query)
    direction = query.sort_order

    if query.sort_by == SORT_V_PIXELS:
        ranking = f'''
            SELECT passId, MAX(vPixels) AS max_v_pixels, MAX(timestamp) AS pass_timestamp
            FROM filtered
            GROUP BY passId
            ORDER BY max_v_pixels {direction}, pass_timestamp DESC, passId DESC
            LIMIT ? OFFSET ?
        '''
        order = (
            f'selected_passes.max_v_pixels {direction}, selected_passes.pass_timestamp DESC, '
            f'filtered.passId DESC, filtered.id ASC'
        )
    else:
        ranking = f'''
            SELECT passId, MAX(timestamp) AS pass_timestamp
            FROM filtered
            GROUP BY passId
            ORDER BY pass_timestamp {direction}, passId {direction}
            LIMIT ? OFFSET ?
        '''
        order = f'selected_passes.pass_timestamp {direction}, filtered.passId {direction}, filtered.id ASC'

    sql = f'''
        WITH filtered AS (
            SELECT {IMAGE_COLUMNS}
            FROM images
            JOIN passes ON images.passId = passes.id
            {where}
        ),
        selected_passes AS ({ranking})
        SELECT filtered.*
        FROM filtered
        JOIN selected_passes ON filtered.passId = selected_passes.passId
        ORDER BY {order}
    '''
    return sql, params + [query.limit, query.offset]


def build_count_query(query: ImageQuery) -> tuple[str, list]:
    """SQL counting matching images, or matching passes when limiting by pass."""
    where, params = build_where(query)
    counted = 'COUNT(DISTINCT images.passId)' if query.limit_type == LIMIT_PASSES else 'COUNT(*)'
    sql = f'''
        SELECT {counted}
        FROM images
        JOIN passes ON images.passId = passes.id
        {where}
    '''
    return sql, params


@dataclass
class GalleryPage:
    """One page of gallery results."""

    images: list[dict]
    total: int
    page: int
    limit: int
    limit_type: str

    def to_dict(self) -> dict:
        return {
            'images': self.images,
            'total': self.total,
            'page': self.page,
            'limit': self.limit,
            'limitType': self.limit_type,
        }


def _image_row(row) -> dict:
    image = dict(row)
    if image.get('path'):
        image['path'] = image['path'].replace('\\', '/')
    image['compositeDisplay'] = classify_composite(image.get('composite'))
    return image


class GalleryQuery:
    """Read-only queries against a PassStore."""

    def __init__(self, store: PassStore):
        self.store = store

    def images(self, query: ImageQuery | None = None) -> GalleryPage:
        """Run a gallery query and return one page of enriched image rows."""
        query = query or ImageQuery()
        if query.limit_type == LIMIT_PASSES:
            sql, params = build_pass_query(query)
        else:
            sql, params = build_image_query(query)
        count_sql, count_params = build_count_query(query)

        with self.store.connection() as conn:
            rows = [_image_row(row) for row in conn.execute(sql, params)]
            total = conn.execute(count_sql, count_params).fetchone()[0]

        logger.debug(f"Gallery query ({query.limit_type}) returned {len(rows)} rows of {total}")
        return GalleryPage(
            images=rows,
            total=total,
            page=query.page,
            limit=query.limit,
            limit_type=query.limit_type,
        )

    def satellites(self) -> list[str]:
        """Satellites that have at least one image, reverse alphabetical."""
        with self.store.connection() as conn:
            cursor = conn.execute('''
                SELECT DISTINCT passes.satellite
                FROM images
                JOIN passes ON images.passId = passes.id
                WHERE passes.satellite IS NOT NULL
                ORDER BY passes.satellite DESC
            ''')
            return [row['satellite'] for row in cursor]

    def downlinks(self) -> list[str]:
        """Downlinks that have at least one image, alphabetical."""
        with self.store.connection() as conn:
            cursor = conn.execute('''
                SELECT DISTINCT passes.downlink
                FROM images
                JOIN passes ON images.passId = passes.id
                WHERE passes.downlink IS NOT NULL
                ORDER BY passes.downlink ASC
            ''')
            return [row['downlink'] for row in cursor]

    def composites(self, satellite: str | None = None) -> list[dict]:
        """Composite filter options, optionally limited to one satellite."""
        satellite = _clean(satellite)
        if not satellite:
            return composite_options()

        with self.store.connection() as conn:
            cursor = conn.execute('''
                SELECT DISTINCT images.composite
                FROM images
                JOIN passes ON images.passId = passes.id
                WHERE LOWER(passes.satellite) = LOWER(?)
            ''', (satellite,))
            return composite_options(row['composite'] for row in cursor)
