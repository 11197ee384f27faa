"""
Per-family image extraction.

Each SatDump pipeline lays its products out differently on disk. Every
extractor implements the same ``extract(pass_dir, pass_name)`` contract and
knows how to describe the pass row for its family.

Layouts handled:
    - NOAA APT:    <pass>/*.png
    - Meteor LRPT: <pass>/MSU-MR/*.png, <pass>/MSU-MR (Filled)/*.png, <pass>/*.cadu
    - Elektro-L3:  <pass>/IMAGES/ELEKTRO-L3/<product>/*.png
    - FengYun:     <pass>/IMAGE/<product>/*.png
    - Formatted L: <pass>/<instrument>/*.png for each of dataset.json "products"
    - Proba-2:     <pass>/SWAP/*.png
    - Proba-V:     <pass>/Vegetation/*.png
    - UVSQ-NG:     <pass>/<product>/*.png
"""

from __future__ import annotations

import math
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

from PIL import Image

import config
from utils.logging import get_logger
from utils.passes.classifier import (
    PassClassification,
    dataset_products,
    read_composite_cache,
    read_dataset,
)
from utils.passes.models import (
    DEFAULT_SATELLITE,
    DOWNLINK_L_BAND,
    DOWNLINK_S_BAND,
    DOWNLINK_VHF,
    NO_RAW_DATA,
    ImageRecord,
    PassRecord,
    SatelliteFamily,
)

logger = get_logger('passgallery.extract')

IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.gif', '.webp')

# Descriptor timestamps outside this range are treated as missing
MIN_VALID_TIMESTAMP = 1
MAX_VALID_TIMESTAMP = 1_750_100_000_000

FOLDER_TIMESTAMP_RE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})_(\d{2})-(\d{2})')

# Output sizes fixed by the SatDump pipelines
ELEKTRO_V_PIXELS = 2784
SVISSR_V_PIXELS = 2501
UVSQ_V_PIXELS = 2501
PROBA_FRAME_V_PIXELS = 1024

METEOR_SUBDIRS = ('MSU-MR', 'MSU-MR (Filled)')
ELEKTRO_IMAGE_ROOT = ('IMAGES', 'ELEKTRO-L3')
SVISSR_IMAGE_ROOT = ('IMAGE',)
SWAP_IMAGE_ROOT = ('SWAP',)
VEGETATION_IMAGE_ROOT = ('Vegetation',)

# AVHRR products are only geometrically corrected when the name says so
UNCORRECTED_INSTRUMENTS = ('AVHRR',)

RAW_DATA_EXTENSIONS = ('.cadu', '.raw16')
IGNORED_RAW_FILES = ('others.cadu',)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def is_image_file(name: str) -> bool:
    return name.lower().endswith(IMAGE_EXTENSIONS)


def list_image_files(directory: Path) -> list[str]:
    """List image filenames directly inside a directory, sorted.

    Raises:
        OSError: if the directory cannot be listed
    """
    names = []
    for entry in directory.iterdir():
        if is_image_file(entry.name) and entry.is_file():
            names.append(entry.name)
    return sorted(names)


def list_subdirectories(directory: Path) -> list[str]:
    return sorted(entry.name for entry in directory.iterdir() if entry.is_dir())


def composite_tag(filename: str) -> str:
    return Path(filename).stem.lower()


def is_map_overlay(filename: str) -> bool:
    return 'map' in filename.lower()


def timestamp_from_folder(folder_name: str) -> int | None:
    """Parse a leading ``YYYY-MM-DD_HH-MM`` (UTC) from a pass folder name."""
    match = FOLDER_TIMESTAMP_RE.match(folder_name)
    if not match:
        return None
    year, month, day, hour, minute = (int(g) for g in match.groups())
    try:
        dt = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
    except ValueError:
        return None
    return int(dt.timestamp())


def coerce_timestamp(value) -> int | None:
    """Floor a descriptor timestamp, or None if it is missing or out of range."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    ts = math.floor(value)
    if ts < MIN_VALID_TIMESTAMP or ts > MAX_VALID_TIMESTAMP:
        return None
    return ts


def read_image_height(path: Path) -> int | None:
    """Read the pixel height from an image header.

    Returns:
        Height in pixels, or None if the file is unreadable
    """
    try:
        with Image.open(path) as img:
            return img.height
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        logger.warning(f"Skipping unreadable image {path}: {e}")
        return None


def find_raw_capture(pass_dir: Path, pass_name: str) -> str | None:
    """Locate the raw capture (CADU or raw16) in the pass root.

    Returns:
        Path relative to the live output parent, or None if there is none
    """
    try:
        names = sorted(entry.name for entry in pass_dir.iterdir() if entry.is_file())
    except OSError as e:
        logger.warning(f"Cannot search {pass_name} for raw data: {e}")
        return None
    for name in names:
        lowered = name.lower()
        if lowered.endswith(RAW_DATA_EXTENSIONS) and lowered not in IGNORED_RAW_FILES:
            return f'{pass_dir.parent.name}/{pass_name}/{name}'
    return None


def is_safe_product_name(name: str) -> bool:
    """Product names come from dataset.json and must stay inside the pass."""
    return name not in ('.', '..') and '/' not in name and '\\' not in name


def formatted_product_candidates(
    pass_dir: Path,
    pass_name: str,
    products: list[str],
) -> list[tuple[Path, str, dict]]:
    """Candidates for the instrument folders a descriptor lists.

    The folder name is the sensor. Every product is gap-filled and all but
    raw AVHRR channels are geometrically corrected.
    """
    candidates = []
    for product in products:
        if not is_safe_product_name(product):
            logger.warning(f"Ignoring product '{product}' listed by {pass_name}")
            continue
        folder = pass_dir / product
        if not folder.is_dir():
            continue
        try:
            names = list_image_files(folder)
        except OSError as e:
            logger.warning(f"Cannot list {pass_name}/{product}: {e}")
            continue
        for name in names:
            corrected = product not in UNCORRECTED_INSTRUMENTS or 'corrected' in name.lower()
            candidates.append((
                folder / name,
                f'{pass_name}/{product}/{name}',
                {'sensor': product, 'corrected': corrected, 'filled': True},
            ))
    return candidates


# ----------------------------------------------------------------------
# Extractors
# ----------------------------------------------------------------------

class PassExtractor:
    """Base extractor: a pass with no recognised products."""

    family = SatelliteFamily.UNKNOWN
    sensor: str | None = None

    def __init__(self, dimension_workers: int | None = None):
        if dimension_workers is None:
            dimension_workers = config.DIMENSION_WORKERS
        self.dimension_workers = max(1, int(dimension_workers))

    def extract(self, pass_dir: Path, pass_name: str) -> list[ImageRecord]:
        """Produce the image records of one pass.

        Raises:
            OSError: if the pass directory cannot be listed
        """
        return []

    def pass_record(
        self,
        pass_dir: Path,
        pass_name: str,
        classification: PassClassification,
        images: list[ImageRecord],
    ) -> PassRecord:
        """Describe the pass row for this family."""
        return PassRecord(
            name=pass_name,
            family=self.family,
            satellite=classification.dataset_satellite or DEFAULT_SATELLITE,
            timestamp=coerce_timestamp((classification.dataset or {}).get('timestamp')),
            images=images,
        )

    def _measured_records(
        self,
        candidates: list[tuple[Path, str, dict]],
    ) -> list[ImageRecord]:
        """Build records for files whose height has to be read from disk.

        Args:
            candidates: (file path, relative path, record fields) triples

        Unreadable files are dropped.
        """
        if not candidates:
            return []

        paths = [candidate[0] for candidate in candidates]
        if self.dimension_workers > 1 and len(paths) > 1:
            with ThreadPoolExecutor(max_workers=self.dimension_workers) as pool:
                heights = list(pool.map(read_image_height, paths))
        else:
            heights = [read_image_height(path) for path in paths]

        records = []
        for (file_path, rel_path, fields), height in zip(candidates, heights):
            if height is None:
                continue
            records.append(ImageRecord(
                path=rel_path,
                composite=composite_tag(file_path.name),
                map_overlay=is_map_overlay(file_path.name),
                v_pixels=height,
                **{'sensor': self.sensor, **fields},
            ))
        return records


class NOAAExtractor(PassExtractor):
    """NOAA APT: flat directory of products, all corrected and filled.

    HRPT passes that carry a NOAA descriptor also get their instrument
    folders scanned the formatted L-band way.
    """

    family = SatelliteFamily.NOAA
    sensor = 'AVHRR'

    def extract(self, pass_dir: Path, pass_name: str) -> list[ImageRecord]:
        candidates = [
            (pass_dir / name, f'{pass_name}/{name}', {'corrected': True, 'filled': True})
            for name in list_image_files(pass_dir)
        ]
        products = dataset_products(read_dataset(pass_dir))
        candidates.extend(formatted_product_candidates(pass_dir, pass_name, products))
        return self._measured_records(candidates)

    def pass_record(self, pass_dir, pass_name, classification, images):
        record = super().pass_record(pass_dir, pass_name, classification, images)
        if record.timestamp is None:
            record.timestamp = timestamp_from_folder(pass_name)
        record.raw_data_path = NO_RAW_DATA
        lowered = pass_name.lower()
        if 'apt' in lowered:
            record.downlink = DOWNLINK_VHF
        elif 'hrpt' in lowered:
            record.downlink = DOWNLINK_L_BAND
        return record


class MeteorExtractor(PassExtractor):
    """Meteor LRPT: MSU-MR products, raw and gap-filled."""

    family = SatelliteFamily.METEOR
    sensor = 'MSU-MR'

    def extract(self, pass_dir: Path, pass_name: str) -> list[ImageRecord]:
        # Listing the root surfaces an unreadable pass directory
        list_subdirectories(pass_dir)

        candidates = []
        for subdir in METEOR_SUBDIRS:
            full_subdir = pass_dir / subdir
            if not full_subdir.is_dir():
                continue
            try:
                names = list_image_files(full_subdir)
            except OSError as e:
                logger.warning(f"Cannot list {pass_name}/{subdir}: {e}")
                continue
            filled = 'filled' in subdir.lower()
            for name in names:
                candidates.append((
                    full_subdir / name,
                    f'{pass_name}/{subdir}/{name}',
                    {'corrected': 'corrected' in name.lower(), 'filled': filled},
                ))
        return self._measured_records(candidates)

    def pass_record(self, pass_dir, pass_name, classification, images):
        record = super().pass_record(pass_dir, pass_name, classification, images)
        if record.timestamp is None:
            record.timestamp = timestamp_from_folder(pass_name)
        record.raw_data_path = find_raw_capture(pass_dir, pass_name)
        lowered = pass_name.lower()
        if 'lrpt' in lowered:
            record.downlink = DOWNLINK_VHF
        elif 'hrpt' in lowered:
            record.downlink = DOWNLINK_L_BAND
        return record


class FormattedLExtractor(PassExtractor):
    """Polar L-band downlinks (NOAA HRPT, MetOp AHRPT, Meteor HRPT, AWS).

    Products live in one folder per instrument, named by the descriptor's
    ``products`` list.
    """

    family = SatelliteFamily.FORMATTED_L

    def extract(self, pass_dir: Path, pass_name: str) -> list[ImageRecord]:
        list_subdirectories(pass_dir)
        products = dataset_products(read_dataset(pass_dir))
        return self._measured_records(
            formatted_product_candidates(pass_dir, pass_name, products)
        )

    def pass_record(self, pass_dir, pass_name, classification, images):
        record = super().pass_record(pass_dir, pass_name, classification, images)
        if record.timestamp is None:
            record.timestamp = timestamp_from_folder(pass_name)
        record.raw_data_path = find_raw_capture(pass_dir, pass_name)
        record.downlink = DOWNLINK_L_BAND
        return record


class _FixedLayoutExtractor(PassExtractor):
    """Layouts whose image size and pass metadata are fixed by the pipeline."""

    satellite_label = DEFAULT_SATELLITE
    downlink = DOWNLINK_L_BAND
    image_root: tuple[str, ...] = ()
    v_pixels: int | None = None
    map_overlays = True

    def _record(self, rel_dir: str, name: str, captured_at: int | None = None) -> ImageRecord:
        return ImageRecord(
            path=f'{rel_dir}/{name}',
            composite=composite_tag(name),
            map_overlay=self.map_overlays and is_map_overlay(name),
            corrected=True,
            filled=True,
            v_pixels=self.v_pixels,
            sensor=self.sensor,
            captured_at=captured_at,
        )

    def pass_timestamp(
        self,
        pass_name: str,
        classification: PassClassification,
        images: list[ImageRecord],
    ) -> int | None:
        return timestamp_from_folder(pass_name)

    def raw_data_path(self, pass_dir: Path, pass_name: str) -> str | None:
        return NO_RAW_DATA

    def pass_record(self, pass_dir, pass_name, classification, images):
        return PassRecord(
            name=pass_name,
            family=self.family,
            satellite=self.satellite_label,
            timestamp=self.pass_timestamp(pass_name, classification, images),
            raw_data_path=self.raw_data_path(pass_dir, pass_name),
            downlink=self.downlink,
            images=images,
        )


class _ProductFolderExtractor(_FixedLayoutExtractor):
    """One subfolder per product under a fixed root."""

    def extract(self, pass_dir: Path, pass_name: str) -> list[ImageRecord]:
        list_subdirectories(pass_dir)

        root = pass_dir.joinpath(*self.image_root)
        if not root.is_dir():
            return []

        times = self.subfolder_times(pass_dir)
        records = []
        for subfolder in list_subdirectories(root):
            rel_dir = '/'.join((pass_name,) + self.image_root + (subfolder,))
            try:
                names = list_image_files(root / subfolder)
            except OSError as e:
                logger.warning(f"Cannot list {rel_dir}: {e}")
                continue
            captured_at = times.get(subfolder)
            records.extend(self._record(rel_dir, name, captured_at) for name in names)
        return records

    def subfolder_times(self, pass_dir: Path) -> dict[str, int | None]:
        """Capture time per product subfolder, where the layout records one."""
        return {}


class _FlatFolderExtractor(_FixedLayoutExtractor):
    """Products directly inside a fixed root folder."""

    def extract(self, pass_dir: Path, pass_name: str) -> list[ImageRecord]:
        list_subdirectories(pass_dir)

        root = pass_dir.joinpath(*self.image_root)
        if not root.is_dir():
            return []

        rel_dir = '/'.join((pass_name,) + self.image_root)
        return [self._record(rel_dir, name) for name in list_image_files(root)]


class ElektroExtractor(_ProductFolderExtractor):
    """Elektro-L3 LRIT/HRIT full disks, timed by the composite cache."""

    family = SatelliteFamily.ELEKTRO_L3
    sensor = 'MSU-GS'
    satellite_label = 'Elektro-L3'
    image_root = ELEKTRO_IMAGE_ROOT
    v_pixels = ELEKTRO_V_PIXELS

    def subfolder_times(self, pass_dir: Path) -> dict[str, int | None]:
        # Cache keys look like 'IMAGES/ELEKTRO-L3/<subfolder>'
        prefix = '/'.join(self.image_root) + '/'
        times = {}
        for key, entry in (read_composite_cache(pass_dir) or {}).items():
            if not key.startswith(prefix) or not isinstance(entry, dict):
                continue
            times[key[len(prefix):]] = coerce_timestamp(entry.get('time'))
        return times

    def pass_timestamp(self, pass_name, classification, images):
        times = [image.captured_at for image in images if image.captured_at is not None]
        return min(times) if times else first_cache_time(classification.cache)


class FengYunExtractor(_ProductFolderExtractor):
    """FengYun-2 SVISSR full disks."""

    family = SatelliteFamily.FENGYUN
    sensor = 'SVISSR'
    satellite_label = 'FengYun'
    image_root = SVISSR_IMAGE_ROOT
    v_pixels = SVISSR_V_PIXELS


class UVSQExtractor(_ProductFolderExtractor):
    """UVSQ-NG NanoCam frames, one subfolder per product in the pass root."""

    family = SatelliteFamily.UVSQ_NG
    sensor = 'NanoCam'
    satellite_label = 'UVSQ-NG'
    downlink = DOWNLINK_S_BAND
    v_pixels = UVSQ_V_PIXELS
    map_overlays = False

    def raw_data_path(self, pass_dir, pass_name):
        return find_raw_capture(pass_dir, pass_name)


class Proba2Extractor(_FlatFolderExtractor):
    """Proba-2 SWAP solar imagery."""

    family = SatelliteFamily.PROBA2
    sensor = 'SWAP'
    satellite_label = 'Proba2'
    downlink = DOWNLINK_S_BAND
    image_root = SWAP_IMAGE_ROOT
    v_pixels = PROBA_FRAME_V_PIXELS
    map_overlays = False

    def raw_data_path(self, pass_dir, pass_name):
        return find_raw_capture(pass_dir, pass_name)


class ProbaVExtractor(Proba2Extractor):
    """Proba-V Vegetation instrument products."""

    family = SatelliteFamily.PROBA_V
    sensor = 'VNIR'
    satellite_label = 'ProbaV'
    image_root = VEGETATION_IMAGE_ROOT


def first_cache_time(cache: dict | None) -> int | None:
    entry = next(iter((cache or {}).values()), None)
    if isinstance(entry, dict):
        return coerce_timestamp(entry.get('time'))
    return None


EXTRACTORS: dict[SatelliteFamily, type[PassExtractor]] = {
    SatelliteFamily.NOAA: NOAAExtractor,
    SatelliteFamily.METEOR: MeteorExtractor,
    SatelliteFamily.ELEKTRO_L3: ElektroExtractor,
    SatelliteFamily.FENGYUN: FengYunExtractor,
    SatelliteFamily.FORMATTED_L: FormattedLExtractor,
    SatelliteFamily.PROBA2: Proba2Extractor,
    SatelliteFamily.PROBA_V: ProbaVExtractor,
    SatelliteFamily.UVSQ_NG: UVSQExtractor,
    SatelliteFamily.UNKNOWN: PassExtractor,
}


def get_extractor(family: SatelliteFamily, dimension_workers: int | None = None) -> PassExtractor:
    """Create the extractor for a satellite family."""
    extractor_cls = EXTRACTORS.get(family, PassExtractor)
    return extractor_cls(dimension_workers=dimension_workers)
