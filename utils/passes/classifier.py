"""
Pass directory classification.

Decides which satellite family produced a pass directory by probing, in
order: the ``dataset.json`` descriptor, the Elektro composite cache file, the
FengYun ``IMAGE`` folder, and finally the pass folder name and the
descriptor's product list for the remaining SatDump pipelines.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from utils.logging import get_logger
from utils.passes.models import SatelliteFamily

logger = get_logger('passgallery.classifier')

DATASET_FILENAME = 'dataset.json'
COMPOSITE_CACHE_FILENAME = '.composite_cache_do_not_delete.json'
SVISSR_IMAGE_DIR = 'IMAGE'

# Substring of the descriptor's satellite field -> family
DATASET_FAMILIES = (
    ('noaa', SatelliteFamily.NOAA),
    ('meteor', SatelliteFamily.METEOR),
)

# Substrings that must all appear in the pass folder name -> family
FOLDER_FAMILIES = (
    (('noaa', 'hrpt'), SatelliteFamily.FORMATTED_L),
    (('metop', 'ahrpt'), SatelliteFamily.FORMATTED_L),
    (('meteor', 'hrpt'), SatelliteFamily.FORMATTED_L),
    (('aws', 'pfm'), SatelliteFamily.FORMATTED_L),
    (('uvsq', 'ng'), SatelliteFamily.UVSQ_NG),
    (('proba2',), SatelliteFamily.PROBA2),
    (('probav',), SatelliteFamily.PROBA_V),
)


@dataclass
class PassClassification:
    """Result of probing one pass directory."""

    family: SatelliteFamily
    dataset: dict | None = None
    cache: dict | None = None

    @property
    def dataset_satellite(self) -> str | None:
        if not self.dataset:
            return None
        satellite = self.dataset.get('satellite')
        if isinstance(satellite, str) and satellite.strip():
            return satellite
        return None


def read_json_file(path: Path) -> Any | None:
    """Read a JSON file, returning None when it is missing or malformed."""
    try:
        with path.open('r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable {path.name} in {path.parent.name}: {e}")
        return None


def read_dataset(pass_dir: Path) -> dict | None:
    data = read_json_file(pass_dir / DATASET_FILENAME)
    return data if isinstance(data, dict) else None


def read_composite_cache(pass_dir: Path) -> dict | None:
    data = read_json_file(pass_dir / COMPOSITE_CACHE_FILENAME)
    return data if isinstance(data, dict) else None


def dataset_products(dataset: dict | None) -> list[str]:
    """Product folder names listed by a formatted L-band descriptor."""
    products = (dataset or {}).get('products')
    if not isinstance(products, list):
        return []
    return [p for p in products if isinstance(p, str) and p.strip()]


def family_from_folder_name(name: str) -> SatelliteFamily | None:
    lowered = name.lower()
    for markers, family in FOLDER_FAMILIES:
        if all(marker in lowered for marker in markers):
            return family
    return None


def classify_pass(pass_dir: str | Path) -> PassClassification:
    """Determine the satellite family of a pass directory.

    Args:
        pass_dir: Path to one pass directory

    Returns:
        PassClassification with the family and any parsed descriptor/cache.
    """
    pass_dir = Path(pass_dir)

    dataset = read_dataset(pass_dir)
    satellite = ''
    if dataset and isinstance(dataset.get('satellite'), str):
        satellite = dataset['satellite'].lower()

    for marker, family in DATASET_FAMILIES:
        if marker in satellite:
            return PassClassification(family=family, dataset=dataset)

    cache_path = pass_dir / COMPOSITE_CACHE_FILENAME
    if cache_path.is_file():
        return PassClassification(
            family=SatelliteFamily.ELEKTRO_L3,
            dataset=dataset,
            cache=read_composite_cache(pass_dir) or {},
        )

    if (pass_dir / SVISSR_IMAGE_DIR).is_dir():
        return PassClassification(family=SatelliteFamily.FENGYUN, dataset=dataset)

    family = family_from_folder_name(pass_dir.name)
    if family is None and dataset_products(dataset):
        family = SatelliteFamily.FORMATTED_L
    if family is not None:
        return PassClassification(family=family, dataset=dataset)

    return PassClassification(family=SatelliteFamily.UNKNOWN, dataset=dataset)
