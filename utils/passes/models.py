"""
Data models for indexed satellite passes and their images.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class SatelliteFamily(str, Enum):
    """Satellite families with a known SatDump output layout."""

    NOAA = 'noaa'
    METEOR = 'meteor'
    ELEKTRO_L3 = 'elektro-l3'
    FENGYUN = 'fengyun'
    FORMATTED_L = 'formatted-l'
    PROBA2 = 'proba2'
    PROBA_V = 'proba-v'
    UVSQ_NG = 'uvsq-ng'
    UNKNOWN = 'unknown'


# rawDataPath sentinel for passes that never carry a raw capture. The column
# has TEXT affinity, so the stored value reads back as '0'.
NO_RAW_DATA = '0'

DEFAULT_SATELLITE = 'Unknown'

# Downlink labels
DOWNLINK_VHF = 'VHF'
DOWNLINK_L_BAND = 'L Band'
DOWNLINK_S_BAND = 'S Band'


@dataclass
class ImageRecord:
    """One rendered product belonging to a pass."""

    path: str
    composite: str
    map_overlay: bool = False
    corrected: bool = False
    filled: bool = False
    v_pixels: int | None = None
    sensor: str | None = None

    # Capture time reported by the decoder for this product, when known.
    # Used to derive the pass timestamp; not stored per image.
    captured_at: int | None = None

    def to_row(self, pass_id: int) -> tuple:
        return (
            self.path,
            self.composite,
            self.sensor,
            1 if self.map_overlay else 0,
            1 if self.corrected else 0,
            1 if self.filled else 0,
            self.v_pixels,
            pass_id,
        )


@dataclass
class PassRecord:
    """Pass-level metadata written to the ``passes`` table."""

    name: str
    family: SatelliteFamily = SatelliteFamily.UNKNOWN
    satellite: str = DEFAULT_SATELLITE
    timestamp: int | None = None
    raw_data_path: str | None = None
    downlink: str | None = None
    images: list[ImageRecord] = field(default_factory=list)

    @property
    def image_count(self) -> int:
        return len(self.images)

    def to_row(self) -> tuple:
        return (
            self.name,
            self.satellite,
            self.timestamp,
            self.raw_data_path,
            self.downlink,
        )
