"""
Composite product classification.

SatDump names its composites after the pipeline product, so a filename tag
such as ``avhrr_3_rgb_mcir_rain_map`` is mapped to a display category by the
longest known prefix it contains.
"""

from __future__ import annotations

from typing import Iterable

OTHER_KEY = 'other'
OTHER_LABEL = 'Other'

# Prefix -> display label. Order is the order offered to the UI.
COMPOSITE_TYPES = {
    'AVHRR_221': 'AVHRR 221',
    'AVHRR_3a21': 'AVHRR 3a21',
    'Cloud_Convection': 'Cloud Convection',
    'avhrr_3_rgb_MCIR_Rain_': 'MCIR Rain',
    'MSU-MR-': 'LRPT Channel',
    'L3_1': 'L3 Channel 1',
    'L3_2': 'L3 Channel 2',
    'L3_3': 'L3 Channel 3',
    'L3_4': 'L3 Channel 4',
    'L3_9': 'L3 Channel 9',
    '10.8um': '10.8um IR',
    'GS_321_': '321 False Color',
    'Natural_Color': 'Natural Color',
    'APT-A': 'APT Channel A',
    'APT-B': 'APT Channel B',
    'raw_': 'Raw APT',
    'AVHRR-2': 'AVHRR Channel 2',
    'AVHRR-4': 'AVHRR Channel 4',
    'fy-2x': 'SVISSR',
}

# Longest prefix first so specific products win over generic ones
_PREFIXES_BY_LENGTH = sorted(COMPOSITE_TYPES, key=len, reverse=True)


def match_composite_key(tag: str | None) -> str | None:
    """Return the longest known prefix contained in ``tag``, or None."""
    if not tag:
        return None
    lowered = tag.lower()
    for prefix in _PREFIXES_BY_LENGTH:
        if prefix.lower() in lowered:
            return prefix
    return None


def classify_composite(tag: str | None) -> str:
    """Map a raw composite tag to its display label."""
    key = match_composite_key(tag)
    return COMPOSITE_TYPES[key] if key else OTHER_LABEL


def is_known_composite(tag: str | None) -> bool:
    return match_composite_key(tag) is not None


def composite_options(composites: Iterable[str | None] | None = None) -> list[dict]:
    """Build the composite filter options.

    Args:
        composites: Raw tags present in a scope (e.g. one satellite). When None,
            every known category is offered.

    Returns:
        List of ``{'value', 'label'}`` dicts, known categories in table order
        followed by the ``other`` bucket when it applies.
    """
    if composites is None:
        options = [{'value': key, 'label': label} for key, label in COMPOSITE_TYPES.items()]
        options.append({'value': OTHER_KEY, 'label': OTHER_LABEL})
        return options

    tags = {tag.lower() for tag in composites if isinstance(tag, str) and tag.strip()}

    options = []
    for key, label in COMPOSITE_TYPES.items():
        if any(key.lower() in tag for tag in tags):
            options.append({'value': key, 'label': label})

    has_other = any(
        not any(key.lower() in tag for key in COMPOSITE_TYPES)
        for tag in tags
    )
    if has_other:
        options.append({'value': OTHER_KEY, 'label': OTHER_LABEL})

    return options
