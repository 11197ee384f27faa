"""
Satellite Pass Index Package

Classifies SatDump pass directories, extracts per-image metadata into the
gallery store and serves filtered views of that store.
"""

from __future__ import annotations

__all__ = [
    'models',
    'classifier',
    'extractors',
    'stability',
    'indexer',
    'composites',
    'query',
    'scheduler',
]
