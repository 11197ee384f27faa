"""
Pass directory stability policies.

SatDump keeps writing into a pass directory while a capture is decoded. A
policy decides whether a directory has settled enough to be indexed; the
update run skips unstable directories and retries them on its next cycle.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Callable

import config
from utils.logging import get_logger

logger = get_logger('passgallery.stability')


class StabilityPolicy:
    """Interface: ``is_stable(path) -> bool``."""

    def is_stable(self, path: str | Path) -> bool:
        raise NotImplementedError


class AlwaysStablePolicy(StabilityPolicy):
    """Treat every directory as settled (full rebuilds, tests)."""

    def is_stable(self, path: str | Path) -> bool:
        return True


class DirectoryAgePolicy(StabilityPolicy):
    """Stable once the directory's own mtime is older than the window.

    Only the top-level directory is inspected.
    """

    def __init__(
        self,
        window_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if window_seconds is None:
            window_seconds = config.STABILITY_WINDOW_SECONDS
        self.window_seconds = window_seconds
        self._clock = clock

    def is_stable(self, path: str | Path) -> bool:
        try:
            mtime = os.stat(path).st_mtime
        except FileNotFoundError:
            logger.warning(f"Directory does not exist yet: {path}")
            return False
        except OSError as e:
            logger.error(f"Failed to stat directory {path}: {e}")
            return False

        return (self._clock() - mtime) > self.window_seconds


class RecursiveFreshnessPolicy(StabilityPolicy):
    """Stable when nothing under the directory changed recently."""

    def __init__(
        self,
        threshold_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if threshold_seconds is None:
            threshold_seconds = config.RECENT_FILE_SECONDS
        self.threshold_seconds = threshold_seconds
        self._clock = clock

    def is_stable(self, path: str | Path) -> bool:
        now = self._clock()
        try:
            if now - os.stat(path).st_mtime < self.threshold_seconds:
                return False
        except OSError as e:
            logger.warning(f"Unable to stat {path}: {e}")
            return False

        def _on_error(error: OSError) -> None:
            raise error

        try:
            for dirpath, dirnames, filenames in os.walk(path, onerror=_on_error):
                for name in dirnames + filenames:
                    entry = os.path.join(dirpath, name)
                    try:
                        if now - os.stat(entry).st_mtime < self.threshold_seconds:
                            return False
                    except FileNotFoundError:
                        # Removed while scanning: the writer is still active
                        return False
        except OSError as e:
            logger.warning(f"Unable to scan {path}: {e}")
            return False

        return True


POLICIES = {
    'mtime': DirectoryAgePolicy,
    'recursive': RecursiveFreshnessPolicy,
}


def get_stability_policy(name: str | None = None) -> StabilityPolicy:
    """Create the policy named in configuration (default: directory mtime)."""
    name = (name or config.STABILITY_POLICY or 'mtime').lower()
    policy_cls = POLICIES.get(name)
    if policy_cls is None:
        logger.warning(f"Unknown stability policy '{name}', using directory mtime")
        policy_cls = DirectoryAgePolicy
    return policy_cls()
