"""
File snapshots for change detection.

Resolves glob patterns into (path, modification time) pairs. Patterns are
evaluated in order and matches are kept in the order the filesystem
enumerates them, so two snapshots of an unchanged tree compare equal
position by position.
"""

import glob
import logging
import os
from typing import Iterable, NamedTuple

logger = logging.getLogger(__name__)


class FileStat(NamedTuple):
    """A matched path and its modification time in nanoseconds."""

    path: str
    mtime_ns: int


def resolve(patterns: Iterable[str]) -> list[FileStat]:
    """Resolve glob patterns into a snapshot. Failures skip the item, never raise."""
    snapshot = []

    for pattern in patterns:
        try:
            matches = glob.glob(pattern, recursive=True)
        except (OSError, ValueError) as e:
            logger.error(f"Invalid watch pattern {pattern!r}: {e}")
            continue

        for match in matches:
            logger.debug(f"Watch match: {match}")
            try:
                stat = os.stat(match)
            except (OSError, ValueError) as e:
                logger.error(f"Cannot stat {match}: {e}")
                continue
            snapshot.append(FileStat(match, stat.st_mtime_ns))

    return snapshot
