"""Sanity check before deleting files from a freshly reconciled mirror."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from .errors import DeleteGuardError
from .events import Change, ChangeAction

logger = logging.getLogger(__name__)


def check_delete_guard(
    changes: Sequence[Change],
    possible_updates: int,
    *,
    mirror_directory: Path,
    watched_directory: str,
) -> None:
    """Refuse to delete local files when no name overlaps with the remote listing.

    Deleting files while nothing in the mirror matches the remote directory
    most likely means the wrong local directory was given.
    """

    deletes = sum(1 for change in changes if change.action is ChangeAction.DELETE)
    if deletes and not possible_updates:
        raise DeleteGuardError(
            f"refusing to delete {deletes} file(s) from mirror directory {mirror_directory}: "
            f"none of its files match an entry in {watched_directory}, so it may be the wrong "
            "directory (set disable_delete_guard to skip this check)"
        )
    logger.debug("Delete guard passed: %s deletes, %s possible updates", deletes, possible_updates)
