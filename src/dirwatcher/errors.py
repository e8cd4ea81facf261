"""Exceptions raised while polling, reconciling and mirroring."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .events import Change


class WatcherError(Exception):
    """Base class for errors reported by the watcher."""


class NotFoundError(WatcherError):
    """Raised by a store when the requested path does not exist."""


class ListingError(WatcherError):
    """Raised when the watched directory could not be listed."""


class ReconciliationError(WatcherError):
    """Raised when the local mirror could not be compared to the remote listing."""


class DeleteGuardError(WatcherError):
    """Raised when mirror deletions look like a mischosen mirror directory."""


class SyncError(WatcherError):
    """Raised when a change could not be materialized into the mirror."""

    def __init__(self, message: str, change: Optional["Change"] = None):
        super().__init__(message)
        self.change = change
