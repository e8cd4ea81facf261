"""Materialize detected changes into the local mirror directory."""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from .entries import DirectoryEntry, EntryType
from .errors import SyncError
from .events import Change, ChangeAction
from .mirror import TEMP_SUFFIX

if TYPE_CHECKING:
    from .store import RemoteStore

logger = logging.getLogger(__name__)


class MirrorSync:
    """Applies changes to the mirror: download on create/update, remove on delete.

    Downloads go to a hidden sibling file which is renamed over the final path
    only once complete, so the mirror never exposes a partial file.
    """

    def __init__(
        self,
        store: "RemoteStore",
        mirror_directory: Path,
        *,
        allow_deletion: bool = False,
        dry_run: bool = False,
    ):
        self._store = store
        self._mirror_directory = Path(mirror_directory)
        self._allow_deletion = allow_deletion
        self._dry_run = dry_run

    async def apply(self, changes: Iterable[Change]) -> None:
        """Apply changes in order, stopping at the first failure."""

        for change in changes:
            await self.apply_change(change)

    async def apply_change(self, change: Change) -> None:
        if change.action is ChangeAction.DELETE:
            await self._remove(change)
            return
        if change.entry is None:
            raise SyncError(f"{change.action.value} change has no entry", change)
        if change.entry.type is not EntryType.OBJECT:
            logger.warning("Skipping sync of %s: only objects can be mirrored", change.entry.path)
            return
        await self._download(change, change.entry)

    async def _download(self, change: Change, entry: DirectoryEntry) -> None:
        local_path = self._mirror_directory / entry.name
        if self._dry_run:
            logger.info("[dry-run] would download %s to %s", entry.path, local_path)
            return

        temp_path = self._mirror_directory / f".{entry.name}.{uuid.uuid4().hex[:8]}{TEMP_SUFFIX}"
        try:
            await asyncio.to_thread(self._mirror_directory.mkdir, parents=True, exist_ok=True)
            handle = await asyncio.to_thread(open, temp_path, "wb")
            try:
                async for chunk in self._store.fetch_content(entry.path):
                    await asyncio.to_thread(handle.write, chunk)
            finally:
                await asyncio.to_thread(handle.close)
            await asyncio.to_thread(os.replace, temp_path, local_path)
        except Exception as exc:
            _discard(temp_path)
            raise SyncError(f"failed to download {entry.path} to {local_path}: {exc}", change) from exc
        except BaseException:
            _discard(temp_path)
            raise
        logger.info("Downloaded %s to %s (%s)", entry.path, local_path, change.action.value)

    async def _remove(self, change: Change) -> None:
        if not self._allow_deletion:
            return
        local_path = self._mirror_directory / change.name
        if self._dry_run:
            logger.info("[dry-run] would remove %s", local_path)
            return
        try:
            await asyncio.to_thread(_remove_path, local_path)
        except OSError as exc:
            raise SyncError(f"failed to remove {local_path}: {exc}", change) from exc
        logger.info("Removed %s", local_path)


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Could not remove temporary file %s", path, exc_info=True)
