"""First-poll reconciliation of the remote listing against a local mirror.

With no snapshot from an earlier poll, the local mirror directory is the best
record of what was seen before. Names present on only one side become creates
or deletes. Names present on both sides are "possible updates": the remote
size and checksum decide whether the local copy is stale.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List

from .entries import DirectoryEntry, EntryType, LocalDirent
from .errors import ReconciliationError
from .events import Change, ChangeAction
from .filters import EntryFilter

if TYPE_CHECKING:
    from .store import RemoteStore

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".dirwatcher-tmp"


@dataclass
class Reconciliation:
    """Changes derived from the mirror plus how many names overlapped."""

    changes: List[Change] = field(default_factory=list)
    possible_updates: int = 0


def md5_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.md5()
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def is_temp_name(name: str) -> bool:
    return name.startswith(".") and name.endswith(TEMP_SUFFIX)


async def read_local_dirents(mirror_directory: Path, entry_filter: EntryFilter) -> List[LocalDirent]:
    """List the files in the mirror, filtered the same way as the remote side.

    A missing mirror directory is treated as empty.
    """

    try:
        dirents = await asyncio.to_thread(_scan_mirror, mirror_directory, entry_filter)
    except FileNotFoundError:
        logger.debug("Mirror directory %s does not exist yet", mirror_directory)
        return []
    except OSError as exc:
        raise ReconciliationError(f"cannot read mirror directory {mirror_directory}: {exc}") from exc
    logger.debug("Found %s local files in %s", len(dirents), mirror_directory)
    return dirents


def _scan_mirror(mirror_directory: Path, entry_filter: EntryFilter) -> List[LocalDirent]:
    dirents: List[LocalDirent] = []
    with os.scandir(mirror_directory) as it:
        for item in it:
            if is_temp_name(item.name) or not entry_filter.matches_name(item.name):
                continue
            try:
                if item.is_dir(follow_symlinks=False):
                    continue
                stat = item.stat(follow_symlinks=False)
            except FileNotFoundError:
                continue
            dirents.append(
                LocalDirent(
                    name=item.name,
                    path=Path(item.path),
                    size=stat.st_size,
                    mtime=stat.st_mtime,
                )
            )
    dirents.sort(key=lambda dirent: dirent.name)
    return dirents


async def reconcile(
    store: "RemoteStore",
    dirents: Iterable[DirectoryEntry],
    local_dirents: Iterable[LocalDirent],
) -> Reconciliation:
    """Derive changes by comparing the remote listing to the mirror contents."""

    local_by_name: Dict[str, LocalDirent] = {dirent.name: dirent for dirent in local_dirents}
    result = Reconciliation()
    remote_names = set()

    for entry in dirents:
        remote_names.add(entry.name)
        local = local_by_name.get(entry.name)
        if local is None:
            result.changes.append(Change(action=ChangeAction.CREATE, entry=entry))
            continue
        result.possible_updates += 1
        if entry.type is not EntryType.OBJECT:
            logger.debug("%s is a %s remotely but a file locally", entry.name, entry.type.value)
            result.changes.append(Change(action=ChangeAction.UPDATE, entry=entry, old_local=local))
        elif await _is_stale(store, entry, local):
            result.changes.append(Change(action=ChangeAction.UPDATE, entry=entry, old_local=local))

    for name, local in local_by_name.items():
        if name not in remote_names:
            result.changes.append(Change(action=ChangeAction.DELETE, old_local=local))

    logger.debug(
        "Reconciled %s remote entries against %s local files: %s changes, %s possible updates",
        len(remote_names),
        len(local_by_name),
        len(result.changes),
        result.possible_updates,
    )
    return result


async def _is_stale(store: "RemoteStore", entry: DirectoryEntry, local: LocalDirent) -> bool:
    try:
        metadata = await store.fetch_metadata(entry.path)
    except Exception as exc:
        raise ReconciliationError(f"cannot fetch metadata for {entry.path}: {exc}") from exc

    if metadata.size != local.size:
        logger.debug("%s differs in size (%s != %s)", entry.name, metadata.size, local.size)
        return True
    if metadata.md5 is None:
        logger.debug("%s has no remote checksum; treating as stale", entry.name)
        return True

    try:
        local_md5 = await asyncio.to_thread(md5_file, local.path)
    except OSError as exc:
        raise ReconciliationError(f"cannot checksum {local.path}: {exc}") from exc
    if local_md5 != metadata.md5:
        logger.debug("%s differs in checksum (%s != %s)", entry.name, metadata.md5, local_md5)
        return True
    return False
