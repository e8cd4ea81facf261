"""Snapshot comparison producing ordered create/update/delete changes."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from .entries import DirectoryEntry, EntryType, Snapshot
from .events import Change, ChangeAction

EntryDiff = Dict[str, Tuple[Any, Any]]


def diff_entries(old: DirectoryEntry, new: DirectoryEntry) -> Optional[EntryDiff]:
    """Return the differing attributes of two entries, or ``None``.

    Only ``type`` and ``etag`` count: the etag changes whenever the content
    does, so an mtime change alone is not an update. When neither object
    carries an etag the mtime is compared instead; directories without etags
    only change by type.
    """

    diff: EntryDiff = {}
    if old.type is not new.type:
        diff["type"] = (old.type, new.type)
    if old.etag is None and new.etag is None:
        if new.type is EntryType.OBJECT and old.mtime != new.mtime:
            diff["mtime"] = (old.mtime, new.mtime)
    elif old.etag != new.etag:
        diff["etag"] = (old.etag, new.etag)
    return diff or None


def diff_snapshots(old: Snapshot, dirents: Iterable[DirectoryEntry]) -> List[Change]:
    """Compare the listing against the previous snapshot.

    Creates and updates come first, in listing order, followed by deletes in
    the order of the previous snapshot.
    """

    changes: List[Change] = []
    seen = set()

    for entry in dirents:
        seen.add(entry.name)
        old_entry = old.get(entry.name)
        if old_entry is None:
            changes.append(Change(action=ChangeAction.CREATE, entry=entry))
            continue
        diff = diff_entries(old_entry, entry)
        if diff:
            changes.append(Change(action=ChangeAction.UPDATE, entry=entry, old_entry=old_entry, diff=diff))

    for name, old_entry in old.items():
        if name not in seen:
            changes.append(Change(action=ChangeAction.DELETE, old_entry=old_entry))

    return changes
