"""Directory entry models shared by the stores, the diff engine and the mirror."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Optional


class EntryType(str, Enum):
    """Kinds of entries a remote directory listing can contain."""

    OBJECT = "object"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class DirectoryEntry:
    """A single entry from a remote directory listing."""

    name: str
    type: EntryType
    parent: str
    etag: Optional[str] = None
    mtime: Optional[datetime] = None
    size: Optional[int] = None

    @property
    def path(self) -> str:
        return join_remote(self.parent, self.name)


@dataclass(frozen=True)
class LocalDirent:
    """A file found in the local mirror directory."""

    name: str
    path: Path
    size: int
    mtime: float
    is_directory: bool = False


@dataclass(frozen=True)
class ObjectMetadata:
    """Authoritative size and checksum of a remote object."""

    size: int
    md5: Optional[str] = None


# Entry name -> entry, for the filtered remote directory.
Snapshot = Dict[str, DirectoryEntry]


def join_remote(parent: str, name: str) -> str:
    return parent.rstrip("/") + "/" + name
