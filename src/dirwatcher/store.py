"""Remote store collaborators used by the watcher.

The watcher only needs three capabilities from the storage it watches: list a
directory, read an object's size and checksum, and stream an object's content.
``RemoteStore`` describes that contract; ``FilesystemStore`` implements it on
top of a local or network-mounted directory tree.
"""
from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import AsyncIterator, Callable, Dict, List, Mapping, Optional, Protocol

from .config import ConfigError, StoreConfig
from .entries import DirectoryEntry, EntryType, ObjectMetadata
from .errors import NotFoundError
from .mirror import md5_file

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

ENV_BACKEND = "DIRWATCHER_STORE_BACKEND"
ENV_ROOT = "DIRWATCHER_STORE_ROOT"


class RemoteStore(Protocol):
    """Capabilities the watcher requires from the watched storage."""

    def list_directory(self, path: str) -> AsyncIterator[DirectoryEntry]:
        """Yield the entries of ``path``; raise ``NotFoundError`` if it is missing."""

    async def fetch_metadata(self, path: str) -> ObjectMetadata:
        """Return the size and checksum of the object at ``path``."""

    def fetch_content(self, path: str) -> AsyncIterator[bytes]:
        """Yield the content of the object at ``path`` in chunks."""

    def close(self) -> None:
        """Release any connections held by the store."""


class FilesystemStore:
    """Serves a directory tree as the remote namespace.

    Logical paths are POSIX paths resolved under ``root``; ``/data/in`` maps to
    ``<root>/data/in``.
    """

    def __init__(self, root: Path, *, chunk_size: int = CHUNK_SIZE):
        self.root = Path(root)
        self.chunk_size = chunk_size

    @classmethod
    def from_config(cls, config: StoreConfig) -> "FilesystemStore":
        if config.root is None:
            raise ConfigError("store.root is required for the filesystem backend")
        return cls(config.root)

    def __repr__(self) -> str:
        return f"FilesystemStore(root={str(self.root)!r})"

    async def list_directory(self, path: str) -> AsyncIterator[DirectoryEntry]:
        parent = _normalize(path)
        local_dir = self._resolve(parent)
        try:
            entries = await asyncio.to_thread(_scan_directory, local_dir, parent)
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise NotFoundError(f"{path} does not exist") from exc
        for entry in entries:
            yield entry

    async def fetch_metadata(self, path: str) -> ObjectMetadata:
        local_path = self._resolve(_normalize(path))
        try:
            return await asyncio.to_thread(_object_metadata, local_path)
        except (FileNotFoundError, IsADirectoryError) as exc:
            raise NotFoundError(f"{path} is not an object") from exc

    async def fetch_content(self, path: str) -> AsyncIterator[bytes]:
        local_path = self._resolve(_normalize(path))
        try:
            handle = await asyncio.to_thread(open, local_path, "rb")
        except (FileNotFoundError, IsADirectoryError) as exc:
            raise NotFoundError(f"{path} is not an object") from exc
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, self.chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()

    def close(self) -> None:
        logger.debug("Closing %r", self)

    def _resolve(self, logical: str) -> Path:
        return self.root.joinpath(*PurePosixPath(logical).parts[1:])


StoreFactory = Callable[[StoreConfig], RemoteStore]

STORE_BACKENDS: Dict[str, StoreFactory] = {
    "filesystem": FilesystemStore.from_config,
}


def create_store(config: Optional[StoreConfig] = None, *, environ: Optional[Mapping[str, str]] = None) -> RemoteStore:
    """Build the store the watcher talks to.

    An explicit configuration wins; otherwise the backend and its root are
    taken from ``DIRWATCHER_STORE_BACKEND`` and ``DIRWATCHER_STORE_ROOT``.
    """

    if config is None:
        env = os.environ if environ is None else environ
        root = env.get(ENV_ROOT)
        config = StoreConfig(
            backend=env.get(ENV_BACKEND, "filesystem"),
            root=Path(root) if root else None,
        )
        logger.debug("Store configuration from environment: %s", config)

    try:
        factory = STORE_BACKENDS[config.backend]
    except KeyError as exc:
        allowed = ", ".join(sorted(STORE_BACKENDS))
        raise ConfigError(f"store.backend must be one of: {allowed}") from exc
    return factory(config)


def _normalize(path: str) -> str:
    pure = PurePosixPath("/" + path.lstrip("/"))
    if ".." in pure.parts:
        raise ValueError(f"path must not contain '..': {path}")
    return str(pure)


def _scan_directory(local_dir: Path, parent: str) -> List[DirectoryEntry]:
    entries: List[DirectoryEntry] = []
    with os.scandir(local_dir) as it:
        for item in it:
            try:
                stat = item.stat()
            except FileNotFoundError:
                continue
            is_dir = item.is_dir()
            entries.append(
                DirectoryEntry(
                    name=item.name,
                    type=EntryType.DIRECTORY if is_dir else EntryType.OBJECT,
                    parent=parent,
                    etag=None if is_dir else f"{stat.st_mtime_ns:x}-{stat.st_size:x}",
                    mtime=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    size=None if is_dir else stat.st_size,
                )
            )
    entries.sort(key=lambda entry: entry.name)
    return entries


def _object_metadata(local_path: Path) -> ObjectMetadata:
    if local_path.is_dir():
        raise IsADirectoryError(str(local_path))
    return ObjectMetadata(size=local_path.stat().st_size, md5=md5_file(local_path))
