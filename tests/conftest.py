"""Shared fixtures: an in-memory store and entry builders."""
from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Dict, List, Optional

import pytest

from dirwatcher.entries import DirectoryEntry, EntryType, ObjectMetadata
from dirwatcher.errors import NotFoundError

WATCHED = "/stor/inbox"
BASE_TIME = datetime(2016, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_entry(
    name: str,
    etag: Optional[str] = "e1",
    *,
    type: EntryType = EntryType.OBJECT,
    parent: str = WATCHED,
    mtime: Optional[datetime] = BASE_TIME,
    size: Optional[int] = 10,
) -> DirectoryEntry:
    return DirectoryEntry(name=name, type=type, parent=parent, etag=etag, mtime=mtime, size=size)


class FakeStore:
    """In-memory store holding one watched directory.

    ``gate`` (when set) makes each listing wait until the event is set, which
    lets tests hold a poll in flight.
    """

    def __init__(self, directory: str = WATCHED):
        self.directory = directory
        self.objects: Dict[str, bytes] = {}
        self.directories: List[str] = []
        self.missing = False
        self.list_error: Optional[Exception] = None
        self.content_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.list_calls = 0
        self.metadata_calls: List[str] = []
        self.active_listings = 0
        self.max_active_listings = 0
        self.closed = False
        self._versions: Dict[str, int] = {}

    def put(self, name: str, content: bytes) -> None:
        self.objects[name] = content
        self._versions[name] = self._versions.get(name, 0) + 1

    def remove(self, name: str) -> None:
        del self.objects[name]

    def entry(self, name: str) -> DirectoryEntry:
        content = self.objects[name]
        version = self._versions[name]
        return make_entry(
            name,
            hashlib.md5(content).hexdigest(),
            mtime=BASE_TIME + timedelta(seconds=version),
            size=len(content),
        )

    async def list_directory(self, path: str) -> AsyncIterator[DirectoryEntry]:
        self.list_calls += 1
        self.active_listings += 1
        self.max_active_listings = max(self.max_active_listings, self.active_listings)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.list_error is not None:
                raise self.list_error
            if self.missing or path != self.directory:
                raise NotFoundError(path)
            for name in sorted(self.directories):
                yield make_entry(name, None, type=EntryType.DIRECTORY, size=None)
            for name in sorted(self.objects):
                yield self.entry(name)
        finally:
            self.active_listings -= 1

    async def fetch_metadata(self, path: str) -> ObjectMetadata:
        self.metadata_calls.append(path)
        content = self.objects.get(path.rsplit("/", 1)[-1])
        if content is None:
            raise NotFoundError(path)
        return ObjectMetadata(size=len(content), md5=hashlib.md5(content).hexdigest())

    async def fetch_content(self, path: str) -> AsyncIterator[bytes]:
        content = self.objects.get(path.rsplit("/", 1)[-1])
        if content is None:
            raise NotFoundError(path)
        half = len(content) // 2
        yield content[:half]
        if self.content_error is not None:
            raise self.content_error
        yield content[half:]

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def mirror(tmp_path):
    path = tmp_path / "mirror"
    path.mkdir()
    return path
