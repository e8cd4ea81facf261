import hashlib
from pathlib import Path

import pytest

from dirwatcher.config import ConfigError, StoreConfig
from dirwatcher.entries import EntryType
from dirwatcher.errors import NotFoundError
from dirwatcher.store import FilesystemStore, create_store


@pytest.fixture
def root(tmp_path):
    inbox = tmp_path / "stor" / "inbox"
    inbox.mkdir(parents=True)
    (inbox / "b.txt").write_bytes(b"bravo")
    (inbox / "a.txt").write_bytes(b"alpha!")
    (inbox / "sub").mkdir()
    return tmp_path


async def collect(iterator):
    return [item async for item in iterator]


@pytest.mark.asyncio
async def test_list_directory_sorted_with_metadata(root):
    store = FilesystemStore(root)

    entries = await collect(store.list_directory("/stor/inbox"))

    assert [entry.name for entry in entries] == ["a.txt", "b.txt", "sub"]
    a, _, sub = entries
    assert a.type is EntryType.OBJECT
    assert a.size == 6
    assert a.parent == "/stor/inbox"
    assert a.path == "/stor/inbox/a.txt"
    assert a.etag
    assert a.mtime is not None and a.mtime.tzinfo is not None
    assert sub.type is EntryType.DIRECTORY
    assert sub.size is None
    assert sub.etag is None


@pytest.mark.asyncio
async def test_etag_changes_with_content(root):
    store = FilesystemStore(root)
    (before,) = [e for e in await collect(store.list_directory("/stor/inbox")) if e.name == "a.txt"]

    (root / "stor" / "inbox" / "a.txt").write_bytes(b"a much longer alpha")

    (after,) = [e for e in await collect(store.list_directory("/stor/inbox")) if e.name == "a.txt"]
    assert before.etag != after.etag


@pytest.mark.asyncio
async def test_missing_directory_raises_not_found(root):
    store = FilesystemStore(root)
    with pytest.raises(NotFoundError):
        await collect(store.list_directory("/stor/missing"))
    with pytest.raises(NotFoundError):
        await collect(store.list_directory("/stor/inbox/a.txt"))


@pytest.mark.asyncio
async def test_fetch_metadata_and_content(root):
    store = FilesystemStore(root, chunk_size=2)

    metadata = await store.fetch_metadata("/stor/inbox/a.txt")
    content = b"".join(await collect(store.fetch_content("/stor/inbox/a.txt")))

    assert metadata.size == 6
    assert metadata.md5 == hashlib.md5(b"alpha!").hexdigest()
    assert content == b"alpha!"


@pytest.mark.asyncio
async def test_fetch_of_missing_object_raises_not_found(root):
    store = FilesystemStore(root)
    with pytest.raises(NotFoundError):
        await store.fetch_metadata("/stor/inbox/nope")
    with pytest.raises(NotFoundError):
        await store.fetch_metadata("/stor/inbox/sub")
    with pytest.raises(NotFoundError):
        await collect(store.fetch_content("/stor/inbox/nope"))


@pytest.mark.asyncio
async def test_parent_components_are_rejected(root):
    store = FilesystemStore(root / "stor")
    with pytest.raises(ValueError):
        await collect(store.list_directory("/inbox/../../"))


def test_create_store_from_config(tmp_path):
    store = create_store(StoreConfig(root=tmp_path))
    assert isinstance(store, FilesystemStore)
    assert store.root == tmp_path


def test_create_store_from_environment(tmp_path):
    store = create_store(environ={"DIRWATCHER_STORE_ROOT": str(tmp_path)})
    assert isinstance(store, FilesystemStore)
    assert store.root == Path(tmp_path)


def test_create_store_requires_root():
    with pytest.raises(ConfigError, match="store.root"):
        create_store(environ={})


def test_create_store_rejects_unknown_backend(tmp_path):
    with pytest.raises(ConfigError, match="store.backend"):
        create_store(environ={"DIRWATCHER_STORE_BACKEND": "ftp", "DIRWATCHER_STORE_ROOT": str(tmp_path)})
