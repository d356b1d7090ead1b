"""Tests specific to the in-memory object store adapter."""

from __future__ import annotations

import pytest

from f9_file_storage import (
    ChecksumOptions,
    DirectoryEntry,
    FileInfo,
    FileStorage,
    InMemoryStorageAdapter,
    Visibility,
    WriteOptions,
)


@pytest.fixture
def adapter() -> InMemoryStorageAdapter:
    """Provide a prefixed adapter with small listing pages."""
    return InMemoryStorageAdapter(prefix="tenant", page_size=2)


@pytest.fixture
def storage(adapter: InMemoryStorageAdapter) -> FileStorage:
    """Provide a facade over the adapter."""
    return FileStorage(adapter)


def test_page_size_must_be_positive() -> None:
    """A zero page size would never make progress."""
    with pytest.raises(ValueError, match="page_size"):
        InMemoryStorageAdapter(page_size=0)


@pytest.mark.asyncio
async def test_prefix_is_applied_and_hidden(
    storage: FileStorage,
    adapter: InMemoryStorageAdapter,
) -> None:
    """Keys should carry the prefix while returned paths never do."""
    await storage.write("docs/a.txt", b"x")
    assert list(adapter._objects) == ["tenant/docs/a.txt"]

    info = await storage.stat("docs/a.txt")
    assert info.path == "docs/a.txt"
    entries = await storage.list("", deep=True).to_list()
    assert [entry.path for entry in entries] == ["docs", "docs/a.txt"]


@pytest.mark.asyncio
async def test_listing_paginates_lazily(
    storage: FileStorage,
    adapter: InMemoryStorageAdapter,
) -> None:
    """Closing a listing early should stop requesting pages."""
    for name in ("a", "b", "c", "d", "e"):
        await storage.write(f"{name}.txt", b"x")

    listing = storage.list()
    first = await listing.__anext__()
    assert first.path == "a.txt"
    assert adapter.pages_fetched == 1
    await listing.aclose()
    assert adapter.pages_fetched == 1

    adapter.pages_fetched = 0
    entries = await storage.list().to_list()
    assert [entry.path for entry in entries] == [f"{n}.txt" for n in "abcde"]
    assert adapter.pages_fetched == 3


@pytest.mark.asyncio
async def test_directory_markers_precede_contents(storage: FileStorage) -> None:
    """Explicit markers should be listed before the keys they contain."""
    await storage.write("inside/a.txt", b"a")
    await storage.write("inside/c/a.txt", b"c")
    await storage.create_directory("inside/c", WriteOptions(metadata={"k": "v"}))
    await storage.create_directory("inside/empty")

    shallow = await storage.list("inside").to_list()
    assert [(entry.type, entry.path) for entry in shallow] == [
        ("file", "inside/a.txt"),
        ("directory", "inside/c"),
        ("directory", "inside/empty"),
    ]
    assert shallow[1].metadata == {"k": "v"}

    deep = await storage.list("inside", deep=True).to_list()
    assert [entry.path for entry in deep] == [
        "inside/a.txt",
        "inside/c",
        "inside/c/a.txt",
        "inside/empty",
    ]


@pytest.mark.asyncio
async def test_stat_returns_directory_for_markers(
    adapter: InMemoryStorageAdapter,
) -> None:
    """Stat on a marker should describe a directory."""
    await adapter.create_directory("empty", WriteOptions())
    assert isinstance(await adapter.stat("empty"), DirectoryEntry)


@pytest.mark.asyncio
async def test_markers_list_stat_and_delete_by_path(
    storage: FileStorage,
    adapter: InMemoryStorageAdapter,
) -> None:
    """Markers should list, stat and delete by their unprefixed path."""
    await storage.create_directory("docs", WriteOptions(metadata={"k": "v"}))
    await storage.create_directory("docs/drafts")

    listing = await storage.list(deep=True).to_list()
    assert [(entry.type, entry.path) for entry in listing] == [
        ("directory", "docs"),
        ("directory", "docs/drafts"),
    ]
    assert listing[0].metadata == {"k": "v"}
    docs = await adapter.stat("docs")
    assert isinstance(docs, DirectoryEntry)
    assert docs.metadata == {"k": "v"}

    await storage.delete_directory("docs")
    assert not await storage.directory_exists("docs")
    assert not await storage.directory_exists("docs/drafts")


@pytest.mark.asyncio
async def test_copy_keeps_metadata_unless_overridden(storage: FileStorage) -> None:
    """Copies should inherit visibility and metadata from the source."""
    await storage.write(
        "a.txt",
        b"x",
        WriteOptions(visibility=Visibility.PUBLIC, metadata={"owner": "ops"}),
    )
    await storage.copy_file("a.txt", "b.txt")
    await storage.copy_file("a.txt", "c.txt", WriteOptions(visibility=Visibility.PRIVATE))

    copied = await storage.stat("b.txt")
    assert isinstance(copied, FileInfo)
    assert copied.visibility is Visibility.PUBLIC
    assert copied.metadata["owner"] == "ops"
    assert await storage.visibility("c.txt") is Visibility.PRIVATE


@pytest.mark.asyncio
async def test_md5_checksum_matches_etag(storage: FileStorage) -> None:
    """The native MD5 checksum should match the ETag in the stat metadata."""
    await storage.write("a.txt", b"test")
    info = await storage.stat("a.txt")
    checksum = await storage.checksum("a.txt", ChecksumOptions("md5"))
    assert checksum == info.metadata["etag"]


@pytest.mark.asyncio
async def test_delete_root_clears_only_prefix() -> None:
    """Deleting the root of a prefixed store should leave other prefixes alone."""
    shared = InMemoryStorageAdapter(prefix="a")
    await FileStorage(shared).write("x.txt", b"x")
    shared._objects["b/y.txt"] = shared._objects["a/x.txt"]

    await FileStorage(shared).delete_directory("")
    assert list(shared._objects) == ["b/y.txt"]
