"""Tests for listing synthesis and lazy directory listings."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from f9_file_storage import (
    DirectoryListing,
    ErrorKind,
    FileInfo,
    FileStorageError,
    ListingSynthesizer,
    RawEntry,
)
from f9_file_storage.errors import wrap_error

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


def _synthesize(root: str, raw: list[RawEntry], *, deep: bool) -> list[tuple[str, str]]:
    synthesizer = ListingSynthesizer(root, deep=deep)
    return [
        (entry.type, entry.path)
        for item in raw
        for entry in synthesizer.accept(item)
    ]


FLAT_KEYS = [
    RawEntry("inside/a.txt"),
    RawEntry("inside/b.txt"),
    RawEntry("inside/c/a.txt"),
    RawEntry("inside/c/d/e.txt"),
    RawEntry("inside/c/f.txt"),
]


def test_shallow_listing_collapses_nested_keys() -> None:
    """Keys below depth one should collapse into a single directory entry."""
    assert _synthesize("inside", FLAT_KEYS, deep=False) == [
        ("file", "inside/a.txt"),
        ("file", "inside/b.txt"),
        ("directory", "inside/c"),
    ]


def test_deep_listing_emits_each_directory_before_children() -> None:
    """Deep listings should emit intermediate directories exactly once."""
    assert _synthesize("inside", FLAT_KEYS, deep=True) == [
        ("file", "inside/a.txt"),
        ("file", "inside/b.txt"),
        ("directory", "inside/c"),
        ("file", "inside/c/a.txt"),
        ("directory", "inside/c/d"),
        ("file", "inside/c/d/e.txt"),
        ("file", "inside/c/f.txt"),
    ]


def test_native_directories_are_deduplicated() -> None:
    """A native directory should not repeat a synthesized one."""
    raw = [
        RawEntry("docs/sub/a.txt"),
        RawEntry("docs/sub", is_dir=True),
        RawEntry("docs/other", is_dir=True),
    ]
    assert _synthesize("", raw, deep=True) == [
        ("directory", "docs"),
        ("directory", "docs/sub"),
        ("file", "docs/sub/a.txt"),
        ("directory", "docs/other"),
    ]


def test_entries_outside_root_are_skipped() -> None:
    """Segment-aware matching should skip siblings sharing a name prefix."""
    raw = [
        RawEntry("inside", is_dir=True),
        RawEntry("insider/a.txt"),
        RawEntry("inside/a.txt"),
    ]
    assert _synthesize("inside", raw, deep=True) == [("file", "inside/a.txt")]


def test_file_info_is_relocated_to_raw_path() -> None:
    """File entries should report the raw entry's path."""
    info = FileInfo(path="stale", size=3)
    synthesizer = ListingSynthesizer("", deep=False)
    (entry,) = synthesizer.accept(RawEntry("a.txt", info=info))
    assert entry.is_file
    assert entry.path == "a.txt"
    assert entry.info.size == 3
    assert entry.as_dict()["type"] == "file"


class _Pages:
    """Paginated raw source that counts fetched pages."""

    def __init__(self, pages: list[list[RawEntry]], error: Exception | None = None):
        self.pages = pages
        self.error = error
        self.fetched = 0
        self.closed = False

    async def entries(self) -> AsyncIterator[RawEntry]:
        try:
            for page in self.pages:
                self.fetched += 1
                for entry in page:
                    yield entry
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


@pytest.mark.asyncio
async def test_listing_is_lazy_and_closes_cursor() -> None:
    """Closing a listing should stop pagination and release the source."""
    pages = _Pages([[RawEntry("a.txt"), RawEntry("b.txt")], [RawEntry("c.txt")]])
    source = pages.entries()
    listing = DirectoryListing(source, ListingSynthesizer("", deep=False))
    assert pages.fetched == 0

    first = await listing.__anext__()
    assert first.path == "a.txt"
    await listing.aclose()

    assert listing.closed
    assert pages.closed
    assert pages.fetched == 1
    with pytest.raises(StopAsyncIteration):
        await listing.__anext__()


@pytest.mark.asyncio
async def test_listing_async_context_manager() -> None:
    """Leaving an async with block should close the listing."""
    pages = _Pages([[RawEntry("a.txt")], [RawEntry("b.txt")]])
    async with DirectoryListing(
        pages.entries(),
        ListingSynthesizer("", deep=False),
    ) as listing:
        async for entry in listing:
            assert entry.path == "a.txt"
            break
    assert pages.closed
    assert pages.fetched == 1


@pytest.mark.asyncio
async def test_listing_to_list_consumes_all_pages() -> None:
    """to_list should drain every page."""
    pages = _Pages([[RawEntry("a.txt")], [RawEntry("b/c.txt")]])
    listing = DirectoryListing(pages.entries(), ListingSynthesizer("", deep=True))
    entries = await listing.to_list()
    assert [entry.path for entry in entries] == ["a.txt", "b", "b/c.txt"]
    assert pages.fetched == 2
    assert listing.closed


@pytest.mark.asyncio
async def test_listing_translates_source_errors() -> None:
    """Errors while advancing should be translated and close the listing."""
    pages = _Pages([[RawEntry("a.txt")]], error=ConnectionError("page fetch failed"))
    listing = DirectoryListing(
        pages.entries(),
        ListingSynthesizer("", deep=False),
        translate_error=lambda exc: wrap_error(ErrorKind.UNABLE_TO_LIST_DIRECTORY, exc),
    )
    assert (await listing.__anext__()).path == "a.txt"
    with pytest.raises(FileStorageError) as excinfo:
        await listing.__anext__()
    assert excinfo.value.kind is ErrorKind.UNABLE_TO_LIST_DIRECTORY
    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert listing.closed
