"""Directory listing synthesis over flat or hierarchical backends.

Adapters enumerate whatever their provider returns: object stores yield flat
keys at any depth, filesystems yield real directories. The
:class:`ListingSynthesizer` reshapes either into a uniform sequence of
:class:`~f9_file_storage.interfaces.FileEntry` and
:class:`~f9_file_storage.interfaces.DirectoryEntry` values:

- shallow listings only contain entries one segment below the root; deeper
  keys collapse into their top-level directory, emitted once
- deep listings contain every file, and each directory is emitted once,
  directly before its first descendant

Provider order is preserved. :class:`DirectoryListing` drives the synthesizer
lazily from the adapter's async generator and can be closed early, which
closes the generator and with it any pagination cursor.

Example:

    >>> async with storage.list("inside", deep=True) as listing:
    ...     async for entry in listing:
    ...         print(entry.type, entry.path)
    file inside/a.txt
    file inside/b.txt
    directory inside/c
    file inside/c/a.txt

"""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING, Any, Callable

from .interfaces import DirectoryEntry, FileEntry, FileInfo, ListingEntry, RawEntry
from .path_utils import join_path, split_path

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping
    from types import TracebackType

logger = logging.getLogger(__name__)


class ListingSynthesizer:
    """Turns raw adapter entries into listing entries for one root."""

    def __init__(self, root: str, *, deep: bool) -> None:
        self.root = root
        self.deep = deep
        self._root_parts = split_path(root)
        self._emitted_directories: set[str] = set()

    def accept(self, raw: RawEntry) -> list[ListingEntry]:
        """Return the entries ``raw`` contributes, in emission order."""
        relative = self._relative_parts(raw.path)
        if not relative:
            return []

        if not self.deep and len(relative) > 1:
            return self._directory(join_path(self.root, relative[0]))

        emitted: list[ListingEntry] = []
        for depth in range(1, len(relative)):
            emitted.extend(self._directory(join_path(self.root, *relative[:depth])))

        if raw.is_dir:
            emitted.extend(self._directory(raw.path, raw.metadata))
        else:
            info = raw.info if raw.info is not None else FileInfo(path=raw.path)
            if info.path != raw.path:
                info = info.with_path(raw.path)
            emitted.append(FileEntry(info))
        return emitted

    def _relative_parts(self, path: str) -> list[str]:
        """Return the segments of ``path`` below the root, or [] if outside."""
        parts = split_path(path)
        depth = len(self._root_parts)
        if len(parts) <= depth or parts[:depth] != self._root_parts:
            return []
        return parts[depth:]

    def _directory(
        self,
        path: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> list[ListingEntry]:
        if path in self._emitted_directories:
            return []
        self._emitted_directories.add(path)
        return [DirectoryEntry(path=path, metadata=dict(metadata or {}))]


class DirectoryListing:
    """Lazy, cancellable sequence of listing entries.

    Advancing the listing may suspend while the adapter fetches the next page.
    Call :meth:`aclose` (or leave an ``async with`` block) to stop early; the
    adapter's remaining pages are then never requested.
    """

    def __init__(
        self,
        source: AsyncIterator[RawEntry],
        synthesizer: ListingSynthesizer,
        *,
        translate_error: Callable[[Exception], Exception] | None = None,
    ) -> None:
        self._source = source
        self._synthesizer = synthesizer
        self._translate_error = translate_error
        self._pending: deque[ListingEntry] = deque()
        self._closed = False

    @property
    def path(self) -> str:
        return self._synthesizer.root

    @property
    def deep(self) -> bool:
        return self._synthesizer.deep

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> DirectoryListing:
        return self

    async def __anext__(self) -> ListingEntry:
        while not self._pending:
            if self._closed:
                raise StopAsyncIteration
            try:
                raw = await self._source.__anext__()
            except StopAsyncIteration:
                await self.aclose()
                raise
            except Exception as exc:
                await self.aclose()
                translated = (
                    self._translate_error(exc) if self._translate_error else exc
                )
                if translated is exc:
                    raise
                raise translated from exc
            self._pending.extend(self._synthesizer.accept(raw))
        return self._pending.popleft()

    async def aclose(self) -> None:
        """Stop the listing and release the adapter's cursor."""
        if self._closed:
            return
        self._closed = True
        if self._pending:
            logger.debug(
                "Listing of %r closed with %d buffered entries",
                self.path,
                len(self._pending),
            )
        self._pending.clear()
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()

    async def to_list(self) -> list[ListingEntry]:
        """Consume the whole listing."""
        try:
            return [entry async for entry in self]
        finally:
            await self.aclose()

    async def __aenter__(self) -> DirectoryListing:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
