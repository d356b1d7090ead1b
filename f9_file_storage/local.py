"""Local filesystem adapter.

Files are stored below a root directory with path traversal protection.
Blocking filesystem calls run in worker threads via ``asyncio.to_thread`` so
the event loop stays responsive.

Key Features:
    - Real directories, listed natively
    - Native move via ``os.replace``
    - Native checksums for every hashlib algorithm (and blake3 if installed)
    - Visibility mapped to POSIX permission bits

Path Validation:
    Paths reaching the adapter are already normalized by the facade. The
    adapter still resolves symlinks and verifies the result stays within the
    root (see ``_ensure_within_root``), so a symlink cannot be used to escape.

Visibility:
    ============  ======  ===========
    visibility    files   directories
    ============  ======  ===========
    public        0o644   0o755
    private       0o600   0o700
    ============  ======  ===========

Example:

    >>> from f9_file_storage import FileStorage, LocalStorageAdapter
    >>> storage = FileStorage(LocalStorageAdapter(root="/data/files"))
    >>> await storage.write("document.txt", b"Hello, world!")
    >>> await storage.file_size("document.txt")
    13

"""

from __future__ import annotations

import asyncio
import mimetypes
import os
import shutil
import stat as stat_module
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from .errors import FileStorageError
from .interfaces import (
    DEFAULT_CHUNK_SIZE,
    DirectoryEntry,
    FileInfo,
    RawEntry,
    StorageAdapter,
    Visibility,
)
from .utils import compute_checksum_from_file

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from .interfaces import ChecksumOptions, PathLike, WriteOptions

FILE_PERMISSIONS = {Visibility.PUBLIC: 0o644, Visibility.PRIVATE: 0o600}
DIRECTORY_PERMISSIONS = {Visibility.PUBLIC: 0o755, Visibility.PRIVATE: 0o700}


class LocalStorageAdapter(StorageAdapter):
    """Adapter backed by the local filesystem."""

    def __init__(
        self,
        root: PathLike | None = None,
        *,
        create_root: bool = True,
        public_url_base: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialise the adapter rooted at the given filesystem path.

        Args:
            root: Root directory (defaults to the current working directory).
            create_root: Create the root directory if it doesn't exist.
            public_url_base: Base URL the root is served under, if any.
            chunk_size: Read size used when streaming files.

        Raises:
            FileStorageError: ``FILE_NOT_FOUND`` if the root is missing and
                ``create_root`` is false.

        """
        base = Path(root or Path.cwd()).expanduser()
        self._root = base.resolve(strict=False)
        if create_root:
            self._root.mkdir(parents=True, exist_ok=True)
        elif not self._root.is_dir():
            raise FileStorageError.file_not_found(str(self._root))
        self._public_url_base = public_url_base.rstrip("/") if public_url_base else None
        self._chunk_size = chunk_size

    @property
    def root(self) -> Path:
        """Absolute path used as the storage root."""
        return self._root

    async def write(
        self,
        path: str,
        contents: AsyncIterator[bytes],
        options: WriteOptions,
    ) -> None:
        """Stream ``contents`` into a sibling temporary file, then rename it.

        The target is only replaced once every chunk has been written, so a
        failing stream leaves any previous version untouched.
        """
        target = self._ensure_within_root(path)
        await asyncio.to_thread(
            self._make_parents,
            target,
            options.directory_visibility,
        )
        mode = await asyncio.to_thread(self._file_mode, target, options.visibility)
        handle = await asyncio.to_thread(
            tempfile.NamedTemporaryFile,
            dir=target.parent,
            prefix=f".{target.name}.",
            suffix=".tmp",
            delete=False,
        )
        staged = Path(handle.name)
        try:
            try:
                async for chunk in contents:
                    await asyncio.to_thread(handle.write, chunk)
            finally:
                await asyncio.to_thread(handle.close)
            await asyncio.to_thread(os.chmod, staged, mode)
            await asyncio.to_thread(os.replace, staged, target)
        finally:
            await asyncio.to_thread(staged.unlink, missing_ok=True)

    async def read(self, path: str) -> AsyncIterator[bytes]:
        """Return a stream over the file, failing early if it is missing."""
        target = self._ensure_within_root(path)
        if not await asyncio.to_thread(target.is_file):
            raise FileStorageError.file_not_found(path)
        return self._stream(target)

    async def delete_file(self, path: str) -> None:
        target = self._ensure_within_root(path)
        await asyncio.to_thread(target.unlink, missing_ok=True)

    async def delete_directory(self, path: str) -> None:
        """Remove a directory tree; deleting the root empties it instead."""
        target = self._ensure_within_root(path)
        await asyncio.to_thread(self._remove_tree, target, keep=target == self._root)

    async def copy_file(
        self,
        source: str,
        destination: str,
        options: WriteOptions,
    ) -> None:
        src = self._ensure_within_root(source)
        dest = self._ensure_within_root(destination)
        if not await asyncio.to_thread(src.is_file):
            raise FileStorageError.file_not_found(source)
        await asyncio.to_thread(self._make_parents, dest, options.directory_visibility)
        await asyncio.to_thread(shutil.copy2, src, dest)
        if options.visibility is not None:
            await asyncio.to_thread(os.chmod, dest, FILE_PERMISSIONS[options.visibility])

    async def move_file(
        self,
        source: str,
        destination: str,
        options: WriteOptions,
    ) -> None:
        """Rename the file in place; atomic within one filesystem."""
        src = self._ensure_within_root(source)
        dest = self._ensure_within_root(destination)
        if not await asyncio.to_thread(src.is_file):
            raise FileStorageError.file_not_found(source)
        await asyncio.to_thread(self._make_parents, dest, options.directory_visibility)
        await asyncio.to_thread(os.replace, src, dest)
        if options.visibility is not None:
            await asyncio.to_thread(os.chmod, dest, FILE_PERMISSIONS[options.visibility])

    async def create_directory(self, path: str, options: WriteOptions) -> None:
        target = self._ensure_within_root(path)
        await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
        if options.directory_visibility is not None:
            await asyncio.to_thread(
                os.chmod,
                target,
                DIRECTORY_PERMISSIONS[options.directory_visibility],
            )

    async def file_exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._ensure_within_root(path).is_file)

    async def directory_exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._ensure_within_root(path).is_dir)

    async def stat(self, path: str) -> FileInfo | DirectoryEntry:
        """Return file metadata or a directory entry."""
        target = self._ensure_within_root(path)
        return await asyncio.to_thread(self._stat, target, path)

    async def list_entries(self, path: str, *, deep: bool) -> AsyncIterator[RawEntry]:
        """Yield files then subdirectories of ``path``, each in name order.

        With ``deep`` each subdirectory is followed by its own contents.
        """
        directory = self._ensure_within_root(path)
        files, subdirectories = await asyncio.to_thread(self._scan, directory)
        for name in files:
            relative = f"{path}/{name}" if path else name
            try:
                info = await asyncio.to_thread(
                    self._stat,
                    directory / name,
                    relative,
                )
            except FileStorageError:
                # Removed between scan and stat.
                continue
            yield RawEntry(path=relative, info=info)
        for name in subdirectories:
            relative = f"{path}/{name}" if path else name
            yield RawEntry(path=relative, is_dir=True)
            if deep:
                async for entry in self.list_entries(relative, deep=True):
                    yield entry

    async def visibility(self, path: str) -> Visibility:
        target = self._ensure_within_root(path)
        if not await asyncio.to_thread(target.is_file):
            raise FileStorageError.file_not_found(path)
        mode = (await asyncio.to_thread(target.stat)).st_mode
        return _mode_to_visibility(mode)

    async def set_visibility(self, path: str, visibility: Visibility) -> None:
        target = self._ensure_within_root(path)
        if not await asyncio.to_thread(target.is_file):
            raise FileStorageError.file_not_found(path)
        await asyncio.to_thread(os.chmod, target, FILE_PERMISSIONS[visibility])

    async def public_url(self, path: str, options: Mapping[str, Any]) -> str:
        if self._public_url_base is None:
            return await super().public_url(path, options)
        return f"{self._public_url_base}/{quote(path)}"

    async def checksum(self, path: str, options: ChecksumOptions) -> str:
        """Hash the file in a worker thread."""
        target = self._ensure_within_root(path)
        if not await asyncio.to_thread(target.is_file):
            raise FileStorageError.file_not_found(path)
        return await asyncio.to_thread(
            compute_checksum_from_file,
            target,
            options.algorithm,
            self._chunk_size,
            options.encoding,
        )

    async def _stream(self, target: Path) -> AsyncIterator[bytes]:
        handle = await asyncio.to_thread(target.open, "rb")
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, self._chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            await asyncio.to_thread(handle.close)

    def _make_parents(self, target: Path, visibility: Visibility | None) -> None:
        """Create missing parent directories, applying ``visibility`` to them."""
        missing = []
        current = target.parent
        while current != self._root and not current.exists():
            missing.append(current)
            current = current.parent
        for directory in reversed(missing):
            directory.mkdir(exist_ok=True)
            if visibility is not None:
                os.chmod(directory, DIRECTORY_PERMISSIONS[visibility])

    @staticmethod
    def _file_mode(target: Path, visibility: Visibility | None) -> int:
        """Permission bits for a write: requested, existing, else public."""
        if visibility is not None:
            return FILE_PERMISSIONS[visibility]
        try:
            return stat_module.S_IMODE(target.stat().st_mode)
        except FileNotFoundError:
            return FILE_PERMISSIONS[Visibility.PUBLIC]

    @staticmethod
    def _remove_tree(target: Path, *, keep: bool) -> None:
        if not target.exists():
            return
        if not keep:
            shutil.rmtree(target)
            return
        for child in target.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()

    @staticmethod
    def _scan(directory: Path) -> tuple[list[str], list[str]]:
        """Return sorted file and subdirectory names of ``directory``."""
        if not directory.is_dir():
            return [], []
        files: list[str] = []
        subdirectories: list[str] = []
        with os.scandir(directory) as it:
            for item in it:
                if item.is_dir(follow_symlinks=False):
                    subdirectories.append(item.name)
                elif item.is_file():
                    files.append(item.name)
        return sorted(files), sorted(subdirectories)

    @staticmethod
    def _stat(target: Path, path: str) -> FileInfo | DirectoryEntry:
        try:
            stat_result = target.stat()
        except FileNotFoundError as exc:
            raise FileStorageError.file_not_found(path, cause=exc) from exc
        if stat_module.S_ISDIR(stat_result.st_mode):
            return DirectoryEntry(path=path)
        return FileInfo(
            path=path,
            size=stat_result.st_size,
            last_modified=_timestamp_to_datetime(stat_result.st_mtime),
            visibility=_mode_to_visibility(stat_result.st_mode),
            mime_type=mimetypes.guess_type(path)[0],
            metadata={"permissions": stat_module.S_IMODE(stat_result.st_mode)},
        )

    def _ensure_within_root(self, path: str) -> Path:
        """Resolve ``path`` under the root, rejecting symlink escapes.

        Args:
            path: Normalized path relative to the root ("" for the root).

        Returns:
            Absolute Path guaranteed to be within the root.

        Raises:
            FileStorageError: ``INVALID_PATH`` if the path escapes the root.

        """
        candidate = (self._root / path).resolve(strict=False) if path else self._root
        try:
            candidate.relative_to(self._root)
        except ValueError as exc:
            raise FileStorageError.invalid_path(
                path,
                "Path resolves outside the storage root",
            ) from exc
        return candidate


def _mode_to_visibility(mode: int) -> Visibility:
    """Files readable by others are public."""
    return Visibility.PUBLIC if mode & stat_module.S_IROTH else Visibility.PRIVATE


def _timestamp_to_datetime(timestamp: float) -> datetime:
    """Convert a POSIX timestamp to an aware datetime in UTC."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)
