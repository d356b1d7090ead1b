"""The file storage facade.

:class:`FileStorage` is the only component application code calls. It
normalizes paths, delegates to a :class:`~f9_file_storage.interfaces.StorageAdapter`
and reports every failure as a :class:`~f9_file_storage.errors.FileStorageError`,
so behaviour is the same whichever backend is plugged in.

Example:

    >>> from f9_file_storage import FileStorage, InMemoryStorageAdapter
    >>> storage = FileStorage(InMemoryStorageAdapter())
    >>> await storage.write("docs/readme.txt", "Hello, world!")
    >>> await storage.read_to_string("docs/readme.txt")
    'Hello, world!'
    >>> [entry.path for entry in await storage.list("docs").to_list()]
    ['docs/readme.txt']

Composite operations are not atomic. When an adapter has no native move,
:meth:`FileStorage.move_file` copies and then deletes the source; if the
delete fails the copy stays in place and the error context says so.
"""

from __future__ import annotations

import logging
import mimetypes
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from .checksum import ChecksumResolver
from .errors import ErrorKind, FileStorageError, translate_errors, wrap_error
from .interfaces import (
    DEFAULT_CHUNK_SIZE,
    ChecksumOptions,
    FileInfo,
    PathLike,
    UploadRequest,
    Visibility,
    WriteOptions,
)
from .listing import DirectoryListing, ListingSynthesizer
from .path_utils import PathNormalizer
from .utils import accumulate_chunks, iter_chunks

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from .interfaces import StorageAdapter
    from .utils import Contents

logger = logging.getLogger(__name__)

Expiry = Union[datetime, int, float]


class MoveStage(str, Enum):
    """Step of a move operation recorded in error context."""

    NATIVE = "native"
    COPY = "copy"
    DELETE_SOURCE = "delete_source"


class FileStorage:
    """Provider-agnostic file storage operations over one adapter."""

    def __init__(
        self,
        adapter: StorageAdapter,
        *,
        path_normalizer: PathNormalizer | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialise the facade around ``adapter``.

        Args:
            adapter: Backend the operations are delegated to.
            path_normalizer: Canonicalizes caller paths.
            chunk_size: Largest chunk handed to adapters on write and
                yielded to callers on read.

        """
        if chunk_size < 1:
            message = "chunk_size must be a positive integer"
            raise ValueError(message)
        self._adapter = adapter
        self._paths = path_normalizer or PathNormalizer()
        self._chunk_size = chunk_size
        self._checksums = ChecksumResolver(adapter)

    @property
    def adapter(self) -> StorageAdapter:
        """The backend adapter this facade delegates to."""
        return self._adapter

    async def write(
        self,
        path: PathLike,
        contents: Contents,
        options: WriteOptions | None = None,
    ) -> None:
        """Write ``contents`` to ``path``, replacing any existing file.

        Args:
            path: Destination file path.
            contents: Bytes, text (UTF-8 encoded), a binary file object, or a
                sync/async iterable of chunks.
            options: Visibility, mime-type and metadata hints.

        """
        target = self._paths.normalize_file_path(path)
        with translate_errors(ErrorKind.UNABLE_TO_WRITE, context={"path": target}):
            await self._adapter.write(
                target,
                iter_chunks(contents, self._chunk_size),
                options or WriteOptions(),
            )

    async def read(self, path: PathLike) -> AsyncIterator[bytes]:
        """Return an async iterator over the contents of a file.

        Raises:
            FileStorageError: ``FILE_NOT_FOUND`` for missing files, otherwise
                ``UNABLE_TO_READ``.

        """
        target = self._paths.normalize_file_path(path)
        with translate_errors(ErrorKind.UNABLE_TO_READ, context={"path": target}):
            stream = await self._adapter.read(target)
        return self._guard_stream(stream, target)

    async def read_to_bytes(self, path: PathLike) -> bytes:
        """Return the full contents of a file."""
        stream = await self.read(path)
        return await accumulate_chunks(stream)

    async def read_to_string(self, path: PathLike, *, encoding: str = "utf-8") -> str:
        """Return the full contents of a file decoded as text."""
        payload = await self.read_to_bytes(path)
        try:
            return payload.decode(encoding)
        except UnicodeDecodeError as exc:
            raise FileStorageError.because(
                ErrorKind.UNABLE_TO_READ,
                f"contents are not valid {encoding}",
                context={"path": self._paths.normalize_file_path(path)},
                cause=exc,
            ) from exc

    async def delete_file(self, path: PathLike) -> None:
        """Delete a file. Deleting a missing file is not an error."""
        target = self._paths.normalize_file_path(path)
        try:
            with translate_errors(
                ErrorKind.UNABLE_TO_DELETE_FILE,
                context={"path": target},
            ):
                await self._adapter.delete_file(target)
        except FileStorageError as exc:
            if exc.kind is not ErrorKind.FILE_NOT_FOUND:
                raise

    async def delete_directory(self, path: PathLike) -> None:
        """Recursively delete a directory. A missing directory is not an error."""
        target = self._paths.normalize_path(path)
        try:
            with translate_errors(
                ErrorKind.UNABLE_TO_DELETE_DIRECTORY,
                context={"path": target},
            ):
                await self._adapter.delete_directory(target)
        except FileStorageError as exc:
            if exc.kind is not ErrorKind.FILE_NOT_FOUND:
                raise

    async def create_directory(
        self,
        path: PathLike,
        options: WriteOptions | None = None,
    ) -> None:
        """Create a directory (a no-op on stores with implied directories)."""
        target = self._paths.normalize_file_path(path)
        with translate_errors(
            ErrorKind.UNABLE_TO_CREATE_DIRECTORY,
            context={"path": target},
        ):
            await self._adapter.create_directory(target, options or WriteOptions())

    async def copy_file(
        self,
        source: PathLike,
        destination: PathLike,
        options: WriteOptions | None = None,
    ) -> None:
        """Copy a file, overwriting the destination."""
        src = self._paths.normalize_file_path(source)
        dest = self._paths.normalize_file_path(destination)
        if src == dest:
            return
        with translate_errors(
            ErrorKind.UNABLE_TO_COPY,
            context={"source": src, "destination": dest},
        ):
            await self._adapter.copy_file(src, dest, options or WriteOptions())

    async def move_file(
        self,
        source: PathLike,
        destination: PathLike,
        options: WriteOptions | None = None,
    ) -> None:
        """Move a file.

        Uses the adapter's native move when it has one, otherwise copies the
        file and deletes the source. The fallback is not atomic: if deleting
        the source fails, the destination already exists and the raised
        ``UNABLE_TO_MOVE`` error carries ``stage="delete_source"`` and
        ``copied=True`` in its context.
        """
        src = self._paths.normalize_file_path(source)
        dest = self._paths.normalize_file_path(destination)
        if src == dest:
            return
        write_options = options or WriteOptions()
        context: dict[str, Any] = {"source": src, "destination": dest}

        try:
            await self._adapter.move_file(src, dest, write_options)
            return
        except Exception as exc:
            if not (
                isinstance(exc, FileStorageError)
                and exc.kind is ErrorKind.OPERATION_NOT_SUPPORTED
            ):
                raise self._move_failure(
                    exc,
                    context,
                    MoveStage.NATIVE,
                    copied=False,
                ) from exc

        logger.debug("No native move for %r, copying to %r", src, dest)
        try:
            await self._adapter.copy_file(src, dest, write_options)
        except Exception as exc:
            raise self._move_failure(exc, context, MoveStage.COPY, copied=False) from exc

        try:
            await self._adapter.delete_file(src)
        except Exception as exc:
            logger.warning(
                "Copied %r to %r but could not delete the source; both exist",
                src,
                dest,
            )
            raise self._move_failure(
                exc,
                context,
                MoveStage.DELETE_SOURCE,
                copied=True,
            ) from exc

    async def file_exists(self, path: PathLike) -> bool:
        """Return whether a file exists at ``path``."""
        target = self._paths.normalize_file_path(path)
        with translate_errors(
            ErrorKind.UNABLE_TO_CHECK_FILE_EXISTENCE,
            context={"path": target},
        ):
            return await self._adapter.file_exists(target)

    async def directory_exists(self, path: PathLike) -> bool:
        """Return whether a directory exists at ``path``."""
        target = self._paths.normalize_path(path)
        with translate_errors(
            ErrorKind.UNABLE_TO_CHECK_DIRECTORY_EXISTENCE,
            context={"path": target},
        ):
            return await self._adapter.directory_exists(target)

    def list(self, path: PathLike = "", *, deep: bool = False) -> DirectoryListing:
        """Return a lazy listing of the entries below ``path``.

        Args:
            path: Directory to list; the storage root by default.
            deep: Include all descendants instead of direct children only.

        The adapter is not contacted until the listing is iterated.
        """
        root = self._paths.normalize_path(path)
        context = {"path": root, "deep": deep}
        return DirectoryListing(
            self._adapter.list_entries(root, deep=deep),
            ListingSynthesizer(root, deep=deep),
            translate_error=lambda exc: wrap_error(
                ErrorKind.UNABLE_TO_LIST_DIRECTORY,
                exc,
                context=context,
            ),
        )

    async def stat(self, path: PathLike) -> FileInfo:
        """Return metadata for a file.

        Raises:
            FileStorageError: ``UNABLE_TO_GET_STAT`` if the path is a directory.

        """
        target = self._paths.normalize_file_path(path)
        with translate_errors(ErrorKind.UNABLE_TO_GET_STAT, context={"path": target}):
            entry = await self._adapter.stat(target)
        if not isinstance(entry, FileInfo):
            raise FileStorageError.stat_not_a_file(target)
        return entry

    async def file_size(self, path: PathLike) -> int:
        """Return the size of a file in bytes."""
        info = await self._stat_for(path, ErrorKind.UNABLE_TO_GET_FILE_SIZE)
        if info.size is None:
            raise FileStorageError.because(
                ErrorKind.UNABLE_TO_GET_FILE_SIZE,
                "file size is not available",
                context={"path": info.path},
            )
        return info.size

    async def last_modified(self, path: PathLike) -> datetime:
        """Return when a file was last modified."""
        info = await self._stat_for(path, ErrorKind.UNABLE_TO_GET_LAST_MODIFIED)
        if info.last_modified is None:
            raise FileStorageError.because(
                ErrorKind.UNABLE_TO_GET_LAST_MODIFIED,
                "last modified timestamp is not available",
                context={"path": info.path},
            )
        return info.last_modified

    async def mime_type(self, path: PathLike) -> str:
        """Return the mime-type of a file, guessing from the extension if needed."""
        info = await self._stat_for(path, ErrorKind.UNABLE_TO_GET_MIME_TYPE)
        mime_type = info.mime_type or mimetypes.guess_type(info.path)[0]
        if mime_type is None:
            raise FileStorageError.because(
                ErrorKind.UNABLE_TO_GET_MIME_TYPE,
                "mime-type could not be determined",
                context={"path": info.path},
            )
        return mime_type

    async def checksum(
        self,
        path: PathLike,
        options: ChecksumOptions | None = None,
    ) -> str:
        """Return a checksum of a file.

        The adapter's native checksum is used when available; otherwise the
        file is read and hashed locally, unless the adapter forbids it.
        """
        target = self._paths.normalize_file_path(path)
        return await self._checksums.resolve(target, options or ChecksumOptions())

    async def visibility(self, path: PathLike) -> Visibility:
        """Return the visibility of a file."""
        target = self._paths.normalize_file_path(path)
        with translate_errors(
            ErrorKind.UNABLE_TO_GET_VISIBILITY,
            context={"path": target},
        ):
            return await self._adapter.visibility(target)

    async def change_visibility(self, path: PathLike, visibility: Visibility) -> None:
        """Change the visibility of a file.

        Backends without a visibility model always fail, also for paths that
        do not exist.
        """
        target = self._paths.normalize_file_path(path)
        requested = getattr(visibility, "value", visibility)
        with translate_errors(
            ErrorKind.UNABLE_TO_SET_VISIBILITY,
            context={"path": target, "visibility": requested},
        ):
            await self._adapter.set_visibility(target, Visibility(visibility))

    async def public_url(
        self,
        path: PathLike,
        options: Mapping[str, Any] | None = None,
    ) -> str:
        """Return a stable, unauthenticated URL for a file."""
        target = self._paths.normalize_file_path(path)
        with translate_errors(
            ErrorKind.UNABLE_TO_GET_PUBLIC_URL,
            context={"path": target},
        ):
            return await self._adapter.public_url(target, dict(options or {}))

    async def temporary_url(
        self,
        path: PathLike,
        expires_at: Expiry,
        options: Mapping[str, Any] | None = None,
    ) -> str:
        """Return a time-limited URL for a file.

        Args:
            path: File path.
            expires_at: Aware datetime, or POSIX timestamp in seconds.
            options: Backend-specific signing options.

        """
        target = self._paths.normalize_file_path(path)
        with translate_errors(
            ErrorKind.UNABLE_TO_GET_TEMPORARY_URL,
            context={"path": target, "expires_at": str(expires_at)},
        ):
            expiry = _coerce_expiry(expires_at)
            return await self._adapter.temporary_url(
                target,
                expiry,
                dict(options or {}),
            )

    async def prepare_upload(
        self,
        path: PathLike,
        options: Mapping[str, Any] | None = None,
    ) -> UploadRequest:
        """Return the request a client can use to upload a file directly."""
        target = self._paths.normalize_file_path(path)
        with translate_errors(
            ErrorKind.UNABLE_TO_PREPARE_UPLOAD_REQUEST,
            context={"path": target},
        ):
            return await self._adapter.prepare_upload(target, dict(options or {}))

    async def _stat_for(self, path: PathLike, kind: ErrorKind) -> FileInfo:
        """Stat a file, reporting failures other than not-found as ``kind``."""
        target = self._paths.normalize_file_path(path)
        try:
            return await self.stat(target)
        except FileStorageError as exc:
            if exc.kind in (ErrorKind.FILE_NOT_FOUND, ErrorKind.INVALID_PATH):
                raise
            raise FileStorageError.because(
                kind,
                exc.message,
                context={"path": target},
                cause=exc,
            ) from exc

    async def _guard_stream(
        self,
        stream: AsyncIterator[bytes],
        path: str,
    ) -> AsyncIterator[bytes]:
        """Split chunks to ``chunk_size``; failures become ``UNABLE_TO_READ``."""
        size = self._chunk_size
        try:
            with translate_errors(ErrorKind.UNABLE_TO_READ, context={"path": path}):
                async for chunk in stream:
                    for offset in range(0, len(chunk), size):
                        yield chunk[offset : offset + size]
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    @staticmethod
    def _move_failure(
        error: Exception,
        context: Mapping[str, Any],
        stage: MoveStage,
        *,
        copied: bool,
    ) -> FileStorageError:
        return FileStorageError.because(
            ErrorKind.UNABLE_TO_MOVE,
            str(error),
            context={**context, "stage": stage.value, "copied": copied},
            cause=error,
        )


def _coerce_expiry(expires_at: Expiry) -> datetime:
    """Return ``expires_at`` as an aware UTC datetime."""
    if isinstance(expires_at, datetime):
        if expires_at.tzinfo is None:
            return expires_at.replace(tzinfo=timezone.utc)
        return expires_at.astimezone(timezone.utc)
    return datetime.fromtimestamp(float(expires_at), tz=timezone.utc)
