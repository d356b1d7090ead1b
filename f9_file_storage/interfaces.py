"""Core interfaces and data structures for storage adapter implementations."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import PurePath
from typing import TYPE_CHECKING, Any, ClassVar, Union

from .errors import FileStorageError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping
    from datetime import datetime

PathLike = Union[str, PurePath]

DEFAULT_CHUNK_SIZE = 8192

ChecksumAlgorithm = str


class Visibility(str, Enum):
    """Public/private intent for an object.

    Not every backend can enforce it; some reject visibility calls entirely.
    """

    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class FileInfo:
    """Snapshot of metadata for a stored file."""

    path: str
    size: int | None = None
    last_modified: datetime | None = None
    visibility: Visibility | None = None
    mime_type: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def with_path(self, path: str) -> FileInfo:
        """Return a copy of the snapshot relocated to ``path``."""
        return replace(self, path=path)

    def as_dict(self) -> dict:
        """Return a JSON-serialisable representation."""
        return {
            "path": self.path,
            "size": self.size,
            "last_modified": self.last_modified.isoformat()
            if self.last_modified
            else None,
            "visibility": self.visibility.value if self.visibility else None,
            "mime_type": self.mime_type,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class FileEntry:
    """Listing entry describing a file."""

    type: ClassVar[str] = "file"

    info: FileInfo

    @property
    def path(self) -> str:
        return self.info.path

    @property
    def is_file(self) -> bool:
        return True

    @property
    def is_dir(self) -> bool:
        return False

    def as_dict(self) -> dict:
        """Return a JSON-serialisable representation."""
        return {"type": self.type, **self.info.as_dict()}


@dataclass(frozen=True)
class DirectoryEntry:
    """Listing entry describing a native or synthesized directory."""

    type: ClassVar[str] = "directory"

    path: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_file(self) -> bool:
        return False

    @property
    def is_dir(self) -> bool:
        return True

    def as_dict(self) -> dict:
        """Return a JSON-serialisable representation."""
        return {"type": self.type, "path": self.path, "metadata": dict(self.metadata)}


ListingEntry = Union[FileEntry, DirectoryEntry]


@dataclass(frozen=True)
class RawEntry:
    """Provider-native listing item as yielded by an adapter.

    Flat stores only yield file keys, possibly several levels below the
    listed directory. Backends with real directories also yield entries with
    ``is_dir`` set.
    """

    path: str
    is_dir: bool = False
    info: FileInfo | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChecksumOptions:
    """Checksum request parameters.

    ``algorithm`` is matched case-insensitively and ignores dashes, so
    ``"SHA-256"``, ``"SHA256"`` and ``"sha256"`` are equivalent.
    """

    algorithm: ChecksumAlgorithm = "sha256"
    encoding: str = "hex"
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WriteOptions:
    """Metadata hints passed along with writes, copies and moves."""

    visibility: Visibility | None = None
    directory_visibility: Visibility | None = None
    mime_type: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UploadRequest:
    """Details needed to upload a file directly to the backend."""

    url: str
    method: str = "PUT"
    headers: Mapping[str, str] = field(default_factory=dict)


class StorageAdapter(ABC):
    """Capability contract every storage backend implements.

    Paths received by adapters are normalized and relative to the storage
    root; adapters apply their own prefix (see
    :class:`~f9_file_storage.path_utils.PathPrefixer`) and never expose it in
    returned paths.

    Adapters raise either :class:`~f9_file_storage.errors.FileStorageError`
    or their provider's native exceptions. Wrapping native exceptions is the
    facade's job.
    """

    @abstractmethod
    async def write(
        self,
        path: str,
        contents: AsyncIterator[bytes],
        options: WriteOptions,
    ) -> None:
        """Store ``contents`` at ``path``, replacing any existing file."""

    @abstractmethod
    async def read(self, path: str) -> AsyncIterator[bytes]:
        """Return an iterator over the file's bytes.

        Raises:
            FileStorageError: ``FILE_NOT_FOUND`` when the file is absent.

        """

    @abstractmethod
    async def delete_file(self, path: str) -> None:
        """Delete a file. Deleting a missing file succeeds."""

    @abstractmethod
    async def delete_directory(self, path: str) -> None:
        """Recursively delete a directory. A missing directory succeeds."""

    @abstractmethod
    async def copy_file(
        self,
        source: str,
        destination: str,
        options: WriteOptions,
    ) -> None:
        """Copy a file, overwriting the destination."""

    @abstractmethod
    async def file_exists(self, path: str) -> bool:
        """Return whether a file exists at ``path``."""

    @abstractmethod
    async def directory_exists(self, path: str) -> bool:
        """Return whether a directory (native or implied) exists at ``path``."""

    @abstractmethod
    async def stat(self, path: str) -> FileInfo | DirectoryEntry:
        """Return metadata for ``path``.

        Raises:
            FileStorageError: ``FILE_NOT_FOUND`` when nothing exists there.

        """

    @abstractmethod
    def list_entries(self, path: str, *, deep: bool) -> AsyncIterator[RawEntry]:
        """Enumerate entries below ``path`` in provider order.

        Implementations are async generators. Closing the generator must
        release any open pagination cursor.
        """

    async def move_file(
        self,
        source: str,
        destination: str,
        options: WriteOptions,
    ) -> None:
        """Move a file natively.

        The default signals that no native move exists, so the facade falls
        back to copy followed by delete.
        """
        raise FileStorageError.operation_not_supported(
            "move_file",
            context={"source": source, "destination": destination},
        )

    async def create_directory(self, path: str, options: WriteOptions) -> None:
        """Create a directory. Flat stores have implied directories only."""
        return None

    async def visibility(self, path: str) -> Visibility:
        """Return the visibility of a file."""
        raise FileStorageError.operation_not_supported(
            "visibility",
            context={"path": path},
        )

    async def set_visibility(self, path: str, visibility: Visibility) -> None:
        """Change the visibility of a file."""
        raise FileStorageError.operation_not_supported(
            "set_visibility",
            context={"path": path, "visibility": visibility.value},
        )

    async def public_url(self, path: str, options: Mapping[str, Any]) -> str:
        """Return a stable, unauthenticated URL for a file."""
        raise FileStorageError.operation_not_supported(
            "public_url",
            context={"path": path},
        )

    async def temporary_url(
        self,
        path: str,
        expires_at: datetime,
        options: Mapping[str, Any],
    ) -> str:
        """Return a time-limited, authenticated URL for a file."""
        raise FileStorageError.operation_not_supported(
            "temporary_url",
            context={"path": path},
        )

    async def prepare_upload(
        self,
        path: str,
        options: Mapping[str, Any],
    ) -> UploadRequest:
        """Return a request description for uploading directly to the backend."""
        raise FileStorageError.operation_not_supported(
            "prepare_upload",
            context={"path": path},
        )

    async def checksum(self, path: str, options: ChecksumOptions) -> str:
        """Return a native checksum.

        The default signals that the facade should hash the content itself.
        """
        raise FileStorageError.checksum_not_supported(
            options.algorithm,
            context={"path": path},
        )
