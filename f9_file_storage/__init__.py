"""Provider-agnostic file storage for asyncio applications.

Application code talks to one facade, :class:`FileStorage`; a pluggable
:class:`StorageAdapter` maps each operation onto a storage provider (local
disk, an in-memory object store, an OpenAI vector store, or your own).

Core Components:
    - FileStorage: The public operation surface
    - StorageAdapter: Abstract contract every backend implements
    - InMemoryStorageAdapter: Flat object store kept in process memory
    - LocalStorageAdapter: Local filesystem storage
    - OpenAIVectorStoreStorageAdapter: Remote storage via OpenAI API

Quick Start:

    >>> from f9_file_storage import FileStorage, LocalStorageAdapter
    >>> storage = FileStorage(LocalStorageAdapter(root="/data"))
    >>> await storage.write("document.txt", b"Hello, world!")
    >>> await storage.read_to_bytes("document.txt")
    b'Hello, world!'

    >>> # Switch to another backend with just one line
    >>> from f9_file_storage.factory import resolve_storage
    >>> storage = resolve_storage("memory://")

Exception Handling:

    >>> from f9_file_storage import ErrorKind, FileStorageError
    >>> try:
    ...     await storage.read_to_bytes("nonexistent.txt")
    ... except FileStorageError as exc:
    ...     if exc.kind is ErrorKind.FILE_NOT_FOUND:
    ...         print("File not found")

Supported Operations:
    - write() / read() / read_to_bytes() / read_to_string()
    - delete_file() / delete_directory() / create_directory()
    - copy_file() / move_file()
    - file_exists() / directory_exists()
    - list() - Lazy shallow or deep directory listing
    - stat() / file_size() / last_modified() / mime_type()
    - checksum() - Native or computed from contents
    - visibility() / change_visibility()
    - public_url() / temporary_url() / prepare_upload()

"""

import logging

from .checksum import ChecksumResolver
from .errors import ErrorKind, FileStorageError
from .interfaces import (
    DEFAULT_CHUNK_SIZE,
    ChecksumAlgorithm,
    ChecksumOptions,
    DirectoryEntry,
    FileEntry,
    FileInfo,
    ListingEntry,
    PathLike,
    RawEntry,
    StorageAdapter,
    UploadRequest,
    Visibility,
    WriteOptions,
)
from .listing import DirectoryListing, ListingSynthesizer
from .local import LocalStorageAdapter
from .memory import InMemoryStorageAdapter
from .openai_backend import OpenAIBackendError, OpenAIVectorStoreStorageAdapter
from .path_utils import PathNormalizer, PathPrefixer, normalize_path
from .storage import FileStorage

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "ChecksumAlgorithm",
    "ChecksumOptions",
    "ChecksumResolver",
    "DirectoryEntry",
    "DirectoryListing",
    "ErrorKind",
    "FileEntry",
    "FileInfo",
    "FileStorage",
    "FileStorageError",
    "InMemoryStorageAdapter",
    "ListingEntry",
    "ListingSynthesizer",
    "LocalStorageAdapter",
    "OpenAIBackendError",
    "OpenAIVectorStoreStorageAdapter",
    "PathLike",
    "PathNormalizer",
    "PathPrefixer",
    "RawEntry",
    "StorageAdapter",
    "UploadRequest",
    "Visibility",
    "WriteOptions",
    "normalize_path",
]
