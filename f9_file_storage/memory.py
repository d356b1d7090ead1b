"""In-memory object store adapter.

Behaves like a flat object store: objects are keyed by their full path,
directories only exist implicitly or as explicit marker keys, and listings
are returned in key order one page at a time. Native checksums are limited
to the MD5 ETag kept with every object.

Useful as a test double and for ephemeral storage:

    >>> from f9_file_storage import FileStorage, InMemoryStorageAdapter
    >>> storage = FileStorage(InMemoryStorageAdapter(prefix="tenant-a"))
    >>> await storage.write("reports/q1.csv", b"test")
    >>> await storage.checksum("reports/q1.csv", ChecksumOptions("md5"))
    '098f6bcd4621d373cade4e832627b4f6'
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlencode

from .errors import FileStorageError
from .interfaces import (
    DirectoryEntry,
    FileInfo,
    RawEntry,
    StorageAdapter,
    UploadRequest,
    Visibility,
    WriteOptions,
)
from .path_utils import PathPrefixer
from .utils import accumulate_chunks, canonical_algorithm, encode_digest, iter_bytes

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from .interfaces import ChecksumOptions

DEFAULT_PAGE_SIZE = 100


@dataclass
class _StoredObject:
    """An object held by the in-memory store."""

    payload: bytes
    last_modified: datetime
    visibility: Visibility
    mime_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def etag(self) -> bytes:
        return hashlib.md5(self.payload, usedforsecurity=False).digest()


class InMemoryStorageAdapter(StorageAdapter):
    """Flat key/value storage adapter kept in process memory."""

    def __init__(
        self,
        *,
        prefix: str = "",
        page_size: int = DEFAULT_PAGE_SIZE,
        default_visibility: Visibility = Visibility.PRIVATE,
        supports_visibility: bool = True,
        public_url_base: str | None = None,
        url_signing_key: str | bytes | None = None,
        checksum_fallback: bool = True,
    ) -> None:
        """Initialise an empty store.

        Args:
            prefix: Key prefix every path is stored under.
            page_size: Number of keys returned per listing page.
            default_visibility: Visibility of objects written without one.
            supports_visibility: When false, visibility calls are rejected
                like on a backend without a visibility model.
            public_url_base: Base URL for public and temporary URLs.
            url_signing_key: Secret used to sign temporary and upload URLs.
            checksum_fallback: Whether non-MD5 checksums may be computed by
                hashing the contents.

        """
        if page_size < 1:
            message = "page_size must be a positive integer"
            raise ValueError(message)
        self._prefixer = PathPrefixer(prefix)
        self._page_size = page_size
        self._default_visibility = Visibility(default_visibility)
        self._supports_visibility = supports_visibility
        self._public_url_base = public_url_base.rstrip("/") if public_url_base else None
        if isinstance(url_signing_key, str):
            url_signing_key = url_signing_key.encode("utf-8")
        self._signing_key = url_signing_key
        self._checksum_fallback = checksum_fallback
        self._objects: dict[str, _StoredObject] = {}
        self._markers: dict[str, dict[str, Any]] = {}
        self.pages_fetched = 0

    @property
    def prefix(self) -> str:
        return self._prefixer.prefix

    async def write(
        self,
        path: str,
        contents: AsyncIterator[bytes],
        options: WriteOptions,
    ) -> None:
        """Store the object, replacing any existing one."""
        payload = await accumulate_chunks(contents)
        self._objects[self._prefixer.prefix_file_path(path)] = _StoredObject(
            payload=payload,
            last_modified=_now(),
            visibility=options.visibility or self._default_visibility,
            mime_type=options.mime_type or mimetypes.guess_type(path)[0],
            metadata=dict(options.metadata),
        )

    async def read(self, path: str) -> AsyncIterator[bytes]:
        """Return the stored payload as a stream."""
        return iter_bytes(self._get(path).payload)

    async def delete_file(self, path: str) -> None:
        """Remove an object; absent objects are ignored."""
        self._objects.pop(self._prefixer.prefix_file_path(path), None)

    async def delete_directory(self, path: str) -> None:
        """Remove every object and marker below ``path``."""
        for key in [key for key in self._objects if self._is_below(key, path)]:
            del self._objects[key]
        for key in [key for key in self._markers if self._is_below(key, path)]:
            del self._markers[key]

    async def copy_file(
        self,
        source: str,
        destination: str,
        options: WriteOptions,
    ) -> None:
        """Duplicate an object under a new key."""
        original = self._get(source)
        self._objects[self._prefixer.prefix_file_path(destination)] = _StoredObject(
            payload=original.payload,
            last_modified=_now(),
            visibility=options.visibility or original.visibility,
            mime_type=options.mime_type or original.mime_type,
            metadata={**original.metadata, **options.metadata},
        )

    async def create_directory(self, path: str, options: WriteOptions) -> None:
        """Store an explicit directory marker."""
        metadata = dict(options.metadata)
        if options.directory_visibility is not None:
            metadata["visibility"] = options.directory_visibility.value
        self._markers[self._prefixer.prefix_directory_path(path)] = metadata

    async def file_exists(self, path: str) -> bool:
        return self._prefixer.prefix_file_path(path) in self._objects

    async def directory_exists(self, path: str) -> bool:
        """Return whether a marker or any object lies below ``path``."""
        if not path:
            return True
        if self._prefixer.prefix_directory_path(path) in self._markers:
            return True
        return any(self._is_below(key, path) for key in self._objects)

    async def stat(self, path: str) -> FileInfo | DirectoryEntry:
        """Return object metadata, or a directory entry for implied directories."""
        key = self._prefixer.prefix_file_path(path)
        stored = self._objects.get(key)
        if stored is not None:
            return self._to_info(path, stored)
        if await self.directory_exists(path):
            marker = self._markers.get(self._prefixer.prefix_directory_path(path), {})
            return DirectoryEntry(path=path, metadata=dict(marker))
        raise FileStorageError.file_not_found(path)

    async def list_entries(self, path: str, *, deep: bool) -> AsyncIterator[RawEntry]:
        """Yield objects and markers below ``path`` in key order, page by page.

        The store has no delimiter support, so the full key range below
        ``path`` is enumerated regardless of ``deep``.
        """
        after: str | None = None
        while True:
            page = self._list_page(path, after)
            self.pages_fetched += 1
            await asyncio.sleep(0)
            for key, is_dir in page:
                if is_dir:
                    yield RawEntry(
                        path=self._prefixer.strip_directory_path(key),
                        is_dir=True,
                        metadata=dict(self._markers.get(key, {})),
                    )
                    continue
                relative = self._prefixer.strip_file_path(key)
                stored = self._objects.get(key)
                if stored is not None:
                    yield RawEntry(path=relative, info=self._to_info(relative, stored))
            if len(page) < self._page_size:
                return
            after = page[-1][0]

    async def visibility(self, path: str) -> Visibility:
        if not self._supports_visibility:
            return await super().visibility(path)
        return self._get(path).visibility

    async def set_visibility(self, path: str, visibility: Visibility) -> None:
        if not self._supports_visibility:
            await super().set_visibility(path, visibility)
            return
        self._get(path).visibility = visibility

    async def public_url(self, path: str, options: Mapping[str, Any]) -> str:
        """Return ``<public_url_base>/<key>``."""
        if self._public_url_base is None:
            return await super().public_url(path, options)
        return self._url_for(path)

    async def temporary_url(
        self,
        path: str,
        expires_at: datetime,
        options: Mapping[str, Any],
    ) -> str:
        """Return a URL carrying an HMAC signature over the key and expiry."""
        if self._public_url_base is None or self._signing_key is None:
            return await super().temporary_url(path, expires_at, options)
        self._get(path)
        expires = int(expires_at.timestamp())
        query = {"expires": expires, "signature": self.sign(path, expires, "GET")}
        return f"{self._url_for(path)}?{urlencode(query)}"

    async def prepare_upload(
        self,
        path: str,
        options: Mapping[str, Any],
    ) -> UploadRequest:
        """Return a signed PUT request valid for ``expires_in`` seconds."""
        if self._public_url_base is None or self._signing_key is None:
            return await super().prepare_upload(path, options)
        expires = int(_now().timestamp()) + int(options.get("expires_in", 3600))
        query = {"expires": expires, "signature": self.sign(path, expires, "PUT")}
        headers = {}
        content_type = options.get("content_type") or mimetypes.guess_type(path)[0]
        if content_type:
            headers["Content-Type"] = content_type
        return UploadRequest(
            url=f"{self._url_for(path)}?{urlencode(query)}",
            method="PUT",
            headers=headers,
        )

    async def checksum(self, path: str, options: ChecksumOptions) -> str:
        """Return the ETag for MD5 requests; other algorithms are not native."""
        if canonical_algorithm(options.algorithm) != "md5":
            raise FileStorageError.checksum_not_supported(
                options.algorithm,
                fallback_allowed=self._checksum_fallback,
                context={"path": path},
            )
        return encode_digest(self._get(path).etag, options.encoding)

    def sign(self, path: str, expires: int, method: str) -> str:
        """Return the hex HMAC-SHA256 signature for a URL."""
        if self._signing_key is None:
            message = "url_signing_key is not configured"
            raise ValueError(message)
        key = self._prefixer.prefix_file_path(path)
        message = f"{method}\n{key}\n{expires}".encode()
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    def _get(self, path: str) -> _StoredObject:
        stored = self._objects.get(self._prefixer.prefix_file_path(path))
        if stored is None:
            raise FileStorageError.file_not_found(path)
        return stored

    def _is_below(self, key: str, path: str) -> bool:
        """Return whether ``key`` lies inside directory ``path``.

        Directory marker keys end with a separator, so a marker for ``path``
        itself counts as inside.
        """
        head = self._prefixer.prefix_directory_path(path)
        return key.startswith(head) if head else True

    def _list_page(self, path: str, after: str | None) -> list[tuple[str, bool]]:
        """Return up to one page of ``(key, is_marker)`` pairs after ``after``.

        Marker keys end with a separator, so a directory precedes its
        contents. The marker of ``path`` itself is not part of the listing.
        """
        head = self._prefixer.prefix_directory_path(path)
        candidates = [(key, False) for key in self._objects if key.startswith(head)]
        candidates.extend(
            (key, True)
            for key in self._markers
            if key.startswith(head) and key != head
        )
        candidates.sort()
        if after is not None:
            candidates = [item for item in candidates if item[0] > after]
        return candidates[: self._page_size]

    def _url_for(self, path: str) -> str:
        return f"{self._public_url_base}/{quote(self._prefixer.prefix_file_path(path))}"

    @staticmethod
    def _to_info(path: str, stored: _StoredObject) -> FileInfo:
        return FileInfo(
            path=path,
            size=len(stored.payload),
            last_modified=stored.last_modified,
            visibility=stored.visibility,
            mime_type=stored.mime_type,
            metadata={**stored.metadata, "etag": stored.etag.hex()},
        )


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)
