"""OpenAI vector store backed storage adapter.

Each stored file is an OpenAI file attached to one vector store. The logical
path and metadata travel as vector store file ``attributes`` (or as file
``metadata`` on SDKs without attribute support). The store is flat: there are
no directory placeholders, directories are implied by key prefixes.

The adapter has no visibility model, no URLs and no native checksums, so
the facade computes checksums by streaming file contents.

Example:

    >>> from f9_file_storage import FileStorage
    >>> from f9_file_storage.openai_backend import OpenAIVectorStoreStorageAdapter
    >>> adapter = OpenAIVectorStoreStorageAdapter(
    ...     {"vector_store_id": "vs_123", "api_key": "sk-...", "cache_ttl": 30},
    ... )
    >>> storage = FileStorage(adapter)
    >>> await storage.write("notes/today.md", "# Notes")

"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import inspect
import io
import logging
import mimetypes
import time
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from .errors import FileStorageError
from .interfaces import DirectoryEntry, FileInfo, RawEntry, StorageAdapter
from .path_utils import PathPrefixer
from .utils import accumulate_chunks, iter_bytes

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .interfaces import WriteOptions

logger = logging.getLogger(__name__)

# OpenAI REST currently caps vector store file pagination at 100.
MAX_PAGE_SIZE = 100


@dataclass
class _RemoteEntry:
    """Internal representation of a vector store file entry."""

    path: str
    size: int
    created_at: datetime | None
    modified_at: datetime | None
    file_id: str
    encoding: str | None = None
    mime_type: str | None = None


class OpenAIBackendError(RuntimeError):
    """Error raised when OpenAI API operations fail."""

    @classmethod
    def missing_dependency(cls) -> OpenAIBackendError:
        """Return an error indicating the openai package is unavailable."""
        return cls(
            "Install the 'openai' package to use OpenAIVectorStoreStorageAdapter",
        )

    @classmethod
    def list_failed(cls) -> OpenAIBackendError:
        """Return an error indicating the vector store could not be listed."""
        return cls("Failed to list vector store files")

    @classmethod
    def upload_failed(cls, path: str) -> OpenAIBackendError:
        """Return an error describing an upload failure for a path."""
        return cls(f"Failed to upload {path} to OpenAI")

    @classmethod
    def attach_failed(cls, path: str) -> OpenAIBackendError:
        """Return an error describing a vector store attachment failure."""
        return cls(f"Failed to attach {path} to vector store")

    @classmethod
    def detach_failed(cls, path: str) -> OpenAIBackendError:
        """Return an error describing a detachment failure."""
        return cls(f"Failed to detach {path} from vector store")

    @classmethod
    def delete_failed(cls, path: str) -> OpenAIBackendError:
        """Return an error describing a delete failure."""
        return cls(f"Failed to delete {path} from OpenAI files")

    @classmethod
    def download_failed(
        cls,
        path: str,
        payload_type: str | None = None,
    ) -> OpenAIBackendError:
        """Return an error describing a download failure."""
        if payload_type:
            return cls(f"Unexpected content type for {path}: {payload_type}")
        return cls(f"Failed to download {path} from OpenAI")


class OpenAIVectorStoreStorageAdapter(StorageAdapter):
    """Storage adapter backed by an OpenAI vector store."""

    def __init__(
        self,
        connection_info: Mapping[str, Any],
        *,
        client: Any | None = None,
    ) -> None:
        """Initialise the adapter using OpenAI connection parameters.

        Args:
            connection_info: Mapping with ``vector_store_id`` (required),
                ``api_key`` (required without ``client``), ``cache_ttl``
                (seconds the file index is reused, default 0), ``purpose``
                (default ``"assistants"``), ``prefix`` and ``page_size``.
            client: Pre-configured ``openai.OpenAI`` compatible client.

        Raises:
            TypeError: If ``connection_info`` is not a mapping.
            ValueError: If required connection parameters are missing.
            OpenAIBackendError: If the ``openai`` package is not installed.

        """
        if not isinstance(connection_info, Mapping):
            message = "connection_info must be a mapping"
            raise TypeError(message)
        if "vector_store_id" not in connection_info:
            message = "Missing 'vector_store_id' in connection_info"
            raise ValueError(message)

        self._vector_store_id = str(connection_info["vector_store_id"])
        self._purpose = str(connection_info.get("purpose", "assistants"))
        self._sync_interval = float(connection_info.get("cache_ttl", 0.0))
        self._page_size = min(
            int(connection_info.get("page_size", MAX_PAGE_SIZE)),
            MAX_PAGE_SIZE,
        )
        self._prefixer = PathPrefixer(str(connection_info.get("prefix", "")))
        self._index: dict[str, _RemoteEntry] = {}
        self._superseded: dict[str, list[_RemoteEntry]] = {}
        self._last_synced: float | None = None

        if client is not None:
            self._client = client
        else:
            api_key = connection_info.get("api_key")
            if api_key is None:
                message = "Missing 'api_key' in connection_info"
                raise ValueError(message)
            try:
                from openai import OpenAI  # type: ignore import-not-found
            except ImportError as exc:  # pragma: no cover
                raise OpenAIBackendError.missing_dependency() from exc
            self._client = OpenAI(api_key=str(api_key))

        try:
            create_params = inspect.signature(self._client.files.create).parameters
        except (TypeError, ValueError):
            create_params = {}
        self._files_create_supports_filename = "filename" in create_params
        self._files_create_supports_metadata = "metadata" in create_params
        self._vector_files_supports_attributes: bool | None = None

        self._allowed_upload_mimetypes: set[str] = {
            "application/csv",
            "application/json",
            "application/msword",
            "application/octet-stream",
            "application/pdf",
            "application/typescript",
            "application/vnd.openxmlformats-officedocument.presentationml.presentation",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/xml",
            "application/x-tar",
            "application/zip",
            "image/gif",
            "image/jpeg",
            "image/png",
            "image/webp",
            "text/css",
            "text/csv",
            "text/html",
            "text/javascript",
            "text/markdown",
            "text/plain",
            "text/x-c",
            "text/x-c++",
            "text/x-csharp",
            "text/x-java",
            "text/x-php",
            "text/x-python",
            "text/x-ruby",
            "text/x-script.python",
            "text/x-sh",
            "text/x-tex",
            "text/x-typescript",
            "text/xml",
        }

    @property
    def vector_store_id(self) -> str:
        return self._vector_store_id

    async def write(
        self,
        path: str,
        contents: AsyncIterator[bytes],
        options: WriteOptions,
    ) -> None:
        """Upload a new file, then detach any previous version of ``path``."""
        payload = await accumulate_chunks(contents)
        await asyncio.to_thread(self._replace_entry, path, payload, options)

    async def read(self, path: str) -> AsyncIterator[bytes]:
        """Download the file and return it as a stream."""
        entry = await self._require_entry(path)
        payload = await asyncio.to_thread(self._download_entry, entry)
        return iter_bytes(payload)

    async def delete_file(self, path: str) -> None:
        """Remove the indexed file and any older versions still attached."""
        await asyncio.to_thread(self._ensure_index)
        key = self._prefixer.prefix_file_path(path)
        entry = self._index.get(key)
        stale = list(self._superseded.get(key, []))
        for candidate in ([entry] if entry is not None else []) + stale:
            await asyncio.to_thread(self._remove_entry, candidate)

    async def delete_directory(self, path: str) -> None:
        """Remove every file whose key lies below ``path``."""
        await asyncio.to_thread(self._ensure_index)
        head = self._prefixer.prefix_directory_path(path)
        stale = [
            entry
            for key, entries in self._superseded.items()
            if key.startswith(head) and self._prefixer.owns(key)
            for entry in entries
        ]
        for entry in self._descendant_entries(path) + stale:
            await asyncio.to_thread(self._remove_entry, entry)

    async def copy_file(
        self,
        source: str,
        destination: str,
        options: WriteOptions,
    ) -> None:
        """Download the source and upload it under the destination path."""
        entry = await self._require_entry(source)
        payload = await asyncio.to_thread(self._download_entry, entry)
        if options.mime_type is None and entry.mime_type is not None:
            options = _with_mime_type(options, entry.mime_type)
        await asyncio.to_thread(self._replace_entry, destination, payload, options)

    async def file_exists(self, path: str) -> bool:
        await asyncio.to_thread(self._ensure_index)
        return self._prefixer.prefix_file_path(path) in self._index

    async def directory_exists(self, path: str) -> bool:
        """Return whether any file lies below ``path``."""
        if not path:
            return True
        await asyncio.to_thread(self._ensure_index)
        return bool(self._descendant_entries(path))

    async def stat(self, path: str) -> FileInfo | DirectoryEntry:
        await asyncio.to_thread(self._ensure_index)
        entry = self._index.get(self._prefixer.prefix_file_path(path))
        if entry is not None:
            return self._entry_to_info(entry)
        if self._descendant_entries(path):
            return DirectoryEntry(path=path)
        raise FileStorageError.file_not_found(path)

    async def list_entries(self, path: str, *, deep: bool) -> AsyncIterator[RawEntry]:
        """Yield files below ``path`` page by page, in vector store order.

        Each page is requested only when the previous one is exhausted, so
        closing the generator early stops pagination. Versions known to be
        superseded are skipped and each path is reported at most once.
        """
        head = self._prefixer.prefix_directory_path(path)
        stale = {
            entry.file_id for entries in self._superseded.values() for entry in entries
        }
        seen: set[str] = set()
        after: str | None = None
        while True:
            entries, after = await asyncio.to_thread(self._fetch_page, after)
            for entry in entries:
                if head and not entry.path.startswith(head):
                    continue
                if not self._prefixer.owns(entry.path):
                    continue
                if entry.file_id in stale or entry.path in seen:
                    continue
                seen.add(entry.path)
                info = self._entry_to_info(entry)
                yield RawEntry(path=info.path, info=info)
            if after is None:
                return

    async def _require_entry(self, path: str) -> _RemoteEntry:
        await asyncio.to_thread(self._ensure_index)
        entry = self._index.get(self._prefixer.prefix_file_path(path))
        if entry is None:
            raise FileStorageError.file_not_found(path)
        return entry

    def _descendant_entries(self, path: str) -> list[_RemoteEntry]:
        """Return entries whose keys reside under the provided directory."""
        head = self._prefixer.prefix_directory_path(path)
        return [
            entry
            for key, entry in self._index.items()
            if key.startswith(head) and self._prefixer.owns(key)
        ]

    def _ensure_index(self) -> None:
        """Refresh the local index when stale or caching disabled."""
        if self._sync_interval <= 0:
            self._refresh_index()
            return
        now = time.time()
        if self._last_synced is None or now - self._last_synced >= self._sync_interval:
            self._refresh_index()

    def _refresh_index(self) -> None:
        """Synchronise the local index with the vector store."""
        entries: dict[str, _RemoteEntry] = {}
        superseded: dict[str, list[_RemoteEntry]] = {}
        after: str | None = None
        while True:
            page, after = self._fetch_page(after)
            for entry in page:
                current = entries.get(entry.path)
                if current is not None and not _is_newer(entry, current):
                    superseded.setdefault(entry.path, []).append(entry)
                    continue
                if current is not None:
                    superseded.setdefault(entry.path, []).append(current)
                entries[entry.path] = entry
            if after is None:
                break
        self._index = entries
        self._superseded = superseded
        self._last_synced = time.time()
        logger.debug(
            "Indexed %d files from vector store %s",
            len(entries),
            self._vector_store_id,
        )

    def _fetch_page(
        self,
        after: str | None,
    ) -> tuple[list[_RemoteEntry], str | None]:
        """Return one page of entries and the cursor of the next page."""
        try:
            files_resource = self._vector_store_files_resource()
            if files_resource is None:
                raise OpenAIBackendError.list_failed()
            kwargs: dict[str, Any] = {
                "vector_store_id": self._vector_store_id,
                "limit": self._page_size,
            }
            if after is not None:
                kwargs["after"] = after
            response = files_resource.list(**kwargs)
            data = list(getattr(response, "data", []) or [])
            entries = [
                entry
                for entry in (self._item_to_entry(item) for item in data)
                if entry is not None
            ]
        except OpenAIBackendError:
            raise
        except Exception as exc:
            raise OpenAIBackendError.list_failed() from exc

        if not getattr(response, "has_more", False) or not data:
            return entries, None
        cursor = getattr(response, "last_id", None) or getattr(data[-1], "id", None)
        return entries, cursor

    def _item_to_entry(self, item: Any) -> _RemoteEntry | None:
        """Convert a vector store file listing item into an index entry."""
        file_id = getattr(item, "file_id", None) or getattr(item, "id", None)
        if not file_id:
            return None
        raw_attributes = getattr(item, "attributes", None) or {}
        attributes = dict(raw_attributes) if isinstance(raw_attributes, Mapping) else {}

        file_obj = None
        if not attributes.get("path"):
            try:
                file_obj = self._client.files.retrieve(file_id)
            except Exception as exc:
                if _is_not_found_error(exc):
                    return None
                raise
            attributes = {**dict(getattr(file_obj, "metadata", {}) or {}), **attributes}

        path_value = attributes.get("path")
        if not path_value:
            return None

        size = _metadata_to_int(attributes.get("size"))
        if size is None and file_obj is not None:
            size = int(getattr(file_obj, "bytes", 0) or 0)
        created_at = _timestamp_to_datetime(
            getattr(file_obj or item, "created_at", None),
        )
        modified_value = attributes.get("modified_at")
        modified_at = (
            _timestamp_to_datetime(modified_value)
            if modified_value is not None
            else created_at
        )
        encoding_value = attributes.get("encoding")
        mime_value = attributes.get("mime_type")
        return _RemoteEntry(
            path=str(path_value),
            size=size or 0,
            created_at=created_at,
            modified_at=modified_at,
            file_id=file_id,
            encoding=str(encoding_value) if encoding_value is not None else None,
            mime_type=str(mime_value) if mime_value else None,
        )

    def _vector_store_files_resource(self) -> Any | None:
        """Return the vector store files resource, handling SDK variations."""
        latest = getattr(self._client, "vector_stores", None)
        files = getattr(latest, "files", None) if latest else None
        if files is not None:
            self._maybe_cache_vector_file_capabilities(files)
            return files

        beta = getattr(self._client, "beta", None)
        if beta is not None:
            vector = getattr(beta, "vector_stores", None)
            if vector is not None:
                files = getattr(vector, "files", None)
                if files is not None:
                    self._maybe_cache_vector_file_capabilities(files)
                    return files

        return None

    def _maybe_cache_vector_file_capabilities(self, files: Any) -> None:
        """Detect whether the SDK supports vector store file attributes."""
        if self._vector_files_supports_attributes is not None:
            return
        try:
            create_params = inspect.signature(files.create).parameters
        except (AttributeError, TypeError, ValueError):
            self._vector_files_supports_attributes = False
            return
        self._vector_files_supports_attributes = "attributes" in create_params

    def _replace_entry(
        self,
        path: str,
        payload: bytes,
        options: WriteOptions,
    ) -> None:
        """Persist a new version of ``path`` and drop the older ones.

        Removing older versions is cleanup: a failure is logged and the
        version stays recorded as superseded, to be retried on the next write
        or delete of ``path``.
        """
        self._ensure_index()
        key = self._prefixer.prefix_file_path(path)
        previous = self._index.get(key)
        self._persist_entry(key, payload, options)
        stale = [previous] if previous is not None else []
        stale.extend(self._superseded.pop(key, []))
        for entry in stale:
            try:
                self._remove_entry(entry)
            except OpenAIBackendError as exc:
                logger.warning(
                    "Wrote %r but could not remove previous version %s: %s",
                    key,
                    entry.file_id,
                    exc,
                )
                self._superseded.setdefault(key, []).append(entry)

    def _persist_entry(
        self,
        key: str,
        payload: bytes,
        options: WriteOptions,
    ) -> _RemoteEntry:
        """Upload content and attach it to the vector store."""
        modified_timestamp = time.time()
        encoding = "raw"
        mime_type = options.mime_type or mimetypes.guess_type(key)[0]
        metadata = {
            "path": key,
            "size": str(len(payload)),
            "modified_at": str(modified_timestamp),
            "encoding": encoding,
        }
        attributes_payload: dict[str, Any] = {
            "path": key,
            "size": len(payload),
            "modified_at": modified_timestamp,
            "encoding": encoding,
        }
        if mime_type:
            metadata["mime_type"] = mime_type
            attributes_payload["mime_type"] = mime_type

        def _create_remote_file(data: bytes, name: str, meta: dict[str, str]) -> Any:
            upload_kwargs: dict[str, Any] = {
                "file": io.BytesIO(data),
                "purpose": self._purpose,
            }
            if self._files_create_supports_filename:
                upload_kwargs["filename"] = name
            if self._files_create_supports_metadata:
                upload_kwargs["metadata"] = meta
            try:
                return self._client.files.create(**upload_kwargs)
            except TypeError:
                upload_kwargs.pop("metadata", None)
                try:
                    return self._client.files.create(**upload_kwargs)
                except TypeError:
                    upload_kwargs.pop("filename", None)
                    return self._client.files.create(**upload_kwargs)

        upload_payload = payload
        filename = self._upload_filename(key, upload_payload)

        try:
            file_obj = _create_remote_file(upload_payload, filename, metadata)
        except Exception as exc:
            if not _is_invalid_mimetype_error(exc):
                raise OpenAIBackendError.upload_failed(key) from exc
            logger.debug("Upload of %r rejected by mimetype, retrying as base64", key)
            encoding = "base64"
            metadata["encoding"] = encoding
            attributes_payload["encoding"] = encoding
            upload_payload = base64.b64encode(payload)
            filename = self._upload_filename(key, upload_payload)
            try:
                file_obj = _create_remote_file(upload_payload, filename, metadata)
            except Exception as retry_exc:
                raise OpenAIBackendError.upload_failed(key) from retry_exc

        file_id = getattr(file_obj, "id", None) or getattr(file_obj, "file_id", None)
        if file_id is None:
            raise OpenAIBackendError.upload_failed(key)

        try:
            files_resource = self._vector_store_files_resource()
            if files_resource is None:
                raise OpenAIBackendError.attach_failed(key)
            attach_kwargs = {
                "vector_store_id": self._vector_store_id,
                "file_id": file_id,
            }
            if self._vector_files_supports_attributes:
                attach_kwargs["attributes"] = attributes_payload
            elif not self._files_create_supports_metadata:
                raise OpenAIBackendError.attach_failed(key)
            files_resource.create(**attach_kwargs)
        except Exception as exc:
            raise OpenAIBackendError.attach_failed(key) from exc

        entry = _RemoteEntry(
            path=key,
            size=len(payload),
            created_at=_timestamp_to_datetime(getattr(file_obj, "created_at", None)),
            modified_at=_timestamp_to_datetime(modified_timestamp),
            file_id=file_id,
            encoding=encoding,
            mime_type=mime_type,
        )
        self._index[key] = entry
        self._last_synced = time.time()
        return entry

    def _remove_entry(self, entry: _RemoteEntry) -> None:
        """Detach a vector store entry and delete the underlying file."""
        try:
            files_resource = self._vector_store_files_resource()
            if files_resource is None:
                raise OpenAIBackendError.detach_failed(entry.path)
            files_resource.delete(
                vector_store_id=self._vector_store_id,
                file_id=entry.file_id,
            )
        except Exception as exc:
            raise OpenAIBackendError.detach_failed(entry.path) from exc

        try:
            self._client.files.delete(entry.file_id)
        except Exception as exc:
            raise OpenAIBackendError.delete_failed(entry.path) from exc

        existing = self._index.get(entry.path)
        if existing and existing.file_id == entry.file_id:
            self._index.pop(entry.path, None)
        remaining = [
            other
            for other in self._superseded.get(entry.path, [])
            if other.file_id != entry.file_id
        ]
        if remaining:
            self._superseded[entry.path] = remaining
        else:
            self._superseded.pop(entry.path, None)
        self._last_synced = time.time()

    def _download_entry(self, entry: _RemoteEntry) -> bytes:
        """Retrieve raw bytes for the provided entry."""
        try:
            response = self._client.files.content(entry.file_id)
        except Exception as exc:
            raise OpenAIBackendError.download_failed(entry.path) from exc

        payload = response.read() if hasattr(response, "read") else response

        if isinstance(payload, str):
            raw_bytes = payload.encode("utf-8")
        elif isinstance(payload, (bytes, bytearray)):
            raw_bytes = bytes(payload)
        else:
            payload_type = type(payload).__name__
            raise OpenAIBackendError.download_failed(entry.path, payload_type)

        if entry.encoding == "base64":
            try:
                return base64.b64decode(raw_bytes, validate=True)
            except ValueError as exc:
                raise OpenAIBackendError.download_failed(entry.path, "base64") from exc

        return raw_bytes

    def _upload_filename(self, key: str, payload: bytes) -> str:
        """Return a filename that yields an allowed MIME type for upload."""
        candidate = key.rsplit("/", 1)[-1]
        if self._filename_mimetype_allowed(candidate):
            return candidate

        suffix = ".txt" if self._looks_like_text(payload) else ".bin"
        digest = hashlib.sha1(key.encode("utf-8"), usedforsecurity=False).hexdigest()[:8]
        fallback = f"{PurePosixPath(key).name}-{digest}{suffix}"
        if self._filename_mimetype_allowed(fallback):
            return fallback

        # As a last resort, use a generic safe name.
        return f"file-{digest}{suffix}"

    def _filename_mimetype_allowed(self, filename: str) -> bool:
        """Return True when the filename maps to an allowed MIME type."""
        mimetype, _ = mimetypes.guess_type(filename)
        return mimetype in self._allowed_upload_mimetypes if mimetype else False

    @staticmethod
    def _looks_like_text(payload: bytes) -> bool:
        """Best-effort detection for textual payloads."""
        if not payload:
            return True
        if b"\x00" in payload:
            return False
        try:
            payload.decode("utf-8")
        except UnicodeDecodeError:
            return False
        return True

    def _entry_to_info(self, entry: _RemoteEntry) -> FileInfo:
        """Convert an internal entry to a prefix-relative FileInfo."""
        metadata: dict[str, Any] = {"file_id": entry.file_id}
        if entry.created_at is not None:
            metadata["created_at"] = entry.created_at.isoformat()
        return FileInfo(
            path=self._prefixer.strip_file_path(entry.path),
            size=entry.size,
            last_modified=entry.modified_at,
            mime_type=entry.mime_type,
            metadata=metadata,
        )


def _with_mime_type(options: WriteOptions, mime_type: str) -> WriteOptions:
    return replace(options, mime_type=mime_type)


def _metadata_to_int(value: Any) -> int | None:
    """Convert metadata values to integers when possible."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _is_newer(candidate: _RemoteEntry, current: _RemoteEntry) -> bool:
    """Return whether ``candidate`` replaces ``current`` for the same path.

    Ties go to ``candidate``, the one listed later.
    """
    if candidate.modified_at is None or current.modified_at is None:
        return current.modified_at is None
    return candidate.modified_at >= current.modified_at


def _timestamp_to_datetime(value: Any) -> datetime | None:
    """Convert timestamps (float/int/str) to timezone aware datetimes."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc)
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(numeric, tz=timezone.utc)


def _is_invalid_mimetype_error(exc: Exception) -> bool:
    """Return True when the exception indicates an unsupported MIME type."""
    message = getattr(exc, "message", None)
    if not message:
        message = str(exc)
    return "Invalid file format" in message


def _is_not_found_error(exc: Exception) -> bool:
    """Return True when the exception indicates a missing remote file."""
    message = getattr(exc, "message", None)
    if not message:
        message = str(exc)
    return "No such File object" in message or "not found" in message.lower()
