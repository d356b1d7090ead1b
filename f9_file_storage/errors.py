"""Error taxonomy shared by the storage facade and its adapters.

Every failure surfaced by :class:`~f9_file_storage.storage.FileStorage` is a
:class:`FileStorageError` carrying one :class:`ErrorKind`. Callers dispatch on
``error.kind`` rather than on exception subclasses:

    >>> try:
    ...     await storage.read_to_string("missing.txt")
    ... except FileStorageError as exc:
    ...     if exc.kind is ErrorKind.FILE_NOT_FOUND:
    ...         print("File not found")

Two kinds are internal signals rather than reportable failures:

- ``CHECKSUM_NOT_SUPPORTED`` tells the facade to compute a checksum locally.
- ``OPERATION_NOT_SUPPORTED`` tells the facade an adapter lacks a capability.

The facade never lets a signal escape unwrapped.
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

CODE_PREFIX = "f9_file_storage"


class ErrorKind(str, Enum):
    """Closed set of operation-failure kinds."""

    FILE_NOT_FOUND = "file_was_not_found"
    UNABLE_TO_READ = "unable_to_read_file"
    UNABLE_TO_WRITE = "unable_to_write_file"
    UNABLE_TO_DELETE_FILE = "unable_to_delete_file"
    UNABLE_TO_DELETE_DIRECTORY = "unable_to_delete_directory"
    UNABLE_TO_COPY = "unable_to_copy_file"
    UNABLE_TO_MOVE = "unable_to_move_file"
    UNABLE_TO_CREATE_DIRECTORY = "unable_to_create_directory"
    UNABLE_TO_CHECK_FILE_EXISTENCE = "unable_to_check_file_existence"
    UNABLE_TO_CHECK_DIRECTORY_EXISTENCE = "unable_to_check_directory_existence"
    UNABLE_TO_LIST_DIRECTORY = "unable_to_list_directory_contents"
    UNABLE_TO_GET_STAT = "unable_to_get_stat"
    UNABLE_TO_GET_CHECKSUM = "unable_to_get_checksum"
    UNABLE_TO_GET_VISIBILITY = "unable_to_get_visibility"
    UNABLE_TO_SET_VISIBILITY = "unable_to_set_visibility"
    UNABLE_TO_GET_MIME_TYPE = "unable_to_get_mimetype"
    UNABLE_TO_GET_LAST_MODIFIED = "unable_to_get_last_modified"
    UNABLE_TO_GET_FILE_SIZE = "unable_to_get_file_size"
    UNABLE_TO_GET_PUBLIC_URL = "unable_to_get_public_url"
    UNABLE_TO_GET_TEMPORARY_URL = "unable_to_get_temporary_url"
    UNABLE_TO_PREPARE_UPLOAD_REQUEST = "unable_to_prepare_upload_request"
    INVALID_PATH = "invalid_path"
    CHECKSUM_NOT_SUPPORTED = "checksum_not_supported"
    OPERATION_NOT_SUPPORTED = "operation_not_supported"

    @property
    def code(self) -> str:
        """Stable, namespaced error code."""
        return f"{CODE_PREFIX}.{self.value}"

    @property
    def is_signal(self) -> bool:
        """Whether this kind is an internal signal for the facade."""
        return self in _SIGNALS

    @property
    def description(self) -> str:
        """Human readable summary used as the message prefix."""
        return _DESCRIPTIONS[self]


_SIGNALS = frozenset(
    {ErrorKind.CHECKSUM_NOT_SUPPORTED, ErrorKind.OPERATION_NOT_SUPPORTED},
)

_DESCRIPTIONS = {
    ErrorKind.FILE_NOT_FOUND: "File was not found",
    ErrorKind.UNABLE_TO_READ: "Unable to read the file",
    ErrorKind.UNABLE_TO_WRITE: "Unable to write the file",
    ErrorKind.UNABLE_TO_DELETE_FILE: "Unable to delete file",
    ErrorKind.UNABLE_TO_DELETE_DIRECTORY: "Unable to delete directory",
    ErrorKind.UNABLE_TO_COPY: "Unable to copy file",
    ErrorKind.UNABLE_TO_MOVE: "Unable to move file",
    ErrorKind.UNABLE_TO_CREATE_DIRECTORY: "Unable to create directory",
    ErrorKind.UNABLE_TO_CHECK_FILE_EXISTENCE: "Unable to check file existence",
    ErrorKind.UNABLE_TO_CHECK_DIRECTORY_EXISTENCE: (
        "Unable to check directory existence"
    ),
    ErrorKind.UNABLE_TO_LIST_DIRECTORY: "Unable to list directory contents",
    ErrorKind.UNABLE_TO_GET_STAT: "Unable to get stat",
    ErrorKind.UNABLE_TO_GET_CHECKSUM: "Unable to get checksum for file",
    ErrorKind.UNABLE_TO_GET_VISIBILITY: "Unable to get visibility",
    ErrorKind.UNABLE_TO_SET_VISIBILITY: "Unable to set visibility",
    ErrorKind.UNABLE_TO_GET_MIME_TYPE: "Unable to get mime-type",
    ErrorKind.UNABLE_TO_GET_LAST_MODIFIED: "Unable to get last modified",
    ErrorKind.UNABLE_TO_GET_FILE_SIZE: "Unable to get file size",
    ErrorKind.UNABLE_TO_GET_PUBLIC_URL: "Unable to get public URL",
    ErrorKind.UNABLE_TO_GET_TEMPORARY_URL: "Unable to get temporary URL",
    ErrorKind.UNABLE_TO_PREPARE_UPLOAD_REQUEST: "Unable to prepare upload request",
    ErrorKind.INVALID_PATH: "Invalid path",
    ErrorKind.CHECKSUM_NOT_SUPPORTED: "Checksum is not supported",
    ErrorKind.OPERATION_NOT_SUPPORTED: "Operation is not supported",
}


class FileStorageError(RuntimeError):
    """Failure of a storage operation, tagged with an :class:`ErrorKind`."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialise the error with its kind, context and original cause."""
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def code(self) -> str:
        """Stable error code of the underlying kind."""
        return self.kind.code

    @property
    def path(self) -> str | None:
        """Offending path, when the context records one."""
        return self.context.get("path")

    def __repr__(self) -> str:
        return f"FileStorageError({self.kind.name}, {self.message!r})"

    @classmethod
    def because(
        cls,
        kind: ErrorKind,
        reason: str,
        *,
        context: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> FileStorageError:
        """Return an error of ``kind`` explaining the failure reason."""
        return cls(
            kind,
            f"{kind.description}. Reason: {reason}",
            context=context,
            cause=cause,
        )

    @classmethod
    def file_not_found(
        cls,
        path: str,
        *,
        context: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> FileStorageError:
        """Return an error describing a missing file."""
        return cls(
            ErrorKind.FILE_NOT_FOUND,
            f"File was not found at location: {path}",
            context={"path": path, **(context or {})},
            cause=cause,
        )

    @classmethod
    def checksum_not_supported(
        cls,
        algorithm: str,
        *,
        fallback_allowed: bool = True,
        context: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> FileStorageError:
        """Return the signal raised when an adapter lacks a checksum algorithm.

        With ``fallback_allowed`` the facade computes the digest by reading the
        file; otherwise the checksum request fails outright.
        """
        return cls(
            ErrorKind.CHECKSUM_NOT_SUPPORTED,
            f'Checksum algo "{algorithm}" is not supported',
            context={
                **(context or {}),
                "algorithm": algorithm,
                "fallback_allowed": fallback_allowed,
            },
            cause=cause,
        )

    @classmethod
    def operation_not_supported(
        cls,
        operation: str,
        *,
        context: Mapping[str, Any] | None = None,
    ) -> FileStorageError:
        """Return the signal raised when an adapter lacks a capability."""
        return cls(
            ErrorKind.OPERATION_NOT_SUPPORTED,
            f"Operation {operation} is not supported by this adapter",
            context={**(context or {}), "operation": operation},
        )

    @classmethod
    def invalid_path(cls, path: str, reason: str) -> FileStorageError:
        """Return an error rejecting a malformed or escaping path."""
        return cls(
            ErrorKind.INVALID_PATH,
            f"{reason}: {path}",
            context={"path": path},
        )

    @classmethod
    def stat_not_a_file(cls, path: str) -> FileStorageError:
        """Return an error for a stat call that resolved to a directory."""
        return cls(
            ErrorKind.UNABLE_TO_GET_STAT,
            "Stat was not a file.",
            context={"path": path},
        )


def error_to_message(error: BaseException) -> str:
    """Return a readable message for any exception."""
    message = getattr(error, "message", None) or str(error)
    return message or type(error).__name__


def wrap_error(
    kind: ErrorKind,
    error: Exception,
    *,
    context: Mapping[str, Any] | None = None,
    passthrough: bool = True,
) -> Exception:
    """Return ``error`` expressed as a failure of ``kind``.

    Reportable taxonomy errors are returned unchanged when ``passthrough`` is
    set; signals and provider-native exceptions are wrapped.
    """
    if isinstance(error, FileStorageError):
        if passthrough and not error.kind.is_signal:
            return error
        return FileStorageError.because(
            kind,
            error.message,
            context={**error.context, **(context or {})},
            cause=error,
        )
    return FileStorageError.because(
        kind,
        error_to_message(error),
        context=context,
        cause=error,
    )


@contextmanager
def translate_errors(
    kind: ErrorKind,
    *,
    context: Mapping[str, Any] | None = None,
    passthrough: bool = True,
) -> Iterator[None]:
    """Wrap adapter failures raised inside the block as ``kind``.

    Reportable taxonomy errors pass through unchanged when ``passthrough`` is
    set. Signals and provider-native exceptions are wrapped, keeping the
    original as the cause.

    Example:
        ```python
        with translate_errors(ErrorKind.UNABLE_TO_WRITE, context={"path": p}):
            await adapter.write(p, chunks, options)
        ```

    """
    try:
        yield
    except Exception as exc:
        translated = wrap_error(kind, exc, context=context, passthrough=passthrough)
        if translated is exc:
            raise
        raise translated from exc
