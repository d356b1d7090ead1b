"""Checksum resolution with a content-hashing fallback.

Many providers only expose a subset of checksums natively (object stores
commonly keep an MD5 ETag, some keep nothing at all). The resolver asks the
adapter first and, when the adapter raises the checksum-not-supported signal,
reads the file and hashes it locally instead. An adapter can veto the
fallback by raising the signal with ``fallback_allowed=False``.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from .errors import ErrorKind, FileStorageError, translate_errors, wrap_error
from .utils import compute_checksum_from_stream

if TYPE_CHECKING:
    from .interfaces import ChecksumOptions, StorageAdapter

logger = logging.getLogger(__name__)


class ChecksumStage(str, Enum):
    """Step of checksum resolution recorded in error context."""

    NATIVE = "native"
    FALLBACK = "fallback"


def _allows_fallback(error: Exception) -> bool:
    return (
        isinstance(error, FileStorageError)
        and error.kind is ErrorKind.CHECKSUM_NOT_SUPPORTED
        and bool(error.context.get("fallback_allowed", True))
    )


class ChecksumResolver:
    """Resolves checksums natively or by hashing the file contents."""

    def __init__(self, adapter: StorageAdapter) -> None:
        self._adapter = adapter

    async def resolve(self, path: str, options: ChecksumOptions) -> str:
        """Return the checksum of ``path`` encoded per ``options``.

        Raises:
            FileStorageError: ``UNABLE_TO_GET_CHECKSUM`` when neither the
                adapter nor the fallback can produce a digest, or any
                taxonomy error raised by the adapter (e.g. ``FILE_NOT_FOUND``).

        """
        try:
            return await self._adapter.checksum(path, options)
        except Exception as exc:
            if not _allows_fallback(exc):
                translated = wrap_error(
                    ErrorKind.UNABLE_TO_GET_CHECKSUM,
                    exc,
                    context={
                        "path": path,
                        "algorithm": options.algorithm,
                        "stage": ChecksumStage.NATIVE.value,
                    },
                )
                if translated is exc:
                    raise
                raise translated from exc
            signal = exc

        logger.debug(
            "Checksum %s unavailable natively for %r, hashing contents",
            options.algorithm,
            path,
        )
        context = {
            "path": path,
            "algorithm": options.algorithm,
            "stage": ChecksumStage.FALLBACK.value,
            "native_error": str(signal),
        }
        with translate_errors(ErrorKind.UNABLE_TO_GET_CHECKSUM, context=context):
            stream = await self._adapter.read(path)
            return await compute_checksum_from_stream(
                stream,
                options.algorithm,
                options.encoding,
            )
