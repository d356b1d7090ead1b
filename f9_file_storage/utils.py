"""Shared utility functions for the facade and adapter implementations.

Key utilities:
- Hasher factory for multiple algorithms
- Digest encoding (hex or base64)
- Checksum computation from files, bytes and async byte streams
- Coercion of caller-supplied content into async byte chunks

Example usage:
    >>> from f9_file_storage.utils import compute_checksum_from_bytes
    >>> compute_checksum_from_bytes(b"test", algorithm="md5")
    '098f6bcd4621d373cade4e832627b4f6'
"""

from __future__ import annotations

import base64
import hashlib
import io
from typing import TYPE_CHECKING, Any, BinaryIO, Union

from .interfaces import DEFAULT_CHUNK_SIZE, ChecksumAlgorithm

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Iterable
    from pathlib import Path

    Contents = Union[
        bytes,
        bytearray,
        str,
        BinaryIO,
        Iterable[Union[bytes, str]],
        AsyncIterable[Union[bytes, str]],
    ]

HASHLIB_ALGORITHMS = ("md5", "sha1", "sha224", "sha256", "sha384", "sha512")


def canonical_algorithm(algorithm: ChecksumAlgorithm) -> str:
    """Return the lowercase, dash-free spelling of an algorithm identifier."""
    return algorithm.replace("-", "").replace("_", "").lower()


def get_hasher(algorithm: ChecksumAlgorithm) -> Any:
    """Get a hasher instance for the specified algorithm.

    Args:
        algorithm: Algorithm identifier, e.g. ``"MD5"``, ``"sha256"``,
            ``"SHA-512"`` or ``"blake3"``.

    Returns:
        A hasher instance with update(), digest() and hexdigest() methods

    Raises:
        ImportError: If blake3 is requested but not installed.
        ValueError: If algorithm is not supported.

    """
    name = canonical_algorithm(algorithm)
    if name == "blake3":
        try:
            import blake3
        except ImportError as exc:
            message = "blake3 is not installed. Install it with: pip install blake3"
            raise ImportError(message) from exc
        return blake3.blake3()
    elif name in HASHLIB_ALGORITHMS:
        return hashlib.new(name)
    else:
        message = f"Unsupported checksum algorithm: {algorithm}"
        raise ValueError(message)


def encode_digest(digest: bytes, encoding: str = "hex") -> str:
    """Encode a raw digest as ``hex`` or ``base64``.

    Raises:
        ValueError: If the encoding is not supported.

    """
    if encoding == "hex":
        return digest.hex()
    if encoding == "base64":
        return base64.b64encode(digest).decode("ascii")
    message = f"Unsupported checksum encoding: {encoding}"
    raise ValueError(message)


def compute_checksum_from_file(
    file_path: Path,
    algorithm: ChecksumAlgorithm = "sha256",
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    encoding: str = "hex",
) -> str:
    """Compute checksum of a file by reading in chunks."""
    hasher = get_hasher(algorithm)
    with open(file_path, "rb") as fh:
        while True:
            chunk = fh.read(chunk_size)
            if not chunk:
                break
            hasher.update(chunk)
    return encode_digest(hasher.digest(), encoding)


def compute_checksum_from_bytes(
    payload: bytes,
    algorithm: ChecksumAlgorithm = "sha256",
    encoding: str = "hex",
) -> str:
    """Compute checksum of binary payload."""
    hasher = get_hasher(algorithm)
    hasher.update(payload)
    return encode_digest(hasher.digest(), encoding)


async def compute_checksum_from_stream(
    stream: AsyncIterator[bytes],
    algorithm: ChecksumAlgorithm = "sha256",
    encoding: str = "hex",
) -> str:
    """Compute checksum of an async byte stream, consuming all of it.

    The stream is closed afterwards, also when hashing fails midway.
    """
    try:
        hasher = get_hasher(algorithm)
        async for chunk in stream:
            hasher.update(chunk)
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()
    return encode_digest(hasher.digest(), encoding)


def coerce_to_bytes(data: bytes | bytearray | str | BinaryIO) -> bytes:
    """Coerce supported input types to raw bytes.

    Handles bytes, strings (UTF-8 encoded), and file-like objects.

    Raises:
        TypeError: If data type is not supported.

    """
    if isinstance(data, bytes):
        return data
    if isinstance(data, bytearray):
        return bytes(data)
    if isinstance(data, str):
        return data.encode("utf-8")

    if hasattr(data, "read"):
        result = data.read()

        # Try to reset the stream position for seekable streams
        if hasattr(data, "seek"):
            try:
                data.seek(0)
            except (OSError, io.UnsupportedOperation):
                pass

        if isinstance(result, str):
            return result.encode("utf-8")
        if isinstance(result, (bytes, bytearray)):
            return bytes(result)
        message = f"Unsupported stream payload type: {type(result).__name__}"
        raise TypeError(message)

    message = f"Unsupported data type: {type(data).__name__}"
    raise TypeError(message)


def _chunk_to_bytes(chunk: Any) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    message = f"Unsupported chunk type: {type(chunk).__name__}"
    raise TypeError(message)


async def iter_chunks(
    contents: Contents,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> AsyncIterator[bytes]:
    """Yield ``contents`` as async byte chunks.

    Accepts bytes, strings, binary file objects, and sync or async iterables
    of ``bytes``/``str`` chunks. Empty chunks are dropped.
    """
    if isinstance(contents, (bytes, bytearray, str)):
        payload = coerce_to_bytes(contents)
        for offset in range(0, len(payload), chunk_size):
            yield payload[offset : offset + chunk_size]
        return

    if hasattr(contents, "read"):
        while True:
            chunk = contents.read(chunk_size)
            if not chunk:
                break
            yield _chunk_to_bytes(chunk)
        return

    if hasattr(contents, "__aiter__"):
        async for chunk in contents:  # type: ignore[union-attr]
            if chunk:
                yield _chunk_to_bytes(chunk)
        return

    if hasattr(contents, "__iter__"):
        for chunk in contents:  # type: ignore[union-attr]
            if chunk:
                yield _chunk_to_bytes(chunk)
        return

    message = f"Unsupported data type: {type(contents).__name__}"
    raise TypeError(message)


async def accumulate_chunks(chunks: AsyncIterator[bytes]) -> bytes:
    """Accumulate an async byte stream into a single payload."""
    accumulated = io.BytesIO()
    async for chunk in chunks:
        accumulated.write(chunk)
    return accumulated.getvalue()


async def iter_bytes(
    payload: bytes,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> AsyncIterator[bytes]:
    """Yield an in-memory payload as async chunks."""
    for offset in range(0, len(payload), chunk_size):
        yield payload[offset : offset + chunk_size]
