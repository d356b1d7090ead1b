"""Path normalization and prefixing utilities.

Every path crossing the facade is canonicalized here before any adapter sees
it, so two spellings of one location can never disagree:

- backslashes become forward slashes
- repeated separators collapse
- leading and trailing separators are stripped
- ``.`` and ``..`` segments are rejected rather than resolved

Adapters scope their keys with :class:`PathPrefixer`; the prefix never leaks
into paths returned to callers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .errors import FileStorageError

if TYPE_CHECKING:
    from .interfaces import PathLike

SEPARATOR = "/"


def normalize_windows_path(path_str: str) -> str:
    """Normalize Windows backslashes to forward slashes.

    Example:

        >>> normalize_windows_path("dir\\subdir\\file.txt")
        'dir/subdir/file.txt'

    """
    return path_str.replace("\\", SEPARATOR)


def detect_path_traversal_posix(path_parts: tuple[str, ...]) -> bool:
    """Detect relative segments in path components.

    Example:

        >>> detect_path_traversal_posix(("..", "etc", "passwd"))
        True
        >>> detect_path_traversal_posix(("valid", "relative", "path"))
        False

    """
    return any(part in (".", "..") for part in path_parts)


def normalize_path(path: PathLike) -> str:
    """Return the canonical form of ``path``.

    The empty string denotes the storage root.

    Raises:
        FileStorageError: ``INVALID_PATH`` for traversal segments or NUL bytes.

    """
    raw = str(path)
    if "\x00" in raw:
        raise FileStorageError.invalid_path(raw, "Path contains a NUL character")
    parts = tuple(
        part for part in normalize_windows_path(raw).split(SEPARATOR) if part
    )
    if detect_path_traversal_posix(parts):
        raise FileStorageError.invalid_path(raw, "Path traversal detected")
    return SEPARATOR.join(parts)


def join_path(*segments: str) -> str:
    """Join already-normalized segments, skipping empty ones."""
    return SEPARATOR.join(segment for segment in segments if segment)


def split_path(path: str) -> list[str]:
    """Split a normalized path into its segments."""
    return path.split(SEPARATOR) if path else []


class PathNormalizer:
    """Canonicalizes caller-supplied paths for the facade."""

    def normalize_path(self, path: PathLike) -> str:
        """Normalize a path that may refer to the storage root."""
        return normalize_path(path)

    def normalize_file_path(self, path: PathLike) -> str:
        """Normalize a path that must name a file.

        Raises:
            FileStorageError: ``INVALID_PATH`` if the path is the root.

        """
        normalized = normalize_path(path)
        if not normalized:
            raise FileStorageError.invalid_path(
                str(path),
                "Path cannot refer to storage root",
            )
        return normalized


class PathPrefixer:
    """Applies a storage-scoped prefix to adapter keys.

    Example:

        >>> prefixer = PathPrefixer("tenant/a")
        >>> prefixer.prefix_file_path("docs/readme.txt")
        'tenant/a/docs/readme.txt'
        >>> prefixer.prefix_directory_path("docs")
        'tenant/a/docs/'
        >>> prefixer.strip_file_path("tenant/a/docs/readme.txt")
        'docs/readme.txt'

    """

    def __init__(self, prefix: str = "", separator: str = SEPARATOR) -> None:
        self.separator = separator
        self.prefix = normalize_path(prefix) if prefix else ""

    def prefix_file_path(self, path: str) -> str:
        """Return the backend key for a file path."""
        if not self.prefix:
            return path
        if not path:
            return self.prefix
        return f"{self.prefix}{self.separator}{path}"

    def prefix_directory_path(self, path: str) -> str:
        """Return the backend key prefix for a directory, with trailing separator.

        The root of an unprefixed store maps to the empty string.
        """
        prefixed = self.prefix_file_path(path)
        return f"{prefixed}{self.separator}" if prefixed else ""

    def strip_file_path(self, key: str) -> str:
        """Remove the prefix from a backend key."""
        if not self.prefix:
            return key
        if key == self.prefix:
            return ""
        head = f"{self.prefix}{self.separator}"
        if key.startswith(head):
            return key[len(head) :]
        return key

    def strip_directory_path(self, key: str) -> str:
        """Remove the prefix and any trailing separator from a directory key."""
        return self.strip_file_path(key.rstrip(self.separator))

    def owns(self, key: str) -> bool:
        """Return whether a backend key lies inside this prefix."""
        if not self.prefix:
            return True
        return key == self.prefix or key.startswith(f"{self.prefix}{self.separator}")
