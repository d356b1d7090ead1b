"""Adapter factory for URI-based adapter resolution and instantiation.

Supported URI Schemes:
    - memory://prefix - InMemoryStorageAdapter (prefix optional)
    - file:///path - LocalStorageAdapter rooted at a directory
    - openai+vector://vs_id - OpenAIVectorStoreStorageAdapter

Query parameters configure the adapter:

    memory://tenant-a?page_size=50&default_visibility=public
    file:///srv/files?create_root=false&public_url_base=https://cdn.example.com
    openai+vector://vs_123456?api_key=sk_xxx&cache_ttl=5&prefix=docs

Example:
    >>> from f9_file_storage.factory import resolve_storage
    >>> storage = resolve_storage("file:///data/files")
    >>> await storage.write("hello.txt", "Hello")

"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable
from urllib.parse import parse_qs, urlparse

from .storage import FileStorage

if TYPE_CHECKING:
    from typing import TypeAlias

    from .interfaces import StorageAdapter

    # Type alias for adapter factory functions
    AdapterFactoryFunc: TypeAlias = Callable[[str, dict[str, Any]], StorageAdapter]

# Schemes whose URIs may omit the path component.
_OPTIONAL_PATH_SCHEMES = frozenset({"memory"})


class AdapterFactory:
    """Factory for creating storage adapters from URI strings."""

    def __init__(self) -> None:
        """Initialize the factory with built-in URI scheme handlers."""
        self._factories: dict[str, AdapterFactoryFunc] = {
            "memory": self._create_memory_adapter,
            "file": self._create_file_adapter,
            "openai+vector": self._create_openai_adapter,
        }

    @property
    def schemes(self) -> list[str]:
        """Registered URI schemes, sorted."""
        return sorted(self._factories)

    def parse_uri(self, uri: str) -> tuple[str, str, dict[str, str]]:
        """Parse a URI into scheme, path, and query parameters.

        Args:
            uri: URI string to parse

        Returns:
            Tuple of (scheme, path, params) where params is a dict of query parameters

        Raises:
            ValueError: If URI format is invalid

        """
        parsed = urlparse(uri)

        if not parsed.scheme:
            msg = f"Invalid URI: missing scheme in '{uri}'"
            raise ValueError(msg)

        if parsed.scheme == "file":
            # file://relative/path or file:///absolute/path
            path = parsed.netloc + parsed.path if parsed.netloc else parsed.path
        else:
            path = f"{parsed.netloc}{parsed.path}"

        if not path and parsed.scheme not in _OPTIONAL_PATH_SCHEMES:
            msg = f"Invalid URI: missing path in '{uri}'"
            raise ValueError(msg)

        params: dict[str, str] = {}
        if parsed.query:
            # Keep the first value of repeated parameters
            params = {k: v[0] for k, v in parse_qs(parsed.query).items()}

        return parsed.scheme, path, params

    def resolve(self, uri: str) -> StorageAdapter:
        """Create an adapter instance from a URI string.

        Raises:
            ValueError: If the URI is invalid or its scheme is unsupported.

        """
        scheme, path, params = self.parse_uri(uri)

        if scheme not in self._factories:
            supported = ", ".join(self.schemes)
            msg = (
                f"Unsupported URI scheme: '{scheme}'. "
                f"Supported schemes: {supported}"
            )
            raise ValueError(msg)

        return self._factories[scheme](path, params)

    def register(
        self,
        scheme: str,
        factory_func: AdapterFactoryFunc,
    ) -> None:
        """Register a custom adapter factory for a URI scheme.

        Args:
            scheme: URI scheme to register (e.g., "s3", "azure")
            factory_func: Callable that takes (path, params) and returns a
                StorageAdapter

        """
        if not callable(factory_func):
            msg = "factory_func must be callable"
            raise TypeError(msg)
        self._factories[scheme] = factory_func

    def _create_memory_adapter(
        self,
        path: str,
        params: dict[str, Any],
    ) -> StorageAdapter:
        """Create an InMemoryStorageAdapter.

        URI format: memory://prefix?page_size=100&default_visibility=private
        """
        from .interfaces import Visibility
        from .memory import InMemoryStorageAdapter

        kwargs: dict[str, Any] = {"prefix": path}
        if "page_size" in params:
            kwargs["page_size"] = int(params["page_size"])
        if "default_visibility" in params:
            kwargs["default_visibility"] = Visibility(params["default_visibility"])
        if "supports_visibility" in params:
            kwargs["supports_visibility"] = _to_bool(params["supports_visibility"])
        if "public_url_base" in params:
            kwargs["public_url_base"] = params["public_url_base"]
        if "url_signing_key" in params:
            kwargs["url_signing_key"] = params["url_signing_key"]
        if "checksum_fallback" in params:
            kwargs["checksum_fallback"] = _to_bool(params["checksum_fallback"])
        return InMemoryStorageAdapter(**kwargs)

    def _create_file_adapter(
        self,
        path: str,
        params: dict[str, Any],
    ) -> StorageAdapter:
        """Create a LocalStorageAdapter.

        URI format: file:///path?create_root=true&public_url_base=https://host/files
        """
        from .local import LocalStorageAdapter

        return LocalStorageAdapter(
            root=path,
            create_root=_to_bool(params.get("create_root", "true")),
            public_url_base=params.get("public_url_base"),
        )

    def _create_openai_adapter(
        self,
        path: str,
        params: dict[str, Any],
    ) -> StorageAdapter:
        """Create an OpenAIVectorStoreStorageAdapter.

        URI format: openai+vector://vs_123456?api_key=sk_xxx&cache_ttl=5

        Args:
            path: Vector store ID (e.g., vs_123456)
            params: Query parameters (api_key, cache_ttl, purpose, prefix,
                page_size)

        """
        from .openai_backend import OpenAIVectorStoreStorageAdapter

        if not path.startswith("vs_"):
            msg = f"Invalid vector store ID: '{path}' (should start with 'vs_')"
            raise ValueError(msg)

        connection_info: dict[str, Any] = {"vector_store_id": path}
        for key in ("api_key", "cache_ttl", "purpose", "prefix", "page_size"):
            if key in params:
                connection_info[key] = params[key]

        return OpenAIVectorStoreStorageAdapter(connection_info)


def _to_bool(value: str) -> bool:
    return str(value).lower() in ("1", "true", "yes", "on")


# Global default factory instance
_default_factory = AdapterFactory()


def resolve_adapter(uri: str) -> StorageAdapter:
    """Resolve an adapter from a URI using the default factory.

    Example:
        >>> adapter = resolve_adapter("memory://")
        >>> adapter = resolve_adapter("openai+vector://vs_123?api_key=sk_xxx")

    """
    return _default_factory.resolve(uri)


def resolve_storage(uri: str, **kwargs: Any) -> FileStorage:
    """Resolve an adapter from a URI and wrap it in a :class:`FileStorage`.

    Keyword arguments are passed to the ``FileStorage`` constructor.
    """
    return FileStorage(resolve_adapter(uri), **kwargs)


def register_adapter_factory(
    scheme: str,
    factory_func: AdapterFactoryFunc,
) -> None:
    """Register a custom adapter factory for a URI scheme.

    Example:
        >>> def my_s3_factory(path: str, params: dict) -> StorageAdapter:
        ...     return S3StorageAdapter(bucket=path, **params)
        >>> register_adapter_factory("s3", my_s3_factory)

    """
    _default_factory.register(scheme, factory_func)
