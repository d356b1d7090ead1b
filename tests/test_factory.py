"""Tests for the URI-based adapter factory."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from f9_file_storage import (
    FileStorage,
    InMemoryStorageAdapter,
    LocalStorageAdapter,
    StorageAdapter,
    Visibility,
)
from f9_file_storage.factory import (
    AdapterFactory,
    register_adapter_factory,
    resolve_adapter,
    resolve_storage,
)

# ruff: noqa: S101, PLR2004  # pytest assertions and magic numbers are ok in tests


class TestAdapterFactory:
    """Test the AdapterFactory class."""

    def test_factory_initialization(self) -> None:
        """Test factory initializes with built-in schemes."""
        assert AdapterFactory().schemes == ["file", "memory", "openai+vector"]

    def test_parse_uri_file_scheme(self) -> None:
        """Test parsing file:// URIs."""
        factory = AdapterFactory()

        scheme, path, params = factory.parse_uri("file:///tmp/data")
        assert scheme == "file"
        assert path == "/tmp/data"
        assert params == {}

        scheme, path, params = factory.parse_uri("file://data/files")
        assert path == "data/files"

    def test_parse_uri_with_query_params(self) -> None:
        """Test parsing URIs with query parameters."""
        factory = AdapterFactory()
        uri = "file:///data?create_root=false&param1=value1&param1=value2"
        scheme, path, params = factory.parse_uri(uri)
        assert path == "/data"
        assert params == {"create_root": "false", "param1": "value1"}

    def test_parse_uri_memory_without_path(self) -> None:
        """Test that memory:// URIs may omit the prefix."""
        assert AdapterFactory().parse_uri("memory://") == ("memory", "", {})

    def test_parse_uri_openai(self) -> None:
        """Test parsing openai+vector:// URIs."""
        scheme, path, params = AdapterFactory().parse_uri(
            "openai+vector://vs_123456?api_key=sk_test&cache_ttl=5",
        )
        assert scheme == "openai+vector"
        assert path == "vs_123456"
        assert params == {"api_key": "sk_test", "cache_ttl": "5"}

    def test_parse_uri_missing_scheme(self) -> None:
        """Test error on missing URI scheme."""
        with pytest.raises(ValueError, match="missing scheme"):
            AdapterFactory().parse_uri("/tmp/data")

    def test_parse_uri_missing_path(self) -> None:
        """Test error on missing path component."""
        with pytest.raises(ValueError, match="missing path"):
            AdapterFactory().parse_uri("file://")

    def test_resolve_memory_adapter(self) -> None:
        """Test resolving an in-memory adapter with parameters."""
        adapter = AdapterFactory().resolve(
            "memory://tenant-a?page_size=50&default_visibility=public"
            "&supports_visibility=no",
        )
        assert isinstance(adapter, InMemoryStorageAdapter)
        assert adapter.prefix == "tenant-a"
        assert adapter._page_size == 50
        assert adapter._default_visibility is Visibility.PUBLIC
        assert adapter._supports_visibility is False

    def test_resolve_file_adapter(self, tmp_path: Path) -> None:
        """Test resolving a local file adapter."""
        adapter = AdapterFactory().resolve(f"file://{tmp_path}?create_root=false")
        assert isinstance(adapter, LocalStorageAdapter)
        assert adapter.root == tmp_path.resolve()

    def test_resolve_openai_adapter(self) -> None:
        """Test resolving an OpenAI vector store adapter."""
        factory = AdapterFactory()
        target = "f9_file_storage.openai_backend.OpenAIVectorStoreStorageAdapter"
        with patch(target) as mock_adapter:
            factory.resolve(
                "openai+vector://vs_12345?api_key=sk_test&cache_ttl=10&prefix=kb"
                "&ignored=1",
            )

        connection_info = mock_adapter.call_args[0][0]
        assert connection_info == {
            "vector_store_id": "vs_12345",
            "api_key": "sk_test",
            "cache_ttl": "10",
            "prefix": "kb",
        }

    def test_openai_uri_invalid_vector_store_id(self) -> None:
        """Test OpenAI URI with invalid vector store ID format."""
        with pytest.raises(ValueError, match="Invalid vector store ID"):
            AdapterFactory().resolve("openai+vector://invalid_id?api_key=sk_test")

    def test_resolve_unsupported_scheme(self) -> None:
        """Test error on unsupported URI scheme."""
        with pytest.raises(ValueError, match="Unsupported URI scheme"):
            AdapterFactory().resolve("s3://bucket/path")

    def test_register_custom_factory_not_callable(self) -> None:
        """Test error when registering non-callable as factory."""
        with pytest.raises(TypeError, match="must be callable"):
            AdapterFactory().register("custom", "not_a_function")  # type: ignore[arg-type]

    def test_resolve_with_custom_factory(self) -> None:
        """Test resolving URI with custom factory."""
        factory = AdapterFactory()
        called_with: dict[str, Any] = {}

        def custom_factory(path: str, params: dict[str, Any]) -> StorageAdapter:
            called_with["path"] = path
            called_with["params"] = params
            return InMemoryStorageAdapter(prefix=path)

        factory.register("custom", custom_factory)
        adapter = factory.resolve("custom://my-path?key=value")

        assert "custom" in factory.schemes
        assert isinstance(adapter, InMemoryStorageAdapter)
        assert called_with == {"path": "my-path", "params": {"key": "value"}}


class TestModuleLevelFunctions:
    """Test module-level convenience functions."""

    def test_resolve_adapter(self) -> None:
        """Test module-level resolve_adapter function."""
        assert isinstance(resolve_adapter("memory://"), InMemoryStorageAdapter)

    def test_register_adapter_factory(self) -> None:
        """Test module-level register_adapter_factory function."""

        def dummy_factory(path: str, params: dict[str, Any]) -> StorageAdapter:
            return InMemoryStorageAdapter()

        register_adapter_factory("custom-module", dummy_factory)
        assert isinstance(resolve_adapter("custom-module://any"), InMemoryStorageAdapter)

    @pytest.mark.asyncio
    async def test_resolve_storage(self, tmp_path: Path) -> None:
        """Test creating and using a facade from a URI."""
        storage = resolve_storage(f"file://{tmp_path}", chunk_size=2)
        assert isinstance(storage, FileStorage)

        await storage.write("subdir/test.txt", "Hello")
        assert (tmp_path / "subdir" / "test.txt").read_bytes() == b"Hello"
        assert await storage.read_to_string("subdir/test.txt") == "Hello"
        assert await storage.directory_exists("subdir")
