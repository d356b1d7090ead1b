"""Tests for the error taxonomy and translation helpers."""

from __future__ import annotations

import pytest

from f9_file_storage.errors import (
    CODE_PREFIX,
    ErrorKind,
    FileStorageError,
    error_to_message,
    translate_errors,
    wrap_error,
)


def test_codes_are_namespaced_and_unique() -> None:
    """Every kind should expose a distinct, prefixed code."""
    codes = [kind.code for kind in ErrorKind]
    assert len(codes) == len(set(codes))
    assert all(code.startswith(f"{CODE_PREFIX}.") for code in codes)
    assert ErrorKind.FILE_NOT_FOUND.code == "f9_file_storage.file_was_not_found"


def test_only_two_kinds_are_signals() -> None:
    """Checksum and operation support signals are the only internal kinds."""
    signals = {kind for kind in ErrorKind if kind.is_signal}
    assert signals == {
        ErrorKind.CHECKSUM_NOT_SUPPORTED,
        ErrorKind.OPERATION_NOT_SUPPORTED,
    }


def test_because_formats_reason_and_keeps_cause() -> None:
    """The reason should follow the kind description and chain the cause."""
    cause = OSError("disk full")
    error = FileStorageError.because(
        ErrorKind.UNABLE_TO_WRITE,
        "disk full",
        context={"path": "a.txt"},
        cause=cause,
    )
    assert error.message == "Unable to write the file. Reason: disk full"
    assert str(error) == error.message
    assert error.cause is cause
    assert error.__cause__ is cause
    assert error.path == "a.txt"
    assert error.code == ErrorKind.UNABLE_TO_WRITE.code


def test_file_not_found_message() -> None:
    """Missing files should name the location."""
    error = FileStorageError.file_not_found("docs/a.txt")
    assert error.kind is ErrorKind.FILE_NOT_FOUND
    assert error.message == "File was not found at location: docs/a.txt"
    assert error.context == {"path": "docs/a.txt"}


def test_checksum_signal_records_fallback_flag() -> None:
    """The checksum signal should carry the algorithm and fallback permission."""
    error = FileStorageError.checksum_not_supported("sha512", fallback_allowed=False)
    assert error.kind is ErrorKind.CHECKSUM_NOT_SUPPORTED
    assert error.context["algorithm"] == "sha512"
    assert error.context["fallback_allowed"] is False


def test_wrap_error_passes_reportable_errors_through() -> None:
    """Taxonomy errors other than signals should be returned unchanged."""
    original = FileStorageError.file_not_found("a.txt")
    assert wrap_error(ErrorKind.UNABLE_TO_READ, original) is original


def test_wrap_error_wraps_signals_and_merges_context() -> None:
    """Signals should become the operation's kind with merged context."""
    signal = FileStorageError.operation_not_supported("visibility")
    wrapped = wrap_error(
        ErrorKind.UNABLE_TO_GET_VISIBILITY,
        signal,
        context={"path": "a.txt"},
    )
    assert isinstance(wrapped, FileStorageError)
    assert wrapped.kind is ErrorKind.UNABLE_TO_GET_VISIBILITY
    assert wrapped.cause is signal
    assert wrapped.context == {"operation": "visibility", "path": "a.txt"}


def test_wrap_error_without_passthrough_wraps_everything() -> None:
    """Disabling passthrough should wrap reportable errors as well."""
    original = FileStorageError.file_not_found("a.txt")
    wrapped = wrap_error(ErrorKind.UNABLE_TO_MOVE, original, passthrough=False)
    assert wrapped is not original
    assert wrapped.kind is ErrorKind.UNABLE_TO_MOVE


def test_translate_errors_wraps_native_exceptions() -> None:
    """Native exceptions raised in the block should be wrapped."""
    with pytest.raises(FileStorageError) as excinfo:
        with translate_errors(ErrorKind.UNABLE_TO_COPY, context={"source": "a"}):
            raise ConnectionError("reset by peer")
    error = excinfo.value
    assert error.kind is ErrorKind.UNABLE_TO_COPY
    assert isinstance(error.__cause__, ConnectionError)
    assert error.context == {"source": "a"}
    assert "reset by peer" in error.message


def test_translate_errors_reraises_same_instance() -> None:
    """Reportable taxonomy errors should propagate as the very same object."""
    original = FileStorageError.file_not_found("a.txt")
    with pytest.raises(FileStorageError) as excinfo:
        with translate_errors(ErrorKind.UNABLE_TO_READ):
            raise original
    assert excinfo.value is original
    assert excinfo.value.__cause__ is None


def test_translate_errors_ignores_base_exceptions() -> None:
    """Cancellation-style exceptions should not be wrapped."""
    with pytest.raises(KeyboardInterrupt):
        with translate_errors(ErrorKind.UNABLE_TO_READ):
            raise KeyboardInterrupt


def test_error_to_message_falls_back_to_type_name() -> None:
    """Exceptions without a message should still produce readable text."""
    assert error_to_message(ValueError()) == "ValueError"
    assert error_to_message(ValueError("bad")) == "bad"
