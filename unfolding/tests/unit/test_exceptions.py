"""
Unit tests for custom exception classes.

Tests verify exception hierarchy, message formatting, and proper
initialization of all custom exception types.
"""

from __future__ import annotations

import pytest

from unfolding.modules.exceptions import (
    BinningError,
    ConfigurationError,
    DataLoadError,
    DecompositionError,
    HistogramMissingError,
    PersistenceError,
    UnfoldingError,
)


@pytest.mark.unit
class TestExceptionHierarchy:
    """Test exception inheritance and hierarchy."""

    def test_all_inherit_from_unfolding_error(self) -> None:
        """Verify all custom exceptions inherit from UnfoldingError."""
        exceptions = [
            ConfigurationError,
            DataLoadError,
            HistogramMissingError,
            BinningError,
            DecompositionError,
            PersistenceError,
        ]

        for exc_class in exceptions:
            assert issubclass(exc_class, UnfoldingError)

    def test_unfolding_error_inherits_from_exception(self) -> None:
        assert issubclass(UnfoldingError, Exception)

    def test_catch_all_unfolding_errors(self) -> None:
        """Test that UnfoldingError catches all custom exceptions."""
        exceptions = [
            ConfigurationError("test"),
            DataLoadError("test"),
            HistogramMissingError("h"),
            BinningError("test"),
            DecompositionError("test"),
            PersistenceError("test"),
        ]

        for exc in exceptions:
            try:
                raise exc
            except UnfoldingError:
                pass
            else:
                pytest.fail(f"{type(exc).__name__} not caught by UnfoldingError")


@pytest.mark.unit
class TestHistogramMissingError:
    """Test HistogramMissingError message formatting."""

    def test_key_only(self) -> None:
        exc = HistogramMissingError("h_measured")

        assert exc.key == "h_measured"
        assert exc.file_path is None
        assert str(exc) == "Required histogram 'h_measured' not found"

    def test_key_and_file(self) -> None:
        exc = HistogramMissingError("h_measured", "/data/input.root")

        assert exc.file_path == "/data/input.root"
        assert "h_measured" in str(exc)
        assert "in file: /data/input.root" in str(exc)

    def test_raise_and_catch(self) -> None:
        with pytest.raises(HistogramMissingError) as exc_info:
            raise HistogramMissingError("h_truth", "in.root")

        assert exc_info.value.key == "h_truth"
