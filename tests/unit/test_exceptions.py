"""Unit tests for scanchor.exceptions module."""

from __future__ import annotations

import pytest

from scanchor.exceptions import (
    Cancelled,
    DataError,
    DegenerateInput,
    DependencyError,
    DimensionMismatch,
    EmptyGraph,
    InsufficientPoints,
    NoAnchorsFound,
    ScAnchorError,
)


class TestExceptions:
    """Tests for custom exception classes."""

    def test_scanchor_error_is_base(self) -> None:
        """Test that ScAnchorError is the base exception."""
        with pytest.raises(ScAnchorError):
            raise ScAnchorError("test error")

    @pytest.mark.parametrize(
        "exc",
        [
            DataError,
            DimensionMismatch,
            DegenerateInput,
            InsufficientPoints,
            EmptyGraph,
            NoAnchorsFound,
            DependencyError,
        ],
    )
    def test_errors_inherit(self, exc: type[Exception]) -> None:
        """Test that every failure type derives from ScAnchorError."""
        with pytest.raises(ScAnchorError):
            raise exc("failure")
        with pytest.raises(exc):
            raise exc("failure")

    def test_cancelled_is_not_an_error(self) -> None:
        """Test that Cancelled stays outside the error hierarchy."""
        assert not issubclass(Cancelled, ScAnchorError)
        assert issubclass(Cancelled, Exception)

    def test_exception_messages(self) -> None:
        """Test that exception messages are preserved."""
        msg = "custom error message"
        try:
            raise NoAnchorsFound(msg)
        except ScAnchorError as e:
            assert str(e) == msg

    def test_catch_by_base(self) -> None:
        """Test that all errors can be caught by the base class."""
        exceptions = [DataError, DimensionMismatch, DegenerateInput, EmptyGraph]
        for exc_class in exceptions:
            try:
                raise exc_class("test")
            except ScAnchorError:
                pass
