"""Unit tests for scanchor.utils module."""

from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from scanchor.exceptions import Cancelled
from scanchor.utils import (
    CancellationToken,
    check_cancelled,
    chunk_bounds,
    frozen_array,
    id_ranks,
    to_dense,
)


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_initially_not_cancelled(self) -> None:
        """Test that a fresh token does not raise."""
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled("stage")

    def test_cancel_raises(self) -> None:
        """Test that a cancelled token raises with the stage name."""
        token = CancellationToken()
        token.cancel()
        assert token.cancelled
        with pytest.raises(Cancelled, match="neighbor search"):
            token.raise_if_cancelled("neighbor search")

    def test_check_cancelled_none(self) -> None:
        """Test that a missing token never cancels."""
        check_cancelled(None, "anything")


class TestChunkBounds:
    """Tests for chunk_bounds function."""

    def test_covers_range(self) -> None:
        """Test that chunks cover every index exactly once."""
        bounds = list(chunk_bounds(10, 4))
        assert bounds == [(0, 4), (4, 8), (8, 10)]

    def test_empty(self) -> None:
        """Test with zero items."""
        assert list(chunk_bounds(0, 4)) == []


class TestIdRanks:
    """Tests for id_ranks function."""

    def test_lexicographic(self) -> None:
        """Test ranks follow string order."""
        ranks = id_ranks(np.array(["c", "a", "b"]), 3)
        np.testing.assert_array_equal(ranks, [2, 0, 1])

    def test_positions_without_ids(self) -> None:
        """Test that positions are used without identifiers."""
        np.testing.assert_array_equal(id_ranks(None, 4), [0, 1, 2, 3])

    def test_length_mismatch(self) -> None:
        """Test that a wrong number of identifiers is rejected."""
        with pytest.raises(ValueError):
            id_ranks(np.array(["a"]), 2)


class TestFrozenArray:
    """Tests for frozen_array function."""

    def test_dense_copy_is_read_only(self) -> None:
        """Test that the copy is independent and read-only."""
        x = np.arange(6.0).reshape(2, 3)
        out = frozen_array(x)
        x[0, 0] = 100
        assert out[0, 0] == 0
        with pytest.raises(ValueError):
            out[0, 0] = 1

    def test_sparse_copy_is_read_only(self) -> None:
        """Test that sparse buffers are read-only."""
        x = sp.random(5, 5, density=0.5, format="csr", random_state=0)
        out = frozen_array(x)
        assert sp.issparse(out)
        assert not out.data.flags.writeable


class TestToDense:
    """Tests for to_dense function."""

    def test_sparse_to_dense(self) -> None:
        """Test sparse matrix conversion."""
        x = sp.csr_matrix(np.eye(3))
        out = to_dense(x)
        assert isinstance(out, np.ndarray)
        np.testing.assert_array_equal(out, np.eye(3))

    def test_dense_passthrough(self) -> None:
        """Test that dense input keeps its values."""
        x = np.array([[1, 2], [3, 4]])
        np.testing.assert_array_equal(to_dense(x), x.astype(float))
