"""Utility functions for scanchor."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import numpy as np
import scipy.sparse as sp

from scanchor.exceptions import Cancelled

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import Any

    from numpy.typing import NDArray


def _q(x: Any) -> NDArray[Any]:
    """Convert input to numpy array."""
    return np.array(list(x))


class CancellationToken:
    """Cooperative cancellation signal shared between a caller and a stage.

    Stages poll the token between units of work (query chunks, scoring
    chunks, clustering passes) and raise :class:`~scanchor.exceptions.Cancelled`
    once it is set.

    Example
    -------
    >>> token = CancellationToken()
    >>> token.cancel()
    >>> token.cancelled
    True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, where: str = "") -> None:
        if self._event.is_set():
            raise Cancelled(f"Cancelled during {where}" if where else "Cancelled")


def check_cancelled(token: CancellationToken | None, where: str = "") -> None:
    """Raise ``Cancelled`` if ``token`` is set. A ``None`` token never cancels."""
    if token is not None:
        token.raise_if_cancelled(where)


def chunk_bounds(n: int, chunk_size: int) -> Iterator[tuple[int, int]]:
    """Yield ``(start, stop)`` bounds covering ``range(n)`` in chunks."""
    for start in range(0, n, chunk_size):
        yield start, min(start + chunk_size, n)


def id_ranks(ids: NDArray[Any] | None, n: int) -> NDArray[np.int64]:
    """Rank of every identifier in lexicographic order.

    Used as the secondary sort key when distances tie: the lower identifier
    wins. Without identifiers, positions are used.

    Parameters
    ----------
    ids : ndarray or None
        Identifiers, one per point.
    n : int
        Number of points.

    Returns
    -------
    ndarray
        Integer rank per point, 0 for the smallest identifier.
    """
    if ids is None:
        return np.arange(n, dtype=np.int64)
    ids = np.asarray(ids).astype(str)
    if ids.size != n:
        raise ValueError(f"Expected {n} identifiers, got {ids.size}.")
    order = np.argsort(ids, kind="stable")
    ranks = np.empty(n, dtype=np.int64)
    ranks[order] = np.arange(n)
    return ranks


def frozen_array(x: Any, dtype: Any = None) -> Any:
    """Return a private read-only copy of a dense or sparse array."""
    if sp.issparse(x):
        out = sp.csr_matrix(x, dtype=dtype, copy=True)
        for arr in (out.data, out.indices, out.indptr):
            arr.setflags(write=False)
        return out
    out = np.array(x, dtype=dtype, copy=True)
    out.setflags(write=False)
    return out


def to_dense(x: Any) -> NDArray[np.float64]:
    """Convert a dense or sparse matrix to a float64 ndarray."""
    if sp.issparse(x):
        return np.asarray(x.toarray(), dtype=np.float64)
    return np.asarray(x, dtype=np.float64)
