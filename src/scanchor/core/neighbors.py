"""k-nearest-neighbor and shared-nearest-neighbor graphs."""

from __future__ import annotations

from typing import TYPE_CHECKING

import hnswlib
import numpy as np
import scipy.sparse as sp
from scipy.spatial.distance import cdist

from scanchor._constants import (
    DEFAULT_K_NEIGHBORS,
    DEFAULT_RECALL_SAMPLE,
    DEFAULT_SNN_PRUNE,
    RECALL_SEED,
)
from scanchor._logging import log_progress, logger
from scanchor.config import NeighborConfig
from scanchor.core.types import Embedding, NeighborGraph
from scanchor.exceptions import DataError, DimensionMismatch, InsufficientPoints
from scanchor.utils import check_cancelled, chunk_bounds, id_ranks

if TYPE_CHECKING:
    from typing import Any

    from numpy.typing import NDArray

    from scanchor.utils import CancellationToken


def _as_points(x: Any) -> tuple[NDArray[np.float64], NDArray[Any] | None]:
    """Return coordinates and cell ids of an Embedding or plain array."""
    if isinstance(x, Embedding):
        return x.coords, x.cell_ids
    pts = np.asarray(x, dtype=np.float64)
    if pts.ndim != 2:
        raise DataError(f"Points must be a 2-D array, got shape {pts.shape}.")
    return pts, None


def _check_k(k: int, n_reference: int, within: bool) -> None:
    if int(k) != k or k < 1:
        raise ValueError(f"k must be a positive integer, got {k!r}.")
    if n_reference <= k:
        raise InsufficientPoints(
            f"Cannot find {k} neighbors among {n_reference} "
            f"{'points' if within else 'reference points'}."
        )


def _sort_rows(
    idx: NDArray[np.int64], dist: NDArray[np.float64], ranks: NDArray[np.int64]
) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
    """Sort each row by distance, then by identifier rank."""
    n, k = idx.shape
    rows = np.repeat(np.arange(n), k)
    order = np.lexsort((ranks[idx.ravel()], dist.ravel(), rows))
    return idx.ravel()[order].reshape(n, k), dist.ravel()[order].reshape(n, k)


def _exact_knn(
    query: NDArray[np.float64],
    reference: NDArray[np.float64],
    k: int,
    ranks: NDArray[np.int64],
    exclude: NDArray[np.int64] | None,
    chunk_size: int,
    token: CancellationToken | None,
) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
    """Brute-force search, chunked over query points.

    ``exclude`` gives, per query point, a reference position it may not
    return (itself, for within-set search).
    """
    n = query.shape[0]
    indices = np.empty((n, k), dtype=np.int64)
    distances = np.empty((n, k), dtype=np.float64)
    for start, stop in chunk_bounds(n, chunk_size):
        check_cancelled(token, "neighbor search")
        D = cdist(query[start:stop], reference, "sqeuclidean")
        if exclude is not None:
            D[np.arange(stop - start), exclude[start:stop]] = np.inf
        kth = np.partition(D, k - 1, axis=1)[:, k - 1]
        for r in range(stop - start):
            # every point tied with the k-th distance competes on identifier rank
            cand = np.flatnonzero(D[r] <= kth[r])
            order = np.lexsort((ranks[cand], D[r, cand]))[:k]
            indices[start + r] = cand[order]
            distances[start + r] = D[r, cand[order]]
        log_progress("Exact neighbor search", stop, n)
    return indices, np.sqrt(np.maximum(distances, 0))


def _hnsw_knn(
    query: NDArray[np.float64],
    reference: NDArray[np.float64],
    k: int,
    ranks: NDArray[np.int64],
    within: bool,
    config: NeighborConfig,
    token: CancellationToken | None,
) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
    """Approximate search with an HNSW index."""
    n_ref, dim = reference.shape
    kq = k + 1 if within else k
    index = hnswlib.Index(space="l2", dim=dim)
    index.init_index(max_elements=n_ref, ef_construction=config.ef, M=config.M, random_seed=0)
    # single-threaded insertion keeps the index, and so the result, reproducible
    index.add_items(reference, np.arange(n_ref), num_threads=1)
    index.set_ef(max(config.ef, kq))

    n = query.shape[0]
    indices = np.empty((n, k), dtype=np.int64)
    distances = np.empty((n, k), dtype=np.float64)
    for start, stop in chunk_bounds(n, config.chunk_size):
        check_cancelled(token, "neighbor search")
        labels, dist = index.knn_query(query[start:stop], k=kq)
        labels = labels.astype(np.int64)
        if within:
            self_ix = np.arange(start, stop)[:, None]
            keep = labels != self_ix
            # rows that did not return themselves drop their farthest hit
            no_self = keep.all(1)
            keep[no_self, -1] = False
            labels = labels[keep].reshape(stop - start, k)
            dist = dist[keep].reshape(stop - start, k)
        indices[start:stop] = labels
        distances[start:stop] = dist
        log_progress("Approximate neighbor search", stop, n)
    indices, distances = _sort_rows(indices, distances, ranks)
    return indices, np.sqrt(np.maximum(distances, 0))


def _sample_recall(
    approx: NDArray[np.int64],
    query: NDArray[np.float64],
    reference: NDArray[np.float64],
    k: int,
    ranks: NDArray[np.int64],
    exclude: NDArray[np.int64] | None,
    n_sample: int,
    seed: int,
    chunk_size: int,
    token: CancellationToken | None,
) -> float:
    """Fraction of exact neighbors present in ``approx`` on a seeded sample."""
    n = query.shape[0]
    rng = np.random.default_rng(seed)
    sample = np.sort(rng.choice(n, size=min(n_sample, n), replace=False))
    skip = None if exclude is None else exclude[sample]
    exact, _ = _exact_knn(query[sample], reference, k, ranks, skip, chunk_size, token)
    hits = sum(np.intersect1d(approx[s], exact[i]).size for i, s in enumerate(sample))
    return hits / (sample.size * k)


class NeighborGraphBuilder:
    """Build Euclidean k-nearest-neighbor graphs.

    Parameters
    ----------
    config : NeighborConfig, optional
        Exact or approximate search and its tuning. Defaults to exact search
        for small reference sets and HNSW for large ones.

    Notes
    -----
    Equal distances are broken by cell identifier (lower wins) when the
    inputs are Embeddings, and by position otherwise.
    """

    def __init__(self, config: NeighborConfig | None = None) -> None:
        self.config = config if config is not None else NeighborConfig()

    def knn(
        self,
        points: Embedding | Any,
        k: int = DEFAULT_K_NEIGHBORS,
        token: CancellationToken | None = None,
    ) -> NeighborGraph:
        """k nearest neighbors of every point within one set, self excluded.

        Raises
        ------
        InsufficientPoints
            If the set has ``k`` points or fewer.
        """
        pts, ids = _as_points(points)
        n = pts.shape[0]
        _check_k(k, n, within=True)
        ranks = id_ranks(ids, n)
        idx, dist, exact = self._search(pts, pts, k, ranks, np.arange(n), token)
        return NeighborGraph(indices=idx, distances=dist, n_reference=n, exact=exact, within=True)

    def cross_knn(
        self,
        query: Embedding | Any,
        reference: Embedding | Any,
        k: int = DEFAULT_K_NEIGHBORS,
        token: CancellationToken | None = None,
    ) -> NeighborGraph:
        """k nearest reference points of every query point.

        Raises
        ------
        DimensionMismatch
            If the two sets are not comparable.
        InsufficientPoints
            If the reference set has ``k`` points or fewer.
        """
        if isinstance(query, Embedding) and isinstance(reference, Embedding):
            query.check_comparable(reference)
        q, _ = _as_points(query)
        r, ref_ids = _as_points(reference)
        if q.shape[1] != r.shape[1]:
            raise DimensionMismatch(
                f"Query has {q.shape[1]} dimensions, reference has {r.shape[1]}."
            )
        n_ref = r.shape[0]
        _check_k(k, n_ref, within=False)
        ranks = id_ranks(ref_ids, n_ref)
        idx, dist, exact = self._search(q, r, k, ranks, None, token)
        return NeighborGraph(indices=idx, distances=dist, n_reference=n_ref, exact=exact)

    def _search(
        self,
        query: NDArray[np.float64],
        reference: NDArray[np.float64],
        k: int,
        ranks: NDArray[np.int64],
        exclude: NDArray[np.int64] | None,
        token: CancellationToken | None,
    ) -> tuple[NDArray[np.int64], NDArray[np.float64], bool]:
        """Exact or HNSW search; HNSW results below ``min_recall`` are redone exactly."""
        config = self.config
        if config.use_exact(reference.shape[0]):
            idx, dist = _exact_knn(query, reference, k, ranks, exclude, config.chunk_size, token)
            return idx, dist, True

        idx, dist = _hnsw_knn(query, reference, k, ranks, exclude is not None, config, token)
        if config.min_recall == 0:
            return idx, dist, False
        recall = _sample_recall(
            idx,
            query,
            reference,
            k,
            ranks,
            exclude,
            config.recall_sample,
            RECALL_SEED,
            config.chunk_size,
            token,
        )
        if recall >= config.min_recall:
            logger.debug("Approximate neighbor search recall: %.3f.", recall)
            return idx, dist, False

        logger.warning(
            "Approximate neighbor search recall %.3f is below %.3f; using exact search.",
            recall,
            config.min_recall,
        )
        idx, dist = _exact_knn(query, reference, k, ranks, exclude, config.chunk_size, token)
        return idx, dist, True

    @staticmethod
    def snn(graph: NeighborGraph, prune: float = DEFAULT_SNN_PRUNE) -> sp.csr_matrix:
        """Shared-nearest-neighbor graph from a within-set kNN graph.

        The weight of edge (i, j) is the Jaccard overlap of the neighbor
        sets of i and j, each including the point itself. Edges with
        overlap below ``prune`` are removed and the diagonal is zero.

        Returns
        -------
        scipy.sparse.csr_matrix
            Symmetric n x n weight matrix.
        """
        if not graph.within:
            raise DataError("SNN graphs need a within-set neighbor graph.")
        n = graph.n_query
        M = graph.to_sparse() + sp.identity(n, format="csr")
        S = (M @ M.T).tocsr()
        size = graph.k + 1
        S.data = S.data / (2 * size - S.data)
        S.data[S.data < prune] = 0
        S = S - sp.diags(S.diagonal())
        S = sp.csr_matrix(S)
        S.eliminate_zeros()
        return S

    def estimate_recall(
        self,
        points: Embedding | Any,
        k: int = DEFAULT_K_NEIGHBORS,
        n_sample: int = DEFAULT_RECALL_SAMPLE,
        seed: int = RECALL_SEED,
    ) -> float:
        """Fraction of exact neighbors the HNSW index recovers on a sample.

        Parameters
        ----------
        points : Embedding or ndarray
            Point set searched within.
        k : int, optional
            Neighborhood size.
        n_sample : int, optional
            Number of query points checked.
        seed : int, optional
            Seed of the sample.

        Notes
        -----
        Exact neighbors are ranked with the same identifier tie-break as
        :meth:`knn`, so a tie resolved differently counts as a miss.
        """
        pts, ids = _as_points(points)
        n = pts.shape[0]
        _check_k(k, n, within=True)
        ranks = id_ranks(ids, n)
        approx, _ = _hnsw_knn(pts, pts, k, ranks, True, self.config, None)
        return _sample_recall(
            approx, pts, pts, k, ranks, np.arange(n), n_sample, seed, self.config.chunk_size, None
        )
