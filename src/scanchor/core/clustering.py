"""Modularity-based community detection on neighbor graphs."""

from __future__ import annotations

import itertools
import os
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
import scipy.sparse as sp
from numba import njit

from scanchor._constants import MODULARITY_TOL
from scanchor._logging import logger
from scanchor.config import ClusteringConfig
from scanchor.core.types import ClusterAssignment, NeighborGraph
from scanchor.exceptions import DataError, DependencyError, EmptyGraph
from scanchor.utils import check_cancelled

if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import Any

    from numpy.typing import NDArray

    from scanchor.utils import CancellationToken


def as_adjacency(graph: NeighborGraph | Any) -> sp.csr_matrix:
    """Symmetric, non-negative CSR adjacency of ``graph``.

    Accepts a within-set NeighborGraph (edges weighted 1), a scipy sparse
    matrix or a dense array. Asymmetric input is symmetrized as
    ``(A + A.T) / 2``.

    Raises
    ------
    EmptyGraph
        If the graph has no nodes.
    """
    if isinstance(graph, NeighborGraph):
        if not graph.within:
            raise DataError("Clustering needs a within-set neighbor graph.")
        A = graph.to_sparse()
    else:
        A = sp.csr_matrix(graph, dtype=np.float64)
    if A.shape[0] != A.shape[1]:
        raise DataError(f"Adjacency must be square, got shape {A.shape}.")
    if A.shape[0] == 0:
        raise EmptyGraph("Graph has no nodes.")
    A = A.astype(np.float64)
    if A.nnz and A.data.min() < 0:
        raise DataError("Edge weights must be non-negative.")
    if (A != A.T).nnz:
        A = ((A + A.T) / 2).tocsr()
    A.eliminate_zeros()
    A.sort_indices()
    return A


def modularity(graph: Any, labels: Any, resolution: float = 1.0) -> float:
    """Newman modularity of ``labels`` on ``graph`` with a resolution term.

    ``Q = sum_c [ in_c / 2m - resolution * (tot_c / 2m)^2 ]``.
    """
    A = as_adjacency(graph)
    labels = np.asarray(labels)
    m2 = A.sum()
    if m2 == 0:
        return 0.0
    _, inv = np.unique(labels, return_inverse=True)
    P = sp.csr_matrix((np.ones(inv.size), (np.arange(inv.size), inv)))
    internal = (P.T @ A @ P).diagonal()
    tot = np.asarray(P.T @ np.asarray(A.sum(1))).ravel()
    return float(np.sum(internal / m2 - resolution * (tot / m2) ** 2))


@njit(nogil=True)
def _local_move(
    indptr: NDArray[np.int32],
    indices: NDArray[np.int32],
    data: NDArray[np.float64],
    degree: NDArray[np.float64],
    comm: NDArray[np.int64],
    resolution: float,
    priority: NDArray[np.int64],
    max_sweeps: int,
    tol: float,
) -> bool:
    """Move nodes between communities until no move improves modularity.

    Nodes are scanned in ascending order. A node leaves its community only
    for a strictly better one; among equally good alternatives the
    community with the lowest ``priority`` wins. ``comm`` is updated in
    place.
    """
    n = degree.size
    m2 = degree.sum()
    tot = np.zeros(n)
    for i in range(n):
        tot[comm[i]] += degree[i]
    neigh_w = np.zeros(n)
    neigh_c = np.empty(n, dtype=np.int64)
    stamp = np.full(n, -1, dtype=np.int64)
    counter = 0
    moved_any = False
    for _ in range(max_sweeps):
        moves = 0
        for i in range(n):
            ci = comm[i]
            ki = degree[i]
            counter += 1
            nn = 0
            for p in range(indptr[i], indptr[i + 1]):
                j = indices[p]
                if j == i:
                    continue
                cj = comm[j]
                if stamp[cj] != counter:
                    stamp[cj] = counter
                    neigh_w[cj] = 0.0
                    neigh_c[nn] = cj
                    nn += 1
                neigh_w[cj] += data[p]

            tot[ci] -= ki
            own = neigh_w[ci] if stamp[ci] == counter else 0.0
            best_c = ci
            best_gain = own - resolution * tot[ci] * ki / m2
            for t in range(nn):
                c = neigh_c[t]
                if c == ci:
                    continue
                gain = neigh_w[c] - resolution * tot[c] * ki / m2
                if gain > best_gain + tol:
                    best_c = c
                    best_gain = gain
                elif best_c != ci and abs(gain - best_gain) <= tol and priority[c] < priority[best_c]:
                    best_c = c
            tot[best_c] += ki
            if best_c != ci:
                comm[i] = best_c
                moves += 1
        if moves == 0:
            break
        moved_any = True
    return moved_any


def _renumber(comm: NDArray[np.int64]) -> NDArray[np.int64]:
    """Relabel communities 0..c-1 in order of first appearance."""
    _, first, inv = np.unique(comm, return_index=True, return_inverse=True)
    rank = np.empty(first.size, dtype=np.int64)
    rank[np.argsort(first)] = np.arange(first.size)
    return rank[inv]


def _aggregate(A: sp.csr_matrix, comm: NDArray[np.int64]) -> sp.csr_matrix:
    """Collapse communities into super-nodes; internal weight becomes a self-loop."""
    n_comm = int(comm.max()) + 1
    P = sp.csr_matrix((np.ones(comm.size), (np.arange(comm.size), comm)), shape=(comm.size, n_comm))
    B = (P.T @ A @ P).tocsr()
    B.sort_indices()
    return B


def _order_by_size(labels: NDArray[np.int64]) -> NDArray[np.int64]:
    """Relabel clusters by decreasing size, ties by lowest member."""
    uniq, first, inv, counts = np.unique(labels, return_index=True, return_inverse=True, return_counts=True)
    order = np.lexsort((first, -counts))
    rank = np.empty(uniq.size, dtype=np.int64)
    rank[order] = np.arange(uniq.size)
    return rank[inv]


class CommunityStrategy(ABC):
    """Partition a symmetric weighted graph into communities."""

    name: str = ""

    @abstractmethod
    def partition(
        self,
        A: sp.csr_matrix,
        config: ClusteringConfig,
        token: CancellationToken | None = None,
    ) -> tuple[NDArray[np.int64], int]:
        """Return a community id per node and the number of levels built."""


class LouvainStrategy(CommunityStrategy):
    """Multi-level Louvain modularity optimization.

    Alternates a local-move phase with aggregation of communities into
    super-nodes until a level makes no move or ``max_passes`` is reached,
    then maps every original node to its top-level community.
    """

    name = "louvain"

    def partition(
        self,
        A: sp.csr_matrix,
        config: ClusteringConfig,
        token: CancellationToken | None = None,
    ) -> tuple[NDArray[np.int64], int]:
        n = A.shape[0]
        membership = np.arange(n, dtype=np.int64)
        if A.sum() == 0:
            return membership, 0

        rng = np.random.default_rng(config.seed)
        levels = 0
        for level in range(config.max_passes):
            check_cancelled(token, "clustering")
            n_level = A.shape[0]
            comm = np.arange(n_level, dtype=np.int64)
            degree = np.asarray(A.sum(1)).ravel()
            priority = rng.permutation(n_level).astype(np.int64)
            moved = _local_move(
                A.indptr.astype(np.int32),
                A.indices.astype(np.int32),
                A.data.astype(np.float64),
                degree,
                comm,
                float(config.resolution),
                priority,
                int(config.max_sweeps),
                MODULARITY_TOL,
            )
            if not moved:
                break
            comm = _renumber(comm)
            membership = comm[membership]
            A = _aggregate(A, comm)
            levels += 1
            logger.debug("Louvain level %d: %d communities.", level + 1, A.shape[0])
        return membership, levels


class LeidenStrategy(CommunityStrategy):
    """Leiden optimization of the same objective through ``leidenalg``."""

    name = "leiden"

    def partition(
        self,
        A: sp.csr_matrix,
        config: ClusteringConfig,
        token: CancellationToken | None = None,
    ) -> tuple[NDArray[np.int64], int]:
        try:
            import igraph as ig
            import leidenalg
        except ImportError as e:
            raise DependencyError(
                "Leiden clustering requires 'leidenalg' and 'python-igraph'."
            ) from e

        check_cancelled(token, "clustering")
        upper = sp.triu(A).tocoo()
        g = ig.Graph(n=A.shape[0], edges=list(zip(upper.row.tolist(), upper.col.tolist())), directed=False)
        g.es["weight"] = upper.data.tolist()
        part = leidenalg.find_partition(
            g,
            leidenalg.RBConfigurationVertexPartition,
            weights="weight",
            resolution_parameter=config.resolution,
            seed=config.seed,
            n_iterations=-1,
        )
        check_cancelled(token, "clustering")
        return np.asarray(part.membership, dtype=np.int64), 1


STRATEGIES: dict[str, type[CommunityStrategy]] = {
    "louvain": LouvainStrategy,
    "leiden": LeidenStrategy,
}


class CommunityDetector:
    """Cluster a neighbor graph by modularity optimization.

    Parameters
    ----------
    config : ClusteringConfig, optional
        Resolution, seed, pass limits and algorithm.

    Example
    -------
    >>> detector = CommunityDetector(ClusteringConfig(resolution=0.8, seed=0))
    >>> assignment = detector.run(snn_graph, ids=cell_ids)
    >>> assignment.n_clusters
    """

    def __init__(self, config: ClusteringConfig | None = None) -> None:
        self.config = config if config is not None else ClusteringConfig()
        self.strategy = STRATEGIES[self.config.algorithm]()

    def run(
        self,
        graph: NeighborGraph | Any,
        ids: Sequence[Any] | pd.Index | None = None,
        token: CancellationToken | None = None,
    ) -> ClusterAssignment:
        """Assign every node of ``graph`` to a cluster.

        Parameters
        ----------
        graph : NeighborGraph, scipy.sparse matrix or ndarray
            Typically the SNN graph of corrected embeddings.
        ids : sequence or pd.Index, optional
            Node identifiers for the returned labels. Defaults to positions.
        token : CancellationToken, optional
            Checked between passes.

        Raises
        ------
        EmptyGraph
            If the graph has no nodes.
        """
        A = as_adjacency(graph)
        n = A.shape[0]
        if ids is None:
            index = pd.RangeIndex(n)
        else:
            index = ids if isinstance(ids, pd.Index) else pd.Index(ids)
        if len(index) != n:
            raise DataError(f"{len(index)} ids for a graph with {n} nodes.")

        membership, levels = self.strategy.partition(A, self.config, token=token)
        labels = _order_by_size(membership)
        q = modularity(A, labels, self.config.resolution)
        assignment = ClusterAssignment(
            labels=pd.Series(labels, index=index, name="cluster"),
            resolution=self.config.resolution,
            seed=self.config.seed,
            modularity=q,
            n_levels=levels,
            algorithm=self.strategy.name,
        )
        logger.info(
            "%s found %d clusters at resolution %.3g (modularity %.4f).",
            self.strategy.name.capitalize(),
            assignment.n_clusters,
            self.config.resolution,
            q,
        )
        return assignment

    def sweep(
        self,
        graph: NeighborGraph | Any,
        resolutions: Sequence[float],
        seeds: Sequence[int] | None = None,
        ids: Sequence[Any] | pd.Index | None = None,
        n_jobs: int | None = None,
        token: CancellationToken | None = None,
    ) -> list[ClusterAssignment]:
        """Run independent clusterings for every (resolution, seed) pair.

        Runs execute concurrently in a thread pool; results are returned in
        ``itertools.product(resolutions, seeds)`` order.
        """
        if seeds is None:
            seeds = [self.config.seed]
        A = as_adjacency(graph)
        if n_jobs is None:
            n_jobs = os.cpu_count() or 1
        detectors = [
            CommunityDetector(replace(self.config, resolution=r, seed=s))
            for r, s in itertools.product(resolutions, seeds)
        ]
        with ThreadPoolExecutor(max_workers=n_jobs) as pool:
            futures = [pool.submit(d.run, A, ids, token) for d in detectors]
            return [f.result() for f in futures]
