"""Diagnostics for integration and clustering results."""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from scanchor._constants import DEFAULT_K_NEIGHBORS
from scanchor.core.neighbors import NeighborGraphBuilder
from scanchor.exceptions import DataError
from scanchor.utils import _q

if TYPE_CHECKING:
    from typing import Any

    from scanchor.core.types import ClusterAssignment, Embedding


def batch_alignment_scores(
    embedding: Embedding,
    batches: Any,
    k: int = DEFAULT_K_NEIGHBORS,
    builder: NeighborGraphBuilder | None = None,
) -> pd.DataFrame:
    """Average fraction of each cell's neighbors that come from every batch.

    Parameters
    ----------
    embedding : Embedding
        Typically the merged, corrected embedding.
    batches : array-like
        Batch label per cell.
    k : int, optional
        Neighborhood size.
    builder : NeighborGraphBuilder, optional
        Search settings.

    Returns
    -------
    pd.DataFrame
        Row batch x column batch. Off-diagonal values near the batch's share
        of the data indicate good mixing; values near zero indicate
        separated batches.
    """
    x = _q(batches)
    if x.size != embedding.n_cells:
        raise DataError(f"{x.size} batch labels for {embedding.n_cells} cells.")
    if builder is None:
        builder = NeighborGraphBuilder()
    graph = builder.knn(embedding, k)
    xu = np.unique(x)
    neighbor_batches = x[graph.indices]
    a = np.zeros((xu.size, xu.size))
    for i in range(xu.size):
        rows = neighbor_batches[x == xu[i]]
        for j in range(xu.size):
            a[i, j] = (rows == xu[j]).mean()
    return pd.DataFrame(data=a, index=xu, columns=xu)


def cluster_composition(assignment: ClusterAssignment, batches: Any = None) -> pd.DataFrame:
    """Cells per cluster and batch.

    ``batches`` defaults to the 'batch' level of the assignment's index.
    """
    labels = assignment.labels
    if batches is None:
        if "batch" not in (labels.index.names or []):
            raise DataError("Pass batches explicitly; the labels carry no 'batch' level.")
        batches = labels.index.get_level_values("batch")
    batches = _q(batches)
    if batches.size != labels.size:
        raise DataError(f"{batches.size} batch labels for {labels.size} cells.")
    return pd.crosstab(
        pd.Series(labels.values, name="cluster"), pd.Series(batches, name="batch")
    )


def centroid_distances(embedding: Embedding, batches: Any, groups: Any) -> pd.Series:
    """Mean distance between batch centroids of every group.

    For each group (e.g. a known cell type) the centroid of its cells is
    computed per batch, and the mean pairwise distance between those
    centroids is reported. Groups present in fewer than two batches are
    omitted.
    """
    b = _q(batches)
    g = _q(groups)
    if b.size != embedding.n_cells or g.size != embedding.n_cells:
        raise DataError("batches and groups need one entry per cell.")
    out = {}
    for group in np.unique(g):
        in_group = g == group
        centroids = [
            embedding.coords[in_group & (b == batch)].mean(0)
            for batch in np.unique(b[in_group])
        ]
        if len(centroids) < 2:
            continue
        dists = [np.linalg.norm(c1 - c2) for c1, c2 in itertools.combinations(centroids, 2)]
        out[group] = float(np.mean(dists))
    return pd.Series(out, name="centroid_distance", dtype=np.float64)
