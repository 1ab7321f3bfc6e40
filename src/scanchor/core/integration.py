"""Anchor-based batch correction."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, NamedTuple

import numpy as np
import pandas as pd
import scipy.sparse as sp
from scipy.spatial.distance import cdist

from scanchor._constants import DEFAULT_CHUNK_SIZE, DISTANCE_EPS
from scanchor._logging import log_progress, logger
from scanchor.core.anchors import AnchorFinder
from scanchor.core.types import AnchorSet, Dataset, Embedding, IntegrationResult
from scanchor.exceptions import DataError, DimensionMismatch
from scanchor.utils import check_cancelled, chunk_bounds, to_dense

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from scanchor.config import AnchorConfig, IntegrationConfig
    from scanchor.utils import CancellationToken


class CorrectionField(NamedTuple):
    """Per-cell correction vectors and the kernel weight supporting them."""

    vectors: NDArray[np.float64]
    support: NDArray[np.float64]


def anchor_weights(
    points: NDArray[np.float64],
    anchor_points: NDArray[np.float64],
    scores: NDArray[np.float64],
    config: IntegrationConfig,
    kernel: str = "gaussian",
) -> sp.csr_matrix:
    """Sparse cell x anchor weight matrix of the local anchor window.

    Every cell keeps its ``k_weight`` nearest anchors (by distance to the
    anchor's query-side cell) that lie within ``config.radius``.

    Parameters
    ----------
    points : ndarray
        Query cell coordinates.
    anchor_points : ndarray
        Coordinates of the query-side cell of every anchor.
    scores : ndarray
        Anchor consistency scores.
    config : IntegrationConfig
        Window and bandwidth.
    kernel : str, optional
        'gaussian' for ``score * exp(-d^2 / 2h^2)``, 'inverse' for
        ``score / d``.
    """
    n, n_anchors = points.shape[0], anchor_points.shape[0]
    D = cdist(points, anchor_points)
    k = min(config.k_weight, n_anchors)
    if k < n_anchors:
        idx = np.argpartition(D, k - 1, axis=1)[:, :k]
    else:
        idx = np.tile(np.arange(n_anchors), (n, 1))
    d = np.take_along_axis(D, idx, axis=1)
    inside = d <= config.radius

    if kernel == "gaussian":
        w = scores[idx] * np.exp(-(d**2) / (2 * config.bandwidth**2))
    elif kernel == "inverse":
        w = scores[idx] / (d + DISTANCE_EPS)
    else:
        raise ValueError(f"Unknown kernel {kernel!r}.")
    w[~inside] = 0

    rows = np.repeat(np.arange(n), k)
    W = sp.csr_matrix((w.ravel(), (rows, idx.ravel())), shape=(n, n_anchors))
    W.eliminate_zeros()
    return W


def correction_field(
    points: NDArray[np.float64],
    anchor_points: NDArray[np.float64],
    diffs: NDArray[np.float64],
    scores: NDArray[np.float64],
    config: IntegrationConfig,
    token: CancellationToken | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> CorrectionField:
    """Kernel-weighted average of anchor difference vectors.

    ``correction = sum(w * diff) / (sum(w) + prior_weight)``; cells without
    any anchor inside the window get an exact zero vector.
    """
    n = points.shape[0]
    vectors = np.zeros((n, diffs.shape[1]))
    support = np.zeros(n)
    for start, stop in chunk_bounds(n, chunk_size):
        check_cancelled(token, "correction")
        W = anchor_weights(points[start:stop], anchor_points, scores, config)
        s = np.asarray(W.sum(1)).ravel()
        denom = s + config.prior_weight
        denom[denom == 0] = 1
        vectors[start:stop] = np.asarray(W @ diffs) / denom[:, None]
        support[start:stop] = s
        log_progress("Correction field", stop, n)
    return CorrectionField(vectors, support)


def _check_anchor_sides(anchors: AnchorSet, a_ids: NDArray, b_ids: NDArray) -> None:
    if not (np.array_equal(anchors.a_ids, a_ids) and np.array_equal(anchors.b_ids, b_ids)):
        raise DataError(
            f"Anchors between {anchors.a_name!r} and {anchors.b_name!r} were computed "
            "on different cells."
        )


def _merge_order(embeddings: Sequence[Embedding]) -> list[int]:
    """Largest dataset first, ties by insertion order."""
    return sorted(range(len(embeddings)), key=lambda i: (-embeddings[i].n_cells, i))


class IntegrationTransform:
    """Correct query datasets onto a reference using anchors.

    Parameters
    ----------
    config : IntegrationConfig
        Kernel bandwidth, anchor window and shrinkage.
    anchor_config : AnchorConfig, optional
        Required by :meth:`integrate`, which finds its own anchors.

    Example
    -------
    >>> transform = IntegrationTransform(IntegrationConfig(bandwidth=1.0),
    ...                                  AnchorConfig(score_threshold=0.2))
    >>> result = transform.integrate(embeddings)
    >>> result.merged.coords.shape
    """

    def __init__(
        self,
        config: IntegrationConfig,
        anchor_config: AnchorConfig | None = None,
    ) -> None:
        self.config = config
        self.anchor_config = anchor_config

    def field(
        self,
        reference: Embedding,
        query: Embedding,
        anchors: AnchorSet,
        token: CancellationToken | None = None,
    ) -> CorrectionField:
        """Correction vectors moving ``query`` onto ``reference``."""
        reference.check_comparable(query)
        if anchors.basis_id and anchors.basis_id != reference.basis_id:
            raise DimensionMismatch(
                f"Anchors were found in basis {anchors.basis_id}, embeddings use "
                f"{reference.basis_id}."
            )
        anchors = anchors.oriented(reference.name, query.name)
        _check_anchor_sides(anchors, reference.cell_ids, query.cell_ids)

        diffs = reference.coords[anchors.a_index] - query.coords[anchors.b_index]
        return correction_field(
            query.coords,
            query.coords[anchors.b_index],
            diffs,
            anchors.scores,
            self.config,
            token=token,
        )

    def correct(
        self,
        reference: Embedding,
        query: Embedding,
        anchors: AnchorSet,
        token: CancellationToken | None = None,
    ) -> IntegrationResult:
        """Correct one query embedding onto one reference.

        Parameters
        ----------
        reference, query : Embedding
            Raw (unaligned) embeddings in the same basis.
        anchors : AnchorSet
            Anchors between the two, in either orientation.

        Returns
        -------
        IntegrationResult
            The reference is returned unchanged; the query is corrected.
        """
        corr = self.field(reference, query, anchors, token=token)
        corrected = query.with_coords(query.coords + corr.vectors)
        return self._result(
            [reference, query],
            {reference.name: reference, query.name: corrected},
            {query.name: corr},
            [reference.name, query.name],
            [anchors.oriented(reference.name, query.name)],
        )

    def correct_expression(
        self,
        reference: Dataset,
        query: Dataset,
        anchors: AnchorSet,
        query_embedding: Embedding,
        token: CancellationToken | None = None,
    ) -> Dataset:
        """Correct the query expression matrix onto the reference.

        Difference vectors are taken in feature space; anchor weights come
        from distances in ``query_embedding``.

        Returns
        -------
        Dataset
            A new dataset with the corrected (dense) expression matrix.
        """
        if reference.n_features != query.n_features:
            raise DimensionMismatch(
                f"Dataset {reference.name!r} has {reference.n_features} features, "
                f"{query.name!r} has {query.n_features}."
            )
        if query_embedding.n_cells != query.n_cells:
            raise DataError(
                f"Embedding has {query_embedding.n_cells} cells, dataset {query.name!r} "
                f"has {query.n_cells}."
            )
        anchors = anchors.oriented(reference.name, query.name)
        _check_anchor_sides(anchors, reference.cell_ids, query.cell_ids)

        X_ref = reference.X[anchors.a_index]
        X_q = query.X[anchors.b_index]
        diffs = to_dense(X_ref) - to_dense(X_q)
        corr = correction_field(
            query_embedding.coords,
            query_embedding.coords[anchors.b_index],
            diffs,
            anchors.scores,
            self.config,
            token=token,
        )
        return Dataset(
            name=query.name,
            X=to_dense(query.X) + corr.vectors,
            cell_ids=query.cell_ids,
            features=query.features,
            obs=query.obs,
        )

    def integrate(
        self,
        embeddings: Sequence[Embedding],
        token: CancellationToken | None = None,
    ) -> IntegrationResult:
        """Integrate two or more datasets by iterative merging.

        Datasets are merged largest first (ties by input order). Each step
        finds anchors between the combined reference and the next dataset
        (mean-aligned first when ``AnchorConfig.align`` is set), corrects
        the dataset onto the reference and appends it. The merge order
        changes the result and is logged and returned.

        Raises
        ------
        NoAnchorsFound
            If any merge step finds no anchors.
        """
        if self.anchor_config is None:
            raise ValueError("integrate() needs an AnchorConfig.")
        if len(embeddings) < 2:
            raise DataError("Integration needs at least two datasets.")
        names = [e.name for e in embeddings]
        if len(set(names)) != len(names):
            raise DataError(f"Dataset names must be unique, got {names}.")
        for other in embeddings[1:]:
            embeddings[0].check_comparable(other)

        start_time = time.time()
        order = _merge_order(embeddings)
        merge_order = [names[i] for i in order]
        logger.info("Merge order: %s", " -> ".join(merge_order))

        finder = AnchorFinder(self.anchor_config)
        first = embeddings[order[0]]
        corrected = {first.name: first}
        fields: dict[str, CorrectionField] = {}
        anchor_sets = []
        combined = first
        for step, i in enumerate(order[1:], start=1):
            check_cancelled(token, "integration")
            query = embeddings[i]
            reference = combined
            anchors = finder.find(*finder.search_space(reference, query), token=token)
            corr = self.field(reference, query, anchors, token=token)
            fields[query.name] = corr
            anchor_sets.append(anchors)
            corrected[query.name] = query.with_coords(query.coords + corr.vectors)
            combined = Embedding.concatenate(
                [combined, corrected[query.name]], name="+".join(merge_order[: step + 1])
            )
            logger.info(
                "Merged %s onto %s using %d anchors.", query.name, reference.name, len(anchors)
            )

        result = self._result(embeddings, corrected, fields, merge_order, anchor_sets)
        logger.info("Integration finished in %.2f s.", time.time() - start_time)
        return result

    def _result(
        self,
        embeddings: Sequence[Embedding],
        corrected: dict[str, Embedding],
        fields: dict[str, CorrectionField],
        merge_order: list[str],
        anchor_sets: list[AnchorSet],
    ) -> IntegrationResult:
        """Assemble per-cell outputs in input order."""
        parts = [corrected[e.name] for e in embeddings]
        merged = Embedding.concatenate(parts, name="integrated")
        index = pd.MultiIndex.from_arrays(
            [
                np.concatenate([[e.name] * e.n_cells for e in embeddings]),
                merged.cell_ids,
            ],
            names=["batch", "cell"],
        )
        support = np.concatenate(
            [
                fields[e.name].support if e.name in fields else np.full(e.n_cells, np.nan)
                for e in embeddings
            ]
        )
        norms = np.concatenate(
            [
                np.linalg.norm(fields[e.name].vectors, axis=1)
                if e.name in fields
                else np.zeros(e.n_cells)
                for e in embeddings
            ]
        )
        low = ~np.isnan(support) & (support < self.config.min_support)
        n_low = int(low.sum())
        if n_low:
            logger.info("%d query cells have little anchor support.", n_low)
        return IntegrationResult(
            corrected={e.name: corrected[e.name] for e in embeddings},
            merged=merged,
            support=pd.Series(support, index=index, name="support"),
            low_confidence=pd.Series(low, index=index, name="low_confidence"),
            correction_norm=pd.Series(norms, index=index, name="correction_norm"),
            merge_order=merge_order,
            anchors=anchor_sets,
        )
