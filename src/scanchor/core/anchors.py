"""Mutual-nearest-neighbor anchors between two datasets."""

from __future__ import annotations

import warnings
from typing import TYPE_CHECKING

import numpy as np
import scipy.sparse as sp
from numba import njit, prange
from numba.core.errors import NumbaPerformanceWarning

from scanchor._constants import SCORE_CHUNK_SIZE
from scanchor._logging import log_progress, logger
from scanchor.core.neighbors import NeighborGraphBuilder
from scanchor.core.projection import FeatureProjector
from scanchor.core.types import AnchorSet, Embedding
from scanchor.exceptions import NoAnchorsFound
from scanchor.utils import check_cancelled, chunk_bounds

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from scanchor.config import AnchorConfig
    from scanchor.utils import CancellationToken

warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)


@njit(parallel=True, nogil=True)
def _consistency_kernel(
    cand_a: NDArray[np.int64],
    cand_b: NDArray[np.int64],
    nn_a: NDArray[np.int64],
    nn_b: NDArray[np.int64],
    p_indptr: NDArray[np.int32],
    p_indices: NDArray[np.int32],
    overlap_thr: float,
) -> NDArray[np.float64]:
    """Fraction of a's neighbors whose mutual partners land near b."""
    n = cand_a.size
    kf = nn_a.shape[1]
    kb = nn_b.shape[1]
    out = np.zeros(n)
    for c in prange(n):
        a = cand_a[c]
        b = cand_b[c]
        count = 0
        for t in range(kf):
            a2 = nn_a[a, t]
            lo = p_indptr[a2]
            hi = p_indptr[a2 + 1]
            if hi == lo:
                continue
            hits = 0
            for p in range(lo, hi):
                bp = p_indices[p]
                if bp == b:
                    hits += 1
                    continue
                for u in range(kb):
                    if nn_b[b, u] == bp:
                        hits += 1
                        break
            if hits / (hi - lo) > overlap_thr:
                count += 1
        out[c] = count / kf
    return out


def _mutual_pairs(
    ab: sp.csr_matrix, ba: sp.csr_matrix
) -> tuple[NDArray[np.int64], NDArray[np.int64]]:
    """Pairs present in both the A->B and the transposed B->A adjacency."""
    both = ab.multiply(ba.T).tocsr()
    both.eliminate_zeros()
    x, y = both.nonzero()
    order = np.lexsort((y, x))
    return x[order].astype(np.int64), y[order].astype(np.int64)


def _keep_best_per_cell(
    key: NDArray[np.int64], partner: NDArray[np.int64], scores: NDArray[np.float64]
) -> NDArray[np.int64]:
    """Positions of the best-scoring pair of every key cell.

    Ties go to the partner with the lower position.
    """
    order = np.lexsort((partner, -scores, key))
    _, first = np.unique(key[order], return_index=True)
    return np.sort(order[first])


class AnchorFinder:
    """Find scored anchors between two embedded datasets.

    An anchor is a pair of cells, one per dataset, that are mutual nearest
    neighbors in the shared embedding. Candidates are filtered for
    structural overlap, scored for local consistency, thresholded, and
    finally limited to one anchor per cell of the smaller dataset.

    Parameters
    ----------
    config : AnchorConfig
        Neighborhood sizes and thresholds.

    Example
    -------
    >>> finder = AnchorFinder(AnchorConfig(score_threshold=0.2))
    >>> anchors = finder.find(aligned_ref, aligned_query)
    >>> anchors.to_frame().head()
    """

    def __init__(self, config: AnchorConfig) -> None:
        self.config = config
        self.builder = NeighborGraphBuilder(config.neighbors)

    def search_space(self, a: Embedding, b: Embedding) -> tuple[Embedding, Embedding]:
        """The two embeddings as anchors are searched between them.

        Mean-aligned copies when ``config.align`` is set, else the inputs.
        """
        if self.config.align:
            a, b = FeatureProjector.align([a, b])
        return a, b

    def find(
        self,
        a: Embedding,
        b: Embedding,
        token: CancellationToken | None = None,
    ) -> AnchorSet:
        """Anchors between datasets ``a`` and ``b``.

        Parameters
        ----------
        a, b : Embedding
            Comparable embeddings, typically aligned with
            :meth:`FeatureProjector.align`.
        token : CancellationToken, optional
            Checked between search and scoring chunks.

        Returns
        -------
        AnchorSet
            Anchors sorted by (position in a, position in b).

        Raises
        ------
        DimensionMismatch
            If the embeddings are not comparable.
        InsufficientPoints
            If a dataset is too small for ``k_anchor`` or ``k_filter``.
        NoAnchorsFound
            If no candidate survives.
        """
        cfg = self.config
        a.check_comparable(b)
        n_a, n_b = a.n_cells, b.n_cells

        ab = self.builder.cross_knn(a, b, cfg.k_anchor, token=token)
        ba = self.builder.cross_knn(b, a, cfg.k_anchor, token=token)
        cand_a, cand_b = _mutual_pairs(ab.to_sparse(), ba.to_sparse())
        logger.info(
            "Found %d mutual nearest-neighbor pairs between %s and %s.",
            cand_a.size,
            a.name,
            b.name,
        )
        if cand_a.size == 0:
            raise NoAnchorsFound(f"No mutual nearest neighbors between {a.name!r} and {b.name!r}.")

        union = Embedding.concatenate([a, b], name=f"{a.name}+{b.name}")
        U = self.builder.knn(union, cfg.k_filter, token=token).to_sparse()
        a_sees_b = np.asarray(U[cand_a, n_a + cand_b]).ravel() > 0
        b_sees_a = np.asarray(U[n_a + cand_b, cand_a]).ravel() > 0
        keep = a_sees_b | b_sees_a
        cand_a, cand_b = cand_a[keep], cand_b[keep]
        logger.info("%d pairs overlap structurally.", cand_a.size)
        if cand_a.size == 0:
            raise NoAnchorsFound(
                f"Datasets {a.name!r} and {b.name!r} share no neighborhood structure."
            )

        nn_a = self.builder.knn(a, cfg.k_filter, token=token).indices
        nn_b = self.builder.knn(b, cfg.k_filter, token=token).indices
        partners = sp.csr_matrix(
            (np.ones(cand_a.size), (cand_a, cand_b)), shape=(n_a, n_b)
        )
        p_indptr = partners.indptr.astype(np.int32)
        p_indices = partners.indices.astype(np.int32)

        scores = np.empty(cand_a.size)
        for start, stop in chunk_bounds(cand_a.size, SCORE_CHUNK_SIZE):
            check_cancelled(token, "anchor scoring")
            scores[start:stop] = _consistency_kernel(
                cand_a[start:stop],
                cand_b[start:stop],
                np.ascontiguousarray(nn_a),
                np.ascontiguousarray(nn_b),
                p_indptr,
                p_indices,
                float(cfg.overlap_threshold),
            )
            log_progress("Anchor scoring", stop, cand_a.size)

        passed = scores >= cfg.score_threshold
        cand_a, cand_b, scores = cand_a[passed], cand_b[passed], scores[passed]
        logger.info(
            "%d pairs score at least %.3f.", cand_a.size, cfg.score_threshold
        )
        if cand_a.size == 0:
            raise NoAnchorsFound(
                f"No anchor between {a.name!r} and {b.name!r} reaches score "
                f"{cfg.score_threshold}."
            )

        if n_a <= n_b:
            sel = _keep_best_per_cell(cand_a, cand_b, scores)
        else:
            sel = _keep_best_per_cell(cand_b, cand_a, scores)

        anchors = AnchorSet(
            a_name=a.name,
            b_name=b.name,
            a_index=cand_a[sel],
            b_index=cand_b[sel],
            scores=scores[sel],
            a_ids=a.cell_ids,
            b_ids=b.cell_ids,
            basis_id=a.basis_id,
        )
        logger.info("Kept %d anchors between %s and %s.", len(anchors), a.name, b.name)
        return anchors
