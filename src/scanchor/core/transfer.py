"""Propagate reference labels to query cells through anchors."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
import scipy.sparse as sp

from scanchor._constants import DEFAULT_CHUNK_SIZE, UNASSIGNED
from scanchor._logging import log_progress, logger
from scanchor.core.integration import anchor_weights
from scanchor.core.types import AnchorSet, Embedding, LabelTransferResult
from scanchor.exceptions import DataError
from scanchor.utils import check_cancelled, chunk_bounds

if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import Any

    from numpy.typing import NDArray

    from scanchor.config import IntegrationConfig
    from scanchor.utils import CancellationToken


def label_order(labels: pd.Series) -> list[Any]:
    """Canonical label ordering used to break ties.

    Categorical labels keep their category order; anything else is sorted
    by string value. Missing values are excluded.
    """
    if isinstance(labels.dtype, pd.CategoricalDtype):
        return list(labels.cat.categories)
    uniq = pd.unique(labels.dropna())
    return sorted(uniq, key=str)


def _reference_labels(labels: pd.Series | Sequence[Any], anchors: AnchorSet) -> pd.Series:
    """Labels aligned to the A side (reference) of ``anchors``."""
    if isinstance(labels, pd.Series):
        ids = pd.Index(anchors.a_ids)
        if labels.index.equals(ids):
            return labels
        missing = ids.difference(labels.index)
        if len(missing):
            raise DataError(f"{len(missing)} reference cells have no label entry.")
        return labels.reindex(ids)
    values = list(labels)
    if len(values) != anchors.a_ids.size:
        raise DataError(f"{len(values)} labels for {anchors.a_ids.size} reference cells.")
    return pd.Series(values, index=pd.Index(anchors.a_ids))


class LabelTransferEngine:
    """Predict query labels by weighted votes of nearby anchors.

    Every anchor inside a query cell's window (the same window used for
    batch correction) votes for the label of its reference cell with weight
    ``score / distance``. The winning label's vote share is the confidence.
    Ties go to the label that comes first in :func:`label_order`. Cells
    with no anchor in the window are ``UNASSIGNED`` with confidence 0.

    Parameters
    ----------
    config : IntegrationConfig
        Defines the anchor window (``k_weight``, ``window * bandwidth``).
    """

    def __init__(self, config: IntegrationConfig) -> None:
        self.config = config

    def transfer(
        self,
        reference_labels: pd.Series | Sequence[Any],
        anchors: AnchorSet,
        query: Embedding,
        token: CancellationToken | None = None,
    ) -> LabelTransferResult:
        """Transfer labels onto ``query``.

        Parameters
        ----------
        reference_labels : pd.Series or sequence
            Label per reference cell: a Series indexed by reference cell id,
            or a sequence in reference cell order.
        anchors : AnchorSet
            Anchors between the reference and ``query`` (either orientation).
        query : Embedding
            Query cells; distances to anchors are measured here.
        token : CancellationToken, optional
            Checked between chunks of query cells.
        """
        if anchors.b_name != query.name and anchors.a_name == query.name:
            anchors = anchors.swapped()
        if anchors.b_name != query.name or not np.array_equal(anchors.b_ids, query.cell_ids):
            raise DataError(f"Anchors do not relate to query {query.name!r}.")

        labels = _reference_labels(reference_labels, anchors)
        order = label_order(labels)
        if len(order) == 0:
            raise DataError("Reference has no labels to transfer.")
        code_of = {lab: i for i, lab in enumerate(order)}
        codes = np.array(
            [code_of.get(lab, -1) if not pd.isna(lab) else -1 for lab in labels],
            dtype=np.int64,
        )
        anchor_codes = codes[anchors.a_index]
        voting = anchor_codes >= 0
        onehot = sp.csr_matrix(
            (
                np.ones(int(voting.sum())),
                (np.flatnonzero(voting), anchor_codes[voting]),
            ),
            shape=(len(anchors), len(order)),
        )

        n = query.n_cells
        votes = np.zeros((n, len(order)))
        anchor_points = query.coords[anchors.b_index]
        for start, stop in chunk_bounds(n, DEFAULT_CHUNK_SIZE):
            check_cancelled(token, "label transfer")
            W = anchor_weights(
                query.coords[start:stop], anchor_points, anchors.scores, self.config, kernel="inverse"
            )
            votes[start:stop] = np.asarray((W @ onehot).todense())
            log_progress("Label voting", stop, n)

        total = votes.sum(1)
        assigned = total > 0
        shares = np.zeros_like(votes)
        shares[assigned] = votes[assigned] / total[assigned, None]
        winner = np.argmax(shares, axis=1)

        predicted = np.array([order[w] for w in winner], dtype=object)
        predicted[~assigned] = UNASSIGNED
        confidence = np.where(assigned, shares[np.arange(n), winner], 0.0)

        index = pd.Index(query.cell_ids, name="cell")
        predictions = pd.DataFrame(
            {"predicted_label": predicted, "confidence": confidence}, index=index
        )
        scores = pd.DataFrame(shares, index=index, columns=[str(lab) for lab in order])
        logger.info(
            "Transferred labels to %d of %d %s cells.", int(assigned.sum()), n, query.name
        )
        return LabelTransferResult(predictions=predictions, scores=scores)
