"""Unit tests for scanchor.core.transfer module."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from scanchor._constants import UNASSIGNED
from scanchor.config import IntegrationConfig
from scanchor.core.transfer import LabelTransferEngine, label_order
from scanchor.core.types import AnchorSet, Embedding
from scanchor.exceptions import DataError


@pytest.fixture
def reference_ids() -> list[str]:
    return [f"r{i:03d}" for i in range(100)]


@pytest.fixture
def reference_labels(reference_ids: list[str]) -> pd.Series:
    """The first half of the reference is 'X', the second half 'Y'."""
    return pd.Series(["X"] * 50 + ["Y"] * 50, index=reference_ids)


def _anchors(a_index, b_index, scores, reference_ids, query: Embedding) -> AnchorSet:
    return AnchorSet(
        a_name="ref",
        b_name=query.name,
        a_index=a_index,
        b_index=b_index,
        scores=scores,
        a_ids=reference_ids,
        b_ids=query.cell_ids,
    )


class TestLabelOrder:
    """Tests for label_order function."""

    def test_sorted_strings(self) -> None:
        """Test that plain labels are sorted."""
        assert label_order(pd.Series(["b", "a", "c", "a"])) == ["a", "b", "c"]

    def test_categorical_order(self) -> None:
        """Test that categories keep their declared order."""
        labels = pd.Series(pd.Categorical(["X", "Y"], categories=["Y", "X"]))
        assert label_order(labels) == ["Y", "X"]


class TestLabelTransferEngine:
    """Tests for LabelTransferEngine."""

    def test_single_label_neighborhood(self, reference_ids, reference_labels) -> None:
        """Test that cells seeing only 'X' anchors get 'X' with full confidence."""
        coords = np.vstack([np.random.default_rng(0).normal(size=(10, 2)) * 0.3, [[100.0, 100.0]]])
        query = Embedding.from_array(coords, name="query", basis_id="x")
        anchors = _anchors(range(10), range(10), [0.8] * 10, reference_ids, query)

        result = LabelTransferEngine(IntegrationConfig(bandwidth=1.0)).transfer(
            reference_labels, anchors, query
        )
        pred = result.predictions
        assert list(pred.index) == list(query.cell_ids)
        assert (pred["predicted_label"].iloc[:10] == "X").all()
        np.testing.assert_allclose(pred["confidence"].iloc[:10], 1.0)
        assert pred["predicted_label"].iloc[10] == UNASSIGNED
        assert pred["confidence"].iloc[10] == 0.0
        assert list(result.scores.columns) == ["X", "Y"]
        np.testing.assert_allclose(result.scores.iloc[10], 0.0)

    def test_tie_goes_to_first_label(self, reference_ids, reference_labels) -> None:
        """Test that an exact tie is resolved by label order."""
        query = Embedding.from_array([[-1.0, 0.0], [1.0, 0.0], [0.0, 0.0]], name="query", basis_id="x")
        anchors = _anchors([0, 60], [0, 1], [1.0, 1.0], reference_ids, query)
        result = LabelTransferEngine(IntegrationConfig(bandwidth=1.0)).transfer(
            reference_labels, anchors, query
        )
        pred = result.predictions
        assert pred["predicted_label"].iloc[2] == "X"
        assert pred["confidence"].iloc[2] == pytest.approx(0.5)
        assert pred["predicted_label"].iloc[0] == "X"
        assert pred["predicted_label"].iloc[1] == "Y"

        categorical = reference_labels.astype(pd.CategoricalDtype(["Y", "X"]))
        result = LabelTransferEngine(IntegrationConfig(bandwidth=1.0)).transfer(
            categorical, anchors, query
        )
        assert result.predictions["predicted_label"].iloc[2] == "Y"

    def test_confidence_is_vote_share(self, reference_ids, reference_labels) -> None:
        """Test that the confidence equals the winning weighted vote share."""
        query = Embedding.from_array([[0.0, 0.0], [50.0, 50.0]], name="query", basis_id="x")
        # anchors sit on the two query cells; cell 0 sees two X votes and one Y vote
        anchors = _anchors([0, 1, 70], [0, 0, 0], [1.0, 0.5, 0.5], reference_ids, query)
        result = LabelTransferEngine(IntegrationConfig(bandwidth=1.0)).transfer(
            reference_labels, anchors, query
        )
        assert result.predictions["predicted_label"].iloc[0] == "X"
        assert result.predictions["confidence"].iloc[0] == pytest.approx(0.75)
        np.testing.assert_allclose(result.scores.iloc[0].sum(), 1.0)

    def test_labels_as_sequence(self, reference_ids, reference_labels) -> None:
        """Test that labels can be given in reference order."""
        query = Embedding.from_array([[0.0, 0.0], [0.5, 0.0]], name="query", basis_id="x")
        anchors = _anchors([55], [0], [1.0], reference_ids, query)
        result = LabelTransferEngine(IntegrationConfig(bandwidth=1.0)).transfer(
            list(reference_labels), anchors, query
        )
        assert (result.predictions["predicted_label"] == "Y").all()

    def test_swapped_anchors(self, reference_ids, reference_labels) -> None:
        """Test that anchors with the query on side A are accepted."""
        query = Embedding.from_array([[0.0, 0.0], [0.5, 0.0]], name="query", basis_id="x")
        anchors = _anchors([3], [1], [1.0], reference_ids, query).swapped()
        result = LabelTransferEngine(IntegrationConfig(bandwidth=1.0)).transfer(
            reference_labels, anchors, query
        )
        assert (result.predictions["predicted_label"] == "X").all()

    def test_missing_reference_labels(self, reference_ids, reference_labels) -> None:
        """Test that every reference cell needs a label entry."""
        query = Embedding.from_array([[0.0, 0.0], [0.5, 0.0]], name="query", basis_id="x")
        anchors = _anchors([3], [1], [1.0], reference_ids, query)
        with pytest.raises(DataError):
            LabelTransferEngine(IntegrationConfig(bandwidth=1.0)).transfer(
                reference_labels.iloc[:10], anchors, query
            )
        with pytest.raises(DataError):
            LabelTransferEngine(IntegrationConfig(bandwidth=1.0)).transfer(
                ["X", "Y"], anchors, query
            )

    def test_unrelated_query(self, reference_ids, reference_labels) -> None:
        """Test that anchors of another query are rejected."""
        query = Embedding.from_array([[0.0, 0.0], [0.5, 0.0]], name="query", basis_id="x")
        other = Embedding.from_array([[0.0, 0.0], [0.5, 0.0]], name="other", basis_id="x")
        anchors = _anchors([3], [1], [1.0], reference_ids, query)
        with pytest.raises(DataError):
            LabelTransferEngine(IntegrationConfig(bandwidth=1.0)).transfer(
                reference_labels, anchors, other
            )
