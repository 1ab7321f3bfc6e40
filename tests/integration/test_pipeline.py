"""End-to-end tests of the integrate, cluster and annotate pipeline."""

from __future__ import annotations

import dataclasses

import numpy as np
import pandas as pd
import pytest
from sklearn.metrics import adjusted_rand_score

from scanchor import (
    AnchorConfig,
    ClusteringConfig,
    Dataset,
    Embedding,
    IntegrationConfig,
    IntegrationPipeline,
    PipelineConfig,
    batch_alignment_scores,
    cluster_composition,
)
from scanchor._constants import UNASSIGNED
from scanchor.exceptions import Cancelled, NoAnchorsFound
from scanchor.utils import CancellationToken


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig(
        anchors=AnchorConfig(score_threshold=0.1, k_anchor=5, k_filter=20),
        integration=IntegrationConfig(bandwidth=3.0, k_weight=50),
        clustering=ClusteringConfig(resolution=0.5, seed=0),
        n_components=10,
        k_snn=15,
    )


def _cell_types(datasets: list[Dataset]) -> np.ndarray:
    return np.concatenate([ds.labels("cell_type").values for ds in datasets])


def _batches(datasets: list[Dataset]) -> list[str]:
    return [ds.name for ds in datasets for _ in range(ds.n_cells)]


class TestRun:
    """Tests for IntegrationPipeline.run."""

    def test_clusters_follow_cell_types(
        self, expression_batches: list[Dataset], config: PipelineConfig
    ) -> None:
        """Test that corrected clusters recover cell types across batches."""
        result = IntegrationPipeline(config).run(expression_batches)
        labels = result.clusters.labels
        assert len(labels) == 300
        assert labels.index.names == ["batch", "cell"]
        assert adjusted_rand_score(_cell_types(expression_batches), labels.values) > 0.5

        table = cluster_composition(result.clusters)
        largest = table.loc[table.sum(1).idxmax()]
        assert (largest > 0).all()

    def test_correction_improves_mixing(
        self, expression_batches: list[Dataset], config: PipelineConfig
    ) -> None:
        """Test that batches share more neighbors after correction."""
        pipeline = IntegrationPipeline(config)
        raw = pipeline.cluster(expression_batches)
        corrected = pipeline.run(expression_batches)
        batches = _batches(expression_batches)

        before = batch_alignment_scores(Embedding.concatenate(raw.embeddings, "raw"), batches, k=10)
        after = batch_alignment_scores(corrected.integration.merged, batches, k=10)
        assert after.loc["b2", "b1"] > before.loc["b2", "b1"]
        assert raw.integration is None
        assert corrected.integration.merge_order == ["b1", "b2"]

    def test_snn_matches_cell_count(
        self, expression_batches: list[Dataset], config: PipelineConfig
    ) -> None:
        """Test the SNN graph returned with the clusters."""
        result = IntegrationPipeline(config).run(expression_batches)
        assert result.snn.shape == (300, 300)
        assert result.snn.diagonal().sum() == 0

    def test_no_anchors_falls_back_to_cluster(self, rng: np.random.Generator) -> None:
        """Test that unrelated datasets fail to integrate but still cluster."""
        genes = [f"g{i}" for i in range(10)]
        a = Dataset("a", rng.normal(size=(40, 10)), features=genes)
        b_X = np.vstack([rng.normal(size=(20, 10)) - 60, rng.normal(size=(20, 10)) + 60])
        b = Dataset("b", b_X, features=genes)
        config = PipelineConfig(
            anchors=AnchorConfig(score_threshold=0.1, k_anchor=5, k_filter=10),
            integration=IntegrationConfig(bandwidth=1.0),
            n_components=3,
            scale=False,
            k_snn=5,
        )
        pipeline = IntegrationPipeline(config)
        with pytest.raises(NoAnchorsFound):
            pipeline.run([a, b])
        result = pipeline.cluster([a, b])
        assert len(result.clusters.labels) == 80

    def test_unaligned_offset_datasets(self, rng: np.random.Generator) -> None:
        """Test that shifted unrelated datasets find no anchors without alignment."""
        genes = [f"g{i}" for i in range(10)]
        a = Dataset("a", rng.normal(size=(40, 10)), features=genes)
        b = Dataset("b", rng.normal(size=(40, 10)) + 60, features=genes)
        config = PipelineConfig(
            anchors=AnchorConfig(score_threshold=0.1, k_anchor=5, k_filter=10, align=False),
            integration=IntegrationConfig(bandwidth=1.0),
            n_components=3,
            scale=False,
            k_snn=5,
        )
        with pytest.raises(NoAnchorsFound):
            IntegrationPipeline(config).run([a, b])

    def test_cancelled(self, expression_batches: list[Dataset], config: PipelineConfig) -> None:
        """Test that a cancelled token stops the pipeline."""
        token = CancellationToken()
        token.cancel()
        with pytest.raises(Cancelled):
            IntegrationPipeline(config).run(expression_batches, token=token)


class TestAnnotate:
    """Tests for IntegrationPipeline.annotate."""

    def test_transfers_cell_types(
        self, expression_batches: list[Dataset], config: PipelineConfig
    ) -> None:
        """Test that reference cell types are recovered on the query."""
        reference, query = expression_batches
        result = IntegrationPipeline(config).annotate(reference, query, "cell_type")
        pred = result.predictions
        assert list(pred.index) == list(query.cell_ids)

        truth = query.labels("cell_type")
        assigned = pred["predicted_label"] != UNASSIGNED
        assert assigned.mean() > 0.5
        accuracy = (pred.loc[assigned, "predicted_label"] == truth[assigned]).mean()
        assert accuracy > 0.8
        assert pred["confidence"].between(0, 1).all()

    def test_unaligned_offset_reference(self, rng: np.random.Generator) -> None:
        """Test that annotation honors the alignment switch."""
        genes = [f"g{i}" for i in range(10)]
        obs = pd.DataFrame({"cell_type": ["T"] * 40})
        base = rng.normal(size=(40, 10))
        reference = Dataset("ref", base, features=genes, obs=obs)
        query = Dataset("query", base + rng.normal(scale=0.05, size=base.shape) + 60, features=genes)
        anchors = AnchorConfig(score_threshold=0.1, k_anchor=5, k_filter=10, align=False)
        config = PipelineConfig(
            anchors=anchors,
            integration=IntegrationConfig(bandwidth=1.0),
            n_components=3,
            scale=False,
        )
        with pytest.raises(NoAnchorsFound):
            IntegrationPipeline(config).annotate(reference, query, "cell_type")

        aligned = dataclasses.replace(config, anchors=dataclasses.replace(anchors, align=True))
        result = IntegrationPipeline(aligned).annotate(reference, query, "cell_type")
        assert (result.predictions["predicted_label"] == "T").all()
