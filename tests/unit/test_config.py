"""Unit tests for scanchor.config module."""

from __future__ import annotations

import dataclasses

import pytest

from scanchor.config import (
    AnchorConfig,
    ClusteringConfig,
    IntegrationConfig,
    NeighborConfig,
    PipelineConfig,
)


class TestNeighborConfig:
    """Tests for NeighborConfig."""

    def test_auto_mode_switches_on_size(self) -> None:
        """Test that auto mode uses exact search below the threshold."""
        config = NeighborConfig(approx_threshold=100)
        assert config.use_exact(99)
        assert not config.use_exact(100)

    def test_forced_mode(self) -> None:
        """Test that an explicit choice wins."""
        assert not NeighborConfig(exact=False).use_exact(10)
        assert NeighborConfig(exact=True).use_exact(10**9)

    def test_rejects_bad_ef(self) -> None:
        """Test validation of HNSW parameters."""
        with pytest.raises(ValueError):
            NeighborConfig(ef=0)

    @pytest.mark.parametrize("min_recall", [-0.1, 1.1])
    def test_min_recall_range(self, min_recall: float) -> None:
        """Test that recall bounds outside [0, 1] are rejected."""
        with pytest.raises(ValueError):
            NeighborConfig(min_recall=min_recall)

    def test_recall_sample_positive(self) -> None:
        """Test that the recall sample needs at least one point."""
        with pytest.raises(ValueError):
            NeighborConfig(recall_sample=0)
        assert NeighborConfig().min_recall == 0.9


class TestAnchorConfig:
    """Tests for AnchorConfig."""

    def test_threshold_required(self) -> None:
        """Test that the score threshold has no default."""
        with pytest.raises(TypeError):
            AnchorConfig()  # type: ignore[call-arg]

    @pytest.mark.parametrize("threshold", [-0.1, 1.5])
    def test_threshold_range(self, threshold: float) -> None:
        """Test that thresholds outside [0, 1] are rejected."""
        with pytest.raises(ValueError):
            AnchorConfig(score_threshold=threshold)

    def test_aligns_by_default(self) -> None:
        """Test that anchors are searched on mean-aligned embeddings unless disabled."""
        assert AnchorConfig(score_threshold=0.2).align
        assert not AnchorConfig(score_threshold=0.2, align=False).align

    def test_overlap_threshold_range(self) -> None:
        """Test that an overlap threshold of 1 is rejected."""
        with pytest.raises(ValueError):
            AnchorConfig(score_threshold=0.2, overlap_threshold=1.0)

    def test_frozen(self) -> None:
        """Test that configs are immutable."""
        config = AnchorConfig(score_threshold=0.2)
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.k_anchor = 10  # type: ignore[misc]


class TestIntegrationConfig:
    """Tests for IntegrationConfig."""

    def test_bandwidth_required(self) -> None:
        """Test that the bandwidth has no default."""
        with pytest.raises(TypeError):
            IntegrationConfig()  # type: ignore[call-arg]

    def test_bandwidth_positive(self) -> None:
        """Test that a zero bandwidth is rejected."""
        with pytest.raises(ValueError):
            IntegrationConfig(bandwidth=0.0)

    def test_radius(self) -> None:
        """Test that the window radius is window times bandwidth."""
        assert IntegrationConfig(bandwidth=2.0, window=3.0).radius == 6.0


class TestClusteringConfig:
    """Tests for ClusteringConfig."""

    def test_unknown_algorithm(self) -> None:
        """Test that only known algorithms are accepted."""
        with pytest.raises(ValueError):
            ClusteringConfig(algorithm="spectral")

    def test_resolution_positive(self) -> None:
        """Test that resolution must be positive."""
        with pytest.raises(ValueError):
            ClusteringConfig(resolution=0)


class TestPipelineConfig:
    """Tests for PipelineConfig."""

    def test_defaults(self) -> None:
        """Test nested defaults."""
        config = PipelineConfig(
            anchors=AnchorConfig(score_threshold=0.1),
            integration=IntegrationConfig(bandwidth=1.0),
        )
        assert config.clustering.algorithm == "louvain"
        assert config.scale

    def test_prune_range(self) -> None:
        """Test that the SNN prune threshold must lie in [0, 1)."""
        with pytest.raises(ValueError):
            PipelineConfig(
                anchors=AnchorConfig(score_threshold=0.1),
                integration=IntegrationConfig(bandwidth=1.0),
                snn_prune=1.0,
            )
