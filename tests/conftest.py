"""Shared pytest fixtures for scanchor tests."""

from __future__ import annotations

import numpy as np
import pytest
from fixtures.synthetic_data import (
    generate_cliques,
    generate_expression_batches,
    generate_gaussian_batches,
)

from scanchor import AnchorConfig, Embedding, IntegrationConfig


@pytest.fixture
def rng() -> np.random.Generator:
    """Reproducible random number generator."""
    return np.random.default_rng(42)


@pytest.fixture
def gaussian_batches() -> dict[str, np.ndarray]:
    """Three 2-D clusters in two batches of 100 points, batch B shifted."""
    a, ga, b, gb = generate_gaussian_batches()
    return {"a": a, "groups_a": ga, "b": b, "groups_b": gb}


@pytest.fixture
def raw_embeddings(gaussian_batches: dict[str, np.ndarray]) -> tuple[Embedding, Embedding]:
    """The Gaussian batches as unaligned embeddings in one basis."""
    a = Embedding.from_array(gaussian_batches["a"], name="A", basis_id="xy")
    b = Embedding.from_array(gaussian_batches["b"], name="B", basis_id="xy")
    return a, b


@pytest.fixture
def anchor_config() -> AnchorConfig:
    """Anchor settings sized for 100-point batches."""
    return AnchorConfig(score_threshold=0.1, k_anchor=5, k_filter=10)


@pytest.fixture
def integration_config() -> IntegrationConfig:
    """Kernel settings sized for unit-variance clusters."""
    return IntegrationConfig(bandwidth=2.0, k_weight=50)


@pytest.fixture
def expression_batches() -> list:
    """Two log-normalized batches of three cell types."""
    return generate_expression_batches()


@pytest.fixture
def two_cliques():
    """Two disjoint 10-node cliques."""
    return generate_cliques(n_cliques=2, size=10)


@pytest.fixture
def clique_ring():
    """Six 5-node cliques joined in a ring by single edges."""
    return generate_cliques(n_cliques=6, size=5, ring=True)
