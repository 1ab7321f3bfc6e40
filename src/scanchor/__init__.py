"""scanchor: anchor-based integration and clustering of single-cell batches.

scanchor projects normalized expression matrices from several sequencing
batches into a shared basis, finds mutual-nearest-neighbor anchors between
them, removes batch effects with a smooth anchor-weighted correction, and
clusters the corrected cells by modularity optimization. The same anchors
transfer cell-type labels from an annotated reference to a query.

Example
-------
>>> from scanchor import (AnchorConfig, Dataset, IntegrationConfig,
...                       IntegrationPipeline, PipelineConfig)
>>> config = PipelineConfig(
...     anchors=AnchorConfig(score_threshold=0.2),
...     integration=IntegrationConfig(bandwidth=2.0),
... )
>>> result = IntegrationPipeline(config).run([Dataset("b1", X1), Dataset("b2", X2)])
>>> result.clusters.labels
"""

from __future__ import annotations

__version__ = "0.1.0"

# Configuration
from scanchor.config import (
    AnchorConfig,
    ClusteringConfig,
    IntegrationConfig,
    NeighborConfig,
    PipelineConfig,
)

# Core imports
from scanchor.core import (
    Anchor,
    AnchorFinder,
    AnchorSet,
    Basis,
    ClusterAssignment,
    CommunityDetector,
    Dataset,
    Embedding,
    FeatureProjector,
    IntegrationPipeline,
    IntegrationResult,
    IntegrationTransform,
    LabelTransferEngine,
    LabelTransferResult,
    NeighborGraph,
    NeighborGraphBuilder,
    PipelineResult,
)

# Analysis imports
from scanchor.analysis import (
    batch_alignment_scores,
    centroid_distances,
    cluster_composition,
)

# Utilities
from scanchor._logging import setup_logging
from scanchor.utils import CancellationToken

__all__ = [
    # Version
    "__version__",
    # Configuration
    "AnchorConfig",
    "ClusteringConfig",
    "IntegrationConfig",
    "NeighborConfig",
    "PipelineConfig",
    # Core
    "Anchor",
    "AnchorFinder",
    "AnchorSet",
    "Basis",
    "ClusterAssignment",
    "CommunityDetector",
    "Dataset",
    "Embedding",
    "FeatureProjector",
    "IntegrationPipeline",
    "IntegrationResult",
    "IntegrationTransform",
    "LabelTransferEngine",
    "LabelTransferResult",
    "NeighborGraph",
    "NeighborGraphBuilder",
    "PipelineResult",
    # Analysis
    "batch_alignment_scores",
    "centroid_distances",
    "cluster_composition",
    # Utilities
    "CancellationToken",
    "setup_logging",
]
