"""Core integration and clustering stages."""

from __future__ import annotations

from scanchor.core.anchors import AnchorFinder
from scanchor.core.clustering import (
    CommunityDetector,
    CommunityStrategy,
    LeidenStrategy,
    LouvainStrategy,
    modularity,
)
from scanchor.core.integration import IntegrationTransform
from scanchor.core.neighbors import NeighborGraphBuilder
from scanchor.core.pipeline import IntegrationPipeline, PipelineResult
from scanchor.core.projection import FeatureProjector
from scanchor.core.transfer import LabelTransferEngine
from scanchor.core.types import (
    Anchor,
    AnchorSet,
    Basis,
    ClusterAssignment,
    Dataset,
    Embedding,
    IntegrationResult,
    LabelTransferResult,
    NeighborGraph,
)

__all__ = [
    "Anchor",
    "AnchorFinder",
    "AnchorSet",
    "Basis",
    "ClusterAssignment",
    "CommunityDetector",
    "CommunityStrategy",
    "Dataset",
    "Embedding",
    "FeatureProjector",
    "IntegrationPipeline",
    "IntegrationResult",
    "IntegrationTransform",
    "LabelTransferEngine",
    "LabelTransferResult",
    "LeidenStrategy",
    "LouvainStrategy",
    "NeighborGraph",
    "NeighborGraphBuilder",
    "PipelineResult",
    "modularity",
]
