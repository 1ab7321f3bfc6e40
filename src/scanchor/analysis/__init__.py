"""Analysis functions for scanchor."""

from __future__ import annotations

from scanchor.analysis.metrics import (
    batch_alignment_scores,
    centroid_distances,
    cluster_composition,
)

__all__ = [
    "batch_alignment_scores",
    "centroid_distances",
    "cluster_composition",
]
