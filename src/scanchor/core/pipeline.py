"""End-to-end integration, clustering and annotation."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from scanchor._logging import logger
from scanchor.core.anchors import AnchorFinder
from scanchor.core.clustering import CommunityDetector
from scanchor.core.integration import IntegrationTransform
from scanchor.core.neighbors import NeighborGraphBuilder
from scanchor.core.projection import FeatureProjector
from scanchor.core.transfer import LabelTransferEngine
from scanchor.core.types import Embedding
from scanchor.utils import check_cancelled

if TYPE_CHECKING:
    from collections.abc import Sequence

    import scipy.sparse as sp

    from scanchor.config import PipelineConfig
    from scanchor.core.types import (
        Basis,
        ClusterAssignment,
        Dataset,
        IntegrationResult,
        LabelTransferResult,
    )
    from scanchor.utils import CancellationToken


@dataclass(frozen=True, eq=False)
class PipelineResult:
    """Everything produced by one :meth:`IntegrationPipeline.run` call."""

    basis: Basis
    embeddings: list[Embedding]
    integration: IntegrationResult | None
    snn: sp.csr_matrix
    clusters: ClusterAssignment


class IntegrationPipeline:
    """Project, integrate and cluster a list of datasets.

    Parameters
    ----------
    config : PipelineConfig
        Settings of every stage.

    Example
    -------
    >>> config = PipelineConfig(
    ...     anchors=AnchorConfig(score_threshold=0.2),
    ...     integration=IntegrationConfig(bandwidth=2.0),
    ... )
    >>> result = IntegrationPipeline(config).run([batch1, batch2])
    >>> result.clusters.labels.value_counts()
    """

    def __init__(self, config: PipelineConfig) -> None:
        self.config = config
        self.projector = FeatureProjector(n_components=config.n_components, scale=config.scale)
        self.builder = NeighborGraphBuilder(config.neighbors)

    def _cluster(
        self,
        embedding: Embedding,
        index: pd.Index,
        token: CancellationToken | None,
    ) -> tuple[sp.csr_matrix, ClusterAssignment]:
        graph = self.builder.knn(embedding, self.config.k_snn, token=token)
        snn = self.builder.snn(graph, self.config.snn_prune)
        clusters = CommunityDetector(self.config.clustering).run(snn, ids=index, token=token)
        return snn, clusters

    @staticmethod
    def _index(embeddings: Sequence[Embedding]) -> pd.MultiIndex:
        return pd.MultiIndex.from_arrays(
            [
                np.concatenate([[e.name] * e.n_cells for e in embeddings]),
                np.concatenate([e.cell_ids for e in embeddings]),
            ],
            names=["batch", "cell"],
        )

    def run(
        self,
        datasets: Sequence[Dataset],
        token: CancellationToken | None = None,
    ) -> PipelineResult:
        """Integrate ``datasets`` and cluster the corrected embedding.

        Raises
        ------
        NoAnchorsFound
            If a merge step finds no anchors. :meth:`cluster` still works on
            the same input.
        """
        start_time = time.time()
        basis, embeddings = self.projector.project(datasets, token=token)
        check_cancelled(token, "pipeline")

        transform = IntegrationTransform(self.config.integration, self.config.anchors)
        integration = transform.integrate(embeddings, token=token)
        snn, clusters = self._cluster(integration.merged, integration.support.index, token)

        logger.info("Pipeline finished in %.2f s.", time.time() - start_time)
        return PipelineResult(
            basis=basis,
            embeddings=embeddings,
            integration=integration,
            snn=snn,
            clusters=clusters,
        )

    def cluster(
        self,
        datasets: Sequence[Dataset],
        token: CancellationToken | None = None,
    ) -> PipelineResult:
        """Cluster ``datasets`` in the shared basis without batch correction."""
        start_time = time.time()
        basis, embeddings = self.projector.project(datasets, token=token)
        merged = Embedding.concatenate(embeddings, name="pooled")
        snn, clusters = self._cluster(merged, self._index(embeddings), token)
        logger.info("Clustering finished in %.2f s.", time.time() - start_time)
        return PipelineResult(
            basis=basis,
            embeddings=embeddings,
            integration=None,
            snn=snn,
            clusters=clusters,
        )

    def annotate(
        self,
        reference: Dataset,
        query: Dataset,
        label_key: str,
        token: CancellationToken | None = None,
    ) -> LabelTransferResult:
        """Transfer the ``label_key`` annotation of ``reference`` onto ``query``."""
        labels = reference.labels(label_key)
        _, (ref_emb, query_emb) = self.projector.project([reference, query], token=token)
        finder = AnchorFinder(self.config.anchors)
        ref_search, query_search = finder.search_space(ref_emb, query_emb)
        anchors = finder.find(ref_search, query_search, token=token)
        engine = LabelTransferEngine(self.config.integration)
        return engine.transfer(labels, anchors, query_search, token=token)
