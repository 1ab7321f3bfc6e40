"""Per-call configuration for scanchor stages.

Every stage takes an explicit, immutable configuration object. There is no
process-wide configuration. The anchor score threshold and the correction
kernel bandwidth have no default and must be chosen for the data at hand.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from scanchor._constants import (
    DEFAULT_APPROX_THRESHOLD,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_K_ANCHOR,
    DEFAULT_K_FILTER,
    DEFAULT_K_NEIGHBORS,
    DEFAULT_K_WEIGHT,
    DEFAULT_MAX_PASSES,
    DEFAULT_MAX_SWEEPS,
    DEFAULT_MIN_RECALL,
    DEFAULT_MIN_SUPPORT,
    DEFAULT_N_COMPONENTS,
    DEFAULT_OVERLAP_THRESHOLD,
    DEFAULT_PRIOR_WEIGHT,
    DEFAULT_RECALL_SAMPLE,
    DEFAULT_RESOLUTION,
    DEFAULT_SEED,
    DEFAULT_SNN_PRUNE,
    DEFAULT_WINDOW,
    HNSW_EF,
    HNSW_M,
)

ALGORITHMS = ("louvain", "leiden")


def _positive_int(name: str, value: int) -> None:
    if int(value) != value or value < 1:
        raise ValueError(f"{name} must be a positive integer, got {value!r}.")


@dataclass(frozen=True)
class NeighborConfig:
    """Configuration for nearest-neighbor search.

    Attributes
    ----------
    exact : bool or None
        Brute-force search if True, HNSW if False. None picks exact search
        below ``approx_threshold`` reference points.
    approx_threshold : int
        Reference size from which auto mode switches to HNSW.
    ef : int
        HNSW construction and query breadth. Larger is slower with higher recall.
    M : int
        HNSW graph degree.
    chunk_size : int
        Query points processed between cancellation checks.
    min_recall : float
        Lowest acceptable HNSW recall, measured against exact search on a
        seeded sample of query points. Below it the search is redone
        exactly. 0 disables the check.
    recall_sample : int
        Number of query points in that sample.
    """

    exact: bool | None = None
    approx_threshold: int = DEFAULT_APPROX_THRESHOLD
    ef: int = HNSW_EF
    M: int = HNSW_M
    chunk_size: int = DEFAULT_CHUNK_SIZE
    min_recall: float = DEFAULT_MIN_RECALL
    recall_sample: int = DEFAULT_RECALL_SAMPLE

    def __post_init__(self) -> None:
        _positive_int("approx_threshold", self.approx_threshold)
        _positive_int("ef", self.ef)
        _positive_int("M", self.M)
        _positive_int("chunk_size", self.chunk_size)
        _positive_int("recall_sample", self.recall_sample)
        if not 0.0 <= self.min_recall <= 1.0:
            raise ValueError(f"min_recall must lie in [0, 1], got {self.min_recall}.")

    def use_exact(self, n_reference: int) -> bool:
        if self.exact is None:
            return n_reference < self.approx_threshold
        return self.exact


@dataclass(frozen=True)
class AnchorConfig:
    """Configuration for anchor discovery.

    Attributes
    ----------
    score_threshold : float
        Anchors with a consistency score below this value are dropped.
    k_anchor : int
        Cross-dataset neighbors searched for mutual pairs.
    k_filter : int
        Within-dataset neighborhood used for filtering and scoring.
    overlap_threshold : float
        A neighbor counts as consistent when the fraction of its mutual
        partners near the anchor's partner exceeds this value.
    neighbors : NeighborConfig
        Search settings.
    align : bool
        Remove each dataset's own mean before searching, so that a global
        batch offset does not hide shared structure. Two unrelated datasets
        then always overlap in the searched space. Turn off to require that
        the datasets already overlap where they share cell states.
    """

    score_threshold: float
    k_anchor: int = DEFAULT_K_ANCHOR
    k_filter: int = DEFAULT_K_FILTER
    overlap_threshold: float = DEFAULT_OVERLAP_THRESHOLD
    neighbors: NeighborConfig = field(default_factory=NeighborConfig)
    align: bool = True

    def __post_init__(self) -> None:
        if not 0.0 <= self.score_threshold <= 1.0:
            raise ValueError(f"score_threshold must lie in [0, 1], got {self.score_threshold}.")
        if not 0.0 <= self.overlap_threshold < 1.0:
            raise ValueError(
                f"overlap_threshold must lie in [0, 1), got {self.overlap_threshold}."
            )
        _positive_int("k_anchor", self.k_anchor)
        _positive_int("k_filter", self.k_filter)


@dataclass(frozen=True)
class IntegrationConfig:
    """Configuration for the anchor-based correction field.

    Attributes
    ----------
    bandwidth : float
        Standard deviation of the Gaussian kernel, in embedding units.
    k_weight : int
        Maximum number of nearby anchors contributing to a cell.
    window : float
        Anchors farther than ``window * bandwidth`` do not contribute.
    prior_weight : float
        Pseudo-weight of a zero correction; shrinks the correction of
        cells with little anchor support towards zero.
    min_support : float
        Cells whose summed kernel weight is below this are low-confidence.
    """

    bandwidth: float
    k_weight: int = DEFAULT_K_WEIGHT
    window: float = DEFAULT_WINDOW
    prior_weight: float = DEFAULT_PRIOR_WEIGHT
    min_support: float = DEFAULT_MIN_SUPPORT

    def __post_init__(self) -> None:
        if not self.bandwidth > 0:
            raise ValueError(f"bandwidth must be positive, got {self.bandwidth}.")
        if not self.window > 0:
            raise ValueError(f"window must be positive, got {self.window}.")
        if self.prior_weight < 0:
            raise ValueError(f"prior_weight must be non-negative, got {self.prior_weight}.")
        if self.min_support < 0:
            raise ValueError(f"min_support must be non-negative, got {self.min_support}.")
        _positive_int("k_weight", self.k_weight)

    @property
    def radius(self) -> float:
        return self.window * self.bandwidth


@dataclass(frozen=True)
class ClusteringConfig:
    """Configuration for community detection.

    Attributes
    ----------
    resolution : float
        Modularity resolution. Higher values give more, smaller clusters.
    seed : int
        Seed for tie-breaking among equal-gain moves.
    max_passes : int
        Maximum number of local-move/aggregate rounds.
    max_sweeps : int
        Maximum node sweeps within one local-move phase.
    algorithm : str
        'louvain' or 'leiden'.
    """

    resolution: float = DEFAULT_RESOLUTION
    seed: int = DEFAULT_SEED
    max_passes: int = DEFAULT_MAX_PASSES
    max_sweeps: int = DEFAULT_MAX_SWEEPS
    algorithm: str = "louvain"

    def __post_init__(self) -> None:
        if not self.resolution > 0:
            raise ValueError(f"resolution must be positive, got {self.resolution}.")
        _positive_int("max_passes", self.max_passes)
        _positive_int("max_sweeps", self.max_sweeps)
        if self.algorithm not in ALGORITHMS:
            raise ValueError(f"algorithm must be one of {ALGORITHMS}, got {self.algorithm!r}.")


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for the full integrate-then-cluster pipeline."""

    anchors: AnchorConfig
    integration: IntegrationConfig
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    neighbors: NeighborConfig = field(default_factory=NeighborConfig)
    n_components: int = DEFAULT_N_COMPONENTS
    scale: bool = True
    k_snn: int = DEFAULT_K_NEIGHBORS
    snn_prune: float = DEFAULT_SNN_PRUNE

    def __post_init__(self) -> None:
        _positive_int("n_components", self.n_components)
        _positive_int("k_snn", self.k_snn)
        if not 0.0 <= self.snn_prune < 1.0:
            raise ValueError(f"snn_prune must lie in [0, 1), got {self.snn_prune}.")
