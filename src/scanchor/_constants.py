"""Constants used throughout scanchor."""

from __future__ import annotations

# Projection parameters
DEFAULT_N_COMPONENTS: int = 30
RANDOMIZED_SVD_THRESHOLD: int = 5000
RANDOMIZED_SVD_N_ITER: int = 7
RANDOMIZED_SVD_SEED: int = 0

# Neighbor search parameters
DEFAULT_K_NEIGHBORS: int = 20
DEFAULT_APPROX_THRESHOLD: int = 20000
DEFAULT_CHUNK_SIZE: int = 2048
HNSW_EF: int = 200
HNSW_M: int = 48
DEFAULT_SNN_PRUNE: float = 1 / 15
DEFAULT_MIN_RECALL: float = 0.9
DEFAULT_RECALL_SAMPLE: int = 500
RECALL_SEED: int = 0

# Anchor parameters
DEFAULT_K_ANCHOR: int = 5
DEFAULT_K_FILTER: int = 30
DEFAULT_OVERLAP_THRESHOLD: float = 0.0
SCORE_CHUNK_SIZE: int = 50000

# Integration parameters
DEFAULT_K_WEIGHT: int = 100
DEFAULT_WINDOW: float = 3.0
DEFAULT_PRIOR_WEIGHT: float = 0.1
DEFAULT_MIN_SUPPORT: float = 1e-3

# Label transfer
UNASSIGNED: str = "UNASSIGNED"
DISTANCE_EPS: float = 1e-8

# Clustering parameters
DEFAULT_RESOLUTION: float = 0.8
DEFAULT_SEED: int = 0
DEFAULT_MAX_PASSES: int = 10
DEFAULT_MAX_SWEEPS: int = 100
MODULARITY_TOL: float = 1e-10
