"""Immutable value types passed between scanchor stages."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, NamedTuple

import numpy as np
import pandas as pd
import scipy.sparse as sp

from scanchor.exceptions import DataError, DimensionMismatch
from scanchor.utils import _q, frozen_array

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from typing import Any

    from numpy.typing import NDArray


@dataclass(frozen=True, eq=False)
class Dataset:
    """A batch of cells sharing one feature space.

    Parameters
    ----------
    name : str
        Batch label.
    X : ndarray or scipy.sparse matrix
        Normalized expression, cells x features.
    cell_ids : sequence of str, optional
        Unique cell identifiers. Defaults to ``"<name>_<i>"``.
    features : sequence of str, optional
        Gene vocabulary, one name per column.
    obs : pd.DataFrame, optional
        Per-cell metadata, one row per cell.
    """

    name: str
    X: Any
    cell_ids: NDArray[Any] = None  # type: ignore[assignment]
    features: NDArray[Any] | None = None
    obs: pd.DataFrame | None = None

    def __post_init__(self) -> None:
        X = frozen_array(self.X, dtype=np.float64)
        if X.ndim != 2:
            raise DataError(f"Dataset {self.name!r}: X must be two-dimensional.")
        n = X.shape[0]
        if self.cell_ids is None:
            cell_ids = np.array([f"{self.name}_{i}" for i in range(n)], dtype=object)
        else:
            cell_ids = _q(self.cell_ids).astype(str).astype(object)
        if cell_ids.size != n:
            raise DataError(
                f"Dataset {self.name!r}: {cell_ids.size} cell ids for {n} cells."
            )
        if pd.Index(cell_ids).has_duplicates:
            raise DataError(f"Dataset {self.name!r}: cell ids must be unique.")
        cell_ids.setflags(write=False)

        features = self.features
        if features is not None:
            features = _q(features).astype(str).astype(object)
            if features.size != X.shape[1]:
                raise DataError(
                    f"Dataset {self.name!r}: {features.size} feature names for "
                    f"{X.shape[1]} columns."
                )
            features.setflags(write=False)

        obs = self.obs
        if obs is not None:
            if obs.shape[0] != n:
                raise DataError(f"Dataset {self.name!r}: obs has {obs.shape[0]} rows, expected {n}.")
            obs = obs.copy()
            obs.index = pd.Index(cell_ids)

        object.__setattr__(self, "X", X)
        object.__setattr__(self, "cell_ids", cell_ids)
        object.__setattr__(self, "features", features)
        object.__setattr__(self, "obs", obs)

    @property
    def n_cells(self) -> int:
        return self.X.shape[0]

    @property
    def n_features(self) -> int:
        return self.X.shape[1]

    def labels(self, key: str) -> pd.Series:
        """Return the metadata column ``key`` indexed by cell id."""
        if self.obs is None or key not in self.obs.columns:
            raise DataError(f"Dataset {self.name!r} has no metadata column {key!r}.")
        return self.obs[key].copy()

    @classmethod
    def from_anndata(cls, adata: Any, name: str, layer: str | None = None) -> Dataset:
        """Build a Dataset from an AnnData object without modifying it.

        Parameters
        ----------
        adata : anndata.AnnData
            Normalized, feature-selected data.
        name : str
            Batch label.
        layer : str, optional
            Layer to read instead of ``adata.X``.
        """
        X = adata.X if layer is None else adata.layers[layer]
        return cls(
            name=name,
            X=X,
            cell_ids=_q(adata.obs_names),
            features=_q(adata.var_names),
            obs=adata.obs.copy(),
        )


@dataclass(frozen=True, eq=False)
class Basis:
    """Shared linear projection from feature space to k dimensions."""

    loadings: NDArray[np.float64]
    center: NDArray[np.float64]
    scale: NDArray[np.float64]
    singular_values: NDArray[np.float64] | None = None
    features: NDArray[Any] | None = None
    basis_id: str = ""

    def __post_init__(self) -> None:
        loadings = frozen_array(self.loadings, dtype=np.float64)
        g = loadings.shape[0]
        center = frozen_array(self.center, dtype=np.float64)
        scale = frozen_array(self.scale, dtype=np.float64)
        if center.shape != (g,) or scale.shape != (g,):
            raise DimensionMismatch(
                f"Basis center/scale must have shape ({g},), got {center.shape} and {scale.shape}."
            )
        object.__setattr__(self, "loadings", loadings)
        object.__setattr__(self, "center", center)
        object.__setattr__(self, "scale", scale)
        if self.singular_values is not None:
            object.__setattr__(
                self, "singular_values", frozen_array(self.singular_values, dtype=np.float64)
            )
        if not self.basis_id:
            digest = hashlib.sha1()
            for arr in (loadings, center, scale):
                digest.update(np.ascontiguousarray(arr).tobytes())
            object.__setattr__(self, "basis_id", digest.hexdigest()[:16])

    @property
    def n_features(self) -> int:
        return self.loadings.shape[0]

    @property
    def n_components(self) -> int:
        return self.loadings.shape[1]

    @classmethod
    def identity(cls, n_features: int) -> Basis:
        """Basis that leaves coordinates unchanged."""
        return cls(
            loadings=np.eye(n_features),
            center=np.zeros(n_features),
            scale=np.ones(n_features),
            basis_id=f"identity{n_features}",
        )


@dataclass(frozen=True, eq=False)
class Embedding:
    """Cells of one dataset expressed in a shared basis."""

    coords: NDArray[np.float64]
    cell_ids: NDArray[Any]
    name: str
    basis_id: str
    aligned: bool = False

    def __post_init__(self) -> None:
        coords = frozen_array(self.coords, dtype=np.float64)
        if coords.ndim != 2:
            raise DataError(f"Embedding {self.name!r}: coords must be two-dimensional.")
        cell_ids = _q(self.cell_ids).astype(str).astype(object)
        if cell_ids.size != coords.shape[0]:
            raise DataError(
                f"Embedding {self.name!r}: {cell_ids.size} cell ids for {coords.shape[0]} rows."
            )
        cell_ids.setflags(write=False)
        object.__setattr__(self, "coords", coords)
        object.__setattr__(self, "cell_ids", cell_ids)

    @property
    def n_cells(self) -> int:
        return self.coords.shape[0]

    @property
    def n_dims(self) -> int:
        return self.coords.shape[1]

    def check_comparable(self, other: Embedding) -> None:
        """Raise ``DimensionMismatch`` unless both embeddings share a space."""
        if self.basis_id != other.basis_id or self.aligned != other.aligned:
            raise DimensionMismatch(
                f"Embeddings {self.name!r} and {other.name!r} do not share a basis "
                f"({self.basis_id}{'/aligned' * self.aligned} vs "
                f"{other.basis_id}{'/aligned' * other.aligned})."
            )
        if self.n_dims != other.n_dims:
            raise DimensionMismatch(
                f"Embeddings {self.name!r} and {other.name!r} have {self.n_dims} and "
                f"{other.n_dims} dimensions."
            )

    def with_coords(self, coords: NDArray[np.float64], aligned: bool | None = None) -> Embedding:
        """New embedding of the same cells with different coordinates."""
        return Embedding(
            coords=coords,
            cell_ids=self.cell_ids,
            name=self.name,
            basis_id=self.basis_id,
            aligned=self.aligned if aligned is None else aligned,
        )

    @classmethod
    def from_array(
        cls,
        coords: Any,
        cell_ids: Sequence[str] | None = None,
        name: str = "embedding",
        basis_id: str = "precomputed",
    ) -> Embedding:
        """Wrap precomputed coordinates."""
        coords = np.asarray(coords, dtype=np.float64)
        if cell_ids is None:
            cell_ids = [f"{name}_{i}" for i in range(coords.shape[0])]
        return cls(coords=coords, cell_ids=_q(cell_ids), name=name, basis_id=basis_id)

    @classmethod
    def concatenate(cls, embeddings: Sequence[Embedding], name: str) -> Embedding:
        """Stack comparable embeddings into one."""
        first = embeddings[0]
        for other in embeddings[1:]:
            first.check_comparable(other)
        return cls(
            coords=np.vstack([e.coords for e in embeddings]),
            cell_ids=np.concatenate([e.cell_ids for e in embeddings]),
            name=name,
            basis_id=first.basis_id,
            aligned=first.aligned,
        )


@dataclass(frozen=True, eq=False)
class NeighborGraph:
    """k nearest neighbors of a set of query points.

    ``indices[i]`` lists the neighbors of query point ``i`` in the reference
    set, nearest first. For a within-set graph the reference is the query
    set itself and ``within`` is True (points are never their own neighbor).
    """

    indices: NDArray[np.int64]
    distances: NDArray[np.float64]
    n_reference: int
    exact: bool = True
    within: bool = False

    def __post_init__(self) -> None:
        indices = frozen_array(self.indices, dtype=np.int64)
        distances = frozen_array(self.distances, dtype=np.float64)
        if indices.shape != distances.shape or indices.ndim != 2:
            raise DataError(
                f"Neighbor indices {indices.shape} and distances {distances.shape} disagree."
            )
        object.__setattr__(self, "indices", indices)
        object.__setattr__(self, "distances", distances)

    @property
    def k(self) -> int:
        return self.indices.shape[1]

    @property
    def n_query(self) -> int:
        return self.indices.shape[0]

    def to_sparse(self, weighted: bool = False) -> sp.csr_matrix:
        """Adjacency as a CSR matrix (n_query x n_reference).

        Parameters
        ----------
        weighted : bool, optional
            Store distances instead of ones. Zero distances are stored as a
            tiny positive value so the edge is not dropped.
        """
        rows = np.repeat(np.arange(self.n_query), self.k)
        cols = self.indices.ravel()
        if weighted:
            data = np.maximum(self.distances.ravel(), np.finfo(np.float64).tiny)
        else:
            data = np.ones(rows.size)
        return sp.csr_matrix((data, (rows, cols)), shape=(self.n_query, self.n_reference))


class Anchor(NamedTuple):
    """A mutual nearest-neighbor pair between datasets A and B."""

    a_index: int
    b_index: int
    a_id: str
    b_id: str
    score: float


@dataclass(frozen=True, eq=False)
class AnchorSet:
    """Scored anchors between datasets ``a_name`` and ``b_name``.

    Anchors are stored as parallel arrays sorted by ``(a_index, b_index)``.
    """

    a_name: str
    b_name: str
    a_index: NDArray[np.int64]
    b_index: NDArray[np.int64]
    scores: NDArray[np.float64]
    a_ids: NDArray[Any]
    b_ids: NDArray[Any]
    basis_id: str = ""

    def __post_init__(self) -> None:
        a_index = np.asarray(self.a_index, dtype=np.int64)
        b_index = np.asarray(self.b_index, dtype=np.int64)
        scores = np.asarray(self.scores, dtype=np.float64)
        if not (a_index.shape == b_index.shape == scores.shape) or a_index.ndim != 1:
            raise DataError("Anchor index and score arrays must be 1-D and equally long.")
        a_ids = _q(self.a_ids).astype(str).astype(object)
        b_ids = _q(self.b_ids).astype(str).astype(object)
        if a_index.size and (a_index.max() >= a_ids.size or b_index.max() >= b_ids.size):
            raise DataError("Anchor index out of range of the cell ids.")
        if scores.size and (scores.min() < 0 or scores.max() > 1):
            raise DataError("Anchor scores must lie in [0, 1].")
        order = np.lexsort((b_index, a_index))
        object.__setattr__(self, "a_index", frozen_array(a_index[order]))
        object.__setattr__(self, "b_index", frozen_array(b_index[order]))
        object.__setattr__(self, "scores", frozen_array(scores[order]))
        object.__setattr__(self, "a_ids", frozen_array(a_ids))
        object.__setattr__(self, "b_ids", frozen_array(b_ids))

    def __len__(self) -> int:
        return int(self.a_index.size)

    def __iter__(self) -> Iterator[Anchor]:
        for i, j, s in zip(self.a_index, self.b_index, self.scores):
            yield Anchor(int(i), int(j), str(self.a_ids[i]), str(self.b_ids[j]), float(s))

    def swapped(self) -> AnchorSet:
        """Same anchors with datasets A and B exchanged."""
        return AnchorSet(
            a_name=self.b_name,
            b_name=self.a_name,
            a_index=self.b_index,
            b_index=self.a_index,
            scores=self.scores,
            a_ids=self.b_ids,
            b_ids=self.a_ids,
            basis_id=self.basis_id,
        )

    def oriented(self, a_name: str, b_name: str) -> AnchorSet:
        """Return the anchors with ``a_name`` on side A, swapping if needed."""
        if (self.a_name, self.b_name) == (a_name, b_name):
            return self
        if (self.a_name, self.b_name) == (b_name, a_name):
            return self.swapped()
        raise DataError(
            f"Anchors relate {self.a_name!r} and {self.b_name!r}, not {a_name!r} and {b_name!r}."
        )

    def to_frame(self) -> pd.DataFrame:
        """Anchors as a DataFrame with one row per pair."""
        return pd.DataFrame(
            {
                f"{self.a_name}_cell": self.a_ids[self.a_index],
                f"{self.b_name}_cell": self.b_ids[self.b_index],
                "a_index": self.a_index,
                "b_index": self.b_index,
                "score": self.scores,
            }
        )


@dataclass(frozen=True, eq=False)
class ClusterAssignment:
    """Cluster ids per cell from one community-detection run.

    Ids are opaque: they are not comparable across runs with different
    resolution or seed.
    """

    labels: pd.Series
    resolution: float
    seed: int
    modularity: float
    n_levels: int
    algorithm: str = "louvain"

    @property
    def n_clusters(self) -> int:
        return int(self.labels.nunique())

    def sizes(self) -> pd.Series:
        return self.labels.value_counts().sort_index()


@dataclass(frozen=True, eq=False)
class IntegrationResult:
    """Output of batch correction over two or more datasets."""

    corrected: dict[str, Embedding]
    merged: Embedding
    support: pd.Series
    low_confidence: pd.Series
    correction_norm: pd.Series
    merge_order: list[str]
    anchors: list[AnchorSet] = field(default_factory=list)


@dataclass(frozen=True, eq=False)
class LabelTransferResult:
    """Predicted labels for query cells.

    ``predictions`` has columns ``predicted_label`` and ``confidence``;
    ``scores`` holds the vote share of every reference label.
    """

    predictions: pd.DataFrame
    scores: pd.DataFrame
