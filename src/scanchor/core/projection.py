"""Shared low-dimensional projection of expression matrices."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from scipy import linalg
from sklearn.utils.extmath import randomized_svd

from scanchor._constants import (
    DEFAULT_N_COMPONENTS,
    RANDOMIZED_SVD_N_ITER,
    RANDOMIZED_SVD_SEED,
    RANDOMIZED_SVD_THRESHOLD,
)
from scanchor._logging import logger
from scanchor.core.types import Basis, Dataset, Embedding
from scanchor.exceptions import DataError, DegenerateInput, DimensionMismatch
from scanchor.utils import check_cancelled, to_dense

if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import Any

    from numpy.typing import NDArray

    from scanchor.utils import CancellationToken


def _check_feature_spaces(datasets: Sequence[Dataset]) -> None:
    """Raise DimensionMismatch unless all datasets share one feature space."""
    first = datasets[0]
    for ds in datasets[1:]:
        if ds.n_features != first.n_features:
            raise DimensionMismatch(
                f"Dataset {ds.name!r} has {ds.n_features} features, "
                f"{first.name!r} has {first.n_features}."
            )
        if (
            first.features is not None
            and ds.features is not None
            and not np.array_equal(first.features, ds.features)
        ):
            raise DimensionMismatch(
                f"Datasets {first.name!r} and {ds.name!r} use different gene vocabularies."
            )


def _svd_flip(vt: NDArray[np.float64]) -> NDArray[np.float64]:
    """Make the largest-magnitude loading of every component positive."""
    idx = np.argmax(np.abs(vt), axis=1)
    signs = np.sign(vt[np.arange(vt.shape[0]), idx])
    signs[signs == 0] = 1
    return vt * signs[:, None]


class FeatureProjector:
    """Project datasets into a shared principal-component basis.

    The basis is computed on the pooled, centered (and optionally scaled)
    data, so every dataset lands in the same coordinate frame. The
    operation is a pure function of its inputs.

    Parameters
    ----------
    n_components : int, optional
        Target rank k. Must satisfy ``1 <= k <= min(n_features, n_cells) - 1``.
    scale : bool, optional
        Divide every feature by its pooled standard deviation. Constant
        features are left unscaled. Default True.
    weights : array-like, optional
        Non-negative per-feature weights applied after scaling.

    Example
    -------
    >>> projector = FeatureProjector(n_components=20)
    >>> basis, embeddings = projector.project([ds1, ds2])
    >>> aligned = FeatureProjector.align(embeddings)
    """

    def __init__(
        self,
        n_components: int = DEFAULT_N_COMPONENTS,
        scale: bool = True,
        weights: Any = None,
    ) -> None:
        if int(n_components) != n_components or n_components < 1:
            raise ValueError(f"n_components must be a positive integer, got {n_components!r}.")
        self.n_components = int(n_components)
        self.scale = scale
        self.weights = None if weights is None else np.asarray(weights, dtype=np.float64)
        if self.weights is not None and (self.weights.ndim != 1 or (self.weights < 0).any()):
            raise ValueError("weights must be a 1-D array of non-negative values.")

    def fit(
        self,
        datasets: Sequence[Dataset],
        token: CancellationToken | None = None,
    ) -> Basis:
        """Compute the shared basis of ``datasets``.

        Raises
        ------
        DimensionMismatch
            If the datasets do not share a feature space, or the weights do
            not match it.
        DegenerateInput
            If the pooled data cannot support ``n_components`` dimensions.
        """
        if len(datasets) == 0:
            raise DataError("At least one dataset is required.")
        _check_feature_spaces(datasets)

        k = self.n_components
        n_features = datasets[0].n_features
        n_cells = sum(ds.n_cells for ds in datasets)
        max_rank = min(n_features, n_cells) - 1
        if k > max_rank:
            raise DegenerateInput(
                f"Requested {k} components but {n_cells} cells x {n_features} features "
                f"support at most {max_rank}."
            )
        if self.weights is not None and self.weights.size != n_features:
            raise DimensionMismatch(
                f"{self.weights.size} feature weights for {n_features} features."
            )

        X = np.vstack([to_dense(ds.X) for ds in datasets])
        check_cancelled(token, "projection")

        center = X.mean(0)
        Z = X - center
        if self.scale:
            scale = Z.std(0)
            scale[scale == 0] = 1
        else:
            scale = np.ones(n_features)
        Z /= scale
        if self.weights is not None:
            Z *= self.weights[None, :]

        if min(Z.shape) > RANDOMIZED_SVD_THRESHOLD:
            logger.debug("Using randomized SVD on a %d x %d matrix.", *Z.shape)
            _, s, vt = randomized_svd(
                Z,
                n_components=k,
                n_iter=RANDOMIZED_SVD_N_ITER,
                random_state=RANDOMIZED_SVD_SEED,
            )
            s_max = s[0] if s.size else 0.0
        else:
            _, s, vt = linalg.svd(Z, full_matrices=False)
            s_max = s[0] if s.size else 0.0
        check_cancelled(token, "projection")

        tol = s_max * max(Z.shape) * np.finfo(np.float64).eps
        rank = int((s[:k] > tol).sum()) if s_max > 0 else 0
        if rank < k:
            raise DegenerateInput(
                f"Requested {k} components but the pooled data has numeric rank {rank}."
            )

        vt = _svd_flip(vt[:k])
        loadings = vt.T
        if self.weights is not None:
            loadings = loadings * self.weights[:, None]

        basis = Basis(
            loadings=loadings,
            center=center,
            scale=scale,
            singular_values=s[:k],
            features=datasets[0].features,
        )
        logger.info(
            "Computed %d-component basis from %d cells across %d datasets.",
            k,
            n_cells,
            len(datasets),
        )
        return basis

    @staticmethod
    def transform(dataset: Dataset, basis: Basis) -> Embedding:
        """Project ``dataset`` into ``basis``."""
        if dataset.n_features != basis.n_features:
            raise DimensionMismatch(
                f"Dataset {dataset.name!r} has {dataset.n_features} features, "
                f"basis expects {basis.n_features}."
            )
        if (
            dataset.features is not None
            and basis.features is not None
            and not np.array_equal(dataset.features, basis.features)
        ):
            raise DimensionMismatch(
                f"Dataset {dataset.name!r} uses a different gene vocabulary than the basis."
            )
        # Works for sparse X without densifying: (X - c)/s @ L == X @ (L/s) - (c/s) @ L
        scaled_loadings = basis.loadings / basis.scale[:, None]
        coords = np.asarray(dataset.X @ scaled_loadings) - (basis.center @ scaled_loadings)[None, :]
        return Embedding(
            coords=coords,
            cell_ids=dataset.cell_ids,
            name=dataset.name,
            basis_id=basis.basis_id,
        )

    def project(
        self,
        datasets: Sequence[Dataset],
        token: CancellationToken | None = None,
    ) -> tuple[Basis, list[Embedding]]:
        """Fit a shared basis and project every dataset into it."""
        basis = self.fit(datasets, token=token)
        return basis, [self.transform(ds, basis) for ds in datasets]

    @staticmethod
    def align(embeddings: Sequence[Embedding]) -> list[Embedding]:
        """Remove each embedding's own mean in the shared basis.

        The aligned copies are comparable with each other (but not with the
        unaligned embeddings) and are what cross-dataset neighbor search runs
        on.
        """
        if len(embeddings) == 0:
            return []
        first = embeddings[0]
        for other in embeddings[1:]:
            first.check_comparable(other)
        return [
            e.with_coords(e.coords - e.coords.mean(0, keepdims=True), aligned=True)
            for e in embeddings
        ]
