"""Custom exceptions for scanchor."""

from __future__ import annotations


class ScAnchorError(Exception):
    """Base exception for scanchor errors."""


class DataError(ScAnchorError):
    """Error related to input data format or content."""


class DimensionMismatch(ScAnchorError):
    """Datasets or embeddings live in incompatible feature spaces."""


class DegenerateInput(ScAnchorError):
    """Input is rank-deficient for the requested decomposition.

    Recoverable by the caller lowering the requested rank.
    """


class InsufficientPoints(ScAnchorError):
    """Point set is too small for the requested neighborhood size."""


class EmptyGraph(ScAnchorError):
    """Graph has no nodes."""


class NoAnchorsFound(ScAnchorError):
    """No anchor survived filtering between two datasets."""


class DependencyError(ScAnchorError):
    """Required dependency is not installed."""


class Cancelled(Exception):
    """Operation was stopped through a cancellation token.

    Not a subclass of ScAnchorError: cancellation is an outcome requested
    by the caller, not a failure of the computation.
    """
