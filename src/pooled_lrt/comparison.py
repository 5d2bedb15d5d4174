"""Canonical ordering of a two-model comparison.

Callers may pass the two models in either order.  Before any pooling
the pair is put in canonical form once: the model with more degrees
of freedom (fewer free parameters) is the *constrained* model, the
other the *comparison* model, and the df difference is positive.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ._context import PoolingContext
from .fits import FitCollection


@dataclass(frozen=True, eq=False)
class ComparisonPair:
    """Two models in canonical order."""

    constrained: FitCollection
    """Larger-df (nested) model."""

    comparison: FitCollection
    """Smaller-df model."""

    df: float
    """``df(constrained) - df(comparison)`` on the first usable imputation."""

    swapped: bool
    """Whether the caller's order was reversed."""


def canonicalize_pair(
    model: FitCollection,
    h1: FitCollection,
    usable: np.ndarray,
    ctx: PoolingContext | None = None,
) -> ComparisonPair:
    """Validate and order a pair of models.

    Degrees of freedom are read from the naive test record of the first
    usable imputation of each model.

    Raises:
        ValueError: If the models used different test families or have
            equal degrees of freedom.
    """
    if model.options.test.lower() != h1.options.test.lower():
        raise ValueError("Different test statistics were requested for the 2 models.")

    df0 = model.first_naive_df(usable)
    df1 = h1.first_naive_df(usable)
    if df0 == df1:
        raise ValueError("models have equal degrees of freedom")

    swapped = df0 < df1
    if swapped:
        model, h1 = h1, model
        df0, df1 = df1, df0
    if ctx is not None:
        ctx.swapped = swapped
        ctx.df = df0 - df1
    return ComparisonPair(constrained=model, comparison=h1, df=df0 - df1, swapped=swapped)


def orient_difference(w: np.ndarray, df: float) -> tuple[np.ndarray, float]:
    """Flip a per-imputation difference so its df is positive.

    The df of a D2 difference is an average over imputations and can
    disagree in sign with the first-imputation df used for ordering;
    in that case both the statistics and the df are negated.
    """
    if df < 0:
        return -np.asarray(w, dtype=float), -df
    return np.asarray(w, dtype=float), df
