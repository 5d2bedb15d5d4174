"""Robust correction of a pooled naive chi-squared statistic.

When the naive statistic is pooled first and robustified afterwards,
the per-imputation robust corrections are averaged over the
imputations that entered the naive reduction and applied once to the
pooled value.

Single model
------------
With ``c̄`` the mean scaling factor and ``d̄`` the mean robust df,

    χ²_scaled = χ² / c̄ ,    df_scaled = d̄ .

For scaled-and-shifted tests the mean of the per-imputation shift
parameters (summed over groups) is added to ``χ²_scaled`` before the
p-value is computed.

Two nested models
-----------------
The scaled difference test of Satorra (2000) uses the difference
scaling factor

    c_Δ = (d₀ c₀ − d₁ c₁) / (d₀ − d₁)

built from each model's mean robust df (``d₀``, ``d₁``) and mean
scaling factor (``c₀``, ``c₁``):

    χ²_scaled = χ² / c_Δ ,    df_scaled = d₀ − d₁ .

Shift parameters are not combined across two models.

Reference:
    Satorra, A. (2000). Scaled and adjusted restricted tests in
    multi-sample analysis of moment structures. In R. D. H.
    Heijmans, D. S. G. Pollock, & A. Satorra (Eds.), *Innovations in
    Multivariate Statistical Analysis* (pp. 233–247). Kluwer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np

from ._context import PoolingContext, _notify
from .pvalues import chisq_pvalue

if TYPE_CHECKING:
    from .fits import FitCollection

logger = logging.getLogger(__name__)


def scaled_difference_factor(d0: float, c0: float, d1: float, c1: float) -> float:
    """Return ``(d0*c0 - d1*c1) / (d0 - d1)``.

    Raises:
        ValueError: If ``d0 == d1``.
    """
    if d0 == d1:
        raise ValueError("Scaled difference needs models with different degrees of freedom.")
    return (d0 * c0 - d1 * c1) / (d0 - d1)


def _mean_corrections(
    fits: FitCollection,
    usable: np.ndarray,
) -> tuple[float, float, float] | None:
    """Mean robust df, scaling factor and total shift, or ``None``."""
    records = [r for r in fits.robust_records(usable) if r is not None]
    records = [r for r in records if r.scaling_factor is not None]
    if not records:
        return None
    d = float(np.mean([r.df for r in records]))
    c = float(np.mean([r.scaling_factor for r in records]))
    shift = float(np.mean([r.total_shift for r in records]))
    return d, c, shift


def robustify(
    pooled: dict[str, Any],
    constrained: FitCollection,
    comparison: FitCollection | None,
    usable: np.ndarray,
    ctx: PoolingContext | None = None,
) -> dict[str, Any]:
    """Add robust fields to a pooled naive chi-squared result.

    Args:
        pooled: Output of the D2 or D3 pooling with at least ``chisq``.
        constrained: The (larger-df) model.
        comparison: The less constrained model, or ``None`` for a
            single-model test.
        usable: Boolean mask of imputations entering the averages.
        ctx: Optional pooling context for notices.

    Returns:
        A new dict with ``chisq_scaled``, ``df_scaled``,
        ``pvalue_scaled``, ``chisq_scaling_factor`` and, for a single
        scaled-and-shifted model, ``chisq_shift_parameters``.  *pooled*
        is returned unchanged (as a copy) when its ``chisq`` is zero
        or when no record carries a scaling factor.
    """
    out = dict(pooled)
    chisq = out.get("chisq")
    if chisq is None or chisq == 0:
        # A clamped statistic makes every robust quantity uninformative.
        return out

    corr0 = _mean_corrections(constrained, usable)
    corr1 = _mean_corrections(comparison, usable) if comparison is not None else None
    if corr0 is None or (comparison is not None and corr1 is None):
        _notify(
            ctx,
            "No scaling factors were found in the per-imputation test "
            "records; robust corrections were not computed.",
        )
        return out

    d0, c0, shift = corr0
    if comparison is not None:
        d1, c1, _ = corr1
        delta_c = scaled_difference_factor(d0, c0, d1, c1)
        out["chisq_scaled"] = chisq / delta_c
        out["df_scaled"] = d0 - d1
        out["chisq_scaling_factor"] = delta_c
    else:
        out["chisq_scaled"] = chisq / c0
        out["df_scaled"] = d0
        out["chisq_scaling_factor"] = c0
        if constrained.options.scaled_shifted:
            # Average of the per-imputation shifts (summed over groups).
            out["chisq_scaled"] += shift
            out["chisq_shift_parameters"] = shift

    out["pvalue_scaled"] = chisq_pvalue(out["chisq_scaled"], out["df_scaled"])
    logger.debug(
        "Robustified chisq=%.4f -> %.4f (scaling factor %.4f)",
        chisq,
        out["chisq_scaled"],
        out["chisq_scaling_factor"],
    )
    return out
