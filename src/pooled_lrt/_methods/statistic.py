"""Statistic pooling ("D2").

Pools ``m`` per-imputation test statistics ``w_1 … w_m`` that share a
nominal df ``k`` (Li, Meng, Raghunathan & Rubin, 1991; Enders, 2010,
ch. 8).

Algorithm
---------
The between-imputation variability of the statistic itself inflates
its variance.  Because a chi-squared statistic is right-skewed, that
variability is measured on the square-root scale:

    ariv = (1 + 1/m) · Var(√w_l)                (sample variance)

and the mean statistic is deflated accordingly:

    D₂ = (w̄ / k) / (1 + ariv)

With a single imputation there is nothing to estimate, ``ariv = 0``
and ``D₂ = w₁ / k``.

Reference distributions
-----------------------
* asymptotic: ``χ² = D₂ · k`` on ``k`` df;
* finite sample: ``F = D₂`` on ``(k, v)`` df with

      v = k^(−3/m) · (m − 1) · (1 + 1/ariv)²

  which grows without bound as ``ariv → 0``, recovering the
  chi-squared form.

Model comparison
----------------
For two nested models the per-imputation *difference* of the naive
statistics is pooled.  When robust statistics are pooled directly,
each imputation's robust difference test is re-derived through the
fitting engine (refit the comparison model on that dataset, then run
the engine's difference test); imputations where either step fails
are excluded and counted.

References:
    Li, K.-H., Meng, X.-L., Raghunathan, T. E., & Rubin, D. B. (1991).
    Significance levels from repeated *p*-values with multiply-imputed
    data. *Statistica Sinica*, 1(1), 65–92.

    Enders, C. K. (2010). *Applied missing data analysis*. New York,
    NY: Guilford.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np

from .._context import PoolingContext
from .._outcomes import Failed, Outcome, Succeeded, map_imputations
from .._typing import ArrayLike
from ..comparison import orient_difference
from ..partable import count_free_parameters
from ..pvalues import chisq_pvalue, f_pvalue

if TYPE_CHECKING:
    from ..engines import FittingEngine
    from ..fits import FitCollection

logger = logging.getLogger(__name__)


def _denominator_df(m: int, k: float, ariv: float) -> float:
    """Li et al. (1991) denominator df; infinite when ``ariv == 0``."""
    if m < 2 or ariv == 0:
        return float("inf")
    return k ** (-3.0 / m) * (m - 1) * (1.0 + 1.0 / ariv) ** 2


def calculate_d2(
    w: ArrayLike,
    df: float,
    asymptotic: bool = False,
    ctx: PoolingContext | None = None,
) -> dict[str, float]:
    """Pool per-imputation statistics *w* on *df* degrees of freedom.

    Args:
        w: One statistic per usable imputation.  ``NaN`` entries are
            dropped and negative entries clamped to zero.
        df: Reference degrees of freedom (may be a non-integer mean).
        asymptotic: Return the chi-squared form instead of the F form.
        ctx: Optional context receiving ``ariv``.

    Returns:
        ``{chisq, df, pvalue, ariv, fmi}`` or
        ``{F, df1, df2, pvalue, ariv, fmi}``.

    Raises:
        ValueError: If no finite statistic remains or ``df <= 0``.
    """
    w = np.asarray(w, dtype=float).ravel()
    w = w[~np.isnan(w)]
    m = int(w.size)
    if m == 0:
        raise ValueError("No test statistics to pool.")
    df = float(df)
    if not np.isfinite(df) or df <= 0:
        raise ValueError(f"Degrees of freedom must be > 0, got {df:g}.")

    w = np.clip(w, 0.0, None)
    w_bar = float(np.mean(w))
    ariv = (1.0 + 1.0 / m) * float(np.var(np.sqrt(w), ddof=1)) if m > 1 else 0.0
    test_stat = (w_bar / df) / (1.0 + ariv)
    fmi = ariv / (1.0 + ariv)
    if ctx is not None:
        ctx.ariv = ariv

    if asymptotic:
        chisq = test_stat * df
        return {
            "chisq": chisq,
            "df": df,
            "pvalue": chisq_pvalue(chisq, df),
            "ariv": ariv,
            "fmi": fmi,
        }
    df2 = _denominator_df(m, df, ariv)
    return {
        "F": test_stat,
        "df1": df,
        "df2": df2,
        "pvalue": f_pvalue(test_stat, df, df2),
        "ariv": ariv,
        "fmi": fmi,
    }


def _suffix_scaled(pooled: dict[str, Any]) -> dict[str, Any]:
    return {f"{key}_scaled": value for key, value in pooled.items()}


def _robust_difference_outcomes(
    constrained: FitCollection,
    comparison: FitCollection,
    usable: np.ndarray,
    engine: FittingEngine,
    n_jobs: int,
    difference_options: dict[str, Any],
) -> list[tuple[int, Outcome]]:
    """Refit the comparison model and run the difference test per imputation."""
    indices = np.flatnonzero(usable)
    datasets = constrained.selected_datasets(usable)
    partable1 = comparison.partable
    options1 = comparison.options

    def _one(item: tuple[int, Any]) -> Outcome:
        i, data = item
        try:
            fit1 = engine.fit(partable1, data, options1)
        except Exception as exc:  # noqa: BLE001
            return Failed(f"fit failed: {exc}")
        if not fit1.converged:
            return Failed("fit failed: comparison model did not converge")
        try:
            stat, df = engine.difference_test(
                constrained.fits[i], fit1, constrained.options, **difference_options
            )
        except Exception as exc:  # noqa: BLE001
            return Failed(f"difference test failed: {exc}")
        return Succeeded(float(stat), df=float(df))

    outcomes = map_imputations(
        _one,
        zip(indices, datasets, strict=True),
        n_jobs=n_jobs,
        label="robust difference test",
    )
    return list(zip(indices.tolist(), outcomes, strict=True))


def pool_statistics(
    constrained: FitCollection,
    comparison: FitCollection | None,
    usable: np.ndarray,
    *,
    asymptotic: bool = False,
    pool_robust: bool = False,
    engine: FittingEngine | None = None,
    n_jobs: int = 1,
    ctx: PoolingContext | None = None,
    difference_options: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """D2 pooling of one model or of a canonical model pair.

    * one model, naive: pools the model's naive statistic and adds
      ``npar`` and ``ntotal``;
    * one model, robust: pools the robust statistic (``_scaled`` keys);
    * two models, naive: pools ``w0_l − w1_l`` on the mean df
      difference;
    * two models, robust: pools per-imputation robust difference
      tests obtained through *engine* (``_scaled`` keys).

    Raises:
        ValueError: If robust pooling is requested without robust
            records (one model) or without an engine (two models).
        RuntimeError: If every robust difference test fails.
    """
    ctx = ctx if ctx is not None else PoolingContext()

    if pool_robust and comparison is not None:
        engine = engine if engine is not None else constrained.engine
        if engine is None:
            raise ValueError(
                "Pooling robust difference statistics needs a fitting engine "
                "to refit the comparison model on each imputation."
            )
        results = _robust_difference_outcomes(
            constrained,
            comparison,
            usable,
            engine,
            n_jobs,
            dict(difference_options or {}),
        )
        for i, out in results:
            if not out.ok:
                ctx.exclude(i, out.reason)
        succeeded = [out for _, out in results if out.ok]
        if not succeeded:
            raise RuntimeError(
                "No success computing the robust difference test on any imputation."
            )
        ctx.n_imputations_scaled = len(succeeded)
        chi = [out.value for out in succeeded]
        df = float(np.mean([out.df for out in succeeded]))
        return _suffix_scaled(calculate_d2(chi, df, asymptotic))

    if comparison is None:
        if pool_robust:
            records = constrained.robust_records(usable)
            if any(r is None for r in records):
                raise ValueError(
                    "pool_robust=True needs a robust test record on every "
                    "usable imputation."
                )
            w = np.array([r.stat for r in records], dtype=float)
            df = float(np.mean([r.df for r in records]))
        else:
            w = constrained.naive_statistics(usable)
            df = float(np.mean(constrained.naive_df(usable)))
    else:
        d0 = float(np.mean(constrained.naive_df(usable)))
        d1 = float(np.mean(comparison.naive_df(usable)))
        w = constrained.naive_statistics(usable) - comparison.naive_statistics(usable)
        w, df = orient_difference(w, d0 - d1)

    if pool_robust:
        return _suffix_scaled(calculate_d2(w, df, asymptotic))

    out: dict[str, Any] = calculate_d2(w, df, asymptotic, ctx=ctx)
    if comparison is None:
        # Reporting parity with the likelihood-pooling method.
        out["npar"] = count_free_parameters(constrained.partable)
        out["ntotal"] = constrained.options.ntotal
    logger.debug("D2 pooled %d statistics (ariv=%.4f)", len(w), out["ariv"])
    return out


class StatisticPoolingMethod:
    """D2: pool per-imputation test statistics."""

    name = "D2"

    def pool(
        self,
        constrained: FitCollection,
        comparison: FitCollection | None,
        usable: np.ndarray,
        *,
        asymptotic: bool = False,
        pool_robust: bool = False,
        engine: FittingEngine | None = None,
        n_jobs: int = 1,
        ctx: PoolingContext | None = None,
        difference_options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return pool_statistics(
            constrained,
            comparison,
            usable,
            asymptotic=asymptotic,
            pool_robust=pool_robust,
            engine=engine,
            n_jobs=n_jobs,
            ctx=ctx,
            difference_options=difference_options,
        )
