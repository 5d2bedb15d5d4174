"""Likelihood pooling ("D3").

Pools ``m`` likelihood-ratio tests by re-evaluating log-likelihoods
at pooled parameter estimates (Meng & Rubin, 1992).

Algorithm
---------
1. **Pooled log-likelihoods.**  Fix every parameter of the constrained
   model at its cross-imputation mean and evaluate that fixed table on
   each imputation (``ℓ0_l``).  Do the same for the comparison model
   (``ℓ1_l``); without one, fit the saturated model to each imputation,
   average *its* estimates and evaluate the fixed saturated table.

2. **Two summary statistics.**

       LRT_pooled = mean( −2 (ℓ0_l − ℓ1_l) )
       LRT_bar    = mean( naive per-imputation LRT )

   ``LRT_pooled`` is evaluated at the pooled estimates, ``LRT_bar`` at
   each imputation's own estimates; their gap measures how much the
   imputations disagree.

3. **Variance inflation.**  With ``a = k (m − 1)``

       ariv = ((m + 1) / a) · (LRT_bar − LRT_pooled)
       D₃   = LRT_pooled / (k (1 + ariv))

Reference distributions
-----------------------
* asymptotic: ``χ² = D₃ · k`` on ``k`` df;
* finite sample: ``F = D₃`` on ``(k, v)`` df with (Enders, 2010,
  eqs. 8.34–8.35)

      a > 4:  v = 4 + (a − 4) · (1 + (1 − 2/a) / ariv)²
      a ≤ 4:  v = a (1 + 1/k) (1 + 1/ariv)² / 2

  The second branch avoids the degenerate first formula when few
  imputations are available relative to the df being tested.

A NaN statistic (typically a non-positive-definite model-implied
covariance at the pooled estimates) is fatal; the error recommends D2
instead of silently switching.  A negative statistic is clamped to 0.

References:
    Meng, X.-L., & Rubin, D. B. (1992). Performing likelihood ratio
    tests with multiply-imputed data sets. *Biometrika*, 79(1),
    103–111.

    Enders, C. K. (2010). *Applied missing data analysis*. New York,
    NY: Guilford.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np

from .._context import PoolingContext, _notify
from .._outcomes import Outcome, map_imputations
from .._typing import ArrayLike
from ..engines import evaluate_loglik
from ..partable import count_free_parameters, fix_parameters
from ..pvalues import chisq_pvalue, f_pvalue

if TYPE_CHECKING:
    from ..engines import FittingEngine
    from ..fits import FitCollection

logger = logging.getLogger(__name__)

UNDEFINED_STATISTIC = (
    "D3 test statistic could not be calculated. Try the D2 pooling method."
)


def _denominator_df(a: float, k: float, ariv: float) -> float:
    """Enders (2010) denominator df; infinite when ``ariv == 0``."""
    if ariv == 0:
        return float("inf")
    inv = 1.0 / ariv
    if a > 4:
        return 4.0 + (a - 4.0) * (1.0 + (1.0 - 2.0 / a) * inv) ** 2
    return a * (1.0 + 1.0 / k) * (1.0 + inv) ** 2 / 2.0


def calculate_d3(
    ll0: ArrayLike,
    ll1: ArrayLike,
    lrt_bar: float,
    df: float,
    asymptotic: bool = False,
    ctx: PoolingContext | None = None,
) -> dict[str, float]:
    """Combine pooled-estimate log-likelihoods into the D3 statistic.

    Args:
        ll0: Constrained-model log-likelihoods at pooled estimates,
            one per imputation.
        ll1: Comparison (or saturated) log-likelihoods, index-aligned
            with *ll0*.
        lrt_bar: Mean of the naive per-imputation LRT statistics.
        df: Degrees of freedom of the test (> 0).
        asymptotic: Return the chi-squared form instead of the F form.
        ctx: Optional context receiving ``lrt_pooled``, ``lrt_bar``,
            ``ariv`` and the clamping notice.

    Returns:
        ``{chisq, df, pvalue, ariv}`` or ``{F, df1, df2, pvalue, ariv}``.

    Raises:
        ValueError: If the inputs are misaligned or ``df <= 0``.
        RuntimeError: If fewer than two imputations are given or the
            statistic is undefined.
    """
    ll0 = np.asarray(ll0, dtype=float).ravel()
    ll1 = np.asarray(ll1, dtype=float).ravel()
    if ll0.shape != ll1.shape:
        raise ValueError(
            f"ll0 and ll1 must be index-aligned (got {ll0.size} and {ll1.size})."
        )
    df = float(df)
    if not df > 0:
        raise ValueError(
            'The "constrained" model must be nested within (i.e., have more '
            f'degrees of freedom than) the comparison model; got df = {df:g}.'
        )
    m = int(ll0.size)
    if m < 2:
        raise RuntimeError(
            "D3 needs at least two imputations to estimate the relative "
            "increase in variance. Try the D2 pooling method."
        )

    lrt_pooled = float(np.mean(-2.0 * (ll0 - ll1)))
    a = df * (m - 1)
    ariv = ((m + 1) / a) * (float(lrt_bar) - lrt_pooled)
    with np.errstate(divide="ignore", invalid="ignore"):
        test_stat = float(np.float64(lrt_pooled) / (df * (1.0 + ariv)))
    if ctx is not None:
        ctx.lrt_pooled = lrt_pooled
        ctx.lrt_bar = float(lrt_bar)
        ctx.ariv = ariv
        ctx.ll0 = ll0
        ctx.ll1 = ll1
    if not np.isfinite(test_stat):
        raise RuntimeError(UNDEFINED_STATISTIC)
    if test_stat < 0:
        _notify(ctx, "Negative test statistic set to zero")
        if ctx is not None:
            ctx.clamped = True
        test_stat = 0.0

    if asymptotic:
        chisq = test_stat * df
        return {"chisq": chisq, "df": df, "pvalue": chisq_pvalue(chisq, df), "ariv": ariv}
    df2 = _denominator_df(a, df, ariv)
    return {
        "F": test_stat,
        "df1": df,
        "df2": df2,
        "pvalue": f_pvalue(test_stat, df, df2),
        "ariv": ariv,
    }


def pooled_loglikelihoods(
    fits: FitCollection,
    usable: np.ndarray,
    engine: FittingEngine,
    *,
    saturated: bool = False,
    n_jobs: int = 1,
) -> list[Outcome]:
    """Log-likelihoods at pooled estimates, one outcome per usable imputation.

    Args:
        fits: Model whose pooled estimates are evaluated.
        usable: Boolean mask of usable imputations.
        engine: Engine that evaluates fixed tables.
        saturated: Evaluate the saturated counterpart of *fits*
            instead of *fits* itself.
        n_jobs: Parallelism for the per-imputation evaluations.

    Raises:
        RuntimeError: If the saturated model cannot be fitted to any
            imputation.
    """
    datasets = fits.selected_datasets(usable)
    options = fits.options

    if saturated:
        partable = engine.unrestricted_partable(fits.partable, datasets[0], options)
        logger.debug("Fitting saturated model (%d rows) to %d imputations", len(partable), len(datasets))
        sat = map_imputations(
            lambda d: engine.fit(partable, d, options),
            datasets,
            n_jobs=n_jobs,
            label="saturated fit",
        )
        estimates = [
            out.value.estimates
            for out in sat
            if out.ok and out.value.converged and out.value.estimates is not None
        ]
        if not estimates:
            raise RuntimeError("The saturated model could not be fitted to any imputation.")
        fixed = fix_parameters(
            partable, np.vstack(estimates).mean(axis=0), drop_constraints=False
        )
    else:
        fixed = fix_parameters(fits.partable, fits.pooled_estimates(usable))

    return map_imputations(
        lambda d: evaluate_loglik(engine, fixed, d, options),
        datasets,
        n_jobs=n_jobs,
        label="log-likelihood evaluation",
    )


def pool_likelihoods(
    constrained: FitCollection,
    comparison: FitCollection | None,
    usable: np.ndarray,
    *,
    asymptotic: bool = False,
    engine: FittingEngine | None = None,
    n_jobs: int = 1,
    ctx: PoolingContext | None = None,
) -> dict[str, Any]:
    """D3 pooling of one model or of a canonical model pair.

    Without a comparison model the result also carries ``npar``,
    ``ntotal``, ``logl``, ``unrestricted_logl``, ``aic``, ``bic`` and
    ``bic2`` computed from the mean pooled-estimate log-likelihood.

    Raises:
        ValueError: If no engine is available, the pair is not nested,
            or a single model carries no total sample size.
        RuntimeError: If no imputation can be evaluated, or the
            statistic is undefined.
    """
    ctx = ctx if ctx is not None else PoolingContext()
    engine = engine if engine is not None else constrained.engine
    if engine is None:
        raise ValueError(
            "Likelihood pooling needs a fitting engine to evaluate the "
            "pooled estimates on each imputation."
        )

    # df from one usable imputation, not averaged.
    df = constrained.first_naive_df(usable)
    if comparison is not None:
        df -= comparison.first_naive_df(usable)
        if df <= 0:
            raise ValueError(
                'The "constrained" model must be nested within (i.e., have '
                'more degrees of freedom than) the comparison model.'
            )
    elif constrained.options.ntotal <= 0:
        raise ValueError(
            "Information criteria need the total sample size; got "
            f"ntotal = {constrained.options.ntotal}. Set EstimatorOptions.ntotal."
        )

    out0 = pooled_loglikelihoods(constrained, usable, engine, n_jobs=n_jobs)
    out1 = pooled_loglikelihoods(
        comparison if comparison is not None else constrained,
        usable,
        engine,
        saturated=comparison is None,
        n_jobs=n_jobs,
    )

    indices = np.flatnonzero(usable)
    keep = np.ones(indices.size, dtype=bool)
    for j, (i, o0, o1) in enumerate(zip(indices, out0, out1, strict=True)):
        if not o0.ok:
            ctx.exclude(int(i), o0.reason)
            keep[j] = False
        elif not o1.ok:
            ctx.exclude(int(i), o1.reason)
            keep[j] = False
    if not keep.any():
        raise RuntimeError(
            "Log-likelihoods at the pooled estimates could not be evaluated "
            "on any imputation. Try the D2 pooling method."
        )

    ll0 = np.array([o.value for o, k in zip(out0, keep, strict=True) if k], dtype=float)
    ll1 = np.array([o.value for o, k in zip(out1, keep, strict=True) if k], dtype=float)
    w = constrained.naive_statistics(usable)
    if comparison is not None:
        w = w - comparison.naive_statistics(usable)
    lrt_bar = float(np.mean(w[keep]))
    kept = np.zeros(np.shape(usable), dtype=bool)
    kept[indices[keep]] = True
    ctx.kept = kept
    ctx.n_imputations = int(keep.sum())

    out: dict[str, Any] = calculate_d3(ll0, ll1, lrt_bar, df, asymptotic, ctx=ctx)

    if comparison is None:
        N = constrained.options.ntotal
        npar = count_free_parameters(constrained.partable)
        logl = float(np.mean(ll0))
        out.update(
            npar=npar,
            ntotal=N,
            logl=logl,
            unrestricted_logl=float(np.mean(ll1)),
            aic=-2.0 * logl + 2.0 * npar,
            bic=-2.0 * logl + npar * np.log(N),
            bic2=-2.0 * logl + npar * np.log((N + 2.0) / 24.0),
        )
    return out


class LikelihoodPoolingMethod:
    """D3: pool log-likelihoods at pooled parameter estimates."""

    name = "D3"

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
        if pool_robust:
            raise ValueError('pool_robust=True is only applicable to the "D2" method.')
        return pool_likelihoods(
            constrained,
            comparison,
            usable,
            asymptotic=asymptotic,
            engine=engine,
            n_jobs=n_jobs,
            ctx=ctx,
        )
