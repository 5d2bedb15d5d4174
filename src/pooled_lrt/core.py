"""Pooled likelihood-ratio test front end.

:func:`pooled_lrt` tests the fit of one model, or compares two nested
models, when each was fitted to every one of ``m`` multiply-imputed
datasets.  It owns every policy decision; the pooling methods in
:mod:`pooled_lrt._methods` and the corrector in :mod:`pooled_lrt.robust`
only compute.

Pipeline
~~~~~~~~
1. **Validate.**  Inputs must be
   :class:`~pooled_lrt.fits.FitCollection` objects.
2. **Reconcile convergence.**  Only imputations on which every model
   converged are usable.
3. **Canonicalise the pair.**  The larger-df model is the constrained
   one; callers may pass the two models in either order.
4. **Resolve the method and apply option policies.**  Each adjustment
   the caller did not ask for is announced as a notice
   (``UserWarning``) and recorded on the result:

   * D3 needs a likelihood-based estimator; otherwise D2 is used.
   * ``pool_robust`` is ignored for non-robust tests.
   * Scaled-and-shifted model comparisons are only available by
     pooling the robust difference tests with D2.
   * A pooled *naive* statistic can only be rescaled in its
     chi-squared form, so ``asymptotic`` is switched on.
   * ``pool_robust`` is a D2-only option.

5. **Pool.**  Robust statistics pooled directly run D2 twice (naive
   and robust) so both sets of fields are reported.
6. **Clamp check.**  A pooled statistic of exactly zero was clamped;
   the result is returned without robust corrections.
7. **Robustify.**  Otherwise, for robust tests whose naive statistic
   was pooled, the average scaling correction is applied.
"""

from __future__ import annotations

import logging
from typing import Any

from ._config import get_default_method, get_n_jobs
from ._context import PoolingContext
from ._methods import normalize_method, resolve_method
from ._results import PooledResult
from .comparison import canonicalize_pair
from .convergence import reconcile_convergence
from .engines import FittingEngine, resolve_engine
from .fits import FitCollection
from .robust import robustify

logger = logging.getLogger(__name__)

CLAMPED_NOTICE = (
    "Negative pooled test statistic was set to zero, so fit will appear "
    "to be arbitrarily perfect."
)


def pooled_lrt(
    model: FitCollection,
    h1: FitCollection | None = None,
    *,
    test: str | None = None,
    asymptotic: bool = False,
    pool_robust: bool = False,
    engine: FittingEngine | str | None = None,
    n_jobs: int | None = None,
    difference_options: dict[str, Any] | None = None,
) -> PooledResult:
    """Pool a likelihood-ratio test across multiply-imputed datasets.

    Args:
        model: The model fitted to every imputation.  Without *h1* its
            fit is tested against the saturated model.
        h1: Optional second model.  The two models are compared; the
            one with more degrees of freedom is treated as nested in
            the other regardless of argument order.
        test: Pooling method or alias (``"D3"``, ``"D2"``, ``"mr"``,
            ``"lmrr"``, ``"mplus"``, …).  ``None`` uses
            :func:`~pooled_lrt.get_default_method`.
        asymptotic: Report ``chisq``/``df`` instead of
            ``F``/``df1``/``df2``.
        pool_robust: Pool the robust test statistics directly (D2)
            instead of rescaling the pooled naive statistic.
        engine: Fitting engine (instance or registered name) used to
            re-evaluate models on the datasets.  Defaults to the engine
            stored on *model*.
        n_jobs: Threads for per-imputation evaluations.  ``None`` uses
            :func:`~pooled_lrt.get_n_jobs`.
        difference_options: Extra keyword arguments for the engine's
            difference test when robust difference tests are pooled.

    Returns:
        A :class:`~pooled_lrt.PooledResult`.

    Raises:
        TypeError: If *model* or *h1* is not a ``FitCollection``.
        ValueError: If the two models used different test families,
            have equal degrees of freedom, or *test* is unknown.
        RuntimeError: If no imputation is usable or the pooled
            statistic cannot be computed.
    """
    if not isinstance(model, FitCollection):
        raise TypeError(f"model must be a FitCollection, got {type(model).__name__}.")
    if h1 is not None and not isinstance(h1, FitCollection):
        raise TypeError(f"h1 must be a FitCollection, got {type(h1).__name__}.")

    ctx = PoolingContext()
    engine = resolve_engine(engine)
    n_jobs = get_n_jobs() if n_jobs is None else n_jobs

    usable, n_usable = reconcile_convergence(
        model.convergence,
        h1.convergence if h1 is not None else None,
        ctx=ctx,
    )

    if h1 is not None:
        pair = canonicalize_pair(model, h1, usable, ctx=ctx)
        constrained, comparison = pair.constrained, pair.comparison
    else:
        constrained, comparison = model, None
        ctx.df = constrained.first_naive_df(usable)

    # ---- Method and option policies -----------------------------------
    method, force_asymptotic = normalize_method(test if test is not None else get_default_method())
    asymptotic = bool(asymptotic or force_asymptotic)
    options = constrained.options

    if method == "D3" and not options.likelihood_based:
        ctx.notice('"D3" only available using maximum likelihood estimation. Changed test to "D2".')
        method = "D2"

    robust = options.robust
    if not robust and pool_robust:
        ctx.notice("pool_robust=True ignored because a standard (non-robust) test was requested.")
        pool_robust = False

    if options.scaled_shifted and comparison is not None:
        if method == "D3" or not pool_robust:
            ctx.notice(
                "If test = 'scaled.shifted', model comparison is only "
                "available by (re)setting test = 'D2' and pool_robust = True. "
                "Control more options by passing difference_options."
            )
        pool_robust = True
        method = "D2"

    if robust and not pool_robust and not asymptotic:
        ctx.notice(
            "Robust correction can only be applied to pooled chi-squared "
            'statistic, not F statistic. "asymptotic" was switched to True.'
        )
        asymptotic = True

    if pool_robust and method == "D3":
        ctx.notice('pool_robust = True is only applicable when test = "D2". Changed test to "D2".')
        method = "D2"

    ctx.method = method
    ctx.asymptotic = asymptotic
    ctx.pool_robust = pool_robust
    logger.debug(
        "Pooling %s over %d imputations (asymptotic=%s, pool_robust=%s)",
        method,
        n_usable,
        asymptotic,
        pool_robust,
    )

    # ---- Pool ------------------------------------------------------
    pooler = resolve_method(method)
    common = dict(asymptotic=asymptotic, engine=engine, n_jobs=n_jobs, ctx=ctx)
    if robust and pool_robust:
        out = pooler.pool(constrained, comparison, usable, pool_robust=False, **common)
        out.update(
            pooler.pool(
                constrained,
                comparison,
                usable,
                pool_robust=True,
                difference_options=difference_options,
                **common,
            )
        )
    else:
        out = pooler.pool(constrained, comparison, usable, **common)

    # ---- Clamped statistic -----------------------------------------
    key = "chisq" if asymptotic else "F"
    if out[key] == 0:
        message = CLAMPED_NOTICE
        if robust and not pool_robust:
            message += " Robust corrections uninformative, not returned."
        ctx.clamped = True
        ctx.notice(message)
        return _package_result(out, ctx)

    # ---- Robust naive-then-rescale ----------------------------------
    if robust and not pool_robust:
        kept = ctx.kept if ctx.kept is not None else usable
        out = robustify(out, constrained, comparison, kept, ctx=ctx)
        if options.scaled_shifted:
            extra = " and shift parameter"
        elif options.test.lower() == "mean.var.adjusted":
            extra = " and degrees of freedom"
        else:
            extra = ""
        ctx.notice(
            "Robust corrections are made by pooling the naive chi-squared "
            f"statistic across {int(kept.sum())} imputations for which the model "
            "converged, then applying the average (across imputations) "
            f"scaling factor{extra} to that pooled value. To instead pool "
            'the robust test statistics, set test = "D2" and pool_robust = True.'
        )

    return _package_result(out, ctx)


def _package_result(out: dict[str, Any], ctx: PoolingContext) -> PooledResult:
    """Build a :class:`PooledResult` from pooled quantities and *ctx*."""
    allowed = PooledResult.statistic_fields()
    unknown = set(out) - allowed
    if unknown:
        logger.debug("Dropping unreported pooled quantities: %s", sorted(unknown))
    stats: dict[str, Any] = {}
    for name, value in out.items():
        if name not in allowed or value is None:
            continue
        stats[name] = int(value) if name in ("npar", "ntotal") else float(value)

    return PooledResult(
        method=ctx.method,
        asymptotic=bool(ctx.asymptotic),
        n_imputations=int(ctx.n_imputations),
        n_excluded=ctx.n_excluded,
        n_imputations_scaled=ctx.n_imputations_scaled,
        notices=tuple(ctx.notices),
        context=ctx,
        **stats,
    )
