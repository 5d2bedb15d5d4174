"""Pooling context — mutable accumulator for pipeline artifacts.

A :class:`PoolingContext` travels through the pooling pipeline,
collecting intermediate quantities at their natural computation points
and every non-fatal notice raised along the way.  It is the structured
diagnostics channel of the package: downstream consumers read the
usable imputation set, the exclusion count, or the two D3 summary
statistics from the context instead of re-computing them.

The context is **not** part of the public serialisation API:
:meth:`~_results.PooledResult.to_dict` skips it automatically.

Lifecycle::

    ┌───────────────────────────────────────────────┐
    │  pooled_lrt()                                 │
    │  ├─ ctx = PoolingContext()                    │
    │  ├─ reconcile_convergence(…, ctx=ctx)         │
    │  │   └─ ctx.usable / ctx.n_imputations        │
    │  ├─ canonicalize_pair(…)                      │
    │  │   └─ ctx.swapped                           │
    │  ├─ pool_statistics(…) | pool_likelihoods(…)  │
    │  │   ├─ ctx.ariv / ctx.lrt_pooled / …         │
    │  │   └─ ctx.kept / ctx.n_excluded             │
    │  ├─ robustify(…, ctx=ctx)                     │
    │  ├─ _package_result(…, ctx=ctx)               │
    │  └─ return result                             │
    └───────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class PoolingContext:
    """Mutable accumulator for pooling artifacts.

    Every field defaults to ``None`` (or an empty container) so the
    context can be created empty at the start of the pipeline and
    populated incrementally.  Consumers should check for ``None``
    before using a field — missing data means that pipeline stage
    has not run.
    """

    # ---- Imputations ---------------------------------------------
    usable: np.ndarray | None = None
    """Boolean mask of imputations on which both models converged."""

    n_imputations: int | None = None
    """Number of imputations that entered the final reduction."""

    kept: np.ndarray | None = None
    """Boolean mask of usable imputations that survived per-imputation
    evaluation (D3 only)."""

    n_imputations_scaled: int | None = None
    """Imputations whose robust difference test succeeded (D2 with
    ``pool_robust``)."""

    n_excluded: int = 0
    """Imputations dropped because a per-imputation evaluation failed."""

    failures: list[tuple[int, str]] = field(default_factory=list)
    """``(imputation_index, reason)`` for every excluded imputation."""

    # ---- Comparison ----------------------------------------------
    swapped: bool = False
    """Whether the caller's model order was reversed."""

    df: float | None = None
    """Degrees of freedom of the test (difference for two models)."""

    # ---- Method --------------------------------------------------
    method: str | None = None
    """Pooling method actually used (``"D2"`` or ``"D3"``)."""

    asymptotic: bool | None = None
    """Whether the chi-squared form was reported."""

    pool_robust: bool | None = None
    """Whether robust statistics were pooled directly."""

    # ---- Pooling intermediates -----------------------------------
    ariv: float | None = None
    """Average relative increase in variance."""

    lrt_pooled: float | None = None
    """D3: mean LRT evaluated at the pooled parameter estimates."""

    lrt_bar: float | None = None
    """D3: mean of the per-imputation naive LRT statistics."""

    ll0: np.ndarray | None = None
    """D3: constrained-model log-likelihoods at pooled estimates."""

    ll1: np.ndarray | None = None
    """D3: comparison (or saturated) log-likelihoods at pooled estimates."""

    clamped: bool = False
    """``True`` when a negative pooled statistic was set to zero."""

    # ---- Notices -------------------------------------------------
    notices: list[str] = field(default_factory=list)
    """Every non-fatal notice emitted during the pipeline."""

    def notice(self, message: str, *, stacklevel: int = 3) -> None:
        """Record *message* and emit it as a ``UserWarning``."""
        self.notices.append(message)
        warnings.warn(message, UserWarning, stacklevel=stacklevel)

    def exclude(self, index: int, reason: str) -> None:
        """Record that imputation *index* was dropped from pooling."""
        logger.debug("Excluding imputation %d: %s", index, reason)
        self.failures.append((index, reason))
        self.n_excluded += 1


def _notify(ctx: PoolingContext | None, message: str) -> None:
    """Emit *message* through *ctx* when one is supplied.

    Pure pooling functions accept an optional context; without one the
    notice still surfaces as a ``UserWarning``.
    """
    if ctx is not None:
        ctx.notice(message, stacklevel=4)
    else:
        warnings.warn(message, UserWarning, stacklevel=3)


__all__ = ["PoolingContext"]
