"""Usable-imputation set.

Only imputations on which every compared model converged can enter a
pooled test.  :func:`reconcile_convergence` intersects the convergence
flags of one or two models; the intersection is commutative and
idempotent, so the argument order never matters.
"""

from __future__ import annotations

import numpy as np

from ._context import PoolingContext, _notify
from ._typing import FlagsLike

MISMATCH_NOTICE = (
    "The models being compared did not converge on the same set of "
    "imputations. Likelihood ratio test conducted using only the "
    "imputations for which both models converged."
)


def reconcile_convergence(
    flags0: FlagsLike,
    flags1: FlagsLike | None = None,
    ctx: PoolingContext | None = None,
) -> tuple[np.ndarray, int]:
    """Intersect per-imputation convergence flags.

    Args:
        flags0: Convergence flags of the first model.
        flags1: Convergence flags of the second model (same length,
            index-aligned), or ``None`` for a single model.
        ctx: Optional pooling context; receives the usable mask, its
            population count and any mismatch notice.

    Returns:
        ``(usable, n_usable)`` — a fresh boolean array and its sum.

    Raises:
        ValueError: If the two flag vectors differ in length.
        RuntimeError: If no imputation is usable.
    """
    usable = np.array(flags0, dtype=bool, copy=True).ravel()
    if flags1 is not None:
        other = np.asarray(flags1, dtype=bool).ravel()
        if other.shape != usable.shape:
            raise ValueError(
                f"Convergence flags have different lengths "
                f"({usable.size} vs {other.size}); both models must be "
                "fitted to the same imputations."
            )
        if np.any(usable != other):
            _notify(ctx, MISMATCH_NOTICE)
        usable &= other

    n_usable = int(usable.sum())
    if n_usable == 0:
        raise RuntimeError(
            "No usable imputations: the model(s) did not converge on any "
            "imputed dataset."
        )
    if ctx is not None:
        ctx.usable = usable
        ctx.n_imputations = n_usable
    return usable, n_usable
