"""Upper-tail p-values for pooled test statistics.

A pooled statistic is referred either to a chi-squared distribution
(asymptotic form) or to an F distribution (finite-sample form).  Both
p-values are upper-tail probabilities computed with ``scipy.stats``
survival functions, which stay accurate deep into the tail where
``1 - cdf`` would cancel to zero.

Infinite denominator degrees of freedom
---------------------------------------
The denominator df of a pooled F statistic grows without bound as
the between-imputation variance vanishes.  In the limit

    df1 · F(df1, ∞)  ~  χ²(df1)

so ``f_pvalue`` evaluates the chi-squared tail of ``F · df1`` when
``df2`` is infinite instead of handing ``inf`` to ``scipy.stats.f``.
This makes the F form reduce exactly to the asymptotic form when
``ariv = 0``.
"""

from __future__ import annotations

import numpy as np
from scipy import stats


def chisq_pvalue(statistic: float, df: float) -> float:
    """Return ``P(χ²_df > statistic)``.

    Args:
        statistic: Chi-squared statistic (>= 0).
        df: Degrees of freedom (> 0, may be non-integer).

    Returns:
        Upper-tail probability as a Python float.  A statistic of
        exactly zero returns ``1.0``.
    """
    return float(stats.chi2.sf(statistic, df))


def f_pvalue(statistic: float, df1: float, df2: float) -> float:
    """Return ``P(F_{df1, df2} > statistic)``.

    Args:
        statistic: F statistic (>= 0).
        df1: Numerator degrees of freedom.
        df2: Denominator degrees of freedom; ``inf`` selects the
            chi-squared limit.

    Returns:
        Upper-tail probability as a Python float.
    """
    if np.isposinf(df2):
        return chisq_pvalue(statistic * df1, df1)
    return float(stats.f.sf(statistic, df1, df2))
