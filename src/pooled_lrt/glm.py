"""Reference fitting engine for generalised linear models.

:class:`GLMEngine` implements the
:class:`~pooled_lrt.engines.FittingEngine` protocol for single-equation
Poisson and Bernoulli (logistic) regressions described by a
:func:`~pooled_lrt.partable.regression_partable`.  Free parameters are
estimated with statsmodels IRLS; fixed parameters enter the linear
predictor as an offset, so a fully fixed table is *evaluated* rather
than optimised — exactly what likelihood pooling needs.

Test statistics
~~~~~~~~~~~~~~~
The naive statistic of a fit is its deviance, i.e. the LRT against
the saturated model,

    D = 2 · (ℓ_sat − ℓ_model),    df = n − k,

so the difference of two nested models' deviances is their LRT.  With
``EstimatorOptions(test="scaled")`` a robust record is added whose
scaling factor is the Pearson dispersion

    c = Σ (y_i − μ̂_i)² / V(μ̂_i)  /  (n − k),

the quasi-likelihood correction for over- or under-dispersion.

Saturated model
~~~~~~~~~~~~~~~
The unrestricted table has one free mean per observation (``op =
"mu"``).  Its MLE is ``μ̂_i = y_i``; fixed at the cross-imputation
average it yields the unrestricted log-likelihoods of the
single-model D3 test.

Log-likelihood kernels use ``scipy.special.xlogy`` so that ``0 · log 0``
evaluates to ``0`` at the saturated solution.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import special
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning as SmConvergenceWarning,
)
from statsmodels.tools.sm_exceptions import (
    PerfectSeparationWarning,
)

from .engines import register_engine
from .fits import EstimatorOptions, FitResult, TestRecord
from .partable import count_free_parameters, saturated_partable, validate_partable
from .robust import scaled_difference_factor

_GLM_FAMILIES: dict[str, Any] = {
    "poisson": sm.families.Poisson,
    "binomial": sm.families.Binomial,
}

_SUPPORTED_TESTS = frozenset({"standard", "scaled"})


@dataclass(frozen=True)
class GLMEngine:
    """statsmodels-backed engine for Poisson and Bernoulli GLMs.

    Args:
        family: ``"poisson"`` (log link) or ``"binomial"`` (logit
            link, 0/1 outcome).
    """

    family: str = "poisson"

    def __post_init__(self) -> None:
        if self.family not in _GLM_FAMILIES:
            available = ", ".join(sorted(_GLM_FAMILIES))
            raise ValueError(f"Unknown GLM family {self.family!r}.  Available: {available}.")

    @property
    def name(self) -> str:
        return f"glm_{self.family}"

    # ---- Validation ------------------------------------------------

    def validate_y(self, y: np.ndarray) -> None:
        """Check that *y* is admissible for the family."""
        if np.any(np.isnan(y)):
            msg = f"{self.name} does not accept NaN values in Y (impute them first)."
            raise ValueError(msg)
        if self.family == "poisson":
            if np.any(y < 0):
                raise ValueError(f"{self.name} requires non-negative Y values.")
            if not np.allclose(y, np.round(y)):
                msg = f"{self.name} requires integer-valued Y. Got non-integer values."
                raise ValueError(msg)
        elif not np.all(np.isin(y, [0, 1])):
            raise ValueError(f"{self.name} requires a 0/1 outcome.")

    def _check_options(self, options: EstimatorOptions) -> None:
        if options.test.lower() not in _SUPPORTED_TESTS:
            raise ValueError(
                f"{self.name} supports test='standard' or test='scaled', "
                f"got {options.test!r}."
            )

    # ---- Likelihood kernels ---------------------------------------

    def loglik(self, y: np.ndarray, mu: np.ndarray) -> float:
        """Log-likelihood of *y* at means *mu*."""
        if self.family == "poisson":
            ll = special.xlogy(y, mu) - mu - special.gammaln(y + 1.0)
        else:
            ll = special.xlogy(y, mu) + special.xlogy(1.0 - y, 1.0 - mu)
        return float(np.sum(ll))

    def _pearson_dispersion(self, y: np.ndarray, mu: np.ndarray, df: float) -> float:
        if df <= 0:
            return float("nan")
        variance = _GLM_FAMILIES[self.family]().variance(mu)
        return float(np.sum((y - mu) ** 2 / variance) / df)

    # ---- Protocol --------------------------------------------------

    def fit(
        self,
        partable: pd.DataFrame,
        dataset: pd.DataFrame,
        options: EstimatorOptions,
    ) -> FitResult:
        """Fit (or, when every row is fixed, evaluate) *partable*."""
        validate_partable(partable)
        self._check_options(options)
        rows = partable.reset_index(drop=True)
        y = dataset[rows["lhs"].iloc[0]].to_numpy(dtype=float)
        self.validate_y(y)

        if (rows["op"] == "mu").any():
            return self._fit_saturated(rows, y, options)

        X = self._design(rows, dataset)
        free = rows["free"].to_numpy() > 0
        est = rows["ustart"].to_numpy(dtype=float).copy()
        family = _GLM_FAMILIES[self.family]()

        model = None
        converged = True
        if free.any():
            # Fixed rows enter the linear predictor as an offset.
            offset = X[:, ~free] @ est[~free]
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=SmConvergenceWarning)
                warnings.filterwarnings("ignore", category=PerfectSeparationWarning)
                warnings.filterwarnings("ignore", category=RuntimeWarning)
                model = sm.GLM(y, X[:, free], family=family, offset=offset).fit(disp=0)
            est[free] = np.asarray(model.params, dtype=float)
            converged = bool(getattr(model, "converged", True))
        converged = converged and bool(np.all(np.isfinite(est)))

        mu = family.fitted(X @ est)
        loglik = self.loglik(y, mu)
        df = float(len(y) - count_free_parameters(rows))
        deviance = 2.0 * (self.loglik(y, y) - loglik)

        tests = [TestRecord(stat=deviance, df=df)]
        if options.robust:
            c = self._pearson_dispersion(y, mu, df)
            tests.append(TestRecord(stat=deviance / c, df=df, scaling_factor=c))
        return FitResult(
            converged=converged,
            loglik=loglik,
            tests=tuple(tests),
            estimates=est,
            model=model,
        )

    def unrestricted_partable(
        self,
        partable: pd.DataFrame,
        dataset: pd.DataFrame,
        options: EstimatorOptions,
    ) -> pd.DataFrame:
        """One free mean per observation of *dataset*."""
        return saturated_partable(str(partable["lhs"].iloc[0]), len(dataset))

    def difference_test(
        self,
        fit0: FitResult,
        fit1: FitResult,
        options: EstimatorOptions,
        **kwargs: Any,
    ) -> tuple[float, float]:
        """LRT of *fit0* against *fit1*, scaled for robust tests.

        Raises:
            ValueError: If the models are not nested in that order.
        """
        df = fit0.naive.df - fit1.naive.df
        if df <= 0:
            raise ValueError(
                f"fit0 must have more degrees of freedom than fit1 (got {df:g})."
            )
        stat = 2.0 * (float(fit1.loglik) - float(fit0.loglik))
        if options.robust:
            r0, r1 = fit0.robust, fit1.robust
            if r0 is None or r1 is None:
                raise ValueError("Robust difference test needs robust records on both fits.")
            stat /= scaled_difference_factor(
                r0.df, r0.scaling_factor, r1.df, r1.scaling_factor
            )
        return stat, df

    # ---- Helpers ---------------------------------------------------

    @staticmethod
    def _design(rows: pd.DataFrame, dataset: pd.DataFrame) -> np.ndarray:
        """Design matrix with one column per parameter-table row."""
        columns = []
        for op, rhs in zip(rows["op"], rows["rhs"], strict=True):
            if op == "~1":
                columns.append(np.ones(len(dataset)))
            elif op == "~":
                columns.append(dataset[rhs].to_numpy(dtype=float))
            else:
                raise ValueError(f"GLMEngine cannot interpret parameter-table op {op!r}.")
        return np.column_stack(columns)

    def _fit_saturated(
        self,
        rows: pd.DataFrame,
        y: np.ndarray,
        options: EstimatorOptions,
    ) -> FitResult:
        if len(rows) != len(y):
            raise ValueError(
                f"Saturated table has {len(rows)} means but the dataset has "
                f"{len(y)} observations."
            )
        free = rows["free"].to_numpy() > 0
        mu = np.where(free, y, rows["ustart"].to_numpy(dtype=float))
        loglik = self.loglik(y, mu)
        df = float(len(y) - count_free_parameters(rows))
        deviance = 2.0 * (self.loglik(y, y) - loglik)
        return FitResult(
            converged=bool(np.all(np.isfinite(mu))),
            loglik=loglik,
            tests=(TestRecord(stat=deviance, df=df),),
            estimates=mu,
        )


register_engine("glm", GLMEngine)
