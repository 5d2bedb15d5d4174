"""Fit records and the imputation-set container.

A model fitted to ``m`` completed datasets is described by a
:class:`FitCollection`: one :class:`FitResult` per imputation, the
datasets themselves, the model's parameter table, and the
:class:`EstimatorOptions` that were used.  Collections are produced
once (by a fitting engine, see :meth:`FitCollection.from_datasets`)
and are read-only to the pooling code.

Each :class:`FitResult` holds up to two :class:`TestRecord` objects:

* ``tests[0]`` — the *naive* statistic (value and df);
* ``tests[1]`` — the *robust* statistic, present when the estimator
  requested a scaled (or scaled-and-shifted) test, carrying the
  scaling factor and any shift parameters.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, coerce_imputations
from ._outcomes import map_imputations
from .partable import validate_partable

if TYPE_CHECKING:
    from .engines import FittingEngine

logger = logging.getLogger(__name__)

# Estimators whose objective is a (possibly robustified) likelihood.
# MLM/MLMV/MLMVS/MLR/MLF are ML point estimates with a different test
# statistic or standard errors, so their log-likelihoods are usable.
LIKELIHOOD_ESTIMATORS: frozenset[str] = frozenset(
    {"ML", "MLM", "MLMV", "MLMVS", "MLR", "MLF", "PML", "FML"}
)


@dataclass(frozen=True)
class TestRecord:
    """One test statistic from one imputation."""

    __test__ = False  # not a pytest class

    stat: float
    """Value of the test statistic."""

    df: float
    """Degrees of freedom of the statistic."""

    scaling_factor: float | None = None
    """Scaling correction (robust records only)."""

    shift_parameter: tuple[float, ...] | None = None
    """Shift parameter(s), one per group (scaled-and-shifted tests only)."""

    def __post_init__(self) -> None:
        if self.shift_parameter is not None:
            shift = tuple(float(s) for s in np.atleast_1d(self.shift_parameter))
            object.__setattr__(self, "shift_parameter", shift)

    @property
    def total_shift(self) -> float:
        """Sum of the shift parameters across groups (0 when absent)."""
        return float(sum(self.shift_parameter)) if self.shift_parameter else 0.0


@dataclass(frozen=True, eq=False)
class FitResult:
    """Outcome of fitting (or evaluating) one model on one dataset."""

    converged: bool
    """Whether the engine reports a proper solution."""

    loglik: float | None = None
    """Log-likelihood at the solution (``None`` if unavailable)."""

    tests: tuple[TestRecord, ...] = ()
    """Naive record, optionally followed by the robust record."""

    estimates: np.ndarray | None = None
    """Estimates aligned with the rows of the parameter table."""

    model: Any = field(default=None, repr=False, compare=False)
    """Opaque engine object (e.g. a statsmodels results wrapper)."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "tests", tuple(self.tests))
        if self.estimates is not None:
            object.__setattr__(self, "estimates", np.asarray(self.estimates, dtype=float))

    @property
    def naive(self) -> TestRecord:
        """The naive test record.

        Raises:
            ValueError: If the fit carries no test statistics.
        """
        if not self.tests:
            raise ValueError("This fit carries no test statistics.")
        return self.tests[0]

    @property
    def robust(self) -> TestRecord | None:
        """The robust test record, or ``None`` for standard tests."""
        return self.tests[1] if len(self.tests) > 1 else None


@dataclass(frozen=True)
class EstimatorOptions:
    """Estimation settings shared by every imputation of one model."""

    estimator: str = "ML"
    """Estimator family (``"ML"``, ``"MLR"``, ``"DWLS"``, …)."""

    test: str = "standard"
    """Test family: ``"standard"``, ``"satorra.bentler"``, ``"yuan.bentler"``,
    ``"mean.var.adjusted"``, ``"scaled.shifted"``, ``"scaled"``, …"""

    ntotal: int = 0
    """Total sample size of one completed dataset."""

    group: tuple[str, ...] = ()
    """Grouping variable(s), if any."""

    cluster: tuple[str, ...] = ()
    """Cluster variable(s), if any."""

    @property
    def robust(self) -> bool:
        """``True`` when a scaling correction was requested."""
        return self.test.lower() != "standard"

    @property
    def scaled_shifted(self) -> bool:
        return self.test.lower() == "scaled.shifted"

    @property
    def likelihood_based(self) -> bool:
        """``True`` for maximum-likelihood estimator families."""
        return self.estimator.upper() in LIKELIHOOD_ESTIMATORS


@dataclass(frozen=True, eq=False)
class FitCollection:
    """One model fitted to every completed dataset.

    All per-imputation accessors take a boolean *mask* (usually the
    usable-imputation set from
    :func:`~pooled_lrt.convergence.reconcile_convergence`) and return
    values in imputation order.
    """

    fits: tuple[FitResult, ...]
    """Per-imputation fit results."""

    partable: pd.DataFrame
    """Parameter table of the fitted model."""

    options: EstimatorOptions = field(default_factory=EstimatorOptions)
    """Estimation settings."""

    datasets: tuple[pd.DataFrame, ...] = ()
    """Completed datasets, index-aligned with :attr:`fits`.  May be
    empty when only statistic pooling (D2) is needed."""

    engine: FittingEngine | None = field(default=None, repr=False, compare=False)
    """Engine that produced the fits (used for re-evaluation)."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "fits", tuple(self.fits))
        object.__setattr__(self, "datasets", coerce_imputations(self.datasets))
        validate_partable(self.partable)
        if not self.fits:
            raise ValueError("A FitCollection needs at least one imputation.")
        if self.datasets and len(self.datasets) != len(self.fits):
            raise ValueError(
                f"Got {len(self.fits)} fits but {len(self.datasets)} datasets; "
                "they must be index-aligned."
            )

    # ---- Construction -------------------------------------------

    @classmethod
    def from_datasets(
        cls,
        engine: FittingEngine,
        partable: pd.DataFrame,
        datasets: Iterable[DataFrameLike],
        options: EstimatorOptions | None = None,
        *,
        n_jobs: int = 1,
    ) -> FitCollection:
        """Fit *partable* to every dataset with *engine*.

        A fit that raises is recorded as non-converged; it will be
        excluded by the convergence reconciler.  When *options* leaves
        ``ntotal`` unset (0) it is filled from the row count of the
        completed datasets.
        """
        datasets = coerce_imputations(datasets)
        if options is None:
            options = EstimatorOptions()
        if options.ntotal <= 0 and datasets:
            options = replace(options, ntotal=len(datasets[0]))

        outcomes = map_imputations(
            lambda d: engine.fit(partable, d, options),
            datasets,
            n_jobs=n_jobs,
            label=f"{engine.name} fit",
        )
        fits = []
        for i, out in enumerate(outcomes):
            if out.ok:
                fits.append(out.value)
            else:
                logger.debug("Imputation %d did not produce a fit: %s", i, out.reason)
                fits.append(FitResult(converged=False))
        return cls(
            fits=tuple(fits),
            partable=partable,
            options=options,
            datasets=datasets,
            engine=engine,
        )

    # ---- Per-imputation accessors --------------------------------

    @property
    def n_imputations(self) -> int:
        return len(self.fits)

    @property
    def convergence(self) -> np.ndarray:
        """Boolean convergence flag per imputation."""
        return np.array([bool(f.converged) for f in self.fits], dtype=bool)

    def _select(self, mask: Sequence[bool] | np.ndarray | None) -> list[FitResult]:
        if mask is None:
            return list(self.fits)
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (self.n_imputations,):
            raise ValueError(
                f"Mask of shape {mask.shape} does not match "
                f"{self.n_imputations} imputations."
            )
        return [f for f, keep in zip(self.fits, mask, strict=True) if keep]

    def naive_statistics(self, mask: np.ndarray | None = None) -> np.ndarray:
        return np.array([f.naive.stat for f in self._select(mask)], dtype=float)

    def naive_df(self, mask: np.ndarray | None = None) -> np.ndarray:
        return np.array([f.naive.df for f in self._select(mask)], dtype=float)

    def first_naive_df(self, mask: np.ndarray | None = None) -> float:
        """Naive df of the first selected imputation (not averaged)."""
        selected = self._select(mask)
        if not selected:
            raise ValueError("No imputations selected.")
        return float(selected[0].naive.df)

    def robust_records(self, mask: np.ndarray | None = None) -> list[TestRecord | None]:
        return [f.robust for f in self._select(mask)]

    def selected_datasets(self, mask: np.ndarray | None = None) -> list[pd.DataFrame]:
        if not self.datasets:
            raise ValueError(
                "This FitCollection carries no datasets; likelihood pooling "
                "and robust difference tests need the completed datasets."
            )
        if mask is None:
            return list(self.datasets)
        mask = np.asarray(mask, dtype=bool)
        return [d for d, keep in zip(self.datasets, mask, strict=True) if keep]

    def pooled_estimates(self, mask: np.ndarray | None = None) -> np.ndarray:
        """Row-wise mean of the per-imputation estimates.

        Raises:
            ValueError: If a selected fit carries no estimates.
        """
        selected = self._select(mask)
        if not selected or any(f.estimates is None for f in selected):
            raise ValueError(
                "Pooled estimates need per-imputation estimates for every "
                "selected fit."
            )
        return np.vstack([f.estimates for f in selected]).mean(axis=0)
