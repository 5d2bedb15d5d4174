"""Fitting-engine protocol and resolution logic.

The pooling methods never fit models themselves.  Whenever they need
a model evaluated on one completed dataset — a log-likelihood at
pooled parameter estimates (D3), a saturated-model fit (D3 without an
explicit comparison model), or a per-imputation difference test (D2
with robust pooling) — they call an injected :class:`FittingEngine`.

Decoupling the engine this way lets the pooling core be exercised
with synthetic stand-ins that return controlled log-likelihoods and
statistics, while :class:`~pooled_lrt.glm.GLMEngine` provides a real
statsmodels-backed implementation.

Extensibility
~~~~~~~~~~~~~
New engines implement the protocol and are registered with
:func:`register_engine`; :func:`resolve_engine` then maps a name to a
fresh instance.  The pooling core programs against the protocol only.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from .fits import EstimatorOptions, FitResult

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------ #
# FittingEngine protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class FittingEngine(Protocol):
    """Interface that every model-fitting engine must implement.

    Attributes:
        name: Short identifier used in logs and failure reasons.
    """

    @property
    def name(self) -> str: ...

    def fit(
        self,
        partable: pd.DataFrame,
        dataset: pd.DataFrame,
        options: EstimatorOptions,
    ) -> FitResult:
        """Fit *partable* to one dataset.

        A table whose rows are all fixed (``free == 0``) is evaluated,
        not optimised: the returned ``loglik`` is the log-likelihood at
        the fixed values.

        Returns:
            A :class:`~pooled_lrt.fits.FitResult` with convergence
            flag, log-likelihood, test records and row-aligned
            estimates.
        """
        ...

    def unrestricted_partable(
        self,
        partable: pd.DataFrame,
        dataset: pd.DataFrame,
        options: EstimatorOptions,
    ) -> pd.DataFrame:
        """Parameter table of the saturated (unrestricted) model."""
        ...

    def difference_test(
        self,
        fit0: FitResult,
        fit1: FitResult,
        options: EstimatorOptions,
        **kwargs: Any,
    ) -> tuple[float, float]:
        """Difference test between a constrained fit and a comparison fit.

        Args:
            fit0: Fit of the constrained (larger-df) model.
            fit1: Fit of the comparison model on the same dataset.
            options: Estimation settings of the constrained model.
            **kwargs: Engine-specific test options.

        Returns:
            ``(statistic, df)``.
        """
        ...


def evaluate_loglik(
    engine: FittingEngine,
    partable: pd.DataFrame,
    dataset: pd.DataFrame,
    options: EstimatorOptions,
) -> float:
    """Log-likelihood of a fixed parameter table on one dataset.

    Raises:
        RuntimeError: If the engine returns no finite log-likelihood.
    """
    result = engine.fit(partable, dataset, options)
    loglik = result.loglik
    if loglik is None or not np.isfinite(loglik):
        raise RuntimeError(
            f"Engine '{engine.name}' returned a non-finite log-likelihood "
            f"({loglik!r}); the model-implied moments may not be admissible."
        )
    return float(loglik)


# ------------------------------------------------------------------ #
# Engine resolution
# ------------------------------------------------------------------ #

_ENGINES: dict[str, type] = {}
"""Registry mapping engine names to concrete FittingEngine classes."""


def register_engine(name: str, cls: type) -> None:
    """Register a concrete ``FittingEngine`` class under *name*.

    Raises:
        TypeError: If *cls* does not satisfy the ``FittingEngine``
            protocol.
    """
    # runtime_checkable protocols with non-method members do not
    # support issubclass(); use isinstance() on a sentinel instance.
    try:
        instance = cls()
    except Exception:  # noqa: BLE001
        msg = f"{cls!r} could not be instantiated for protocol check."
        raise TypeError(msg) from None
    if not isinstance(instance, FittingEngine):
        msg = f"{cls!r} does not implement the FittingEngine protocol."
        raise TypeError(msg)
    _ENGINES[name] = cls


def resolve_engine(engine: str | FittingEngine | None) -> FittingEngine | None:
    """Resolve an engine name or instance to a ``FittingEngine``.

    Instances (and ``None``) are returned as-is; strings are looked up
    in the registry.

    Raises:
        ValueError: If *engine* is an unknown name.
        TypeError: If *engine* is neither a string nor an engine.
    """
    if engine is None or isinstance(engine, FittingEngine):
        return engine
    if not isinstance(engine, str):
        raise TypeError(
            f"engine must be a FittingEngine or a registered name, "
            f"got {type(engine).__name__}."
        )
    if engine not in _ENGINES:
        available = ", ".join(sorted(_ENGINES)) or "(none registered)"
        msg = f"Unknown engine {engine!r}.  Available engines: {available}."
        raise ValueError(msg)
    logger.debug("Resolved engine %r", engine)
    instance: FittingEngine = _ENGINES[engine]()
    return instance
