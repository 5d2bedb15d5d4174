"""Pooling-method registry and protocol.

Each pooling method encapsulates one way of combining per-imputation
information into a single test and exposes a uniform ``pool()``
interface that :func:`~pooled_lrt.core.pooled_lrt` calls after
reconciling convergence and canonicalising the model pair.

* **D2** (:class:`~._methods.statistic.StatisticPoolingMethod`) pools
  already-computed test statistics (Li, Meng, Raghunathan & Rubin,
  1991).
* **D3** (:class:`~._methods.likelihood.LikelihoodPoolingMethod`) pools
  log-likelihoods re-evaluated at pooled parameter estimates (Meng &
  Rubin, 1992).

Both return a plain ``dict`` of pooled quantities; the orchestrator
packages it into a :class:`~pooled_lrt._results.PooledResult`.

Method names
~~~~~~~~~~~~
:func:`normalize_method` accepts the historical aliases
(case-insensitive):

=====================================================  ===========
alias                                                  method
=====================================================  ===========
``d3``, ``mr``, ``meng.rubin``, ``likelihood``, ``lrt``  D3
``d2``, ``lmrr``, ``li.et.al``, ``pooled.wald``          D2
``mplus``                                                D3, asymptotic
=====================================================  ===========
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from .._context import PoolingContext
    from ..engines import FittingEngine
    from ..fits import FitCollection

# ------------------------------------------------------------------ #
# Method protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class PoolingMethod(Protocol):
    """Interface that every pooling method must satisfy."""

    name: str
    """``"D2"`` or ``"D3"``."""

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
        """Pool one model (or a canonical pair) over *usable* imputations.

        Args:
            constrained: The single model, or the larger-df model of a
                canonical pair.
            comparison: The smaller-df model, or ``None``.
            usable: Boolean mask of usable imputations.
            asymptotic: Report ``chisq``/``df`` instead of
                ``F``/``df1``/``df2``.
            pool_robust: Pool the robust statistic directly (D2 only).
            engine: Fitting engine for per-imputation re-evaluation.
            n_jobs: Parallelism for per-imputation evaluations.
            ctx: Pooling context receiving intermediates and notices.
            difference_options: Extra keyword arguments for the
                engine's difference test (robust D2 only).

        Returns:
            Dict of pooled quantities.
        """
        ...


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #

_ALIASES: dict[str, str] = {
    "d3": "D3",
    "mr": "D3",
    "meng.rubin": "D3",
    "likelihood": "D3",
    "lrt": "D3",
    "mplus": "D3",
    "d2": "D2",
    "lmrr": "D2",
    "li.et.al": "D2",
    "pooled.wald": "D2",
}

_METHOD_REGISTRY: dict[str, type[PoolingMethod]] = {}


def _ensure_registry() -> None:
    """Populate the registry on first access."""
    if _METHOD_REGISTRY:
        return

    from .likelihood import LikelihoodPoolingMethod
    from .statistic import StatisticPoolingMethod

    _METHOD_REGISTRY.update(
        {
            "D2": StatisticPoolingMethod,
            "D3": LikelihoodPoolingMethod,
        }
    )


def normalize_method(test: str) -> tuple[str, bool]:
    """Map a method alias to ``("D2" | "D3", force_asymptotic)``.

    Raises:
        ValueError: If *test* is not recognised.
    """
    key = str(test).strip().lower()
    name = _ALIASES.get(key)
    if name is None:
        valid = ", ".join(sorted(_ALIASES))
        raise ValueError(f"Invalid test '{test}'. Choose from: {valid}.")
    return name, key == "mplus"


def resolve_method(test: str) -> PoolingMethod:
    """Return a pooling-method instance for a method name or alias.

    Raises:
        ValueError: If *test* is not recognised.
    """
    _ensure_registry()
    name, _ = normalize_method(test)
    return _METHOD_REGISTRY[name]()


__all__ = [
    "PoolingMethod",
    "normalize_method",
    "resolve_method",
]
