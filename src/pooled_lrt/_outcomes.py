"""Tagged per-imputation outcomes and the per-imputation map.

Every operation that touches one completed dataset at a time (a fit, a
log-likelihood evaluation, a difference test) can fail on that dataset
alone.  Instead of sentinel values the result for each imputation is
either :class:`Succeeded` or :class:`Failed`; reductions operate on the
successes and surface the failure count for diagnostics.

Parallelism
~~~~~~~~~~~
Imputations are independent, so :func:`map_imputations` can spread
them over ``joblib.Parallel(prefer="threads")`` workers.  Results are
collected by position, and every downstream reduction (mean, variance)
is order-independent.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, ClassVar

from joblib import Parallel, delayed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Succeeded:
    """A per-imputation computation that produced a value."""

    value: Any
    """The computed quantity (statistic, log-likelihood, fit, …)."""

    df: float | None = None
    """Degrees of freedom attached to a test statistic, if any."""

    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class Failed:
    """A per-imputation computation that could not be completed."""

    reason: str
    """Human-readable cause, kept for diagnostics."""

    ok: ClassVar[bool] = False


Outcome = Succeeded | Failed


def map_imputations(
    func: Callable[[Any], Any],
    items: Iterable[Any],
    *,
    n_jobs: int = 1,
    label: str = "evaluation",
) -> list[Outcome]:
    """Apply *func* to every item, capturing failures per item.

    Args:
        func: Callable receiving one item.  It may return an
            :data:`Outcome` directly; any other return value is wrapped
            in :class:`Succeeded`.
        items: Per-imputation inputs, in imputation order.
        n_jobs: ``1`` runs serially; anything else is passed to
            ``joblib.Parallel`` with thread preference.
        label: Prefix for the failure reason of raised exceptions.

    Returns:
        One outcome per item, in input order.
    """

    def _run_one(item: Any) -> Outcome:
        try:
            out = func(item)
        except Exception as exc:  # noqa: BLE001
            logger.debug("%s raised %s: %s", label, type(exc).__name__, exc)
            return Failed(f"{label} failed: {exc}")
        if isinstance(out, (Succeeded, Failed)):
            return out
        return Succeeded(out)

    items = list(items)
    if n_jobs == 1 or len(items) < 2:
        return [_run_one(item) for item in items]
    return list(Parallel(n_jobs=n_jobs, prefer="threads")(delayed(_run_one)(item) for item in items))
