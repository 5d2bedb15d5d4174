"""Parameter tables.

A parameter table is a ``pandas.DataFrame`` with one row per model
parameter (or constraint) and at least the columns

* ``lhs``, ``op``, ``rhs`` — what the row describes (e.g.
  ``y ~ x1`` is a regression slope, ``y ~1`` an intercept,
  ``a == b`` an equality constraint);
* ``free`` — ``0`` for fixed rows, ``1..k`` indexing the free
  parameters;
* ``ustart`` — user-supplied value used when the row is fixed.

Engines may carry extra columns (``est``, ``se``, ``group``, …); the
helpers here only touch the columns they need.

The likelihood-pooling method never optimises: it *fixes* every
parameter at its cross-imputation average and asks the engine to
evaluate that fixed table.  :func:`fix_parameters` produces such a
table.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import numpy as np
import pandas as pd

REQUIRED_COLUMNS: tuple[str, ...] = ("lhs", "op", "rhs", "free", "ustart")

# Rows that do not correspond to a parameter value and must be dropped
# before a table is fixed at pooled estimates.
CONSTRAINT_OPS: frozenset[str] = frozenset({"==", "<", ">", ":="})

# Columns describing a previous optimisation; meaningless once fixed.
_ESTIMATION_COLUMNS: tuple[str, ...] = ("start", "est", "se")


def validate_partable(partable: pd.DataFrame, *, name: str = "partable") -> None:
    """Check that *partable* is a DataFrame with the required columns.

    Raises:
        TypeError: If *partable* is not a ``pandas.DataFrame``.
        ValueError: If any of :data:`REQUIRED_COLUMNS` is missing.
    """
    if not isinstance(partable, pd.DataFrame):
        raise TypeError(
            f"'{name}' must be a pandas DataFrame, got {type(partable).__name__}."
        )
    missing = [c for c in REQUIRED_COLUMNS if c not in partable.columns]
    if missing:
        raise ValueError(f"'{name}' is missing required column(s): {missing}.")


def count_free_parameters(partable: pd.DataFrame) -> int:
    """Number of free parameters net of equality constraints.

    ``max(free) - #(op == "==")``: each equality constraint removes one
    degree of freedom from the free parameters it ties together.
    """
    free = pd.to_numeric(partable["free"], errors="coerce").fillna(0)
    n_free = int(free.max()) if len(free) else 0
    n_equal = int((partable["op"] == "==").sum())
    return n_free - n_equal


def fix_parameters(
    partable: pd.DataFrame,
    values: Sequence[float] | np.ndarray,
    *,
    drop_constraints: bool = True,
) -> pd.DataFrame:
    """Return a copy of *partable* with every row fixed at *values*.

    Args:
        partable: Source parameter table.  Not modified.
        values: One value per row of *partable* (constraint rows
            included; their values are discarded when the rows are
            dropped).
        drop_constraints: Remove ``==``, ``<``, ``>`` and ``:=`` rows,
            which have no meaning once every parameter is fixed.

    Returns:
        A new table with ``free = 0``, ``user = 1``, ``ustart = values``
        and no ``start``/``est``/``se`` columns.

    Raises:
        ValueError: If *values* does not match the number of rows.
    """
    values = np.asarray(values, dtype=float)
    if values.shape != (len(partable),):
        raise ValueError(
            f"Expected {len(partable)} fixed values (one per parameter-table "
            f"row), got shape {values.shape}."
        )
    fixed = partable.copy()
    fixed["free"] = 0
    fixed["user"] = 1
    fixed["ustart"] = values
    fixed = fixed.drop(columns=[c for c in _ESTIMATION_COLUMNS if c in fixed.columns])
    if drop_constraints:
        fixed = fixed[~fixed["op"].isin(CONSTRAINT_OPS)]
    return fixed.reset_index(drop=True)


def regression_partable(
    response: str,
    predictors: Sequence[str],
    *,
    intercept: bool = True,
    fixed: Mapping[str, float] | None = None,
) -> pd.DataFrame:
    """Build the parameter table of a single-equation regression model.

    Args:
        response: Outcome column name.
        predictors: Predictor column names, in design-matrix order.
        intercept: Prepend an intercept row (``op = "~1"``).
        fixed: Predictor name → value for slopes held fixed.  Fixing a
            slope at ``0`` expresses the same constraint as dropping
            the predictor, but keeps both tables row-aligned.

    Returns:
        A parameter table whose free rows are numbered ``1..k`` in
        row order.
    """
    fixed = dict(fixed or {})
    unknown = set(fixed) - set(predictors)
    if unknown:
        raise ValueError(f"Cannot fix unknown predictor(s): {sorted(unknown)}.")

    rows: list[dict[str, object]] = []
    if intercept:
        rows.append({"lhs": response, "op": "~1", "rhs": ""})
    for name in predictors:
        rows.append({"lhs": response, "op": "~", "rhs": name})

    free_index = 0
    for row in rows:
        value = fixed.get(str(row["rhs"])) if row["op"] == "~" else None
        if value is None:
            free_index += 1
            row["free"] = free_index
            row["ustart"] = np.nan
        else:
            row["free"] = 0
            row["ustart"] = float(value)
    return pd.DataFrame(rows, columns=list(REQUIRED_COLUMNS))


def saturated_partable(response: str, n_obs: int) -> pd.DataFrame:
    """Parameter table of the saturated model for *n_obs* observations.

    One free mean parameter (``op = "mu"``) per observation, in row
    order of the dataset.
    """
    if n_obs < 1:
        raise ValueError("The saturated model needs at least one observation.")
    return pd.DataFrame(
        {
            "lhs": response,
            "op": "mu",
            "rhs": [str(i) for i in range(n_obs)],
            "free": np.arange(1, n_obs + 1),
            "ustart": np.nan,
        },
        columns=list(REQUIRED_COLUMNS),
    )
