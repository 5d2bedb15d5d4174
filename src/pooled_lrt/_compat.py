"""Coercion of completed datasets into one pandas imputation set.

Fitting engines only ever see ``pandas.DataFrame`` objects.  Users may
hand over their imputations as Polars frames (eager or lazy), which are
converted here, once, when a :class:`~pooled_lrt.fits.FitCollection` is
built.  The set is also checked for shape: every imputation completes
the same observed data, so all of them must share the same columns and
the same number of rows.

Polars is an optional extra (``pip install pooled-lrt[polars]``).
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, TypeAlias

import pandas as pd

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame

try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _to_pandas(dataset: DataFrameLike, index: int) -> pd.DataFrame:
    """Return imputation *index* as pandas; lazy frames are collected."""
    if isinstance(dataset, pd.DataFrame):
        return dataset
    if _HAS_POLARS:
        if isinstance(dataset, pl.LazyFrame):
            dataset = dataset.collect()
        if isinstance(dataset, pl.DataFrame):
            return dataset.to_pandas()

    accepted = "a pandas DataFrame" + (" or Polars DataFrame/LazyFrame" if _HAS_POLARS else "")
    raise TypeError(
        f"Imputation {index} must be {accepted}, got {type(dataset).__name__}."
    )


def coerce_imputations(datasets: Iterable[DataFrameLike]) -> tuple[pd.DataFrame, ...]:
    """Convert completed datasets to pandas and check they form one set.

    Args:
        datasets: Completed datasets in imputation order.  An empty
            iterable is allowed (statistic pooling needs no data).

    Returns:
        A tuple of pandas ``DataFrame`` objects, one per imputation.
        pandas inputs are passed through without copying.

    Raises:
        TypeError: If an imputation is not a supported frame type.
        ValueError: If imputations differ in their columns or row count.
    """
    frames = tuple(_to_pandas(d, i) for i, d in enumerate(datasets))
    if not frames:
        return frames

    columns = set(frames[0].columns)
    n_rows = len(frames[0])
    for i, frame in enumerate(frames[1:], start=1):
        if set(frame.columns) != columns:
            missing = sorted(map(str, columns.symmetric_difference(frame.columns)))
            raise ValueError(
                f"Imputation {i} does not have the columns of imputation 0 "
                f"(differing: {missing})."
            )
        if len(frame) != n_rows:
            raise ValueError(
                f"Imputation {i} has {len(frame)} rows but imputation 0 has "
                f"{n_rows}; completed datasets must share the same observations."
            )
    return frames
