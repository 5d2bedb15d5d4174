"""Typed result object for pooled likelihood-ratio tests.

A frozen dataclass that provides:

* **Attribute access** — ``result.chisq``, ``result.method``, etc.
* **Dict-like access** — ``result["F"]``, ``result.get("key")``,
  ``"key" in result`` for consumers that prefer bracket syntax.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy types converted to native Python.

Which statistic fields are populated depends on the request: the F
form (``F``/``df1``/``df2``) or the chi-squared form (``chisq``/``df``),
``_scaled`` counterparts for robust tests, and information criteria
for single-model D3 tests.  Unpopulated fields are ``None``; they are
reported as absent by ``in``, ``get`` and ``to_dict()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np

if TYPE_CHECKING:
    from ._context import PoolingContext

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy scalars/arrays to Python-native types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports three access patterns:

    1. ``result["key"]``     — raises ``KeyError`` on miss
    2. ``result.get(key, d)`` — returns *d* on miss (default ``None``)
    3. ``"key" in result``   — membership test

    A field whose value is ``None`` counts as a miss.
    """

    # Fields to exclude from to_dict() serialisation.
    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset({"context"})

    # Fields serialised even when ``None``.
    _ALWAYS_SERIALISED: ClassVar[frozenset[str]] = frozenset()

    def __getitem__(self, key: str) -> Any:
        """Attribute lookup via bracket syntax."""
        value = getattr(self, key, None)
        if value is None:
            raise KeyError(key)
        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Attribute lookup with a fallback default."""
        value = getattr(self, key, None)
        return default if value is None else value

    def __contains__(self, key: object) -> bool:
        """Membership test: ``"key" in result``."""
        if not isinstance(key, str):
            return False
        return getattr(self, key, None) is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary of populated fields.

        Runs :func:`_numpy_to_python` on every value so the returned
        dict is fully JSON-serialisable.
        """
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._EXCLUDE_FROM_DICT:
                continue
            val = getattr(self, f.name)
            if val is None and f.name not in self._ALWAYS_SERIALISED:
                continue
            result[f.name] = _numpy_to_python(val)
        return result


# ------------------------------------------------------------------ #
# PooledResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class PooledResult(_DictAccessMixin):
    """Result of :func:`~pooled_lrt.core.pooled_lrt`.

    All fields are accessible both as attributes (``result.chisq``)
    and via dict syntax (``result["chisq"]``).
    """

    _ALWAYS_SERIALISED: ClassVar[frozenset[str]] = frozenset(
        {"method", "asymptotic", "n_imputations", "n_excluded", "notices"}
    )

    # ---- Metadata --------------------------------------------------
    method: str
    """Pooling method actually used (``"D2"`` or ``"D3"``)."""

    asymptotic: bool
    """``True`` for the chi-squared form, ``False`` for the F form."""

    n_imputations: int
    """Imputations that entered the naive reduction."""

    n_excluded: int = 0
    """Usable imputations dropped because an evaluation failed."""

    n_imputations_scaled: int | None = None
    """Imputations entering the ``_scaled`` reduction when per-imputation
    robust difference tests are pooled; ``None`` otherwise."""

    notices: tuple[str, ...] = ()
    """Non-fatal notices emitted while pooling."""

    # ---- Naive statistic -------------------------------------------
    chisq: float | None = None
    df: float | None = None
    F: float | None = None
    df1: float | None = None
    df2: float | None = None
    pvalue: float | None = None
    ariv: float | None = None
    """Average relative increase in variance."""
    fmi: float | None = None
    """Fraction of missing information, ``ariv / (1 + ariv)`` (D2)."""

    # ---- Robust statistic ------------------------------------------
    chisq_scaled: float | None = None
    df_scaled: float | None = None
    F_scaled: float | None = None
    df1_scaled: float | None = None
    df2_scaled: float | None = None
    pvalue_scaled: float | None = None
    ariv_scaled: float | None = None
    fmi_scaled: float | None = None
    chisq_scaling_factor: float | None = None
    """Mean scaling factor (or Satorra difference factor)."""
    chisq_shift_parameters: float | None = None
    """Mean summed shift parameter (scaled-and-shifted tests)."""

    # ---- Single-model extras ---------------------------------------
    npar: int | None = None
    ntotal: int | None = None
    logl: float | None = None
    unrestricted_logl: float | None = None
    aic: float | None = None
    bic: float | None = None
    bic2: float | None = None
    """Sample-size-adjusted BIC, ``−2ℓ + npar · log((N + 2) / 24)``."""

    # ---- Internal context ------------------------------------------
    context: PoolingContext | None = field(default=None, repr=False, compare=False)
    """Pipeline artifacts; excluded from :meth:`to_dict`."""

    @classmethod
    def statistic_fields(cls) -> frozenset[str]:
        """Names of the optional statistic fields."""
        skip = cls._ALWAYS_SERIALISED | cls._EXCLUDE_FROM_DICT | {"n_imputations_scaled"}
        return frozenset(f.name for f in fields(cls) if f.name not in skip)
