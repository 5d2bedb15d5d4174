"""Runtime configuration for the pooled_lrt package.

Controls the pooling method used when :func:`~pooled_lrt.pooled_lrt`
is called without an explicit ``test`` and the number of worker
threads used for per-imputation model evaluations.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_default_method` /
       :func:`set_n_jobs`.
    2. The ``POOLED_LRT_METHOD`` / ``POOLED_LRT_N_JOBS`` environment
       variables.
    3. Built-in defaults: ``"D3"`` and ``1``.

Examples:
    Pool test statistics (D2) by default from the shell::

        export POOLED_LRT_METHOD=D2

    Evaluate imputations on four threads programmatically::

        import pooled_lrt
        pooled_lrt.set_n_jobs(4)

    Re-enable the default resolution order::

        pooled_lrt.set_default_method("auto")
"""

from __future__ import annotations

import os

_VALID_METHODS = {"d2", "d3", "auto"}

_DEFAULT_METHOD = "D3"
_DEFAULT_N_JOBS = 1

# Sentinels indicating "no programmatic override has been set".
_method_override: str | None = None
_n_jobs_override: int | None = None


def get_default_method() -> str:
    """Return the default pooling method (``"D2"`` or ``"D3"``).

    Resolution order:
        1. Value set by :func:`set_default_method` (unless ``"auto"``).
        2. ``POOLED_LRT_METHOD`` environment variable.
        3. ``"D3"``.
    """
    # 1. Programmatic override
    if _method_override is not None and _method_override != "auto":
        return _method_override.upper()

    # 2. Environment variable
    env = os.environ.get("POOLED_LRT_METHOD", "").strip().lower()
    if env in ("d2", "d3"):
        return env.upper()

    # 3. Default
    return _DEFAULT_METHOD


def set_default_method(name: str) -> None:
    """Override the default pooling method.

    Args:
        name: One of ``"D2"``, ``"D3"``, or ``"auto"``
            (case-insensitive).  ``"auto"`` restores the default
            resolution order.

    Raises:
        ValueError: If *name* is not a recognised method.
    """
    global _method_override
    normalised = name.strip().lower()
    if normalised not in _VALID_METHODS:
        raise ValueError(
            f"Unknown pooling method '{name}'. Choose from: ['D2', 'D3', 'auto']"
        )
    _method_override = normalised


def get_n_jobs() -> int:
    """Return the number of threads used for per-imputation evaluations.

    Malformed values of ``POOLED_LRT_N_JOBS`` are ignored.
    """
    if _n_jobs_override is not None:
        return _n_jobs_override

    env = os.environ.get("POOLED_LRT_N_JOBS", "").strip()
    if env:
        try:
            value = int(env)
        except ValueError:
            value = 0
        if value != 0:
            return value

    return _DEFAULT_N_JOBS


def set_n_jobs(n_jobs: int | None) -> None:
    """Override the per-imputation parallelism level.

    Args:
        n_jobs: Thread count passed to :class:`joblib.Parallel`
            (``-1`` uses all cores).  ``None`` restores the default
            resolution order.

    Raises:
        ValueError: If *n_jobs* is ``0``.
    """
    global _n_jobs_override
    if n_jobs is not None and int(n_jobs) == 0:
        raise ValueError("n_jobs must be a non-zero integer (or None).")
    _n_jobs_override = None if n_jobs is None else int(n_jobs)
