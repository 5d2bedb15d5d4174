"""pooled_lrt — Likelihood-ratio tests pooled across multiply-imputed data.

Implements the D2 statistic-pooling method (Li, Meng, Raghunathan &
Rubin, 1991) and the D3 likelihood-pooling method (Meng & Rubin,
1992) for testing one model's fit or comparing two nested models fitted
to every imputation, with robust (scaled, scaled-and-shifted)
corrections and a statsmodels-backed reference fitting engine.

Public API:
    .. autosummary::
        pooled_lrt
        calculate_d2
        calculate_d3
        pool_statistics
        pool_likelihoods
        robustify
        reconcile_convergence
        canonicalize_pair
        get_default_method
        set_default_method
        get_n_jobs
        set_n_jobs
        FitCollection
        FitResult
        TestRecord
        EstimatorOptions
        FittingEngine
        GLMEngine
        register_engine
        resolve_engine
        PoolingContext
        PooledResult
"""

from ._config import get_default_method, get_n_jobs, set_default_method, set_n_jobs
from ._context import PoolingContext
from ._methods.likelihood import calculate_d3, pool_likelihoods
from ._methods.statistic import calculate_d2, pool_statistics
from ._results import PooledResult
from .comparison import canonicalize_pair
from .convergence import reconcile_convergence
from .core import pooled_lrt
from .engines import FittingEngine, register_engine, resolve_engine
from .fits import EstimatorOptions, FitCollection, FitResult, TestRecord
from .glm import GLMEngine
from .robust import robustify

__version__ = "0.1.0"

__all__ = [
    "pooled_lrt",
    "calculate_d2",
    "calculate_d3",
    "pool_statistics",
    "pool_likelihoods",
    "robustify",
    "reconcile_convergence",
    "canonicalize_pair",
    "get_default_method",
    "set_default_method",
    "get_n_jobs",
    "set_n_jobs",
    "FitCollection",
    "FitResult",
    "TestRecord",
    "EstimatorOptions",
    "FittingEngine",
    "GLMEngine",
    "register_engine",
    "resolve_engine",
    "PoolingContext",
    "PooledResult",
]
