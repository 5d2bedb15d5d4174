"""Shared type aliases for the pooled_lrt package."""

from collections.abc import Sequence

import numpy as np
import pandas as pd

# Per-imputation vectors accepted by the pooling functions.
ArrayLike = np.ndarray | pd.Series | Sequence[float]

# Boolean convergence flags, one per imputation.
FlagsLike = np.ndarray | pd.Series | Sequence[bool]
