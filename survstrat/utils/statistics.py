"""
Shared statistical utilities for survstrat services.

This module provides the small numerical helpers shared by the stratification,
screening and scoring services so that thresholds and p-values are computed the
same way everywhere.
"""

from typing import List, Sequence, Tuple

import numpy as np
from scipy import stats

P_VALUE_DECIMALS = 6


def benjamini_hochberg(p_values: List[float]) -> List[float]:
    """
    Apply Benjamini-Hochberg FDR correction to p-values.

    The Benjamini-Hochberg procedure controls the false discovery rate (FDR)
    by adjusting p-values to account for multiple testing.

    Args:
        p_values: List of raw p-values to correct

    Returns:
        List of FDR-adjusted p-values (q-values), capped at 1.0

    Example:
        >>> p_values = [0.01, 0.03, 0.05, 0.10, 0.50]
        >>> fdr = benjamini_hochberg(p_values)
        >>> all(f >= p for f, p in zip(fdr, p_values))
        True

    References:
        Benjamini, Y., & Hochberg, Y. (1995). Controlling the false discovery
        rate: a practical and powerful approach to multiple testing.
        Journal of the Royal Statistical Society, Series B, 57(1), 289-300.
    """
    n = len(p_values)
    if n == 0:
        return []

    sorted_indices = np.argsort(p_values)
    sorted_p = np.asarray(p_values, dtype=float)[sorted_indices]

    # q_i = p_i * n / rank_i
    ranked = sorted_p * n / np.arange(1, n + 1)

    # q-values must be non-decreasing in p-value order
    monotonic = np.minimum.accumulate(ranked[::-1])[::-1]

    fdr = np.empty(n)
    fdr[sorted_indices] = np.minimum(monotonic, 1.0)
    return fdr.tolist()


def percentile_thresholds(
    values: Sequence[float], percentiles: Sequence[float]
) -> Tuple[float, ...]:
    """
    Compute percentile cut points over the non-missing values.

    Uses numpy's default linear interpolation between order statistics.

    Args:
        values: Numeric values, NaN entries are ignored
        percentiles: Percentiles in [0, 100]

    Returns:
        Tuple of thresholds in the order of ``percentiles``

    Raises:
        ValueError: If no non-missing values are available
    """
    arr = np.asarray(values, dtype=float)
    arr = arr[~np.isnan(arr)]
    if arr.size == 0:
        raise ValueError("Cannot compute percentiles of an empty value set")
    return tuple(float(t) for t in np.percentile(arr, list(percentiles)))


def chi2_p_value(statistic: float, dof: int, decimals: int = P_VALUE_DECIMALS) -> float:
    """
    Upper-tail p-value of a chi-squared statistic, rounded.

    Computed as ``1 - CDF(statistic; dof)`` so that results agree with the
    reports this package replaces.

    Args:
        statistic: Chi-squared test statistic
        dof: Degrees of freedom (> 0)
        decimals: Number of decimal digits to keep

    Returns:
        float: Rounded p-value
    """
    if dof < 1:
        raise ValueError(f"Degrees of freedom must be >= 1, got {dof}")
    return round(float(1.0 - stats.chi2.cdf(statistic, dof)), decimals)
