"""
Statistical utilities shared by the scan and model comparison code
"""

import numpy as np
from typing import Tuple
from scipy import stats


def fdr_correction(pvalues: np.ndarray, alpha: float = 0.05, method: str = 'bh') -> Tuple[np.ndarray, np.ndarray]:
    """Apply False Discovery Rate correction (Benjamini-Hochberg)

    Args:
        pvalues: Array of p-values
        alpha: False discovery rate (default: 0.05)
        method: Method ('bh' for Benjamini-Hochberg)

    Returns:
        Tuple of (rejected_hypotheses, corrected_pvalues)
    """
    pvalues = np.asarray(pvalues, dtype=float)
    if pvalues.size == 0:
        return np.zeros(0, dtype=bool), np.zeros(0, dtype=float)
    pvalues_sortind = np.argsort(pvalues, kind='mergesort')
    pvalues_sorted = pvalues[pvalues_sortind]
    sortrevind = pvalues_sortind.argsort()

    if method == 'bh':
        n = len(pvalues)
        i = np.arange(1, n + 1)
        corrected = pvalues_sorted * n / i
        corrected = np.minimum.accumulate(corrected[::-1])[::-1]
        corrected = np.minimum(corrected, 1.0)
        corrected_pvalues = corrected[sortrevind]
        rejected = corrected_pvalues <= alpha
    else:
        raise ValueError(f"Unknown method: {method}")

    return rejected, corrected_pvalues


def t_test_pvalues(t_stats: np.ndarray, df: int) -> np.ndarray:
    """Exact two-tailed p-values for t statistics with ``df`` degrees of freedom."""
    if df <= 0:
        raise ValueError("Degrees of freedom must be positive")
    p = 2.0 * stats.t.sf(np.abs(np.asarray(t_stats, dtype=float)), df)
    return np.clip(p, 0.0, 1.0)


def lrt_pvalue(statistic: float, df: int) -> float:
    """Chi-square tail probability for a likelihood ratio statistic."""
    if df <= 0:
        raise ValueError("Likelihood ratio test needs at least one degree of freedom")
    # Small negative values come from optimiser tolerance
    statistic = max(float(statistic), 0.0)
    return float(stats.chi2.sf(statistic, df=df))
