"""
Outlier candidate detection and explicit sample exclusion

Candidates are only surfaced (projected coordinates ranked by distance from
the centre); deciding what to drop stays with the analyst. Re-running an
analysis without the manual exclusion step changes downstream results.
"""

import warnings
from typing import Iterable, Sequence

import numpy as np
import pandas as pd
from sklearn.preprocessing import StandardScaler

from ..matrix.pca import CYTOVAR_PCA
from ..utils.exceptions import DataError, StaleExclusionError

EXCLUDED_ATTR = 'excluded_sample_ids'


def standardize(matrix: np.ndarray) -> np.ndarray:
    """Scale each column to zero mean and unit variance

    Raises:
        DataError: A column is constant and cannot be scaled
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    stds = matrix.std(axis=0)
    if np.any(stds == 0):
        raise DataError(f"Cannot standardize constant columns at positions {np.where(stds == 0)[0].tolist()}")
    return StandardScaler().fit_transform(matrix)


def detect_candidates(wide: pd.DataFrame,
                      columns: Sequence[str],
                      n_components: int = 2,
                      verbose: bool = False) -> pd.DataFrame:
    """Project samples onto principal components for manual outlier review

    Args:
        wide: Per-sample table with a sample_id column
        columns: Numeric columns to project (e.g. protein intensities)
        n_components: Number of components to report
        verbose: Print PCA progress

    Returns:
        DataFrame [sample_id, PC1..PCk, distance, rank] ordered by distance
        from the origin, largest first (ties by sample_id)
    """
    columns = list(columns)
    missing = [c for c in columns if c not in wide.columns]
    if missing:
        raise DataError(f"Columns not found in table: {missing}")

    complete = wide.dropna(subset=columns)
    n_dropped = len(wide) - len(complete)
    if n_dropped:
        warnings.warn(f"Skipping {n_dropped} samples with missing values in {columns}")

    scaled = standardize(complete[columns].to_numpy())
    scores, explained = CYTOVAR_PCA(scaled, pcs_keep=n_components, center=False, verbose=verbose)

    pc_names = [f'PC{i + 1}' for i in range(scores.shape[1])]
    result = pd.DataFrame(scores, columns=pc_names)
    result.insert(0, 'sample_id', complete['sample_id'].to_numpy())
    result['distance'] = np.sqrt(np.sum(scores ** 2, axis=1))
    result = result.sort_values(['distance', 'sample_id'], ascending=[False, True], kind='mergesort')
    result['rank'] = np.arange(1, len(result) + 1)
    result.attrs['explained_variance_ratio'] = explained.tolist()
    return result.reset_index(drop=True)


def apply_exclusion(wide: pd.DataFrame, excluded_ids: Iterable[str]) -> pd.DataFrame:
    """Remove samples by sample_id

    Ids removed by an earlier call on the same lineage (tracked in
    ``DataFrame.attrs``) are accepted again so the operation is idempotent.

    Raises:
        StaleExclusionError: An id is neither present nor previously excluded
    """
    excluded = set(str(i) for i in excluded_ids)
    already = set(wide.attrs.get(EXCLUDED_ATTR, ()))
    present = set(wide['sample_id'].astype(str))

    stale = sorted(excluded - present - already)
    if stale:
        raise StaleExclusionError(f"Exclusion ids not found in table: {stale}")

    keep = ~wide['sample_id'].astype(str).isin(excluded)
    filtered = wide.loc[keep].reset_index(drop=True)
    filtered.attrs = dict(wide.attrs)
    filtered.attrs[EXCLUDED_ATTR] = sorted(already | (excluded & present))
    return filtered
