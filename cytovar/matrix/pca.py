"""
Principal Component Analysis for per-sample intensity matrices
"""

import numpy as np
from typing import Tuple
import warnings


def _flip_signs(U: np.ndarray, Vt: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Make the largest-magnitude loading of every component positive.

    SVD signs are arbitrary; fixing them keeps repeated runs on the same input
    identical.
    """
    max_abs_rows = np.argmax(np.abs(Vt), axis=1)
    signs = np.sign(Vt[np.arange(Vt.shape[0]), max_abs_rows])
    signs[signs == 0] = 1.0
    return U * signs[np.newaxis, :], Vt * signs[:, np.newaxis]


def CYTOVAR_PCA(M: np.ndarray,
                pcs_keep: int = 2,
                center: bool = True,
                verbose: bool = True) -> Tuple[np.ndarray, np.ndarray]:
    """PCA using Singular Value Decomposition

    Args:
        M: Data matrix (n_samples × n_features), typically already standardized
        pcs_keep: Number of principal components to return
        center: Whether to center each column first
        verbose: Print progress information

    Returns:
        Tuple of (scores, explained_variance_ratio) where scores is
        n_samples × pcs_keep (U scaled by the singular values)
    """
    if not isinstance(M, np.ndarray):
        raise ValueError("M must be a numpy array")
    if M.ndim != 2:
        raise ValueError("M must be a 2D matrix")

    data = M.astype(np.float64, copy=True)
    n_samples, n_features = data.shape

    if n_samples < 2:
        raise ValueError("PCA needs at least two samples")
    if not np.all(np.isfinite(data)):
        raise ValueError("PCA input contains NaN or infinite values")

    if verbose:
        print(f"Performing SVD-based PCA on matrix ({n_samples}×{n_features})")

    if center:
        data -= np.mean(data, axis=0)[np.newaxis, :]

    try:
        U, s, Vt = np.linalg.svd(data, full_matrices=False)
    except np.linalg.LinAlgError as e:
        raise ValueError(f"Failed to compute SVD: {e}")

    U, Vt = _flip_signs(U, Vt)

    eigenvals = (s ** 2) / (n_samples - 1)
    total = np.sum(eigenvals)

    max_pcs = min(n_samples, n_features)
    if pcs_keep > max_pcs:
        warnings.warn(f"Requested {pcs_keep} components but only {max_pcs} are available")
    pcs_keep = min(pcs_keep, max_pcs)

    scores = U[:, :pcs_keep] * s[np.newaxis, :pcs_keep]
    if total > 0:
        explained_variance_ratio = eigenvals[:pcs_keep] / total
    else:
        explained_variance_ratio = np.zeros(pcs_keep)

    if verbose:
        print(f"Keeping top {pcs_keep} principal components")
        print(f"Explained variance ratio: {explained_variance_ratio}")

    return scores, explained_variance_ratio
