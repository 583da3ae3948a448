"""
Variance decomposition: share of total variance per grouping factor
"""

import math
from typing import Dict, Iterable, Mapping, Optional

import pandas as pd

from ..config import RESIDUAL
from ..utils.data_types import VarianceComponents
from ..utils.exceptions import ConfigurationError, DataError, StatisticalValidityError


def check_factor_names(names: Iterable[str], residual_name: str = RESIDUAL) -> None:
    """Grouping factors may not reuse the reserved residual name."""
    clashes = [n for n in names if n == residual_name]
    if clashes:
        raise ConfigurationError(
            f"Grouping factor name '{residual_name}' is reserved for residual variance"
        )


def decompose(group_variances: Mapping[str, float],
              residual_name: str = RESIDUAL,
              require_residual: bool = False) -> Dict[str, float]:
    """Fraction of total variance attributable to each group

    fraction[g] = variance[g] / sum(variances)

    Args:
        group_variances: Group name -> estimated variance, including the
            residual term under ``residual_name`` when the model reports it
        residual_name: Reserved name of the residual term
        require_residual: Fail when the residual term is absent

    Returns:
        Group name -> fraction; fractions sum to 1

    Raises:
        DataError: Empty input, or negative/non-finite variances
        ConfigurationError: Residual term required but missing
        StatisticalValidityError: Total variance is zero
    """
    if not group_variances:
        raise DataError("No variance components to decompose")
    if require_residual and residual_name not in group_variances:
        raise ConfigurationError(f"Residual variance '{residual_name}' missing from components")

    variances = {}
    for name, value in group_variances.items():
        value = float(value)
        if not math.isfinite(value):
            raise DataError(f"Variance for '{name}' is not finite: {value}")
        if value < 0:
            raise DataError(f"Variance for '{name}' is negative: {value}")
        variances[name] = value

    total = math.fsum(variances.values())
    if total <= 0:
        raise StatisticalValidityError("Total variance is zero; fractions are undefined")

    return {name: value / total for name, value in variances.items()}


def variance_components(group_variances: Mapping[str, float],
                        residual_name: str = RESIDUAL) -> VarianceComponents:
    """Decompose and keep the raw variances alongside the fractions."""
    fractions = decompose(group_variances, residual_name=residual_name)
    return VarianceComponents(dict(group_variances), fractions, residual_name)


def variance_summary(components: Mapping[str, Mapping[str, float]],
                     fill_missing: Optional[float] = None) -> pd.DataFrame:
    """One row per phenotype, one column per variance component

    Args:
        components: Phenotype -> (component -> fraction)
        fill_missing: Value for components a phenotype does not report;
            None makes a mismatch an error

    Returns:
        DataFrame with a 'phenotype' column and one column per component
    """
    if not components:
        return pd.DataFrame(columns=['phenotype'])

    all_keys = list(dict.fromkeys(k for fractions in components.values() for k in fractions))
    rows = []
    for phenotype, fractions in components.items():
        missing = [k for k in all_keys if k not in fractions]
        if missing and fill_missing is None:
            raise DataError(f"Phenotype '{phenotype}' lacks variance components {missing}")
        row = {'phenotype': phenotype}
        row.update({k: fractions.get(k, fill_missing) for k in all_keys})
        rows.append(row)
    return pd.DataFrame(rows, columns=['phenotype'] + all_keys)
