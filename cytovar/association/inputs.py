"""
Assembly of association scan inputs from the per-sample table
"""

import warnings
from typing import Sequence, Tuple

import pandas as pd

from ..utils.data_types import GenotypeBundle
from ..utils.exceptions import AlignmentError, ConfigurationError, DataError


def first_sample_per_donor(wide: pd.DataFrame,
                           order_by: Sequence[str] = ('flow_date', 'line_id')) -> pd.DataFrame:
    """Keep one sample per genotype_id

    Rows are stable-sorted by ``order_by`` first, so "first" means earliest
    flow date, then lowest line_id, regardless of input row order.
    """
    missing = [c for c in order_by if c not in wide.columns]
    if missing:
        raise ConfigurationError(f"Sort columns not found: {missing}")
    ordered = wide.dropna(subset=['genotype_id']).sort_values(list(order_by), kind='mergesort')
    return ordered.drop_duplicates(subset=['genotype_id'], keep='first').reset_index(drop=True)


def phenotype_matrix(wide: pd.DataFrame, proteins: Sequence[str]) -> pd.DataFrame:
    """Proteins × donors matrix keyed by genotype_id

    Raises:
        DataError: A donor contributes more than one sample
    """
    if wide['genotype_id'].duplicated().any():
        dups = sorted(wide.loc[wide['genotype_id'].duplicated(), 'genotype_id'].unique())
        raise DataError(
            f"Donors with repeated samples: {dups[:5]}; select one sample per donor first"
        )
    matrix = wide.set_index('genotype_id')[list(proteins)].T
    matrix.columns = matrix.columns.astype(str)
    matrix.columns.name = None
    return matrix


def align_phenotypes(phenotypes: pd.DataFrame,
                     bundle: GenotypeBundle,
                     verbose: bool = True) -> Tuple[pd.DataFrame, GenotypeBundle]:
    """Restrict phenotype and genotype data to their shared donors

    Returns:
        Tuple of (phenotypes, bundle), both restricted to the shared donors in
        phenotype column order
    """
    genotyped = set(bundle.donor_ids)
    common = [d for d in phenotypes.columns if d in genotyped]
    if not common:
        raise AlignmentError("No donors are shared between phenotype and genotype data")

    if verbose:
        print(f"   Phenotyped donors: {phenotypes.shape[1]}")
        print(f"   Genotyped donors: {len(genotyped)}")
        print(f"   Matched Intersection: {len(common)}")

    return phenotypes[common], bundle.subset_donors(common)


def attach_variant_genotype(wide: pd.DataFrame,
                            variant_genotypes: pd.Series,
                            column: str = 'genotype') -> pd.DataFrame:
    """Add one variant's dosage to every sample through its genotype_id."""
    if column in wide.columns:
        raise ConfigurationError(f"Column '{column}' already exists")
    lookup = variant_genotypes.copy()
    lookup.index = lookup.index.astype(str)
    out = wide.copy()
    out[column] = out['genotype_id'].astype(str).map(lookup)
    n_missing = int(out[column].isna().sum())
    if n_missing:
        warnings.warn(f"{n_missing} samples have no genotype for {variant_genotypes.name}")
    return out
