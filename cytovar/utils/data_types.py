"""
Core data structures for the cytovar package
"""

from typing import Optional, Iterable, Dict, List

import numpy as np
import pandas as pd

from .exceptions import DataError, ConfigurationError

SNPSPOS_COLUMNS = ['snpid', 'chr', 'pos']
RESULT_COLUMNS = ['snps', 'gene', 'beta', 'statistic', 'pvalue', 'FDR', 'chr', 'pos']


class GenotypeBundle:
    """Variant coordinates plus a dosage matrix sharing the variant id key

    Expected layout:
    - snpspos: one row per variant with columns [snpid, chr, pos]
    - dosage: variants × donors, indexed by snpid in snpspos order,
      values in {0, 1, 2} or NaN for missing calls
    """

    def __init__(self, snpspos: pd.DataFrame, dosage: pd.DataFrame,
                 allowed_donors: Optional[Iterable[str]] = None):
        missing = [c for c in SNPSPOS_COLUMNS if c not in snpspos.columns]
        if missing:
            raise DataError(f"snpspos is missing required columns: {missing}")

        self.snpspos = snpspos[SNPSPOS_COLUMNS].reset_index(drop=True).copy()
        self.snpspos['snpid'] = self.snpspos['snpid'].astype(str)
        self.snpspos['chr'] = self.snpspos['chr'].astype(str)
        self.snpspos['pos'] = self.snpspos['pos'].astype(np.int64)

        self.dosage = dosage.copy()
        self.dosage.index = self.dosage.index.astype(str)
        self.dosage.columns = self.dosage.columns.astype(str)
        self.dosage = self.dosage.astype(float)

        self._validate()

        if allowed_donors is not None:
            allowed = set(str(d) for d in allowed_donors)
            extra = sorted(set(self.dosage.columns) - allowed)
            if extra:
                raise ConfigurationError(
                    f"Dosage matrix contains {len(extra)} donors outside the allowed set: {extra[:5]}"
                )

    def _validate(self):
        if self.snpspos['snpid'].duplicated().any():
            dups = self.snpspos.loc[self.snpspos['snpid'].duplicated(), 'snpid'].tolist()
            raise DataError(f"Duplicated variant ids in snpspos: {dups[:5]}")
        if self.dosage.columns.duplicated().any():
            raise DataError("Duplicated donor ids in dosage matrix")
        if list(self.dosage.index) != list(self.snpspos['snpid']):
            raise DataError("Dosage rows must match snpspos variant ids in the same order")

        values = self.dosage.to_numpy()
        observed = values[~np.isnan(values)]
        if not np.isin(observed, (0.0, 1.0, 2.0)).all():
            bad = np.unique(observed[~np.isin(observed, (0.0, 1.0, 2.0))])
            raise DataError(f"Dosage values must be 0, 1, 2 or missing; found {bad[:5]}")

    @property
    def donor_ids(self) -> List[str]:
        """Donor ids in dosage column order"""
        return list(self.dosage.columns)

    @property
    def n_variants(self) -> int:
        """Number of variants"""
        return len(self.snpspos)

    @property
    def n_donors(self) -> int:
        """Number of donors"""
        return self.dosage.shape[1]

    def subset_donors(self, donor_ids: Iterable[str]) -> "GenotypeBundle":
        """Return a bundle restricted to (and ordered by) the given donors."""
        donor_ids = [str(d) for d in donor_ids]
        unknown = [d for d in donor_ids if d not in self.dosage.columns]
        if unknown:
            raise ConfigurationError(f"Donors not present in genotype bundle: {unknown[:5]}")
        return GenotypeBundle(self.snpspos, self.dosage[donor_ids])

    def variant_dosage(self, snpid: str) -> pd.Series:
        """Dosage of one variant keyed by donor id"""
        if snpid not in self.dosage.index:
            raise KeyError(f"Unknown variant: {snpid}")
        series = self.dosage.loc[snpid].copy()
        series.index.name = 'genotype_id'
        series.name = snpid
        return series


class AssociationResults:
    """Cis-association scan results

    Standard columns: [snps, gene, beta, statistic, pvalue, FDR, chr, pos]
    """

    def __init__(self, table: pd.DataFrame, window: Optional[int] = None):
        missing = [c for c in RESULT_COLUMNS if c not in table.columns]
        if missing:
            raise ValueError(f"Result table missing columns: {missing}")
        self.table = table[RESULT_COLUMNS].reset_index(drop=True)
        self.window = window

    @property
    def n_tests(self) -> int:
        """Number of variant-gene pairs tested"""
        return len(self.table)

    @property
    def genes(self) -> List[str]:
        return list(pd.unique(self.table['gene']))

    def for_gene(self, gene: str) -> pd.DataFrame:
        """Rows for one gene ordered by p-value, ties broken by position"""
        rows = self.table[self.table['gene'] == gene]
        return rows.sort_values(['pvalue', 'pos', 'snps'], kind='mergesort').reset_index(drop=True)

    def lead_variants(self, gene: str, rtol: float = 1e-12) -> pd.DataFrame:
        """All variants tied at the minimum p-value for a gene

        Identical dosage vectors can differ in the last bits of their p-values,
        so ties are judged with a relative tolerance.
        """
        rows = self.for_gene(gene)
        if rows.empty:
            return rows
        best = rows['pvalue'].iloc[0]
        tied = np.isclose(rows['pvalue'].to_numpy(dtype=float), best, rtol=rtol, atol=0.0)
        return rows[tied].reset_index(drop=True)

    def top(self, n: int = 10) -> pd.DataFrame:
        """Best n rows across all genes"""
        ordered = self.table.sort_values(['pvalue', 'gene', 'pos'], kind='mergesort')
        return ordered.head(n).reset_index(drop=True)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to pandas DataFrame"""
        return self.table.copy()


class VarianceComponents:
    """Per-factor variance estimates and their share of total variance"""

    def __init__(self, variances: Dict[str, float], fractions: Dict[str, float], residual_name: str):
        self.variances = dict(variances)
        self.fractions = dict(fractions)
        self.residual_name = residual_name

    @property
    def factors(self) -> List[str]:
        """Grouping factor names, residual excluded"""
        return [k for k in self.fractions if k != self.residual_name]

    def to_frame(self, label: Optional[str] = None) -> pd.DataFrame:
        """Long table: one row per factor with variance and fraction"""
        df = pd.DataFrame({
            'component': list(self.fractions.keys()),
            'variance': [self.variances[k] for k in self.fractions],
            'fraction': list(self.fractions.values()),
        })
        if label is not None:
            df.insert(0, 'phenotype', label)
        return df

    def __repr__(self):
        parts = ", ".join(f"{k}={v:.3f}" for k, v in self.fractions.items())
        return f"VarianceComponents({parts})"
