"""
Cis-association scan of phenotypes against nearby variants.

Only variant/gene pairs within ``window`` bp of the gene interval are tested.
Per gene the scan follows the FWL+QR least-squares recipe:

- Build covariate matrix X = [1 | CV] and compute thin QR: X = Q R.
- Residualize phenotype once: y_r = y - Q(Q^T y).
- Impute missing dosages to the per-variant major allele.
- Residualize genotypes: G_r = G - Q(Q^T G).
- Vectorized stats per variant j:
      gTy = G_r.T @ y_r
      gTg = sum(G_r^2, axis=0)
      beta = gTy / gTg
      SSE = y_r·y_r - (gTy^2)/gTg
      se = sqrt(SSE / df / gTg),  df = n - p - 1
      t = beta / se,   p = 2 * sf(|t|, df)   (exact t distribution)

FDR is Benjamini-Hochberg over every tested pair.
"""

import warnings
from typing import Optional, Tuple, Union

import numpy as np
import pandas as pd

from ..config import DEFAULT_CIS_WINDOW
from ..utils.data_types import AssociationResults, GenotypeBundle, RESULT_COLUMNS
from ..utils.exceptions import AlignmentError, ConfigurationError, DataError
from ..utils.stats import fdr_correction, t_test_pvalues

# Residual sums of squares below this count as constant (variant or phenotype)
MONOMORPHIC_TOL = 1e-10


def cis_pairs(snpspos: pd.DataFrame,
              gene_positions: pd.DataFrame,
              window: int = DEFAULT_CIS_WINDOW) -> pd.DataFrame:
    """Variant/gene pairs within ``window`` bp of the gene interval

    Distance is measured to the nearest interval edge and is 0 for variants
    inside [left, right].

    Returns:
        DataFrame [snps, gene, chr, pos, distance]
    """
    if window < 0:
        raise ConfigurationError("window must be non-negative")

    variants = snpspos.rename(columns={'snpid': 'snps'})[['snps', 'chr', 'pos']].copy()
    variants['chr'] = variants['chr'].astype(str)
    genes = gene_positions.rename(columns={'geneid': 'gene'})[['gene', 'chr', 'left', 'right']].copy()
    genes['chr'] = genes['chr'].astype(str)
    genes['gene_order'] = np.arange(len(genes))

    pairs = genes.merge(variants, on='chr', how='inner')
    pos = pairs['pos'].to_numpy(dtype=np.int64)
    left = pairs['left'].to_numpy(dtype=np.int64)
    right = pairs['right'].to_numpy(dtype=np.int64)
    pairs['distance'] = np.maximum(np.maximum(left - pos, pos - right), 0)

    pairs = pairs[pairs['distance'] <= window]
    pairs = pairs.sort_values(['gene_order', 'pos', 'snps'], kind='mergesort')
    return pairs[['snps', 'gene', 'chr', 'pos', 'distance']].reset_index(drop=True)


def _impute_major_allele(G: np.ndarray) -> np.ndarray:
    """Replace NaN dosages with the most common dosage of each variant."""
    G = np.array(G, dtype=np.float64, copy=True)
    missing = np.isnan(G)
    if not missing.any():
        return G

    counts = np.stack([np.sum(G == code, axis=0) for code in (0.0, 1.0, 2.0)], axis=0)
    maj_vals = np.argmax(counts, axis=0).astype(np.float64)
    G[missing] = np.broadcast_to(maj_vals, G.shape)[missing]
    return G


def _compute_qr(X: np.ndarray) -> np.ndarray:
    """Thin QR of the covariate matrix; returns Q (n x p)."""
    Q, _ = np.linalg.qr(X, mode="reduced")
    return Q


def _scan_gene(y: np.ndarray, G: np.ndarray, CV: Optional[np.ndarray]) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Least-squares statistics of one phenotype against a block of variants

    Returns:
        Tuple (beta, t_stat, pvalues, tested_mask)

    Raises:
        DataError: No residual degrees of freedom, or the phenotype has no
            variance left after the covariates
    """
    n = y.shape[0]
    if CV is not None:
        X = np.column_stack([np.ones(n), CV])
    else:
        X = np.ones((n, 1))
    p = X.shape[1]
    df = n - p - 1
    if df <= 0:
        raise DataError(
            f"Degrees of freedom must be positive; {n} donors with {p} covariates"
        )

    Q = _compute_qr(X)
    y_r = y - Q @ (Q.T @ y)
    if float(y_r @ y_r) <= MONOMORPHIC_TOL:
        raise DataError("Phenotype is constant after covariate adjustment")
    G_r = G - Q @ (Q.T @ G)

    gTy = G_r.T @ y_r
    gTg = np.sum(G_r * G_r, axis=0)
    tested = gTg > MONOMORPHIC_TOL

    beta = np.full(G.shape[1], np.nan)
    t_stat = np.full(G.shape[1], np.nan)
    pvals = np.full(G.shape[1], np.nan)
    if not tested.any():
        return beta, t_stat, pvals, tested

    with np.errstate(divide='ignore', invalid='ignore'):
        b = gTy[tested] / gTg[tested]
        sse = np.maximum(float(y_r @ y_r) - gTy[tested] ** 2 / gTg[tested], 0.0)
        se = np.sqrt(sse / df / gTg[tested])
        t = np.where(se > 0, b / se, np.where(b != 0, np.copysign(np.inf, b), 0.0))

    beta[tested] = b
    t_stat[tested] = t
    pvals[tested] = t_test_pvalues(t, df)
    return beta, t_stat, pvals, tested


def scan(phenotypes: pd.DataFrame,
         genotypes: Union[pd.DataFrame, GenotypeBundle],
         snpspos: Optional[pd.DataFrame],
         gene_positions: pd.DataFrame,
         window: int = DEFAULT_CIS_WINDOW,
         covariates: Optional[pd.DataFrame] = None,
         verbose: bool = True) -> AssociationResults:
    """Cis-association scan

    Args:
        phenotypes: Genes/proteins × donors (one measurement per donor)
        genotypes: Variants × donors dosage matrix indexed by snpid, or a
            GenotypeBundle (then snpspos may be None)
        snpspos: Variant coordinates [snpid, chr, pos]
        gene_positions: Gene intervals [geneid, chr, left, right]
        window: Maximum distance (bp) between a variant and the gene interval
        covariates: Optional donors × covariates table indexed by donor id
        verbose: Print progress

    Returns:
        AssociationResults sorted by gene, then p-value, then position

    Raises:
        AlignmentError: Phenotype and genotype donor sets differ
    """
    if isinstance(genotypes, GenotypeBundle):
        snpspos = genotypes.snpspos if snpspos is None else snpspos
        dosage = genotypes.dosage
    else:
        dosage = genotypes
    if snpspos is None:
        raise ValueError("snpspos is required when genotypes is a plain DataFrame")

    pheno_ids = [str(c) for c in phenotypes.columns]
    geno_ids = [str(c) for c in dosage.columns]
    if set(pheno_ids) != set(geno_ids) or len(pheno_ids) != len(geno_ids):
        only_pheno = sorted(set(pheno_ids) - set(geno_ids))
        only_geno = sorted(set(geno_ids) - set(pheno_ids))
        raise AlignmentError(
            f"Phenotype and genotype donors differ ({len(only_pheno)} only phenotyped, "
            f"{len(only_geno)} only genotyped); intersect donors before scanning"
        )
    phenotypes = phenotypes.copy()
    phenotypes.columns = pheno_ids
    dosage = dosage.copy()
    dosage.columns = geno_ids
    dosage.index = dosage.index.astype(str)
    dosage = dosage[pheno_ids]

    if covariates is not None:
        covariates = covariates.copy()
        covariates.index = covariates.index.astype(str)
        absent = [d for d in pheno_ids if d not in covariates.index]
        if absent:
            raise AlignmentError(f"Covariates missing for donors: {absent[:5]}")
        covariates = covariates.loc[pheno_ids]

    genes = [g for g in gene_positions['geneid'].astype(str) if g in phenotypes.index]
    skipped = sorted(set(gene_positions['geneid'].astype(str)) - set(genes))
    if skipped:
        warnings.warn(f"No phenotype row for genes {skipped}; they are not scanned")

    pairs = cis_pairs(snpspos, gene_positions[gene_positions['geneid'].astype(str).isin(genes)], window)
    if verbose:
        print(f"Cis scan: {len(genes)} genes, {len(pairs)} variant-gene pairs within {window:,} bp")

    frames = []
    n_monomorphic = 0
    for gene, gene_pairs in pairs.groupby('gene', sort=False):
        y_all = phenotypes.loc[gene].to_numpy(dtype=np.float64)
        observed = ~np.isnan(y_all)
        y = y_all[observed]
        G = dosage.loc[gene_pairs['snps']].to_numpy(dtype=np.float64).T[observed]
        G = _impute_major_allele(G)
        CV = covariates.to_numpy(dtype=np.float64)[observed] if covariates is not None else None

        try:
            beta, t_stat, pvals, tested = _scan_gene(y, G, CV)
        except DataError as e:
            warnings.warn(f"{gene} not scanned: {e}")
            continue
        n_monomorphic += int((~tested).sum())

        block = gene_pairs.loc[tested, ['snps', 'gene', 'chr', 'pos']].copy()
        block['beta'] = beta[tested]
        block['statistic'] = t_stat[tested]
        block['pvalue'] = pvals[tested]
        frames.append(block)

    if n_monomorphic:
        warnings.warn(f"Skipped {n_monomorphic} monomorphic variant-gene pairs")

    if frames:
        table = pd.concat(frames, ignore_index=True)
    else:
        table = pd.DataFrame(columns=['snps', 'gene', 'chr', 'pos', 'beta', 'statistic', 'pvalue'])
    _, table['FDR'] = fdr_correction(table['pvalue'].to_numpy(dtype=float))

    gene_order = {g: i for i, g in enumerate(genes)}
    table['_gene_order'] = table['gene'].map(gene_order)
    table = table.sort_values(['_gene_order', 'pvalue', 'pos', 'snps'], kind='mergesort')
    table = table.drop(columns='_gene_order')[RESULT_COLUMNS]

    if verbose and len(table):
        print(f"Cis scan complete. {len(table)} pairs tested; minimum p-value: {table['pvalue'].min():.2e}")

    return AssociationResults(table, window=window)
