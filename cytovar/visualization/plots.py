"""
Plots for outlier review, variance partitioning and cis-association results
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from typing import Optional, Tuple

from ..utils.data_types import AssociationResults


def plot_pca_candidates(candidates: pd.DataFrame,
                        label_top: int = 5,
                        figsize: Tuple[int, int] = (6, 6),
                        title: str = "Sample PCA") -> plt.Figure:
    """Scatter of PC1 vs PC2 with the most distant samples labelled

    Args:
        candidates: Output of detect_candidates (needs PC1 and PC2)
        label_top: Number of highest-ranked samples to annotate
    """
    if 'PC1' not in candidates.columns or 'PC2' not in candidates.columns:
        raise ValueError("Candidates table needs PC1 and PC2 columns")

    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(candidates['PC1'], candidates['PC2'], s=18, color='#4C72B0', alpha=0.8)
    for row in candidates.sort_values('rank').head(label_top).itertuples():
        ax.annotate(str(row.sample_id), (row.PC1, row.PC2), fontsize=7,
                    xytext=(3, 3), textcoords='offset points')

    explained = candidates.attrs.get('explained_variance_ratio')
    if explained and len(explained) >= 2:
        ax.set_xlabel(f"PC1 ({explained[0] * 100:.1f}%)")
        ax.set_ylabel(f"PC2 ({explained[1] * 100:.1f}%)")
    else:
        ax.set_xlabel("PC1")
        ax.set_ylabel("PC2")
    ax.set_title(title)
    fig.tight_layout()
    return fig


def plot_variance_fractions(summary: pd.DataFrame,
                            figsize: Tuple[int, int] = (7, 4),
                            title: str = "Variance explained") -> plt.Figure:
    """Stacked bars of variance fractions, one bar per phenotype

    Args:
        summary: Output of variance_summary (phenotype column + one column per component)
    """
    components = [c for c in summary.columns if c != 'phenotype']

    fig, ax = plt.subplots(figsize=figsize)
    palette = sns.color_palette("Set2", n_colors=len(components))
    bottom = np.zeros(len(summary))
    for color, component in zip(palette, components):
        values = summary[component].to_numpy(dtype=float)
        ax.bar(summary['phenotype'], values, bottom=bottom, color=color, label=component)
        bottom += values

    ax.set_ylim(0, 1)
    ax.set_ylabel("Fraction of variance")
    ax.set_title(title)
    ax.legend(frameon=False, bbox_to_anchor=(1.02, 1), loc='upper left')
    fig.tight_layout()
    return fig


def plot_cis_associations(results: AssociationResults,
                          gene: str,
                          gene_interval: Optional[Tuple[int, int]] = None,
                          figsize: Tuple[int, int] = (8, 4),
                          point_size: float = 10.0) -> plt.Figure:
    """-log10(p) against position for one gene, lead variants highlighted"""
    rows = results.for_gene(gene)
    fig, ax = plt.subplots(figsize=figsize)
    if rows.empty:
        ax.text(0.5, 0.5, f"No tests for {gene}", ha='center', va='center', transform=ax.transAxes)
        return fig

    log_p = -np.log10(np.clip(rows['pvalue'].to_numpy(dtype=float), 1e-300, 1.0))
    ax.scatter(rows['pos'], log_p, s=point_size, color='#555555')

    leads = results.lead_variants(gene)
    lead_log_p = -np.log10(np.clip(leads['pvalue'].to_numpy(dtype=float), 1e-300, 1.0))
    ax.scatter(leads['pos'], lead_log_p, s=point_size * 3, color='#C44E52', label='lead')

    if gene_interval is not None:
        ax.axvspan(gene_interval[0], gene_interval[1], color='#8172B2', alpha=0.2, label=gene)

    ax.set_xlabel(f"Position on chr{rows['chr'].iloc[0]}")
    ax.set_ylabel(r"$-\log_{10}(p)$")
    ax.set_title(f"{gene} cis associations")
    ax.legend(frameon=False)
    fig.tight_layout()
    return fig


def plot_genotype_effect(data: pd.DataFrame,
                         phenotype: str,
                         genotype_column: str = 'genotype',
                         figsize: Tuple[int, int] = (4, 4)) -> plt.Figure:
    """Box plot of a phenotype split by variant dosage, samples overlaid"""
    frame = data.dropna(subset=[phenotype, genotype_column])
    fig, ax = plt.subplots(figsize=figsize)
    order = sorted(frame[genotype_column].unique())
    sns.boxplot(data=frame, x=genotype_column, y=phenotype, order=order, ax=ax,
                color='#DDDDDD', showfliers=False)
    sns.stripplot(data=frame, x=genotype_column, y=phenotype, order=order, ax=ax,
                  color='#4C72B0', size=3, jitter=0.2)
    ax.set_xlabel(genotype_column)
    ax.set_ylabel(phenotype)
    fig.tight_layout()
    return fig
