"""
Flow Cytometry Variance Pipeline Module

This module wraps the analysis steps (loading, reshaping, outlier review,
variance partitioning, model comparison and the cis-association scan) into a
reusable pipeline class. Each step is an explicit method call; configuration
is passed in, never read from ambient files.
"""

import time
import pandas as pd
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import AnalysisConfig
from ..data.loaders import (
    load_readings_file, load_sample_metadata, load_genotype_bundle, load_variant_genotypes
)
from ..data.reshape import reshape, drop_duplicate_readings
from ..qc.outliers import detect_candidates, apply_exclusion
from ..models.mixed import partition_variance, fixed_effect_lrt, ModelComparison
from ..association.inputs import (
    first_sample_per_donor, phenotype_matrix, align_phenotypes, attach_variant_genotype
)
from ..association.cis_scan import scan
from ..utils.data_types import AssociationResults, GenotypeBundle, VarianceComponents

OUTPUT_CHOICES: Tuple[str, ...] = (
    'samples',
    'variance',
    'candidates',
    'associations',
    'plots',
)


class FlowAnalysisPipeline:
    """
    High-level pipeline for partitioning flow cytometry phenotype variance.

    Typical workflow:
        1. Initialize pipeline with configuration and output directory
        2. Load readings, donor metadata and (optionally) genotypes
        3. Build the wide per-sample table
        4. Review outlier candidates and exclude samples explicitly
        5. Partition variance between flow date and cell line
        6. Run the cis-association scan and follow up the lead variant

    Attributes:
        config (AnalysisConfig): Channel map, aliases, gene positions, window
        readings (DataFrame): Long readings table as loaded
        metadata (DataFrame): Donor metadata
        bundle (GenotypeBundle): Variant positions and dosages
        samples (DataFrame): Wide per-sample table
        candidates (DataFrame): Ranked PCA projection of the samples
        variance_table (DataFrame): One row per protein, one column per component
        associations (AssociationResults): Cis scan results

    Example:
        >>> pipeline = FlowAnalysisPipeline(output_dir='./flow_results')
        >>> pipeline.load_data('readings.csv', 'donors.csv',
        ...                    snpspos_file='genotypes.h5')
        >>> pipeline.build_sample_table()
        >>> pipeline.find_outlier_candidates()
        >>> pipeline.exclude_samples(['HPSI0114i-eipl_12014-05-21'])
        >>> pipeline.partition_variance(random=('flow_date', 'line_id'))
        >>> pipeline.run_cis_scan()
    """

    def __init__(self,
                 config: Optional[AnalysisConfig] = None,
                 output_dir: str = "./flow_results",
                 verbose: bool = True):
        self.config = config or AnalysisConfig()
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.verbose = verbose

        self.readings: Optional[pd.DataFrame] = None
        self.metadata: Optional[pd.DataFrame] = None
        self.bundle: Optional[GenotypeBundle] = None
        self.variant_genotypes: Optional[pd.Series] = None

        self.samples: Optional[pd.DataFrame] = None
        self.candidates: Optional[pd.DataFrame] = None
        self.variance_table: Optional[pd.DataFrame] = None
        self.variance_components: Dict[str, VarianceComponents] = {}
        self.comparisons: Dict[str, ModelComparison] = {}
        self.associations: Optional[AssociationResults] = None

    def log(self, message: str):
        """Internal logger, silenced by verbose=False"""
        if self.verbose:
            print(message)

    def log_step(self, step_name: str, start_time: Optional[float] = None):
        """Log a pipeline step with optional timing"""
        if start_time is not None:
            elapsed = time.time() - start_time
            self.log(f"{step_name} completed in {elapsed:.2f} seconds")
        else:
            self.log(f"{step_name}...")

    def load_data(self,
                  readings_file: str,
                  metadata_file: str,
                  snpspos_file: Optional[str] = None,
                  dosage_file: Optional[str] = None,
                  allowed_donors: Optional[Iterable[str]] = None,
                  variant_file: Optional[str] = None,
                  variant_id: Optional[str] = None):
        """
        Load readings, donor metadata and optional genotype data.

        Args:
            readings_file: Processed readings table (CSV/TSV)
            metadata_file: Donor metadata table (CSV/TSV)
            snpspos_file: HDF5 genotype bundle or snpspos text table
            dosage_file: Dosage text table (text layout only)
            allowed_donors: Donors whose genotypes may be used
            variant_file: Single-variant genotype table for lead-variant follow-up
            variant_id: Variant column to read from variant_file

        Raises:
            ValueError: If any file cannot be loaded or validated
        """
        step_start = time.time()
        self.log_step("Step 1: Loading and validating input data")

        try:
            self.readings = load_readings_file(readings_file)
            self.log(f"   Loaded {len(self.readings)} readings")
        except (OSError, ValueError) as e:
            raise ValueError(f"Error loading readings file: {e}") from e

        try:
            self.metadata = load_sample_metadata(metadata_file)
            self.log(f"   Loaded metadata for {len(self.metadata)} donors")
        except (OSError, ValueError) as e:
            raise ValueError(f"Error loading metadata file: {e}") from e

        if snpspos_file:
            try:
                self.bundle = load_genotype_bundle(snpspos_file, dosage_file, allowed_donors=allowed_donors)
                self.log(f"   Loaded {self.bundle.n_variants} variants x {self.bundle.n_donors} donors")
            except (OSError, ValueError) as e:
                raise ValueError(f"Error loading genotype data: {e}") from e

        if variant_file:
            try:
                self.variant_genotypes = load_variant_genotypes(variant_file, variant_id=variant_id)
                self.log(f"   Loaded genotypes of {self.variant_genotypes.name} for "
                         f"{len(self.variant_genotypes)} donors")
            except (OSError, ValueError, KeyError) as e:
                raise ValueError(f"Error loading variant genotype file: {e}") from e

        self.log_step("Data loading", step_start)

    def build_sample_table(self, deduplicate: bool = True,
                           order_by: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """
        Reshape long readings into the wide per-sample table.

        Args:
            deduplicate: Keep the first reading per (line_id, flow_date, channel)
                instead of failing on repeated keys
            order_by: Columns that define "first" when deduplicating
        """
        if self.readings is None or self.metadata is None:
            raise ValueError("Data not loaded. Call load_data() first.")

        step_start = time.time()
        self.log_step("Step 2: Building per-sample table")

        readings = self.readings
        if deduplicate:
            readings = drop_duplicate_readings(readings, order_by=order_by, verbose=self.verbose)

        self.samples = reshape(readings, self.metadata, self.config.channel_map,
                               aliases=self.config.donor_aliases)
        self.log(f"   Donor aliases: {len(self.config.donor_aliases)} (table version {self.config.donor_aliases_version})")
        self.log(f"   Samples: {len(self.samples)}")
        self.log(f"   Cell lines: {self.samples['line_id'].nunique()}")
        self.log(f"   Flow dates: {self.samples['flow_date'].nunique()}")
        self.log(f"   Donors: {self.samples['genotype_id'].nunique()}")

        self.log_step("Sample table", step_start)
        return self.samples

    def _proteins(self, proteins: Optional[Sequence[str]] = None) -> List[str]:
        proteins = list(proteins) if proteins is not None else list(self.config.proteins)
        return [p for p in proteins if p in self.samples.columns]

    def find_outlier_candidates(self, columns: Optional[Sequence[str]] = None,
                                n_components: int = 2) -> pd.DataFrame:
        """Rank samples by their distance from the centre of the PCA projection."""
        if self.samples is None:
            raise ValueError("Sample table missing. Call build_sample_table() first.")

        step_start = time.time()
        self.log_step("Step 3: Projecting samples for outlier review")
        columns = self._proteins(columns)
        self.candidates = detect_candidates(self.samples, columns, n_components=n_components)
        self.log("   Most distant samples:")
        for row in self.candidates.head(5).itertuples():
            self.log(f"      {row.rank}. {row.sample_id} (distance {row.distance:.2f})")
        self.log_step("Outlier review", step_start)
        return self.candidates

    def exclude_samples(self, sample_ids: Iterable[str]) -> pd.DataFrame:
        """Drop samples chosen after reviewing the candidates."""
        if self.samples is None:
            raise ValueError("Sample table missing. Call build_sample_table() first.")
        before = len(self.samples)
        self.samples = apply_exclusion(self.samples, sample_ids)
        self.log(f"   Excluded {before - len(self.samples)} samples; {len(self.samples)} remain")
        return self.samples

    def partition_variance(self,
                           random: Sequence[str] = ('flow_date', 'line_id'),
                           fixed: Sequence[str] = (),
                           proteins: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """
        Fit one mixed model per protein and report variance fractions.

        Args:
            random: Grouping factors fitted as random intercepts
            fixed: Fixed-effect terms
            proteins: Phenotypes to analyse (default: config.proteins)

        Returns:
            DataFrame with one row per protein and one column per component
        """
        if self.samples is None:
            raise ValueError("Sample table missing. Call build_sample_table() first.")

        step_start = time.time()
        self.log_step("Step 4: Partitioning variance")
        self.variance_table, self.variance_components = partition_variance(
            self.samples,
            self._proteins(proteins),
            random=random,
            fixed=fixed,
            residual_name=self.config.residual_name,
            verbose=self.verbose,
        )
        self.log_step("Variance partitioning", step_start)
        return self.variance_table

    def compare_models(self, response: str, term: str,
                       fixed: Sequence[str] = (),
                       random: Sequence[str] = ()) -> ModelComparison:
        """Likelihood ratio test for adding ``term`` to the fixed effects."""
        if self.samples is None:
            raise ValueError("Sample table missing. Call build_sample_table() first.")
        comparison = fixed_effect_lrt(self.samples, response, term, fixed=fixed, random=random,
                                      verbose=self.verbose)
        self.comparisons[f"{response}:{term}"] = comparison
        self.log(f"   {response} ~ +{term}: LRT={comparison.statistic:.3f}, "
                 f"df={comparison.df}, p={comparison.pvalue:.3g}")
        return comparison

    def run_cis_scan(self,
                     proteins: Optional[Sequence[str]] = None,
                     window: Optional[int] = None,
                     order_by: Sequence[str] = ('flow_date', 'line_id'),
                     covariates: Optional[pd.DataFrame] = None) -> AssociationResults:
        """
        Scan each protein against variants near its gene.

        Repeated samples of a donor are reduced to one (earliest by ``order_by``)
        before testing.
        """
        if self.samples is None:
            raise ValueError("Sample table missing. Call build_sample_table() first.")
        if self.bundle is None:
            raise ValueError("Genotype data not loaded.")

        step_start = time.time()
        self.log_step("Step 5: Running cis-association scan")

        window = self.config.cis_window if window is None else window
        per_donor = first_sample_per_donor(self.samples, order_by=order_by)
        phenotypes = phenotype_matrix(per_donor, self._proteins(proteins))
        phenotypes, bundle = align_phenotypes(phenotypes, self.bundle, verbose=self.verbose)

        self.associations = scan(phenotypes, bundle, None, self.config.gene_positions,
                                 window=window, covariates=covariates, verbose=self.verbose)
        for gene in self.associations.genes:
            leads = self.associations.lead_variants(gene)
            self.log(f"   {gene} lead: {', '.join(leads['snps'])} (p={leads['pvalue'].iloc[0]:.2e})")

        self.log_step("Cis scan", step_start)
        return self.associations

    def attach_lead_variant(self, variant_genotypes: Optional[pd.Series] = None,
                            gene: Optional[str] = None,
                            column: str = 'genotype') -> pd.DataFrame:
        """
        Add a variant's dosage to the sample table for follow-up models.

        Uses, in order: the given series, the loaded variant file, or the lead
        variant of ``gene`` from the cis scan.
        """
        if self.samples is None:
            raise ValueError("Sample table missing. Call build_sample_table() first.")

        if variant_genotypes is None:
            variant_genotypes = self.variant_genotypes
        if variant_genotypes is None:
            if self.associations is None or self.bundle is None or gene is None:
                raise ValueError("No variant genotypes given and no cis scan lead to use")
            leads = self.associations.lead_variants(gene)
            if leads.empty:
                raise ValueError(f"No associations for {gene}")
            variant_genotypes = self.bundle.variant_dosage(leads['snps'].iloc[0])

        self.samples = attach_variant_genotype(self.samples, variant_genotypes, column=column)
        return self.samples

    def save_results(self, outputs: Sequence[str] = OUTPUT_CHOICES) -> List[Path]:
        """Write requested tables and figures to the output directory."""
        unknown = [o for o in outputs if o not in OUTPUT_CHOICES]
        if unknown:
            raise ValueError(f"Unknown outputs {unknown}; choose from {list(OUTPUT_CHOICES)}")

        written: List[Path] = []
        if 'samples' in outputs and self.samples is not None:
            path = self.output_dir / "samples.csv"
            self.samples.to_csv(path, index=False)
            written.append(path)
        if 'variance' in outputs and self.variance_table is not None:
            path = self.output_dir / "variance_fractions.csv"
            self.variance_table.to_csv(path, index=False)
            written.append(path)
        if 'candidates' in outputs and self.candidates is not None:
            path = self.output_dir / "outlier_candidates.csv"
            self.candidates.to_csv(path, index=False)
            written.append(path)
        if 'associations' in outputs and self.associations is not None:
            path = self.output_dir / "cis_associations.csv"
            self.associations.to_dataframe().to_csv(path, index=False)
            written.append(path)
        if 'plots' in outputs:
            written.extend(self._save_plots())

        for path in written:
            self.log(f"   Wrote {path}")
        return written

    def _save_plots(self) -> List[Path]:
        import matplotlib.pyplot as plt
        from ..visualization.plots import (
            plot_pca_candidates, plot_variance_fractions, plot_cis_associations
        )

        written = []
        figures = []
        if self.candidates is not None and 'PC2' in self.candidates.columns:
            figures.append(("outlier_candidates_pca.png", plot_pca_candidates(self.candidates)))
        if self.variance_table is not None:
            figures.append(("variance_fractions.png", plot_variance_fractions(self.variance_table)))
        if self.associations is not None:
            positions = self.config.gene_positions.set_index('geneid')
            for gene in self.associations.genes:
                interval = None
                if gene in positions.index:
                    interval = (int(positions.loc[gene, 'left']), int(positions.loc[gene, 'right']))
                figures.append((f"cis_{gene}.png", plot_cis_associations(self.associations, gene, interval)))

        for filename, fig in figures:
            path = self.output_dir / filename
            fig.savefig(path, dpi=150, bbox_inches='tight')
            plt.close(fig)
            written.append(path)
        return written
