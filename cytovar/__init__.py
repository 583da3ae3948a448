"""
cytovar: variance partitioning and cis-association analysis of flow
cytometry phenotypes measured on iPSC-derived cell lines.

Readings are reshaped into a per-sample table, screened for outliers by PCA,
decomposed into flow date / cell line / genotype variance components with
linear mixed models, and scanned against nearby genetic variants.
"""

__version__ = "0.1.0"
__author__ = "cytovar Development Team"

from .config import AnalysisConfig
from .data.loaders import load_readings_file, load_sample_metadata, load_genotype_bundle
from .data.reshape import reshape, to_long
from .qc.outliers import detect_candidates, apply_exclusion
from .models.variance import decompose
from .models.mixed import fit_model, partition_variance, likelihood_ratio_test
from .association.cis_scan import scan
from .pipelines.flow import FlowAnalysisPipeline

__all__ = [
    'AnalysisConfig',
    'load_readings_file',
    'load_sample_metadata',
    'load_genotype_bundle',
    'reshape',
    'to_long',
    'detect_candidates',
    'apply_exclusion',
    'decompose',
    'fit_model',
    'partition_variance',
    'likelihood_ratio_test',
    'scan',
    'FlowAnalysisPipeline',
]
