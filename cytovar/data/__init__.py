"""
Data loading and reshaping
"""

from .loaders import (
    load_readings_file,
    load_sample_metadata,
    load_genotype_bundle,
    load_variant_genotypes,
    load_gene_positions,
)
from .reshape import reshape, to_long

__all__ = [
    'load_readings_file',
    'load_sample_metadata',
    'load_genotype_bundle',
    'load_variant_genotypes',
    'load_gene_positions',
    'reshape',
    'to_long',
]
