"""
Data loading utilities for readings, metadata and genotype files
"""

import pandas as pd
import numpy as np
from pathlib import Path
from typing import Union, Optional, Iterable, List

from ..utils.data_types import GenotypeBundle, SNPSPOS_COLUMNS
from ..utils.exceptions import DataError

READINGS_COLUMNS = ['line_id', 'donor', 'flow_date', 'channel', 'purity', 'mean1', 'mean2']
METADATA_COLUMNS = ['donor', 'genotype_id']
GENE_POSITION_COLUMNS = ['geneid', 'chr', 'left', 'right']

# Robust NA handling: recognize common missing tokens
NA_VALUES = [
    '', 'NA', 'NaN', 'nan', 'NAN', 'na', 'N/A', 'n/a', 'Null', 'NULL',
    '.', '-', '--'
]

HDF5_SUFFIXES = ('.h5', '.hdf5', '.hdf')


def detect_file_format(filepath: Union[str, Path]) -> str:
    """Detect file format based on extension and content

    Args:
        filepath: Path to file

    Returns:
        Detected format: 'csv', 'tsv', 'hdf5' or 'unknown'
    """
    filepath = Path(filepath)
    suffix = filepath.suffix.lower()

    if suffix in HDF5_SUFFIXES:
        return 'hdf5'
    elif suffix in ['.tsv', '.txt']:
        return 'tsv'
    elif suffix == '.csv':
        return 'csv'

    try:
        with open(filepath, 'rb') as f:
            head = f.read(8)
        if head.startswith(b'\x89HDF'):
            return 'hdf5'
        with open(filepath, 'r') as f:
            first_line = f.readline().strip()
        if '\t' in first_line and ',' not in first_line:
            return 'tsv'
        elif ',' in first_line:
            return 'csv'
        return 'unknown'
    except (OSError, UnicodeDecodeError):
        return 'unknown'


def _read_table(filepath: Union[str, Path], **kwargs) -> pd.DataFrame:
    """Read a delimited text table with the package-wide NA tokens."""
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")

    file_format = detect_file_format(filepath)
    read_kwargs = dict(na_values=NA_VALUES, keep_default_na=True)
    read_kwargs.update(kwargs)
    if file_format == 'tsv':
        return pd.read_csv(filepath, sep='\t', **read_kwargs)
    elif file_format == 'csv':
        return pd.read_csv(filepath, **read_kwargs)
    elif file_format == 'hdf5':
        raise ValueError(f"Expected a delimited text table, got HDF5 file: {filepath}")
    # Unknown layout: let pandas sniff the delimiter
    return pd.read_csv(filepath, sep=None, engine='python', **read_kwargs)


def _require_columns(df: pd.DataFrame, required: List[str], what: str, filepath) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise DataError(f"{what} file '{filepath}' is missing required columns: {missing}")


def load_readings_file(filepath: Union[str, Path]) -> pd.DataFrame:
    """Load the processed flow cytometry readings table

    One row per (sample, channel) reading with columns
    [line_id, donor, flow_date, channel, purity, mean1, mean2].

    Args:
        filepath: Path to CSV/TSV readings file

    Returns:
        DataFrame with flow_date parsed to a calendar date and numeric
        measurement columns
    """
    df = _read_table(filepath)
    _require_columns(df, READINGS_COLUMNS, "Readings", filepath)

    df = df.copy()
    for col in ('line_id', 'donor', 'channel'):
        df[col] = df[col].astype(str)
    try:
        df['flow_date'] = pd.to_datetime(df['flow_date']).dt.normalize()
    except (ValueError, TypeError) as e:
        raise DataError(f"Could not parse flow_date in '{filepath}': {e}")

    for col in ('purity', 'mean1', 'mean2'):
        converted = pd.to_numeric(df[col], errors='coerce')
        invalid = df[col].notna() & converted.isna()
        if invalid.any():
            examples = sorted(df.loc[invalid, col].astype(str).unique()[:5])
            raise DataError(f"Column '{col}' contains non-numeric values (e.g. {', '.join(examples)})")
        df[col] = converted

    return df


def load_sample_metadata(filepath: Union[str, Path]) -> pd.DataFrame:
    """Load the donor metadata table ([donor, genotype_id], one row per donor)."""
    df = _read_table(filepath, dtype=str)
    _require_columns(df, METADATA_COLUMNS, "Metadata", filepath)

    if df['donor'].duplicated().any():
        dups = sorted(df.loc[df['donor'].duplicated(), 'donor'].unique())
        raise DataError(f"Metadata lists donors more than once: {dups[:5]}")

    return df.reset_index(drop=True)


def load_gene_positions(filepath: Union[str, Path]) -> pd.DataFrame:
    """Load a gene position table ([geneid, chr, left, right])."""
    df = _read_table(filepath, dtype={'geneid': str, 'chr': str})
    _require_columns(df, GENE_POSITION_COLUMNS, "Gene position", filepath)
    df = df[GENE_POSITION_COLUMNS].copy()
    df['left'] = df['left'].astype(np.int64)
    df['right'] = df['right'].astype(np.int64)
    if (df['left'] > df['right']).any():
        raise DataError("Gene intervals must satisfy left <= right")
    return df


def load_genotype_bundle(snpspos_file: Union[str, Path],
                         dosage_file: Optional[Union[str, Path]] = None,
                         allowed_donors: Optional[Iterable[str]] = None) -> GenotypeBundle:
    """Load variant positions and the dosage matrix

    Two layouts are supported:
    1. A single HDF5 file holding the keys 'snpspos' and 'genotypes'
       (written by save_genotype_bundle)
    2. A pair of delimited text files: snpspos [snpid, chr, pos] and a dosage
       table whose first column is snpid followed by one column per donor

    Args:
        snpspos_file: HDF5 bundle or snpspos text table
        dosage_file: Dosage text table (required for the text layout)
        allowed_donors: Donor ids with usable (consented) genotype data;
            dosage columns outside this set are rejected

    Returns:
        GenotypeBundle
    """
    snpspos_file = Path(snpspos_file)
    if detect_file_format(snpspos_file) == 'hdf5':
        if not snpspos_file.exists():
            raise FileNotFoundError(f"File not found: {snpspos_file}")
        snpspos = pd.read_hdf(snpspos_file, key='snpspos')
        dosage = pd.read_hdf(snpspos_file, key='genotypes')
    else:
        if dosage_file is None:
            raise ValueError("dosage_file is required when snpspos is a text table")
        snpspos = _read_table(snpspos_file, dtype={'snpid': str, 'chr': str})
        _require_columns(snpspos, SNPSPOS_COLUMNS, "snpspos", snpspos_file)
        dosage = _read_table(dosage_file, dtype={'snpid': str})
        if 'snpid' not in dosage.columns:
            dosage = dosage.rename(columns={dosage.columns[0]: 'snpid'})
        dosage = dosage.set_index('snpid')

    return GenotypeBundle(snpspos, dosage, allowed_donors=allowed_donors)


def save_genotype_bundle(bundle: GenotypeBundle, filepath: Union[str, Path]) -> Path:
    """Write a genotype bundle to a single HDF5 file."""
    filepath = Path(filepath)
    bundle.snpspos.to_hdf(filepath, key='snpspos', mode='w', format='table')
    bundle.dosage.to_hdf(filepath, key='genotypes', mode='a', format='table')
    return filepath


def load_variant_genotypes(filepath: Union[str, Path],
                           variant_id: Optional[str] = None) -> pd.Series:
    """Load a single-variant genotype table keyed by donor id

    The file holds a 'genotype_id' column and one or more variant columns.

    Args:
        filepath: Path to CSV/TSV file
        variant_id: Variant column to return; required when the file holds
            more than one variant

    Returns:
        Series of dosages indexed by genotype_id, named after the variant
    """
    df = _read_table(filepath, dtype={'genotype_id': str})
    _require_columns(df, ['genotype_id'], "Variant genotype", filepath)
    if df['genotype_id'].duplicated().any():
        raise DataError("Variant genotype table lists donors more than once")

    variant_columns = [c for c in df.columns if c != 'genotype_id']
    if variant_id is None:
        if len(variant_columns) != 1:
            raise ValueError(
                f"File '{filepath}' holds {len(variant_columns)} variants; pass variant_id to choose one"
            )
        variant_id = variant_columns[0]
    elif variant_id not in variant_columns:
        raise KeyError(f"Variant '{variant_id}' not found in '{filepath}'")

    series = pd.to_numeric(df[variant_id], errors='coerce')
    series.index = df['genotype_id']
    series.name = variant_id
    return series
