"""
Reshaping of long-format flow cytometry readings into a per-sample matrix

Readings arrive one row per (sample, channel). The reshaper:
- rewrites donor labels through an explicit alias table,
- joins donor metadata to pick up the genotype id,
- names each channel by the protein it measures,
- computes intensity = mean2 - mean1 (stained minus reference),
- pivots to one row per (line_id, flow_date) with one column per protein.
"""

import warnings
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from ..config import DONOR_ALIASES
from ..utils.exceptions import AmbiguousPivotError, ConfigurationError, DataError

SAMPLE_KEY = ['line_id', 'flow_date']
SAMPLE_COLUMNS = ['sample_id', 'line_id', 'donor', 'genotype_id', 'flow_date', 'purity']
DATE_FORMAT = '%Y-%m-%d'


def make_sample_id(line_id: pd.Series, flow_date: pd.Series) -> pd.Series:
    """sample_id is line_id followed directly by the ISO flow date."""
    dates = pd.to_datetime(flow_date).dt.strftime(DATE_FORMAT)
    return line_id.astype(str) + dates


def normalize_donors(readings: pd.DataFrame, aliases: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """Replace recorded donor labels by their canonical label."""
    aliases = DONOR_ALIASES if aliases is None else aliases
    out = readings.copy()
    out['donor'] = out['donor'].astype(str).map(lambda d: aliases.get(d, d))
    return out


def attach_proteins(readings: pd.DataFrame, channel_map: Dict[str, str]) -> pd.DataFrame:
    """Add a protein column from the channel map; every channel must be mapped."""
    channels = pd.unique(readings['channel'].astype(str))
    unmapped = sorted(c for c in channels if c not in channel_map)
    if unmapped:
        raise ConfigurationError(f"Channels missing from the channel map: {unmapped}")
    out = readings.copy()
    out['protein'] = out['channel'].astype(str).map(channel_map)
    return out


def compute_intensity(readings: pd.DataFrame) -> pd.DataFrame:
    """Intensity is the positive measurement minus the negative reference."""
    out = readings.copy()
    out['intensity'] = out['mean2'] - out['mean1']
    return out


def drop_duplicate_readings(readings: pd.DataFrame,
                            order_by: Optional[Sequence[str]] = None,
                            verbose: bool = True) -> pd.DataFrame:
    """Keep the first reading per (line_id, flow_date, channel)

    Args:
        readings: Long readings table
        order_by: Columns to stable-sort by before picking the first row;
            without it, input row order decides
        verbose: Warn about dropped rows

    Returns:
        Deduplicated copy of readings
    """
    out = readings
    if order_by:
        out = out.sort_values(list(order_by), kind='mergesort')
    key = SAMPLE_KEY + ['channel']
    duplicated = out.duplicated(subset=key, keep='first')
    if duplicated.any() and verbose:
        warnings.warn(f"Dropping {int(duplicated.sum())} duplicated readings by {key}")
    return out[~duplicated].reset_index(drop=True)


def _join_metadata(readings: pd.DataFrame, metadata: pd.DataFrame) -> pd.DataFrame:
    if metadata['donor'].duplicated().any():
        raise DataError("Metadata lists donors more than once")
    known = set(metadata['donor'].astype(str))
    unknown = sorted(set(readings['donor']) - known)
    if unknown:
        raise ConfigurationError(
            f"No metadata for donors {unknown}; add a metadata row or a donor alias"
        )
    meta = metadata[['donor', 'genotype_id']].copy()
    meta['donor'] = meta['donor'].astype(str)
    joined = readings.drop(columns=['genotype_id'], errors='ignore')
    return joined.merge(meta, on='donor', how='left', validate='many_to_one')


def _check_sample_attributes(long_df: pd.DataFrame) -> None:
    attributes = ['donor', 'genotype_id', 'purity']
    counts = long_df.groupby(SAMPLE_KEY)[attributes].nunique(dropna=False)
    conflicting = counts[(counts > 1).any(axis=1)]
    if not conflicting.empty:
        examples = [f"{line}@{date:%Y-%m-%d}" for line, date in conflicting.index[:5]]
        raise DataError(f"Sample-level attributes differ within samples: {examples}")


def reshape(readings: pd.DataFrame,
            metadata: pd.DataFrame,
            channel_map: Dict[str, str],
            aliases: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """Build the wide per-sample table from long readings

    Args:
        readings: Long table [line_id, donor, flow_date, channel, purity, mean1, mean2]
        metadata: Donor table [donor, genotype_id]
        channel_map: Channel -> protein name
        aliases: Recorded donor label -> canonical label (defaults to DONOR_ALIASES)

    Returns:
        DataFrame with one row per (line_id, flow_date): sample columns
        followed by one intensity column per protein

    Raises:
        ConfigurationError: Unmapped channel or donor without metadata
        AmbiguousPivotError: Repeated (line_id, flow_date, protein) key
        DataError: Sample attributes disagree within one sample
    """
    long_df = normalize_donors(readings, aliases)
    long_df['flow_date'] = pd.to_datetime(long_df['flow_date']).dt.normalize()
    long_df = _join_metadata(long_df, metadata)
    long_df = attach_proteins(long_df, channel_map)
    long_df = compute_intensity(long_df)

    key = SAMPLE_KEY + ['protein']
    dup_mask = long_df.duplicated(subset=key, keep=False)
    if dup_mask.any():
        dups = long_df.loc[dup_mask, key].drop_duplicates()
        examples = [f"{r.line_id}@{r.flow_date:%Y-%m-%d}/{r.protein}" for r in dups.head(5).itertuples()]
        raise AmbiguousPivotError(
            f"{len(dups)} (line_id, flow_date, protein) keys appear more than once, e.g. {examples}; "
            "deduplicate readings first"
        )

    _check_sample_attributes(long_df)

    proteins = list(dict.fromkeys(channel_map.values()))
    wide = long_df.pivot(index=SAMPLE_KEY, columns='protein', values='intensity')
    wide = wide.reindex(columns=[p for p in proteins if p in wide.columns])
    wide.columns.name = None

    samples = long_df.groupby(SAMPLE_KEY, sort=False)[['donor', 'genotype_id', 'purity']].first()
    wide = samples.join(wide).reset_index()
    wide.insert(0, 'sample_id', make_sample_id(wide['line_id'], wide['flow_date']))
    wide = wide.sort_values(SAMPLE_KEY, kind='mergesort').reset_index(drop=True)

    return wide[SAMPLE_COLUMNS + [p for p in proteins if p in wide.columns]]


def protein_columns(wide: pd.DataFrame) -> List[str]:
    """Columns of a wide table that hold protein intensities."""
    return [c for c in wide.columns if c not in SAMPLE_COLUMNS]


def to_long(wide: pd.DataFrame, proteins: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """Project a wide table back to one row per (sample, protein)."""
    proteins = protein_columns(wide) if proteins is None else list(proteins)
    long_df = wide.melt(
        id_vars=['sample_id', 'line_id', 'flow_date'],
        value_vars=proteins,
        var_name='protein',
        value_name='intensity',
    )
    long_df = long_df.dropna(subset=['intensity'])
    return long_df.sort_values(['line_id', 'flow_date', 'protein'], kind='mergesort').reset_index(drop=True)
