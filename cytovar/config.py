"""
Static lookup tables and run configuration for the flow cytometry analysis
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple

import pandas as pd

# Instrument channel -> protein measured on that channel
CHANNEL_MAP: Dict[str, str] = {
    'APC.A': 'CD206',
    'PE.A': 'CD16',
    'Pacific.Blue.A': 'CD14',
}

# Recorded donor label -> canonical donor label.
# Bump DONOR_ALIASES_VERSION whenever an entry is added.
DONOR_ALIASES: Dict[str, str] = {
    'fpdj': 'nibo',
}
DONOR_ALIASES_VERSION = 1

PROTEINS: Tuple[str, ...] = ('CD14', 'CD16', 'CD206')

DEFAULT_CIS_WINDOW = 200_000

# Reserved name for unexplained variance in variance decompositions
RESIDUAL = 'Residual'

_GENE_POSITION_ROWS = [
    {'geneid': 'CD14', 'chr': '5', 'left': 140631728, 'right': 140633701},
]


def default_gene_positions() -> pd.DataFrame:
    """Fresh copy of the default gene position table."""
    return pd.DataFrame(_GENE_POSITION_ROWS, columns=['geneid', 'chr', 'left', 'right'])


@dataclass
class AnalysisConfig:
    """Explicit configuration handed to every pipeline stage.

    Attributes:
        channel_map: Instrument channel -> protein name
        donor_aliases: Recorded donor label -> canonical donor label
        donor_aliases_version: Version of the alias table, reported with results
        gene_positions: Table with geneid, chr, left, right
        cis_window: Maximum distance (bp) between a variant and a gene interval
        proteins: Protein columns of the wide sample table
        residual_name: Reserved name for residual variance
    """
    channel_map: Dict[str, str] = field(default_factory=lambda: dict(CHANNEL_MAP))
    donor_aliases: Dict[str, str] = field(default_factory=lambda: dict(DONOR_ALIASES))
    donor_aliases_version: int = DONOR_ALIASES_VERSION
    gene_positions: pd.DataFrame = field(default_factory=default_gene_positions)
    cis_window: int = DEFAULT_CIS_WINDOW
    proteins: Tuple[str, ...] = PROTEINS
    residual_name: str = RESIDUAL

    def __post_init__(self):
        if self.cis_window < 0:
            raise ValueError("cis_window must be non-negative")
        missing = [c for c in ('geneid', 'chr', 'left', 'right') if c not in self.gene_positions.columns]
        if missing:
            raise ValueError(f"gene_positions is missing columns: {missing}")
