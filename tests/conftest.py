"""Synthetic flow cytometry study shared by the test modules."""

import numpy as np
import pandas as pd
import pytest

from cytovar.config import CHANNEL_MAP

CD14_LEFT = 140631728
CD14_RIGHT = 140633701
LEAD_VARIANT = 'rs_lead'


def make_study(seed: int = 7, n_donors: int = 12, n_dates: int = 8):
    """Wide per-sample table plus matching genotype data

    Donors 0-3 contribute two cell lines, the rest one. Every line is measured
    on four of the flow dates. CD14 carries a strong additive effect of the
    lead variant; CD16 and CD206 are line + date + noise.
    """
    rng = np.random.default_rng(seed)
    donors = [f"donor{i:02d}" for i in range(n_donors)]
    genotype_ids = [f"G{i:02d}" for i in range(n_donors)]
    dates = pd.date_range('2015-01-05', periods=n_dates, freq='7D')

    lead_dosage = np.array([0, 1, 2] * (n_donors // 3) + [1] * (n_donors % 3), dtype=float)
    rng.shuffle(lead_dosage)

    lines = []
    for i, donor in enumerate(donors):
        n_lines = 2 if i < 4 else 1
        for k in range(n_lines):
            lines.append((f"HPSI-{donor}_{k + 1}", donor, genotype_ids[i], lead_dosage[i]))

    line_effects = {line[0]: rng.normal(0, 1.0) for line in lines}
    date_effects = {d: rng.normal(0, 0.5) for d in dates}

    rows = []
    for j, (line_id, donor, genotype_id, dosage) in enumerate(lines):
        for r in range(4):
            date = dates[(j + 2 * r) % n_dates]
            base = line_effects[line_id] + date_effects[date]
            rows.append({
                'line_id': line_id,
                'donor': donor,
                'genotype_id': genotype_id,
                'flow_date': date,
                'purity': round(float(rng.uniform(0.85, 0.99)), 3),
                'CD14': 20.0 + base + 3.0 * dosage + rng.normal(0, 0.3),
                'CD16': 10.0 + base + rng.normal(0, 0.3),
                'CD206': 30.0 + 0.5 * base + rng.normal(0, 0.3),
            })
    wide = pd.DataFrame(rows)

    snpspos = pd.DataFrame({
        'snpid': ['rs_up', LEAD_VARIANT, 'rs_in', 'rs_down', 'rs_far', 'rs_chr1'],
        'chr': ['5', '5', '5', '5', '5', '1'],
        'pos': [CD14_LEFT - 150_000, CD14_LEFT - 228, CD14_LEFT + 1000,
                CD14_RIGHT + 199_000, CD14_RIGHT + 1_000_000, CD14_LEFT],
    })
    dosage = pd.DataFrame(
        rng.integers(0, 3, size=(len(snpspos), n_donors)).astype(float),
        index=snpspos['snpid'],
        columns=genotype_ids,
    )
    dosage.loc[LEAD_VARIANT] = lead_dosage
    dosage.index.name = 'snpid'

    metadata = pd.DataFrame({'donor': donors, 'genotype_id': genotype_ids})
    return wide, metadata, snpspos, dosage


def make_readings(wide: pd.DataFrame, seed: int = 11) -> pd.DataFrame:
    """Long readings whose mean2 - mean1 reproduces the wide intensities."""
    rng = np.random.default_rng(seed)
    rows = []
    for sample in wide.itertuples(index=False):
        for channel, protein in CHANNEL_MAP.items():
            mean1 = float(rng.uniform(50, 150))
            rows.append({
                'line_id': sample.line_id,
                'donor': sample.donor,
                'flow_date': sample.flow_date,
                'channel': channel,
                'purity': sample.purity,
                'mean1': mean1,
                'mean2': mean1 + getattr(sample, protein),
            })
    return pd.DataFrame(rows)


@pytest.fixture
def study():
    return make_study()


@pytest.fixture
def study_files(tmp_path, study):
    wide, metadata, snpspos, dosage = study
    readings = make_readings(wide)
    readings = readings.assign(flow_date=readings['flow_date'].dt.strftime('%Y-%m-%d'))

    paths = {
        'readings': tmp_path / "readings.csv",
        'metadata': tmp_path / "donors.csv",
        'snpspos': tmp_path / "snpspos.tsv",
        'dosage': tmp_path / "dosage.tsv",
        'variant': tmp_path / "lead_variant.csv",
    }
    readings.to_csv(paths['readings'], index=False)
    metadata.to_csv(paths['metadata'], index=False)
    snpspos.to_csv(paths['snpspos'], sep='\t', index=False)
    dosage.reset_index().to_csv(paths['dosage'], sep='\t', index=False)
    pd.DataFrame({
        'genotype_id': dosage.columns,
        LEAD_VARIANT: dosage.loc[LEAD_VARIANT].to_numpy(),
    }).to_csv(paths['variant'], index=False)
    return paths


@pytest.fixture
def study_readings(study):
    return make_readings(study[0])
