import numpy as np
import pandas as pd
import pytest

from cytovar.association.inputs import (
    align_phenotypes,
    attach_variant_genotype,
    first_sample_per_donor,
    phenotype_matrix,
)
from cytovar.utils.data_types import GenotypeBundle
from cytovar.utils.exceptions import AlignmentError, ConfigurationError, DataError


def _wide() -> pd.DataFrame:
    return pd.DataFrame({
        'sample_id': ['L1b2015-01-12', 'L1a2015-01-12', 'L1a2015-01-05', 'L22015-01-19'],
        'line_id': ['L1b', 'L1a', 'L1a', 'L2'],
        'genotype_id': ['G1', 'G1', 'G1', 'G2'],
        'flow_date': pd.to_datetime(['2015-01-12', '2015-01-12', '2015-01-05', '2015-01-19']),
        'CD14': [1.0, 2.0, 3.0, 4.0],
    })


def _bundle(donors) -> GenotypeBundle:
    snpspos = pd.DataFrame({'snpid': ['rs1'], 'chr': ['5'], 'pos': [140631500]})
    dosage = pd.DataFrame([np.arange(len(donors)) % 3], index=['rs1'], columns=donors, dtype=float)
    return GenotypeBundle(snpspos, dosage)


def test_first_sample_per_donor_picks_earliest_sample() -> None:
    per_donor = first_sample_per_donor(_wide())

    assert per_donor['sample_id'].tolist() == ['L1a2015-01-05', 'L22015-01-19']


def test_first_sample_per_donor_ignores_row_order() -> None:
    wide = _wide()

    forward = first_sample_per_donor(wide)
    backward = first_sample_per_donor(wide.iloc[::-1])

    pd.testing.assert_frame_equal(forward, backward)


def test_first_sample_per_donor_breaks_date_ties_by_line() -> None:
    wide = _wide().drop(index=2)

    per_donor = first_sample_per_donor(wide)

    assert per_donor.loc[per_donor['genotype_id'] == 'G1', 'line_id'].iloc[0] == 'L1a'

    with pytest.raises(ConfigurationError):
        first_sample_per_donor(wide, order_by=('visit',))


def test_phenotype_matrix_requires_one_sample_per_donor() -> None:
    with pytest.raises(DataError):
        phenotype_matrix(_wide(), ['CD14'])

    matrix = phenotype_matrix(first_sample_per_donor(_wide()), ['CD14'])
    assert matrix.index.tolist() == ['CD14']
    assert matrix.columns.tolist() == ['G1', 'G2']
    assert matrix.loc['CD14', 'G1'] == 3.0


def test_align_phenotypes_uses_shared_donors() -> None:
    phenotypes = pd.DataFrame([[1.0, 2.0, 3.0]], index=['CD14'], columns=['G3', 'G1', 'G9'])
    bundle = _bundle(['G1', 'G2', 'G3'])

    aligned, subset = align_phenotypes(phenotypes, bundle, verbose=False)

    assert aligned.columns.tolist() == ['G3', 'G1']
    assert subset.donor_ids == ['G3', 'G1']


def test_align_phenotypes_without_overlap() -> None:
    phenotypes = pd.DataFrame([[1.0]], index=['CD14'], columns=['G9'])

    with pytest.raises(AlignmentError):
        align_phenotypes(phenotypes, _bundle(['G1', 'G2']), verbose=False)


def test_attach_variant_genotype_maps_by_donor() -> None:
    genotypes = pd.Series([0.0, 2.0], index=['G1', 'G2'], name='rs_lead')

    wide = attach_variant_genotype(_wide(), genotypes)

    assert wide['genotype'].tolist() == [0.0, 0.0, 0.0, 2.0]

    with pytest.raises(ConfigurationError):
        attach_variant_genotype(wide, genotypes)


def test_attach_variant_genotype_warns_for_missing_donors() -> None:
    genotypes = pd.Series([1.0], index=['G1'], name='rs_lead')

    with pytest.warns(UserWarning):
        wide = attach_variant_genotype(_wide(), genotypes, column='rs_lead')

    assert np.isnan(wide.loc[3, 'rs_lead'])
