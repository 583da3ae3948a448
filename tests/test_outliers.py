import numpy as np
import pandas as pd
import pytest

from cytovar.qc.outliers import EXCLUDED_ATTR, apply_exclusion, detect_candidates, standardize
from cytovar.utils.exceptions import DataError, StaleExclusionError


def _samples(n: int = 40) -> pd.DataFrame:
    rng = np.random.default_rng(5)
    wide = pd.DataFrame({
        'sample_id': [f"L{i:02d}2015-01-05" for i in range(n)],
        'CD14': rng.normal(20, 1, n),
        'CD16': rng.normal(10, 1, n),
        'CD206': rng.normal(30, 1, n),
    })
    # One sample far away from the rest
    wide.loc[7, ['CD14', 'CD16', 'CD206']] = [35.0, -5.0, 45.0]
    return wide


def test_standardize_scales_columns() -> None:
    scaled = standardize(np.array([[1.0, 10.0], [2.0, 20.0], [3.0, 30.0]]))

    np.testing.assert_allclose(scaled.mean(axis=0), 0.0, atol=1e-12)
    np.testing.assert_allclose(scaled.std(axis=0), 1.0)


def test_standardize_rejects_constant_column() -> None:
    with pytest.raises(DataError):
        standardize(np.array([[1.0, 5.0], [2.0, 5.0], [3.0, 5.0]]))


def test_detect_candidates_ranks_distant_sample_first() -> None:
    wide = _samples()

    candidates = detect_candidates(wide, ['CD14', 'CD16', 'CD206'])

    assert list(candidates.columns) == ['sample_id', 'PC1', 'PC2', 'distance', 'rank']
    assert candidates.loc[0, 'sample_id'] == 'L072015-01-05'
    assert candidates['rank'].tolist() == list(range(1, len(wide) + 1))
    assert candidates['distance'].is_monotonic_decreasing
    assert len(candidates.attrs['explained_variance_ratio']) == 2


def test_detect_candidates_is_deterministic() -> None:
    wide = _samples()

    first = detect_candidates(wide, ['CD14', 'CD16', 'CD206'])
    shuffled = wide.sample(frac=1.0, random_state=1)
    second = detect_candidates(shuffled, ['CD14', 'CD16', 'CD206'])

    assert first['sample_id'].tolist() == second['sample_id'].tolist()
    np.testing.assert_allclose(first[['PC1', 'PC2', 'distance']], second[['PC1', 'PC2', 'distance']])


def test_detect_candidates_skips_incomplete_samples() -> None:
    wide = _samples()
    wide.loc[3, 'CD16'] = np.nan

    with pytest.warns(UserWarning):
        candidates = detect_candidates(wide, ['CD14', 'CD16', 'CD206'])

    assert 'L032015-01-05' not in set(candidates['sample_id'])

    with pytest.raises(DataError):
        detect_candidates(wide, ['CD14', 'CD99'])


def test_apply_exclusion_removes_samples_and_keeps_schema() -> None:
    wide = _samples()

    filtered = apply_exclusion(wide, ['L072015-01-05'])

    assert len(filtered) == len(wide) - 1
    assert list(filtered.columns) == list(wide.columns)
    assert 'L072015-01-05' not in set(filtered['sample_id'])
    assert filtered.attrs[EXCLUDED_ATTR] == ['L072015-01-05']


def test_apply_exclusion_is_idempotent() -> None:
    wide = _samples()
    ids = ['L072015-01-05', 'L112015-01-05']

    once = apply_exclusion(wide, ids)
    twice = apply_exclusion(once, ids)

    pd.testing.assert_frame_equal(once, twice)
    assert twice.attrs[EXCLUDED_ATTR] == sorted(ids)


def test_apply_exclusion_rejects_unknown_ids() -> None:
    wide = _samples()

    with pytest.raises(StaleExclusionError):
        apply_exclusion(wide, ['L992015-01-05'])

    once = apply_exclusion(wide, ['L072015-01-05'])
    with pytest.raises(StaleExclusionError):
        apply_exclusion(once, ['L072015-01-05', 'L992015-01-05'])


def test_apply_exclusion_with_empty_list_returns_copy() -> None:
    wide = _samples()

    filtered = apply_exclusion(wide, [])

    assert filtered['sample_id'].tolist() == wide['sample_id'].tolist()
    assert filtered is not wide
    assert filtered.attrs[EXCLUDED_ATTR] == []
