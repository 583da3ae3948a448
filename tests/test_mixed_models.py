import warnings

import numpy as np
import pandas as pd
import pytest
import statsmodels.formula.api as smf

from cytovar.models.mixed import (
    _term_columns,
    f_test,
    fit_model,
    fixed_effect_anova,
    fixed_effect_lrt,
    group_variances,
    likelihood_ratio_test,
    partition_variance,
    variance_components,
)
from cytovar.utils.exceptions import (
    ConfigurationError,
    DegenerateGroupingError,
    EstimationMismatchError,
    RankDeficientDesignError,
    StatisticalValidityError,
)


@pytest.fixture
def samples(study):
    wide, _, _, dosage = study
    genotype = dosage.loc['rs_lead']
    return wide.assign(genotype=wide['genotype_id'].map(genotype))


def _fit_quietly(*args, **kwargs):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return fit_model(*args, **kwargs)


def test_fit_model_ols_matches_statsmodels(samples) -> None:
    fit = fit_model(samples, 'CD14', fixed=['genotype', 'purity'])

    reference = smf.ols("CD14 ~ genotype + purity", data=samples).fit()
    assert fit.method == 'ML'
    assert not fit.is_mixed
    assert fit.n_obs == len(samples)
    assert fit.n_params == 4
    assert fit.llf == pytest.approx(reference.llf)
    assert fit.result.params['genotype'] == pytest.approx(reference.params['genotype'])


def test_fit_model_wraps_categorical_fixed_effects(samples) -> None:
    fit = fit_model(samples, 'CD16', fixed=['flow_date'])

    assert 'C(flow_date)' in fit.formula
    assert fit.n_params == samples['flow_date'].nunique() + 1


def test_mixed_model_partitions_line_and_date_variance(samples) -> None:
    fit = _fit_quietly(samples, 'CD16', random=['flow_date', 'line_id'])

    assert fit.method == 'REML'
    assert fit.is_mixed
    variances = group_variances(fit)
    assert set(variances) == {'flow_date', 'line_id', 'Residual'}
    assert all(v >= 0 for v in variances.values())

    components = variance_components(fit)
    assert sum(components.fractions.values()) == pytest.approx(1.0, abs=1e-9)
    assert max(components.fractions, key=components.fractions.get) == 'line_id'


def test_partition_variance_summary(samples) -> None:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        summary, components = partition_variance(
            samples, ['CD14', 'CD16'], random=['flow_date', 'line_id'],
        )

    assert summary['phenotype'].tolist() == ['CD14', 'CD16']
    assert list(summary.columns) == ['phenotype', 'flow_date', 'line_id', 'Residual']
    np.testing.assert_allclose(summary[['flow_date', 'line_id', 'Residual']].sum(axis=1), 1.0)
    assert set(components) == {'CD14', 'CD16'}


def test_fit_model_rejects_degenerate_grouping_factor(samples) -> None:
    one_date = samples[samples['flow_date'] == samples['flow_date'].iloc[0]]

    with pytest.raises(DegenerateGroupingError):
        fit_model(one_date, 'CD14', random=['flow_date', 'line_id'])


def test_fit_model_rejects_reserved_and_unknown_names(samples) -> None:
    renamed = samples.rename(columns={'line_id': 'Residual'})
    with pytest.raises(ConfigurationError):
        fit_model(renamed, 'CD14', random=['Residual'])

    with pytest.raises(ConfigurationError):
        fit_model(samples, 'CD99')
    with pytest.raises(ConfigurationError):
        fit_model(samples, 'CD14', random=['batch'])
    with pytest.raises(ConfigurationError):
        fit_model(samples, 'CD14', fixed=['line_id'], random=['line_id'])


def test_fit_model_rejects_rank_deficient_design(samples) -> None:
    # genotype is constant within each line, so it is collinear with line dummies
    with pytest.raises(RankDeficientDesignError):
        fit_model(samples, 'CD14', fixed=['line_id', 'genotype'])

    few = samples.head(4)
    with pytest.raises(RankDeficientDesignError):
        fit_model(few, 'CD14', fixed=['flow_date', 'purity'])


def test_likelihood_ratio_test_rejects_reml_vs_ml(samples) -> None:
    reml = _fit_quietly(samples, 'CD14', random=['line_id'], reml=True)
    ml = _fit_quietly(samples, 'CD14', fixed=['genotype'], random=['line_id'], reml=False)

    with pytest.raises(EstimationMismatchError):
        likelihood_ratio_test(reml, ml)


def test_likelihood_ratio_test_rejects_reml_with_different_fixed_effects(samples) -> None:
    null = _fit_quietly(samples, 'CD14', random=['line_id'])
    alt = _fit_quietly(samples, 'CD14', fixed=['genotype'], random=['line_id'])

    with pytest.raises(EstimationMismatchError):
        likelihood_ratio_test(null, alt)


def test_likelihood_ratio_test_for_linear_models(samples) -> None:
    null = fit_model(samples, 'CD14', fixed=['purity'])
    alt = fit_model(samples, 'CD14', fixed=['purity', 'genotype'])

    comparison = likelihood_ratio_test(null, alt)
    statistic, pvalue, df = alt.result.compare_lr_test(null.result)

    assert comparison.test == 'LRT'
    assert comparison.df == int(df) == 1
    assert comparison.statistic == pytest.approx(statistic)
    assert comparison.pvalue == pytest.approx(pvalue)
    assert 0.0 <= comparison.pvalue <= 1.0


def test_likelihood_ratio_test_checks_nesting(samples) -> None:
    a = fit_model(samples, 'CD14', fixed=['purity'])
    b = fit_model(samples, 'CD16', fixed=['purity', 'genotype'])
    with pytest.raises(StatisticalValidityError):
        likelihood_ratio_test(a, b)

    c = fit_model(samples.iloc[:-3], 'CD14', fixed=['purity', 'genotype'])
    with pytest.raises(StatisticalValidityError):
        likelihood_ratio_test(a, c)

    with pytest.raises(StatisticalValidityError):
        likelihood_ratio_test(a, a)


def test_fixed_effect_lrt_detects_genotype_effect(samples) -> None:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        comparison = fixed_effect_lrt(samples, 'CD14', 'genotype', random=['flow_date', 'line_id'])

    assert comparison.df == 1
    assert comparison.statistic > 0
    assert comparison.pvalue < 0.01


def test_f_test_matches_anova_lm(samples) -> None:
    null = fit_model(samples, 'CD14', fixed=['purity'])
    alt = fit_model(samples, 'CD14', fixed=['purity', 'genotype'])

    comparison = f_test(null, alt)
    reference = smf.ols("CD14 ~ purity + genotype", data=samples).fit()

    assert comparison.test == 'F'
    assert comparison.df == 1
    assert comparison.statistic == pytest.approx(reference.tvalues['genotype'] ** 2)
    assert comparison.pvalue == pytest.approx(reference.pvalues['genotype'])


def test_f_test_and_anova_reject_mixed_models(samples) -> None:
    mixed = _fit_quietly(samples, 'CD14', random=['line_id'])
    linear = fit_model(samples, 'CD14')

    with pytest.raises(StatisticalValidityError):
        f_test(linear, mixed)
    with pytest.raises(StatisticalValidityError):
        fixed_effect_anova(mixed)


def test_fixed_effect_anova_lists_terms(samples) -> None:
    fit = fit_model(samples, 'CD14', fixed=['genotype', 'flow_date'])

    table = fixed_effect_anova(fit)

    assert 'genotype' in table.index
    assert 'C(flow_date)' in table.index
    assert table.loc['genotype', 'PR(>F)'] < 0.01


def test_term_columns_match_whole_names(samples) -> None:
    data = samples.assign(CD14_log=np.log(samples['CD14']))

    assert _term_columns(data, 'CD14_log') == ['CD14_log']
    assert _term_columns(data, 'I(CD14_log * 2)') == ['CD14_log']
    assert set(_term_columns(data, 'genotype:purity')) == {'genotype', 'purity'}


def test_raw_term_missing_values_only_drop_referenced_columns(samples) -> None:
    data = samples.assign(CD14_log=np.log(samples['CD14']))
    data.loc[data.index[:3], 'CD14'] = np.nan

    fit = fit_model(data, 'CD16', fixed=['I(CD14_log * 2)'])

    assert fit.n_obs == len(data)
