"""
Linear and linear mixed model fitting for variance partitioning

Fixed effects are passed as column names (categorical columns are wrapped in
C() automatically) or as raw formula terms. Random effects are grouping factor
column names; each becomes a random intercept. Several random factors are
fitted as crossed effects: one dummy group spanning all rows with one variance
component formula per factor (the statsmodels crossed-effects recipe).

Model fitting itself is delegated to statsmodels (OLS and MixedLM).
"""

import re
import warnings
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from statsmodels.stats.anova import anova_lm

from ..config import RESIDUAL
from ..utils.data_types import VarianceComponents
from ..utils.exceptions import (
    ConfigurationError,
    DegenerateGroupingError,
    EstimationMismatchError,
    RankDeficientDesignError,
    StatisticalValidityError,
)
from ..utils.stats import lrt_pvalue
from .variance import check_factor_names, variance_components as _variance_components, variance_summary

_GROUP_COLUMN = '_all_samples'


@dataclass
class ModelFit:
    """A fitted model plus what is needed to compare it with another fit"""
    result: Any
    response: str
    fixed: Tuple[str, ...]
    random: Tuple[str, ...]
    method: str
    n_obs: int
    n_params: int
    llf: float
    residual_name: str = RESIDUAL

    @property
    def is_mixed(self) -> bool:
        return bool(self.random)

    @property
    def formula(self) -> str:
        return self.result.model.formula


@dataclass
class ModelComparison:
    """Outcome of a nested model comparison"""
    test: str
    statistic: float
    df: int
    pvalue: float
    null_llf: float
    alt_llf: float


def _is_categorical(series: pd.Series) -> bool:
    return not pd.api.types.is_numeric_dtype(series) or pd.api.types.is_bool_dtype(series)


def _fixed_term(data: pd.DataFrame, term: str) -> str:
    if term in data.columns and _is_categorical(data[term]):
        return f"C({term})"
    return term


def _term_columns(data: pd.DataFrame, term: str) -> list:
    """Data columns referenced by a fixed-effect term."""
    if term in data.columns:
        return [term]
    tokens = set(re.findall(r"[A-Za-z_]\w*", term))
    return [c for c in data.columns if c in tokens]


def _prepare_data(data: pd.DataFrame, response: str, fixed: Sequence[str],
                  random: Sequence[str], verbose: bool) -> pd.DataFrame:
    if response not in data.columns:
        raise ConfigurationError(f"Response column '{response}' not found")
    missing = [r for r in random if r not in data.columns]
    if missing:
        raise ConfigurationError(f"Grouping factors not found: {missing}")

    columns = [response] + list(random)
    for term in fixed:
        referenced = _term_columns(data, term)
        if not referenced:
            raise ConfigurationError(f"Fixed effect '{term}' does not reference any column")
        columns.extend(referenced)
    columns = list(dict.fromkeys(columns))

    frame = data[columns].dropna()
    if verbose and len(frame) < len(data):
        print(f"   Dropped {len(data) - len(frame)} rows with missing values for {response}")

    frame = frame.copy()
    for col in columns:
        if pd.api.types.is_datetime64_any_dtype(frame[col]):
            frame[col] = frame[col].dt.strftime('%Y-%m-%d')
    for col in random:
        frame[col] = frame[col].astype(str)
    return frame.reset_index(drop=True)


def _check_grouping_factors(frame: pd.DataFrame, random: Sequence[str]) -> None:
    for factor in random:
        n_levels = frame[factor].nunique()
        if n_levels < 2:
            raise DegenerateGroupingError(
                f"Grouping factor '{factor}' has {n_levels} observed level(s); its variance is not estimable"
            )


def _check_fixed_design(exog: np.ndarray, names: Sequence[str]) -> None:
    n_obs, n_params = exog.shape
    if n_params >= n_obs:
        raise RankDeficientDesignError(
            f"Fixed-effect design needs {n_params} parameters but only {n_obs} observations are available"
        )
    rank = np.linalg.matrix_rank(exog)
    if rank < n_params:
        raise RankDeficientDesignError(
            f"Fixed-effect design is rank deficient: {n_params - rank} of {n_params} coefficients "
            f"({len(names)} terms) cannot be estimated from {n_obs} observations"
        )


def fit_model(data: pd.DataFrame,
              response: str,
              fixed: Sequence[str] = (),
              random: Sequence[str] = (),
              reml: bool = True,
              residual_name: str = RESIDUAL,
              verbose: bool = False) -> ModelFit:
    """Fit a linear model (no random effects) or a linear mixed model

    Args:
        data: Per-sample table
        response: Phenotype column
        fixed: Fixed-effect columns or formula terms (intercept always included)
        random: Grouping factor columns fitted as random intercepts
        reml: Use REML for mixed models; ignored for plain linear models,
            which are always maximum likelihood fits
        residual_name: Reserved name for residual variance
        verbose: Print progress

    Returns:
        ModelFit

    Raises:
        ConfigurationError: Unknown columns or a factor named like the residual
        DegenerateGroupingError: A grouping factor with fewer than two levels
        RankDeficientDesignError: Fixed effects cannot all be estimated
    """
    fixed = tuple(fixed)
    random = tuple(random)
    check_factor_names(random, residual_name)
    overlap = set(fixed) & set(random)
    if overlap:
        raise ConfigurationError(f"Terms cannot be both fixed and random: {sorted(overlap)}")

    frame = _prepare_data(data, response, fixed, random, verbose)
    _check_grouping_factors(frame, random)

    rhs = " + ".join(_fixed_term(frame, t) for t in fixed) or "1"
    formula = f"{response} ~ {rhs}"

    if not random:
        model = smf.ols(formula, data=frame)
        _check_fixed_design(np.asarray(model.exog), model.exog_names)
        if verbose:
            print(f"   Fitting OLS: {formula} (n={len(frame)})")
        result = model.fit()
        n_params = int(model.exog.shape[1]) + 1
        return ModelFit(result, response, fixed, random, 'ML', len(frame), n_params,
                        float(result.llf), residual_name)

    frame[_GROUP_COLUMN] = 1
    vc_formula = {factor: f"0 + C({factor})" for factor in random}
    model = smf.mixedlm(formula, data=frame, groups=_GROUP_COLUMN, re_formula="0", vc_formula=vc_formula)
    _check_fixed_design(np.asarray(model.exog), model.exog_names)

    method = 'REML' if reml else 'ML'
    if verbose:
        print(f"   Fitting MixedLM ({method}): {formula} + random {list(random)} (n={len(frame)})")
    result = model.fit(reml=reml)
    if not getattr(result, 'converged', True):
        warnings.warn(f"MixedLM for {response} did not converge")

    n_params = int(model.exog.shape[1]) + len(random) + 1
    return ModelFit(result, response, fixed, random, method, len(frame), n_params,
                    float(result.llf), residual_name)


def group_variances(fit: ModelFit) -> Dict[str, float]:
    """Estimated variance per grouping factor plus the residual variance."""
    variances: Dict[str, float] = {}
    if fit.is_mixed:
        names = list(fit.result.model.exog_vc.names)
        for name, value in zip(names, np.asarray(fit.result.vcomp)):
            variances[name] = float(value)
    variances[fit.residual_name] = float(fit.result.scale)
    return variances


def variance_components(fit: ModelFit) -> VarianceComponents:
    """Variance fractions for a fitted model"""
    return _variance_components(group_variances(fit), residual_name=fit.residual_name)


def partition_variance(data: pd.DataFrame,
                       responses: Iterable[str],
                       random: Sequence[str],
                       fixed: Sequence[str] = (),
                       residual_name: str = RESIDUAL,
                       verbose: bool = False) -> Tuple[pd.DataFrame, Dict[str, VarianceComponents]]:
    """REML variance partitioning for several phenotypes

    Returns:
        Tuple of (summary table with one row per phenotype and one column per
        variance component, phenotype -> VarianceComponents)
    """
    components: Dict[str, VarianceComponents] = {}
    for response in responses:
        fit = fit_model(data, response, fixed=fixed, random=random, reml=True,
                        residual_name=residual_name, verbose=verbose)
        components[response] = variance_components(fit)
        if verbose:
            print(f"   {response}: {components[response]}")

    summary = variance_summary({k: v.fractions for k, v in components.items()})
    return summary, components


def likelihood_ratio_test(null: ModelFit, alt: ModelFit) -> ModelComparison:
    """Likelihood ratio test of two nested fits

    Both fits must be maximum likelihood fits of the same response on the same
    rows. REML fits are only comparable when their fixed effects are identical.

    Raises:
        EstimationMismatchError: REML and ML fits compared, or REML fits with
            different fixed effects
        StatisticalValidityError: Fits are not nested on the same data
    """
    if null.method != alt.method:
        raise EstimationMismatchError(
            f"Cannot compare a {null.method} fit with a {alt.method} fit; refit both with reml=False"
        )
    if null.method == 'REML' and set(null.fixed) != set(alt.fixed):
        raise EstimationMismatchError(
            "REML likelihoods of models with different fixed effects are not comparable; refit with reml=False"
        )
    if null.response != alt.response:
        raise StatisticalValidityError("Models describe different responses")
    if null.n_obs != alt.n_obs:
        raise StatisticalValidityError(
            f"Models were fitted on different rows ({null.n_obs} vs {alt.n_obs} observations)"
        )

    df = alt.n_params - null.n_params
    if df <= 0:
        raise StatisticalValidityError("Alternative model must have more parameters than the null model")

    statistic = 2.0 * (alt.llf - null.llf)
    return ModelComparison('LRT', max(statistic, 0.0), df, lrt_pvalue(statistic, df), null.llf, alt.llf)


def f_test(null: ModelFit, alt: ModelFit) -> ModelComparison:
    """F-test of two nested linear models (no random effects)."""
    if null.is_mixed or alt.is_mixed:
        raise StatisticalValidityError("F-tests apply to linear models without random effects")
    if null.n_obs != alt.n_obs:
        raise StatisticalValidityError("Models were fitted on different rows")

    table = anova_lm(null.result, alt.result)
    row = table.iloc[1]
    df = int(row['df_diff'])
    if df <= 0:
        raise StatisticalValidityError("Alternative model must have more parameters than the null model")
    return ModelComparison('F', float(row['F']), df, float(row['Pr(>F)']), null.llf, alt.llf)


def fixed_effect_anova(fit: ModelFit, typ: int = 2) -> pd.DataFrame:
    """ANOVA table for the fixed effects of a linear model"""
    if fit.is_mixed:
        raise StatisticalValidityError("ANOVA tables are only produced for linear models")
    return anova_lm(fit.result, typ=typ)


def fixed_effect_lrt(data: pd.DataFrame,
                      response: str,
                      term: str,
                      fixed: Sequence[str] = (),
                      random: Sequence[str] = (),
                      verbose: bool = False) -> ModelComparison:
    """Does adding ``term`` to the fixed effects improve the fit?

    Both models are fitted by maximum likelihood on the rows complete for the
    larger model, then compared with a likelihood ratio test.
    """
    alt_fixed = tuple(fixed) + (term,)
    frame = data.dropna(subset=[c for c in [response] + list(random) if c in data.columns]
                        + [c for t in alt_fixed for c in _term_columns(data, t)])
    null = fit_model(frame, response, fixed=fixed, random=random, reml=False, verbose=verbose)
    alt = fit_model(frame, response, fixed=alt_fixed, random=random, reml=False, verbose=verbose)
    return likelihood_ratio_test(null, alt)

