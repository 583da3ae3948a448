"""
Variance decomposition and model fitting
"""

from .variance import decompose
from .mixed import fit_model, likelihood_ratio_test, f_test

__all__ = ['decompose', 'fit_model', 'likelihood_ratio_test', 'f_test']
