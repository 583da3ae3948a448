"""
Error taxonomy for the analysis stages.

Everything derives from ValueError so callers that already guard stages with
``except ValueError`` keep working.
"""


class ConfigurationError(ValueError):
    """Inputs and configuration do not fit together (missing map entries etc.)."""


class AlignmentError(ConfigurationError):
    """Phenotype and genotype tables are not keyed by the same donor ids."""


class RankDeficientDesignError(ConfigurationError):
    """Fixed-effect design cannot be estimated from the available observations."""


class DataError(ValueError):
    """Input data violates a structural invariant."""


class AmbiguousPivotError(DataError):
    """The same (line_id, flow_date, protein) key appears more than once."""


class StaleExclusionError(DataError):
    """An exclusion list names samples the table never contained."""


class DegenerateGroupingError(DataError):
    """A grouping factor has fewer than two observed levels."""


class StatisticalValidityError(ValueError):
    """The requested computation is not statistically meaningful."""


class EstimationMismatchError(StatisticalValidityError):
    """Likelihoods from incompatible estimation regimes were compared."""
