"""
Exception taxonomy for stratified survival comparison.

All errors raised by the comparator derive from SurvivalStratificationError so
report code can catch the whole family in one place, while lookup failures also
derive from the builtin LookupError.
"""


class SurvivalStratificationError(Exception):
    """Base exception for survival stratification operations."""

    pass


class ConfigurationError(SurvivalStratificationError):
    """Stratification contract misuse (mode/axis count, group_count, event encoding)."""

    pass


class FeatureLookupError(SurvivalStratificationError, LookupError):
    """A named gene, covariate or survival field could not be resolved."""

    pass


class FeatureNotFoundError(FeatureLookupError):
    """The requested feature is absent from the dataset."""

    pass


class AmbiguousFeatureError(FeatureLookupError):
    """The requested gene matches more than one row of the expression matrix."""

    pass


class InsufficientDataError(SurvivalStratificationError):
    """Fewer than two non-empty groups remain after exclusion."""

    pass
