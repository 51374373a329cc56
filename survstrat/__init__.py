"""
survstrat: stratified Kaplan-Meier comparison for transcriptomic cohorts.

Samples are split by gene expression, signature score or a clinical covariate
(one axis or two crossed axes), a survival curve is fitted per group and the
groups are compared with a log-rank test.
"""

__version__ = "0.1.0"

from survstrat.core.exceptions import (
    AmbiguousFeatureError,
    ConfigurationError,
    FeatureLookupError,
    FeatureNotFoundError,
    InsufficientDataError,
    SurvivalStratificationError,
)
from survstrat.core.schemas import (
    SampleRecord,
    StratifyMode,
    SurvivalComparison,
    records_to_anndata,
    sorted_label_event_map,
)
from survstrat.services.analysis import (
    SignatureScoringService,
    SurvivalStratificationService,
)
from survstrat.services.visualization import SurvivalPlotService

__all__ = [
    "__version__",
    "AmbiguousFeatureError",
    "ConfigurationError",
    "FeatureLookupError",
    "FeatureNotFoundError",
    "InsufficientDataError",
    "SurvivalStratificationError",
    "SampleRecord",
    "StratifyMode",
    "SurvivalComparison",
    "records_to_anndata",
    "sorted_label_event_map",
    "SignatureScoringService",
    "SurvivalStratificationService",
    "SurvivalPlotService",
]
