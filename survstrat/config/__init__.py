"""Configuration for survstrat analyses."""

from survstrat.config.analysis_config import PlotTheme, SurvivalAnalysisConfig
from survstrat.config.constants import (
    VALID_CORRELATION_METHODS,
    VALID_GROUP_COUNTS,
    VALID_SPLITS,
    VALID_STRATIFY_MODES,
)

__all__ = [
    "PlotTheme",
    "SurvivalAnalysisConfig",
    "VALID_CORRELATION_METHODS",
    "VALID_GROUP_COUNTS",
    "VALID_SPLITS",
    "VALID_STRATIFY_MODES",
]
