"""
Shared configuration constants for stratified survival comparison.

This module is the single source of truth for valid stratification modes,
group counts and split methods. Other modules import from here rather than
defining their own lists.
"""

from typing import Final, List

# Valid stratification modes; axis kinds are the "_"-separated parts, in order
VALID_STRATIFY_MODES: Final[List[str]] = [
    "expr",
    "score",
    "covariate",
    "score_expr",
    "covariate_expr",
    "score_covariate",
    "expr_expr",
    "score_score",
]

VALID_GROUP_COUNTS: Final[List[int]] = [2, 3]

# "median": High >= median > Low
# "extremes": Low <= p33, High >= p66, samples in between are dropped
VALID_SPLITS: Final[List[str]] = ["median", "extremes"]

VALID_CORRELATION_METHODS: Final[List[str]] = ["spearman", "pearson"]

# Bucket names, in canonical display order
BUCKET_HIGH: Final[str] = "High"
BUCKET_MEDIUM: Final[str] = "Medium"
BUCKET_LOW: Final[str] = "Low"
BUCKET_ORDER: Final[List[str]] = [BUCKET_HIGH, BUCKET_MEDIUM, BUCKET_LOW]

AXIS_LABEL_SEPARATOR: Final[str] = " / "

# Defaults
DEFAULT_TIME_FIELD: Final[str] = "OS_time"
DEFAULT_EVENT_FIELD: Final[str] = "OS_event"
DEFAULT_LOWER_PERCENTILE: Final[float] = 33.0
DEFAULT_UPPER_PERCENTILE: Final[float] = 66.0
DEFAULT_CONFIDENCE_LEVEL: Final[float] = 0.95
DEFAULT_MIN_GROUP_SIZE: Final[int] = 5  # Smaller groups are fitted but warned about
DEFAULT_FDR_THRESHOLD: Final[float] = 0.05
MAX_SCORE_COLUMNS: Final[int] = 2

CONFIG_FILE_NAME: Final[str] = "survstrat.toml"
