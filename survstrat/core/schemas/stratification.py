"""
Stratification request, group assignment and survival fit result types.

StratifyMode encodes the axis kinds of every supported mode in its value
("score_expr" -> score axis then expression axis), so the number and kind of
required inputs are derived rather than listed twice.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from survstrat.config.constants import (
    AXIS_LABEL_SEPARATOR,
    BUCKET_ORDER,
    DEFAULT_LOWER_PERCENTILE,
    DEFAULT_UPPER_PERCENTILE,
    VALID_GROUP_COUNTS,
    VALID_SPLITS,
    VALID_STRATIFY_MODES,
)
from survstrat.core.exceptions import ConfigurationError


class AxisKind(str, Enum):
    """Source of a stratification axis."""

    EXPR = "expr"
    SCORE = "score"
    COVARIATE = "covariate"


class StratifyMode(str, Enum):
    """Supported stratification modes."""

    EXPR = "expr"
    SCORE = "score"
    COVARIATE = "covariate"
    SCORE_EXPR = "score_expr"
    COVARIATE_EXPR = "covariate_expr"
    SCORE_COVARIATE = "score_covariate"
    EXPR_EXPR = "expr_expr"
    SCORE_SCORE = "score_score"

    @property
    def axis_kinds(self) -> Tuple[AxisKind, ...]:
        return tuple(AxisKind(part) for part in self.value.split("_"))

    @property
    def n_axes(self) -> int:
        return len(self.axis_kinds)

    def count(self, kind: AxisKind) -> int:
        """Number of axes of the given kind this mode requires."""
        return sum(1 for k in self.axis_kinds if k == kind)


@dataclass(frozen=True)
class StratificationSpec:
    """
    Validated stratification request.

    Raises ConfigurationError on construction when the mode is unknown, the
    group count is not 2 or 3, a two-axis mode asks for 3 groups, or the split
    method / percentiles are invalid.
    """

    mode: Union[StratifyMode, str]
    group_count: int = 2
    split: str = "median"
    lower_percentile: float = DEFAULT_LOWER_PERCENTILE
    upper_percentile: float = DEFAULT_UPPER_PERCENTILE

    def __post_init__(self):
        try:
            mode = StratifyMode(self.mode)
        except ValueError:
            raise ConfigurationError(
                f"Unknown stratify_mode '{self.mode}'. Valid modes: {VALID_STRATIFY_MODES}"
            ) from None
        object.__setattr__(self, "mode", mode)

        if isinstance(self.group_count, bool) or self.group_count not in VALID_GROUP_COUNTS:
            raise ConfigurationError(
                f"group_count must be one of {VALID_GROUP_COUNTS}, got {self.group_count!r}"
            )
        if mode.n_axes == 2 and self.group_count != 2:
            raise ConfigurationError(
                f"Two-axis mode '{mode.value}' is always split 2x2; group_count={self.group_count} is not supported"
            )
        if self.split not in VALID_SPLITS:
            raise ConfigurationError(
                f"split must be one of {VALID_SPLITS}, got {self.split!r}"
            )
        if not 0 < self.lower_percentile < self.upper_percentile < 100:
            raise ConfigurationError(
                "Percentiles must satisfy 0 < lower < upper < 100, got "
                f"lower={self.lower_percentile}, upper={self.upper_percentile}"
            )

    @property
    def uses_percentile_pair(self) -> bool:
        """True when buckets are cut at the lower/upper percentiles instead of the median."""
        return self.group_count == 3 or self.split == "extremes"

    @property
    def buckets(self) -> List[str]:
        """Bucket names an axis can produce, in display order."""
        if self.group_count == 3:
            return list(BUCKET_ORDER)
        return [BUCKET_ORDER[0], BUCKET_ORDER[-1]]


@dataclass
class StratificationAxis:
    """One resolved stratification axis and its cut points."""

    kind: AxisKind
    name: str
    thresholds: Dict[str, float] = field(default_factory=dict)
    n_non_missing: int = 0


def axis_label(bucket: str, name: str) -> str:
    return f"{bucket} {name}"


def combine_labels(parts: List[str]) -> str:
    return AXIS_LABEL_SEPARATOR.join(parts)


@dataclass
class GroupAssignment:
    """
    Per-sample group labels for one stratification.

    Attributes:
        labels: Series indexed by sample id; None marks an excluded sample
        axes: Resolved axes, in mode order
        label_order: Every label the stratification can produce, in display order
        spec: The validated stratification request
    """

    labels: pd.Series
    axes: List[StratificationAxis]
    label_order: List[str]
    spec: StratificationSpec

    @property
    def included(self) -> pd.Series:
        """Labels of samples that received a group."""
        return self.labels.dropna()

    @property
    def excluded(self) -> List[str]:
        """Sample ids without a group."""
        return self.labels.index[self.labels.isna()].tolist()

    @property
    def group_sizes(self) -> Dict[str, int]:
        """Non-empty group sizes in display order."""
        counts = self.included.value_counts()
        return {label: int(counts[label]) for label in self.label_order if label in counts.index}

    @property
    def thresholds(self) -> Dict[str, Dict[str, float]]:
        return {axis.name: dict(axis.thresholds) for axis in self.axes}


@dataclass
class SurvivalGroup:
    """
    One fitted stratum.

    Attributes:
        label: Stable group label, e.g. "High NK_score / Low TGFB1"
        display_label: Label with the group size appended, e.g. "High CD8A (42)"
        n_samples: Samples in the group
        n_events: Observed events in the group
        durations: Survival times of the group's samples
        events: Event indicators (1 = event, 0 = censored)
        sample_ids: Sample ids in the group
        fitter: Fitted lifelines KaplanMeierFitter
    """

    label: str
    display_label: str
    n_samples: int
    n_events: int
    durations: np.ndarray
    events: np.ndarray
    sample_ids: List[str]
    fitter: Any

    @property
    def median_survival(self) -> Optional[float]:
        median = float(self.fitter.median_survival_time_)
        return None if np.isinf(median) else median

    def curve(self) -> Dict[str, Any]:
        """Survival curve data for plotting."""
        survival = self.fitter.survival_function_
        ci = self.fitter.confidence_interval_survival_function_
        return {
            "timeline": survival.index.tolist(),
            "survival_function": survival.iloc[:, 0].tolist(),
            "confidence_lower": ci.iloc[:, 0].tolist(),
            "confidence_upper": ci.iloc[:, 1].tolist(),
            "n_at_risk": self.fitter.event_table["at_risk"].tolist(),
            "n_events": self.n_events,
            "n_samples": self.n_samples,
            "median_survival": self.median_survival,
        }

    def censored_times(self) -> np.ndarray:
        return self.durations[self.events == 0]


@dataclass
class SurvivalComparison:
    """
    Result of a stratified survival comparison, consumed by the plotting service.

    Attributes:
        assignment: Group assignment the fit was computed from
        groups: Fitted groups in display order (empty combinations omitted)
        log_rank_statistic: Omnibus log-rank chi-squared statistic
        degrees_of_freedom: Number of groups minus one
        p_value: 1 - chi2 CDF of the statistic, rounded to 6 digits
        with_confidence_band: Rendering hint for the plotting service
        time_field: obs column used for survival time
        event_field: obs column used for event status
        n_excluded: Samples dropped for missing axis values or survival data
    """

    assignment: GroupAssignment
    groups: List[SurvivalGroup]
    log_rank_statistic: float
    degrees_of_freedom: int
    p_value: float
    with_confidence_band: bool
    time_field: str
    event_field: str
    n_excluded: int

    @property
    def stratify_mode(self) -> StratifyMode:
        return self.assignment.spec.mode

    @property
    def labels(self) -> List[str]:
        return [g.label for g in self.groups]

    @property
    def display_labels(self) -> List[str]:
        return [g.display_label for g in self.groups]

    @property
    def group_sizes(self) -> Dict[str, int]:
        return {g.label: g.n_samples for g in self.groups}

    def group(self, label: str) -> SurvivalGroup:
        for g in self.groups:
            if label in (g.label, g.display_label):
                return g
        raise KeyError(label)

    def curves(self) -> Dict[str, Dict[str, Any]]:
        return {g.display_label: g.curve() for g in self.groups}

    def to_dict(self) -> Dict[str, Any]:
        """Serializable summary (fitters replaced by curve data)."""
        return {
            "stratify_mode": self.stratify_mode.value,
            "group_count": self.assignment.spec.group_count,
            "split": self.assignment.spec.split,
            "axes": [
                {"kind": a.kind.value, "name": a.name, "thresholds": dict(a.thresholds)}
                for a in self.assignment.axes
            ],
            "labels": self.labels,
            "display_labels": self.display_labels,
            "group_sizes": self.group_sizes,
            "log_rank_statistic": self.log_rank_statistic,
            "degrees_of_freedom": self.degrees_of_freedom,
            "p_value": self.p_value,
            "with_confidence_band": self.with_confidence_band,
            "n_excluded": self.n_excluded,
            "survival_curves": self.curves(),
        }
