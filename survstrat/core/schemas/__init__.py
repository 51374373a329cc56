"""
Schema definitions for samples, stratifications and survival fit results.
"""

from .sample_schema import (
    SampleRecord,
    encode_events,
    records_to_anndata,
    sorted_label_event_map,
)
from .stratification import (
    AxisKind,
    GroupAssignment,
    StratificationAxis,
    StratificationSpec,
    StratifyMode,
    SurvivalComparison,
    SurvivalGroup,
)

__all__ = [
    "SampleRecord",
    "encode_events",
    "records_to_anndata",
    "sorted_label_event_map",
    "AxisKind",
    "GroupAssignment",
    "StratificationAxis",
    "StratificationSpec",
    "StratifyMode",
    "SurvivalComparison",
    "SurvivalGroup",
]
