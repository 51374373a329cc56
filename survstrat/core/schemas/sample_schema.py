"""
Per-sample record schema and event-status encoding helpers.

This module provides the validated SampleRecord model, the conversion of a
list of records into the sample x gene AnnData container consumed by the
survival services, and the helpers that turn a categorical event column into
observed/censored indicators.

Event encoding is always explicit: callers either pass a boolean / 0-1 column
or an ``event_map`` of label -> observed. The historical "first label in sort
order is censored" convention is available only on request through
sorted_label_event_map().
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import anndata
import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator

from survstrat.config.constants import DEFAULT_EVENT_FIELD, DEFAULT_TIME_FIELD
from survstrat.core.exceptions import ConfigurationError
from survstrat.utils.logger import get_logger

logger = get_logger(__name__)

# Values accepted as-is in an event column when no event_map is given
_BINARY_EVENT_VALUES = {0, 1, True, False}


# =============================================================================
# Event encoding
# =============================================================================


def sorted_label_event_map(values: Sequence[Any]) -> Dict[Any, bool]:
    """
    Build an event map from the sort order of exactly two distinct labels.

    The first label in sort order is treated as censored and the second as the
    observed event, which mirrors a two-level factor encoding. Callers should
    check that this matches their data (e.g. "Alive" < "Dead" works, "Censored"
    < "Alive" does not).

    Args:
        values: Raw event labels (missing values are ignored)

    Returns:
        Dict mapping the two labels to False (censored) / True (event)

    Raises:
        ConfigurationError: If the values do not contain exactly two labels
    """
    labels = pd.Series(list(values), dtype=object).dropna().unique().tolist()
    if len(labels) != 2:
        raise ConfigurationError(
            f"Sorted-label event encoding needs exactly two distinct labels, "
            f"found {len(labels)}: {labels}"
        )
    censored, observed = sorted(labels, key=str)
    return {censored: False, observed: True}


def encode_events(
    values: pd.Series, event_map: Optional[Mapping[Any, bool]] = None
) -> pd.Series:
    """
    Convert an event column into a float series of 1.0 (event), 0.0 (censored) or NaN.

    Args:
        values: Raw event column
        event_map: Optional explicit mapping of label -> observed event

    Returns:
        pd.Series: Encoded indicators aligned with ``values``

    Raises:
        ConfigurationError: If labels are unmapped, or non-binary labels are
            given without an event_map
    """
    present = values.dropna()

    if event_map is not None:
        unknown = sorted({v for v in present.unique() if v not in event_map}, key=str)
        if unknown:
            raise ConfigurationError(
                f"Event labels {unknown} are not covered by event_map "
                f"(keys: {list(event_map.keys())})"
            )
        return pd.Series(
            [np.nan if pd.isna(v) else float(bool(event_map[v])) for v in values],
            index=values.index,
            dtype=float,
        )

    unexpected = [v for v in present.unique() if v not in _BINARY_EVENT_VALUES]
    if unexpected:
        raise ConfigurationError(
            f"Event column holds non-binary labels {sorted(map(str, unexpected))}; "
            "pass an explicit event_map (e.g. {'Dead': True, 'Alive': False}) "
            "or use sorted_label_event_map() to opt into sort-order encoding"
        )
    return pd.Series(
        [np.nan if pd.isna(v) else float(v) for v in values],
        index=values.index,
        dtype=float,
    )


# =============================================================================
# Pydantic Schema: SampleRecord
# =============================================================================


class SampleRecord(BaseModel):
    """
    One biological sample with its survival outcome and stratification values.

    Attributes:
        sample_id: Unique sample identifier (required)
        time: Survival time (non-negative) or None when unknown
        event: Event indicator; a bool or a categorical label resolved later
            through an event_map
        expression: Gene -> expression value
        scores: Signature name -> score
        covariate: Optional numeric covariate value
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    sample_id: str = Field(..., min_length=1, description="Unique sample identifier")
    time: Optional[float] = Field(None, ge=0, description="Survival time")
    event: Optional[Any] = Field(
        None, description="Event indicator (bool) or categorical status label"
    )
    expression: Dict[str, Optional[float]] = Field(
        default_factory=dict, description="Gene -> expression value"
    )
    scores: Dict[str, Optional[float]] = Field(
        default_factory=dict, description="Signature name -> score"
    )
    covariate: Optional[float] = Field(None, description="Numeric covariate value")

    @field_validator("time", "covariate", mode="before")
    @classmethod
    def _missing_to_none(cls, v: Any) -> Any:
        """Treat NaN and empty strings as missing."""
        if v is None:
            return None
        if isinstance(v, str) and not v.strip():
            return None
        if isinstance(v, float) and np.isnan(v):
            return None
        return v

    @field_validator("event", mode="before")
    @classmethod
    def _normalize_event(cls, v: Any) -> Any:
        if v is None:
            return None
        if isinstance(v, float) and np.isnan(v):
            return None
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


def records_to_anndata(
    records: Sequence[SampleRecord],
    time_field: str = DEFAULT_TIME_FIELD,
    event_field: str = DEFAULT_EVENT_FIELD,
    covariate_field: str = "covariate",
) -> Tuple[anndata.AnnData, pd.DataFrame]:
    """
    Assemble sample records into an AnnData dataset and a score table.

    Genes are the union of all expression keys in first-seen order; samples
    missing a gene get NaN. Scores are returned separately, indexed by sample
    id, because the comparator consumes them as an independent table.

    Args:
        records: Sample records
        time_field: obs column name for survival time
        event_field: obs column name for event status
        covariate_field: obs column name for the covariate

    Returns:
        Tuple of (AnnData samples x genes, score DataFrame samples x signatures)

    Raises:
        ConfigurationError: If sample ids are duplicated
    """
    sample_ids = [r.sample_id for r in records]
    ids = pd.Index(sample_ids)
    duplicated = sorted(set(ids[ids.duplicated()]))
    if duplicated:
        raise ConfigurationError(f"Duplicate sample ids: {duplicated}")

    genes: List[str] = []
    signatures: List[str] = []
    for record in records:
        genes.extend(g for g in record.expression if g not in genes)
        signatures.extend(s for s in record.scores if s not in signatures)

    X = np.full((len(records), len(genes)), np.nan)
    gene_pos = {g: j for j, g in enumerate(genes)}
    for i, record in enumerate(records):
        for gene, value in record.expression.items():
            if value is not None:
                X[i, gene_pos[gene]] = value

    obs = pd.DataFrame(
        {
            time_field: [r.time for r in records],
            event_field: pd.Series([r.event for r in records], index=sample_ids, dtype=object),
            covariate_field: [r.covariate for r in records],
        },
        index=pd.Index(sample_ids, name="sample_id"),
    )
    obs[time_field] = pd.to_numeric(obs[time_field], errors="coerce")
    obs[covariate_field] = pd.to_numeric(obs[covariate_field], errors="coerce")
    obs.index = obs.index.astype(str)

    var = pd.DataFrame(index=pd.Index(genes, dtype=str))
    adata = anndata.AnnData(X=X, obs=obs, var=var)

    scores = pd.DataFrame(
        [[r.scores.get(s) for s in signatures] for r in records],
        index=obs.index,
        columns=signatures,
        dtype=float,
    )

    logger.debug(
        f"Built dataset from {len(records)} records: {len(genes)} genes, "
        f"{len(signatures)} signatures"
    )
    return adata, scores
