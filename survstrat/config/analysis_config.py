"""
Analysis configuration with Pydantic validation, persisted as TOML.

Reports keep their stratification defaults (survival fields, event encoding,
group split, percentile cut points) and their plot theme in a single
human-readable file instead of module-level globals.

Storage Location: <directory>/survstrat.toml

Example survstrat.toml:
    config_version = "1.0"
    time_field = "OS.time"
    event_field = "vital_status"
    group_count = 3

    [event_map]
    Dead = true
    Alive = false

    [plot]
    template = "simple_white"
    width = 800
    time_label = "Days"

Example:
    >>> from pathlib import Path
    >>> from survstrat.config.analysis_config import SurvivalAnalysisConfig
    >>>
    >>> config = SurvivalAnalysisConfig.load(Path("reports/tcga_brca"))
    >>> config.group_count
    3
    >>> config.save(Path("reports/tcga_brca"))
"""

import tomllib
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import tomli_w
from pydantic import BaseModel, Field, model_validator

from survstrat.config.constants import (
    CONFIG_FILE_NAME,
    DEFAULT_CONFIDENCE_LEVEL,
    DEFAULT_EVENT_FIELD,
    DEFAULT_FDR_THRESHOLD,
    DEFAULT_LOWER_PERCENTILE,
    DEFAULT_MIN_GROUP_SIZE,
    DEFAULT_TIME_FIELD,
    DEFAULT_UPPER_PERCENTILE,
)
from survstrat.utils.logger import get_logger

logger = get_logger(__name__)


class PlotTheme(BaseModel):
    """
    Explicit styling passed to the survival plot service.

    Attributes:
        template: Plotly layout template name
        width: Figure width in pixels
        height: Figure height in pixels
        colors: Colors cycled over groups in display order
        band_opacity: Opacity of confidence bands
        show_censors: Draw censoring tick marks
        time_label: x-axis title
        survival_label: y-axis title
    """

    template: str = Field("simple_white", description="Plotly layout template")
    width: int = Field(800, gt=0, description="Figure width (px)")
    height: int = Field(550, gt=0, description="Figure height (px)")
    colors: List[str] = Field(
        default_factory=lambda: ["#d62728", "#1f77b4", "#2ca02c", "#ff7f0e"],
        min_length=1,
        description="Hex colors cycled over groups",
    )
    band_opacity: float = Field(0.2, ge=0.0, le=1.0, description="Confidence band opacity")
    show_censors: bool = Field(True, description="Draw censoring marks")
    time_label: str = Field("Time", description="x-axis title")
    survival_label: str = Field("Survival probability", description="y-axis title")


class SurvivalAnalysisConfig(BaseModel):
    """
    Defaults for stratified survival comparison.

    Attributes:
        config_version: Schema version for future migrations
        time_field: obs column with survival time
        event_field: obs column with event status
        event_map: Explicit event label -> observed mapping (None: column must be boolean / 0-1)
        group_count: 2 or 3 groups per single axis
        split: Two-group split method ("median" or "extremes")
        lower_percentile: Lower cut point for tertile / extremes splits
        upper_percentile: Upper cut point for tertile / extremes splits
        confidence_level: Confidence level of Kaplan-Meier bands
        min_group_size: Groups smaller than this are fitted with a warning
        fdr_threshold: Significance cutoff for batch screens
        plot: Plot theme
    """

    config_version: str = Field("1.0", description="Schema version for future migrations")
    time_field: str = Field(DEFAULT_TIME_FIELD, description="Survival time column")
    event_field: str = Field(DEFAULT_EVENT_FIELD, description="Event status column")
    event_map: Optional[Dict[str, bool]] = Field(
        None, description="Event label -> observed (True) / censored (False)"
    )
    group_count: Literal[2, 3] = Field(2, description="Groups per single axis")
    split: Literal["median", "extremes"] = Field("median", description="Two-group split")
    lower_percentile: float = Field(DEFAULT_LOWER_PERCENTILE, gt=0, lt=100)
    upper_percentile: float = Field(DEFAULT_UPPER_PERCENTILE, gt=0, lt=100)
    confidence_level: float = Field(DEFAULT_CONFIDENCE_LEVEL, gt=0, lt=1)
    min_group_size: int = Field(DEFAULT_MIN_GROUP_SIZE, ge=1)
    fdr_threshold: float = Field(DEFAULT_FDR_THRESHOLD, gt=0, le=1)
    plot: PlotTheme = Field(default_factory=PlotTheme)

    @model_validator(mode="after")
    def _check_percentiles(self) -> "SurvivalAnalysisConfig":
        if self.lower_percentile >= self.upper_percentile:
            raise ValueError(
                f"lower_percentile ({self.lower_percentile}) must be below "
                f"upper_percentile ({self.upper_percentile})"
            )
        return self

    @classmethod
    def load(cls, directory: Path) -> "SurvivalAnalysisConfig":
        """
        Load configuration from ``directory/survstrat.toml``.

        Handles:
        - Missing file: returns default configuration
        - Corrupted TOML: logs warning, returns defaults
        - Invalid schema: logs validation errors, returns defaults

        Args:
            directory: Directory holding the config file

        Returns:
            SurvivalAnalysisConfig: Loaded or default configuration
        """
        config_path = Path(directory) / CONFIG_FILE_NAME

        if not config_path.exists():
            logger.debug(f"No analysis config found at {config_path}, using defaults")
            return cls()

        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)

            config = cls(**data)
            logger.info(f"Loaded analysis config from {config_path}")
            return config

        except tomllib.TOMLDecodeError as e:
            logger.warning(f"Corrupted TOML config at {config_path}: {e}. Using defaults.")
            return cls()

        except Exception as e:
            # Pydantic validation errors and other exceptions
            logger.warning(f"Invalid config schema at {config_path}: {e}. Using defaults.")
            return cls()

    @classmethod
    def exists(cls, directory: Path) -> bool:
        return (Path(directory) / CONFIG_FILE_NAME).exists()

    def save(self, directory: Path) -> Path:
        """
        Save configuration to ``directory/survstrat.toml``.

        Args:
            directory: Target directory (created if missing)

        Returns:
            Path: Path to saved config file
        """
        directory = Path(directory)
        config_path = directory / CONFIG_FILE_NAME

        # TOML has no null, so unset optional values are omitted
        data: Dict[str, Any] = {k: v for k, v in self.model_dump().items() if v is not None}

        directory.mkdir(parents=True, exist_ok=True)
        with open(config_path, "wb") as f:
            tomli_w.dump(data, f)

        logger.info(f"Saved analysis config to {config_path}")
        return config_path
