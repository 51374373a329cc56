"""Rendering of survival comparisons."""

from survstrat.services.visualization.survival_plot_service import (
    SurvivalPlotService,
    VisualizationError,
)

__all__ = ["SurvivalPlotService", "VisualizationError"]
