"""
Plotly rendering of stratified survival comparisons and score correlations.

The service only consumes result objects; styling comes from an explicit
PlotTheme passed at construction, never from process-wide settings.
"""

from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import pandas as pd
import plotly.graph_objects as go

from survstrat.config.analysis_config import PlotTheme
from survstrat.core.schemas.stratification import SurvivalComparison, SurvivalGroup
from survstrat.utils.logger import get_logger

logger = get_logger(__name__)


class VisualizationError(Exception):
    """Base exception for visualization operations."""

    pass


def _hex_to_rgba(color: str, alpha: float) -> str:
    """Convert '#rrggbb' to an rgba() string; other color strings are returned unchanged."""
    value = color.lstrip("#")
    if not color.startswith("#") or len(value) != 6:
        return color
    r, g, b = (int(value[i : i + 2], 16) for i in (0, 2, 4))
    return f"rgba({r},{g},{b},{alpha})"


class SurvivalPlotService:
    """
    Render Kaplan-Meier comparisons as Plotly figures.

    Example usage:
        result, stats, _ = SurvivalStratificationService().compare(adata, "expr", genes="CD8A")
        fig = SurvivalPlotService().plot_comparison(result, title="CD8A")
        SurvivalPlotService.save_html(fig, "cd8a_km.html")
    """

    def __init__(self, theme: Optional[PlotTheme] = None):
        self.theme = theme or PlotTheme()

    def _color(self, index: int) -> str:
        colors = self.theme.colors
        return colors[index % len(colors)]

    def _group_traces(self, group: SurvivalGroup, color: str, show_band: bool) -> List[go.Scatter]:
        curve = group.curve()
        timeline = curve["timeline"]
        traces: List[go.Scatter] = []

        if show_band:
            traces.append(
                go.Scatter(
                    x=timeline,
                    y=curve["confidence_upper"],
                    mode="lines",
                    line=dict(width=0, shape="hv"),
                    showlegend=False,
                    hoverinfo="skip",
                    legendgroup=group.display_label,
                    name=f"{group.display_label} upper",
                )
            )
            traces.append(
                go.Scatter(
                    x=timeline,
                    y=curve["confidence_lower"],
                    mode="lines",
                    line=dict(width=0, shape="hv"),
                    fill="tonexty",
                    fillcolor=_hex_to_rgba(color, self.theme.band_opacity),
                    showlegend=False,
                    hoverinfo="skip",
                    legendgroup=group.display_label,
                    name=f"{group.display_label} lower",
                )
            )

        traces.append(
            go.Scatter(
                x=timeline,
                y=curve["survival_function"],
                mode="lines",
                line=dict(color=color, width=2, shape="hv"),
                name=group.display_label,
                legendgroup=group.display_label,
            )
        )

        if self.theme.show_censors:
            censored = np.unique(group.censored_times())
            if censored.size:
                at_censor = group.fitter.survival_function_at_times(censored)
                traces.append(
                    go.Scatter(
                        x=censored.tolist(),
                        y=np.asarray(at_censor, dtype=float).tolist(),
                        mode="markers",
                        marker=dict(symbol="line-ns-open", size=9, color=color),
                        showlegend=False,
                        legendgroup=group.display_label,
                        name=f"{group.display_label} censored",
                    )
                )
        return traces

    def plot_comparison(
        self, result: SurvivalComparison, title: Optional[str] = None
    ) -> go.Figure:
        """
        Plot one Kaplan-Meier curve per group with the log-rank p-value.

        Confidence bands are drawn when ``result.with_confidence_band`` is set.

        Args:
            result: Comparison returned by SurvivalStratificationService.compare
            title: Figure title (defaults to the stratification axes)

        Returns:
            go.Figure: Figure with traces ordered by group display order
        """
        if not result.groups:
            raise VisualizationError("Comparison has no groups to plot")

        try:
            fig = go.Figure()
            for i, group in enumerate(result.groups):
                for trace in self._group_traces(group, self._color(i), result.with_confidence_band):
                    fig.add_trace(trace)

            axes = " / ".join(axis.name for axis in result.assignment.axes)
            fig.update_layout(
                title=title or f"Survival by {axes}",
                template=self.theme.template,
                width=self.theme.width,
                height=self.theme.height,
                xaxis_title=self.theme.time_label,
                yaxis_title=self.theme.survival_label,
                yaxis_range=[0, 1.05],
                legend_title_text=axes,
            )
            fig.add_annotation(
                text=f"log-rank p = {result.p_value:.6g}",
                xref="paper",
                yref="paper",
                x=0.02,
                y=0.05,
                showarrow=False,
                align="left",
            )
            logger.debug(f"Rendered survival plot with {len(fig.data)} traces")
            return fig

        except Exception as e:
            logger.exception(f"Error rendering survival plot: {e}")
            raise VisualizationError(f"Survival plot failed: {str(e)}") from e

    def plot_correlation_heatmap(
        self, correlation: pd.DataFrame, title: str = "Score correlation"
    ) -> go.Figure:
        """Heatmap of a symmetric score correlation matrix on a fixed [-1, 1] scale."""
        if correlation.empty:
            raise VisualizationError("Correlation matrix is empty")

        fig = go.Figure(
            go.Heatmap(
                z=correlation.to_numpy(dtype=float),
                x=[str(c) for c in correlation.columns],
                y=[str(i) for i in correlation.index],
                zmin=-1,
                zmax=1,
                colorscale="RdBu_r",
                text=np.round(correlation.to_numpy(dtype=float), 2),
                texttemplate="%{text}",
            )
        )
        fig.update_layout(
            title=title,
            template=self.theme.template,
            width=self.theme.width,
            height=self.theme.height,
        )
        return fig

    @staticmethod
    def save_html(fig: go.Figure, path: Union[str, Path]) -> Path:
        """Write a standalone HTML file and return its path."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.write_html(str(path), include_plotlyjs="cdn")
        logger.info(f"Saved figure to {path}")
        return path
