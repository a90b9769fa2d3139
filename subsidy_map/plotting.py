from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from .config import (
    AMOUNT_COL,
    COLOR_SCALE,
    FIPS_COL,
    HIGH_BOUND,
    HTML_EASING,
    HTML_FRAME_DURATION_MS,
    HTML_TRANSITION_MS,
    IMAGE_HEIGHT,
    IMAGE_SCALE,
    IMAGE_WIDTH,
    LOW_BOUND,
    MAP_SCOPE,
    MAP_TITLE,
    N_LEGEND_TICKS,
    NO_DATA_COLOR,
    YEAR_COL,
)
from .pipeline import DISPLAY_COL

logger = logging.getLogger(__name__)


# ============================================================
# Configuration / constants
# ============================================================

COLORBAR_TITLE = "Subsidies (USD)"

HOVER_LABELS: dict[str, str] = {
    FIPS_COL: "County FIPS",
    YEAR_COL: "Year",
    AMOUNT_COL: "Subsidies (2019 USD)",
    DISPLAY_COL: "Subsidies (display)",
}


# ============================================================
# Helper functions
# ============================================================


def format_dollars(value: float) -> str:
    """
    Compact dollar label, e.g. 50_000_000 -> "$50M", 2_500 -> "$2.5K".
    """
    sign = "-" if value < 0 else ""
    magnitude = abs(value)
    for threshold, suffix in ((1e9, "B"), (1e6, "M"), (1e3, "K")):
        if magnitude >= threshold:
            return f"{sign}${magnitude / threshold:g}{suffix}"
    return f"{sign}${magnitude:g}"


def colorbar_ticks(
    low_bound: float = LOW_BOUND,
    high_bound: float = HIGH_BOUND,
    n_ticks: int = N_LEGEND_TICKS,
) -> Tuple[List[float], List[str]]:
    """
    Evenly spaced colorbar ticks; the ends are marked "-" and "+" because
    values beyond them are clamped onto the end colours.
    """
    if n_ticks < 2:
        raise ValueError("A clamped colorbar needs at least two ticks.")
    tickvals = [float(v) for v in np.linspace(low_bound, high_bound, n_ticks)]
    ticktext = [format_dollars(v) for v in tickvals]
    ticktext[0] = f"{ticktext[0]}-"
    ticktext[-1] = f"{ticktext[-1]}+"
    return tickvals, ticktext


def _style_figure(
    fig: go.Figure,
    *,
    title: str,
    low_bound: float,
    high_bound: float,
) -> go.Figure:
    tickvals, ticktext = colorbar_ticks(low_bound, high_bound)

    fig.update_traces(marker_line_width=0)
    fig.update_geos(
        showlakes=False,
        showland=True,
        landcolor=NO_DATA_COLOR,
        bgcolor="rgba(0,0,0,0)",
    )
    fig.update_layout(
        title=dict(text=f"<b>{title}</b>", x=0.5, xanchor="center"),
        width=IMAGE_WIDTH,
        height=IMAGE_HEIGHT,
        margin=dict(t=60, l=10, r=10, b=10),
        coloraxis_colorbar=dict(
            title=COLORBAR_TITLE,
            tickvals=tickvals,
            ticktext=ticktext,
        ),
    )
    return fig


def _play_controls(
    frame_ms: int, transition_ms: int, easing: str
) -> Dict[str, Any]:
    """Play / pause buttons for a plotly frame animation."""
    play_args = {
        "frame": {"duration": frame_ms, "redraw": True},
        "fromcurrent": True,
        "mode": "immediate",
        "transition": {"duration": transition_ms, "easing": easing},
    }
    pause_args = {
        "frame": {"duration": 0, "redraw": False},
        "mode": "immediate",
        "transition": {"duration": 0},
    }
    return dict(
        type="buttons",
        direction="left",
        showactive=False,
        x=0.1,
        y=0,
        xanchor="right",
        yanchor="top",
        pad=dict(r=10, t=70),
        buttons=[
            dict(label="Play", method="animate", args=[None, play_args]),
            dict(label="Pause", method="animate", args=[[None], pause_args]),
        ],
    )


# ============================================================
# Figure builders
# ============================================================


def create_choropleth(
    df: pd.DataFrame,
    geojson: Dict[str, Any],
    *,
    title: str = MAP_TITLE,
    low_bound: float = LOW_BOUND,
    high_bound: float = HIGH_BOUND,
    color_scale: str = COLOR_SCALE,
) -> go.Figure:
    """
    County choropleth of ``display_value`` on a fixed ``[low, high]`` colour
    range. Rows without a raw amount (tweened frames) get no amount in the
    hover text.
    """
    hover_data: dict[str, Any] = {FIPS_COL: True, DISPLAY_COL: ":,.0f"}
    if AMOUNT_COL in df.columns:
        hover_data[AMOUNT_COL] = ":,.0f"

    fig = px.choropleth(
        df,
        geojson=geojson,
        locations=FIPS_COL,
        color=DISPLAY_COL,
        color_continuous_scale=color_scale,
        range_color=(low_bound, high_bound),
        scope=MAP_SCOPE,
        hover_data=hover_data,
        labels=HOVER_LABELS,
    )
    return _style_figure(
        fig, title=title, low_bound=low_bound, high_bound=high_bound
    )


def create_static_map(
    df: pd.DataFrame,
    geojson: Dict[str, Any],
    year: int,
    *,
    title: str | None = None,
    low_bound: float = LOW_BOUND,
    high_bound: float = HIGH_BOUND,
    color_scale: str = COLOR_SCALE,
) -> go.Figure:
    """
    Generate a single-year county choropleth.

    Parameters
    ----------
    df : pd.DataFrame
        Cleaned table with 'fips', 'year', 'total_subs_adj' and
        'display_value' columns.
    geojson : dict
        County GeoJSON whose feature ids are 5-digit FIPS codes.
    year : int
        Year to draw.
    title : str | None, default None
        Figure title; defaults to the configured title plus the year.
    low_bound, high_bound : float
        Colour range; should match the bounds used for clipping.
    color_scale : str, default "YlGn"
        Plotly continuous colour scale name.

    Returns
    -------
    go.Figure
        A Plotly choropleth figure.
    """
    df_year = df[df[YEAR_COL] == year]
    if df_year.empty:
        raise ValueError(f"No subsidy rows for year {year}.")

    return create_choropleth(
        df_year,
        geojson,
        title=title or f"{MAP_TITLE}, {year}",
        low_bound=low_bound,
        high_bound=high_bound,
        color_scale=color_scale,
    )


def create_animated_map(
    df: pd.DataFrame,
    geojson: Dict[str, Any],
    *,
    title: str = MAP_TITLE,
    low_bound: float = LOW_BOUND,
    high_bound: float = HIGH_BOUND,
    color_scale: str = COLOR_SCALE,
    frame_ms: int = HTML_FRAME_DURATION_MS,
    transition_ms: int = HTML_TRANSITION_MS,
    easing: str = HTML_EASING,
) -> go.Figure:
    """
    Interactive choropleth with one animation frame per year, a year slider
    and play / pause controls.
    """
    if df.empty:
        raise ValueError("Cannot animate an empty subsidy table.")

    # Frames follow row order, so sort by year first.
    df_sorted = df.sort_values([YEAR_COL, FIPS_COL], ignore_index=True)

    fig = px.choropleth(
        df_sorted,
        geojson=geojson,
        locations=FIPS_COL,
        color=DISPLAY_COL,
        animation_frame=YEAR_COL,
        color_continuous_scale=color_scale,
        range_color=(low_bound, high_bound),
        scope=MAP_SCOPE,
        hover_data={FIPS_COL: True, AMOUNT_COL: ":,.0f", DISPLAY_COL: ":,.0f"},
        labels=HOVER_LABELS,
    )
    fig = _style_figure(
        fig, title=title, low_bound=low_bound, high_bound=high_bound
    )
    fig.update_layout(updatemenus=[_play_controls(frame_ms, transition_ms, easing)])
    if fig.layout.sliders:
        fig.layout.sliders[0].update(
            transition=dict(duration=transition_ms, easing=easing),
            currentvalue=dict(prefix="Year: "),
        )
    return fig


# ============================================================
# Output
# ============================================================


def save_static_map(
    fig: go.Figure,
    path: str | Path,
    *,
    width: int = IMAGE_WIDTH,
    height: int = IMAGE_HEIGHT,
    scale: int = IMAGE_SCALE,
) -> Path:
    """Write the figure as an image (format from the suffix) through kaleido."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.write_image(str(path), width=width, height=height, scale=scale)
    logger.info("Static map written to %s", path)
    return path


def save_html(fig: go.Figure, path: str | Path) -> Path:
    """Write an interactive HTML page for the figure."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.write_html(str(path), include_plotlyjs="cdn", auto_play=False)
    logger.info("HTML map written to %s", path)
    return path
