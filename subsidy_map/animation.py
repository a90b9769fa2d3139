"""
GIF rendering of the year-by-year map with linearly tweened frames.

Each pair of consecutive years is split into ``n_between + 1`` steps whose
display values are interpolated county by county; every step is rendered
to PNG through kaleido and the frames are stitched into a looping GIF with
Pillow, holding the last frame for a fixed number of extra frames.
"""

from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Sequence, TypeVar

import pandas as pd
from PIL import Image

from .config import (
    END_PAUSE_FRAMES,
    FIPS_COL,
    FRAME_DURATION_MS,
    HIGH_BOUND,
    IMAGE_HEIGHT,
    IMAGE_SCALE,
    IMAGE_WIDTH,
    LOW_BOUND,
    MAP_TITLE,
    TWEEN_FRAMES,
    YEAR_COL,
)
from .pipeline import DISPLAY_COL
from .plotting import create_choropleth

logger = logging.getLogger(__name__)

FRAME_COL = "frame"
STATE_YEAR_COL = "state_year"

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Tweening
# ---------------------------------------------------------------------------


def _frame_table(values: pd.Series, frame: int, state_year: int) -> pd.DataFrame:
    table = pd.DataFrame(
        {
            FRAME_COL: frame,
            STATE_YEAR_COL: state_year,
            FIPS_COL: values.index.astype(str),
            DISPLAY_COL: values.to_numpy(dtype=float),
        }
    )
    # Counties without a value in either endpoint year are left blank.
    return table.dropna(subset=[DISPLAY_COL])


def build_tween_frames(df: pd.DataFrame, n_between: int = TWEEN_FRAMES) -> pd.DataFrame:
    """Interpolate display values linearly between consecutive years.

    Parameters
    ----------
    df : pd.DataFrame
        Cleaned table with ``fips``, ``year`` and ``display_value``.
    n_between : int
        Number of in-between frames per year pair.

    Returns
    -------
    pd.DataFrame
        Long table with columns ``frame``, ``state_year``, ``fips`` and
        ``display_value``.  There are ``(n_years - 1) * (n_between + 1) + 1``
        frames; the first frame of each pair is the exact start year and the
        final frame is the exact last year.  ``state_year`` is the year the
        frame is closest to.
    """
    if n_between < 0:
        raise ValueError("n_between must be zero or positive.")
    if df.empty:
        raise ValueError("No years to animate.")

    # Later rows of a duplicated (fips, year) pair are the ones drawn on top.
    wide = df.pivot_table(
        index=FIPS_COL, columns=YEAR_COL, values=DISPLAY_COL, aggfunc="last"
    )
    years = [int(y) for y in wide.columns]

    frames: List[pd.DataFrame] = []
    steps = n_between + 1
    for year_from, year_to in zip(years[:-1], years[1:]):
        start, end = wide[year_from], wide[year_to]
        for step in range(steps):
            progress = step / steps
            values = start + (end - start) * progress
            state_year = year_from if progress < 0.5 else year_to
            frames.append(_frame_table(values, len(frames), state_year))
    frames.append(_frame_table(wide[years[-1]], len(frames), years[-1]))

    return pd.concat(frames, ignore_index=True)


def with_end_pause(frames: Sequence[T], end_pause: int = END_PAUSE_FRAMES) -> List[T]:
    """Return ``frames`` followed by ``end_pause`` copies of the last frame."""
    if not frames:
        raise ValueError("Cannot pause on an empty frame sequence.")
    if end_pause < 0:
        raise ValueError("end_pause must be zero or positive.")
    return list(frames) + [frames[-1]] * end_pause


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _render_png(
    frame_df: pd.DataFrame,
    geojson: Dict[str, Any],
    *,
    title: str,
    low_bound: float,
    high_bound: float,
    width: int,
    height: int,
    scale: int,
) -> bytes:
    fig = create_choropleth(
        frame_df,
        geojson,
        title=title,
        low_bound=low_bound,
        high_bound=high_bound,
    )
    return fig.to_image(format="png", width=width, height=height, scale=scale)


def write_gif(
    images: Sequence[Image.Image], path: str | Path, duration_ms: int = FRAME_DURATION_MS
) -> Path:
    """Write an infinitely looping GIF, one ``duration_ms`` per image."""
    if not images:
        raise ValueError("No frames to write.")
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    first, *rest = images
    first.save(
        path,
        format="GIF",
        save_all=True,
        append_images=rest,
        duration=duration_ms,
        loop=0,
    )
    return path


def render_animation(
    df: pd.DataFrame,
    geojson: Dict[str, Any],
    path: str | Path,
    *,
    title: str = MAP_TITLE,
    n_between: int = TWEEN_FRAMES,
    duration_ms: int = FRAME_DURATION_MS,
    end_pause: int = END_PAUSE_FRAMES,
    low_bound: float = LOW_BOUND,
    high_bound: float = HIGH_BOUND,
    width: int = IMAGE_WIDTH,
    height: int = IMAGE_HEIGHT,
    scale: int = IMAGE_SCALE,
) -> Path:
    """Render the tweened frames and save them as an animated GIF."""
    tweens = build_tween_frames(df, n_between)
    n_frames = tweens[FRAME_COL].nunique()
    logger.info("Rendering %d animation frames", n_frames)

    images: List[Image.Image] = []
    for frame, frame_df in tweens.groupby(FRAME_COL, sort=True):
        state_year = int(frame_df[STATE_YEAR_COL].iloc[0])
        png = _render_png(
            frame_df,
            geojson,
            title=f"{title}, {state_year}",
            low_bound=low_bound,
            high_bound=high_bound,
            width=width,
            height=height,
            scale=scale,
        )
        images.append(Image.open(BytesIO(png)).convert("RGB"))
        logger.debug("Rendered frame %d/%d", frame + 1, n_frames)

    out = write_gif(with_end_pause(images, end_pause), path, duration_ms)
    logger.info("Animated map written to %s", out)
    return out
