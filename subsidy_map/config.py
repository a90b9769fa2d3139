"""
Configuration constants for the farm subsidy map pipeline.
"""

from pathlib import Path
from typing import List

# ======================================================
#  DATA SOURCES / CONSTANTS
# ======================================================
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent

# County-level subsidy totals, 2019 dollars
SUBSIDY_SOURCE: Path = PROJECT_ROOT / "data" / "county_subsidies_2010_2019.csv"

# Plotly-hosted US counties GeoJSON (feature id = 5-digit county FIPS)
COUNTIES_GEOJSON_SOURCE: str = (
    "https://raw.githubusercontent.com/plotly/datasets/master/"
    "geojson-counties-fips.json"
)

DEFAULT_SEP: str = ","
HTTP_TIMEOUT: int = 30

# Input columns
FIPS_COL: str = "fips"
YEAR_COL: str = "year"
AMOUNT_COL: str = "total_subs_adj"
REQUIRED_COLUMNS: List[str] = [YEAR_COL, AMOUNT_COL, FIPS_COL]

FIPS_WIDTH: int = 5

GLOBAL_YEAR_MIN: int = 2010
GLOBAL_YEAR_MAX: int = 2019

# ======================================================
#  DISPLAY RANGE
# ======================================================
# Picked from the empirical distribution: ~0.28% of county-years sit above
# HIGH_BOUND and ~0.08% below zero.
LOW_BOUND: float = 0.0
HIGH_BOUND: float = 50_000_000.0
N_LEGEND_TICKS: int = 6

# ======================================================
#  RENDERING
# ======================================================
STATIC_MAP_YEAR: int = GLOBAL_YEAR_MAX

IMAGE_WIDTH: int = 1000
IMAGE_HEIGHT: int = 600
IMAGE_SCALE: int = 2

COLOR_SCALE: str = "YlGn"
MAP_SCOPE: str = "usa"
NO_DATA_COLOR: str = "#d9d9d9"

# GIF animation: in-between frames per year pair, per-frame duration and
# number of copies of the last frame held at the end.
TWEEN_FRAMES: int = 4
FRAME_DURATION_MS: int = 100
END_PAUSE_FRAMES: int = 15

# HTML animation controls
HTML_FRAME_DURATION_MS: int = 800
HTML_TRANSITION_MS: int = 600
HTML_EASING: str = "linear"

MAP_TITLE: str = "Agricultural Subsidies per County (2019 USD)"

# ======================================================
#  OUTPUTS
# ======================================================
OUTPUT_DIR: Path = PROJECT_ROOT / "output"
STATIC_MAP_NAME: str = "subsidy_map_{year}.png"
ANIMATED_GIF_NAME: str = "subsidy_map_animated.gif"
ANIMATED_HTML_NAME: str = "subsidy_map_animated.html"
CLEAN_TABLE_NAME: str = "subsidies_clean.csv"
