"""Shared fixtures: a tiny county GeoJSON and small subsidy tables."""

import sys
from pathlib import Path

import pandas as pd
import pytest

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))


def _square(x0: float, y0: float) -> list:
    return [[[x0, y0], [x0 + 1, y0], [x0 + 1, y0 + 1], [x0, y0 + 1], [x0, y0]]]


@pytest.fixture
def counties_geojson():
    # Three made-up counties near the Bay Area, one unit square each
    features = [
        {
            "type": "Feature",
            "id": fips,
            "properties": {"NAME": name},
            "geometry": {"type": "Polygon", "coordinates": _square(-122.0 + i, 37.0)},
        }
        for i, (fips, name) in enumerate(
            [("06083", "Santa Barbara"), ("06085", "Santa Clara"), ("06087", "Santa Cruz")]
        )
    ]
    return {"type": "FeatureCollection", "features": features}


@pytest.fixture
def subsidies():
    return pd.DataFrame(
        {
            "fips": ["06083", "06083", "06085", "06085"],
            "year": [2018, 2019, 2018, 2019],
            "total_subs_adj": [94_000_000.0, 25_000_000.0, -500.0, 1_000.0],
        }
    )
