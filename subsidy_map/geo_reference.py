"""
Access to the county boundary reference (GeoJSON keyed by 5-digit FIPS).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Set

import requests

from .config import COUNTIES_GEOJSON_SOURCE, FIPS_WIDTH, HTTP_TIMEOUT

logger = logging.getLogger(__name__)


def load_counties_geojson(source: str | Path = COUNTIES_GEOJSON_SOURCE) -> Dict[str, Any]:
    """
    Load the county GeoJSON from a URL or a local file.

    URLs are fetched with ``requests``; local paths must exist.
    """
    source_str = str(source)
    if source_str.lower().startswith(("http://", "https://")):
        logger.info("Downloading county boundaries from %s", source_str)
        response = requests.get(source_str, timeout=HTTP_TIMEOUT)
        response.raise_for_status()
        return response.json()

    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"County GeoJSON not found at {path}")
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def county_fips_universe(geojson: Dict[str, Any]) -> Set[str]:
    """Return the set of county FIPS ids (zero-padded) found in the GeoJSON."""
    features = geojson.get("features")
    if not features:
        raise ValueError("County GeoJSON contains no features.")

    universe: Set[str] = set()
    for feature in features:
        fips = feature.get("id")
        if fips is None:
            fips = feature.get("properties", {}).get("GEOID")
        if fips is None:
            continue
        universe.add(str(fips).strip().zfill(FIPS_WIDTH))

    logger.debug("County universe holds %d keys", len(universe))
    return universe
