"""Data manager for loading and caching pipeline results.

This module runs the cleaning steps in ``pipeline.py`` once and persists
the cleaned subsidy table (and the county GeoJSON) to disk so the viewer
and repeated runs do not reload and re-reconcile the raw data.  The cache
file name includes a version tag so caches can be invalidated when the
pipeline logic changes.
"""

import json
import os
import tempfile
import logging
from pathlib import Path
from typing import Any, Dict
from functools import lru_cache

import pandas as pd

from . import pipeline
from . import config
from .config import FIPS_COL
from .geo_reference import load_counties_geojson

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Cache setup
# ---------------------------------------------------------------------------
# Bump whenever the ``pipeline`` logic changes in a way that invalidates
# existing caches.
CACHE_VERSION: str = "v2"


def _is_writable(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
        sentinel = path / ".write_test"
        sentinel.write_text("ok", encoding="utf-8")
        sentinel.unlink()
    except OSError:
        logger.debug("Cache directory %s is not writable", path)
        return False
    return True


def _resolve_cache_dir() -> Path:
    """First writable of ``$DATA_CACHE_DIR``, the repo ``data/`` folder, a temp dir."""
    temp_dir = Path(tempfile.gettempdir()) / "subsidy_map_cache"
    env = os.getenv("DATA_CACHE_DIR")
    candidates = [Path(env).expanduser().resolve()] if env else []
    candidates += [config.PROJECT_ROOT / "data", temp_dir]

    return next((path for path in candidates if _is_writable(path)), temp_dir)


# Resolve the directory once at import time
DATA_DIR: Path = _resolve_cache_dir()

SUBSIDIES_CACHE: Path = DATA_DIR / f"subsidies_clean_{CACHE_VERSION}.csv"
GEOJSON_CACHE: Path = DATA_DIR / "counties_geojson.json"


def _atomic_to_csv(df: pd.DataFrame, path: Path) -> None:
    """Write a DataFrame to CSV atomically.

    The CSV is first written next to the target and then renamed, so an
    interrupted write never leaves a truncated cache behind.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    df.to_csv(tmp_path, index=False)
    tmp_path.replace(path)


def _atomic_to_json(payload: Dict[str, Any], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload), encoding="utf-8")
    tmp_path.replace(path)


def load_geojson(force_refresh: bool = False) -> Dict[str, Any]:
    """Return the county GeoJSON, downloading it only when not cached."""
    if not force_refresh and GEOJSON_CACHE.exists():
        try:
            return load_counties_geojson(GEOJSON_CACHE)
        except (OSError, ValueError) as exc:
            logger.warning("Error reading %s: %s; downloading again", GEOJSON_CACHE, exc)

    geojson = load_counties_geojson()
    try:
        _atomic_to_json(geojson, GEOJSON_CACHE)
    except OSError as exc:
        logger.warning("Could not write GeoJSON cache: %s", exc)
    return geojson


@lru_cache(maxsize=1)
def _compute_pipeline_payload() -> Dict[str, Any]:
    """Runs the full cleaning pipeline."""
    return pipeline.run_pipeline(geojson=load_geojson())


def load_payload(force_recompute: bool = False) -> Dict[str, Any]:
    """
    Load the cleaned table from disk cache if available, otherwise compute and save.

    Parameters
    ----------
    force_recompute : bool, optional
        If ``True``, recompute the pipeline even if the cache file exists.

    Returns
    -------
    Dict[str, Any]
        ``"subsidies"`` (cleaned DataFrame) and ``"geojson"`` (county
        boundaries).
    """
    if not force_recompute and SUBSIDIES_CACHE.exists():
        logger.info("Loading pipeline output from cache directory %s", DATA_DIR)
        try:
            subsidies = pd.read_csv(SUBSIDIES_CACHE, dtype={FIPS_COL: str})
            return {"subsidies": subsidies, "geojson": load_geojson()}
        except (OSError, ValueError) as exc:
            logger.warning(
                "Error reading cache file %s: %s; falling back to recompute",
                SUBSIDIES_CACHE,
                exc,
            )

    if force_recompute:
        _compute_pipeline_payload.cache_clear()

    logger.info("Computing pipeline data")
    payload = _compute_pipeline_payload()

    try:
        _atomic_to_csv(payload["subsidies"], SUBSIDIES_CACHE)
        logger.info("Cache updated: %s", SUBSIDIES_CACHE.name)
    except OSError as exc:
        logger.warning("Could not write cache file: %s", exc)

    return {"subsidies": payload["subsidies"], "geojson": payload["geojson"]}
