"""
Farm subsidy maps: clean county subsidy totals and render a static
choropleth for one year plus an animated choropleth across all years.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .animation import render_animation
from .config import (
    ANIMATED_GIF_NAME,
    ANIMATED_HTML_NAME,
    CLEAN_TABLE_NAME,
    COUNTIES_GEOJSON_SOURCE,
    OUTPUT_DIR,
    STATIC_MAP_NAME,
    STATIC_MAP_YEAR,
    SUBSIDY_SOURCE,
)
from .geo_reference import load_counties_geojson
from .pipeline import run_pipeline
from .plotting import create_animated_map, create_static_map, save_html, save_static_map

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Zero-fill and clip county agricultural subsidy totals, then render "
            "a static and an animated choropleth."
        )
    )
    parser.add_argument(
        "--source",
        default=SUBSIDY_SOURCE,
        type=Path,
        help=f"Path to the subsidy CSV (default: {SUBSIDY_SOURCE}).",
    )
    parser.add_argument(
        "--geojson",
        default=COUNTIES_GEOJSON_SOURCE,
        help="Path or URL to the county GeoJSON (default: plotly datasets URL).",
    )
    parser.add_argument(
        "--year",
        type=int,
        default=STATIC_MAP_YEAR,
        help=f"Year drawn on the static map (default: {STATIC_MAP_YEAR}).",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=OUTPUT_DIR,
        help=f"Directory for rendered outputs (default: {OUTPUT_DIR}).",
    )
    parser.add_argument(
        "--no-gif",
        action="store_true",
        help="Skip the GIF animation (rendering every frame is the slow part).",
    )
    parser.add_argument(
        "--no-html",
        action="store_true",
        help="Skip the interactive HTML animation.",
    )
    parser.add_argument(
        "--missing-counties-only",
        action="store_true",
        help=(
            "Only zero-fill counties absent from every year; counties with "
            "gaps in some years are left blank for those years."
        ),
    )
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = parse_args()

    geojson = load_counties_geojson(args.geojson)
    payload = run_pipeline(
        source=args.source,
        geojson=geojson,
        fill_partial_years=not args.missing_counties_only,
    )
    subsidies = payload["subsidies"]
    years = payload["years"]

    output_dir: Path = args.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)

    clean_path = output_dir / CLEAN_TABLE_NAME
    subsidies.to_csv(clean_path, index=False)

    static_fig = create_static_map(subsidies, geojson, args.year)
    static_path = save_static_map(static_fig, output_dir / STATIC_MAP_NAME.format(year=args.year))

    outputs = [clean_path, static_path]
    if not args.no_html:
        animated_fig = create_animated_map(subsidies, geojson)
        outputs.append(save_html(animated_fig, output_dir / ANIMATED_HTML_NAME))
    if not args.no_gif:
        outputs.append(render_animation(subsidies, geojson, output_dir / ANIMATED_GIF_NAME))

    logger.info(
        "Done. Years %s-%s | rows: %d | synthesised: %d",
        years[0] if years else "-",
        years[-1] if years else "-",
        len(subsidies),
        payload["n_synthesized"],
    )
    for path in outputs:
        logger.info("  - %s", path)


if __name__ == "__main__":
    main()
