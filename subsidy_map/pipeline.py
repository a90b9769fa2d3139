"""Core pipeline logic: load, reconcile and clip county subsidy totals.

The pipeline runs three stages over an in-memory table, each returning a
new DataFrame:

* Loading: read the CSV of ``(fips, year, total_subs_adj)`` rows and
  normalise the column types (5-digit string FIPS, integer year, float
  amount).
* Reconciliation: add a zero-valued row for every county in the reference
  universe that has no row for an observed year, so each county is drawn
  in every frame.
* Clipping: derive a ``display_value`` column by clamping the amount into a
  fixed ``[low, high]`` range so a handful of extreme counties do not wash
  out the colour scale.

The primary entry point is :func:`run_pipeline`.
"""

from __future__ import annotations

from .config import (
    AMOUNT_COL,
    COUNTIES_GEOJSON_SOURCE,
    DEFAULT_SEP,
    FIPS_COL,
    FIPS_WIDTH,
    HIGH_BOUND,
    LOW_BOUND,
    REQUIRED_COLUMNS,
    SUBSIDY_SOURCE,
    YEAR_COL,
)
from .geo_reference import county_fips_universe, load_counties_geojson

from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import logging
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

DISPLAY_COL: str = "display_value"
SYNTHESIZED_COL: str = "synthesized"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def ensure_columns(df: pd.DataFrame, required: List[str]) -> None:
    """Raise an error if the DataFrame lacks any of the required columns."""
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise KeyError(f"Missing expected columns: {missing}")


def normalize_fips(series: pd.Series) -> pd.Series:
    """Zero-pad county FIPS codes to five characters.

    Parameters
    ----------
    series : pd.Series
        FIPS codes as integers, floats (``6083.0``) or strings, with or
        without leading zeros.

    Returns
    -------
    pd.Series
        Five-character string codes such as ``"06083"``.  Raises
        ``ValueError`` if any code is missing or not numeric.
    """
    codes = series.astype(str).str.strip().str.replace(r"\.0+$", "", regex=True)
    valid = codes.str.fullmatch(r"\d{1,%d}" % FIPS_WIDTH)
    if not valid.all():
        bad = codes[~valid].unique().tolist()[:5]
        raise ValueError(f"Malformed FIPS codes in input: {bad}")
    return codes.str.zfill(FIPS_WIDTH)


def filter_years(
    df: pd.DataFrame,
    year_min: Optional[int],
    year_max: Optional[int],
    *,
    year_col: str = YEAR_COL,
) -> pd.DataFrame:
    """Return a DataFrame filtered to the inclusive year range.

    ``None`` leaves the corresponding bound open.
    """
    if year_min is None and year_max is None:
        return df.copy()
    mask = pd.Series(True, index=df.index, dtype=bool)
    if year_min is not None:
        mask &= df[year_col] >= year_min
    if year_max is not None:
        mask &= df[year_col] <= year_max
    return df.loc[mask].copy()


def observed_years(df: pd.DataFrame) -> List[int]:
    """Sorted distinct years present in the table."""
    return sorted(int(y) for y in df[YEAR_COL].dropna().unique())


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


def load_subsidies_raw(
    source: str | Path = SUBSIDY_SOURCE, sep: str = DEFAULT_SEP
) -> pd.DataFrame:
    """Read the subsidy CSV, keeping FIPS codes as text.

    A missing file raises ``FileNotFoundError`` and parse failures propagate
    from ``pandas``; nothing is recovered here.
    """
    return pd.read_csv(source, sep=sep, dtype={FIPS_COL: str})


def prepare_subsidies(
    raw: pd.DataFrame,
    *,
    year_min: Optional[int] = None,
    year_max: Optional[int] = None,
) -> pd.DataFrame:
    """Clean the raw subsidy table.

    This function performs several steps:

    * Check that ``year``, ``total_subs_adj`` and ``fips`` are present.
    * Zero-pad FIPS codes to five digits.
    * Convert ``year`` to ``int`` and the amount to ``float``.
    * Optionally filter to a year range.

    Parameters
    ----------
    raw : pd.DataFrame
        The table as read from the CSV.
    year_min, year_max : Optional[int], optional
        Inclusive bounds for year filtering.  Pass ``None`` to disable
        filtering on that bound.

    Returns
    -------
    pd.DataFrame
        A new DataFrame with columns ``fips``, ``year`` and
        ``total_subs_adj`` (plus any extra columns from the input).
        Raises ``ValueError`` when a year or amount cannot be parsed or an
        amount is not finite.
    """
    ensure_columns(raw, REQUIRED_COLUMNS)
    df = raw.drop(columns=["Unnamed: 0"], errors="ignore").copy()

    df[FIPS_COL] = normalize_fips(df[FIPS_COL])

    years = pd.to_numeric(df[YEAR_COL], errors="coerce")
    if years.isna().any():
        raise ValueError(f"{int(years.isna().sum())} rows have a malformed 'year'.")
    fractional = years % 1 != 0
    if fractional.any():
        raise ValueError(f"{int(fractional.sum())} rows have a non-integer 'year'.")
    df[YEAR_COL] = years.astype(int)

    amounts = pd.to_numeric(df[AMOUNT_COL], errors="coerce").astype(float)
    not_finite = ~np.isfinite(amounts.to_numpy())
    if not_finite.any():
        raise ValueError(
            f"{int(not_finite.sum())} rows have a missing or non-finite '{AMOUNT_COL}'."
        )
    df[AMOUNT_COL] = amounts

    df = filter_years(df, year_min, year_max)
    ordered = [FIPS_COL, YEAR_COL, AMOUNT_COL]
    extra = [col for col in df.columns if col not in ordered]
    return df[ordered + extra].reset_index(drop=True)


def find_duplicate_records(df: pd.DataFrame) -> pd.DataFrame:
    """Return every row whose ``(fips, year)`` pair occurs more than once."""
    mask = df.duplicated(subset=[FIPS_COL, YEAR_COL], keep=False)
    return df.loc[mask].copy()


def find_unknown_keys(df: pd.DataFrame, universe: Set[str]) -> Set[str]:
    """FIPS codes present in the data but absent from the reference universe."""
    return set(df[FIPS_COL].unique()) - set(universe)


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


def find_missing_keys(df: pd.DataFrame, universe: Set[str]) -> Set[str]:
    """Universe keys that do not appear in any loaded record."""
    present = set(df[FIPS_COL].unique())
    return set(universe) - present


def reconcile_missing_counties(
    df: pd.DataFrame,
    universe: Set[str],
    *,
    fill_partial_years: bool = False,
) -> pd.DataFrame:
    """Add zero-valued rows for counties the data never mentions.

    For every key in ``universe`` that is absent from ``df`` one row per
    distinct year of ``df`` is synthesised with an amount of ``0``.  The
    original rows are returned unchanged, followed by the synthesised ones.

    Parameters
    ----------
    df : pd.DataFrame
        Prepared subsidy table (see :func:`prepare_subsidies`).
    universe : Set[str]
        All valid 5-digit county FIPS codes.
    fill_partial_years : bool, optional
        Also fill the missing years of counties that appear in some years
        but not others, producing the full ``universe x years`` grid.

    Returns
    -------
    pd.DataFrame
        A new DataFrame with an extra boolean ``synthesized`` column.
        Applying the function again to its own output adds no rows.
    """
    base = df.copy()
    if SYNTHESIZED_COL not in base.columns:
        base[SYNTHESIZED_COL] = False

    years = observed_years(df)
    if fill_partial_years:
        present = {(fips, int(year)) for fips, year in zip(df[FIPS_COL], df[YEAR_COL])}
        pairs: List[Tuple[str, int]] = [
            (fips, year)
            for fips in sorted(universe)
            for year in years
            if (fips, year) not in present
        ]
    else:
        missing = find_missing_keys(df, universe)
        pairs = [(fips, year) for fips in sorted(missing) for year in years]

    if not pairs:
        return base.reset_index(drop=True)

    filler = pd.DataFrame(pairs, columns=[FIPS_COL, YEAR_COL])
    filler[AMOUNT_COL] = 0.0
    filler[SYNTHESIZED_COL] = True
    logger.info(
        "Synthesised %d zero rows for %d counties",
        len(filler),
        filler[FIPS_COL].nunique(),
    )
    return pd.concat([base, filler], ignore_index=True)


# ---------------------------------------------------------------------------
# Clipper
# ---------------------------------------------------------------------------


def _check_bounds(low_bound: float, high_bound: float) -> None:
    if low_bound > high_bound:
        raise ValueError(
            f"low_bound ({low_bound}) must not exceed high_bound ({high_bound})."
        )


def clamp_value(
    amount: float, low_bound: float = LOW_BOUND, high_bound: float = HIGH_BOUND
) -> float:
    """Clamp a single amount into ``[low_bound, high_bound]``."""
    _check_bounds(low_bound, high_bound)
    if amount > high_bound:
        return high_bound
    if amount < low_bound:
        return low_bound
    return amount


def clip_amounts(
    df: pd.DataFrame,
    low_bound: float = LOW_BOUND,
    high_bound: float = HIGH_BOUND,
) -> pd.DataFrame:
    """Add a ``display_value`` column holding the clamped amount.

    The stored ``total_subs_adj`` is left as is; only the derived display
    column is bounded.
    """
    _check_bounds(low_bound, high_bound)
    out = df.copy()
    out[DISPLAY_COL] = out[AMOUNT_COL].astype(float).clip(
        lower=low_bound, upper=high_bound
    )
    return out


def summarize_clipping(
    df: pd.DataFrame,
    low_bound: float = LOW_BOUND,
    high_bound: float = HIGH_BOUND,
) -> Dict[str, float]:
    """Count the rows that fall outside the display range.

    Returns
    -------
    Dict[str, float]
        ``n_rows``, ``n_above``, ``n_below`` and the corresponding
        ``share_above`` / ``share_below`` fractions (0 for an empty table).
    """
    amounts = df[AMOUNT_COL].astype(float)
    n_rows = len(amounts)
    n_above = int((amounts > high_bound).sum())
    n_below = int((amounts < low_bound).sum())
    return {
        "n_rows": n_rows,
        "n_above": n_above,
        "n_below": n_below,
        "share_above": n_above / n_rows if n_rows else 0.0,
        "share_below": n_below / n_rows if n_rows else 0.0,
    }


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


def run_pipeline(
    *,
    source: str | Path = SUBSIDY_SOURCE,
    sep: str = DEFAULT_SEP,
    geojson: Optional[Dict[str, Any]] = None,
    geojson_source: str | Path = COUNTIES_GEOJSON_SOURCE,
    year_min: Optional[int] = None,
    year_max: Optional[int] = None,
    low_bound: float = LOW_BOUND,
    high_bound: float = HIGH_BOUND,
    fill_partial_years: bool = True,
) -> Dict[str, Any]:
    """Run load, reconciliation and clipping and return the cleaned table.

    Parameters
    ----------
    source : str or Path, optional
        Location of the subsidy CSV.
    sep : str, optional
        Column delimiter for the CSV.
    geojson : dict, optional
        Already-loaded county GeoJSON.  When ``None`` it is loaded from
        ``geojson_source``.
    geojson_source : str or Path, optional
        URL or path of the county GeoJSON.
    year_min, year_max : Optional[int], optional
        Inclusive year bounds applied after loading.
    low_bound, high_bound : float, optional
        Display range used by the clipper.
    fill_partial_years : bool, optional
        Passed through to :func:`reconcile_missing_counties`.  Defaults to
        ``True`` so every county has a row for every observed year.

    Returns
    -------
    Dict[str, Any]
        ``"subsidies"`` (the cleaned DataFrame), ``"geojson"``,
        ``"years"``, ``"n_synthesized"`` and ``"clipping"`` (see
        :func:`summarize_clipping`).
    """

    # 1. Load
    raw = load_subsidies_raw(source, sep=sep)
    subsidies = prepare_subsidies(raw, year_min=year_min, year_max=year_max)
    logger.info("Loaded %d subsidy rows from %s", len(subsidies), source)

    duplicates = find_duplicate_records(subsidies)
    if not duplicates.empty:
        logger.warning(
            "%d rows share a (fips, year) pair with another row; keeping all of them",
            len(duplicates),
        )

    # 2. Reconcile against the county reference
    if geojson is None:
        geojson = load_counties_geojson(geojson_source)
    universe = county_fips_universe(geojson)

    unknown = find_unknown_keys(subsidies, universe)
    if unknown:
        logger.info("%d FIPS codes in the data are not in the county reference", len(unknown))

    reconciled = reconcile_missing_counties(
        subsidies, universe, fill_partial_years=fill_partial_years
    )

    # 3. Clip for display
    clipping = summarize_clipping(reconciled, low_bound, high_bound)
    logger.info(
        "%.2f%% of rows above %s, %.2f%% below %s",
        100 * clipping["share_above"],
        f"{high_bound:,.0f}",
        100 * clipping["share_below"],
        f"{low_bound:,.0f}",
    )
    cleaned = clip_amounts(reconciled, low_bound, high_bound)

    return {
        "subsidies": cleaned,
        "geojson": geojson,
        "years": observed_years(cleaned),
        "n_synthesized": int(cleaned[SYNTHESIZED_COL].sum()),
        "clipping": clipping,
    }
