"""Tests for subsidy_map.pipeline."""

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from subsidy_map.pipeline import (
    clamp_value,
    clip_amounts,
    ensure_columns,
    filter_years,
    find_duplicate_records,
    find_missing_keys,
    find_unknown_keys,
    load_subsidies_raw,
    normalize_fips,
    prepare_subsidies,
    reconcile_missing_counties,
    run_pipeline,
    summarize_clipping,
)


def _pairs(df: pd.DataFrame) -> set:
    return {(fips, int(year)) for fips, year in zip(df["fips"], df["year"])}


# --- loader ---


def test_normalize_fips_pads_ints_and_strings():
    out = normalize_fips(pd.Series([6083, "6085", "01001", "6087.0", " 1003 "]))
    assert out.tolist() == ["06083", "06085", "01001", "06087", "01003"]


@pytest.mark.parametrize("bad", ["abc", None, "123456"])
def test_normalize_fips_rejects_malformed(bad):
    with pytest.raises(ValueError, match="Malformed FIPS"):
        normalize_fips(pd.Series(["06083", bad]))


def test_ensure_columns_raises_on_missing():
    with pytest.raises(KeyError, match="fips"):
        ensure_columns(pd.DataFrame({"year": [2019]}), ["year", "fips"])


def test_prepare_subsidies_types_and_order():
    raw = pd.DataFrame(
        {"year": ["2018", "2019"], "total_subs_adj": ["10.5", "-3"], "fips": [6083, "06085"]}
    )
    out = prepare_subsidies(raw)
    assert list(out.columns[:3]) == ["fips", "year", "total_subs_adj"]
    assert out["fips"].tolist() == ["06083", "06085"]
    assert out["year"].tolist() == [2018, 2019]
    assert out["total_subs_adj"].tolist() == [10.5, -3.0]


def test_prepare_subsidies_does_not_mutate_input():
    raw = pd.DataFrame({"year": [2018], "total_subs_adj": [1.0], "fips": [6083]})
    prepare_subsidies(raw)
    assert raw["fips"].tolist() == [6083]


def test_prepare_subsidies_missing_column():
    with pytest.raises(KeyError, match="Missing expected columns"):
        prepare_subsidies(pd.DataFrame({"year": [2018], "fips": ["06083"]}))


@pytest.mark.parametrize("amount", [np.inf, np.nan, "n/a"])
def test_prepare_subsidies_rejects_non_finite_amounts(amount):
    raw = pd.DataFrame(
        {"year": [2018, 2019], "total_subs_adj": [1.0, amount], "fips": ["06083", "06083"]}
    )
    with pytest.raises(ValueError, match="non-finite"):
        prepare_subsidies(raw)


@pytest.mark.parametrize("year", ["20x8", None, 2018.7, "2019.5"])
def test_prepare_subsidies_rejects_malformed_year(year):
    raw = pd.DataFrame(
        {"year": [2018, year], "total_subs_adj": [1.0, 2.0], "fips": ["06083", "06083"]}
    )
    with pytest.raises(ValueError, match="year"):
        prepare_subsidies(raw)


def test_prepare_subsidies_year_filter(subsidies):
    out = prepare_subsidies(subsidies, year_min=2019)
    assert set(out["year"]) == {2019}
    assert len(out) == 2


def test_filter_years_open_bounds_returns_copy(subsidies):
    out = filter_years(subsidies, None, None)
    assert out.equals(subsidies)
    assert out is not subsidies


def test_load_subsidies_raw_missing_file():
    with pytest.raises(FileNotFoundError):
        load_subsidies_raw(Path("/nonexistent/subsidies.csv"))


def test_load_subsidies_raw_keeps_leading_zeros(tmp_path):
    path = tmp_path / "subs.csv"
    path.write_text("year,total_subs_adj,fips\n2019,12.5,01001\n", encoding="utf-8")
    out = load_subsidies_raw(path)
    assert out["fips"].tolist() == ["01001"]


def test_find_duplicate_records_keeps_every_copy(subsidies):
    doubled = pd.concat([subsidies, subsidies.iloc[[0]]], ignore_index=True)
    dupes = find_duplicate_records(doubled)
    assert len(dupes) == 2
    assert set(dupes["fips"]) == {"06083"}


def test_find_duplicate_records_none(subsidies):
    assert find_duplicate_records(subsidies).empty


# --- reconciler ---


def test_reconcile_fills_missing_county_for_each_year():
    df = pd.DataFrame(
        {"fips": ["06083", "06083"], "year": [2018, 2019], "total_subs_adj": [5.0, 7.0]}
    )
    out = reconcile_missing_counties(df, {"06083", "06085"})

    original = out[~out["synthesized"]]
    assert original[["fips", "year", "total_subs_adj"]].equals(df)

    added = out[out["synthesized"]]
    assert sorted(zip(added["fips"], added["year"], added["total_subs_adj"])) == [
        ("06085", 2018, 0.0),
        ("06085", 2019, 0.0),
    ]


def test_reconcile_completeness_for_dense_input(subsidies):
    universe = {"06083", "06085", "06087", "06089"}
    out = reconcile_missing_counties(subsidies, universe)
    assert _pairs(out) == {(k, y) for k in universe for y in (2018, 2019)}
    assert len(out) == len(universe) * 2


def test_reconcile_is_idempotent(subsidies):
    universe = {"06083", "06085", "06087"}
    once = reconcile_missing_counties(subsidies, universe)
    twice = reconcile_missing_counties(once, universe)
    assert len(twice) == len(once)
    assert twice["synthesized"].sum() == once["synthesized"].sum()


def test_reconcile_no_missing_keys_is_noop(subsidies):
    out = reconcile_missing_counties(subsidies, {"06083", "06085"})
    assert len(out) == len(subsidies)
    assert not out["synthesized"].any()


def test_reconcile_empty_input_adds_nothing():
    empty = pd.DataFrame({"fips": pd.Series(dtype=str), "year": pd.Series(dtype=int),
                          "total_subs_adj": pd.Series(dtype=float)})
    out = reconcile_missing_counties(empty, {"06083"})
    assert out.empty


def test_reconcile_leaves_unknown_keys_alone(subsidies):
    df = pd.concat(
        [subsidies, pd.DataFrame({"fips": ["99999"], "year": [2019], "total_subs_adj": [3.0]})],
        ignore_index=True,
    )
    out = reconcile_missing_counties(df, {"06083", "06085"})
    assert "99999" in set(out["fips"])
    assert find_unknown_keys(df, {"06083", "06085"}) == {"99999"}


def test_reconcile_key_level_ignores_partial_years():
    df = pd.DataFrame(
        {"fips": ["06083", "06083", "06085"], "year": [2018, 2019, 2018],
         "total_subs_adj": [1.0, 2.0, 3.0]}
    )
    out = reconcile_missing_counties(df, {"06083", "06085"})
    assert ("06085", 2019) not in _pairs(out)


def test_reconcile_fill_partial_years_gives_full_grid():
    df = pd.DataFrame(
        {"fips": ["06083", "06083", "06085"], "year": [2018, 2019, 2018],
         "total_subs_adj": [1.0, 2.0, 3.0]}
    )
    universe = {"06083", "06085", "06087"}
    out = reconcile_missing_counties(df, universe, fill_partial_years=True)
    assert _pairs(out) == {(k, y) for k in universe for y in (2018, 2019)}
    filled = out[(out["fips"] == "06085") & (out["year"] == 2019)]
    assert filled["total_subs_adj"].tolist() == [0.0]


def test_find_missing_keys(subsidies):
    assert find_missing_keys(subsidies, {"06083", "06087"}) == {"06087"}


# --- clipper ---


@pytest.mark.parametrize(
    "amount, expected",
    [
        (94_000_000, 50_000_000),
        (-500, 0),
        (25_000_000, 25_000_000),
        (0, 0),
        (50_000_000, 50_000_000),
    ],
)
def test_clamp_value(amount, expected):
    assert clamp_value(amount, 0, 50_000_000) == expected


def test_clamp_value_rejects_inverted_bounds():
    with pytest.raises(ValueError, match="must not exceed"):
        clamp_value(1.0, 10.0, 5.0)


def test_clip_amounts_bounds_and_monotonic(subsidies):
    out = clip_amounts(subsidies, 0, 50_000_000)
    assert out["display_value"].between(0, 50_000_000).all()

    ordered = out.sort_values("total_subs_adj")
    assert ordered["display_value"].is_monotonic_increasing
    assert out["display_value"].tolist() == [50_000_000.0, 25_000_000.0, 0.0, 1_000.0]


def test_clip_amounts_keeps_raw_amounts(subsidies):
    before = subsidies.copy()
    out = clip_amounts(subsidies, 0, 50_000_000)
    assert out["total_subs_adj"].equals(before["total_subs_adj"])
    assert "display_value" not in subsidies.columns


def test_clip_amounts_matches_clamp_value(subsidies):
    out = clip_amounts(subsidies, 0, 50_000_000)
    expected = [clamp_value(v, 0, 50_000_000) for v in subsidies["total_subs_adj"]]
    assert out["display_value"].tolist() == expected


def test_summarize_clipping(subsidies):
    summary = summarize_clipping(subsidies, 0, 50_000_000)
    assert summary["n_rows"] == 4
    assert summary["n_above"] == 1
    assert summary["n_below"] == 1
    assert summary["share_above"] == pytest.approx(0.25)


def test_summarize_clipping_empty():
    empty = pd.DataFrame({"total_subs_adj": pd.Series(dtype=float)})
    summary = summarize_clipping(empty, 0, 1)
    assert summary["share_above"] == 0.0
    assert summary["share_below"] == 0.0


# --- driver ---


@pytest.fixture
def ragged_csv(tmp_path):
    path = tmp_path / "subs.csv"
    path.write_text(
        "year,total_subs_adj,fips\n"
        "2018,94000000,6083\n"
        "2019,25000000,6083\n"
        "2018,-500,06085\n",
        encoding="utf-8",
    )
    return path


def test_run_pipeline_end_to_end(ragged_csv, counties_geojson):
    payload = run_pipeline(source=ragged_csv, geojson=counties_geojson)
    df = payload["subsidies"]

    assert payload["years"] == [2018, 2019]
    # Every county gets a row for every year, including the 2019 gap of 06085.
    assert _pairs(df) == {
        (k, y) for k in ("06083", "06085", "06087") for y in (2018, 2019)
    }
    assert payload["n_synthesized"] == 3
    gap = df[(df["fips"] == "06085") & (df["year"] == 2019)]
    assert gap["total_subs_adj"].tolist() == [0.0]
    assert df["display_value"].between(0, 50_000_000).all()
    assert payload["clipping"]["n_above"] == 1


def test_run_pipeline_missing_counties_only(ragged_csv, counties_geojson):
    payload = run_pipeline(
        source=ragged_csv, geojson=counties_geojson, fill_partial_years=False
    )
    df = payload["subsidies"]
    assert payload["n_synthesized"] == 2
    assert ("06087", 2019) in _pairs(df)
    assert ("06085", 2019) not in _pairs(df)


def test_run_pipeline_missing_file(counties_geojson):
    with pytest.raises(FileNotFoundError):
        run_pipeline(source=Path("/nonexistent/subs.csv"), geojson=counties_geojson)
