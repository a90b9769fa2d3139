import pandas as pd
from shiny import reactive
from shiny.express import input, ui
from shinywidgets import render_plotly

# Import organized modules
from subsidy_map.config import (
    GLOBAL_YEAR_MAX,
    GLOBAL_YEAR_MIN,
    HIGH_BOUND,
    LOW_BOUND,
    STATIC_MAP_YEAR,
)
from subsidy_map.data_manager import load_payload
from subsidy_map.pipeline import SYNTHESIZED_COL
from subsidy_map.plotting import create_static_map, format_dollars

# ======================================================
#  REACTIVE STATE
# ======================================================
# Load once on startup; values stay in-memory until app restart.
payload_store = reactive.Value(load_payload())

DEFAULT_SHOW_FILLED = True


@reactive.calc
def year_data():
    payload = payload_store.get()
    if payload is None:
        return pd.DataFrame()

    df = payload["subsidies"]
    df_year = df[df["year"] == input.year()]
    if not input.show_filled():
        df_year = df_year[~df_year[SYNTHESIZED_COL].astype(bool)]
    return df_year


# ======================================================
#  UI LAYOUT
# ======================================================
ui.page_opts(
    title="Agricultural Subsidies per County",
    fillable=False,
    full_width=True,
    lang="en",
)

with ui.sidebar(open="always", position="right"):
    ui.input_slider(
        "year",
        "Year",
        min=GLOBAL_YEAR_MIN,
        max=GLOBAL_YEAR_MAX,
        value=STATIC_MAP_YEAR,
        step=1,
        sep="",
    )
    ui.input_switch(
        "show_filled",
        "Show counties with no recorded payments ($0)",
        value=DEFAULT_SHOW_FILLED,
    )
    ui.p(
        f"Colours are capped at {format_dollars(HIGH_BOUND)} and floored at "
        f"{format_dollars(LOW_BOUND)}; hover a county for the exact amount."
    )
    ui.input_action_button(
        "reset_filters",
        "Reset filters",
        class_="btn-primary mt-3",
    )


@reactive.effect
@reactive.event(input.reset_filters)
def _reset_filters():
    ui.update_slider("year", value=STATIC_MAP_YEAR)
    ui.update_switch("show_filled", value=DEFAULT_SHOW_FILLED)


with ui.div(style="display:flex; justify-content:center;"):

    @render_plotly
    def subsidy_map():
        df = year_data()
        if df.empty:
            return None

        return create_static_map(df, payload_store.get()["geojson"], input.year())
