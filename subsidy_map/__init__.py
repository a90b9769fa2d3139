"""subsidy_map package initializer.

This package contains the data pipeline and rendering modules behind the
county farm subsidy maps: loading and cleaning, caching, plotly figures
and the GIF animation.  See individual module docstrings for details.
"""
