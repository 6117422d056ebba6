from __future__ import annotations

import geopandas as gpd
from shapely.geometry import box

from data_processing import prepare_grid

# Rectangular stand-ins for state outlines (lon/lat degrees)
STATE_BOXES = [
    ('31', 'Nebraska', box(-104.0, 39.0, -95.0, 43.0)),
    ('36', 'New York', box(-80.0, 40.0, -71.0, 45.0)),
    ('08', 'Colorado', box(-109.0, 35.0, -104.0, 39.0)),
]


def make_states(boxes=STATE_BOXES) -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            'state_id': [b[0] for b in boxes],
            'name': [b[1] for b in boxes],
        },
        geometry=[b[2] for b in boxes],
        crs=4326,
    )


def cell(year, variable, lon, lat, anom, scenario=None) -> dict:
    row = {'year': year, 'variable': variable, 'lon': lon, 'lat': lat, 'anom': anom}
    if scenario is not None:
        row['scenario'] = scenario
    return row


def example_grid():
    """Two tas cells in 2000, one in Nebraska and one in New York."""
    return prepare_grid([
        cell(2000, 'tas', -100.0, 40.0, 1.2),
        cell(2000, 'tas', -75.0, 42.0, -0.4),
    ])


def multi_year_grid():
    """tas and pr over 2000/2010/2050 with a cell outside every state."""
    rows = []
    for year, shift in ((2000, 0.0), (2010, 0.5), (2050, 2.0)):
        rows += [
            cell(year, 'tas', -100.0, 40.0, 1.0 + shift),
            cell(year, 'tas', 260.0, 42.0, 0.0 + shift),   # Nebraska, 0..360 longitude
            cell(year, 'tas', -75.0, 42.0, -1.0 + shift),
            cell(year, 'tas', -90.0, 30.0, 5.0),           # outside every state
            cell(year, 'pr', -100.0, 40.0, -20.0 - 10 * shift),
            cell(year, 'pr', -75.0, 42.0, 30.0 + 10 * shift),
        ]
    return prepare_grid(rows)
