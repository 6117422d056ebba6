"""Configuration constants and settings for the ANOMPLOT dashboard."""

import os
import json
from typing import Dict

# ---- Scenario split: last historical year; later years are projections ----
HISTORICAL_LAST_YEAR = 2014
SCENARIO_HISTORICAL = 'historical'
SCENARIO_PROJECTION = 'ssp585'

# ---- Climate variables: code -> display metadata ----
VARIABLES: Dict[str, Dict[str, str]] = {
    'tas': {
        'short': 'Temp',
        'long': 'temperature',
        'unit': '°C',
        'legend': 'Temperature anomaly (°C)',
        'title_unit': '°C',
    },
    'pr': {
        'short': 'Precip',
        'long': 'precipitation',
        'unit': 'mm/yr',
        'legend': 'Precipitation anomaly (mm / year)',
        'title_unit': 'mm / year',
    },
}
DEFAULT_VARIABLE = 'tas'


def variable_meta(variable: str) -> Dict[str, str]:
    """Display metadata for a variable code; unknown codes get a bare fallback."""
    meta = VARIABLES.get(variable)
    if meta is None:
        return {'short': variable, 'long': variable, 'unit': '', 'legend': f"{variable} anomaly",
                'title_unit': ''}
    return meta


# Colour domain spans this fraction of the largest |anomaly| in the displayed slice
COLOR_COMPRESSION = 0.6
NO_DATA_COLOR = '#f0f0f0'
STATE_EDGE_COLOR = '#777777'
STATE_EDGE_WIDTH = 0.8
STATE_HOVER_WIDTH = 2.0
BASELINE_COLOR = '#aaaaaa'
REGION_COLOR = '#d62728'
DIVERGING_CMAP = 'RdBu_r'

# ---- Placeholder texts ----
MISSING_TEXT = '—'
NA_TEXT = 'N/A'
MSG_NO_SELECTION = 'No region selected. Showing US average.'
MSG_EMPTY_SELECTION = 'No data in selected region.'

# ---- Input column aliases (matched case-insensitively) ----
LON_COLS = ['lon', 'longitude', 'lon_dd', 'x']
LAT_COLS = ['lat', 'latitude', 'lat_dd', 'y']
YEAR_COLS = ['year', 'yr']
VARIABLE_COLS = ['variable', 'var', 'varname']
SCENARIO_COLS = ['scenario', 'experiment', 'experiment_id']
ANOM_COLS = ['anom', 'anomaly', 'value']
STATE_NAME_COLS = ['name', 'state_name', 'state']
STATE_ID_COLS = ['id', 'state_id', 'statefp', 'geoid', 'state_fips', 'fips']

# ---- Default inputs ----
DEFAULT_DATA_PATH = os.path.join('data', 'cmip_us_grid_tas_pr_anom2.csv')
DEFAULT_STATES_URL = 'https://cdn.jsdelivr.net/npm/us-atlas@3/states-10m.json'
STATES_TOPO_LAYER = 'states'
DEFAULT_INPUTS_INITIALDIR = "./"

# Lower-48 extent used for the initial map view (lon_min, lat_min, lon_max, lat_max)
CONUS_BOUNDS = (-125.0, 24.0, -66.5, 49.5)

# Conus Albers equal-area; spherical earth off to match NAD83 state boundaries
USE_SPHERICAL_EARTH = False


def _config_file() -> str:
    """Return the path to the configuration file."""
    cfg_dir = os.environ.get('XDG_CONFIG_HOME') or os.path.join(os.path.expanduser('~'), '.config')
    try:
        os.makedirs(cfg_dir, exist_ok=True)
    except OSError:
        pass
    return os.path.join(cfg_dir, 'anomplot_settings.json')


def load_settings() -> dict:
    """Load the entire settings dictionary from the JSON config file."""
    try:
        cfg = _config_file()
        if not os.path.exists(cfg):
            return {}
        with open(cfg, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, ValueError):
        return {}


def save_settings(settings: dict) -> None:
    """Write GUI settings to the JSON config file."""
    try:
        cfg = _config_file()
        with open(cfg, 'w', encoding='utf-8') as f:
            json.dump(settings, f, indent=2)
    except OSError:
        # best-effort; ignore failures
        pass
