"""Data processing functions for the ANOMPLOT dashboard.

##############################################################################
# GRID TABLE RULES
# 1. Every reader returns the same long-form table, one row per grid cell:
#    - REQUIRED COLUMNS: year (int), scenario (str), variable (str),
#      lon (float, raw), lon180 (float, -180..180), lat (float), anom (float).
#    - Coordinates are WGS84 lon/lat degrees.
#
# 2. Scenario rule:
#    - year <= HISTORICAL_LAST_YEAR -> 'historical', else 'ssp585'.
#    - A stored scenario column is kept as-is; rows that contradict the rule
#      are reported and drop out of the per-year (year, scenario) slices.
##############################################################################
"""

import os
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Iterable, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
import netCDF4

from config import (
    HISTORICAL_LAST_YEAR, SCENARIO_HISTORICAL, SCENARIO_PROJECTION, VARIABLES,
    LON_COLS, LAT_COLS, YEAR_COLS, VARIABLE_COLS, SCENARIO_COLS, ANOM_COLS,
)
from utils import normalize_delim, is_netcdf_file

GRID_COLUMNS = ['year', 'scenario', 'variable', 'lon', 'lon180', 'lat', 'anom']


def _file_signature(path: str) -> Tuple[str, Optional[int]]:
    if not isinstance(path, str):
        return (str(path), None)
    abs_path = os.path.abspath(path)
    try:
        return (abs_path, int(os.path.getmtime(abs_path)))
    except OSError:
        return (abs_path, None)


def _emit_user_message(notify: Optional[Callable[[str, str], None]], level: str, message: str) -> None:
    """Send a status message via callback when available, else log it."""
    msg = str(message).strip()
    if not msg:
        return
    lvl = level.upper() if level else 'INFO'
    if callable(notify):
        notify(lvl, msg)
        return
    getattr(logging, lvl.lower(), logging.info)(msg)


def _check_column_in_df(df: pd.DataFrame, col_list: List[str], warn: bool = True) -> Optional[str]:
    # case-insensitive match, whitespace trimmed
    col_list = [col.strip().lower() for col in col_list]
    for col in df.columns:
        if str(col).strip().lower() in col_list:
            return col
    if warn:
        logging.warning("None of %s found in DataFrame.", col_list)
    return None


def scenario_for_year(year) -> str:
    """Return the emissions pathway label for a calendar year."""
    return SCENARIO_HISTORICAL if int(year) <= HISTORICAL_LAST_YEAR else SCENARIO_PROJECTION


def normalize_lon(lon: Union[pd.Series, np.ndarray, float]):
    """Map raw 0..360 longitudes onto -180..180 (values above 180 shift by -360)."""
    if isinstance(lon, pd.Series):
        return lon.where(lon <= 180, lon - 360)
    arr = np.asarray(lon, dtype=float)
    out = np.where(arr > 180, arr - 360, arr)
    return float(out) if out.ndim == 0 else out


def prepare_grid(raw: Union[pd.DataFrame, Iterable[dict]]) -> pd.DataFrame:
    """Normalize raw rows into the grid table.

    Column names are matched case-insensitively against the aliases in config.
    Numeric fields are coerced; a non-numeric anomaly becomes NaN and is
    ignored by every aggregate. ``lon180`` is derived from ``lon``. No rows
    and no columns at all yields an empty grid table.
    """
    if not isinstance(raw, pd.DataFrame):
        raw = pd.DataFrame(list(raw))
    if raw.empty and len(raw.columns) == 0:
        df = pd.DataFrame({
            'year': pd.Series(dtype=int),
            'scenario': pd.Series(dtype=object),
            'variable': pd.Series(dtype=object),
            'lon': pd.Series(dtype=float),
            'lon180': pd.Series(dtype=float),
            'lat': pd.Series(dtype=float),
            'anom': pd.Series(dtype=float),
        })[GRID_COLUMNS]
        df.attrs['source_type'] = 'grid_table'
        return df

    lon_col = _check_column_in_df(raw, LON_COLS, warn=False)
    lat_col = _check_column_in_df(raw, LAT_COLS, warn=False)
    year_col = _check_column_in_df(raw, YEAR_COLS, warn=False)
    var_col = _check_column_in_df(raw, VARIABLE_COLS, warn=False)
    anom_col = _check_column_in_df(raw, ANOM_COLS, warn=False)
    scen_col = _check_column_in_df(raw, SCENARIO_COLS, warn=False)

    missing = [name for name, col in (
        ('lon', lon_col), ('lat', lat_col), ('year', year_col),
        ('variable', var_col), ('anom', anom_col),
    ) if col is None]
    if missing:
        raise ValueError(f"Grid data is missing required column(s): {', '.join(missing)}")

    df = pd.DataFrame({
        'lon': pd.to_numeric(raw[lon_col], errors='coerce').astype(float),
        'lat': pd.to_numeric(raw[lat_col], errors='coerce').astype(float),
        'year': pd.to_numeric(raw[year_col], errors='coerce'),
        'variable': raw[var_col].astype(str).str.strip().str.lower(),
        'anom': pd.to_numeric(raw[anom_col], errors='coerce').astype(float),
    })
    if scen_col is not None:
        df['scenario'] = raw[scen_col].astype('string').str.strip().str.lower()

    bad_rows = df['year'].isna() | df['lon'].isna() | df['lat'].isna()
    if bad_rows.any():
        logging.warning("Dropping %d grid row(s) without numeric year/lon/lat.", int(bad_rows.sum()))
        df = df.loc[~bad_rows].copy()
    df['year'] = df['year'].round().astype(int)

    derived = np.where(df['year'] <= HISTORICAL_LAST_YEAR, SCENARIO_HISTORICAL, SCENARIO_PROJECTION)
    if scen_col is not None:
        stored = df['scenario'].replace('', pd.NA)
        scenario = stored.fillna(pd.Series(derived, index=df.index)).astype(str)
        conflicts = int((scenario.to_numpy() != derived).sum())
        if conflicts:
            logging.warning(
                "%d grid row(s) carry a scenario that contradicts the year rule (<= %d historical).",
                conflicts, HISTORICAL_LAST_YEAR,
            )
        df['scenario'] = scenario
    else:
        df['scenario'] = derived

    n_missing = int(df['anom'].isna().sum())
    if n_missing:
        logging.info("%d grid row(s) have no numeric anomaly; treated as absent.", n_missing)

    df['lon180'] = normalize_lon(df['lon'])
    df = df[GRID_COLUMNS].reset_index(drop=True)
    df.attrs['source_type'] = 'grid_table'
    return df


def read_grid_netcdf(path: str) -> pd.DataFrame:
    """Flatten a gridded NetCDF file (year|time, lat, lon) into raw grid rows.

    Each 3-D data variable whose name starts with a known variable code
    (``tas``, ``tas_anom``, ``pr``...) contributes one block of rows.
    """
    with netCDF4.Dataset(path, 'r') as ds:
        def _find(names):
            for name in names:
                if name in ds.variables:
                    return name
            return None

        lat_name = _find(('lat', 'latitude'))
        lon_name = _find(('lon', 'longitude'))
        if lat_name is None or lon_name is None:
            raise ValueError(f"NetCDF file has no lat/lon coordinates: {path}")
        lats = np.asarray(ds.variables[lat_name][:], dtype=float)
        lons = np.asarray(ds.variables[lon_name][:], dtype=float)

        if 'year' in ds.variables:
            years = np.asarray(ds.variables['year'][:]).astype(int)
            time_dim = ds.variables['year'].dimensions[0]
        elif 'time' in ds.variables:
            tvar = ds.variables['time']
            dates = netCDF4.num2date(tvar[:], tvar.units, getattr(tvar, 'calendar', 'standard'))
            years = np.array([d.year for d in np.atleast_1d(dates)], dtype=int)
            time_dim = tvar.dimensions[0]
        else:
            raise ValueError(f"NetCDF file has no year/time coordinate: {path}")

        blocks = []
        for name, var in ds.variables.items():
            code = name.split('_')[0].lower()
            if code not in VARIABLES or var.ndim != 3:
                continue
            dims = var.dimensions
            if dims[0] != time_dim:
                logging.warning("Skipping NetCDF variable %s: leading dimension %s is not %s", name, dims[0], time_dim)
                continue
            data = np.ma.filled(np.ma.asarray(var[:], dtype=float), np.nan)
            if dims[1] == ds.variables[lon_name].dimensions[0]:
                data = data.transpose(0, 2, 1)
            yy, la, lo = np.meshgrid(years, lats, lons, indexing='ij')
            blocks.append(pd.DataFrame({
                'year': yy.ravel(),
                'variable': code,
                'lon': lo.ravel(),
                'lat': la.ravel(),
                'anom': data.ravel(),
            }))
            logging.info("Read NetCDF variable %s as %s (%d cells)", name, code, data.size)

    if not blocks:
        raise ValueError(f"NetCDF file has no tas/pr data variables: {path}")
    return pd.concat(blocks, ignore_index=True)


def read_gridfile(
    path: str,
    delim: Optional[str] = None,
    encoding: Optional[str] = None,
    notify: Optional[Callable[[str, str], None]] = None,
) -> pd.DataFrame:
    """Load the gridded anomaly dataset from CSV/text or NetCDF into the grid table."""
    if not path:
        raise ValueError("No grid data file given.")
    if not os.path.exists(path):
        raise FileNotFoundError(f"Grid data file not found: {path}")

    if is_netcdf_file(path):
        _emit_user_message(notify, 'INFO', f"Reading NetCDF grid {os.path.basename(path)}")
        raw = read_grid_netcdf(path)
        source_type = 'netcdf'
    else:
        sep = normalize_delim(delim)
        _emit_user_message(notify, 'INFO', f"Reading grid table {os.path.basename(path)}")
        if sep:
            raw = pd.read_csv(path, sep=sep, encoding=encoding, comment='#')
        else:
            raw = pd.read_csv(path, sep=None, engine='python', encoding=encoding, comment='#')
        source_type = 'text'

    df = prepare_grid(raw)
    df.attrs['source_type'] = source_type
    df.attrs['source_path'] = os.path.abspath(path)
    years = distinct_years(df)
    _emit_user_message(
        notify, 'INFO',
        f"Loaded {len(df)} grid cells, {len(years)} years, variables: {', '.join(available_variables(df)) or 'none'}",
    )
    return df


def distinct_years(df: pd.DataFrame) -> List[int]:
    """Ascending de-duplicated years present in the dataset."""
    return sorted(int(y) for y in pd.unique(df['year']))


def available_variables(df: pd.DataFrame) -> List[str]:
    found = set(df['variable'].unique())
    ordered = [v for v in VARIABLES if v in found]
    ordered += sorted(found - set(VARIABLES))
    return ordered


def filter_cells(
    df: pd.DataFrame,
    *,
    year: Optional[int] = None,
    scenario: Optional[str] = None,
    variable: Optional[str] = None,
) -> pd.DataFrame:
    """Subset grid cells by any combination of year, scenario and variable."""
    mask = pd.Series(True, index=df.index)
    if year is not None:
        mask &= df['year'] == int(year)
    if scenario is not None:
        mask &= df['scenario'] == scenario
    if variable is not None:
        mask &= df['variable'] == variable
    return df.loc[mask]


def load_inputs(
    data_path: str,
    states_path: str,
    *,
    delim: Optional[str] = None,
    encoding: Optional[str] = None,
    notify: Optional[Callable[[str, str], None]] = None,
):
    """Load the grid table and the state boundaries concurrently.

    Both loads must finish before anything is drawn. The first failure is
    re-raised after the other load has completed; there is no partial result.
    """
    from geography import read_states

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix='anomplot-load') as pool:
        grid_future = pool.submit(read_gridfile, data_path, delim, encoding, notify)
        states_future = pool.submit(read_states, states_path)
        wait([grid_future, states_future])
    for future in (grid_future, states_future):
        exc = future.exception()
        if exc is not None:
            raise exc
    return grid_future.result(), states_future.result()
