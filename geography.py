"""State boundary loading and point-in-polygon lookup for the ANOMPLOT dashboard.

Boundaries are held in EPSG:4326. Membership of a grid cell is decided by its
(lon180, lat) position: the first state, in feature order, whose polygon
contains the point. A spatial index narrows candidates, and cell coordinates
(which repeat across years and variables) are resolved once per session.
"""

import os
import re
import ssl
import logging
import tempfile
import urllib.request
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Hashable, List, Optional, Set, Tuple

import numpy as np
import pandas as pd
import geopandas as gpd
from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry

from config import STATE_ID_COLS, STATE_NAME_COLS, STATES_TOPO_LAYER
from data_processing import _check_column_in_df, _file_signature

_TOPOLOGY_RE = re.compile(rb'"type"\s*:\s*"Topology"')


@dataclass(frozen=True)
class StateFeature:
    state_id: str
    name: str
    geometry: BaseGeometry


def _is_topojson(path: str) -> bool:
    if not path.lower().endswith(('.json', '.topojson')):
        return False
    try:
        with open(path, 'rb') as f:
            head = f.read(4096)
    except OSError:
        return False
    return bool(_TOPOLOGY_RE.search(head))


def _download(url: str) -> str:
    context = ssl.create_default_context()
    suffix = os.path.splitext(url.split('?')[0])[1] or '.zip'
    with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
        with urllib.request.urlopen(url, context=context, timeout=60) as resp:
            tmp.write(resp.read())
        return tmp.name


@lru_cache(maxsize=4)
def _load_states(path: str, _signature: Tuple[str, Optional[int]]) -> gpd.GeoDataFrame:
    """Read and normalize a state boundaries layer, returning a GeoDataFrame."""
    del _signature  # used only to bust caches when the underlying file changes
    is_url = path.lower().startswith(("http://", "https://"))
    local_path = _download(path) if is_url else path
    try:
        kwargs = {'layer': STATES_TOPO_LAYER} if _is_topojson(local_path) else {}
        gdf = gpd.read_file(local_path, engine='pyogrio', **kwargs)
    finally:
        if is_url:
            try:
                os.unlink(local_path)
            except OSError:
                pass

    if gdf.empty:
        raise ValueError(f"State boundaries layer is empty: {path}")

    name_col = _check_column_in_df(gdf, STATE_NAME_COLS, warn=False)
    if name_col is None:
        raise ValueError(f"Could not identify a state name column in {path} (tried {STATE_NAME_COLS}).")
    id_col = _check_column_in_df(gdf, STATE_ID_COLS, warn=False)

    if gdf.crs is None:
        gdf = gdf.set_crs(4326)
    else:
        gdf = gdf.to_crs(4326)

    result = gpd.GeoDataFrame({
        'state_id': (gdf[id_col] if id_col is not None else gdf[name_col]).astype(str).str.strip(),
        'name': gdf[name_col].astype(str).str.strip(),
    }, geometry=gdf.geometry.values, crs=gdf.crs)
    result = result[result.geometry.notna() & ~result.geometry.is_empty].reset_index(drop=True)
    logging.info("Loaded %d state features from %s", len(result), path)
    return result


def read_states(path: str) -> gpd.GeoDataFrame:
    """Load state boundaries from a TopoJSON/GeoJSON/shapefile/zip path or URL."""
    if not path:
        raise ValueError("No state boundaries source given.")
    is_url = path.lower().startswith(("http://", "https://"))
    if not is_url and not os.path.exists(path):
        raise FileNotFoundError(f"State boundaries file not found: {path}")
    return _load_states(path, _file_signature(path) if not is_url else (path, None)).copy()


class StateIndex:
    """Point-in-polygon membership over a fixed set of state features."""

    def __init__(self, states: gpd.GeoDataFrame):
        if not isinstance(states, gpd.GeoDataFrame):
            raise TypeError('State boundaries must be provided as a GeoDataFrame.')
        for col in ('state_id', 'name'):
            if col not in states.columns:
                raise ValueError(f"State boundaries are missing required '{col}' column.")
        self.states = states.reset_index(drop=True)
        self._sindex = self.states.sindex
        self._ids = self.states['state_id'].to_numpy()
        self._names: Dict[str, str] = dict(zip(self.states['state_id'], self.states['name']))
        self._lookup: Dict[Tuple[float, float], Optional[str]] = {}

    def __len__(self) -> int:
        return len(self.states)

    def names(self) -> List[str]:
        return list(self.states['name'])

    def name_of(self, state_id: Hashable) -> Optional[str]:
        return self._names.get(state_id)

    def feature(self, state_id: Hashable) -> Optional[StateFeature]:
        match = self.states.index[self.states['state_id'] == state_id]
        if len(match) == 0:
            return None
        row = self.states.loc[match[0]]
        return StateFeature(row['state_id'], row['name'], row.geometry)

    def find_by_name(self, name: str) -> Optional[StateFeature]:
        wanted = str(name).strip().lower()
        for state_id, state_name in self._names.items():
            if state_name.lower() == wanted or str(state_id).lower() == wanted:
                return self.feature(state_id)
        return None

    def membership(self, lon: float, lat: float) -> Optional[StateFeature]:
        """Return the first state containing (lon, lat), or None outside every state."""
        if not (np.isfinite(lon) and np.isfinite(lat)):
            return None
        hits = self._sindex.query(Point(float(lon), float(lat)), predicate='within')
        if len(hits) == 0:
            return None
        pos = int(np.min(hits))
        row = self.states.iloc[pos]
        return StateFeature(row['state_id'], row['name'], row.geometry)

    def _resolve(self, keys: List[Tuple[float, float]]) -> None:
        lons = np.array([k[0] for k in keys], dtype=float)
        lats = np.array([k[1] for k in keys], dtype=float)
        points = gpd.points_from_xy(lons, lats)
        pt_idx, st_idx = self._sindex.query(points, predicate='within')
        for key in keys:
            self._lookup[key] = None
        if len(pt_idx):
            matches = pd.DataFrame({'pt': pt_idx, 'st': st_idx}).sort_values(['pt', 'st'], kind='mergesort')
            matches = matches.drop_duplicates('pt', keep='first')
            for pt, st in zip(matches['pt'].to_numpy(), matches['st'].to_numpy()):
                self._lookup[keys[pt]] = self._ids[st]
        logging.debug("Resolved %d new cell locations against %d states", len(keys), len(self))

    def assign_states(self, cells: pd.DataFrame) -> pd.Series:
        """Containing state id per cell (None where the cell lies outside every state)."""
        if cells.empty:
            return pd.Series([], index=cells.index, dtype=object)
        keys = list(zip(cells['lon180'].astype(float), cells['lat'].astype(float)))
        unknown = list({k for k in keys if k not in self._lookup})
        if unknown:
            self._resolve(unknown)
        return pd.Series([self._lookup.get(k) for k in keys], index=cells.index, dtype=object)

    def cells_in_state(self, cells: pd.DataFrame, state_id: Hashable) -> pd.DataFrame:
        if cells.empty:
            return cells
        return cells.loc[self.assign_states(cells) == state_id]

    def state_names(self, state_ids) -> Set[str]:
        return {self._names[s] for s in state_ids if s is not None and s in self._names}
