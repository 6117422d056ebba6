"""Spatial and temporal aggregation of grid cells."""

import math
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np
import pandas as pd

from config import COLOR_COMPRESSION
from geography import StateIndex


def mean_by_state(cells: pd.DataFrame, index: StateIndex) -> Dict[str, float]:
    """Mean anomaly per containing state.

    States without a single finite anomaly among their cells are absent from
    the result; they are never reported as zero.
    """
    if cells.empty:
        return {}
    frame = pd.DataFrame({'state_id': index.assign_states(cells), 'anom': cells['anom']})
    frame = frame.dropna(subset=['state_id', 'anom'])
    if frame.empty:
        return {}
    means = frame.groupby('state_id', sort=True)['anom'].mean()
    return {str(k): float(v) for k, v in means.items()}


def states_touched_by(cells: pd.DataFrame, index: StateIndex) -> Set[str]:
    """Names of the states whose polygon contains at least one of ``cells``."""
    if cells.empty:
        return set()
    ids = index.assign_states(cells).dropna().unique()
    return index.state_names(ids)


def series_by_year(cells: pd.DataFrame) -> List[Tuple[int, float]]:
    """Ascending (year, mean anomaly) pairs, one per year with data.

    A year whose anomalies are all missing contributes no point rather than a
    NaN gap, so input with no finite anomaly at all yields an empty series.
    """
    if cells.empty:
        return []
    valid = cells.loc[cells['anom'].notna(), ['year', 'anom']]
    if valid.empty:
        return []
    rolled = valid.groupby('year', sort=True)['anom'].mean()
    return [(int(year), float(value)) for year, value in rolled.items()]


def slice_stats(cells: pd.DataFrame) -> Dict[str, Optional[float]]:
    """Mean/min/max of the finite anomalies in ``cells`` (None when there are none)."""
    values = cells['anom'].dropna() if not cells.empty else pd.Series([], dtype=float)
    if values.empty:
        return {'mean': None, 'min': None, 'max': None, 'count': 0}
    arr = values.to_numpy(dtype=float)
    return {
        'mean': float(arr.mean()),
        'min': float(arr.min()),
        'max': float(arr.max()),
        'count': int(arr.size),
    }


def color_domain(values: Iterable[float], compression: float = COLOR_COMPRESSION) -> Tuple[float, float]:
    """Symmetric colour domain around zero for the displayed slice.

    The half-span is ``compression * max(|value|)``; an empty or all-zero slice
    uses a largest magnitude of 1.
    """
    arr = pd.Series(list(values), dtype=float).dropna().to_numpy()
    max_abs = float(np.abs(arr).max()) if arr.size else 0.0
    if not math.isfinite(max_abs) or max_abs == 0.0:
        max_abs = 1.0
    span = max_abs * compression
    return -span, span
