"""Dashboard view state, interaction events and the derived view.

The view state is an immutable value. Every interaction produces a new state
through :func:`reduce_view`; :func:`build_dashboard` derives everything the map,
chart and summary panels show from that state, so redrawing is a pure function
of (state, dataset, geography).
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import pyproj

from config import (
    DEFAULT_VARIABLE, VARIABLES, MISSING_TEXT, MSG_NO_SELECTION, MSG_EMPTY_SELECTION, variable_meta,
)
from data_processing import scenario_for_year, filter_cells
from geography import StateIndex
from aggregation import mean_by_state, states_touched_by, series_by_year, slice_stats, color_domain
from projection import project_lonlat
from utils import fmt_value


# ---- Selections ----

@dataclass(frozen=True)
class NoSelection:
    """Whole-country view."""


@dataclass(frozen=True)
class BoxSelection:
    """Rectangle in projected map coordinates (edges inclusive)."""
    x0: float
    y0: float
    x1: float
    y1: float

    @property
    def extent(self) -> Tuple[float, float, float, float]:
        return (min(self.x0, self.x1), min(self.y0, self.y1), max(self.x0, self.x1), max(self.y0, self.y1))


@dataclass(frozen=True)
class StateSelection:
    """A clicked state; covers every year of that state."""
    state_id: str
    name: str


Selection = Union[NoSelection, BoxSelection, StateSelection]


@dataclass(frozen=True)
class ViewState:
    year: int
    variable: str = DEFAULT_VARIABLE
    selection: Selection = field(default_factory=NoSelection)

    @property
    def scenario(self) -> str:
        return scenario_for_year(self.year)

    @property
    def has_selection(self) -> bool:
        return not isinstance(self.selection, NoSelection)


def initial_state(years: Sequence[int], variable: str = DEFAULT_VARIABLE) -> ViewState:
    if not years:
        raise ValueError("Dataset contains no years.")
    return ViewState(year=int(years[0]), variable=variable, selection=NoSelection())


# ---- Events ----

@dataclass(frozen=True)
class YearIndexChanged:
    index: int


@dataclass(frozen=True)
class VariableChanged:
    variable: str


@dataclass(frozen=True)
class BrushEnd:
    extent: Optional[Tuple[float, float, float, float]]


@dataclass(frozen=True)
class StateClicked:
    state_id: str
    name: str


@dataclass(frozen=True)
class SelectionCleared:
    pass


Event = Union[YearIndexChanged, VariableChanged, BrushEnd, StateClicked, SelectionCleared]


def reduce_view(state: ViewState, event: Event, years: Sequence[int]) -> ViewState:
    """Return the state that follows ``event``; ``state`` itself is never modified."""
    if isinstance(event, YearIndexChanged):
        index = int(event.index)
        if index < 0 or index >= len(years):
            index = 0
        return replace(state, year=int(years[index]))
    if isinstance(event, VariableChanged):
        if event.variable not in VARIABLES:
            raise ValueError(f"Unknown variable '{event.variable}'; expected one of {sorted(VARIABLES)}")
        return replace(state, variable=event.variable)
    if isinstance(event, BrushEnd):
        if event.extent is None:
            return replace(state, selection=NoSelection())
        x0, y0, x1, y1 = (float(v) for v in event.extent)
        if not all(np.isfinite([x0, y0, x1, y1])) or x0 == x1 or y0 == y1:
            return replace(state, selection=NoSelection())
        return replace(state, selection=BoxSelection(x0, y0, x1, y1))
    if isinstance(event, StateClicked):
        return replace(state, selection=StateSelection(str(event.state_id), str(event.name)))
    if isinstance(event, SelectionCleared):
        return replace(state, selection=NoSelection())
    raise TypeError(f"Unsupported event: {event!r}")


# ---- Selection -> cells ----

def cells_in_box(cells: pd.DataFrame, box: BoxSelection, tf_fwd: pyproj.Transformer) -> pd.DataFrame:
    """Cells whose projected (lon180, lat) falls inside the rectangle.

    Points that cannot be projected never match.
    """
    if cells.empty:
        return cells
    x, y = project_lonlat(tf_fwd, cells['lon180'].to_numpy(), cells['lat'].to_numpy())
    x0, y0, x1, y1 = box.extent
    with np.errstate(invalid='ignore'):
        inside = (x >= x0) & (x <= x1) & (y >= y0) & (y <= y1)
    return cells.loc[inside]


def selection_cells(dataset: pd.DataFrame, state: ViewState, index: StateIndex,
                    tf_fwd: pyproj.Transformer) -> Optional[pd.DataFrame]:
    """All-years cells of the current variable covered by the selection (None without one)."""
    sel = state.selection
    if isinstance(sel, NoSelection):
        return None
    var_cells = filter_cells(dataset, variable=state.variable)
    if isinstance(sel, BoxSelection):
        return cells_in_box(var_cells, sel, tf_fwd)
    if isinstance(sel, StateSelection):
        return index.cells_in_state(var_cells, sel.state_id)
    raise TypeError(f"Unsupported selection: {sel!r}")


# ---- Derived view ----

@dataclass(frozen=True)
class SelectionSummary:
    year_text: str = MISSING_TEXT
    scenario_text: str = MISSING_TEXT
    mean_text: str = MISSING_TEXT
    min_text: str = MISSING_TEXT
    max_text: str = MISSING_TEXT
    states_text: str = MSG_NO_SELECTION
    mean: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    n_cells: int = 0
    states: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DashboardView:
    year: int
    scenario: str
    variable: str
    selection: Selection
    state_means: Dict[str, float]
    domain: Tuple[float, float]
    summary: SelectionSummary
    baseline: List[Tuple[int, float]]
    region: List[Tuple[int, float]]


def summarize_selection(selected: Optional[pd.DataFrame], state: ViewState, index: StateIndex) -> SelectionSummary:
    """Summary panel content for the selection at the current year and scenario."""
    if selected is None:
        return SelectionSummary()
    year, scen = state.year, state.scenario
    if selected.empty:
        return SelectionSummary(year_text=str(year), scenario_text=scen, states_text=MSG_EMPTY_SELECTION)

    current = filter_cells(selected, year=year, scenario=scen)
    stats = slice_stats(current)
    if stats['count'] == 0:
        return SelectionSummary(
            year_text=str(year), scenario_text=scen,
            states_text=f"No data in selection for {scen}, {year}.",
        )

    unit = variable_meta(state.variable)['unit']
    names = tuple(sorted(states_touched_by(selected, index)))
    return SelectionSummary(
        year_text=str(year),
        scenario_text=scen,
        mean_text=fmt_value(stats['mean'], 2, unit=unit),
        min_text=fmt_value(stats['min'], 2),
        max_text=fmt_value(stats['max'], 2),
        states_text=", ".join(names) if names else "(none)",
        mean=stats['mean'],
        min=stats['min'],
        max=stats['max'],
        n_cells=stats['count'],
        states=names,
    )


def build_dashboard(state: ViewState, dataset: pd.DataFrame, index: StateIndex,
                    tf_fwd: pyproj.Transformer) -> DashboardView:
    """Recompute the map slice, summary and both time series for ``state``."""
    scen = state.scenario
    slice_cells = filter_cells(dataset, year=state.year, scenario=scen, variable=state.variable)
    means = mean_by_state(slice_cells, index)
    domain = color_domain(slice_cells['anom'])

    selected = selection_cells(dataset, state, index, tf_fwd)
    summary = summarize_selection(selected, state, index)

    baseline = series_by_year(filter_cells(dataset, variable=state.variable))
    region = series_by_year(selected) if selected is not None else []

    logging.debug(
        "View %s %s %s: %d states with data, selection=%s (%s cells)",
        state.variable, scen, state.year, len(means), type(state.selection).__name__,
        'n/a' if selected is None else len(selected),
    )
    return DashboardView(
        year=state.year,
        scenario=scen,
        variable=state.variable,
        selection=state.selection,
        state_means=means,
        domain=domain,
        summary=summary,
        baseline=baseline,
        region=region,
    )
