"""Plotting utilities for the ANOMPLOT dashboard."""

import textwrap
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pyproj
import geopandas as gpd
import matplotlib.patches as mpatches
from matplotlib import colormaps
from matplotlib.cm import ScalarMappable
from matplotlib.colors import TwoSlopeNorm, to_rgba
from matplotlib.ticker import FormatStrFormatter

from config import (
    CONUS_BOUNDS, DIVERGING_CMAP, NO_DATA_COLOR, STATE_EDGE_COLOR, STATE_EDGE_WIDTH,
    STATE_HOVER_WIDTH, BASELINE_COLOR, REGION_COLOR, NA_TEXT, variable_meta,
)
from projection import project_lonlat, map_extent
from utils import fmt_value


def diverging_norm(domain: Tuple[float, float]) -> TwoSlopeNorm:
    vmin, vmax = domain
    return TwoSlopeNorm(vcenter=0.0, vmin=vmin, vmax=vmax)


def state_colors(state_ids: Sequence[str], means: Dict[str, float], domain: Tuple[float, float]) -> np.ndarray:
    """Fill colour per state; states without a mean get the neutral no-data colour."""
    cmap = colormaps[DIVERGING_CMAP]
    norm = diverging_norm(domain)
    colors = []
    for sid in state_ids:
        value = means.get(sid)
        colors.append(to_rgba(NO_DATA_COLOR) if value is None else cmap(norm(np.clip(value, domain[0], domain[1]))))
    return np.array(colors, dtype=float).reshape(-1, 4)


def format_tooltip(name: str, scenario: str, year: int, variable: str, value: Optional[float]) -> str:
    meta = variable_meta(variable)
    val_text = fmt_value(value, 2, missing=NA_TEXT)
    unit = meta['unit']
    return f"{name}\n{scenario}, {year}\n{meta['short']} anomaly: {val_text} {unit}".rstrip()


def _draw_graticule(ax, tf_fwd: pyproj.Transformer, lon_step=10, lat_step=5, bounds=CONUS_BOUNDS):
    """Draw lon/lat grid lines (degrees) behind the states. Returns the created lines."""
    lines = []
    lon0, lat0, lon1, lat1 = bounds
    lats_samp = np.linspace(lat0 - lat_step, lat1 + lat_step, 100)
    lons_samp = np.linspace(lon0 - lon_step, lon1 + lon_step, 100)
    for lon in np.arange(np.floor(lon0 / lon_step) * lon_step, lon1 + lon_step, lon_step):
        xs, ys = project_lonlat(tf_fwd, np.full_like(lats_samp, lon), lats_samp)
        lines.extend(ax.plot(xs, ys, color='#cccccc', linewidth=0.5, alpha=0.8, zorder=0))
    for lat in np.arange(np.floor(lat0 / lat_step) * lat_step, lat1 + lat_step, lat_step):
        xs, ys = project_lonlat(tf_fwd, lons_samp, np.full_like(lons_samp, lat))
        lines.extend(ax.plot(xs, ys, color='#cccccc', linewidth=0.5, alpha=0.8, zorder=0))
    return lines


def draw_state_map(ax, states_plot: gpd.GeoDataFrame, means: Dict[str, float], domain: Tuple[float, float],
                   tf_fwd: Optional[pyproj.Transformer] = None, title: Optional[str] = None):
    """Draw the choropleth of state means onto ``ax`` (states already in map CRS)."""
    ax.clear()
    if tf_fwd is not None:
        xlim, ylim = map_extent(tf_fwd)
        _draw_graticule(ax, tf_fwd)
    colors = state_colors(list(states_plot['state_id']), means, domain)
    states_plot.plot(ax=ax, color=colors, edgecolor=STATE_EDGE_COLOR, linewidth=STATE_EDGE_WIDTH, zorder=2)
    if tf_fwd is not None:
        ax.set_xlim(*xlim)
        ax.set_ylim(*ylim)
    ax.set_aspect('equal')
    ax.set_axis_off()
    if title:
        ax.set_title(title, fontsize=11, fontweight='bold')
    return ax


def draw_state_outline(ax, geometry, linewidth: float = STATE_HOVER_WIDTH, color: str = '#333333'):
    """Outline one state (hover highlight). Returns the artists added to ``ax``."""
    before = list(ax.collections) + list(ax.lines)
    gpd.GeoSeries([geometry]).boundary.plot(ax=ax, color=color, linewidth=linewidth, zorder=5)
    after = list(ax.collections) + list(ax.lines)
    return [a for a in after if a not in before]


def draw_selection_box(ax, extent, color: str = REGION_COLOR):
    x0, y0, x1, y1 = extent
    rect = mpatches.Rectangle((min(x0, x1), min(y0, y1)), abs(x1 - x0), abs(y1 - y0),
                              fill=False, ec=color, lw=1.2, ls='--', zorder=6)
    ax.add_patch(rect)
    return rect


def draw_color_legend(cax, domain: Tuple[float, float], variable: str):
    """Horizontal colour bar spanning the current colour domain."""
    cax.clear()
    mappable = ScalarMappable(norm=diverging_norm(domain), cmap=colormaps[DIVERGING_CMAP])
    cbar = cax.figure.colorbar(mappable, cax=cax, orientation='horizontal')
    cbar.set_ticks(np.linspace(domain[0], domain[1], 5))
    cbar.ax.xaxis.set_major_formatter(FormatStrFormatter('%.1f'))
    cbar.ax.tick_params(labelsize=8)
    cbar.set_label(variable_meta(variable)['legend'], fontsize=9, fontweight='bold')
    return cbar


def chart_title(variable: str, years: Sequence[int]) -> str:
    meta = variable_meta(variable)
    span = f", {min(years)}-{max(years)}" if years else ''
    return f"Average {meta['long']} anomaly ({meta['title_unit']}{span})"


def draw_time_series(ax, baseline: Sequence[Tuple[int, float]], region: Sequence[Tuple[int, float]],
                     variable: str, years: Sequence[int] = ()):
    """Grey dashed whole-country baseline plus solid red selection series."""
    ax.clear()
    series = [s for s in (baseline, region) if s]
    if series:
        all_years = [y for s in series for y, _ in s]
        all_vals = [v for s in series for _, v in s]
        vmin, vmax = min(all_vals), max(all_vals)
        pad = (vmax - vmin) * 0.1 or 1.0
        ax.set_xlim(min(all_years), max(all_years) if max(all_years) > min(all_years) else min(all_years) + 1)
        ax.set_ylim(vmin - pad, vmax + pad)
    if baseline:
        ax.plot([y for y, _ in baseline], [v for _, v in baseline], color=BASELINE_COLOR,
                linestyle=(0, (4, 2)), linewidth=2, label='US baseline')
    else:
        ax.plot([], [], color=BASELINE_COLOR, linestyle=(0, (4, 2)), linewidth=2, label='US baseline')
    ax.plot([y for y, _ in region], [v for _, v in region], color=REGION_COLOR, linewidth=2,
            label='Selected region')
    ax.axhline(0.0, color='#dddddd', linewidth=0.8, zorder=0)
    ax.set_xlabel('Year')
    ax.set_ylabel(f"Anomaly ({variable_meta(variable)['unit']})")
    ax.legend(loc='upper left', fontsize=9, frameon=False)
    ax.set_title(chart_title(variable, years or [y for y, _ in baseline]), fontsize=11, fontweight='bold',
                 loc='left')
    ax.grid(True, color='#eeeeee', linewidth=0.6)
    return ax


def summary_text(summary) -> str:
    """Multi-line text for the summary panel."""
    states = textwrap.fill(f"States: {summary.states_text}", width=60, subsequent_indent='  ')
    return "\n".join([
        f"Year: {summary.year_text}",
        f"Scenario: {summary.scenario_text}",
        f"Mean: {summary.mean_text}",
        f"Min: {summary.min_text}",
        f"Max: {summary.max_text}",
        states,
    ])


def draw_summary(ax, summary):
    ax.clear()
    ax.set_axis_off()
    ax.text(0.0, 1.0, summary_text(summary), transform=ax.transAxes, va='top', ha='left',
            fontsize=10, family='monospace')
    return ax


def build_dashboard_figure(fig) -> Dict[str, object]:
    """Lay out map, colour legend, time-series chart and summary axes on ``fig``."""
    gs = fig.add_gridspec(3, 2, width_ratios=[1.4, 1.0], height_ratios=[1.0, 0.55, 0.07],
                          left=0.03, right=0.97, top=0.93, bottom=0.07, wspace=0.18, hspace=0.3)
    return {
        'map': fig.add_subplot(gs[0:2, 0]),
        'legend': fig.add_subplot(gs[2, 0]),
        'chart': fig.add_subplot(gs[0, 1]),
        'summary': fig.add_subplot(gs[1:, 1]),
    }


def render_dashboard(axes: Dict[str, object], view, states_plot: gpd.GeoDataFrame,
                     tf_fwd: Optional[pyproj.Transformer] = None, years: Sequence[int] = ()):
    """Draw every panel of a derived dashboard view."""
    map_title = f"{variable_meta(view.variable)['legend']}: {view.scenario}, {view.year}"
    draw_state_map(axes['map'], states_plot, view.state_means, view.domain, tf_fwd=tf_fwd, title=map_title)
    extent = getattr(view.selection, 'extent', None)
    if extent is not None:
        draw_selection_box(axes['map'], extent)
    draw_color_legend(axes['legend'], view.domain, view.variable)
    draw_time_series(axes['chart'], view.baseline, view.region, view.variable, years)
    draw_summary(axes['summary'], view.summary)
