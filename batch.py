"""
Batch processing module for ANOMPLOT.

This module handles headless (non-GUI) rendering of the anomaly dashboard.
It supports:
- Loading configuration from command-line arguments, JSON, or YAML files.
- Rendering one dashboard frame (map, legend, time series, summary) per
  variable and year, in parallel worker processes.
- A fixed region (lon/lat box) or state selection applied to every frame.
- Exporting per-year summaries and per-state means to CSV.
- Saving run configurations (snapshots) for reproducibility.
"""

import os
import logging
import json
import multiprocessing
from concurrent.futures import ProcessPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Tuple

import numpy as np
import pandas as pd
import yaml
import matplotlib.pyplot as plt

from config import DEFAULT_STATES_URL, VARIABLES
from data_processing import load_inputs, distinct_years, available_variables, filter_cells
from geography import StateIndex
from aggregation import slice_stats
from plotting import build_dashboard_figure, render_dashboard
from projection import _map_crs, project_lonlat
from view_state import (
    initial_state, reduce_view, build_dashboard, YearIndexChanged, VariableChanged,
    BrushEnd, StateClicked, NoSelection,
)
from utils import safe_slug, serialize_attrs


_PLOT_CONTEXT: Optional[Dict[str, Any]] = None
try:
    _PLOT_MP_CONTEXT = multiprocessing.get_context('fork')
except ValueError:
    _PLOT_MP_CONTEXT = None


def _resolve_worker_count(requested: int, num_jobs: int) -> int:
    if requested and requested > 0:
        return max(1, min(requested, num_jobs))
    cpu = os.cpu_count() or 1
    # leave one core for the system
    return max(1, min(cpu - 1, num_jobs))


def _write_settings_snapshot(args, plots, files, attrs=None):
    """Persist run configuration and generated artifacts for reuse."""
    os.makedirs(args.outdir, exist_ok=True)
    arg_dict = {
        k: getattr(args, k) for k in vars(args)
        if k not in {'json', 'yaml', 'json_payload', 'config_path', 'year_list', 'variable_list'}
    }
    payload = {
        'timestamp_utc': datetime.now(timezone.utc).isoformat(),
        'arguments': arg_dict,
        'outputs': {
            'output_directory': os.path.abspath(args.outdir),
            'plots': [os.path.abspath(p) for p in plots if p],
            'files': [os.path.abspath(p) for p in files if p],
        },
    }
    if attrs is not None:
        payload['outputs']['grid_attrs'] = serialize_attrs(attrs)

    base_name = safe_slug(os.path.splitext(os.path.basename(args.data or ''))[0], default='anomplot')
    config_path = getattr(args, 'config_path', None) or ''
    if config_path.lower().endswith(('.yaml', '.yml')):
        out_path = os.path.join(args.outdir, f"{base_name}.yaml")
        payload['outputs']['settings_yaml'] = os.path.abspath(out_path)
        with open(out_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(payload, f, sort_keys=False)
    else:
        out_path = os.path.join(args.outdir, f"{base_name}.json")
        payload['outputs']['settings_json'] = os.path.abspath(out_path)
        with open(out_path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2)
    logging.info("Settings snapshot written to %s", out_path)
    return out_path


def _selection_event(args, index: StateIndex, tf_fwd):
    """Translate --bbox / --state into the selection event applied to every frame."""
    raw = getattr(args, 'bbox', None)
    if raw:
        # Command line gives four floats; a settings file may give a list or "lon0,lat0,lon1,lat1"
        parts = raw.replace(',', ' ').split() if isinstance(raw, str) else list(raw)
        if len(parts) != 4:
            raise ValueError(f"--bbox expects LON0 LAT0 LON1 LAT1; got {raw!r}")
        try:
            lon0, lat0, lon1, lat1 = (float(p) for p in parts)
        except (TypeError, ValueError):
            raise ValueError(f"--bbox values must be numbers; got {raw!r}") from None
        lons = np.array([lon0, lon1, lon1, lon0])
        lats = np.array([lat0, lat0, lat1, lat1])
        xs, ys = project_lonlat(tf_fwd, lons, lats)
        if not (np.isfinite(xs).all() and np.isfinite(ys).all()):
            raise ValueError(f"--bbox corners cannot be projected onto the map: {args.bbox}")
        return BrushEnd((float(xs.min()), float(ys.min()), float(xs.max()), float(ys.max())))
    if getattr(args, 'state', None):
        feature = index.find_by_name(args.state)
        if feature is None:
            raise ValueError(f"Unknown state '{args.state}'")
        return StateClicked(feature.state_id, feature.name)
    return None


def _render_frame(variable: str, year: int, ctx: Dict[str, Any]) -> Tuple[str, int, str, Dict[str, Any]]:
    dataset = ctx['dataset']
    index = ctx['index']
    years = ctx['years']
    tf_fwd = ctx['tf_fwd']

    state = initial_state(years)
    state = reduce_view(state, VariableChanged(variable), years)
    state = reduce_view(state, YearIndexChanged(years.index(year)), years)
    if ctx['selection_event'] is not None:
        state = reduce_view(state, ctx['selection_event'], years)
    view = build_dashboard(state, dataset, index, tf_fwd)

    fig = plt.figure(figsize=(15, 7.5))
    try:
        axes = build_dashboard_figure(fig)
        render_dashboard(axes, view, ctx['states_plot'], tf_fwd=tf_fwd, years=years)
        out_file = os.path.join(ctx['outdir'], f"{ctx['basename']}_{variable}_{year}{ctx['suffix']}.png")
        fig.savefig(out_file, dpi=ctx['dpi'], bbox_inches='tight', pad_inches=0.1)
    finally:
        plt.close(fig)

    if isinstance(view.selection, NoSelection):
        stats = slice_stats(filter_cells(dataset, year=year, scenario=view.scenario, variable=variable))
        states_text = ''
    else:
        stats = {'mean': view.summary.mean, 'min': view.summary.min, 'max': view.summary.max,
                 'count': view.summary.n_cells}
        states_text = view.summary.states_text
    row = {
        'variable': variable,
        'year': year,
        'scenario': view.scenario,
        'selection': type(view.selection).__name__,
        'mean': stats['mean'],
        'min': stats['min'],
        'max': stats['max'],
        'n_cells': stats['count'],
        'n_states_with_data': len(view.state_means),
        'color_vmax': view.domain[1],
        'states': states_text,
        '_state_means': view.state_means,
    }
    return variable, year, os.path.abspath(out_file), row


def _plot_worker(variable: str, year: int):
    if _PLOT_CONTEXT is None:
        raise RuntimeError("Plot context is not initialized")
    return _render_frame(variable, year, _PLOT_CONTEXT)


def _resolve_years(args, years: List[int]) -> List[int]:
    requested = getattr(args, 'year_list', None) or []
    if not requested:
        return years[:1]
    if any(str(y).lower() == 'all' for y in requested):
        return list(years)
    chosen = []
    for token in requested:
        try:
            y = int(token)
        except (TypeError, ValueError):
            logging.warning("Ignoring non-numeric year '%s'", token)
            continue
        if y not in years:
            logging.warning("Year %s is not in the dataset; skipped.", y)
            continue
        if y not in chosen:
            chosen.append(y)
    return chosen


def _batch_mode(args):
    global _PLOT_CONTEXT

    generated_plots: List[str] = []
    generated_files: List[str] = []

    if not args.data:
        logging.error("Batch mode requires a grid data file. Use --data.")
        return 2
    states_src = args.states or DEFAULT_STATES_URL
    logging.info("Loading grid data from %s and state boundaries from %s", args.data, states_src)

    def batch_notify(level, message):
        getattr(logging, (level or 'INFO').lower(), logging.info)(message)

    try:
        dataset, states = load_inputs(args.data, states_src, delim=args.delim, encoding=args.encoding,
                                      notify=batch_notify)
    except Exception:
        logging.exception("Failed to load inputs; nothing rendered.")
        return 1

    years = distinct_years(dataset)
    if not years:
        logging.error("Grid data contains no rows.")
        return 1
    index = StateIndex(states)
    crs, tf_fwd, _tf_inv = _map_crs()
    states_plot = states.to_crs(crs)

    present = available_variables(dataset)
    variables = getattr(args, 'variable_list', None) or [v for v in VARIABLES if v in present]
    unknown = [v for v in variables if v not in VARIABLES]
    if unknown:
        logging.error("Unknown variable(s): %s (expected %s)", unknown, sorted(VARIABLES))
        return 2
    frame_years = _resolve_years(args, years)
    if not frame_years or not variables:
        logging.error("Nothing to render: years=%s variables=%s", frame_years, variables)
        return 2

    try:
        selection_event = _selection_event(args, index, tf_fwd)
    except ValueError as exc:
        logging.error("%s", exc)
        return 2

    os.makedirs(args.outdir, exist_ok=True)
    basename = safe_slug(os.path.splitext(os.path.basename(args.data))[0], default='anomplot')
    if isinstance(selection_event, StateClicked):
        suffix = f".state_{safe_slug(selection_event.name)}"
    elif isinstance(selection_event, BrushEnd):
        suffix = ".bbox"
    else:
        suffix = ""

    _PLOT_CONTEXT = {
        'dataset': dataset,
        'index': index,
        'years': years,
        'tf_fwd': tf_fwd,
        'states_plot': states_plot,
        'selection_event': selection_event,
        'outdir': args.outdir,
        'basename': basename,
        'suffix': suffix,
        'dpi': args.dpi,
    }

    jobs = [(v, y) for v in variables for y in frame_years]
    workers = _resolve_worker_count(args.workers, len(jobs))
    rows: List[Dict[str, Any]] = []
    failures = 0
    logging.info("Rendering %d frame(s) with %d worker(s)", len(jobs), workers)

    if workers > 1 and _PLOT_MP_CONTEXT is not None:
        with ProcessPoolExecutor(max_workers=workers, mp_context=_PLOT_MP_CONTEXT) as pool:
            futures = {pool.submit(_plot_worker, v, y): (v, y) for v, y in jobs}
            for fut in as_completed(futures):
                v, y = futures[fut]
                try:
                    _, _, path, row = fut.result()
                except Exception:
                    logging.exception("Failed rendering %s %s", v, y)
                    failures += 1
                    continue
                generated_plots.append(path)
                rows.append(row)
                logging.info("Saved %s", path)
    else:
        for v, y in jobs:
            try:
                _, _, path, row = _plot_worker(v, y)
            except Exception:
                logging.exception("Failed rendering %s %s", v, y)
                failures += 1
                continue
            generated_plots.append(path)
            rows.append(row)
            logging.info("Saved %s", path)

    if rows:
        summary = pd.DataFrame([{k: r[k] for k in r if not k.startswith('_')} for r in rows])
        summary = summary.sort_values(['variable', 'year']).reset_index(drop=True)
        for variable, group in summary.groupby('variable', sort=True):
            out_csv = os.path.join(args.outdir, f"{basename}_summary_{variable}{suffix}.csv")
            group.to_csv(out_csv, index=False)
            generated_files.append(out_csv)
            logging.info("Summary written to %s", out_csv)

        if args.export_csv:
            means_rows = []
            for r in rows:
                for sid, value in r['_state_means'].items():
                    means_rows.append({
                        'variable': r['variable'], 'year': r['year'], 'scenario': r['scenario'],
                        'state_id': sid, 'name': index.name_of(sid), 'mean_anom': value,
                    })
            means_df = pd.DataFrame(means_rows, columns=['variable', 'year', 'scenario', 'state_id', 'name',
                                                         'mean_anom'])
            means_df = means_df.sort_values(['variable', 'year', 'state_id']).reset_index(drop=True)
            out_csv = os.path.join(args.outdir, f"{basename}_state_means.csv")
            means_df.to_csv(out_csv, index=False)
            generated_files.append(out_csv)
            logging.info("Per-state means written to %s", out_csv)

    _PLOT_CONTEXT = None
    if failures:
        logging.error("%d of %d frame(s) failed.", failures, len(jobs))
        return 1
    _write_settings_snapshot(args, generated_plots, generated_files, attrs=dataset.attrs)
    return 0
