#!/usr/bin/env python3
"""
Main entry point for the ANOMPLOT application.

This script serves as the launcher for both the interactive dashboard (GUI)
and the headless Batch mode. It handles:
- Command-line argument parsing.
- Configuration loading (JSON/YAML).
- Logging setup.
- Dispatching execution to `gui.py` or `batch.py` based on arguments and environment.
"""

import os
import sys
import argparse
import datetime
import json
import logging
import re
from typing import List, Set

import yaml
import matplotlib

ANOMPLOT_VERSION = "1.0"

_LIST_SPLIT_RE = re.compile(r'[\s,]+')


def _split_tokens(raw) -> List[str]:
    """Flatten repeated/comma/space separated option values into a distinct ordered list."""
    if raw is None:
        return []
    items = list(raw) if isinstance(raw, (list, tuple, set)) else [raw]
    out: List[str] = []
    seen: Set[str] = set()
    for item in items:
        if item is None:
            continue
        parts = _LIST_SPLIT_RE.split(str(item).strip()) if str(item).strip() else []
        for part in parts:
            part = part.strip()
            if part and part not in seen:
                seen.add(part)
                out.append(part)
    return out


def _apply_config_file(ap: argparse.ArgumentParser, args, path: str) -> None:
    """Fill options left at their defaults from a JSON/YAML settings file."""
    cfg_path = os.path.abspath(path)
    try:
        with open(cfg_path, 'r', encoding='utf-8') as f:
            if cfg_path.lower().endswith(('.yaml', '.yml')):
                payload = yaml.safe_load(f)
            else:
                payload = json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        ap.error(f"Failed to read settings from {path}: {exc}")
    if not isinstance(payload, dict):
        ap.error(f"Settings file must contain an object at the top level: {path}")
    cfg_args = payload.get('arguments', payload)
    if not isinstance(cfg_args, dict):
        ap.error(f"Settings file must provide an 'arguments' object: {path}")

    ref_dir = os.path.dirname(cfg_path)
    for key, value in cfg_args.items():
        target_key = key if hasattr(args, key) else key.replace('-', '_')
        if target_key in {'config', 'config_path', 'json_payload'} or not hasattr(args, target_key):
            continue
        if getattr(args, target_key) == ap.get_default(target_key):
            setattr(args, target_key, value)
    # Relative input paths in a settings file are relative to that file
    for key in ('data', 'states', 'outdir'):
        val = getattr(args, key, None)
        if isinstance(val, str) and val and not os.path.isabs(val) and not val.lower().startswith(('http://', 'https://')):
            if val == ap.get_default(key):
                continue
            setattr(args, key, os.path.join(ref_dir, val))
    args.config_path = cfg_path
    args.json_payload = payload


def parse_args(argv=None):
    ap = argparse.ArgumentParser(
        description=(
            "ANOMPLOT climate anomaly dashboard: run as GUI (default when Tk/display exists) "
            "or as batch/headless to write dashboard PNG frames."
        ),
        formatter_class=argparse.RawTextHelpFormatter,
        epilog=(
            "Examples\n"
            "  # 1) Launch the dashboard\n"
            "  python3 anomplot.py --data data/cmip_us_grid_tas_pr_anom2.csv\n\n"
            "  # 2) Batch: every year of precipitation, US average\n"
            "  python3 anomplot.py --run-mode batch --data grid.csv --variable pr --year all --outdir frames\n\n"
            "  # 3) Batch: a lon/lat box over the Southwest for two years\n"
            "  python3 anomplot.py --run-mode batch --data grid.csv --bbox -120 31 -103 42 --year 1990,2050\n\n"
            "  # 4) Batch: one state's history, settings from YAML\n"
            "  python3 anomplot.py --config run.yaml --state Colorado\n\n"
            "Notes\n"
            "- --states accepts TopoJSON (us-atlas), GeoJSON, shapefile, zip, or a URL.\n"
            "- A .json/.yaml/.yml file given to --data is read as a settings file.\n"
            "- If Tk is unavailable, install python3-tk or use --run-mode batch.\n"
        ),
    )
    ap.add_argument('-f', '--data', help='Path to gridded anomaly data (CSV/text or NetCDF).')
    ap.add_argument('--states', default=None, help='Path/URL to state boundaries (default: us-atlas states-10m TopoJSON).')
    ap.add_argument('--config', default=None, help='JSON/YAML settings file; its "arguments" fill options not given on the command line.')
    ap.add_argument('--variable', action='append', help='Variable(s) to show: tas, pr. Repeat or separate with commas.')
    ap.add_argument('--year', action='append', help='Year(s) to render in batch mode, or "all". Default: first year.')
    ap.add_argument('--bbox', nargs=4, type=float, default=None, metavar=('LON0', 'LAT0', 'LON1', 'LAT1'),
                    help='Batch region selection box in degrees (e.g., --bbox -120 31 -103 42).')
    ap.add_argument('--state', default=None, help='Batch state selection by name or id (e.g., Colorado).')
    ap.add_argument('--delim', help='Explicit delimiter for text data (e.g., "," or "tab").')
    ap.add_argument('--encoding', help='File encoding (e.g., latin1, utf-8).')
    ap.add_argument('--outdir', default='outputs', help='Output directory for batch mode (default to outputs).')
    ap.add_argument('--workers', type=int, default=0, help='Number of parallel workers for batch rendering (0=auto).')
    ap.add_argument('--dpi', type=int, default=150, help='Resolution of batch PNG frames (default 150).')
    ap.add_argument('--export-csv', action='store_true', help='Also export per-state mean anomalies to CSV in batch mode.')
    ap.add_argument('--run-mode', choices=['gui', 'batch'], help='Execution mode: "gui" opens the dashboard (default), "batch" runs headless.')
    ap.add_argument('--log-file', help='Write logs to this file (appends). If directory given, a timestamped file is created.')
    ap.add_argument('--log-level', default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], help='Logging level (default INFO).')

    args = ap.parse_args(argv)
    args.config_path = None
    args.json_payload = None

    config_file = args.config
    if args.data and args.data.lower().endswith(('.json', '.yaml', '.yml')):
        logging.info("Input '%s' detected as a settings file.", args.data)
        config_file = config_file or args.data
        args.data = None
    if config_file:
        _apply_config_file(ap, args, config_file)

    args.variable_list = _split_tokens(args.variable)
    args.year_list = _split_tokens(args.year)
    return args


def _setup_logging(args) -> None:
    level = getattr(logging, str(args.log_level).upper(), logging.INFO)
    if args.log_file:
        log_path = args.log_file
        if os.path.isdir(log_path):
            ts = datetime.datetime.now(datetime.timezone.utc).strftime('%Y%m%d_%H%M%S')
            log_path = os.path.join(log_path, f'anomplot_{ts}.log')
        logging.basicConfig(
            level=level,
            format='%(asctime)s %(levelname)s %(message)s',
            handlers=[
                logging.FileHandler(log_path, mode='a'),
                logging.StreamHandler(sys.stdout),
            ],
        )
        logging.info("Logging started -> %s", log_path)
    else:
        logging.basicConfig(level=level, format='%(levelname)s %(message)s')


def main(argv=None):
    args = parse_args(argv)
    _setup_logging(args)

    def _excepthook(exc_type, exc, tb):
        logging.critical("UNCAUGHT EXCEPTION", exc_info=(exc_type, exc, tb))
        sys.__excepthook__(exc_type, exc, tb)
    sys.excepthook = _excepthook

    if args.run_mode == 'batch':
        logging.info("Batch mode explicitly requested.")
        matplotlib.use('Agg')
        from batch import _batch_mode
        return _batch_mode(args)

    from gui import USING_TK, run_gui

    if not USING_TK:
        logging.error(
            "Unable to initialize GUI: Matplotlib backend '%s' is not TkAgg. Falling back to batch mode.",
            matplotlib.get_backend(),
        )
        from batch import _batch_mode
        return _batch_mode(args)

    return run_gui(args, app_version=ANOMPLOT_VERSION)


if __name__ == '__main__':
    sys.exit(main())
