from __future__ import annotations

import contextlib
import io
import json
import os
import tempfile
import unittest

import matplotlib.pyplot as plt
import pandas as pd

from anomplot import parse_args
from batch import _batch_mode, _resolve_worker_count, _resolve_years
from example_inputs.gen_sample_grid import generate_example_grid_csv
from grid_fixtures import make_states


class TestHelpers(unittest.TestCase):
    def test_resolve_years(self) -> None:
        years = [2000, 2010, 2050]
        args = parse_args(['--data', 'grid.csv'])
        self.assertEqual(_resolve_years(args, years), [2000])
        args = parse_args(['--data', 'grid.csv', '--year', 'all'])
        self.assertEqual(_resolve_years(args, years), years)
        args = parse_args(['--data', 'grid.csv', '--year', '2050,1999', '--year', 'abc 2010'])
        with self.assertLogs(level='WARNING'):
            self.assertEqual(_resolve_years(args, years), [2050, 2010])

    def test_resolve_worker_count(self) -> None:
        self.assertEqual(_resolve_worker_count(4, 2), 2)
        self.assertEqual(_resolve_worker_count(1, 10), 1)
        self.assertGreaterEqual(_resolve_worker_count(0, 3), 1)
        self.assertLessEqual(_resolve_worker_count(0, 3), 3)


class TestBatchMode(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        plt.switch_backend('Agg')

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.td = self._tmp.name
        self.grid = os.path.join(self.td, 'grid.csv')
        generate_example_grid_csv(self.grid, years=[2000, 2050], lats=[40.0, 42.0], lons=[260.0, 285.0])
        self.states = os.path.join(self.td, 'states.geojson')
        make_states().to_file(self.states, driver='GeoJSON')
        self.outdir = os.path.join(self.td, 'out')

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _args(self, *extra):
        return parse_args([
            '--run-mode', 'batch', '--data', self.grid, '--states', self.states, '--outdir', self.outdir,
            '--workers', '1', '--dpi', '40', *extra,
        ])

    def test_all_years_country_view(self) -> None:
        rc = _batch_mode(self._args('--year', 'all', '--export-csv'))
        self.assertEqual(rc, 0)
        files = set(os.listdir(self.outdir))
        for name in ('grid_tas_2000.png', 'grid_tas_2050.png', 'grid_pr_2000.png', 'grid_pr_2050.png',
                     'grid_summary_tas.csv', 'grid_summary_pr.csv', 'grid_state_means.csv', 'grid.json'):
            self.assertIn(name, files)

        summary = pd.read_csv(os.path.join(self.outdir, 'grid_summary_tas.csv'))
        self.assertEqual(summary['year'].tolist(), [2000, 2050])
        self.assertEqual(summary['scenario'].tolist(), ['historical', 'ssp585'])
        self.assertEqual(summary['selection'].unique().tolist(), ['NoSelection'])
        self.assertEqual(summary['n_cells'].tolist(), [4, 4])

        means = pd.read_csv(os.path.join(self.outdir, 'grid_state_means.csv'), dtype={'state_id': str})
        self.assertEqual(set(means['name']), {'Nebraska', 'New York'})

        with open(os.path.join(self.outdir, 'grid.json'), encoding='utf-8') as f:
            snapshot = json.load(f)
        self.assertEqual(len(snapshot['outputs']['plots']), 4)
        self.assertEqual(snapshot['arguments']['dpi'], 40)

    def test_state_selection(self) -> None:
        rc = _batch_mode(self._args('--variable', 'tas', '--state', 'new york'))
        self.assertEqual(rc, 0)
        self.assertTrue(os.path.exists(os.path.join(self.outdir, 'grid_tas_2000.state_New_York.png')))
        summary = pd.read_csv(os.path.join(self.outdir, 'grid_summary_tas.state_New_York.csv'))
        self.assertEqual(summary.loc[0, 'selection'], 'StateSelection')
        self.assertEqual(summary.loc[0, 'states'], 'New York')
        self.assertEqual(summary.loc[0, 'n_cells'], 1)

    def test_bbox_selection(self) -> None:
        rc = _batch_mode(self._args('--variable', 'pr', '--year', '2050', '--bbox', '-101', '39', '-99', '41'))
        self.assertEqual(rc, 0)
        summary = pd.read_csv(os.path.join(self.outdir, 'grid_summary_pr.bbox.csv'))
        self.assertEqual(summary.loc[0, 'selection'], 'BoxSelection')
        self.assertEqual(summary.loc[0, 'year'], 2050)
        self.assertEqual(summary.loc[0, 'states'], 'Nebraska')

    def test_usage_errors(self) -> None:
        self.assertEqual(_batch_mode(parse_args(['--run-mode', 'batch'])), 2)
        with self.assertLogs(level='ERROR'):
            self.assertEqual(_batch_mode(self._args('--variable', 'huss')), 2)
        with self.assertLogs(level='ERROR'):
            self.assertEqual(_batch_mode(self._args('--state', 'Atlantis')), 2)
        # A box from a settings file bypasses argparse's count check
        args = self._args()
        args.bbox = '1,2,3'
        with self.assertLogs(level='ERROR'):
            self.assertEqual(_batch_mode(args), 2)
        args.bbox = ['a', 39, -99, 41]
        with self.assertLogs(level='ERROR'):
            self.assertEqual(_batch_mode(args), 2)

    def test_bbox_from_settings_string(self) -> None:
        args = self._args('--variable', 'pr', '--year', '2050')
        args.bbox = '-101,39,-99,41'
        self.assertEqual(_batch_mode(args), 0)
        summary = pd.read_csv(os.path.join(self.outdir, 'grid_summary_pr.bbox.csv'))
        self.assertEqual(summary.loc[0, 'states'], 'Nebraska')

    def test_load_failure(self) -> None:
        args = self._args()
        args.data = os.path.join(self.td, 'missing.csv')
        with self.assertLogs(level='ERROR'):
            self.assertEqual(_batch_mode(args), 1)
        self.assertFalse(os.path.exists(self.outdir))


class TestParseArgs(unittest.TestCase):
    def test_lists_are_split(self) -> None:
        args = parse_args(['--data', 'g.csv', '--variable', 'tas,pr', '--variable', 'tas', '--year', '2000 2010'])
        self.assertEqual(args.variable_list, ['tas', 'pr'])
        self.assertEqual(args.year_list, ['2000', '2010'])
        self.assertIsNone(args.config_path)

    def test_bbox_takes_four_numbers(self) -> None:
        args = parse_args(['--data', 'g.csv', '--bbox', '-120', '31', '-103', '42'])
        self.assertEqual(args.bbox, [-120.0, 31.0, -103.0, 42.0])
        self.assertIsNone(parse_args(['--data', 'g.csv']).bbox)
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                parse_args(['--data', 'g.csv', '--bbox', '1', '2', '3'])

    def test_yaml_settings_fill_defaults_only(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = os.path.join(td, 'run.yaml')
            with open(cfg, 'w', encoding='utf-8') as f:
                f.write("arguments:\n  data: grid.csv\n  year: [2000, 2050]\n  workers: 2\n  dpi: 72\n")
            args = parse_args(['--config', cfg, '--dpi', '200'])
        self.assertEqual(args.data, os.path.join(td, 'grid.csv'))
        self.assertEqual(args.year_list, ['2000', '2050'])
        self.assertEqual(args.workers, 2)
        self.assertEqual(args.dpi, 200)
        self.assertEqual(args.config_path, os.path.abspath(cfg))

    def test_json_given_as_data_is_settings(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = os.path.join(td, 'run.json')
            with open(cfg, 'w', encoding='utf-8') as f:
                json.dump({'data': '/abs/grid.csv', 'state': 'Colorado'}, f)
            args = parse_args(['--data', cfg])
        self.assertEqual(args.data, '/abs/grid.csv')
        self.assertEqual(args.state, 'Colorado')


if __name__ == '__main__':
    unittest.main()
