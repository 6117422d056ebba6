from __future__ import annotations

import unittest

from aggregation import mean_by_state, states_touched_by, series_by_year, slice_stats, color_domain
from data_processing import prepare_grid, filter_cells
from geography import StateIndex
from grid_fixtures import cell, example_grid, make_states, multi_year_grid


class TestMeanByState(unittest.TestCase):
    def setUp(self) -> None:
        self.index = StateIndex(make_states())

    def test_each_state_gets_its_own_cell(self) -> None:
        means = mean_by_state(example_grid(), self.index)
        self.assertEqual(set(means), {'31', '36'})
        self.assertAlmostEqual(means['31'], 1.2)
        self.assertAlmostEqual(means['36'], -0.4)

    def test_state_without_finite_values_is_absent(self) -> None:
        grid = prepare_grid([
            cell(2000, 'tas', -100.0, 40.0, 1.0),
            cell(2000, 'tas', -101.0, 41.0, 3.0),
            cell(2000, 'tas', -106.0, 37.0, 'nan'),
            cell(2000, 'tas', -90.0, 30.0, 9.0),
        ])
        means = mean_by_state(grid, self.index)
        self.assertEqual(means, {'31': 2.0})
        self.assertNotIn('08', means)

    def test_empty_slice(self) -> None:
        self.assertEqual(mean_by_state(example_grid().iloc[:0], self.index), {})

    def test_independent_of_row_order(self) -> None:
        grid = filter_cells(multi_year_grid(), variable='tas')
        expected = mean_by_state(grid, self.index)
        for seed in (0, 1, 7):
            shuffled = grid.sample(frac=1, random_state=seed)
            means = mean_by_state(shuffled, self.index)
            self.assertEqual(set(means), set(expected))
            for state_id, value in expected.items():
                self.assertAlmostEqual(means[state_id], value, places=9)

    def test_states_touched_by(self) -> None:
        grid = multi_year_grid()
        self.assertEqual(states_touched_by(grid, self.index), {'Nebraska', 'New York'})
        outside = grid[grid['lat'] == 30.0]
        self.assertEqual(states_touched_by(outside, self.index), set())


class TestSeriesByYear(unittest.TestCase):
    def test_mean_of_example_cells(self) -> None:
        series = series_by_year(example_grid())
        self.assertEqual(len(series), 1)
        self.assertEqual(series[0][0], 2000)
        self.assertAlmostEqual(series[0][1], 0.4)

    def test_ascending_and_ignores_missing(self) -> None:
        grid = prepare_grid([
            cell(2050, 'tas', -100.0, 40.0, 3.0),
            cell(2000, 'tas', -100.0, 40.0, 1.0),
            cell(2000, 'tas', -75.0, 42.0, 'x'),
            cell(2010, 'tas', -100.0, 40.0, 'x'),
        ])
        self.assertEqual(series_by_year(grid), [(2000, 1.0), (2050, 3.0)])

    def test_pools_scenarios_within_a_year(self) -> None:
        grid = prepare_grid([
            cell(2020, 'tas', -100.0, 40.0, 1.0, scenario='ssp585'),
            cell(2020, 'tas', -75.0, 42.0, 3.0, scenario='historical'),
        ])
        self.assertEqual(series_by_year(grid), [(2020, 2.0)])

    def test_all_missing_gives_no_points(self) -> None:
        grid = prepare_grid([
            cell(2000, 'tas', -100.0, 40.0, 'x'),
            cell(2050, 'tas', -75.0, 42.0, ''),
        ])
        self.assertEqual(len(grid), 2)
        self.assertEqual(series_by_year(grid), [])

    def test_baseline_covers_every_year(self) -> None:
        grid = multi_year_grid()
        years = [y for y, _ in series_by_year(filter_cells(grid, variable='tas'))]
        self.assertEqual(years, [2000, 2010, 2050])


class TestSliceStats(unittest.TestCase):
    def test_stats(self) -> None:
        stats = slice_stats(example_grid())
        self.assertAlmostEqual(stats['mean'], 0.4)
        self.assertAlmostEqual(stats['min'], -0.4)
        self.assertAlmostEqual(stats['max'], 1.2)
        self.assertEqual(stats['count'], 2)

    def test_empty(self) -> None:
        self.assertEqual(slice_stats(example_grid().iloc[:0]),
                         {'mean': None, 'min': None, 'max': None, 'count': 0})


class TestColorDomain(unittest.TestCase):
    def test_symmetric_compressed_span(self) -> None:
        lo, hi = color_domain([1.2, -0.4])
        self.assertAlmostEqual(hi, 0.72)
        self.assertAlmostEqual(lo, -0.72)

    def test_largest_magnitude_may_be_negative(self) -> None:
        lo, hi = color_domain([0.5, -2.0, float('nan')])
        self.assertAlmostEqual(hi, 1.2)
        self.assertAlmostEqual(lo, -1.2)

    def test_empty_or_zero_slice_uses_unit_magnitude(self) -> None:
        self.assertEqual(color_domain([]), (-0.6, 0.6))
        self.assertEqual(color_domain([0.0, 0.0]), (-0.6, 0.6))


if __name__ == '__main__':
    unittest.main()
