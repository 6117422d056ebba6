from __future__ import annotations

import os
import tempfile
import unittest

import geopandas as gpd
import pandas as pd
from shapely.geometry import box

from geography import StateIndex, read_states
from grid_fixtures import make_states, multi_year_grid


class TestStateIndex(unittest.TestCase):
    def setUp(self) -> None:
        self.index = StateIndex(make_states())

    def test_membership_inside_and_outside(self) -> None:
        feature = self.index.membership(-100.0, 40.0)
        self.assertIsNotNone(feature)
        self.assertEqual(feature.name, 'Nebraska')
        self.assertEqual(feature.state_id, '31')
        self.assertIsNone(self.index.membership(-90.0, 30.0))
        self.assertIsNone(self.index.membership(float('nan'), 40.0))

    def test_boundary_point_is_not_contained(self) -> None:
        self.assertIsNone(self.index.membership(-95.0, 41.0))

    def test_first_feature_wins_on_overlap(self) -> None:
        states = make_states([
            ('A', 'Alpha', box(-110.0, 30.0, -100.0, 40.0)),
            ('B', 'Beta', box(-105.0, 35.0, -95.0, 45.0)),
        ])
        index = StateIndex(states)
        self.assertEqual(index.membership(-102.0, 37.0).state_id, 'A')
        cells = multi_year_grid().iloc[:0]
        self.assertTrue(index.assign_states(cells).empty)

        grid = multi_year_grid()
        overlap = grid.assign(lon180=-102.0, lat=37.0)
        self.assertEqual(set(index.assign_states(overlap)), {'A'})

    def test_assign_states(self) -> None:
        grid = multi_year_grid()
        assigned = self.index.assign_states(grid)
        self.assertEqual(len(assigned), len(grid))
        outside = grid['lat'] == 30.0
        self.assertTrue(assigned[outside].isna().all())
        self.assertEqual(set(assigned[grid['lon180'] == -75.0]), {'36'})
        # 0..360 longitudes resolve through lon180
        self.assertEqual(set(assigned[grid['lon'] == 260.0]), {'31'})

    def test_cells_in_state(self) -> None:
        grid = multi_year_grid()
        ny = self.index.cells_in_state(grid, '36')
        self.assertEqual(len(ny), 6)
        self.assertTrue((ny['lon180'] == -75.0).all())

    def test_lookup_by_name_and_id(self) -> None:
        self.assertEqual(self.index.find_by_name('new york').state_id, '36')
        self.assertEqual(self.index.find_by_name('08').name, 'Colorado')
        self.assertIsNone(self.index.find_by_name('Atlantis'))
        self.assertEqual(self.index.name_of('31'), 'Nebraska')
        self.assertEqual(self.index.state_names(['31', None, 'zz']), {'Nebraska'})
        self.assertEqual(len(self.index), 3)
        self.assertEqual(self.index.names(), ['Nebraska', 'New York', 'Colorado'])

    def test_requires_geodataframe(self) -> None:
        with self.assertRaises(TypeError):
            StateIndex(pd.DataFrame({'state_id': ['1'], 'name': ['One']}))


class TestReadStates(unittest.TestCase):
    def test_geojson_with_fips_and_name(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, 'states.geojson')
            raw = make_states().rename(columns={'state_id': 'STATEFP', 'name': 'NAME'})
            raw.to_file(path, driver='GeoJSON')
            states = read_states(path)
        self.assertEqual(list(states.columns), ['state_id', 'name', 'geometry'])
        self.assertEqual(states.crs.to_epsg(), 4326)
        self.assertEqual(dict(zip(states['state_id'], states['name']))['36'], 'New York')

    def test_reprojects_to_lonlat(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, 'states_albers.gpkg')
            make_states().to_crs(5070).to_file(path, driver='GPKG')
            states = read_states(path)
        index = StateIndex(states)
        self.assertEqual(index.membership(-100.0, 40.0).name, 'Nebraska')

    def test_missing_name_column(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, 'shapes.geojson')
            gpd.GeoDataFrame({'code': ['x']}, geometry=[box(0, 0, 1, 1)], crs=4326).to_file(path, driver='GeoJSON')
            with self.assertRaises(ValueError):
                read_states(path)

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            read_states('/nonexistent/states.json')


if __name__ == '__main__':
    unittest.main()
