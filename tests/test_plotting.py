from __future__ import annotations

import io
import unittest

import numpy as np
from matplotlib.colors import to_rgba
from matplotlib.figure import Figure

from config import NO_DATA_COLOR
from data_processing import distinct_years
from geography import StateIndex
from projection import _map_crs, project_lonlat
from plotting import (
    state_colors, format_tooltip, chart_title, draw_time_series,
    summary_text, build_dashboard_figure, render_dashboard,
)
from view_state import initial_state, reduce_view, build_dashboard, BrushEnd, SelectionSummary
from grid_fixtures import make_states, multi_year_grid


class TestStyling(unittest.TestCase):
    def test_state_colors(self) -> None:
        colors = state_colors(['hot', 'cold', 'none'], {'hot': 2.0, 'cold': -2.0}, (-1.0, 1.0))
        self.assertEqual(colors.shape, (3, 4))
        hot, cold, none = colors
        self.assertGreater(hot[0], hot[2])
        self.assertGreater(cold[2], cold[0])
        np.testing.assert_allclose(none, to_rgba(NO_DATA_COLOR))

    def test_tooltip(self) -> None:
        text = format_tooltip('Nebraska', 'historical', 2000, 'tas', 1.234)
        self.assertEqual(text, 'Nebraska\nhistorical, 2000\nTemp anomaly: 1.23 °C')
        text = format_tooltip('Colorado', 'ssp585', 2050, 'pr', None)
        self.assertEqual(text, 'Colorado\nssp585, 2050\nPrecip anomaly: N/A mm/yr')

    def test_chart_title(self) -> None:
        self.assertEqual(chart_title('tas', [1995, 2100]), 'Average temperature anomaly (°C, 1995-2100)')
        self.assertEqual(chart_title('pr', []), 'Average precipitation anomaly (mm / year)')

    def test_summary_text_defaults(self) -> None:
        text = summary_text(SelectionSummary())
        self.assertIn('Year: —', text)
        self.assertIn('States: No region selected. Showing US average.', text)


class TestRendering(unittest.TestCase):
    def test_time_series_lines(self) -> None:
        fig = Figure()
        ax = fig.add_subplot(111)
        draw_time_series(ax, [(2000, 0.1), (2010, 0.5)], [], 'tas', [2000, 2010])
        labels = [line.get_label() for line in ax.get_lines()]
        self.assertIn('US baseline', labels)
        self.assertIn('Selected region', labels)
        region = [line for line in ax.get_lines() if line.get_label() == 'Selected region'][0]
        self.assertEqual(len(region.get_xdata()), 0)
        ymin, ymax = ax.get_ylim()
        self.assertLess(ymin, 0.1)
        self.assertGreater(ymax, 0.5)

    def test_render_full_dashboard(self) -> None:
        dataset = multi_year_grid()
        states = make_states()
        index = StateIndex(states)
        crs, tf_fwd, _tf_inv = _map_crs()
        years = distinct_years(dataset)
        x, y = project_lonlat(tf_fwd, [-100.0], [40.0])
        state = reduce_view(initial_state(years),
                            BrushEnd((x[0] - 5e4, y[0] - 5e4, x[0] + 5e4, y[0] + 5e4)), years)
        view = build_dashboard(state, dataset, index, tf_fwd)

        fig = Figure(figsize=(15, 7.5))
        axes = build_dashboard_figure(fig)
        self.assertEqual(set(axes), {'map', 'legend', 'chart', 'summary'})
        render_dashboard(axes, view, states.to_crs(crs), tf_fwd=tf_fwd, years=years)

        self.assertEqual(axes['map'].get_title(), 'Temperature anomaly (°C): historical, 2000')
        self.assertEqual(axes['chart'].get_title(loc='left'), 'Average temperature anomaly (°C, 2000-2050)')
        self.assertEqual(axes['legend'].get_xlabel(), 'Temperature anomaly (°C)')
        self.assertEqual(len(axes['map'].patches), 1)
        summary = axes['summary'].texts[0].get_text()
        self.assertIn('States: Nebraska', summary)

        buf = io.BytesIO()
        fig.savefig(buf, format='png', dpi=50)
        self.assertGreater(buf.tell(), 0)


if __name__ == '__main__':
    unittest.main()
