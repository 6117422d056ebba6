"""
GUI components for ANOMPLOT.

This module implements the Tkinter-based interactive dashboard.
Features include:
- Background loading of the grid dataset and state boundaries (both must
  succeed before the dashboard is built).
- Year slider and variable selector driving the state choropleth.
- Rectangle brush over the map (left-drag) selecting a region; click on a
  state to select that state's full history; Escape clears the selection.
- Hover tooltip with state name, scenario, year and mean anomaly.
- Paired time-series chart and selection summary panel.
- Export of the current dashboard to an image file.
"""

import os
import logging
import threading
from typing import Optional, List

import matplotlib


def _select_backend() -> bool:
    """Use TkAgg when a display and tkinter are available, Agg otherwise. Returns True for Tk."""
    has_display = bool(os.environ.get('DISPLAY') or os.environ.get('WAYLAND_DISPLAY'))
    if has_display:
        try:
            import tkinter  # noqa: F401
            matplotlib.use('TkAgg')
            return True
        except ImportError:
            logging.debug("tkinter is not installed; using the Agg backend.")
        except Exception as exc:
            logging.debug("TkAgg backend unavailable (%s); using Agg.", exc)
    matplotlib.use('Agg')
    return False


USING_TK = _select_backend()
if USING_TK:
    import tkinter as tk  # type: ignore
    from tkinter import filedialog, ttk  # type: ignore
else:
    tk = None  # type: ignore
    ttk = None  # type: ignore
    filedialog = None  # type: ignore

import matplotlib.pyplot as plt  # noqa: E402
import matplotlib.patches as mpatches  # noqa: E402

from config import (
    DEFAULT_DATA_PATH, DEFAULT_STATES_URL, DEFAULT_INPUTS_INITIALDIR, DEFAULT_VARIABLE, load_settings,
    save_settings,
)
from data_processing import load_inputs, distinct_years, available_variables
from geography import StateIndex
from plotting import (
    build_dashboard_figure, render_dashboard, draw_state_outline, format_tooltip,
)
from projection import _map_crs, unproject_xy
from view_state import (
    initial_state, reduce_view, build_dashboard, YearIndexChanged, VariableChanged, BrushEnd,
    StateClicked, SelectionCleared,
)

# Drags shorter than this fraction of the map width count as clicks
_CLICK_TOLERANCE = 0.004


class AnomalyGUI:
    def __init__(self, root, data_path: Optional[str], states_path: Optional[str], *, cli_args=None,
                 app_version: Optional[str] = None):
        self.root = root
        title = "Climate Anomaly Dashboard"
        if app_version:
            title = f"{title} v{app_version}"
        self.root.title(title)
        self.root.protocol("WM_DELETE_WINDOW", self._on_close)

        self.cli_args = cli_args
        settings = load_settings()
        last_paths = settings.get('last_paths', {}) if isinstance(settings.get('last_paths'), dict) else {}
        ui_state = settings.get('ui_state', {}) if isinstance(settings.get('ui_state'), dict) else {}

        self.data_path = data_path or last_paths.get('data') or (
            DEFAULT_DATA_PATH if os.path.exists(DEFAULT_DATA_PATH) else None)
        self.states_path = states_path or last_paths.get('states') or DEFAULT_STATES_URL
        self.delim = getattr(cli_args, 'delim', None) if cli_args else None
        self.encoding = getattr(cli_args, 'encoding', None) if cli_args else None
        preferred = getattr(cli_args, 'variable_list', None) if cli_args else None
        self._preferred_variable = (preferred[0] if preferred else None) or ui_state.get('variable') or DEFAULT_VARIABLE

        self.dataset = None
        self.index: Optional[StateIndex] = None
        self.years: List[int] = []
        self.state = None
        self.view = None
        self.crs = None
        self.tf_fwd = None
        self.tf_inv = None
        self.states_plot = None

        self.fig = None
        self.axes = None
        self.canvas = None
        self.toolbar = None
        self._brush_press = None
        self._brush_rect = None
        self._hover_artists = []
        self._hover_id = None
        self._tooltip = None
        self._cids = []
        self.load_failed = False

        self.status_var = tk.StringVar(master=self.root, value='')
        self.variable_var = tk.StringVar(master=self.root, value=self._preferred_variable)
        self.year_label_var = tk.StringVar(master=self.root, value='—')
        self._build_layout()
        self.load_inputs()

    # ---- Settings / notifications ----
    def _save_settings(self) -> None:
        settings = {
            'last_paths': {
                'data': self.data_path or '',
                'states': self.states_path or '',
            },
            'ui_state': {
                'variable': self.variable_var.get() if self.variable_var else DEFAULT_VARIABLE,
            },
        }
        save_settings(settings)

    def _set_status(self, message: str, level: Optional[str] = None) -> None:
        prefix = f"{level.upper()}: " if level else ''
        collapsed = ' '.join(message.strip().split()) if message else ''
        self.status_var.set((prefix + collapsed)[:512])

    def _notify(self, level: str, title: str, message: str, exc: Optional[BaseException] = None, *, popup: bool = True):
        """Log the message and show a dialog. Levels: INFO, WARNING, ERROR."""
        lvl = level.upper()
        if exc is not None and lvl == 'ERROR':
            logging.error("%s: %s", title, message, exc_info=exc)
        else:
            getattr(logging, lvl.lower(), logging.info)("%s: %s", title, message)
        summary = message.strip().splitlines()[0] if message else ''
        if summary:
            self._set_status(summary, level=lvl)
        if popup and USING_TK:
            from tkinter import messagebox
            if lvl == 'INFO':
                messagebox.showinfo(title, message, parent=self.root)
            elif lvl == 'WARNING':
                messagebox.showwarning(title, message, parent=self.root)
            elif lvl == 'ERROR':
                messagebox.showerror(title, message, parent=self.root)

    def _on_close(self):
        """Save settings, close figures, and exit."""
        try:
            self._save_settings()
        finally:
            plt.close('all')
            self.root.destroy()

    # ---- Layout ----
    def _build_layout(self):
        from matplotlib.figure import Figure
        from matplotlib.backends.backend_tkagg import FigureCanvasTkAgg, NavigationToolbar2Tk

        frm = ttk.Frame(self.root, padding=8)
        frm.grid(row=0, column=0, sticky='nsew')
        self.frm = frm
        self.root.columnconfigure(0, weight=1)
        self.root.rowconfigure(0, weight=1)

        controls = ttk.Frame(frm)
        controls.grid(row=0, column=0, sticky='we')
        ttk.Label(controls, text="Variable:").pack(side='left')
        self.variable_menu = ttk.OptionMenu(controls, self.variable_var, self.variable_var.get(),
                                            command=lambda *_: self._on_variable_change())
        self.variable_menu.pack(side='left', padx=(4, 16))
        self.variable_menu.state(['disabled'])

        ttk.Label(controls, text="Year:").pack(side='left')
        self.year_scale = tk.Scale(controls, from_=0, to=0, orient=tk.HORIZONTAL, showvalue=False,
                                   resolution=1, length=360, command=self._on_year_slide, state='disabled')
        self.year_scale.pack(side='left', padx=4)
        ttk.Label(controls, textvariable=self.year_label_var, width=6).pack(side='left', padx=(0, 16))

        self.clear_btn = ttk.Button(controls, text="Clear selection",
                                    command=lambda: self._dispatch(SelectionCleared()))
        self.clear_btn.pack(side='left', padx=4)
        self.clear_btn.state(['disabled'])
        self.export_btn = ttk.Button(controls, text="Export image…", command=self._export_figure)
        self.export_btn.pack(side='left', padx=4)
        self.export_btn.state(['disabled'])

        plot_container = ttk.Frame(frm)
        plot_container.grid(row=1, column=0, sticky='nsew', pady=(6, 0))
        frm.columnconfigure(0, weight=1)
        frm.rowconfigure(1, weight=1)

        self.fig = Figure(figsize=(14, 7), dpi=100)
        self.axes = build_dashboard_figure(self.fig)
        self.canvas = FigureCanvasTkAgg(self.fig, master=plot_container)
        self.canvas.draw()
        self.canvas.get_tk_widget().pack(side='top', fill='both', expand=True)
        self.toolbar = NavigationToolbar2Tk(self.canvas, plot_container, pack_toolbar=False)
        self.toolbar.update()
        self.toolbar.pack(side='top', fill='x')

        ttk.Label(frm, textvariable=self.status_var, anchor='w', relief='sunken').grid(
            row=2, column=0, sticky='we', pady=(4, 0))
        self.root.bind('<Escape>', lambda _e: self._dispatch(SelectionCleared()))

    # ---- Loading ----
    def load_inputs(self):
        if not self.data_path:
            self.data_path = filedialog.askopenfilename(
                title="Select gridded anomaly data",
                initialdir=DEFAULT_INPUTS_INITIALDIR,
                filetypes=[('CSV / text', '*.csv *.txt'), ('NetCDF', '*.nc *.nc4'), ('All', '*.*')],
            ) or None
        if not self.data_path:
            self._fatal_load(ValueError("No grid data file selected."))
            return
        self._set_status(f"Loading {os.path.basename(self.data_path)} and state boundaries...", level='INFO')
        threading.Thread(target=self._load_inputs_worker, daemon=True).start()

    def _load_inputs_worker(self):
        def safe_notify(level, message):
            self.root.after(0, lambda: self._set_status(message, level=level))

        try:
            dataset, states = load_inputs(self.data_path, self.states_path, delim=self.delim,
                                          encoding=self.encoding, notify=safe_notify)
        except Exception as e:
            self.root.after(0, lambda e=e: self._fatal_load(e))
            return
        self.root.after(0, lambda: self._on_loaded(dataset, states))

    def _fatal_load(self, exc: BaseException):
        """Startup load failure: report once and close; no partial dashboard."""
        self.load_failed = True
        self._notify('ERROR', 'Startup Load Error', f"Could not load dashboard inputs:\n{exc}", exc=exc)
        self._on_close()

    def _on_loaded(self, dataset, states):
        self.dataset = dataset
        self.years = distinct_years(dataset)
        if not self.years:
            self._fatal_load(ValueError("Grid data contains no rows."))
            return
        self.index = StateIndex(states)
        self.crs, self.tf_fwd, self.tf_inv = _map_crs()
        self.states_plot = states.to_crs(self.crs)

        variables = [v for v in available_variables(dataset)]
        variable = self._preferred_variable if self._preferred_variable in variables else (
            DEFAULT_VARIABLE if DEFAULT_VARIABLE in variables else variables[0])
        menu = self.variable_menu['menu']
        menu.delete(0, 'end')
        for v in variables:
            menu.add_command(label=v, command=lambda v=v: (self.variable_var.set(v), self._on_variable_change()))
        self.variable_var.set(variable)

        self.state = initial_state(self.years, variable=variable)
        self.year_scale.configure(state='normal', to=len(self.years) - 1)
        self.year_scale.set(0)
        self.variable_menu.state(['!disabled'])
        self.clear_btn.state(['!disabled'])
        self.export_btn.state(['!disabled'])

        self._install_interaction()
        self._refresh()
        self._set_status(
            f"Loaded {len(dataset)} cells, {len(self.years)} years ({self.years[0]}-{self.years[-1]}), "
            f"{len(self.index)} states. Drag on the map to select a region; click a state for its history.",
            level='INFO',
        )

    # ---- State transitions ----
    def _dispatch(self, event):
        if self.state is None:
            return
        try:
            new_state = reduce_view(self.state, event, self.years)
        except ValueError as exc:
            self._notify('WARNING', 'Invalid Input', str(exc), popup=False)
            return
        if new_state == self.state:
            return
        self.state = new_state
        self._refresh()

    def _on_year_slide(self, value):
        try:
            index = int(round(float(value)))
        except (TypeError, ValueError):
            return
        self._dispatch(YearIndexChanged(index))

    def _on_variable_change(self):
        self._dispatch(VariableChanged(self.variable_var.get()))

    def _refresh(self):
        self.view = build_dashboard(self.state, self.dataset, self.index, self.tf_fwd)
        render_dashboard(self.axes, self.view, self.states_plot, tf_fwd=self.tf_fwd, years=self.years)
        self.year_label_var.set(str(self.state.year))
        self._hover_artists = []
        self._hover_id = None
        self._brush_rect = None
        self._tooltip = self.axes['map'].annotate(
            '', xy=(0, 0), xytext=(12, 12), textcoords='offset points', fontsize=9, zorder=20,
            bbox=dict(boxstyle='round,pad=0.3', fc='white', ec='#cccccc'),
        )
        self._tooltip.set_visible(False)
        self.canvas.draw_idle()

    # ---- Map interaction: hover, click and brush ----
    def _toolbar_active(self) -> bool:
        return bool(getattr(self.toolbar, 'mode', ''))

    def _state_at(self, x, y):
        geo = unproject_xy(self.tf_inv, x, y)
        if geo is None:
            return None
        return self.index.membership(*geo)

    def _clear_hover(self):
        for artist in self._hover_artists:
            artist.remove()
        self._hover_artists = []
        self._hover_id = None
        if self._tooltip is not None:
            self._tooltip.set_visible(False)

    def _on_hover(self, event):
        ax = self.axes['map']
        if event.inaxes != ax or event.xdata is None:
            if self._hover_id is not None or (self._tooltip is not None and self._tooltip.get_visible()):
                self._clear_hover()
                self.canvas.draw_idle()
            return
        feature = self._state_at(event.xdata, event.ydata)
        if feature is None:
            if self._hover_id is not None:
                self._clear_hover()
                self.canvas.draw_idle()
            return
        if feature.state_id != self._hover_id:
            self._clear_hover()
            geom = self.states_plot.geometry[self.states_plot['state_id'] == feature.state_id]
            if len(geom):
                self._hover_artists = draw_state_outline(ax, geom.iloc[0])
            self._hover_id = feature.state_id
        self._tooltip.xy = (event.xdata, event.ydata)
        self._tooltip.set_text(format_tooltip(
            feature.name, self.view.scenario, self.view.year, self.view.variable,
            self.view.state_means.get(feature.state_id),
        ))
        self._tooltip.set_visible(True)
        self.canvas.draw_idle()

    def _install_interaction(self):
        for cid in self._cids:
            self.canvas.mpl_disconnect(cid)
        ax = self.axes['map']

        def on_press(event):
            if event.inaxes != ax or event.button != 1 or self._toolbar_active():
                return
            self._brush_press = (event.xdata, event.ydata)
            rect = mpatches.Rectangle((event.xdata, event.ydata), 0, 0, fill=True, fc='#d6272822',
                                      ec='#d62728', lw=1.0, zorder=15)
            ax.add_patch(rect)
            self._brush_rect = rect

        def on_motion(event):
            if self._brush_press is None:
                self._on_hover(event)
                return
            if event.inaxes != ax or event.xdata is None:
                return
            x0, y0 = self._brush_press
            self._brush_rect.set_xy((min(x0, event.xdata), min(y0, event.ydata)))
            self._brush_rect.set_width(abs(event.xdata - x0))
            self._brush_rect.set_height(abs(event.ydata - y0))
            self.canvas.draw_idle()

        def on_release(event):
            if self._brush_press is None:
                return
            x0, y0 = self._brush_press
            self._brush_press = None
            if event.inaxes == ax and event.xdata is not None:
                x1, y1 = event.xdata, event.ydata
            else:
                rect = self._brush_rect
                x1, y1 = rect.get_x() + rect.get_width(), rect.get_y() + rect.get_height()
            if self._brush_rect is not None:
                self._brush_rect.remove()
                self._brush_rect = None
            xmin, xmax = ax.get_xlim()
            tol = abs(xmax - xmin) * _CLICK_TOLERANCE
            if abs(x1 - x0) <= tol and abs(y1 - y0) <= tol:
                feature = self._state_at(x0, y0)
                if feature is None:
                    self._dispatch(BrushEnd(None))
                else:
                    self._dispatch(StateClicked(feature.state_id, feature.name))
                self.canvas.draw_idle()
                return
            self._dispatch(BrushEnd((x0, y0, x1, y1)))
            self.canvas.draw_idle()

        self._cids = [
            self.canvas.mpl_connect('button_press_event', on_press),
            self.canvas.mpl_connect('motion_notify_event', on_motion),
            self.canvas.mpl_connect('button_release_event', on_release),
        ]

    # ---- Export ----
    def _export_figure(self):
        path = filedialog.asksaveasfilename(
            defaultextension='.png',
            initialfile=f"anomaly_{self.state.variable}_{self.state.year}.png" if self.state else 'anomaly.png',
            filetypes=[('PNG', '*.png'), ('PDF', '*.pdf'), ('SVG', '*.svg'), ('All', '*.*')],
        )
        if not path:
            return
        try:
            self.fig.savefig(path, dpi=150, bbox_inches='tight')
        except (OSError, ValueError) as e:
            self._notify('ERROR', 'Export Error', f'Failed to export: {e}', exc=e)
            return
        self._notify('INFO', 'Export Complete', f'Saved dashboard to {path}', popup=False)


def run_gui(args, app_version: Optional[str] = None) -> int:
    if not USING_TK:
        logging.error("Tk GUI is unavailable (no display or tkinter). Use --run-mode batch.")
        return 1
    root = tk.Tk()
    app = AnomalyGUI(root, args.data, args.states, cli_args=args, app_version=app_version)
    root.mainloop()
    return 1 if app.load_failed else 0
