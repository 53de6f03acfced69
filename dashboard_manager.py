# dashboard_manager.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin

import matplotlib
matplotlib.use("TkAgg")
import matplotlib.pyplot as plt
from matplotlib.gridspec import GridSpec
import numpy as np

import constants as c

HISTORY_SECONDS = 30
HISTORY_LEN = HISTORY_SECONDS * c.TICKS_PER_SECOND


class DashboardManager:
    """Live telemetry window: text panel on the left, rolling traces on the right."""

    def __init__(self):
        self.fig = None
        self.base_text = None
        self.axes = {}
        self.lines = {}
        self.enabled = True
        self.stopped = False

        # rolling history, newest sample last
        self.time_s = np.zeros(HISTORY_LEN)
        self.history = {k: np.zeros(HISTORY_LEN) for k in ("rpm", "map", "clt", "tps")}
        self.samples = 0

    def get_or_create_figure(self):
        if self.fig is None:
            plt.ion()
            self.fig = plt.figure(figsize=(16, 9))
            engine_name = f"{c.ENGINE_DISPLACEMENT_CC / 1000:.1f}L I{c.NUM_CYL}"
            self.fig.suptitle(f"SPEEDUINO SERIAL SIMULATOR: {engine_name}", fontweight="bold")

            gs = GridSpec(4, 2, figure=self.fig,
                          width_ratios=[1, 3],
                          wspace=0.3,
                          hspace=0.5)

            # Left: text telemetry
            base_ax = self.fig.add_subplot(gs[:, 0])
            base_ax.axis('off')
            self.base_text = base_ax.text(0.05, 0.95, "", va='top', ha='left',
                                          fontsize=10, family='monospace')

            # Right: one trace per row
            panels = [
                ("rpm", "RPM", (0, c.RPM_MAX), "tab:blue"),
                ("map", "MAP (kPa)", (0, c.MAP_ATMOSPHERIC + 5), "tab:orange"),
                ("clt", "Coolant (°C)", (0, 120), "tab:red"),
                ("tps", "TPS (%)", (0, 105), "gold"),
            ]
            for row, (key, title, ylim, color) in enumerate(panels):
                ax = self.fig.add_subplot(gs[row, 1])
                ax.set_title(title)
                ax.set_xlim(-HISTORY_SECONDS, 0)
                ax.set_ylim(*ylim)
                ax.grid(alpha=0.3)
                (line,) = ax.plot([], [], color=color, lw=2)
                self.axes[key] = ax
                self.lines[key] = line

            self.fig.canvas.mpl_connect("key_press_event", self.on_key_press)
            self.fig.canvas.mpl_connect("close_event", self.on_close_event)

        return self.fig

    # ----------------------------------------------------------------------
    def update(self, simulator, protocol=None):
        if not self.enabled:
            return

        snapshot = simulator.get_snapshot().as_dict()
        state = simulator.get_state()
        now_s = simulator.time_provider.millis() / 1000.0

        self.time_s = np.roll(self.time_s, -1)
        self.time_s[-1] = now_s
        for key in self.history:
            self.history[key] = np.roll(self.history[key], -1)
            self.history[key][-1] = snapshot[key]
        self.samples = min(self.samples + 1, HISTORY_LEN)

        lines = [
            "╔══════════════════════════════════╗",
            "║         ENGINE TELEMETRY         ║",
            "╚══════════════════════════════════╝",
            "",
            f"Mode:       {simulator.get_mode().label}",
            f"Runtime:    {simulator.get_runtime_seconds():8d} s",
            "",
            "─ Engine ─",
            f"RPM:        {snapshot['rpm']:8d}   (→ {state['target_rpm']})",
            f"MAP:        {snapshot['map']:8d} kPa",
            f"TPS:        {snapshot['tps']:8d} %",
            f"CLT:        {snapshot['clt']:8d} °C",
            f"IAT:        {snapshot['iat']:8d} °C",
            f"Battery:    {snapshot['battery']:8.1f} V",
            "",
            "─ Fuel & Spark ─",
            f"VE:         {snapshot['ve']:8d} %",
            f"PW:         {snapshot['pw']:8.1f} ms",
            f"AFR target: {snapshot['afr']:8.1f}",
            f"WUE:        {snapshot['wue']:8d} %",
            f"EGO corr:   {snapshot['egocorrection']:8d} %",
            f"Advance:    {snapshot['advance']:8d} °BTDC",
        ]
        if protocol is not None:
            lines += [
                "",
                "─ Serial ─",
                f"Commands:   {protocol.command_count:8d}",
                f"Errors:     {protocol.error_count:8d}",
            ]

        self.get_or_create_figure()
        self.base_text.set_text("\n".join(lines))

        n = self.samples
        rel_t = self.time_s[-n:] - now_s
        for key, line in self.lines.items():
            line.set_data(rel_t, self.history[key][-n:])

    def draw(self):
        if self.enabled and self.fig:
            try:
                self.fig.canvas.draw_idle()
                self.fig.canvas.flush_events()
            except Exception:
                self.stopped = True  # window gone

    def close(self):
        if self.fig:
            plt.close(self.fig)
            self.fig = None

    # ----------------------------------------------------------------------
    def on_key_press(self, event):
        if event.key == "q":
            self.stopped = True

    def on_close_event(self, event):
        self.stopped = True
