# logger.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin

import csv

LOGFILE = "engine_log.csv"


class Logger:
    """CSV telemetry log: one row per accepted engine tick."""

    def __init__(self, simulator, path=LOGFILE):
        self.simulator = simulator
        self.start_ms = simulator.time_provider.millis()
        self.csv_file = open(path, "w", newline="")
        self.writer = csv.writer(self.csv_file)
        self.rows = 0

        snapshot_keys = simulator.get_snapshot().as_dict().keys()
        HEADER_KEYS = ["time_s", "mode", *snapshot_keys]

        self.writer.writerow(HEADER_KEYS)

    # ---------------------------------------------------------------------------
    def log(self):
        t = (self.simulator.time_provider.millis() - self.start_ms) / 1000.0
        snapshot = self.simulator.get_snapshot().as_dict()

        ROW_VALUES = [t, self.simulator.get_mode().api_name, *snapshot.values()]

        final_row = [
            "{:.2f}".format(v) if isinstance(v, float) else str(v) for v in ROW_VALUES
        ]
        self.writer.writerow(final_row)
        self.csv_file.flush()
        self.rows += 1

    def close(self):
        self.csv_file.close()
