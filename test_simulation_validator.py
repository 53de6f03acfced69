# test_simulation_validator.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin

import contextlib
import io
import unittest

import constants as c
from simulation_validator import SimulationValidator


class TestSimulationValidator(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.validator = SimulationValidator(duration_s=60, seed=42)
        with contextlib.redirect_stdout(io.StringIO()) as out:
            cls.results = cls.validator.run_tests()
        cls.report = out.getvalue()

    def test_fixed_seed_run_is_clean(self):
        self.assertEqual(self.validator.violations(self.results), [])

    def test_trace_shape(self):
        trace = self.validator.trace
        ticks = 60 * c.TICKS_PER_SECOND
        self.assertEqual(len(trace["time_ms"]), ticks)
        self.assertEqual(trace["time_ms"][0], c.UPDATE_INTERVAL_MS)
        self.assertEqual(len(trace["rpm"]), ticks)

    def test_report_lists_every_check(self):
        self.assertIn("SIMULATION VALIDATION REPORT", self.report)
        for name in self.results:
            self.assertIn(name, self.report)
        self.assertNotIn("FAIL", self.report)

    def test_quiet_run(self):
        validator = SimulationValidator(duration_s=10, seed=7, sensor_noise=False)
        with contextlib.redirect_stdout(io.StringIO()) as out:
            results = validator.run_tests(verbose=False)
        self.assertEqual(out.getvalue(), "")
        self.assertEqual(validator.violations(results), [])


if __name__ == "__main__":
    unittest.main()
