# test_engine_simulator.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin

import unittest

import numpy as np

import constants as c
import engine_simulator as es
from engine_simulator import EngineMode, EngineSimulator
from platform_adapters import ManualTimeProvider, SeededRandomProvider


# =================================================================
# 1. SHARED INFRASTRUCTURE
# =================================================================
class BaseSimulatorTest(unittest.TestCase):
    """Simulator on a manual clock with a fixed seed."""

    SEED = 42

    def make_simulator(self, seed=None, sensor_noise=True):
        clock = ManualTimeProvider()
        rng = SeededRandomProvider(self.SEED if seed is None else seed)
        sim = EngineSimulator(clock, rng, sensor_noise=sensor_noise)
        sim.initialize()
        return sim, clock

    def run_ticks(self, sim, clock, ticks, on_tick=None):
        for i in range(ticks):
            clock.advance(c.UPDATE_INTERVAL_MS)
            self.assertTrue(sim.tick())
            if on_tick:
                on_tick(i, sim)


# =================================================================
# 2. LIFECYCLE
# =================================================================
class TestSimulatorLifecycle(BaseSimulatorTest):
    def test_initialize_cold_start(self):
        sim, _ = self.make_simulator()
        status = sim.get_snapshot()

        self.assertIs(sim.get_mode(), EngineMode.STARTUP)
        self.assertEqual(status.response, ord("A"))
        self.assertEqual(status.get_rpm(), 0)
        self.assertEqual(status.get_coolant_temp(), 20)
        self.assertEqual(status.get_intake_temp(), 20)
        self.assertEqual(status.get_map(), c.MAP_ATMOSPHERIC)
        self.assertEqual(status.batteryv, c.VOLTAGE_NORMAL)
        self.assertEqual(status.baro, c.BARO_SEALEVEL)
        self.assertEqual(status.tps, c.TPS_IDLE)

    def test_tick_is_rate_limited(self):
        sim, clock = self.make_simulator()
        self.assertFalse(sim.tick())
        clock.advance(c.UPDATE_INTERVAL_MS - 1)
        self.assertFalse(sim.tick())
        clock.advance(1)
        self.assertTrue(sim.tick())
        self.assertEqual(sim.get_snapshot().get_loops(), 1)

    def test_rapid_polling_changes_nothing(self):
        sim, clock = self.make_simulator()
        self.run_ticks(sim, clock, 40)

        before_bytes = sim.get_snapshot().encode()
        before_state = sim.get_state()
        clock.advance(c.UPDATE_INTERVAL_MS // 2)

        self.assertFalse(sim.tick())
        self.assertEqual(sim.get_snapshot().encode(), before_bytes)
        self.assertEqual(sim.get_state(), before_state)

    def test_explicit_timestamp(self):
        sim, _ = self.make_simulator()
        self.assertTrue(sim.tick(now=c.UPDATE_INTERVAL_MS))
        self.assertFalse(sim.tick(now=c.UPDATE_INTERVAL_MS + 10))

    def test_loop_and_second_counters(self):
        sim, clock = self.make_simulator()
        self.run_ticks(sim, clock, c.TICKS_PER_SECOND * 3)
        status = sim.get_snapshot()
        self.assertEqual(status.get_loops(), 60)
        self.assertEqual(status.secl, 3)
        self.assertEqual(status.get_free_ram(), c.FREE_RAM_BYTES)

    def test_runtime_seconds(self):
        sim, clock = self.make_simulator()
        clock.advance(5999)
        self.assertEqual(sim.get_runtime_seconds(), 5)

    def test_snapshot_is_a_copy(self):
        sim, clock = self.make_simulator()
        self.run_ticks(sim, clock, 5)
        snapshot = sim.get_snapshot()
        snapshot.set_rpm(4321)
        self.assertNotEqual(sim.get_snapshot().get_rpm(), 4321)


# =================================================================
# 3. INVARIANTS
# =================================================================
class TestSimulatorInvariants(BaseSimulatorTest):
    def test_bounds_hold_for_every_tick(self):
        for seed in (1, 7, 42):
            sim, clock = self.make_simulator(seed=seed)

            def check(i, sim):
                status = sim.get_snapshot()
                state = sim.get_state()
                self.assertTrue(c.RPM_MIN <= state["rpm"] <= c.RPM_MAX, f"seed {seed} tick {i}")
                self.assertEqual(status.get_rpm(), state["rpm"])
                self.assertTrue(-40 <= status.get_coolant_temp() <= 215)
                self.assertTrue(-40 <= status.get_intake_temp() <= 215)
                self.assertTrue(0 <= status.tps <= 100)
                self.assertTrue(c.PW_MIN <= status.get_pulse_width() <= c.PW_MAX)
                self.assertTrue(c.VE_MIN <= status.ve <= c.VE_MAX)
                self.assertTrue(c.TIMING_MIN <= status.advance <= c.TIMING_MAX)
                self.assertTrue(90 <= status.egocorrection <= 110)
                self.assertIn(status.errors, (0, 1, 2, 3))
                self.assertEqual(len(status.encode()), c.ENGINE_STATUS_SIZE)

            self.run_ticks(sim, clock, 180 * c.TICKS_PER_SECOND, check)

    def test_startup_then_warmup_then_idle(self):
        sim, clock = self.make_simulator()
        modes = [sim.get_mode()]

        for _ in range(200):
            clock.advance(c.UPDATE_INTERVAL_MS)
            sim.tick()
            if sim.get_mode() is not modes[-1]:
                modes.append(sim.get_mode())
            if sim.get_mode() is EngineMode.IDLE:
                break

        self.assertEqual(modes, [EngineMode.STARTUP, EngineMode.WARMUP_IDLE, EngineMode.IDLE])

    def test_startup_cranks_for_crank_period(self):
        sim, clock = self.make_simulator()
        self.run_ticks(sim, clock, c.STARTUP_CRANK_MS // c.UPDATE_INTERVAL_MS - 1)
        self.assertIs(sim.get_mode(), EngineMode.STARTUP)
        self.assertGreater(sim.get_snapshot().get_rpm(), c.RPM_IDLE_MIN // 2)
        self.run_ticks(sim, clock, 1)
        self.assertIs(sim.get_mode(), EngineMode.WARMUP_IDLE)

    def test_coolant_never_drops_during_warmup(self):
        for seed in (3, 42):
            sim, clock = self.make_simulator(seed=seed)
            coolant = []
            ticks = c.WARMUP_TIME_MS // c.UPDATE_INTERVAL_MS - 1
            self.run_ticks(sim, clock, ticks, lambda i, s: coolant.append(s.get_state()["coolant_c"]))
            self.assertTrue(np.all(np.diff(coolant) >= 0), f"seed {seed}")

    def test_temperatures_move_in_small_steps(self):
        # coolant closes 5 % and intake 10 % of the gap to target per tick
        MAX_COOLANT_STEP_C = 4.0
        MAX_INTAKE_STEP_C = 3.0

        for seed in (1, 5, 42):
            sim, clock = self.make_simulator(seed=seed)
            coolant, intake = [], []

            def record(i, s):
                state = s.get_state()
                coolant.append(state["coolant_c"])
                intake.append(state["intake_c"])

            self.run_ticks(sim, clock, 60 * c.TICKS_PER_SECOND, record)
            sim.set_mode(EngineMode.HIGH_RPM)
            self.run_ticks(sim, clock, 10 * c.TICKS_PER_SECOND, record)
            sim.set_mode(EngineMode.IDLE)
            self.run_ticks(sim, clock, 10 * c.TICKS_PER_SECOND, record)

            self.assertLessEqual(np.max(np.abs(np.diff(coolant))), MAX_COOLANT_STEP_C, f"seed {seed}")
            self.assertLessEqual(np.max(np.abs(np.diff(intake))), MAX_INTAKE_STEP_C, f"seed {seed}")

    def test_map_rises_from_idle_to_wot(self):
        sim, clock = self.make_simulator(sensor_noise=False)

        sim.set_mode(EngineMode.IDLE)
        self.run_ticks(sim, clock, 20)
        idle_map = sim.get_snapshot().get_map()

        sim.set_mode(EngineMode.WOT)
        self.run_ticks(sim, clock, 20)
        wot_map = sim.get_snapshot().get_map()

        self.assertGreater(wot_map, idle_map)

    def test_deceleration_returns_to_idle(self):
        sim, clock = self.make_simulator()
        sim.set_mode(EngineMode.WOT)
        self.run_ticks(sim, clock, 40)
        sim.set_mode(EngineMode.DECELERATION)

        seen = []
        self.run_ticks(sim, clock, 400, lambda i, s: seen.append(s.get_mode()))
        self.assertIn(EngineMode.IDLE, seen)

    def test_rpm_follows_target_from_above(self):
        sim, clock = self.make_simulator()
        sim.set_mode(EngineMode.WOT)
        self.run_ticks(sim, clock, 40)
        high = sim.get_state()["rpm"]

        sim.set_mode(EngineMode.LIGHT_LOAD)
        self.run_ticks(sim, clock, 10)
        self.assertLess(sim.get_state()["rpm"], high)


# =================================================================
# 4. DETERMINISM / OVERRIDES
# =================================================================
class TestSimulatorDeterminism(BaseSimulatorTest):
    def _trace(self, seed, ticks=400):
        sim, clock = self.make_simulator(seed=seed)
        trace = []
        self.run_ticks(sim, clock, ticks, lambda i, s: trace.append(s.get_snapshot().encode()))
        return trace

    def test_same_seed_same_bytes(self):
        self.assertEqual(self._trace(1234), self._trace(1234))

    def test_different_seed_different_bytes(self):
        self.assertNotEqual(self._trace(1), self._trace(2))

    def test_explicit_timestamps_match_provider_clock(self):
        provider_sim, provider_clock = self.make_simulator(seed=9)
        explicit_sim, explicit_clock = self.make_simulator(seed=9)

        for i in range(200):
            provider_clock.advance(c.UPDATE_INTERVAL_MS)
            explicit_clock.advance(c.UPDATE_INTERVAL_MS)
            if i == 100:
                provider_sim.set_mode(EngineMode.WOT)
                explicit_sim.set_mode(EngineMode.WOT, now=explicit_clock.millis())
            provider_sim.tick()
            explicit_sim.tick(now=explicit_clock.millis())

        self.assertEqual(explicit_sim.get_snapshot(), provider_sim.get_snapshot())
        self.assertEqual(explicit_sim.get_state(), provider_sim.get_state())
        self.assertEqual(explicit_sim.get_runtime_seconds(), 10)

    def test_set_mode_applies_targets(self):
        sim, _ = self.make_simulator()
        sim.set_mode(EngineMode.WOT)
        state = sim.get_state()
        self.assertIs(sim.get_mode(), EngineMode.WOT)
        self.assertEqual(state["target_rpm"], c.RPM_REDLINE)
        self.assertEqual(state["target_throttle"], c.TPS_WOT)
        self.assertEqual(state["rpm_acceleration"], 1500)

    def test_mode_names(self):
        self.assertIs(EngineMode.from_api_name("light_load"), EngineMode.LIGHT_LOAD)
        self.assertEqual(EngineMode.WARMUP_IDLE.label, "Warming Up")
        with self.assertRaises(ValueError):
            EngineMode.from_api_name("turbo")

    def test_without_noise_sensors_read_true_values(self):
        sim, clock = self.make_simulator(sensor_noise=False)
        self.run_ticks(sim, clock, 60)
        status = sim.get_snapshot()
        self.assertEqual(status.tps, sim.get_state()["throttle"])
        self.assertEqual(status.o2, status.o2_2)
        self.assertEqual(status.batteryv, c.VOLTAGE_NORMAL)


# =================================================================
# 5. ENGINE MAPS
# =================================================================
class TestEngineMaps(unittest.TestCase):
    def test_ve(self):
        self.assertEqual(es.calculate_ve(800, 2), c.VE_MIN)
        self.assertEqual(es.calculate_ve(3000, 100), 85)
        self.assertEqual(es.calculate_ve(7000, 100), 75)
        self.assertGreater(es.calculate_ve(3000, 100), es.calculate_ve(3000, 20))

    def test_ignition_advance(self):
        self.assertEqual(es.calculate_ignition_advance(800, 35), 15)
        self.assertEqual(es.calculate_ignition_advance(3000, 95), 22)
        self.assertEqual(es.calculate_ignition_advance(7000, 20), c.TIMING_MAX)

    def test_required_pulse_width(self):
        self.assertEqual(es.calculate_required_pulse_width(0, 100, 100), c.PW_MAX)
        self.assertEqual(es.calculate_required_pulse_width(3000, 60, 80), 159)
        self.assertEqual(es.calculate_required_pulse_width(7000, 20, 30), c.PW_MIN)

    def test_warmup_enrichment(self):
        self.assertEqual(es.warmup_enrichment(-50), 140)
        self.assertEqual(es.warmup_enrichment(100), 130)
        self.assertEqual(es.warmup_enrichment(300), 120)
        self.assertEqual(es.warmup_enrichment(500), 110)
        self.assertEqual(es.warmup_enrichment(800), 100)

    def test_integer_helpers(self):
        self.assertEqual(es._cdiv(-7, 2), -3)
        self.assertEqual(es._cdiv(7, 2), 3)
        self.assertEqual(es._interpolate(0, 1, 5), 1)
        self.assertEqual(es._interpolate(10, 0, 5), 9)
        self.assertEqual(es._interpolate(200, 800, 5), 230)
        self.assertEqual(es._map_value(45, 10, 80, 45, 90), 67)


if __name__ == "__main__":
    unittest.main()
