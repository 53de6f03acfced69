# simulation_validator.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin

import argparse

import numpy as np

import constants as c
from engine_simulator import EngineMode, EngineSimulator
from platform_adapters import ManualTimeProvider, SeededRandomProvider

MODES = list(EngineMode)


class SimulationValidator:
    """
    Offline health check: drives the simulator on a manual clock with a fixed seed,
    records every accepted tick and audits the trace against the engine's hard limits.
    """

    def __init__(self, duration_s=120, seed=42, sensor_noise=c.SENSOR_NOISE_ENABLED):
        self.duration_s = duration_s
        self.seed = seed
        self.sensor_noise = sensor_noise
        self.trace = None

        # (low, high) inclusive, in wire/engineering units
        self.limits = {
            "rpm": (c.RPM_MIN, c.RPM_MAX),
            "clt": (c.TEMP_WIRE_MIN, c.TEMP_WIRE_MAX),
            "iat": (c.TEMP_WIRE_MIN, c.TEMP_WIRE_MAX),
            "tps": (0, 100),
            "map": (0, c.MAP_ATMOSPHERIC),
            "pw": (c.PW_MIN / 10.0, c.PW_MAX / 10.0),
            "ve": (c.VE_MIN, c.VE_MAX),
            "advance": (c.TIMING_MIN, c.TIMING_MAX),
            "egocorrection": (90, 110),
        }

    def _make_simulator(self):
        clock = ManualTimeProvider()
        rng = SeededRandomProvider(self.seed)
        sim = EngineSimulator(clock, rng, sensor_noise=self.sensor_noise)
        sim.initialize()
        return sim, clock

    # ----------------------------------------------------------------------
    def collect_trace(self):
        """One row per tick: time, mode index, internal coolant and every limited field."""
        sim, clock = self._make_simulator()
        ticks = self.duration_s * c.TICKS_PER_SECOND
        keys = list(self.limits)

        rows = np.zeros((ticks, 3 + len(keys)))
        for i in range(ticks):
            clock.advance(c.UPDATE_INTERVAL_MS)
            sim.tick()
            snapshot = sim.get_snapshot().as_dict()
            state = sim.get_state()
            rows[i, 0] = clock.millis()
            rows[i, 1] = MODES.index(sim.get_mode())
            rows[i, 2] = state["coolant_c"]
            rows[i, 3:] = [snapshot[k] for k in keys]

        self.trace = {"time_ms": rows[:, 0], "mode": rows[:, 1].astype(int), "coolant_c": rows[:, 2]}
        for col, key in enumerate(keys, start=3):
            self.trace[key] = rows[:, col]
        return self.trace

    # ----------------------------------------------------------------------
    def run_tests(self, verbose=True):
        """Runs every check and returns {name: (passed, actual, expected)}."""
        trace = self.collect_trace()

        results = {}
        for key, (low, high) in self.limits.items():
            lo, hi = float(np.min(trace[key])), float(np.max(trace[key]))
            results[f"{key}_range"] = (low <= lo and hi <= high, f"{lo:g}..{hi:g}", f"{low:g}..{high:g}")

        results["startup_sequence"] = self._test_startup_sequence(trace)
        results["warmup_monotonic"] = self._test_warmup_monotonic(trace)
        results["map_ordering"] = self._test_map_ordering()
        results["modes_visited"] = self._test_mode_coverage(trace)

        if verbose:
            self._generate_report(results)
        return results

    def violations(self, results):
        return [name for name, (ok, _, _) in results.items() if not ok]

    # ----------------------------------------------------------------------
    def _test_startup_sequence(self, trace):
        """Cranking must hand over to warm-up idle once the crank period has passed."""
        modes = trace["mode"]
        changes = [modes[0]] + [m for prev, m in zip(modes[:-1], modes[1:]) if m != prev]
        first_two = [MODES[m] for m in changes[:2]]

        warmup_idx = MODES.index(EngineMode.WARMUP_IDLE)
        hits = np.flatnonzero(modes == warmup_idx)
        t_warmup = float(trace["time_ms"][hits[0]]) if hits.size else float("nan")

        ok = first_two == [EngineMode.STARTUP, EngineMode.WARMUP_IDLE] and t_warmup >= c.STARTUP_CRANK_MS
        return ok, f"{t_warmup:.0f} ms", f">= {c.STARTUP_CRANK_MS} ms"

    def _test_warmup_monotonic(self, trace):
        in_warmup = trace["time_ms"] < c.WARMUP_TIME_MS
        coolant = trace["coolant_c"][in_warmup]
        worst_drop = float(np.min(np.diff(coolant))) if coolant.size > 1 else 0.0
        return worst_drop >= 0, f"{worst_drop:.1f} °C", ">= 0.0 °C"

    def _test_map_ordering(self):
        """Forced idle versus forced WOT: manifold pressure must rise with throttle."""
        sim, clock = self._make_simulator()

        def settle(mode):
            sim.set_mode(mode)
            samples = []
            for _ in range(c.TICKS_PER_SECOND):
                clock.advance(c.UPDATE_INTERVAL_MS)
                sim.tick()
                samples.append(sim.get_snapshot().get_map())
            return np.mean(samples[-5:])

        idle_map = settle(EngineMode.IDLE)
        wot_map = settle(EngineMode.WOT)
        return wot_map > idle_map, f"{wot_map:.1f} kPa", f"> {idle_map:.1f} kPa"

    def _test_mode_coverage(self, trace):
        visited = len(np.unique(trace["mode"]))
        return visited >= 3, str(visited), ">= 3"

    # ----------------------------------------------------------------------
    def _generate_report(self, results):
        print("\n" + "=" * 65)
        title = f"SIMULATION VALIDATION REPORT ({c.ENGINE_DISPLACEMENT_CC / 1000:.1f}L I{c.NUM_CYL}, seed {self.seed})"
        print(f"{title:^65}")
        print("=" * 65)
        print(f"{'CHECK':<20} | {'ACTUAL':>16} | {'EXPECTED':>14} | {'STATUS'}")
        print("-" * 65)

        for name, (ok, actual, expected) in results.items():
            status = "✅ PASS" if ok else "❌ FAIL"
            print(f"{name:<20} | {actual:>16} | {expected:>14} | {status}")

        print("-" * 65)
        failed = self.violations(results)
        if failed:
            print(f"DIAGNOSTIC: {len(failed)} check(s) failed: {', '.join(failed)}")
        print("=" * 65 + "\n")

    def plot(self):
        import matplotlib.pyplot as plt

        trace = self.trace if self.trace is not None else self.collect_trace()
        t = trace["time_ms"] / 1000.0

        fig, axes = plt.subplots(4, 1, figsize=(12, 10), sharex=True)
        for ax, key, label in zip(
            axes,
            ("rpm", "map", "coolant_c", "mode"),
            ("RPM", "MAP (kPa)", "Coolant (°C)", "Mode"),
        ):
            ax.plot(t, trace[key], lw=1.5)
            ax.set_ylabel(label)
            ax.grid(True, alpha=0.3)
        axes[-1].set_yticks(range(len(MODES)), [m.label for m in MODES])
        axes[-1].set_xlabel("Time (s)")
        fig.suptitle(f"Simulation trace, seed {self.seed}")
        plt.tight_layout()
        plt.show()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Offline validation run of the engine simulator")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--duration", type=int, default=120, help="simulated seconds")
    parser.add_argument("--plot", action="store_true", default=False)
    args = parser.parse_args()

    validator = SimulationValidator(duration_s=args.duration, seed=args.seed)
    results = validator.run_tests()
    if args.plot:
        validator.plot()
    raise SystemExit(1 if validator.violations(results) else 0)
