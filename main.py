# main.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin

import argparse
import logging
import sys
import time

import serial

import constants as c
from engine_simulator import EngineSimulator
from logger import Logger
from platform_adapters import MonotonicTimeProvider, PySerialAdapter, SeededRandomProvider
from speeduino_protocol import SpeeduinoProtocol

logger = logging.getLogger("SIM.MAIN")

parser = argparse.ArgumentParser(description="Speeduino ECU serial simulator")
parser.add_argument("--port", default=c.DEFAULT_SERIAL_PORT,
                    help="serial device or pyserial URL (loop://, socket://host:port)")
parser.add_argument("--baud", type=int, default=c.SERIAL_BAUD_RATE)
parser.add_argument("--seed", type=int, default=None, help="random seed, default is the clock")
parser.add_argument("--duration", type=float, default=0, help="seconds to run, 0 runs until Ctrl+C")
parser.add_argument("--log", default=None, help="CSV telemetry file")
parser.add_argument("--dashboard", action="store_true", default=False)
parser.add_argument("--monitor-port", type=int, default=None, help="serve the HTTP monitor on this port")
parser.add_argument("--no-noise", action="store_true", default=False)
parser.add_argument("--debug", action="store_true", default=False)


class SimulationManager:
    """Owns one engine and one protocol handler and interleaves them."""

    def __init__(self, engine, protocol, logger=None, dashboard_manager=None):
        self.engine = engine
        self.protocol = protocol
        self.logger = logger
        self.dashboard_manager = dashboard_manager
        self.stop_simulation = False
        self.last_status_ms = 0

    def run_once(self):
        # 1. advance the engine when an update interval has passed
        ticked = self.engine.tick()

        # 2. answer at most one pending command
        self.protocol.poll()

        if ticked:
            if self.logger:
                self.logger.log()
            if self.dashboard_manager:
                self.dashboard_manager.update(self.engine, self.protocol)
                self.dashboard_manager.draw()
                self.stop_simulation = self.dashboard_manager.stopped

        # 3. periodic console status
        now = self.engine.time_provider.millis()
        if now - self.last_status_ms >= c.STATUS_PRINT_INTERVAL_MS:
            self.last_status_ms = now
            print(self.status_line())

        return ticked

    def status_line(self):
        snapshot = self.engine.get_snapshot()
        return (
            f"[{self.engine.get_runtime_seconds():5d}s] {self.engine.get_mode().label:<18} "
            f"RPM:{snapshot.get_rpm():5d} MAP:{snapshot.get_map():3d}kPa "
            f"CLT:{snapshot.get_coolant_temp():4d}°C TPS:{snapshot.tps:3d}% "
            f"cmds:{self.protocol.command_count} errs:{self.protocol.error_count}"
        )


def print_banner(args, seed):
    print("=" * 60)
    print(f"  Speeduino ECU Simulator v{c.FIRMWARE_VERSION}")
    print(f"  Protocol {c.PROTOCOL_VERSION} | signature '{c.SPEEDUINO_SIGNATURE}'")
    print(f"  Port: {args.port} @ {args.baud} baud | seed {seed}")
    print("=" * 60)


if __name__ == "__main__":
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )

    seed = args.seed if args.seed is not None else time.time_ns() & 0xFFFFFFFF
    print_banner(args, seed)

    clock = MonotonicTimeProvider()
    rng = SeededRandomProvider()
    rng.seed(seed)

    transport = PySerialAdapter(args.port)
    engine = EngineSimulator(clock, rng, sensor_noise=not args.no_noise)
    protocol = SpeeduinoProtocol(transport, engine)

    csv_logger = None
    dashboard_manager = None
    exit_code = 0

    try:
        protocol.begin(args.baud)
        engine.initialize()
        # let the port settle before discarding anything queued while opening
        clock.delay(c.SERIAL_TIMEOUT_MS)
        transport.clear()

        if args.log:
            csv_logger = Logger(engine, args.log)
        if args.dashboard:
            from dashboard_manager import DashboardManager
            dashboard_manager = DashboardManager()
        if args.monitor_port:
            from web_monitor import create_app, run_in_background
            run_in_background(create_app(engine, protocol), port=args.monitor_port)

        system = SimulationManager(engine, protocol, csv_logger, dashboard_manager)
        logger.info("Simulator running")

        deadline_ms = args.duration * 1000 if args.duration > 0 else None
        while not system.stop_simulation:
            system.run_once()
            if deadline_ms is not None and clock.millis() >= deadline_ms:
                break
            clock.delay(1)

    except serial.SerialException as exc:
        logger.error(f"Could not open {args.port}: {exc}")
        exit_code = 1

    except KeyboardInterrupt:
        print("\nSimulation stopped by user")

    finally:
        if csv_logger:
            csv_logger.close()
            print(f"Wrote {csv_logger.rows} rows to {args.log}")
        if dashboard_manager:
            dashboard_manager.close()
        transport.close()
        print(f"Simulation complete. {protocol.command_count} commands, {protocol.error_count} errors.")

    sys.exit(exit_code)
