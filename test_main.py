# test_main.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin

import contextlib
import io
import unittest

import constants as c
from engine_simulator import EngineSimulator
from main import SimulationManager, parser
from platform_adapters import ManualTimeProvider, SeededRandomProvider
from speeduino_protocol import SpeeduinoProtocol
from test_speeduino_protocol import MockSerial


class MockLogger:
    def __init__(self):
        self.rows = 0

    def log(self):
        self.rows += 1


class TestSimulationManager(unittest.TestCase):
    def setUp(self):
        self.clock = ManualTimeProvider()
        self.engine = EngineSimulator(self.clock, SeededRandomProvider(42))
        self.engine.initialize()
        self.serial = MockSerial()
        self.protocol = SpeeduinoProtocol(self.serial, self.engine)
        self.protocol.begin()
        self.logger = MockLogger()
        self.system = SimulationManager(self.engine, self.protocol, self.logger)

    def test_logs_only_accepted_ticks(self):
        with contextlib.redirect_stdout(io.StringIO()):
            for _ in range(100):
                self.clock.advance(10)
                self.system.run_once()
        self.assertEqual(self.logger.rows, 20)

    def test_answers_one_command_per_pass(self):
        self.serial.send(b"QQ")
        self.system.run_once()
        self.assertEqual(self.protocol.command_count, 1)
        self.system.run_once()
        self.assertEqual(self.protocol.command_count, 2)
        self.assertEqual(len(self.serial.take()), 8)

    def test_status_line_every_five_seconds(self):
        with contextlib.redirect_stdout(io.StringIO()) as out:
            for _ in range(11 * c.TICKS_PER_SECOND):
                self.clock.advance(c.UPDATE_INTERVAL_MS)
                self.system.run_once()
        lines = out.getvalue().splitlines()
        self.assertEqual(len(lines), 2)
        self.assertIn("RPM:", lines[0])
        self.assertIn("cmds:0", lines[0])


class TestCommandLine(unittest.TestCase):
    def test_defaults(self):
        args = parser.parse_args([])
        self.assertEqual(args.port, c.DEFAULT_SERIAL_PORT)
        self.assertEqual(args.baud, c.SERIAL_BAUD_RATE)
        self.assertIsNone(args.seed)
        self.assertFalse(args.dashboard)
        self.assertIsNone(args.monitor_port)

    def test_flags(self):
        args = parser.parse_args(
            ["--port", "/dev/ttyUSB0", "--seed", "7", "--duration", "2.5",
             "--monitor-port", "8081", "--no-noise", "--debug"]
        )
        self.assertEqual(args.port, "/dev/ttyUSB0")
        self.assertEqual(args.seed, 7)
        self.assertEqual(args.duration, 2.5)
        self.assertEqual(args.monitor_port, 8081)
        self.assertTrue(args.no_noise)
        self.assertTrue(args.debug)


if __name__ == "__main__":
    unittest.main()
