# speeduino_protocol.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin

import logging

import constants as c

logger = logging.getLogger("SIM.PROTOCOL")

VERSION_STRING = f"speeduino 202310-sim {c.FIRMWARE_VERSION}\n".encode("ascii")
SIGNATURE = c.SPEEDUINO_SIGNATURE.encode("ascii")[:c.SIGNATURE_LENGTH].ljust(
    c.SIGNATURE_LENGTH, b"\x00"
)


class SpeeduinoProtocol:
    """
    Serial command handler for the subset of the Speeduino protocol that
    TunerStudio and loggers need to identify the ECU and stream live data.

    Commands: 'A' real-time data, 'Q' status, 'V'/'v' version, 'S' signature,
    'n' page sizes. Anything else is answered with 0xFF and counted as an error.
    """

    def __init__(self, serial, simulator):
        self.serial = serial
        self.simulator = simulator

        # Statistics
        self.command_count = 0
        self.error_count = 0
        self.last_command = None

        self._handlers = {
            ord("A"): self._handle_realtime_data,
            ord("Q"): self._handle_status_request,
            ord("V"): self._handle_version_request,
            ord("v"): self._handle_version_request,
            ord("S"): self._handle_signature_request,
            ord("n"): self._handle_page_sizes_request,
        }

    # ----------------------------------------------------------------------
    def begin(self, baud_rate=c.SERIAL_BAUD_RATE):
        self.serial.begin(baud_rate)
        self.command_count = 0
        self.error_count = 0

    # ----------------------------------------------------------------------
    def poll(self):
        """
        Handle at most one command byte. Never waits for input.

        Returns True when a byte was read (recognised or not), False when the
        transport had nothing for us.
        """
        if self.serial.available() <= 0:
            return False

        command = self.serial.read()
        if command < 0:
            return False

        self.command_count += 1
        self.last_command = command

        handler = self._handlers.get(command)
        if handler is None:
            self._handle_unknown_command(command)
            self.error_count += 1
        else:
            handler()

        return True

    # =================================================================
    # COMMAND HANDLERS
    # =================================================================
    def _handle_realtime_data(self):
        self._send_response(self.simulator.get_snapshot().encode())

    def _handle_status_request(self):
        # signature id, status (running), config pages, reserved
        self._send_response(bytes((0x00, 0x01, 0x01, 0x00)))

    def _handle_version_request(self):
        self._send_response(VERSION_STRING)

    def _handle_signature_request(self):
        self._send_response(SIGNATURE)

    def _handle_page_sizes_request(self):
        response = bytearray([c.PAGE_COUNT])
        for size in c.PAGE_SIZES:
            response.append(size & 0xFF)
            response.append((size >> 8) & 0xFF)
        self._send_response(bytes(response))

    def _handle_unknown_command(self, command):
        logger.debug(f"Unknown command: 0x{command:02X}")
        self._send_response(bytes((c.UNKNOWN_COMMAND_RESPONSE,)))

    # ----------------------------------------------------------------------
    def _send_response(self, data):
        self.serial.write(data)
        self.serial.flush()

    def get_statistics(self):
        return {
            "commands": self.command_count,
            "errors": self.error_count,
        }
