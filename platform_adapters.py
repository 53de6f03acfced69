# platform_adapters.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin

import logging
import time
from abc import ABC, abstractmethod

import numpy as np
import serial

import constants as c

logger = logging.getLogger("SIM.HAL")


# =================================== SERIAL =============================================
class SerialInterface(ABC):
    """Byte-stream transport used by the protocol handler."""

    @abstractmethod
    def begin(self, baud_rate):
        ...

    @abstractmethod
    def is_ready(self):
        ...

    @abstractmethod
    def available(self):
        """Number of bytes waiting in the receive buffer."""

    @abstractmethod
    def read(self):
        """One byte as an int, or -1 when nothing is waiting."""

    @abstractmethod
    def read_bytes(self, length):
        ...

    @abstractmethod
    def write(self, data):
        ...

    @abstractmethod
    def flush(self):
        ...

    @abstractmethod
    def clear(self):
        ...

    def close(self):
        pass


class PySerialAdapter(SerialInterface):
    """
    pyserial backed transport, 8-N-1 and non-blocking.

    `port` is anything serial_for_url accepts: a device path (/dev/ttyUSB0, COM3),
    a virtual port from socat/com0com, "loop://" or "socket://host:port".
    """

    def __init__(self, port=c.DEFAULT_SERIAL_PORT):
        self.port = port
        self.serial = None

    def begin(self, baud_rate):
        if self.serial is not None and self.serial.is_open:
            self.serial.baudrate = baud_rate
            return
        # SerialException propagates, opening the port is the caller's problem
        self.serial = serial.serial_for_url(
            self.port,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=0,
            write_timeout=c.SERIAL_TIMEOUT_MS / 1000.0,
        )
        logger.info(f"[HAL] Opened {self.port} @ {baud_rate} baud")

    def is_ready(self):
        return self.serial is not None and self.serial.is_open

    def available(self):
        if not self.is_ready():
            return 0
        return self.serial.in_waiting

    def read(self):
        if not self.is_ready():
            return -1
        data = self.serial.read(1)
        return data[0] if data else -1

    def read_bytes(self, length):
        if not self.is_ready():
            return b""
        return self.serial.read(length)

    def write(self, data):
        if not self.is_ready():
            return 0
        return self.serial.write(bytes(data))

    def flush(self):
        if self.is_ready():
            self.serial.flush()

    def clear(self):
        if self.is_ready():
            self.serial.reset_input_buffer()

    def close(self):
        if self.serial is not None:
            self.serial.close()
            self.serial = None


# =================================== TIME ===============================================
class TimeProvider(ABC):
    """Monotonic millisecond clock."""

    @abstractmethod
    def millis(self):
        ...

    @abstractmethod
    def micros(self):
        ...

    @abstractmethod
    def delay(self, ms):
        ...


class MonotonicTimeProvider(TimeProvider):
    def __init__(self):
        self._origin = time.monotonic_ns()

    def millis(self):
        return (time.monotonic_ns() - self._origin) // 1_000_000

    def micros(self):
        return (time.monotonic_ns() - self._origin) // 1_000

    def delay(self, ms):
        time.sleep(ms / 1000.0)


class ManualTimeProvider(TimeProvider):
    """Clock that only moves when told to. delay() advances it instantly."""

    def __init__(self, start_ms=0):
        self._now_us = int(start_ms) * 1000

    def millis(self):
        return self._now_us // 1000

    def micros(self):
        return self._now_us

    def delay(self, ms):
        self.advance(ms)

    def advance(self, ms):
        self._now_us += int(ms * 1000)

    def set(self, ms):
        self._now_us = int(ms) * 1000


# =================================== RANDOM =============================================
class RandomProvider(ABC):
    """Seedable uniform integer source."""

    @abstractmethod
    def seed(self, value):
        ...

    @abstractmethod
    def randrange(self, start, stop=None):
        """Uniform int in [start, stop), or [0, start) when stop is omitted."""


class SeededRandomProvider(RandomProvider):
    def __init__(self, seed=None):
        self._rng = np.random.default_rng(seed)

    def seed(self, value):
        self._rng = np.random.default_rng(value)

    def randrange(self, start, stop=None):
        if stop is None:
            start, stop = 0, start
        if stop <= start:
            return start
        return int(self._rng.integers(start, stop))
