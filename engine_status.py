# engine_status.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin

import constants as c

FORMAT_VERSION = c.PROTOCOL_VERSION

# (name, width) in wire order. Multi-byte fields are split into lo/hi bytes.
FIELD_LAYOUT = (
    ("response", 1),
    ("secl", 1),
    ("status1", 1),
    ("engine", 1),
    ("dwell", 1),
    ("maplo", 1), ("maphi", 1),
    ("iat", 1),
    ("clt", 1),
    ("batcorrection", 1),
    ("batteryv", 1),
    ("o2", 1),
    ("egocorrection", 1),
    ("iatcorrection", 1),
    ("wue", 1),
    ("rpmlo", 1), ("rpmhi", 1),
    ("taeamount", 1),
    ("gammae", 1),
    ("ve", 1),
    ("afrtarget", 1),
    ("pw1lo", 1), ("pw1hi", 1),
    ("tpsdot", 1),
    ("advance", 1),
    ("tps", 1),
    ("loopslo", 1), ("loopshi", 1),
    ("freeramlo", 1), ("freeramhi", 1),
    ("boosttarget", 1),
    ("boostduty", 1),
    ("spark", 1),
    ("rpmdotlo", 1), ("rpmdothi", 1),
    ("ethanolpct", 1),
    ("flexcorrection", 1),
    ("flexigncorrection", 1),
    ("idleload", 1),
    ("testoutputs", 1),
    ("o2_2", 1),
    ("baro", 1),
    ("canin", c.CAN_DATA_SIZE),
    ("tpsadc", 1),
    ("errors", 1),
    ("unused1", 1), ("unused2", 1), ("unused3", 1),
)

BYTE_FIELDS = tuple(name for name, width in FIELD_LAYOUT if width == 1)


def _offsets():
    offsets, pos = {}, 0
    for name, width in FIELD_LAYOUT:
        offsets[name] = pos
        pos += width
    return offsets, pos


FIELD_OFFSETS, RECORD_SIZE = _offsets()


class EngineStatus:
    """
    Speeduino real-time data block (the 'A' command response).

    One attribute per wire byte plus the 32-byte CAN block. Multi-byte values are
    little-endian and go through the accessor pairs below; temperatures carry a
    +40 offset so -40..215 °C fits an unsigned byte.
    """

    __slots__ = BYTE_FIELDS + ("canin",)

    def __init__(self):
        self.reset()

    # ----------------------------------------------------------------------
    def reset(self):
        for name in BYTE_FIELDS:
            setattr(self, name, 0)
        self.canin = [0] * c.CAN_DATA_SIZE

    # ----------------------------------------------------------------------
    def copy(self):
        other = EngineStatus.__new__(EngineStatus)
        for name in BYTE_FIELDS:
            setattr(other, name, getattr(self, name))
        other.canin = list(self.canin)
        return other

    # =================================================================
    # 16-bit accessors (low byte first)
    # =================================================================
    def set_rpm(self, rpm):
        self.rpmlo, self.rpmhi = _split_u16(rpm)

    def get_rpm(self):
        return _join_u16(self.rpmlo, self.rpmhi)

    def set_map(self, map_kpa):
        self.maplo, self.maphi = _split_u16(map_kpa)

    def get_map(self):
        return _join_u16(self.maplo, self.maphi)

    def set_pulse_width(self, pw):
        self.pw1lo, self.pw1hi = _split_u16(pw)

    def get_pulse_width(self):
        return _join_u16(self.pw1lo, self.pw1hi)

    def set_rpm_dot(self, rpm_dot):
        """RPM rate of change, signed 16-bit two's complement."""
        self.rpmdotlo, self.rpmdothi = _split_u16(rpm_dot)

    def get_rpm_dot(self):
        raw = _join_u16(self.rpmdotlo, self.rpmdothi)
        return raw - 0x10000 if raw & 0x8000 else raw

    def set_loops(self, loops):
        self.loopslo, self.loopshi = _split_u16(loops)

    def get_loops(self):
        return _join_u16(self.loopslo, self.loopshi)

    def set_free_ram(self, free_ram):
        self.freeramlo, self.freeramhi = _split_u16(free_ram)

    def get_free_ram(self):
        return _join_u16(self.freeramlo, self.freeramhi)

    # =================================================================
    # Temperature accessors (°C + 40)
    # =================================================================
    def set_coolant_temp(self, celsius):
        self.clt = _temp_to_byte(celsius)

    def get_coolant_temp(self):
        return self.clt - c.TEMP_OFFSET

    def set_intake_temp(self, celsius):
        self.iat = _temp_to_byte(celsius)

    def get_intake_temp(self):
        return self.iat - c.TEMP_OFFSET

    # =================================================================
    # Wire encoding
    # =================================================================
    def encode(self):
        """Assemble the 79-byte payload field by field."""
        out = bytearray()
        for name, width in FIELD_LAYOUT:
            if width == 1:
                out.append(getattr(self, name))
            else:
                out.extend(bytes(self.canin))
        return bytes(out)

    @classmethod
    def decode(cls, data):
        if len(data) != RECORD_SIZE:
            raise ValueError(
                f"EngineStatus payload must be {RECORD_SIZE} bytes, got {len(data)}"
            )
        status = cls.__new__(cls)
        for name, width in FIELD_LAYOUT:
            pos = FIELD_OFFSETS[name]
            if width == 1:
                setattr(status, name, data[pos])
            else:
                status.canin = list(data[pos:pos + width])
        return status

    # ----------------------------------------------------------------------
    def as_dict(self):
        """Decoded engineering values, as shown by loggers and the monitor."""
        return {
            "rpm": self.get_rpm(),
            "map": self.get_map(),
            "clt": self.get_coolant_temp(),
            "iat": self.get_intake_temp(),
            "tps": self.tps,
            "tpsdot": self.tpsdot,
            "afr": self.afrtarget / 10.0,
            "o2": self.o2,
            "o2_2": self.o2_2,
            "advance": self.advance,
            "dwell": self.dwell / 10.0,
            "pw": self.get_pulse_width() / 10.0,
            "ve": self.ve,
            "wue": self.wue,
            "egocorrection": self.egocorrection,
            "iatcorrection": self.iatcorrection,
            "batcorrection": self.batcorrection,
            "gammae": self.gammae,
            "taeamount": self.taeamount,
            "battery": self.batteryv / 10.0,
            "baro": self.baro,
            "rpmdot": self.get_rpm_dot(),
            "idleload": self.idleload,
            "secl": self.secl,
            "loops": self.get_loops(),
            "errors": self.errors,
        }

    def __eq__(self, other):
        if not isinstance(other, EngineStatus):
            return NotImplemented
        return self.encode() == other.encode()

    def __repr__(self):
        return (
            f"EngineStatus(rpm={self.get_rpm()}, map={self.get_map()}, "
            f"clt={self.get_coolant_temp()}, tps={self.tps})"
        )


# -------------------------------------------------------------------------
def _split_u16(value):
    value = int(value) & 0xFFFF
    return value & 0xFF, (value >> 8) & 0xFF


def _join_u16(lo, hi):
    return (hi << 8) | lo


def _temp_to_byte(celsius):
    celsius = min(max(int(celsius), c.TEMP_WIRE_MIN), c.TEMP_WIRE_MAX)
    return celsius + c.TEMP_OFFSET
