# engine_simulator.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin

import logging
import threading
from enum import Enum

import numpy as np

import constants as c
from engine_status import EngineStatus

logger = logging.getLogger("SIM.ENGINE")


class EngineMode(Enum):
    """Operating modes of the simulation state machine: (api name, display label)."""

    STARTUP = ("startup", "Startup")
    WARMUP_IDLE = ("warmup_idle", "Warming Up")
    IDLE = ("idle", "Idle")
    LIGHT_LOAD = ("light_load", "Light Load")
    ACCELERATION = ("acceleration", "Accelerating")
    HIGH_RPM = ("high_rpm", "High RPM")
    DECELERATION = ("deceleration", "Decelerating")
    WOT = ("wot", "Wide Open Throttle")

    def __init__(self, api_name, label):
        self.api_name = api_name
        self.label = label

    @classmethod
    def from_api_name(cls, name):
        for mode in cls:
            if mode.api_name == name:
                return mode
        raise ValueError(f"Unknown engine mode '{name}'")


IDLE_MODES = (EngineMode.IDLE, EngineMode.WARMUP_IDLE)


class EngineSimulator:
    """
    Simulates a 2.0 L naturally aspirated inline-4 as seen through a Speeduino.

    tick() advances the engine once per UPDATE_INTERVAL_MS: the state machine picks
    targets, then a single-pass pipeline derives every sensor value and writes it
    into the EngineStatus wire record. All arithmetic is integer and saturating,
    so nothing in here can raise.
    """

    def __init__(self, time_provider, random_provider, sensor_noise=c.SENSOR_NOISE_ENABLED):
        self.time_provider = time_provider
        self.random_provider = random_provider
        self.sensor_noise = sensor_noise

        self.status = EngineStatus()
        self._lock = threading.Lock()

        # =================================================================
        # 1. Timing
        # =================================================================
        self.current_mode = EngineMode.STARTUP
        self.last_update_time = 0
        self.state_start_time = 0
        self.engine_start_time = 0
        self.loop_counter = 0
        self.second_counter = 0

        # =================================================================
        # 2. Kinematic state
        # =================================================================
        self.target_rpm = 0
        self.current_rpm = 0
        self.rpm_acceleration = 0  # RPM/s, signed
        self.target_throttle = 0
        self.current_throttle = 0
        self._last_tps = 0

        # =================================================================
        # 3. Thermal state (°C * 10)
        # =================================================================
        self.coolant_temp = c.TEMP_AMBIENT
        self.intake_temp = c.TEMP_AMBIENT
        self.exhaust_temp = c.TEMP_AMBIENT

        # =================================================================
        # 4. Fuel state
        # =================================================================
        self.pulse_width = 0  # 0.1 ms
        self.injector_duty_cycle = 0
        self._ego_trend = 1

    # ----------------------------------------------------------------------
    def initialize(self):
        """Cold start: engine stopped at ambient temperature, cranking mode."""
        with self._lock:
            now = self.time_provider.millis()

            self.status.reset()
            self.status.response = ord("A")

            self.current_mode = EngineMode.STARTUP
            self.engine_start_time = now
            self.last_update_time = now
            self.state_start_time = now

            self.current_rpm = 0
            self.target_rpm = c.RPM_IDLE_MIN + 200  # high idle when cold
            self.rpm_acceleration = 500  # cranking ramp, same as a STARTUP transition
            self.coolant_temp = c.TEMP_AMBIENT
            self.intake_temp = c.TEMP_AMBIENT
            self.exhaust_temp = c.TEMP_AMBIENT
            self.current_throttle = c.TPS_IDLE
            self.target_throttle = c.TPS_IDLE
            self._last_tps = 0
            self._ego_trend = 1
            self.pulse_width = 0
            self.injector_duty_cycle = 0

            self.status.set_rpm(self.current_rpm)
            self.status.set_coolant_temp(_cdiv(self.coolant_temp, 10))
            self.status.set_intake_temp(_cdiv(self.intake_temp, 10))
            self.status.set_map(c.MAP_ATMOSPHERIC)
            self.status.batteryv = c.VOLTAGE_NORMAL
            self.status.baro = c.BARO_SEALEVEL
            self.status.tps = self.current_throttle

            self.loop_counter = 0
            self.second_counter = 0

    # =================================================================
    # PER-TICK UPDATE
    # =================================================================
    def tick(self, now=None):
        """
        Advance the simulation by one update interval.

        Returns False, changing nothing, when less than UPDATE_INTERVAL_MS has passed
        since the last accepted tick. An explicit `now` must be read from this
        simulator's time provider; set_mode() and the runtime counter use that clock.
        """
        if now is None:
            now = self.time_provider.millis()

        with self._lock:
            if now - self.last_update_time < c.UPDATE_INTERVAL_MS:
                return False

            self.last_update_time = now
            self.loop_counter += 1

            if self.loop_counter % c.TICKS_PER_SECOND == 0:
                self.second_counter += 1
                self.status.secl = self.second_counter & 0xFF

            self._update_state_machine(now)

            # Fixed order: later stages read what earlier stages wrote this tick
            self._simulate_rpm()
            self._simulate_thermal()
            self._simulate_throttle()
            self._simulate_map()
            self._simulate_fuel()
            self._simulate_ignition()
            self._simulate_afr()
            self._simulate_corrections()
            self._simulate_sensors()
            self._simulate_voltage()
            self._simulate_can_data()

            self.status.set_loops(self.loop_counter & 0xFFFF)
            self.status.set_free_ram(c.FREE_RAM_BYTES)

            # mostly no errors
            if self.random_provider.randrange(100) < 2:
                self.status.errors = self.random_provider.randrange(1, 4)
            else:
                self.status.errors = 0

            return True

    # =================================================================
    # READ ACCESSORS / OVERRIDE
    # =================================================================
    def get_snapshot(self):
        """Copy of the wire record, safe to hand to another thread."""
        with self._lock:
            return self.status.copy()

    def get_mode(self):
        return self.current_mode

    def get_runtime_seconds(self):
        return (self.time_provider.millis() - self.engine_start_time) // 1000

    def get_state(self):
        with self._lock:
            return {
                "mode": self.current_mode.api_name,
                "rpm": self.current_rpm,
                "target_rpm": self.target_rpm,
                "rpm_acceleration": self.rpm_acceleration,
                "throttle": self.current_throttle,
                "target_throttle": self.target_throttle,
                "coolant_c": self.coolant_temp / 10.0,
                "intake_c": self.intake_temp / 10.0,
                "exhaust_c": self.exhaust_temp / 10.0,
                "pulse_width_ms": self.pulse_width / 10.0,
                "injector_duty_cycle": self.injector_duty_cycle,
                "loops": self.loop_counter,
            }

    def set_mode(self, mode, now=None):
        """Force a transition, exactly as the state machine would make it."""
        if now is None:
            now = self.time_provider.millis()
        with self._lock:
            self._transition_to_mode(mode, now)

    # =================================================================
    # STATE MACHINE
    # =================================================================
    def _update_state_machine(self, now):
        time_in_state = now - self.state_start_time
        mode = self.current_mode
        rng = self.random_provider

        if mode is EngineMode.STARTUP:
            if time_in_state >= c.STARTUP_CRANK_MS and self.current_rpm > c.RPM_IDLE_MIN // 2:
                self._transition_to_mode(EngineMode.WARMUP_IDLE, now)

        elif mode is EngineMode.WARMUP_IDLE:
            if self.coolant_temp > c.TEMP_WARMUP_DONE:
                self._transition_to_mode(EngineMode.IDLE, now)

        elif mode is EngineMode.IDLE:
            if time_in_state >= c.STATE_TRANSITION_MS:
                roll = rng.randrange(100)
                if roll < 30:
                    self._transition_to_mode(EngineMode.LIGHT_LOAD, now)
                elif roll < 35:
                    self._transition_to_mode(EngineMode.ACCELERATION, now)

        elif mode is EngineMode.LIGHT_LOAD:
            if time_in_state >= c.STATE_TRANSITION_MS:
                roll = rng.randrange(100)
                if roll < 40:
                    self._transition_to_mode(EngineMode.ACCELERATION, now)
                elif roll < 70:
                    self._transition_to_mode(EngineMode.DECELERATION, now)
                else:
                    self._transition_to_mode(EngineMode.IDLE, now)

        elif mode is EngineMode.ACCELERATION:
            if self.current_rpm > c.RPM_HIGH_START:
                self._transition_to_mode(EngineMode.HIGH_RPM, now)
            elif time_in_state >= c.ACCEL_HOLD_MS and rng.randrange(100) < 30:
                self._transition_to_mode(EngineMode.LIGHT_LOAD, now)

        elif mode is EngineMode.HIGH_RPM:
            if time_in_state >= c.HIGH_RPM_HOLD_MS:
                self._transition_to_mode(EngineMode.DECELERATION, now)

        elif mode is EngineMode.DECELERATION:
            # a coast that settles above the idle band still ends the fuel cut
            if self.current_rpm < c.RPM_IDLE_MAX + 200 or self.current_rpm <= self.target_rpm:
                self._transition_to_mode(EngineMode.IDLE, now)

        elif mode is EngineMode.WOT:
            if time_in_state >= c.WOT_HOLD_MS or self.current_rpm > c.RPM_REDLINE:
                self._transition_to_mode(EngineMode.HIGH_RPM, now)

    # ----------------------------------------------------------------------
    def _transition_to_mode(self, new_mode, now):
        """Enter new_mode and draw its targets. Draw order is RPM first, then throttle."""
        rng = self.random_provider
        old_mode = self.current_mode
        self.current_mode = new_mode
        self.state_start_time = now

        if new_mode is EngineMode.STARTUP:
            self.target_rpm = c.RPM_IDLE_MIN + 200
            self.target_throttle = c.TPS_IDLE + 5
            self.rpm_acceleration = 500

        elif new_mode is EngineMode.WARMUP_IDLE:
            self.target_rpm = c.RPM_IDLE_MIN + 150
            self.target_throttle = c.TPS_IDLE + 3
            self.rpm_acceleration = 100

        elif new_mode is EngineMode.IDLE:
            self.target_rpm = c.RPM_IDLE_MIN + rng.randrange(-50, 50)
            self.target_throttle = c.TPS_IDLE
            self.rpm_acceleration = 50

        elif new_mode is EngineMode.LIGHT_LOAD:
            self.target_rpm = c.RPM_CRUISE + rng.randrange(-300, 300)
            self.target_throttle = c.TPS_CRUISE + rng.randrange(-5, 10)
            self.rpm_acceleration = 200

        elif new_mode is EngineMode.ACCELERATION:
            self.target_rpm = c.RPM_HIGH_START + rng.randrange(-500, 500)
            self.target_throttle = c.TPS_HALF + rng.randrange(10, 40)
            self.rpm_acceleration = 1000

        elif new_mode is EngineMode.HIGH_RPM:
            self.target_rpm = c.RPM_REDLINE - rng.randrange(100, 500)
            self.target_throttle = c.TPS_WOT - rng.randrange(0, 20)
            self.rpm_acceleration = 500

        elif new_mode is EngineMode.DECELERATION:
            self.target_rpm = c.RPM_IDLE_MAX + rng.randrange(0, 500)
            self.target_throttle = c.TPS_IDLE
            self.rpm_acceleration = -800

        elif new_mode is EngineMode.WOT:
            self.target_rpm = c.RPM_REDLINE
            self.target_throttle = c.TPS_WOT
            self.rpm_acceleration = 1500

        logger.debug(
            f"{old_mode.label} -> {new_mode.label} | target {self.target_rpm} RPM, "
            f"{self.target_throttle}% TPS, {self.rpm_acceleration} RPM/s"
        )

    # =================================================================
    # PHYSICS PIPELINE
    # =================================================================
    def _simulate_rpm(self):
        step = abs(self.rpm_acceleration) * c.UPDATE_INTERVAL_MS // 1000

        if self.current_rpm < self.target_rpm:
            self.current_rpm = min(self.current_rpm + step, self.target_rpm)
        elif self.current_rpm > self.target_rpm:
            self.current_rpm = max(self.current_rpm - step, self.target_rpm)

        # idle hunting
        if self.current_mode in IDLE_MODES:
            self.current_rpm += self.random_provider.randrange(-10, 10)

        self.current_rpm = _clamp(self.current_rpm, c.RPM_MIN, c.RPM_MAX)

        self.status.set_rpm(self.current_rpm)
        self.status.set_rpm_dot(self.rpm_acceleration)

    # ----------------------------------------------------------------------
    def _simulate_thermal(self):
        target_coolant = c.TEMP_ENGINE_WARM
        if self.current_mode in (EngineMode.WOT, EngineMode.HIGH_RPM):
            target_coolant = c.TEMP_ENGINE_HOT
        elif self.current_mode in IDLE_MODES:
            target_coolant = c.TEMP_ENGINE_WARM - 50

        # thermostat stays shut until the warm-up period is over
        if self.last_update_time - self.engine_start_time < c.WARMUP_TIME_MS:
            target_coolant = max(target_coolant, self.coolant_temp)

        self.coolant_temp = _interpolate(self.coolant_temp, target_coolant, 5)
        self.status.set_coolant_temp(_cdiv(self.coolant_temp, 10))

        # engine bay heat soaks the intake, airflow at high RPM cools it
        target_intake = c.TEMP_AMBIENT + _cdiv(self.coolant_temp - c.TEMP_AMBIENT, 4)
        if self.current_rpm > c.RPM_CRUISE:
            target_intake -= (self.current_rpm - c.RPM_CRUISE) // 50
        self.intake_temp = _interpolate(self.intake_temp, target_intake, 10)
        self.status.set_intake_temp(_cdiv(self.intake_temp, 10))

        target_exhaust = 3500 + self.current_rpm // 2
        self.exhaust_temp = _interpolate(self.exhaust_temp, target_exhaust, 20)

    # ----------------------------------------------------------------------
    def _simulate_throttle(self):
        self.current_throttle = _interpolate(self.current_throttle, self.target_throttle, 20)
        noisy = _clamp(self._add_noise(self.current_throttle, 1), 0, 100)

        self.status.tps = noisy
        self.status.tpsadc = noisy * 255 // 100

        # %/s, closing throttle reads as zero
        tps_delta = noisy - self._last_tps
        self.status.tpsdot = _clamp(tps_delta * c.TICKS_PER_SECOND, 0, 255)
        self._last_tps = noisy

    # ----------------------------------------------------------------------
    def _simulate_map(self):
        """Idle ~35 kPa, cruise 50-70 kPa, WOT close to atmospheric."""
        throttle = self.current_throttle
        rpm = self.current_rpm

        if throttle < 10:
            base_map = c.MAP_IDLE + max(rpm - c.RPM_IDLE_MIN, 0) // 20
        elif throttle > 80:
            base_map = c.MAP_WOT - (c.RPM_MAX - rpm) // 100
        else:
            base_map = _map_value(throttle, 10, 80, c.MAP_IDLE + 10, c.MAP_WOT - 5)

        # pumping efficiency
        if rpm > c.RPM_HIGH_START:
            base_map += (rpm - c.RPM_HIGH_START) // 100

        noisy = _clamp(self._add_noise(base_map, 2), 0, c.MAP_ATMOSPHERIC)
        self.status.set_map(noisy)

    # ----------------------------------------------------------------------
    def _simulate_fuel(self):
        status = self.status
        status.ve = calculate_ve(self.current_rpm, self.current_throttle)

        base_pw = calculate_required_pulse_width(self.current_rpm, status.get_map(), status.ve)

        wue = warmup_enrichment(self.coolant_temp)
        base_pw = base_pw * wue // 100
        status.wue = wue

        # corrections from the previous tick, integer maths kept byte-exact
        corrected = base_pw * status.egocorrection // 100
        corrected = corrected * status.iatcorrection // 100
        self.pulse_width = _clamp(corrected, c.PW_MIN, c.PW_MAX)
        status.set_pulse_width(self.pulse_width)

        # 4-stroke: one squirt every two revolutions
        self.injector_duty_cycle = min(self.pulse_width * self.current_rpm // 12000, 100)

        if status.tpsdot > 10:
            status.taeamount = _clamp(100 + status.tpsdot // 2, 0, 255)
        else:
            status.taeamount = 100

        status.gammae = _clamp(
            status.egocorrection * status.iatcorrection * status.wue // 10000, 0, 255
        )

    # ----------------------------------------------------------------------
    def _simulate_ignition(self):
        load = self.status.get_map() * 100 // c.MAP_ATMOSPHERIC
        self.status.advance = calculate_ignition_advance(self.current_rpm, load)

        # longer coil charge when the battery sags
        if self.status.batteryv < c.VOLTAGE_LOW:
            self.status.dwell = c.DWELL_LOW_VOLTAGE
        else:
            self.status.dwell = c.DWELL_NORMAL

        self.status.spark = 0x01

    # ----------------------------------------------------------------------
    def _simulate_afr(self):
        mode = self.current_mode
        if mode in (EngineMode.STARTUP, EngineMode.WARMUP_IDLE):
            target_afr = c.AFR_RICH
        elif mode in (EngineMode.WOT, EngineMode.ACCELERATION):
            target_afr = c.AFR_WOT
        elif mode is EngineMode.DECELERATION:
            target_afr = c.AFR_LEAN
        else:
            target_afr = c.AFR_STOICH

        self.status.afrtarget = target_afr

        # 0-255 spans lambda 0.5-1.5
        lambda_x100 = target_afr * 100 // c.AFR_STOICH
        o2 = _map_value(lambda_x100, 50, 150, 0, 255)
        self.status.o2_2 = _clamp(self._add_noise(o2, 3), 0, 255)
        self.status.o2 = _clamp(self._add_noise(o2, 5), 0, 255)

    # ----------------------------------------------------------------------
    def _simulate_corrections(self):
        status = self.status

        # closed loop: trim hunts between 90 and 110 %
        if self.coolant_temp > c.TEMP_CLOSED_LOOP and self.current_mode is not EngineMode.WOT:
            ego = _clamp(status.egocorrection or 100, 90, 110) + self._ego_trend
            if ego >= 110:
                ego = 110
                self._ego_trend = -1
            elif ego <= 90:
                ego = 90
                self._ego_trend = 1
            status.egocorrection = ego
        else:
            status.egocorrection = 100

        intake_c = _cdiv(self.intake_temp, 10)
        if intake_c < 0:
            status.iatcorrection = 110
        elif intake_c < 10:
            status.iatcorrection = 105
        else:
            status.iatcorrection = 100

        status.batcorrection = 105 if status.batteryv < c.VOLTAGE_LOW else 100

        # petrol only
        status.ethanolpct = 0
        status.flexcorrection = 100
        status.flexigncorrection = 0

        if self.current_mode is EngineMode.IDLE:
            status.idleload = 30 + self.random_provider.randrange(-5, 5)
        else:
            status.idleload = 0

        # naturally aspirated
        status.boosttarget = 0
        status.boostduty = 0

    # ----------------------------------------------------------------------
    def _simulate_sensors(self):
        status1 = 0x00
        if self.current_rpm > 0:
            status1 |= 0x01  # running
        if self.coolant_temp > c.TEMP_CLOSED_LOOP:
            status1 |= 0x02  # warm
        self.status.status1 = status1

        engine = 0x00
        if self.current_mode is EngineMode.STARTUP:
            engine |= 0x01  # cranking
        if self.current_rpm > 0:
            engine |= 0x02
        self.status.engine = engine

        self.status.testoutputs = 0x00

    # ----------------------------------------------------------------------
    def _simulate_voltage(self):
        base_voltage = c.VOLTAGE_NORMAL
        if self.current_mode is EngineMode.STARTUP:
            base_voltage = c.VOLTAGE_CRANKING
        elif self.current_rpm > c.RPM_CRUISE:
            base_voltage = c.VOLTAGE_CHARGING

        self.status.batteryv = _clamp(self._add_noise(base_voltage, 1), 0, 255)

    # ----------------------------------------------------------------------
    def _simulate_can_data(self):
        """Auxiliary block: a few real quantities, then a rolling test pattern."""
        canin = self.status.canin
        rpm = self.current_rpm

        canin[0] = (rpm >> 8) & 0xFF  # big-endian, as on the CAN bus
        canin[1] = rpm & 0xFF
        canin[2] = min(rpm // 100, 255)  # ~100 RPM per km/h
        canin[3] = 0
        canin[4] = self.status.clt
        canin[5] = 0
        canin[6] = self.status.tps
        canin[7] = 0

        pattern = (np.arange(8, c.CAN_DATA_SIZE) * 7 + self.loop_counter) & 0xFF
        canin[8:] = pattern.tolist()

    # ----------------------------------------------------------------------
    def _add_noise(self, value, spread):
        if not self.sensor_noise:
            return value
        return value + self.random_provider.randrange(-spread, spread + 1)


# =================================================================
# ENGINE MAPS
# =================================================================
def calculate_ve(rpm, tps):
    """Volumetric efficiency (%) for a typical I4, scaled down at part throttle."""
    if rpm < 1000:
        base_ve = 45
    elif rpm < 2000:
        base_ve = 55 + (rpm - 1000) // 50
    elif rpm < 4000:
        base_ve = 75 + (rpm - 2000) // 100
    elif rpm < 5500:
        base_ve = 85 + (rpm - 4000) // 200
    else:
        base_ve = 90 - (rpm - 5500) // 100

    base_ve = base_ve * (50 + tps // 2) // 100
    return _clamp(base_ve, c.VE_MIN, c.VE_MAX)


def calculate_ignition_advance(rpm, load):
    """More advance with RPM and at light load, pulled back at high load."""
    advance = c.TIMING_IDLE
    if rpm > 1000:
        advance += (rpm - 1000) // 200

    if load > 80:
        advance -= (load - 80) // 4  # knock margin
    elif load < 40:
        advance += (40 - load) // 8

    return _clamp(advance, c.TIMING_MIN, c.TIMING_MAX)


def calculate_required_pulse_width(rpm, map_kpa, ve):
    # PW ~ MAP * VE / RPM; +1 keeps a stopped engine finite
    pw = map_kpa * ve * 1000 // (rpm + 1)
    pw = pw // 10
    return _clamp(pw, c.PW_MIN, c.PW_MAX)


def warmup_enrichment(coolant_temp):
    """WUE (%) from coolant temperature in °C * 10."""
    temp_c = _cdiv(coolant_temp, 10)
    if temp_c < 0:
        return 140
    if temp_c < 20:
        return 130
    if temp_c < 40:
        return 120
    if temp_c < 60:
        return 110
    return 100


# -------------------------------------------------------------------------
def _cdiv(a, b):
    """Integer division truncating toward zero, as the firmware does."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def _clamp(value, low, high):
    return max(low, min(high, value))


def _interpolate(current, target, rate):
    """Move `rate` percent of the way to target, at least one unit per call."""
    delta = target - current
    change = _cdiv(delta * rate, 100)
    if change == 0 and delta != 0:
        change = 1 if delta > 0 else -1
    return current + change


def _map_value(x, in_min, in_max, out_min, out_max):
    return _cdiv((x - in_min) * (out_max - out_min), in_max - in_min) + out_min
