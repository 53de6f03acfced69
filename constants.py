# constants.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin


# =================================== VERSION INFORMATION ===============================
FIRMWARE_VERSION = "2.0.0"
PROTOCOL_VERSION = "0.4"
SPEEDUINO_SIGNATURE = "speeduino 202310"

# =================================== SERIAL COMMUNICATION ==============================
SERIAL_BAUD_RATE = 115200
SERIAL_TIMEOUT_MS = 100
SERIAL_BUFFER_SIZE = 256
DEFAULT_SERIAL_PORT = "loop://"  # pyserial URL, swap for /dev/ttyUSB0 etc.

# =================================== RPM RANGES =======================================
RPM_MIN = 0
RPM_IDLE_MIN = 700
RPM_IDLE_MAX = 900
RPM_CRUISE = 2500
RPM_HIGH_START = 5000
RPM_MAX = 7000
RPM_REDLINE = 6800

# =================================== TEMPERATURES (°C * 10) ===========================
TEMP_AMBIENT = 200  # 20°C
TEMP_ENGINE_COLD = 400  # 40°C
TEMP_ENGINE_WARM = 800  # 80°C
TEMP_ENGINE_HOT = 950  # 95°C
TEMP_ENGINE_MAX = 1100  # 110°C
TEMP_IAT_COLD = 100  # 10°C
TEMP_IAT_WARM = 400  # 40°C
TEMP_WARMUP_DONE = 600  # 60°C, leaves WARMUP_IDLE
TEMP_CLOSED_LOOP = 500  # 50°C, EGO correction active above this

# wire encoding of temperatures: byte = °C + offset
TEMP_OFFSET = 40
TEMP_WIRE_MIN = -40
TEMP_WIRE_MAX = 215

# =================================== PRESSURE (kPa) ===================================
MAP_ATMOSPHERIC = 100
MAP_IDLE = 35
MAP_CRUISE = 60
MAP_WOT = 95
BARO_SEALEVEL = 100

# =================================== VOLTAGE (V * 10) =================================
VOLTAGE_MIN = 110
VOLTAGE_NORMAL = 140
VOLTAGE_MAX = 150
VOLTAGE_CRANKING = 100
VOLTAGE_LOW = 120  # longer dwell and battery correction below this
VOLTAGE_CHARGING = 144  # alternator output above cruise RPM

# =================================== AIR-FUEL RATIO (AFR * 10) ========================
AFR_STOICH = 147
AFR_RICH = 130
AFR_LEAN = 160
AFR_WOT = 125

# =================================== THROTTLE (%) =====================================
TPS_IDLE = 2
TPS_CRUISE = 20
TPS_HALF = 50
TPS_WOT = 100

# =================================== IGNITION (° BTDC) ================================
TIMING_IDLE = 15
TIMING_CRUISE = 25
TIMING_WOT = 30
TIMING_MAX = 35
TIMING_MIN = 5
DWELL_NORMAL = 35  # 0.1 ms units
DWELL_LOW_VOLTAGE = 45

# =================================== PULSE WIDTH (ms * 10) ============================
PW_MIN = 10
PW_IDLE = 20
PW_CRUISE = 35
PW_WOT = 80
PW_MAX = 255

# =================================== VOLUMETRIC EFFICIENCY (%) ========================
VE_MIN = 30
VE_MAX = 100

# =================================== SIMULATION TIMING ================================
UPDATE_INTERVAL_MS = 50  # 20 Hz
TICKS_PER_SECOND = 1000 // UPDATE_INTERVAL_MS
STATE_TRANSITION_MS = 5000
WARMUP_TIME_MS = 30000
STARTUP_CRANK_MS = 1000
ACCEL_HOLD_MS = 3000
HIGH_RPM_HOLD_MS = 2000
WOT_HOLD_MS = 3000

# =================================== FEATURE FLAGS ====================================
SENSOR_NOISE_ENABLED = True  # False reproduces the minimal-feature build

# =================================== WIRE RECORD ======================================
ENGINE_STATUS_SIZE = 79
CAN_DATA_SIZE = 32
FREE_RAM_BYTES = 8192

# =================================== PROTOCOL PAGES ===================================
PAGE_COUNT = 2
PAGE_SIZES = (32, 256, 0)  # the third pair is reserved
SIGNATURE_LENGTH = 20
UNKNOWN_COMMAND_RESPONSE = 0xFF

# =================================== ENGINE GEOMETRY ==================================
ENGINE_DISPLACEMENT_CC = 2000
NUM_CYL = 4
FUEL_DENSITY_G_L = 737
AIR_DENSITY_G_M3 = 1225

# =================================== MONITORING =======================================
MONITOR_HOST = "0.0.0.0"
MONITOR_PORT = 8080
STATUS_PRINT_INTERVAL_MS = 5000
