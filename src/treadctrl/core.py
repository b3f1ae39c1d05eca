"""
Core constants for the treadmill link and the workout engine.
"""

import math

# Device advertised name (single-model protocol)
DEVICE_NAME = "RZ_TreadMill"

# Speed constraints enforced before anything is transmitted
SPEED_MIN = 1.0
SPEED_MAX = 6.0
SPEED_STEP = 0.1

# Step derivation
DEFAULT_STRIDE_LENGTH_M = 0.7

# Execution engine
TICK_INTERVAL = 0.1
SPEED_HYSTERESIS = 0.1
SIMULATOR_ACCELERATION = 60.0

# Application metadata
__version__ = "0.1.0"
__description__ = "CLI and REPL interface for driving workout plans on a BLE treadmill"


def clamp_speed(km_h: float) -> float:
    """Clamp a speed to the range the device accepts."""
    return max(SPEED_MIN, min(SPEED_MAX, km_h))


def is_valid_speed(km_h: float) -> bool:
    """True for a finite speed inside the device range."""
    return math.isfinite(km_h) and SPEED_MIN <= km_h <= SPEED_MAX
