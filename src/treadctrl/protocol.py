"""
Wire codec for the treadmill's proprietary byte-stream protocol.

Outbound commands are fixed 9-byte frames. Inbound notifications are
variable-length arrays of byte values which are classified, one frame at a
time, into a ``DeviceState``. Decoding keeps no state between frames and never
raises: short or unrecognised frames degrade to an idle/hibernate signal.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence, Union

from .core import DEFAULT_STRIDE_LENGTH_M, SPEED_MIN, clamp_speed

logger = logging.getLogger(__name__)

FRAME_START = 0xFB
FRAME_END = 0xFC
FRAME_LENGTH = 9
SPEED_CHECKSUM_BASE = 171

START_FRAME = bytes.fromhex("FB07A201010500B0FC")
STOP_FRAME = bytes.fromhex("FB07A204010000AEFC")

# Inbound layout
STATUS_FRAME_MIN_LENGTH = 18
TELEMETRY_MIN_LENGTH = 13
HIBERNATE_MARKER = 4
MODE_INDEX = 3
SPEED_INDEX = 5
DISTANCE_HIGH_INDEX = 11
DISTANCE_LOW_INDEX = 12

MODE_STARTING = 1
MODE_RUNNING = 2
MODE_STOPPING = (4, 5)


def round_tenths(value: float) -> float:
    """Round half away from zero to the nearest 0.1."""
    return math.copysign(math.floor(abs(value) * 10 + 0.5), value) / 10


# ========== Commands ==========


@dataclass(frozen=True)
class Start:
    """Start the belt."""

    def to_bytes(self) -> bytes:
        return START_FRAME


@dataclass(frozen=True)
class SetSpeed:
    """Set the belt speed in km/h."""

    speed: float

    @property
    def speed_tenths(self) -> int:
        """Speed as transmitted: rounded, clamped, in tenths of km/h."""
        if math.isnan(self.speed):
            return int(SPEED_MIN * 10)
        clamped = clamp_speed(round_tenths(clamp_speed(self.speed)))
        return int(math.floor(clamped * 10 + 0.5))

    @property
    def checksum(self) -> int:
        # The device expects a single checksum byte
        return (SPEED_CHECKSUM_BASE + self.speed_tenths) & 0xFF

    def to_bytes(self) -> bytes:
        return bytes(
            [
                FRAME_START,
                0x07,
                0xA1,
                0x02,
                0x01,
                self.speed_tenths,
                0x00,
                self.checksum,
                FRAME_END,
            ]
        )


@dataclass(frozen=True)
class Stop:
    """Stop the belt."""

    def to_bytes(self) -> bytes:
        return STOP_FRAME


Command = Union[Start, SetSpeed, Stop]


def encode_command(command: Command) -> bytes:
    """Encode a command into its 9-byte wire frame.

    Args:
        command: Start, SetSpeed or Stop

    Returns:
        Frame bytes ready for the transport
    """
    return command.to_bytes()


def frame_to_hex(frame: bytes) -> str:
    """Uppercase hex rendering used in logs, e.g. ``FB07A201010500B0FC``."""
    return frame.hex().upper()


def decode_command(frame: Sequence[int]) -> Optional[Command]:
    """Recognise an outbound command frame.

    Args:
        frame: Raw frame bytes

    Returns:
        The command, or None if the frame is not a valid command frame
    """
    data = bytes(frame)
    if len(data) != FRAME_LENGTH or data[0] != FRAME_START or data[-1] != FRAME_END:
        return None

    if data == START_FRAME:
        return Start()
    if data == STOP_FRAME:
        return Stop()
    if data[1:5] == bytes([0x07, 0xA1, 0x02, 0x01]):
        tenths = data[5]
        if data[7] != (SPEED_CHECKSUM_BASE + tenths) & 0xFF:
            logger.debug(f"Bad speed checksum in {frame_to_hex(data)}")
            return None
        return SetSpeed(tenths / 10.0)
    return None


# ========== Device state ==========


@dataclass(frozen=True)
class RunningTelemetry:
    """Decoded running metrics from one frame."""

    timestamp: datetime
    speed: float  # km/h
    distance: float  # km
    steps: int

    @classmethod
    def create(
        cls,
        speed: float,
        distance: float,
        steps: Optional[int] = None,
        stride_length_m: float = DEFAULT_STRIDE_LENGTH_M,
        timestamp: Optional[datetime] = None,
    ) -> "RunningTelemetry":
        """Build telemetry, deriving steps from distance unless given."""
        if steps is None:
            steps = derive_steps(distance, stride_length_m)
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc),
            speed=speed,
            distance=distance,
            steps=steps,
        )


def derive_steps(distance_km: float, stride_length_m: float) -> int:
    if stride_length_m <= 0:
        return 0
    return int(math.floor(distance_km * 1000 / stride_length_m))


@dataclass(frozen=True)
class DeviceState:
    """Base for the six reported device states."""

    name = "UNKNOWN"

    @property
    def telemetry(self) -> Optional[RunningTelemetry]:
        return None


@dataclass(frozen=True)
class Unknown(DeviceState):
    name = "UNKNOWN"


@dataclass(frozen=True)
class Hibernated(DeviceState):
    name = "HIBERNATED"


@dataclass(frozen=True)
class Idling(DeviceState):
    name = "IDLING"


@dataclass(frozen=True)
class Starting(DeviceState):
    name = "STARTING"


@dataclass(frozen=True)
class Running(DeviceState):
    name = "RUNNING"

    running: RunningTelemetry

    @property
    def telemetry(self) -> Optional[RunningTelemetry]:
        return self.running


@dataclass(frozen=True)
class Stopping(DeviceState):
    name = "STOPPING"

    running: RunningTelemetry

    @property
    def telemetry(self) -> Optional[RunningTelemetry]:
        return self.running


def parse_frame(
    frame: Sequence[int],
    stride_length_m: float = DEFAULT_STRIDE_LENGTH_M,
    now: Optional[datetime] = None,
) -> DeviceState:
    """Classify one inbound frame.

    Args:
        frame: Byte values from a single notification
        stride_length_m: Stride used to derive steps from distance
        now: Timestamp for telemetry (defaults to current UTC time)

    Returns:
        The device state the frame describes
    """
    if len(frame) < STATUS_FRAME_MIN_LENGTH:
        if len(frame) > 1 and frame[1] == HIBERNATE_MARKER:
            return Hibernated()
        return Idling()

    mode = frame[MODE_INDEX]
    if mode == MODE_STARTING:
        return Starting()
    if mode == MODE_RUNNING:
        return Running(parse_running(frame, stride_length_m, now))
    if mode in MODE_STOPPING:
        return Stopping(parse_running(frame, stride_length_m, now))
    return Idling()


def parse_running(
    frame: Sequence[int],
    stride_length_m: float = DEFAULT_STRIDE_LENGTH_M,
    now: Optional[datetime] = None,
) -> RunningTelemetry:
    """Extract speed, distance and steps from a telemetry frame.

    Frames shorter than the telemetry layout yield zero telemetry.
    """
    if len(frame) < TELEMETRY_MIN_LENGTH:
        logger.warning(f"Frame too short for telemetry: {list(frame)}")
        return RunningTelemetry.create(
            speed=0.0, distance=0.0, stride_length_m=stride_length_m, timestamp=now
        )

    speed = frame[SPEED_INDEX] / 10.0
    distance_low = frame[DISTANCE_LOW_INDEX] / 100.0
    distance_high = (
        frame[DISTANCE_HIGH_INDEX] / 100.0 if len(frame) > DISTANCE_HIGH_INDEX else 0.0
    )
    distance = distance_low + distance_high * 256

    return RunningTelemetry.create(
        speed=speed, distance=distance, stride_length_m=stride_length_m, timestamp=now
    )
