"""
Simulated treadmill.

Answers Start/SetSpeed/Stop frames with the same inbound frames the real
device produces, so the whole decode path runs without hardware. Distance
advances ``acceleration`` times faster than real time for demos.
"""

import asyncio
import contextlib
import logging
import random
from typing import List, Optional

from .core import SIMULATOR_ACCELERATION
from .protocol import (
    DISTANCE_HIGH_INDEX,
    DISTANCE_LOW_INDEX,
    HIBERNATE_MARKER,
    MODE_INDEX,
    MODE_RUNNING,
    MODE_STARTING,
    SPEED_INDEX,
    STATUS_FRAME_MIN_LENGTH,
    SetSpeed,
    Start,
    Stop,
    decode_command,
    frame_to_hex,
)
from .transport import Transport, TransportError

logger = logging.getLogger(__name__)

STOPPING_MODE = 4
SIMULATOR_NAME = "Simulated Treadmill"


def build_status_frame(mode: int, speed: float = 0.0, distance_km: float = 0.0) -> List[int]:
    """Build an inbound status frame as the device reports it.

    Args:
        mode: Mode byte (1 starting, 2 running, 4/5 stopping)
        speed: Belt speed in km/h
        distance_km: Session distance in kilometres

    Returns:
        Frame byte values
    """
    frame = [0] * STATUS_FRAME_MIN_LENGTH
    frame[0] = 0xF8
    frame[1] = 0xA2
    frame[MODE_INDEX] = mode
    frame[SPEED_INDEX] = max(0, min(255, int(round(speed * 10))))
    hundredths = max(0, int(round(distance_km * 100)))
    frame[DISTANCE_HIGH_INDEX] = (hundredths // 256) & 0xFF
    frame[DISTANCE_LOW_INDEX] = hundredths % 256
    frame[-1] = 0xFD
    return frame


def build_idle_frame() -> List[int]:
    return [0xF8, 0xA2, 0x00, 0x00, 0xFD]


def build_hibernate_frame() -> List[int]:
    return [0xF8, HIBERNATE_MARKER, 0x00, 0x00, 0xFD]


class SimulatedTransport(Transport):
    """In-process treadmill that speaks the wire protocol."""

    def __init__(
        self,
        default_speed: float = 3.0,
        acceleration: float = SIMULATOR_ACCELERATION,
        update_interval: float = 0.5,
        transition_delay: float = 2.0,
        seed: Optional[int] = None,
    ) -> None:
        super().__init__()
        self.default_speed = default_speed
        self.acceleration = acceleration
        self.update_interval = update_interval
        self.transition_delay = transition_delay

        self._connected = False
        self._running = False
        self._speed = 0.0
        self._distance = 0.0
        self._rng = random.Random(seed)
        self._task: Optional[asyncio.Task] = None
        self.sent_frames: List[bytes] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def name(self) -> str:
        return SIMULATOR_NAME

    @property
    def is_running(self) -> bool:
        return self._running

    async def connect(self) -> bool:
        self._connected = True
        logger.info(f"Connected to {SIMULATOR_NAME}")
        self._emit_connection(True)
        self._emit_frame(build_idle_frame())
        return True

    async def disconnect(self) -> None:
        if not self._connected:
            return
        await self._cancel_task()
        self._connected = False
        self._running = False
        self._emit_connection(False)

    async def send(self, data: bytes) -> None:
        if not self._connected:
            raise TransportError("Not connected")

        command = decode_command(data)
        if command is None:
            raise TransportError(f"Unrecognised frame {frame_to_hex(data)}")
        self.sent_frames.append(bytes(data))
        logger.debug(f"Simulator received {command}")

        if isinstance(command, Start):
            await self._start()
        elif isinstance(command, SetSpeed):
            self._set_speed(command.speed)
        elif isinstance(command, Stop):
            await self._stop()

    async def _start(self) -> None:
        if self._running:
            return
        self._running = True
        self._speed = self.default_speed
        self._emit_frame(build_status_frame(MODE_STARTING))
        await self._cancel_task()
        self._task = asyncio.create_task(self._run_loop())

    def _set_speed(self, speed: float) -> None:
        if not self._running:
            return
        self._speed = speed
        self._emit_running()

    async def _stop(self) -> None:
        if not self._running:
            return
        await self._cancel_task()
        self._running = False
        if self._distance > 0:
            self._emit_frame(build_status_frame(STOPPING_MODE, 0.0, self._distance))
        self._speed = 0.0
        self._task = asyncio.create_task(self._settle())

    async def _run_loop(self) -> None:
        await asyncio.sleep(self.transition_delay)
        while self._running and self._connected:
            self._distance += (
                self._speed * (self.update_interval / 3600.0) * self.acceleration
            )
            self._emit_running()
            await asyncio.sleep(self.update_interval)

    def _emit_running(self) -> None:
        jitter = self._rng.uniform(-0.2, 0.2)
        speed = max(0.0, self._speed + jitter)
        self._emit_frame(build_status_frame(MODE_RUNNING, speed, self._distance))

    async def _settle(self) -> None:
        await asyncio.sleep(self.transition_delay)
        self._emit_frame(build_idle_frame())
        self._distance = 0.0

    async def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
