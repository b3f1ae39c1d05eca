"""
Treadmill controller: binds a transport to the wire codec.

Decodes every inbound frame into a ``DeviceState``, remembers the latest one,
fans it out to listeners and to an async update stream, and dispatches
outbound commands without blocking the caller.
"""

import asyncio
import logging
from typing import Any, AsyncGenerator, Callable, List, Optional, Set

from .core import DEFAULT_STRIDE_LENGTH_M, SPEED_MAX, SPEED_MIN, SPEED_STEP, is_valid_speed
from .protocol import (
    Command,
    DeviceState,
    Running,
    SetSpeed,
    Start,
    Stop,
    Unknown,
    frame_to_hex,
    parse_frame,
)
from .transport import Transport, TransportError

logger = logging.getLogger(__name__)

StateListener = Callable[[DeviceState], None]


class TreadmillController:
    """Manages the connection to and control of one treadmill."""

    SPEED_MIN = SPEED_MIN
    SPEED_MAX = SPEED_MAX
    SPEED_STEP = SPEED_STEP

    def __init__(
        self,
        transport: Transport,
        stride_length_m: float = DEFAULT_STRIDE_LENGTH_M,
    ) -> None:
        """Initialize controller around a transport.

        Args:
            transport: Link to the device (BLE or simulated)
            stride_length_m: Stride used to derive steps from distance
        """
        self._transport = transport
        self.stride_length_m = stride_length_m
        self._state: DeviceState = Unknown()
        self._update_queue: asyncio.Queue = asyncio.Queue(maxsize=10)
        self._listeners: List[StateListener] = []
        self._pending_sends: Set[asyncio.Task] = set()

        # Callbacks
        self._on_disconnect: Optional[Callable[[], None]] = None

        transport.set_on_frame(self._on_frame)
        transport.set_on_connection_change(self._on_connection_change)

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to device."""
        return self._transport.is_connected

    @property
    def device_name(self) -> str:
        return self._transport.name

    @property
    def state(self) -> DeviceState:
        """Last decoded device state."""
        return self._state

    @property
    def current_speed(self) -> float:
        """Get last reported speed in km/h."""
        telemetry = self._state.telemetry
        return telemetry.speed if telemetry else 0.0

    def add_state_listener(self, listener: StateListener) -> None:
        """Register a callback invoked with every decoded state.

        Listeners needing edges (e.g. running -> stopping) compare against
        the previous state they saw themselves.
        """
        self._listeners.append(listener)

    def set_on_disconnect(self, callback: Callable[[], None]) -> None:
        """Set callback for disconnect events.

        Args:
            callback: Function called when device disconnects
        """
        self._on_disconnect = callback

    async def connect(self) -> bool:
        """Connect to the treadmill.

        Returns:
            True if connected successfully, False otherwise
        """
        if self.is_connected:
            logger.warning("Already connected")
            return True
        return await self._transport.connect()

    async def disconnect(self) -> None:
        """Disconnect from device."""
        if not self.is_connected:
            return
        if self._pending_sends:
            await asyncio.gather(*self._pending_sends, return_exceptions=True)
        await self._transport.disconnect()
        self._state = Unknown()
        logger.info("Disconnected")

    # ========== Commands ==========

    def send_command(self, command: Command) -> None:
        """Dispatch a command without waiting for the transport.

        Failures are logged; nothing is retried.

        Args:
            command: Start, SetSpeed or Stop
        """
        if not self.is_connected:
            logger.error(f"Not connected, dropping {command}")
            return
        task = asyncio.create_task(self._send(command))
        self._pending_sends.add(task)
        task.add_done_callback(self._pending_sends.discard)

    async def _send(self, command: Command) -> bool:
        frame = command.to_bytes()
        try:
            await self._transport.send(frame)
            logger.debug(f"Sent {command} ({frame_to_hex(frame)})")
            return True
        except TransportError as e:
            logger.error(f"Failed to send command {command}: {e}")
            return False

    async def start(self) -> bool:
        """Start the belt.

        Returns:
            True if the command was delivered
        """
        if not self.is_connected:
            logger.error("Not connected")
            return False
        return await self._send(Start())

    async def stop(self) -> bool:
        """Stop the belt.

        Returns:
            True if the command was delivered
        """
        if not self.is_connected:
            logger.error("Not connected")
            return False
        return await self._send(Stop())

    async def set_speed(self, km_h: float) -> bool:
        """Set target speed in km/h.

        Args:
            km_h: Speed in km/h (1.0 to 6.0)

        Returns:
            True if the command was delivered, False if out of range or failed
        """
        if not self.is_connected:
            logger.error("Not connected")
            return False

        if not is_valid_speed(km_h):
            logger.error(f"Speed {km_h} out of range [{self.SPEED_MIN}, {self.SPEED_MAX}]")
            return False

        delivered = await self._send(SetSpeed(km_h))
        if delivered:
            logger.info(f"Set speed to {km_h:.1f} km/h")
        return delivered

    async def wait_until_running(self, timeout: float = 10.0, poll: float = 0.1) -> bool:
        """Wait for the belt to report ``Running``.

        Args:
            timeout: Seconds to wait
            poll: Seconds between checks

        Returns:
            True if the device reported running in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self.is_connected:
            if isinstance(self._state, Running):
                return True
            if loop.time() >= deadline:
                break
            await asyncio.sleep(poll)
        logger.warning(f"Belt not running after {timeout:.0f}s (state: {self._state.name})")
        return False

    # ========== Status ==========

    def get_status(self) -> dict:
        """Get current device values without waiting for a frame.

        Returns:
            Dictionary with status, speed, distance (km) and steps
        """
        if not self.is_connected:
            return {"status": "DISCONNECTED", "speed": 0.0, "distance": 0.0, "steps": 0}

        telemetry = self._state.telemetry
        return {
            "status": self._state.name,
            "speed": telemetry.speed if telemetry else 0.0,
            "distance": telemetry.distance if telemetry else 0.0,
            "steps": telemetry.steps if telemetry else 0,
        }

    def _on_frame(self, frame: List[int]) -> None:
        """Decode one inbound frame. Must not block."""
        state = parse_frame(frame, stride_length_m=self.stride_length_m)
        if state != self._state:
            logger.debug(f"Device state: {state.name}")
        self._state = state

        try:
            self._update_queue.put_nowait(state)
        except asyncio.QueueFull:
            # Live display can skip a frame
            pass

        for listener in self._listeners:
            try:
                listener(state)
            except Exception as e:
                logger.error(f"State listener error: {e}")

    def _on_connection_change(self, connected: bool) -> None:
        if connected:
            return
        logger.warning("Device disconnected")
        self._state = Unknown()
        if self._on_disconnect:
            try:
                self._on_disconnect()
            except Exception as e:
                logger.error(f"Disconnect callback error: {e}")

    async def get_updates(self) -> AsyncGenerator[Any, None]:
        """Async generator that yields decoded states as they arrive.

        Yields:
            DeviceState values
        """
        while self.is_connected:
            try:
                state = await asyncio.wait_for(self._update_queue.get(), timeout=0.5)
                yield state
            except asyncio.TimeoutError:
                # Device may be quiet
                continue
