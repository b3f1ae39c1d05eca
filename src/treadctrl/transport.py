"""
Byte-stream transports to the treadmill.

A transport delivers raw inbound frames and connection changes through
callbacks and accepts encoded outbound frames. ``BleakTransport`` talks to the
real device over BLE; the simulator lives in ``treadctrl.simulator``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from .core import DEVICE_NAME
from .settings import load_cached_address, save_cached_address

logger = logging.getLogger(__name__)

FrameCallback = Callable[[List[int]], None]
ConnectionCallback = Callable[[bool], None]


class TransportError(Exception):
    """Raised when a frame cannot be delivered."""


class Transport(ABC):
    """Callback-based link to the device."""

    def __init__(self) -> None:
        self._on_frame: Optional[FrameCallback] = None
        self._on_connection_change: Optional[ConnectionCallback] = None

    def set_on_frame(self, callback: FrameCallback) -> None:
        """Set callback for inbound frames.

        Args:
            callback: Called with the list of byte values of each notification
        """
        self._on_frame = callback

    def set_on_connection_change(self, callback: ConnectionCallback) -> None:
        self._on_connection_change = callback

    @property
    @abstractmethod
    def is_connected(self) -> bool: ...

    @property
    def name(self) -> str:
        return DEVICE_NAME

    @abstractmethod
    async def connect(self) -> bool:
        """Open the link. Returns False if the device could not be reached."""

    @abstractmethod
    async def disconnect(self) -> None: ...

    @abstractmethod
    async def send(self, data: bytes) -> None:
        """Deliver one outbound frame, raising ``TransportError`` on failure."""

    def _emit_frame(self, frame: List[int]) -> None:
        if self._on_frame is None:
            return
        try:
            self._on_frame(frame)
        except Exception as e:
            logger.error(f"Frame callback error: {e}")

    def _emit_connection(self, connected: bool) -> None:
        if self._on_connection_change is None:
            return
        try:
            self._on_connection_change(connected)
        except Exception as e:
            logger.error(f"Connection callback error: {e}")


class BleakTransport(Transport):
    """BLE link: notifications from every notifying characteristic are frames,
    commands go to the write-only characteristic."""

    def __init__(
        self,
        device_name: str = DEVICE_NAME,
        scan_timeout: float = 10.0,
        use_cache: bool = True,
    ) -> None:
        super().__init__()
        self.device_name = device_name
        self.scan_timeout = scan_timeout
        self.use_cache = use_cache
        self._client: Optional[BleakClient] = None
        self._write_char: Any = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    @property
    def name(self) -> str:
        return self.device_name

    async def _find_device(self) -> Any:
        if self.use_cache:
            cached_address = load_cached_address()
            if cached_address:
                logger.info(f"Trying cached address: {cached_address}")
                device = await BleakScanner.find_device_by_address(
                    cached_address, timeout=5.0
                )
                if device is not None:
                    return device
                logger.warning("Cached address not found, scanning...")

        logger.info(f"Scanning for {self.device_name}...")
        return await BleakScanner.find_device_by_name(
            self.device_name, timeout=self.scan_timeout
        )

    async def connect(self) -> bool:
        """Find the treadmill, connect and subscribe to its notifications.

        Returns:
            True if connected successfully, False otherwise
        """
        if self.is_connected:
            logger.warning("Already connected")
            return True

        try:
            device = await self._find_device()
            if device is None:
                logger.warning(f"No {self.device_name} device found")
                return False

            client = BleakClient(device, disconnected_callback=self._on_disconnected)
            await client.connect()
            self._client = client
            await self._subscribe(client)

            if self._write_char is None:
                logger.error("Device exposes no write characteristic")
                await client.disconnect()
                self._client = None
                return False

            logger.info(f"Connected to {device.name or self.device_name} ({device.address})")
            if self.use_cache:
                save_cached_address(device.address)
            self._emit_connection(True)
            return True

        except (BleakError, OSError, TimeoutError) as e:
            logger.error(f"Connection failed: {e}")
            self._client = None
            return False

    async def _subscribe(self, client: BleakClient) -> None:
        self._write_char = None
        for service in client.services:
            for char in service.characteristics:
                properties = set(char.properties)
                if "notify" in properties or "indicate" in properties:
                    await client.start_notify(char, self._handle_notification)
                    logger.debug(f"Subscribed to {char.uuid}")
                elif "write" in properties and self._write_char is None:
                    self._write_char = char
                    logger.debug(f"Write characteristic {char.uuid}")

    def _handle_notification(self, _sender: Any, data: bytearray) -> None:
        if data:
            self._emit_frame(list(data))

    def _on_disconnected(self, _client: BleakClient) -> None:
        logger.warning("Device disconnected")
        self._client = None
        self._write_char = None
        self._emit_connection(False)

    async def disconnect(self) -> None:
        if self._client is None:
            return
        try:
            logger.info("Disconnecting...")
            await self._client.disconnect()
        except BleakError as e:
            logger.error(f"Disconnect failed: {e}")
        finally:
            self._client = None
            self._write_char = None

    async def send(self, data: bytes) -> None:
        if self._client is None or not self._client.is_connected or self._write_char is None:
            raise TransportError("Not connected or missing characteristic")
        try:
            await self._client.write_gatt_char(self._write_char, data, response=True)
        except BleakError as e:
            raise TransportError(str(e)) from e
