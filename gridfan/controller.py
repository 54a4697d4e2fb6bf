"""Serial connection to a Grid fan controller."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import serial

from gridfan import protocol
from gridfan.protocol import ProtocolError

log = logging.getLogger(__name__)


class Controller:
    """Manages the serial link to the fan controller.

    The link is meant to be held only while changes are applied: use
    session() so the port is released even if a command fails.
    """

    def __init__(self, device_path: str) -> None:
        self._device_path = device_path
        self._port: serial.Serial | None = None

    @property
    def device_path(self) -> str:
        return self._device_path

    @property
    def connected(self) -> bool:
        return self._port is not None

    def open(self) -> None:
        """Open the serial port and check that a controller answers.

        Raises OSError if the port cannot be opened and ProtocolError if the
        controller does not answer the ping.
        """
        if self._port is not None:
            return

        self._port = serial.Serial(self._device_path, baudrate=protocol.BAUD_RATE)

        try:
            self._port.reset_input_buffer()
            self._port.reset_output_buffer()
            self.ping()
        except (OSError, ProtocolError) as e:
            self.close()
            raise ProtocolError(f"Failed to ping controller at {self._device_path}: {e}") from e

        log.debug("Controller opened at %s", self._device_path)

    def close(self) -> None:
        """Close the serial port."""
        if self._port is not None:
            try:
                self._port.close()
            except OSError as e:
                log.warning("Failed to close controller at %s: %s", self._device_path, e)
            self._port = None
            log.debug("Controller connection closed")

    @contextmanager
    def session(self) -> Iterator["Controller"]:
        """Open the controller for the duration of a with block."""
        self.open()
        try:
            yield self
        finally:
            self.close()

    def _write(self, data: bytes) -> None:
        """Write all of data. Raises OSError on failure."""
        if self._port is None:
            raise OSError("Controller not connected")

        written = 0
        while written < len(data):
            n = self._port.write(data[written:])
            if not n:
                raise OSError(f"Write to {self._device_path} made no progress")
            written += n

    def _read(self, size: int) -> bytes:
        """Read exactly size bytes. Raises OSError on failure."""
        if self._port is None:
            raise OSError("Controller not connected")

        buf = bytearray()
        while len(buf) < size:
            chunk = self._port.read(size - len(buf))
            if not chunk:
                raise OSError(f"Read from {self._device_path} returned no data")
            buf.extend(chunk)
        return bytes(buf)

    def ping(self) -> None:
        """Check that the controller is alive."""
        self._write(protocol.build_ping())
        protocol.parse_ping_reply(self._read(protocol.PING_REPLY_LEN))

    def get_speed(self, fan: int) -> int:
        """Read the current speed of a fan."""
        request = protocol.build_get_speed(fan)
        self._write(request)
        speed = protocol.parse_get_speed_reply(self._read(protocol.GET_SPEED_REPLY_LEN))
        log.debug("Fan %d speed: %d", fan, speed)
        return speed

    def set_speed(self, fan: int, rpm: int) -> None:
        """Set the speed of a fan.

        Fan and rpm are validated before anything is written.
        """
        request = protocol.build_set_speed(fan, rpm)
        log.debug("Setting fan %d to %d (%s)", fan, rpm, request.hex(" "))
        self._write(request)
        protocol.parse_set_speed_reply(self._read(protocol.SET_SPEED_REPLY_LEN))
