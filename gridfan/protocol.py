"""Grid fan controller serial protocol.

The controller speaks a fixed binary request/reply protocol at 4800 baud.
Every exchange is a fixed-length request followed by a fixed-length reply:

    ping       C0                        -> 21
    get speed  8A fan                    -> C0 00 00 hi lo
    set speed  44 fan C0 00 00 rpmA rpmB -> 01

This module only builds and parses byte sequences; the serial I/O lives in
gridfan.controller.
"""

BAUD_RATE = 4800

MIN_FAN = 1
MAX_FAN = 6
ALL_FANS = tuple(range(MIN_FAN, MAX_FAN + 1))

MIN_RPM = 20
MAX_RPM = 100

CMD_PING = 0xC0
CMD_GET_SPEED = 0x8A
CMD_SET_SPEED = 0x44

PING_REPLY = 0x21
SET_SPEED_REPLY = 0x01
GET_SPEED_HEADER = bytes([0xC0, 0x00, 0x00])

PING_REPLY_LEN = 1
GET_SPEED_REPLY_LEN = 5
SET_SPEED_REPLY_LEN = 1


class ProtocolError(Exception):
    """The controller answered, but not the way the protocol says it should."""


class UnexpectedReplyError(ProtocolError):
    """A single-byte status reply had the wrong value."""


class MalformedReplyError(ProtocolError):
    """A multi-byte reply did not carry the expected header."""


class InvalidFanError(ValueError):
    """Fan index outside [1, 6]."""


class InvalidRPMError(ValueError):
    """RPM that is neither 0 nor in [20, 100]."""


def is_valid_fan(fan: int) -> bool:
    return MIN_FAN <= fan <= MAX_FAN


def is_valid_rpm(rpm: int) -> bool:
    return rpm == 0 or MIN_RPM <= rpm <= MAX_RPM


def check_fan(fan: int) -> None:
    """Raise InvalidFanError unless fan is a valid channel."""
    if not is_valid_fan(fan):
        raise InvalidFanError(f"Bad fan number: {fan} not in range [{MIN_FAN}, {MAX_FAN}]")


def check_rpm(rpm: int) -> None:
    """Raise InvalidRPMError unless rpm can be sent to the controller."""
    if not is_valid_rpm(rpm):
        raise InvalidRPMError(f"Bad fan rpm: {rpm} not 0 or in range [{MIN_RPM}, {MAX_RPM}]")


def encode_rpm(rpm: int) -> tuple[int, int]:
    """Convert an RPM setting to the controller's two-byte encoding.

    The first byte counts tens above a floor of 2, the second carries the
    remaining units in its upper nibble. 0 (off) is sent as two zero bytes.
    """
    check_rpm(rpm)
    if rpm == 0:
        return 0x00, 0x00
    return 0x02 + rpm // 10, (rpm % 10) * 0x10


def decode_rpm(byte_a: int, byte_b: int) -> int:
    """Inverse of encode_rpm."""
    if byte_a == 0 and byte_b == 0:
        return 0
    return (byte_a - 0x02) * 10 + (byte_b >> 4)


def build_ping() -> bytes:
    return bytes([CMD_PING])


def build_get_speed(fan: int) -> bytes:
    check_fan(fan)
    return bytes([CMD_GET_SPEED, fan])


def build_set_speed(fan: int, rpm: int) -> bytes:
    check_fan(fan)
    byte_a, byte_b = encode_rpm(rpm)
    return bytes([CMD_SET_SPEED, fan, 0xC0, 0x00, 0x00, byte_a, byte_b])


def parse_ping_reply(reply: bytes) -> None:
    if reply[0] != PING_REPLY:
        raise UnexpectedReplyError(f"Ping: unexpected reply: 0x{reply[0]:02x}")


def parse_get_speed_reply(reply: bytes) -> int:
    """Return the fan speed carried in a get-speed reply."""
    if reply[:3] != GET_SPEED_HEADER:
        raise MalformedReplyError(f"GetSpeed: malformed reply: {reply.hex(' ')}")
    return (reply[3] << 8) | reply[4]


def parse_set_speed_reply(reply: bytes) -> None:
    if reply[0] != SET_SPEED_REPLY:
        raise UnexpectedReplyError(f"SetSpeed: unexpected reply: 0x{reply[0]:02x}")
