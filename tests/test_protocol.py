"""Tests for protocol command building and reply parsing."""

import pytest

from gridfan import protocol
from gridfan.protocol import (
    InvalidFanError,
    InvalidRPMError,
    MalformedReplyError,
    UnexpectedReplyError,
)


class TestValidation:
    @pytest.mark.parametrize("fan", [1, 6])
    def test_valid_fan_bounds(self, fan: int) -> None:
        assert protocol.is_valid_fan(fan)

    @pytest.mark.parametrize("fan", [0, 7, -1])
    def test_invalid_fan(self, fan: int) -> None:
        assert not protocol.is_valid_fan(fan)

    @pytest.mark.parametrize("rpm", [0, 20, 55, 100])
    def test_valid_rpm(self, rpm: int) -> None:
        assert protocol.is_valid_rpm(rpm)

    @pytest.mark.parametrize("rpm", [-1, 1, 19, 101])
    def test_invalid_rpm(self, rpm: int) -> None:
        assert not protocol.is_valid_rpm(rpm)


class TestEncodeRpm:
    def test_off_is_two_zero_bytes(self) -> None:
        assert protocol.encode_rpm(0) == (0x00, 0x00)

    def test_minimum(self) -> None:
        assert protocol.encode_rpm(20) == (0x04, 0x00)

    def test_units_go_to_upper_nibble(self) -> None:
        assert protocol.encode_rpm(47) == (0x06, 0x70)

    def test_maximum(self) -> None:
        assert protocol.encode_rpm(100) == (0x0C, 0x00)

    def test_invalid_rpm_raises(self) -> None:
        with pytest.raises(InvalidRPMError):
            protocol.encode_rpm(15)

    def test_decode_inverts_encode(self) -> None:
        valid = [0, *range(protocol.MIN_RPM, protocol.MAX_RPM + 1)]
        assert [protocol.decode_rpm(*protocol.encode_rpm(rpm)) for rpm in valid] == valid


class TestBuildCommands:
    def test_build_ping(self) -> None:
        assert protocol.build_ping() == b"\xc0"

    def test_build_get_speed(self) -> None:
        assert protocol.build_get_speed(3) == bytes([0x8A, 0x03])

    def test_build_set_speed(self) -> None:
        assert protocol.build_set_speed(2, 55) == bytes([0x44, 0x02, 0xC0, 0x00, 0x00, 0x07, 0x50])

    def test_build_set_speed_off(self) -> None:
        assert protocol.build_set_speed(6, 0) == bytes([0x44, 0x06, 0xC0, 0x00, 0x00, 0x00, 0x00])

    def test_build_get_speed_invalid_fan(self) -> None:
        with pytest.raises(InvalidFanError, match="Bad fan number: 7"):
            protocol.build_get_speed(7)

    def test_build_set_speed_checks_fan_before_rpm(self) -> None:
        with pytest.raises(InvalidFanError):
            protocol.build_set_speed(0, 5)


class TestParseReplies:
    def test_ping_ok(self) -> None:
        protocol.parse_ping_reply(b"\x21")

    def test_ping_unexpected(self) -> None:
        with pytest.raises(UnexpectedReplyError, match="0x00"):
            protocol.parse_ping_reply(b"\x00")

    def test_get_speed_big_endian(self) -> None:
        assert protocol.parse_get_speed_reply(bytes([0xC0, 0x00, 0x00, 0x04, 0xB0])) == 1200

    def test_get_speed_malformed_header(self) -> None:
        with pytest.raises(MalformedReplyError):
            protocol.parse_get_speed_reply(bytes([0xC0, 0x01, 0x00, 0x04, 0xB0]))

    def test_set_speed_ok(self) -> None:
        protocol.parse_set_speed_reply(b"\x01")

    def test_set_speed_unexpected(self) -> None:
        with pytest.raises(UnexpectedReplyError):
            protocol.parse_set_speed_reply(b"\x02")
