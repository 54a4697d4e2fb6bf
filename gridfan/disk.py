"""Disk temperature and power state sampling via hddtemp and hdparm."""

import enum
import logging
import re
import subprocess
from collections.abc import Iterable
from typing import Protocol

log = logging.getLogger(__name__)

COMMAND_TIMEOUT = 30.0  # seconds

_TEMPERATURE_RE = re.compile(r"^\s*(\d+)")


class DiskStatus(enum.IntEnum):
    """Disk power state, ordered from least to most active."""

    ASLEEP = 0
    STANDBY = 1
    ACTIVE = 2

    def __str__(self) -> str:
        return self.name.lower()


class DiskError(Exception):
    """A disk could not be sampled."""


class SleepingDiskError(DiskError):
    """The disk is spun down and does not report a temperature."""


class DiskSampler(Protocol):
    """Source of per-disk readings."""

    def get_temperature(self, device: str) -> int:
        """Temperature in degrees Celsius. Raises SleepingDiskError if asleep."""
        ...

    def get_status(self, device: str) -> DiskStatus:
        """Power state of the disk. Raises DiskError if it cannot be read."""
        ...


def _run(cmd: list[str]) -> subprocess.CompletedProcess:
    """Run a command, raising DiskError if it cannot be run or exits non-zero."""
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=COMMAND_TIMEOUT)
    except (subprocess.TimeoutExpired, OSError) as e:
        raise DiskError(f"{cmd[0]} failed: {e}") from e

    if result.returncode != 0:
        raise DiskError(
            f"{' '.join(cmd)} exited with {result.returncode}: "
            f"stdout:[{result.stdout.strip()}] stderr:[{result.stderr.strip()}]"
        )
    return result


class SystemDiskSampler:
    """Reads temperatures with hddtemp and power states with hdparm -C."""

    def get_temperature(self, device: str) -> int:
        result = _run(["hddtemp", device])

        # hddtemp exits 0 on these, the only hint is on stderr
        if "No such file or directory" in result.stderr:
            raise DiskError(f"Disk {device} not found")
        if "drive is sleeping" in result.stderr:
            raise SleepingDiskError(f"Disk {device} is sleeping")

        lines = result.stdout.strip().splitlines()
        if len(lines) != 1:
            raise DiskError(f"Disk {device} hddtemp output is not one line: [{result.stdout}]")

        # /dev/sda: WDC WD40EFRX-68N32N0: 35°C
        fields = lines[0].split(":")
        if len(fields) < 3:
            raise DiskError(f"Disk {device} hddtemp output is not three fields: [{lines[0]}]")

        match = _TEMPERATURE_RE.match(fields[-1])
        if match is None:
            raise DiskError(f"Disk {device} hddtemp output has no temperature: [{lines[0]}]")
        return int(match.group(1))

    def get_status(self, device: str) -> DiskStatus:
        result = _run(["hdparm", "-C", device])

        # /dev/sda:
        #  drive state is:  active/idle
        lines = result.stdout.strip().splitlines()
        if len(lines) != 2:
            raise DiskError(f"Disk {device} hdparm output is not two lines: [{result.stdout}]")

        # hdparm's "standby" is a spun-down disk; "unknown" is what we call standby
        state = lines[1]
        if "standby" in state:
            return DiskStatus.ASLEEP
        if "unknown" in state:
            return DiskStatus.STANDBY
        if "active/idle" in state:
            return DiskStatus.ACTIVE
        raise DiskError(f"Disk {device} bad status line: [{state.strip()}]")


def hottest(temperatures: Iterable[int]) -> int:
    """Highest temperature, or 0 if there is none."""
    return max(temperatures, default=0)


def most_active(statuses: Iterable[DiskStatus]) -> DiskStatus:
    """Most active status, or ASLEEP if there is none."""
    return max(statuses, default=DiskStatus.ASLEEP)


class DiskGroup:
    """A set of disks reported as one: hottest temperature, most active status."""

    def __init__(self, devices: Iterable[str], sampler: DiskSampler | None = None) -> None:
        self._devices = tuple(devices)
        self._sampler: DiskSampler = sampler if sampler is not None else SystemDiskSampler()

    @property
    def devices(self) -> tuple[str, ...]:
        return self._devices

    def _awake_temperatures(self) -> Iterable[int]:
        for device in self._devices:
            try:
                temp = self._sampler.get_temperature(device)
            except SleepingDiskError:
                log.debug("Disk %s is sleeping, skipping temperature", device)
                continue
            log.debug("Disk %s temperature: %d°C", device, temp)
            yield temp

    def get_temperature(self) -> int:
        """Maximum temperature of the awake disks.

        Sleeping disks are skipped. Any other DiskError is raised.
        """
        return hottest(self._awake_temperatures())

    def get_status(self) -> DiskStatus:
        """Status of the most active disk. Any DiskError is raised."""
        return most_active(self._sampler.get_status(device) for device in self._devices)
