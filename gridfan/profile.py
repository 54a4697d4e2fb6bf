"""Fan speed policy: temperature curve lookup and disk power state handling."""

import logging
from dataclasses import dataclass

from gridfan.disk import DiskStatus

log = logging.getLogger(__name__)

# Used when no curve point matches and when the disks could not be sampled
FALLBACK_RPM = 100

# last_rpm value meaning the curve fans must be (re)applied
UNKNOWN_RPM = -1


@dataclass(frozen=True)
class CurvePoint:
    """Fan speed to use from a temperature upwards."""

    temperature: int  # °C
    rpm: int


@dataclass(frozen=True)
class SpeedCurve:
    """A stepped fan curve.

    The speed for a temperature is the rpm of the last point whose threshold
    is at or below it. Below the first point default_rpm applies.
    """

    points: tuple[CurvePoint, ...]
    default_rpm: int = FALLBACK_RPM

    def __post_init__(self) -> None:
        for prev, point in zip(self.points, self.points[1:]):
            if point.temperature <= prev.temperature:
                raise ValueError(
                    f"Curve temperatures must be strictly increasing, "
                    f"got {prev.temperature} then {point.temperature}"
                )

    def compute_speed(self, temperature: int) -> int:
        rpm = self.default_rpm
        for point in self.points:
            if point.temperature > temperature:
                break
            rpm = point.rpm
        return rpm


@dataclass
class ControlState:
    """Control loop memory carried from one poll cycle to the next.

    last_status starts as ASLEEP so that a restart does not spin fans up
    while the disks are already asleep.
    """

    last_status: DiskStatus = DiskStatus.ASLEEP
    deadline_off: float = 0.0
    last_rpm: int = UNKNOWN_RPM
    constant_applied: bool = False


@dataclass(frozen=True)
class SpeedPolicy:
    """Maps the disk group state to a target rpm for the curve fans."""

    curve: SpeedCurve
    sleeping_rpm: int
    cooldown_rpm: int
    standby_rpm: int
    cooldown_timeout: float  # seconds

    def target_rpm(
        self, state: ControlState, status: DiskStatus, temperature: int, now: float,
    ) -> int:
        """Compute the target rpm and advance state to the new status.

        now is a monotonic timestamp in seconds. temperature is only used
        when status is ACTIVE.
        """
        previous = state.last_status
        state.last_status = status

        if status == DiskStatus.ASLEEP:
            if previous != DiskStatus.ASLEEP:
                # Keep cooling for a while after the disks spin down
                state.deadline_off = now + self.cooldown_timeout
                log.info(
                    "Disks just fell asleep, cooling down for %.0fs at %d RPM",
                    self.cooldown_timeout, self.cooldown_rpm,
                )
                return self.cooldown_rpm

            remaining = state.deadline_off - now
            if remaining <= 0:
                log.debug("Disks asleep, cooldown finished")
                return self.sleeping_rpm
            log.debug("Disks asleep, cooldown over in %.0fs", remaining)
            return self.cooldown_rpm

        if status == DiskStatus.STANDBY:
            return self.standby_rpm

        if previous != DiskStatus.ACTIVE:
            log.info("Disks became active")
        return self.curve.compute_speed(temperature)
