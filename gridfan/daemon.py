"""Fan control loop: disk polling, speed policy and controller updates."""

import logging
import signal
import time

from gridfan.config import Config, ConfigError
from gridfan.controller import Controller
from gridfan.disk import DiskError, DiskGroup, DiskSampler, DiskStatus
from gridfan.profile import FALLBACK_RPM, UNKNOWN_RPM, ControlState
from gridfan.protocol import ProtocolError

log = logging.getLogger(__name__)

OPEN_RETRY_INTERVAL = 5.0  # seconds between controller open attempts


class Daemon:
    """Ties together disk sampling, the speed policy and the fan controller."""

    def __init__(
        self,
        config: Config,
        controller: Controller | None = None,
        sampler: DiskSampler | None = None,
    ) -> None:
        self._config = config
        self._sampler = sampler
        self._controller = controller if controller is not None else Controller(config.device_path)
        self._disks = DiskGroup(config.disks, sampler)
        self._policy = config.policy
        self._state = ControlState()
        self._pending_config: Config | None = None
        self._running = True

    @property
    def state(self) -> ControlState:
        return self._state

    def _on_shutdown(self, signum: int, _frame: object) -> None:
        sig_name = signal.Signals(signum).name
        log.info("Received %s, shutting down", sig_name)
        self._running = False

    def _on_reload(self, _signum: int, _frame: object) -> None:
        log.info("Received SIGHUP, reloading configuration")
        try:
            config = Config.from_file(
                self._config.path, log_level=self._config.log_level, debug=self._config.debug,
            )
        except ConfigError as e:
            log.error("Failed to reload configuration: %s", e)
            return
        # Applied by step() between cycles, never in the middle of apply()
        self._pending_config = config

    def reload(self, config: Config) -> None:
        """Switch to a new configuration, re-applying every fan on the next cycle."""
        if config.device_path != self._config.device_path:
            self._controller.close()
            self._controller = Controller(config.device_path)
        self._config = config
        self._disks = DiskGroup(config.disks, self._sampler)
        self._policy = config.policy
        self._state.constant_applied = False
        self._state.last_rpm = UNKNOWN_RPM
        log.info("Configuration reloaded from %s", config.path)

    def _target_rpm(self, now: float) -> int:
        """Sample the disks and compute the curve fan target for this cycle."""
        try:
            status = self._disks.get_status()
            temp = self._disks.get_temperature() if status == DiskStatus.ACTIVE else 0
        except DiskError as e:
            log.error("Failed to check disk status: %s", e)
            return FALLBACK_RPM

        log.info("Temp: %d°C Status: %s", temp, status)
        return self._policy.target_rpm(self._state, status, temp, now)

    def _set_fans(self, fans: dict[int, int]) -> bool:
        """Set each fan to its rpm. Returns True if every fan was set."""
        ok = True
        for fan, rpm in fans.items():
            try:
                self._controller.set_speed(fan, rpm)
            except (OSError, ProtocolError) as e:
                log.error("Failed to set fan %d to %d RPM: %s", fan, rpm, e)
                ok = False
        return ok

    def apply(self, target: int) -> bool:
        """Push pending fan changes to the controller.

        Returns False if the controller could not be opened.
        """
        state = self._state
        if state.constant_applied and target == state.last_rpm:
            log.debug("No RPM change")
            return True

        try:
            with self._controller.session():
                if not state.constant_applied:
                    log.info("Setting constant fans: %s", self._config.constant_rpm)
                    state.constant_applied = self._set_fans(self._config.constant_rpm)

                if target != state.last_rpm:
                    log.info("Setting curve fans %s to %d RPM", self._config.curve_fans, target)
                    fans = {fan: target for fan in self._config.curve_fans}
                    state.last_rpm = target if self._set_fans(fans) else UNKNOWN_RPM
        except (OSError, ProtocolError) as e:
            log.error("Failed to open controller: %s", e)
            return False

        return True

    def step(self, now: float | None = None) -> float:
        """Run one poll cycle. Returns the number of seconds to wait before the next."""
        if self._pending_config is not None:
            config, self._pending_config = self._pending_config, None
            self.reload(config)
        if now is None:
            now = time.monotonic()
        target = self._target_rpm(now)
        if not self.apply(target):
            return OPEN_RETRY_INTERVAL
        return self._config.poll_interval

    def _wait(self, seconds: float) -> None:
        """Sleep in small increments so we can respond to signals promptly."""
        end = time.monotonic() + seconds
        while self._running and time.monotonic() < end:
            time.sleep(min(0.5, end - time.monotonic()))

    def run(self) -> None:
        """Main loop: sample disks, compute speed, update the controller."""
        log.info(
            "Starting daemon with device=%s, poll_interval=%.1fs, constant=%s, curve fans=%s, disks=%s",
            self._config.device_path,
            self._config.poll_interval,
            self._config.constant_rpm,
            self._config.curve_fans,
            self._config.disks,
        )

        signal.signal(signal.SIGTERM, self._on_shutdown)
        signal.signal(signal.SIGINT, self._on_shutdown)
        signal.signal(signal.SIGHUP, self._on_reload)

        while self._running:
            self._wait(self.step())

        self._controller.close()
        log.info("Daemon stopped")
