"""Configuration from the YAML fan config, /etc/default/gridfan and CLI arguments."""

import argparse
import logging
import os
from dataclasses import dataclass, field
from typing import Any

import yaml
from dotenv import dotenv_values

from gridfan.profile import FALLBACK_RPM, CurvePoint, SpeedCurve, SpeedPolicy
from gridfan.protocol import (
    ALL_FANS,
    MAX_FAN,
    MAX_RPM,
    MIN_FAN,
    MIN_RPM,
    is_valid_fan,
    is_valid_rpm,
)

DEFAULT_ENV_PATH = "/etc/default/gridfan"
DEFAULT_CONFIG_PATH = "/etc/gridfan.yaml"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
MAX_COOLDOWN_TIMEOUT = 3600


class ConfigError(ValueError):
    """Invalid configuration."""


def parse_fans(raw: str) -> tuple[int, ...]:
    """Parse 'all' or a comma-separated list of fan numbers (1-6)."""
    if raw.strip().lower() == "all":
        return ALL_FANS
    fans = tuple(sorted(set(int(f.strip()) for f in raw.split(","))))
    if not fans or any(not is_valid_fan(f) for f in fans):
        raise ValueError(
            f"Invalid fans: {raw}. Must be 'all' or comma-separated values in {MIN_FAN}-{MAX_FAN}"
        )
    return fans


def parse_rpm(raw: str) -> int:
    """Parse an rpm setting: 0 or 20-100."""
    rpm = int(raw)
    if not is_valid_rpm(rpm):
        raise ValueError(f"Invalid rpm: {raw}. Must be 0 or in {MIN_RPM}-{MAX_RPM}")
    return rpm


def parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="gridfan",
        description="Disk temperature driven fan control for Grid serial fan controllers",
    )
    parser.add_argument(
        "--config",
        help=f"Path to the YAML fan configuration (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        help="Log level (overrides environment file)",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("daemon", help="Run the fan control loop")

    get = commands.add_parser("get", help="Print fan speeds")
    get.add_argument("fans", type=parse_fans, help="'all' or comma-separated fans (1-6)")

    set_ = commands.add_parser("set", help="Set fan speeds")
    set_.add_argument("fans", type=parse_fans, help="'all' or comma-separated fans (1-6)")
    set_.add_argument("rpm", type=parse_rpm, help="0 or 20-100")

    return parser.parse_args(argv)


def _int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    return value


def _section(data: dict[str, Any], key: str, name: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a mapping, got {value!r}")
    return value


def _parse_fan_config(data: Any) -> dict[str, Any]:
    """Turn the YAML document into Config keyword arguments."""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML mapping")

    kwargs: dict[str, Any] = {}

    if (v := data.get("serial_device_path")) is not None:
        kwargs["device_path"] = str(v)

    kwargs["constant_rpm"] = {
        _int(fan, "constant_rpm fan"): _int(rpm, f"constant_rpm[{fan}]")
        for fan, rpm in _section(data, "constant_rpm", "constant_rpm").items()
    }

    curve = _section(data, "disk_curve", "disk_curve")
    if "target_temp" in curve:
        raise ConfigError("disk_curve.target_temp is not supported, use disk_curve.points")

    kwargs["curve_fans"] = tuple(_int(f, "disk_curve.fans") for f in curve.get("fans") or ())
    kwargs["disks"] = tuple(str(d) for d in curve.get("disks") or ())

    if (v := curve.get("poll_interval")) is not None:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ConfigError(f"disk_curve.poll_interval must be a number, got {v!r}")
        kwargs["poll_interval"] = float(v)

    if (v := curve.get("cooldown_timeout")) is not None:
        kwargs["cooldown_timeout"] = _int(v, "disk_curve.cooldown_timeout")

    rpm = _section(curve, "rpm", "disk_curve.rpm")
    for key in ("sleeping", "cooldown", "standby"):
        if (v := rpm.get(key)) is not None:
            kwargs[f"{key}_rpm"] = _int(v, f"disk_curve.rpm.{key}")

    points = []
    for point in curve.get("points") or ():
        if not isinstance(point, dict) or "temp" not in point or "rpm" not in point:
            raise ConfigError(f"Curve point must have temp and rpm, got {point!r}")
        points.append(CurvePoint(
            temperature=_int(point["temp"], "curve point temp"),
            rpm=_int(point["rpm"], "curve point rpm"),
        ))
    try:
        kwargs["curve"] = SpeedCurve(tuple(points))
    except ValueError as e:
        raise ConfigError(str(e)) from e

    return kwargs


@dataclass
class Config:
    """Daemon and fan configuration."""

    device_path: str = ""
    constant_rpm: dict[int, int] = field(default_factory=dict)
    curve_fans: tuple[int, ...] = ()
    disks: tuple[str, ...] = ()
    poll_interval: float = 60.0
    cooldown_timeout: int = 0
    sleeping_rpm: int = 0
    cooldown_rpm: int = FALLBACK_RPM
    standby_rpm: int = FALLBACK_RPM
    curve: SpeedCurve = field(default_factory=lambda: SpeedCurve(()))
    path: str = DEFAULT_CONFIG_PATH
    log_level: str = "INFO"
    debug: bool = False

    def __post_init__(self) -> None:
        if not self.device_path:
            raise ConfigError("Missing serial_device_path")

        for fan, rpm in self.constant_rpm.items():
            if not is_valid_fan(fan):
                raise ConfigError(f"Invalid fan index: {fan}")
            if not is_valid_rpm(rpm):
                raise ConfigError(f"Invalid fan {fan} rpm: {rpm}")

        if len(set(self.curve_fans)) != len(self.curve_fans):
            raise ConfigError(f"Duplicate fan in disk_curve.fans: {self.curve_fans}")
        for fan in self.curve_fans:
            if not is_valid_fan(fan):
                raise ConfigError(f"Invalid fan index: {fan}")
            if fan in self.constant_rpm:
                raise ConfigError(f"Fan {fan} present in both constant_rpm and disk_curve")

        for name in ("sleeping", "cooldown", "standby"):
            rpm = getattr(self, f"{name}_rpm")
            if not is_valid_rpm(rpm):
                raise ConfigError(f"Invalid {name} rpm: {rpm}")

        for point in self.curve.points:
            if not (0 <= point.temperature <= 100):
                raise ConfigError(f"Invalid curve temperature: {point.temperature} not in [0, 100]")
            if not is_valid_rpm(point.rpm):
                raise ConfigError(f"Invalid curve rpm: {point.rpm}")

        if self.poll_interval <= 0:
            raise ConfigError(f"Poll interval must be positive, got {self.poll_interval}")

        if not (0 <= self.cooldown_timeout <= MAX_COOLDOWN_TIMEOUT):
            raise ConfigError(
                f"Invalid cooldown_timeout: {self.cooldown_timeout} not in [0, {MAX_COOLDOWN_TIMEOUT}]"
            )

        if self.debug:
            self.log_level = "DEBUG"

        if self.log_level not in LOG_LEVELS:
            raise ConfigError(
                f"Invalid log level '{self.log_level}'. Must be one of: {', '.join(LOG_LEVELS)}"
            )

    @property
    def policy(self) -> SpeedPolicy:
        return SpeedPolicy(
            curve=self.curve,
            sleeping_rpm=self.sleeping_rpm,
            cooldown_rpm=self.cooldown_rpm,
            standby_rpm=self.standby_rpm,
            cooldown_timeout=self.cooldown_timeout,
        )

    @classmethod
    def from_file(cls, path: str, **overrides: Any) -> "Config":
        """Load the YAML fan configuration at path."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e

        kwargs = _parse_fan_config(data if data is not None else {})
        kwargs.update(overrides)
        return cls(path=path, **kwargs)

    @classmethod
    def load(cls, args: argparse.Namespace) -> "Config":
        """Load configuration from the environment file, env vars, CLI args and YAML.

        Priority for daemon settings (highest to lowest):
        1. CLI arguments
        2. Environment variables (set by systemd EnvironmentFile)
        3. /etc/default/gridfan file
        4. Dataclass defaults
        """
        file_env = {k: v for k, v in dotenv_values(DEFAULT_ENV_PATH).items() if v is not None}

        def env(key: str) -> str | None:
            if key in os.environ:
                return os.environ[key]
            return file_env.get(key)

        path = DEFAULT_CONFIG_PATH
        settings: dict[str, Any] = {}

        if (v := env("CONFIG")) is not None:
            path = v

        if (v := env("LOG_LEVEL")) is not None:
            settings["log_level"] = v.upper()

        if (v := env("DEBUG")) is not None:
            settings["debug"] = v.lower() in ("true", "1", "yes")

        # CLI arguments override everything
        if args.config is not None:
            path = args.config

        if args.log_level is not None:
            settings["log_level"] = args.log_level

        if args.debug is True:
            settings["debug"] = True

        return cls.from_file(path, **settings)

    def setup_logging(self) -> None:
        """Configure logging based on this config."""
        logging.basicConfig(
            level=getattr(logging, self.log_level),
            format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
