"""Barman configuration: internal defaults, user overrides and validation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping

log = logging.getLogger(__name__)

DEFAULT_BARMAN_CONFIG_DIR = "/data/barman/"
CONSUL_KEY = "BarmanConfig"

ConfigMap = dict[str, Any]

_SECOND_NANOS = 1_000_000_000
_UNIT_NANOS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": _SECOND_NANOS,
    "m": 60 * _SECOND_NANOS,
    "h": 3600 * _SECOND_NANOS,
}
_DURATION_PART = re.compile(r"(\d*)(?:\.(\d*))?(ns|us|µs|μs|ms|s|m|h)")
_POSTGRES_VALUE = re.compile(r"(\d+)([a-z]+)")
_RECOVERY_WINDOW = re.compile(r"^(\d+)([dwy])$")
_INTEGER = re.compile(r"^[+-]?\d+$")

_POSTGRES_UNITS = {
    "us": "us",
    "ms": "ms",
    "s": "s",
    "min": "min",
    "m": "min",
    "h": "h",
    "d": "d",
}

_RECOVERY_WINDOW_UNITS = {
    "m": "MONTHS",
    "w": "WEEKS",
    "d": "DAYS",
}


@dataclass
class BarmanSettings:
    """Barman settings in the form the backup tooling consumes."""

    archive_timeout: str = ""
    recovery_window: str = ""
    full_backup_frequency: str = ""
    minimum_redundancy: str = ""


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``"1h30m"`` or ``"250ms"``.

    Accepts an optional sign and a sequence of decimal numbers, each followed
    by one of the units ns, us, ms, s, m or h. Raises ValueError otherwise.
    """
    invalid = ValueError(f'time: invalid duration "{value}"')
    if not value:
        raise invalid

    text = value
    negative = False
    if text[0] in "+-":
        negative = text[0] == "-"
        text = text[1:]

    if text == "0":
        return timedelta(0)
    if not text:
        raise invalid

    total = Decimal(0)
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None or not (match.group(1) or match.group(2)):
            raise invalid
        whole, fraction, unit = match.groups()
        number = Decimal(f"{whole or '0'}.{fraction or '0'}")
        total += number * _UNIT_NANOS[unit]
        pos = match.end()

    if negative:
        total = -total
    return timedelta(microseconds=float(total / 1000))


def convert_recovery_window_duration(duration: str) -> str:
    """Turn ``"7d"`` into ``"7 DAYS"``; unknown suffixes are left untouched."""
    for unit, text in _RECOVERY_WINDOW_UNITS.items():
        if duration.endswith(unit):
            return f"{duration[: -len(unit)]} {text}"
    return duration


def convert_to_postgres_units(value: str) -> str:
    """Convert a duration to the unit spelling Postgres understands."""
    match = _POSTGRES_VALUE.search(value)
    if match is None:
        raise ValueError(f"invalid duration format: {value}")

    number = int(match.group(1))
    unit = match.group(2)
    try:
        postgres_unit = _POSTGRES_UNITS[unit]
    except KeyError:
        raise ValueError(f"unsupported postgres unit: {unit}") from None

    return f"{number}{postgres_unit}"


def read_config_file(path: str | Path) -> ConfigMap:
    """Read ``key = value`` lines from a configuration file."""
    config: ConfigMap = {}
    with open(path, encoding="utf-8") as handle:
        for raw in handle:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            key, sep, value = line.partition("=")
            if not sep:
                continue
            config[key.strip()] = value.strip().strip("'")
    return config


def _write_config_file(path: Path, config: Mapping[str, Any]) -> None:
    lines = [f"{key} = {config[key]}\n" for key in sorted(config)]
    path.write_text("".join(lines), encoding="utf-8")


def _require_str(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"invalid value for {key}: {value!r}")
    return value


class BarmanConfig:
    """Barman configuration backed by an internal and a user config file."""

    def __init__(self, config_dir: str | Path = DEFAULT_BARMAN_CONFIG_DIR) -> None:
        directory = Path(config_dir)
        self.internal_config_file = directory / "barman.internal.conf"
        self.user_config_file = directory / "barman.user.conf"
        self.internal_config: ConfigMap = {}
        self.user_config: ConfigMap = {}
        self.settings = BarmanSettings()

        directory.mkdir(parents=True, exist_ok=True)
        self.set_defaults()
        _write_config_file(self.internal_config_file, self.internal_config)

        if self.user_config_file.exists():
            self.user_config = read_config_file(self.user_config_file)
        else:
            self.user_config_file.touch()

        try:
            self.settings = self.parse_settings()
        except ValueError as exc:
            raise ValueError(f"failed to parse barman config: {exc}") from exc

    @property
    def consul_key(self) -> str:
        return CONSUL_KEY

    def set_defaults(self) -> None:
        """Reset the internal configuration to its defaults."""
        self.internal_config = {
            "archive_timeout": "60s",
            "recovery_window": "7d",
            "full_backup_frequency": "24h",
            "minimum_redundancy": "3",
        }

    def set_user_config(self, new_config: Mapping[str, Any]) -> None:
        self.user_config = dict(new_config)

    def write_user_config(self) -> None:
        """Persist the user configuration to its file."""
        _write_config_file(self.user_config_file, self.user_config)

    def current_config(self) -> ConfigMap:
        """Return internal settings overlaid with the user's settings."""
        merged = read_config_file(self.internal_config_file)
        merged.update(read_config_file(self.user_config_file))
        return merged

    def parse_settings(self) -> BarmanSettings:
        """Read the current configuration into structured settings."""
        try:
            config = self.current_config()
        except OSError as exc:
            raise ValueError(f"failed to read current config: {exc}") from exc

        recovery_window = "RECOVERY WINDOW OF " + convert_recovery_window_duration(
            str(config["recovery_window"])
        )
        try:
            archive_timeout = convert_to_postgres_units(str(config["archive_timeout"]))
        except ValueError as exc:
            raise ValueError(
                f"failed to convert archive_timeout to postgres units: {exc}"
            ) from exc

        return BarmanSettings(
            archive_timeout=archive_timeout,
            recovery_window=recovery_window,
            full_backup_frequency=str(config["full_backup_frequency"]),
            minimum_redundancy=str(config["minimum_redundancy"]),
        )

    def validate(self, requested_changes: Mapping[str, Any]) -> None:
        """Raise ValueError if any requested change is not acceptable."""
        for key in requested_changes:
            if key not in self.internal_config:
                raise ValueError(f"invalid key: {key}")

        for key, value in requested_changes.items():
            if key == "archive_timeout":
                try:
                    convert_to_postgres_units(_require_str(key, value))
                except ValueError as exc:
                    raise ValueError(f"invalid value for archive_timeout: {exc}") from exc

            elif key == "recovery_window":
                match = _RECOVERY_WINDOW.match(_require_str(key, value))
                if match is None:
                    raise ValueError(f"invalid value for recovery_window: {value}")
                number = int(match.group(1))
                if number < 1:
                    raise ValueError(
                        f"invalid value for recovery_window (expected to be >= 1, got {number})"
                    )

            elif key == "full_backup_frequency":
                try:
                    duration = parse_duration(_require_str(key, value))
                except ValueError:
                    raise ValueError(
                        f"invalid value for full_backup_frequency: {value}"
                    ) from None
                if duration < timedelta(hours=1):
                    raise ValueError(
                        "invalid value for full_backup_frequency "
                        f"(expected to be >= 1h, got {value})"
                    )

            elif key == "minimum_redundancy":
                text = _require_str(key, value)
                if not _INTEGER.match(text):
                    raise ValueError(f"invalid value for minimum_redundancy: {value}")
                number = int(text)
                if number < 0:
                    raise ValueError(
                        f"invalid value for minimum_redundancy (expected be >= 0, got {number})"
                    )