"""System checks: disk space, load average and pressure stall information."""

from __future__ import annotations

import math
import os
import re
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

from pgflex.checks import CheckSuite

DATA_DIR = "/data/"
PRESSURE_ROOT = "/proc/pressure"
LOADAVG_PATH = "/proc/loadavg"

_PRESSURE = re.compile(
    r"\s*some\s+avg10=(\S+)\s+avg60=(\S+)\s+avg300=(\S+)\s+total=(\S+)"
)
_LOADAVG = re.compile(r"\s*(\S+)\s+(\S+)\s+(\S+)\s+(\d+)/(\d+)\s+(\d+)")
_SUFFIXES = ("B", "KB", "MB", "GB", "TB")

_NANOS_PER_MICRO = 1_000
_NANOS_PER_MILLI = 1_000_000
_NANOS_PER_SECOND = 1_000_000_000


def check_vm(suite: CheckSuite) -> CheckSuite:
    """Register the disk, load and pressure checks on ``suite``."""
    suite.add_check("checkDisk", lambda: check_disk(DATA_DIR))
    suite.add_check("checkLoad", check_load)
    for name in ("memory", "cpu", "io"):
        suite.add_check(name, lambda name=name: check_pressure(name))
    return suite


def _frac_string(value: int, digits: int) -> str:
    whole, frac = divmod(value, 10**digits)
    if not frac:
        return str(whole)
    return f"{whole}.{frac:0{digits}d}".rstrip("0")


def _duration_string(nanos: int) -> str:
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    u = abs(nanos)
    if u < _NANOS_PER_SECOND:
        if u < _NANOS_PER_MICRO:
            return f"{sign}{u}ns"
        if u < _NANOS_PER_MILLI:
            return f"{sign}{_frac_string(u, 3)}µs"
        return f"{sign}{_frac_string(u, 6)}ms"
    secs, frac = divmod(u, _NANOS_PER_SECOND)
    text = str(secs % 60)
    if frac:
        text += "." + f"{frac:09d}".rstrip("0")
    text += "s"
    minutes = secs // 60
    if minutes:
        text = f"{minutes % 60}m{text}"
        hours = minutes // 60
        if hours:
            text = f"{hours}h{text}"
    return sign + text


def _round_to(nanos: int, multiple: int) -> int:
    if multiple <= 0:
        return nanos
    remainder = nanos % multiple
    if remainder + remainder < multiple:
        return nanos - remainder
    return nanos + multiple - remainder


def _round_duration(duration: timedelta, digits: int) -> str:
    nanos = (duration // timedelta(microseconds=1)) * _NANOS_PER_MICRO
    div = 10**digits
    if nanos > _NANOS_PER_SECOND:
        nanos = _round_to(nanos, _NANOS_PER_SECOND // div)
    elif nanos > _NANOS_PER_MILLI:
        nanos = _round_to(nanos, _NANOS_PER_MILLI // div)
    elif nanos > _NANOS_PER_MICRO:
        nanos = _round_to(nanos, _NANOS_PER_MICRO // div)
    return _duration_string(nanos)


def pressure_to_duration(pressure: float, base: float) -> timedelta:
    """Time spent stalled within a window of ``base`` seconds."""
    seconds = Decimal(f"{base * (pressure / 100):f}")
    return timedelta(microseconds=int(seconds * 1_000_000))


def check_pressure(name: str, root: str | Path = PRESSURE_ROOT) -> str:
    """Fail when more than 10% of any window was spent waiting on ``name``."""
    raw = Path(root, name).read_text()
    match = _PRESSURE.match(raw)
    if match is None:
        raise ValueError(f"unexpected pressure format in {name}")
    avg10, avg60, avg300, _total = (float(v) for v in match.groups())

    avg10_dur = pressure_to_duration(avg10, 10.0)
    avg60_dur = pressure_to_duration(avg60, 60.0)
    avg300_dur = pressure_to_duration(avg300, 300.0)

    for avg, window, dur in (
        (avg10, 10, avg10_dur),
        (avg60, 60, avg60_dur),
        (avg300, 300, avg300_dur),
    ):
        if avg > 10:
            raise RuntimeError(
                f"system spent {_round_duration(dur, 2)} of the last "
                f"{window} seconds waiting on {name}"
            )

    return f"system spent {_round_duration(avg60_dur, 2)} of the last 60s waiting on {name}"


def check_load(path: str | Path = LOADAVG_PATH) -> str:
    """Fail when the load average per CPU is too high."""
    raw = Path(path).read_text()
    match = _LOADAVG.match(raw)
    if match is None:
        raise ValueError("unexpected loadavg format")
    load1, load5, load10 = (float(v) for v in match.groups()[:3])
    cpus = float(os.cpu_count() or 1)

    if load1 / cpus > 10:
        raise RuntimeError(f"1 minute load average is very high: {load1:.2f}")
    if load5 / cpus > 4:
        raise RuntimeError(f"5 minute load average is high: {load5:.2f}")
    if load10 / cpus > 2:
        raise RuntimeError(f"10 minute load average is high: {load10:.2f}")

    return f"load averages: {load10:.2f} {load5:.2f} {load1:.2f}"


def disk_usage(directory: str | Path) -> tuple[int, int]:
    """Return ``(size, available)`` in bytes for the filesystem of ``directory``."""
    try:
        stat = os.statvfs(directory)
    except OSError as exc:
        raise OSError(f"{directory}: {exc}") from exc
    return stat.f_blocks * stat.f_bsize, stat.f_bavail * stat.f_bsize


def check_disk(directory: str | Path) -> str:
    """Fail when less than 10% of the filesystem is free."""
    size, available = disk_usage(directory)
    pct = available / size
    msg = f"{data_size(available)} ({pct * 100:.1f}%) free space on {directory}"
    if pct < 0.1:
        raise RuntimeError(msg)
    return msg


def round_half(value: float, round_on: float, places: int) -> float:
    """Round to ``places`` decimals, rounding up when the remainder reaches ``round_on``."""
    power = 10.0**places
    digit = power * value
    fraction, _ = math.modf(digit)
    rounded = math.ceil(digit) if fraction >= round_on else math.floor(digit)
    return rounded / power


def _format_float(value: float) -> str:
    text = repr(value)
    return text[:-2] if text.endswith(".0") else text


def data_size(size: int) -> str:
    """Human readable byte count, e.g. ``"1.5 KB"``."""
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    base = math.log(size) / math.log(1024)
    index = math.floor(base)
    if index >= len(_SUFFIXES):
        raise ValueError(f"size too large: {size}")
    value = round_half(1024 ** (base - index), 0.5, 2)
    return f"{_format_float(value)} {_SUFFIXES[index]}"