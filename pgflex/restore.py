"""Restore targets and selection of the base backup to restore from."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import parse_qs, urlsplit

log = logging.getLogger(__name__)

DEFAULT_RESTORE_DIR = "/data/postgresql"
DEFAULT_RECOVERY_TARGET_ACTION = "promote"

# Layout barman uses for backup begin/end times.
_BARMAN_TIME_FORMAT = "%a %b %d %H:%M:%S %Y"

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})\Z"
)


@dataclass
class Backup:
    """One entry of a barman backup listing."""

    id: str = ""
    name: str = ""
    status: str = ""
    start_time: str = ""
    end_time: str = ""
    begin_wal: str = ""


@dataclass
class BackupList:
    backups: list[Backup] = field(default_factory=list)


@dataclass
class RestoreTarget:
    """Recovery target parameters taken from a restore configuration URL."""

    recovery_target: str = ""
    recovery_target_name: str = ""
    recovery_target_time: str = ""
    recovery_target_timeline: str = ""
    recovery_target_action: str = DEFAULT_RECOVERY_TARGET_ACTION
    recovery_target_inclusive: str = ""


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def parse_backups(data: bytes | str) -> BackupList:
    """Parse the JSON output of a barman backup listing."""
    document = json.loads(data)
    entries = document.get("backups_list") or []
    return BackupList(
        backups=[
            Backup(
                id=_text(entry.get("backup_id")),
                name=_text(entry.get("backup_name")),
                status=_text(entry.get("status")),
                start_time=_text(entry.get("begin_time")),
                end_time=_text(entry.get("end_time")),
                begin_wal=_text(entry.get("begin_wal")),
            )
            for entry in entries
        ]
    )


def _parse_rfc3339(value: str) -> datetime:
    invalid = ValueError(f'parsing time "{value}" as RFC3339: invalid format')
    match = _RFC3339.match(value)
    if match is None:
        raise invalid
    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    fraction = match.group(7)
    micro = int((fraction[1:] + "000000")[:6]) if fraction else 0

    zone = match.group(8)
    if zone.upper() == "Z":
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        hours, minutes = int(zone[1:3]), int(zone[4:6])
        if hours > 23 or minutes > 59:
            raise invalid
        tz = timezone(sign * timedelta(hours=hours, minutes=minutes))

    try:
        return datetime(year, month, day, hour, minute, second, micro, tzinfo=tz)
    except ValueError:
        raise invalid from None


def format_timestamp(value: str) -> str:
    """Normalise an RFC 3339 timestamp to ``YYYY-MM-DDTHH:MM:SS+HH:MM``."""
    moment = _parse_rfc3339(value)
    offset = moment.utcoffset() or timedelta(0)
    total_minutes = int(offset.total_seconds()) // 60
    sign = "-" if total_minutes < 0 else "+"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{moment.strftime('%Y-%m-%dT%H:%M:%S')}{sign}{hours:02d}:{minutes:02d}"


def parse_restore_target(config_url: str) -> RestoreTarget:
    """Read the recovery target options from a restore configuration URL."""
    try:
        parts = urlsplit(config_url)
    except ValueError as exc:
        raise ValueError(f"invalid restore config url: {exc}") from exc

    target = RestoreTarget(recovery_target_action="")
    for key, values in parse_qs(parts.query, keep_blank_values=True).items():
        value = values[0]
        if key == "target":
            target.recovery_target = value
        elif key == "targetName":
            target.recovery_target_name = value
        elif key == "targetInclusive":
            target.recovery_target_inclusive = value
        elif key == "targetAction":
            target.recovery_target_action = value
        elif key == "targetTime":
            try:
                target.recovery_target_time = format_timestamp(value)
            except ValueError as exc:
                raise ValueError(f"failed to parse target time: {exc}") from exc
        elif key == "targetTimeline":
            target.recovery_target_timeline = value
        else:
            log.warning("unknown query parameter: %s. ignoring.", key)

    if not target.recovery_target_action:
        target.recovery_target_action = DEFAULT_RECOVERY_TARGET_ACTION
    return target


def resolve_backup_from_name(backup_list: BackupList, name: str) -> str:
    """Return the ID of the backup whose ID or name is ``name``."""
    if not backup_list.backups:
        raise ValueError("no backups found")
    for backup in backup_list.backups:
        if name in (backup.id, backup.name):
            return backup.id
    raise ValueError(f"no backup found with id/name {name}")


def resolve_backup_from_time(backup_list: BackupList, restore_time: str) -> str:
    """Return the ID of the base backup to restore for an RFC 3339 restore time."""
    if not backup_list.backups:
        raise ValueError("no backups found")

    try:
        target = _parse_rfc3339(restore_time)
    except ValueError as exc:
        raise ValueError(f"failed to parse restore time: {exc}") from exc

    last_id = ""
    last_time: datetime | None = None

    for backup in backup_list.backups:
        if backup.status != "DONE":
            continue

        try:
            end_time = datetime.strptime(backup.end_time, _BARMAN_TIME_FORMAT).replace(
                tzinfo=timezone.utc
            )
        except ValueError as exc:
            raise ValueError(f"failed to parse backup end time: {exc}") from exc

        if not last_id or target > end_time:
            last_id = backup.id
            last_time = end_time

        if last_time is not None and end_time > last_time:
            return last_id

    return last_id