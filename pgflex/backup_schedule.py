"""Full backup scheduling helpers."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable

from pgflex.barman_config import BarmanSettings, parse_duration

log = logging.getLogger(__name__)

DEFAULT_FULL_BACKUP_SCHEDULE = timedelta(hours=24)
BACKUP_RETRY_INTERVAL = 30.0
MAX_BACKUP_RETRIES = 10


def backup_frequency(settings: BarmanSettings) -> timedelta:
    """Return the configured full backup frequency, or the default."""
    if settings.full_backup_frequency:
        try:
            return parse_duration(settings.full_backup_frequency)
        except ValueError as exc:
            log.warning("Failed to parse full backup frequency: %s", exc)
    return DEFAULT_FULL_BACKUP_SCHEDULE


def calculate_next_backup_time(
    settings: BarmanSettings, last_backup_time: datetime | None
) -> timedelta:
    """Time left until the next full backup is due.

    Without a previous backup a negative duration is returned so that a backup
    is taken straight away.
    """
    if last_backup_time is None:
        return -timedelta(microseconds=1)
    now = datetime.now(last_backup_time.tzinfo)
    return last_backup_time + backup_frequency(settings) - now


def perform_base_backup(
    backup: Callable[[bool], Any],
    immediate_checkpoint: bool,
    max_retries: int = MAX_BACKUP_RETRIES,
    retry_interval: float = BACKUP_RETRY_INTERVAL,
) -> Any:
    """Run ``backup(immediate_checkpoint)``, retrying on failure.

    Raises RuntimeError once ``max_retries`` retries have all failed.
    """
    retries = 0
    while True:
        try:
            return backup(immediate_checkpoint)
        except Exception as exc:  # noqa: BLE001 - any failure is retried
            log.warning(
                "Failed to perform full backup: %s. Retrying in %s seconds.",
                exc,
                retry_interval,
            )
            if retries >= max_retries:
                raise RuntimeError(
                    f"failed to perform full backup after {max_retries} retries"
                ) from exc
            retries += 1
            time.sleep(retry_interval)