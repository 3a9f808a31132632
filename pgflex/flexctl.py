"""Command line tool for managing backup configuration through the admin API."""

from __future__ import annotations

import argparse
import dataclasses
import json
import os
import urllib.error
import urllib.request
from typing import Any, Sequence

from pgflex.barman_config import BarmanSettings

API_PORT = 5500
REQUEST_TIMEOUT = 30.0

_UPDATE_FLAGS = (
    "archive-timeout",
    "recovery-window",
    "full-backup-frequency",
    "minimum-redundancy",
)


def backups_enabled() -> bool:
    return os.environ.get("S3_ARCHIVE_CONFIG", "") != ""


def get_app_name() -> str:
    name = os.environ.get("FLY_APP_NAME", "")
    if not name:
        raise RuntimeError("FLY_APP_NAME is not set")
    return name


def get_api_url() -> str:
    return f"http://{get_app_name()}.internal:{API_PORT}"


def _require_backups() -> None:
    if not backups_enabled():
        raise RuntimeError("backups are not enabled")


def _call(url: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    data = None
    headers = {}
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")
        headers["Content-Type"] = "application/json"
    request = urllib.request.Request(url, data=data, headers=headers)
    try:
        with urllib.request.urlopen(request, timeout=REQUEST_TIMEOUT) as response:
            body = response.read()
    except urllib.error.HTTPError as exc:
        body = exc.read()
    decoded = json.loads(body)
    if not isinstance(decoded, dict):
        raise ValueError("unexpected response from admin API")
    return decoded


def show_config() -> BarmanSettings:
    """Fetch and print the current barman settings."""
    _require_backups()
    url = f"{get_api_url()}/commands/admin/settings/view/barman"
    result = _call(url).get("result") or {}
    settings = BarmanSettings(
        archive_timeout=str(result.get("archive_timeout", "")),
        recovery_window=str(result.get("recovery_window", "")),
        full_backup_frequency=str(result.get("full_backup_frequency", "")),
        minimum_redundancy=str(result.get("minimum_redundancy", "")),
    )
    print(f"  ArchiveTimeout = {settings.archive_timeout}")
    print(f"  RecoveryWindow = {settings.recovery_window}")
    print(f"  FullBackupFrequency = {settings.full_backup_frequency}")
    print(f"  MinimumRedundancy = {settings.minimum_redundancy}")
    return settings


def update_config(settings: BarmanSettings) -> dict[str, Any]:
    """Send new barman settings; empty fields are left unchanged."""
    _require_backups()
    payload = {key: value for key, value in dataclasses.asdict(settings).items() if value}
    url = f"{get_api_url()}/commands/admin/settings/update/barman"
    reply = _call(url, payload)

    error = reply.get("error")
    if error:
        raise RuntimeError(f"error updating configuration: {error}")

    result = reply.get("result") or {}
    message = result.get("message")
    if message:
        print(message)
    if result.get("restart_required"):
        print(
            "A restart is required for these changes to take effect. "
            f"Run `fly pg restart -a {get_app_name()}` to restart.)"
        )
    return result


def _run_update(args: argparse.Namespace) -> None:
    values = {flag: getattr(args, flag.replace("-", "_")) for flag in _UPDATE_FLAGS}
    if all(value is None for value in values.values()):
        raise ValueError("at least one flag must be specified")
    _require_backups()
    update_config(
        BarmanSettings(
            archive_timeout=values["archive-timeout"] or "",
            recovery_window=values["recovery-window"] or "",
            full_backup_frequency=values["full-backup-frequency"] or "",
            minimum_redundancy=values["minimum-redundancy"] or "",
        )
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="flexctl")
    commands = parser.add_subparsers(dest="command", required=True)

    backup = commands.add_parser("backup", aliases=["backups"])
    backup_commands = backup.add_subparsers(dest="backup_command", required=True)

    config = backup_commands.add_parser("config", help="Manage backup configuration")
    config_commands = config.add_subparsers(dest="config_command", required=True)

    show = config_commands.add_parser("show", help="Show current configuration")
    show.set_defaults(handler=lambda _args: show_config())

    update = config_commands.add_parser("update", help="Update configuration")
    update.add_argument("--archive-timeout", default=None, help="Archive timeout")
    update.add_argument("--recovery-window", default=None, help="Recovery window")
    update.add_argument(
        "--full-backup-frequency", default=None, help="Full backup frequency"
    )
    update.add_argument("--minimum-redundancy", default=None, help="Minimum redundancy")
    update.set_defaults(handler=_run_update)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        args.handler(args)
    except (RuntimeError, ValueError, OSError) as exc:
        print(exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())