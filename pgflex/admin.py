"""Administrative SQL helpers for a local Postgres instance.

Every function takes a connection object exposing ``execute(sql)`` for
statements and ``query(sql)`` returning an iterable of row sequences.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol, Sequence

_INTEGER = re.compile(r"^[+-]?\d+$")
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


class _Connection(Protocol):
    def execute(self, sql: str) -> Any: ...

    def query(self, sql: str) -> Iterable[Sequence[Any]]: ...


class NoRowsError(LookupError):
    """Raised when a query that must return a row returned none."""

    def __init__(self, message: str = "no rows in result set") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class Credential:
    username: str
    password: str


@dataclass
class ReplicationSlot:
    name: str = ""
    active: bool = False
    wal_status: str = ""
    retained_wal_in_bytes: int = 0
    member_id: int = 0


@dataclass
class DbInfo:
    name: str = ""
    users: list[str] | None = None


@dataclass
class UserInfo:
    username: str = ""
    superuser: bool = False
    databases: list[str] | None = None


def _omit() -> Any:
    return field(default=None, metadata={"omitempty": True})


@dataclass
class PGSetting:
    """A row of ``pg_settings``; empty fields are left out of JSON output."""

    name: str = field(default="", metadata={"omitempty": True})
    setting: str = field(default="", metadata={"omitempty": True})
    vartype: str | None = _omit()
    min_val: str | None = _omit()
    max_val: str | None = _omit()
    enumvals: list[str] | None = _omit()
    context: str | None = _omit()
    unit: str | None = _omit()
    short_desc: str | None = _omit()
    pending_change: str | None = _omit()
    pending_restart: bool | None = _omit()


def _quote_identifier(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def _query_row(conn: _Connection, sql: str) -> Sequence[Any]:
    for row in conn.query(sql):
        return row
    raise NoRowsError()


def _optional_list(values: Iterable[Any] | None) -> list[str] | None:
    return None if values is None else [str(v) for v in values]


def _parse_int(text: str, what: str, bits: int | None = None) -> int:
    if not _INTEGER.match(text):
        raise ValueError(f"failed to parse {what}: invalid syntax: {text!r}")
    number = int(text)
    if bits == 32 and not _INT32_MIN <= number <= _INT32_MAX:
        raise ValueError(f"failed to parse {what}: value out of range: {text!r}")
    return number


def grant_access(conn: _Connection, username: str) -> None:
    conn.execute(f"GRANT pg_read_all_data, pg_write_all_data TO {_quote_identifier(username)}")


def grant_superuser(conn: _Connection, username: str) -> None:
    conn.execute(f"ALTER USER {username} WITH SUPERUSER;")


def create_user(conn: _Connection, username: str, password: str) -> None:
    conn.execute(f"CREATE USER {username} WITH LOGIN PASSWORD '{password}'")


def change_password(conn: _Connection, username: str, password: str) -> None:
    conn.execute(f"ALTER USER {username} WITH LOGIN PASSWORD '{password}';")


def manage_default_users(conn: _Connection, creds: Iterable[Credential]) -> None:
    """Create missing users as superusers and refresh passwords of existing ones."""
    try:
        existing = {user.username for user in list_users(conn)}
    except Exception as exc:
        raise RuntimeError(f"failed to list existing users: {exc}") from exc

    for cred in creds:
        if cred.username in existing:
            try:
                change_password(conn, cred.username, cred.password)
            except Exception as exc:
                raise RuntimeError(
                    f"failed to update credentials for user {cred.username}: {exc}"
                ) from exc
            continue

        try:
            create_user(conn, cred.username, cred.password)
        except Exception as exc:
            raise RuntimeError(
                f"failed to create require user {cred.username}: {exc}"
            ) from exc
        try:
            grant_superuser(conn, cred.username)
        except Exception as exc:
            raise RuntimeError(
                f"failed to grant superuser privileges to user {cred.username}: {exc}"
            ) from exc


def create_database_with_owner(conn: _Connection, name: str, owner: str) -> None:
    if find_database(conn, name) is not None:
        return
    conn.execute(f"CREATE DATABASE {name} OWNER {owner};")


def create_database(conn: _Connection, name: str) -> None:
    if find_database(conn, name) is not None:
        return
    conn.execute(f"CREATE DATABASE {name};")


def grant_create_on_public(conn: _Connection) -> None:
    """Re-enable the public schema for normal users."""
    conn.execute("GRANT CREATE on SCHEMA PUBLIC to PUBLIC;")


def delete_database(conn: _Connection, name: str) -> None:
    conn.execute(f"DROP DATABASE {name};")


_SLOT_COLUMNS = (
    "SELECT slot_name, active, wal_status, "
    "pg_wal_lsn_diff(pg_current_wal_lsn(), restart_lsn) AS retained_wal "
    "FROM pg_replication_slots"
)


def _slot_from_row(row: Sequence[Any]) -> ReplicationSlot:
    name, active, wal_status, retained = row
    return ReplicationSlot(
        name=name,
        active=bool(active),
        wal_status=wal_status,
        retained_wal_in_bytes=int(retained),
    )


def get_replication_slot(conn: _Connection, slot_name: str) -> ReplicationSlot:
    """Return the named slot; raises NoRowsError if it does not exist."""
    row = _query_row(conn, f"{_SLOT_COLUMNS} where slot_name = '{slot_name}';")
    return _slot_from_row(row)


def list_replication_slots(conn: _Connection) -> list[ReplicationSlot]:
    """List repmgr-managed slots (``repmgr_slot_<member-id>``)."""
    slots = []
    for row in conn.query(f"{_SLOT_COLUMNS};"):
        slot = _slot_from_row(row)
        parts = slot.name.split("_")
        if parts[0] != "repmgr":
            continue
        if len(parts) < 3:
            raise ValueError(f"malformed replication slot name: {slot.name}")
        slot.member_id = _parse_int(parts[2], "replication slot member id", bits=32)
        slots.append(slot)
    return slots


def drop_replication_slot(conn: _Connection, name: str) -> None:
    conn.execute(f"SELECT pg_drop_replication_slot('{name}');")


def enable_extension(conn: _Connection, extension: str) -> None:
    conn.execute(f"CREATE EXTENSION IF NOT EXISTS {extension};")


_LIST_DATABASES = """
		SELECT d.datname,
					(SELECT array_agg(u.usename::text order by u.usename)
						from pg_user u
						where has_database_privilege(u.usename, d.datname, 'CONNECT')) as allowed_users
		from pg_database d where d.datistemplate = false
		order by d.datname;
		"""

_LIST_USERS = """
		select u.usename,
			usesuper as superuser,
      (select array_agg(d.datname::text order by d.datname)
				from pg_database d
				WHERE datistemplate = false
				AND has_database_privilege(u.usename, d.datname, 'CONNECT')
			) as allowed_databases
			from pg_user u
			join pg_authid a on u.usesysid = a.oid
			order by u.usename
			"""


def list_databases(conn: _Connection) -> list[DbInfo]:
    return [
        DbInfo(name=name, users=_optional_list(users))
        for name, users in conn.query(_LIST_DATABASES)
    ]


def find_database(conn: _Connection, name: str) -> DbInfo | None:
    return next((db for db in list_databases(conn) if db.name == name), None)


def list_users(conn: _Connection) -> list[UserInfo]:
    return [
        UserInfo(username=name, superuser=bool(superuser), databases=_optional_list(dbs))
        for name, superuser, dbs in conn.query(_LIST_USERS)
    ]


def find_user(conn: _Connection, username: str) -> UserInfo | None:
    return next((u for u in list_users(conn) if u.username == username), None)


def drop_role(conn: _Connection, username: str) -> None:
    conn.execute(f"DROP ROLE {username}")


def reassign_ownership(conn: _Connection, user: str, target_user: str) -> None:
    conn.execute(f"REASSIGN OWNED BY {user} TO {target_user};")


def drop_owned(conn: _Connection, user: str) -> None:
    conn.execute(f"DROP OWNED BY {user};")


def set_configuration_setting(conn: _Connection, key: str, value: Any) -> None:
    text = str(value).lower() if isinstance(value, bool) else str(value)
    conn.execute(f"SET {key} to {text}")


def reload_postgres_config(conn: _Connection) -> None:
    conn.execute("SELECT pg_reload_conf()")


def setting_exists(conn: _Connection, setting: str) -> bool:
    sql = f"SELECT EXISTS(SELECT 1 FROM pg_settings WHERE name='{setting}')"
    return bool(_query_row(conn, sql)[0])


def extension_available(conn: _Connection, extension: str) -> bool:
    sql = f"SELECT EXISTS(SELECT 1 FROM pg_available_extensions WHERE name='{extension}')"
    return bool(_query_row(conn, sql)[0])


def setting_requires_restart(conn: _Connection, setting: str) -> bool:
    sql = f"SELECT pending_restart FROM pg_settings WHERE name='{setting}'"
    return bool(_query_row(conn, sql)[0])


def get_setting(conn: _Connection, setting: str) -> PGSetting:
    """Return the ``pg_settings`` row for a setting; raises NoRowsError if unknown."""
    sql = (
        "SELECT name, setting, vartype, min_val, max_val, enumvals, context, unit, "
        f"short_desc, pending_restart FROM pg_settings WHERE name='{setting}'"
    )
    (name, value, vartype, min_val, max_val, enumvals, context, unit, desc,
     pending_restart) = _query_row(conn, sql)
    return PGSetting(
        name=name,
        setting=value,
        vartype=vartype,
        min_val=min_val,
        max_val=max_val,
        enumvals=_optional_list(enumvals),
        context=context,
        unit=unit,
        short_desc=desc,
        pending_restart=pending_restart,
    )


def validate_pg_settings(conn: _Connection, requested: Mapping[str, Any]) -> None:
    """Raise ValueError if a requested Postgres setting cannot be applied."""
    for key, value in requested.items():
        try:
            exists = setting_exists(conn, key)
        except Exception as exc:
            raise RuntimeError(f"failed to verify setting: {exc}") from exc
        if not exists:
            raise ValueError(f"setting {key} is not a valid config option")

        if key == "shared_preload_libraries":
            for extension in str(value).strip("'").split(","):
                try:
                    available = extension_available(conn, extension)
                except Exception as exc:
                    raise RuntimeError(
                        f"failed to verify pg extension {extension}: {exc}"
                    ) from exc
                if not available:
                    raise ValueError(
                        f"extension {extension} has not been installed within this image"
                    )

        if key == "max_replication_slots":
            maximum = _parse_int(str(value), "max_replication_slots")
            try:
                slots = list_replication_slots(conn)
            except Exception as exc:
                raise RuntimeError(f"failed to verify replication slots: {exc}") from exc
            if len(slots) > maximum:
                raise ValueError(
                    "max_replication_slots must be greater than or equal to the number "
                    f"of active replication slots ({len(slots)})"
                )