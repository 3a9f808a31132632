import pytest

from pgflex import admin
from pgflex.admin import Credential, NoRowsError


class FakeConn:
    def __init__(self, results=None, fail_on=None):
        self.results = results or {}
        self.fail_on = fail_on
        self.statements = []

    def execute(self, sql):
        self.statements.append(sql)
        if self.fail_on and self.fail_on in sql:
            raise RuntimeError("boom")

    def query(self, sql):
        self.statements.append(sql)
        for marker, rows in self.results.items():
            if marker in sql:
                return list(rows(sql) if callable(rows) else rows)
        return []


DATABASES = "d.datistemplate = false"
USERS = "pg_authid"
SLOTS = "FROM pg_replication_slots"


def test_grant_access_quotes_username():
    conn = FakeConn()
    admin.grant_access(conn, "alice")
    assert conn.statements == ['GRANT pg_read_all_data, pg_write_all_data TO "alice"']


def test_simple_statements():
    conn = FakeConn()
    admin.grant_superuser(conn, "alice")
    admin.create_user(conn, "alice", "password")
    admin.change_password(conn, "alice", "password")
    admin.delete_database(conn, "app")
    admin.drop_role(conn, "alice")
    admin.reassign_ownership(conn, "alice", "postgres")
    admin.drop_owned(conn, "alice")
    admin.enable_extension(conn, "repmgr")
    admin.grant_create_on_public(conn)
    admin.reload_postgres_config(conn)
    admin.drop_replication_slot(conn, "repmgr_slot_2")
    assert conn.statements == [
        "ALTER USER alice WITH SUPERUSER;",
        "CREATE USER alice WITH LOGIN PASSWORD 'password'",
        "ALTER USER alice WITH LOGIN PASSWORD 'password';",
        "DROP DATABASE app;",
        "DROP ROLE alice",
        "REASSIGN OWNED BY alice TO postgres;",
        "DROP OWNED BY alice;",
        "CREATE EXTENSION IF NOT EXISTS repmgr;",
        "GRANT CREATE on SCHEMA PUBLIC to PUBLIC;",
        "SELECT pg_reload_conf()",
        "SELECT pg_drop_replication_slot('repmgr_slot_2');",
    ]


def test_set_configuration_setting():
    conn = FakeConn()
    admin.set_configuration_setting(conn, "work_mem", "64MB")
    admin.set_configuration_setting(conn, "fsync", True)
    assert conn.statements == ["SET work_mem to 64MB", "SET fsync to true"]


def test_execute_failure_propagates():
    conn = FakeConn(fail_on="DROP DATABASE")
    with pytest.raises(RuntimeError, match="boom"):
        admin.delete_database(conn, "app")


def test_create_database_skips_existing():
    conn = FakeConn({DATABASES: [("app", ["postgres"])]})
    admin.create_database(conn, "app")
    assert not any(s.startswith("CREATE DATABASE") for s in conn.statements)


def test_create_database_creates_missing():
    conn = FakeConn({DATABASES: [("postgres", ["postgres"])]})
    admin.create_database(conn, "app")
    assert conn.statements[-1] == "CREATE DATABASE app;"


def test_create_database_with_owner():
    conn = FakeConn()
    admin.create_database_with_owner(conn, "repmgr", "repmgr")
    assert conn.statements[-1] == "CREATE DATABASE repmgr OWNER repmgr;"


def test_list_and_find_databases():
    conn = FakeConn({DATABASES: [("app", ["alice", "postgres"]), ("other", None)]})
    dbs = admin.list_databases(conn)
    assert [db.name for db in dbs] == ["app", "other"]
    assert dbs[0].users == ["alice", "postgres"]
    assert dbs[1].users is None
    assert admin.find_database(conn, "app").users == ["alice", "postgres"]
    assert admin.find_database(conn, "missing") is None


def test_list_and_find_users():
    conn = FakeConn({USERS: [("alice", False, ["app"]), ("postgres", True, ["app", "postgres"])]})
    users = admin.list_users(conn)
    assert [(u.username, u.superuser) for u in users] == [("alice", False), ("postgres", True)]
    assert admin.find_user(conn, "postgres").databases == ["app", "postgres"]
    assert admin.find_user(conn, "bob") is None


def test_manage_default_users():
    conn = FakeConn({USERS: [("repmgr", True, [])]})
    admin.manage_default_users(
        conn,
        [Credential("repmgr", "password"), Credential("flypgadmin", "secret")],
    )
    executed = conn.statements[1:]
    assert executed == [
        "ALTER USER repmgr WITH LOGIN PASSWORD 'password';",
        "CREATE USER flypgadmin WITH LOGIN PASSWORD 'secret'",
        "ALTER USER flypgadmin WITH SUPERUSER;",
    ]


def test_manage_default_users_wraps_failure():
    conn = FakeConn(fail_on="CREATE USER")
    with pytest.raises(RuntimeError, match="failed to create require user bob"):
        admin.manage_default_users(conn, [Credential("bob", "password")])


def test_list_replication_slots_filters_and_parses_member_id():
    conn = FakeConn({SLOTS: [
        ("repmgr_slot_3", True, "reserved", 0),
        ("custom_slot", False, "reserved", 10),
        ("repmgr_slot_12", False, "extended", 2048),
    ]})
    slots = admin.list_replication_slots(conn)
    assert [(s.name, s.member_id, s.active) for s in slots] == [
        ("repmgr_slot_3", 3, True),
        ("repmgr_slot_12", 12, False),
    ]
    assert slots[1].retained_wal_in_bytes == 2048


def test_list_replication_slots_rejects_bad_id():
    conn = FakeConn({SLOTS: [("repmgr_slot_abc", True, "reserved", 0)]})
    with pytest.raises(ValueError):
        admin.list_replication_slots(conn)


def test_get_replication_slot():
    conn = FakeConn({"slot_name = 'repmgr_slot_2'": [("repmgr_slot_2", False, "reserved", 512)]})
    slot = admin.get_replication_slot(conn, "repmgr_slot_2")
    assert (slot.name, slot.active, slot.wal_status, slot.retained_wal_in_bytes) == (
        "repmgr_slot_2", False, "reserved", 512,
    )


def test_get_replication_slot_missing():
    with pytest.raises(NoRowsError):
        admin.get_replication_slot(FakeConn(), "repmgr_slot_9")


def test_setting_queries():
    conn = FakeConn({
        "pg_settings WHERE name='work_mem')": [(True,)],
        "pending_restart FROM pg_settings WHERE name='shared_buffers'": [(True,)],
        "pg_available_extensions WHERE name='timescaledb'": [(False,)],
    })
    assert admin.setting_exists(conn, "work_mem") is True
    assert admin.setting_requires_restart(conn, "shared_buffers") is True
    assert admin.extension_available(conn, "timescaledb") is False
    with pytest.raises(NoRowsError):
        admin.setting_exists(conn, "bogus")


def test_get_setting():
    row = ("work_mem", "4096", "integer", "64", "2147483647", None, "user", "kB",
           "Sets memory", False)
    conn = FakeConn({"short_desc, pending_restart FROM pg_settings": [row]})
    setting = admin.get_setting(conn, "work_mem")
    assert setting.name == "work_mem"
    assert setting.setting == "4096"
    assert setting.unit == "kB"
    assert setting.enumvals is None
    assert setting.pending_restart is False


def _settings_conn(known, extensions=(), slots=()):
    def exists(sql):
        return [(any(f"name='{k}')" in sql for k in known),)]

    def ext(sql):
        return [(any(f"name='{e}')" in sql for e in extensions),)]

    return FakeConn({
        "pg_available_extensions": ext,
        "SELECT EXISTS(SELECT 1 FROM pg_settings": exists,
        SLOTS: list(slots),
    })


def test_validate_pg_settings_unknown_setting():
    conn = _settings_conn(known=["work_mem"])
    with pytest.raises(ValueError, match="not a valid config option"):
        admin.validate_pg_settings(conn, {"bogus": "1"})


def test_validate_pg_settings_missing_extension():
    conn = _settings_conn(known=["shared_preload_libraries"], extensions=["repmgr"])
    with pytest.raises(ValueError, match="extension timescaledb has not been installed"):
        admin.validate_pg_settings(
            conn, {"shared_preload_libraries": "'repmgr,timescaledb'"}
        )


def test_validate_pg_settings_too_few_slots():
    slots = [("repmgr_slot_1", True, "reserved", 0), ("repmgr_slot_2", True, "reserved", 0)]
    conn = _settings_conn(known=["max_replication_slots"], slots=slots)
    with pytest.raises(ValueError, match=r"\(2\)"):
        admin.validate_pg_settings(conn, {"max_replication_slots": "1"})


def test_validate_pg_settings_bad_slot_count():
    conn = _settings_conn(known=["max_replication_slots"])
    with pytest.raises(ValueError, match="failed to parse max_replication_slots"):
        admin.validate_pg_settings(conn, {"max_replication_slots": "ten"})


def test_validate_pg_settings_accepts_valid_changes():
    conn = _settings_conn(known=["shared_preload_libraries", "max_replication_slots"],
                          extensions=["repmgr"],
                          slots=[("repmgr_slot_1", True, "reserved", 0)])
    admin.validate_pg_settings(
        conn, {"shared_preload_libraries": "'repmgr'", "max_replication_slots": "1"}
    )
    assert any("pg_available_extensions WHERE name='repmgr'" in s for s in conn.statements)
    assert any(SLOTS in s for s in conn.statements)